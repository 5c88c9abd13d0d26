"""Shared value types for streams: event markers and chunks."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence

import numpy as np


@dataclass(frozen=True)
class Marker:
    """
    One event marker.

    ``latency`` is 1-based and relative to the first sample of whatever block
    the marker travels with (an appended block or a :class:`Chunk`).
    """

    type: str
    latency: float
    duration: float = 0.0
    fields: Mapping[str, Any] = field(default_factory=dict)

    def shifted(self, offset: float) -> "Marker":
        """Return a copy with ``offset`` added to the latency."""
        return replace(self, latency=self.latency + offset)


def _frozen_array(data: Any, n_channels: int | None = None) -> np.ndarray:
    arr = np.array(data, dtype=np.float64, copy=True)
    if arr.ndim == 1 and n_channels is not None:
        arr = arr.reshape(n_channels, -1)
    if arr.ndim != 2:
        raise ValueError(f"chunk data must be 2-D (channels x samples), got shape {arr.shape}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class Chunk:
    """
    Immutable snapshot of a stretch of multichannel data.

    ``data`` is ``channels x samples``. ``start_index``/``smax`` are the
    absolute 1-based indices of the first/last sample in the source stream.
    """

    data: np.ndarray
    srate: float
    channel_labels: tuple[str, ...]
    events: tuple[Marker, ...] = ()
    channel_locations: Optional[tuple[Any, ...]] = None
    xmin: float = 0.0
    xmax: float = 0.0
    start_index: int = 1
    smax: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", _frozen_array(self.data, len(self.channel_labels)))
        object.__setattr__(self, "channel_labels", tuple(self.channel_labels))
        object.__setattr__(self, "events", tuple(self.events))
        if self.channel_locations is not None:
            object.__setattr__(self, "channel_locations", tuple(self.channel_locations))
        if self.data.shape[0] != len(self.channel_labels):
            raise ValueError(
                f"chunk has {self.data.shape[0]} data rows but {len(self.channel_labels)} channel labels"
            )

    @property
    def n_channels(self) -> int:
        return int(self.data.shape[0])

    @property
    def n_samples(self) -> int:
        return int(self.data.shape[1])

    @property
    def is_empty(self) -> bool:
        return self.n_samples == 0

    def with_data(
        self,
        data: Any,
        *,
        channel_labels: Sequence[str] | None = None,
        channel_locations: Sequence[Any] | None = None,
        events: Sequence[Marker] | None = None,
    ) -> "Chunk":
        """Return a new chunk sharing this chunk's time base but carrying ``data``."""
        labels = tuple(channel_labels) if channel_labels is not None else self.channel_labels
        locs: Optional[tuple[Any, ...]]
        if channel_locations is not None:
            locs = tuple(channel_locations)
        elif channel_labels is not None:
            locs = None
        else:
            locs = self.channel_locations
        return replace(
            self,
            data=data,
            channel_labels=labels,
            channel_locations=locs,
            events=tuple(events) if events is not None else self.events,
        )

    def slice_samples(self, start: int, stop: int) -> "Chunk":
        """Samples ``start:stop`` (0-based, Python slice semantics) as a new chunk."""
        start, stop, _ = slice(start, stop).indices(self.n_samples)
        stop = max(start, stop)
        events = tuple(
            marker.shifted(-start)
            for marker in self.events
            if start + 1 <= marker.latency < stop + 1
        )
        return replace(
            self,
            data=self.data[:, start:stop],
            events=events,
            xmin=self.xmin + start / self.srate,
            xmax=self.xmin + (stop - 1) / self.srate,
            start_index=self.start_index + start,
            smax=self.start_index + stop - 1,
        )

    @classmethod
    def empty(
        cls,
        channel_labels: Sequence[str],
        srate: float,
        *,
        smax: int = 0,
    ) -> "Chunk":
        labels = tuple(channel_labels)
        return cls(
            data=np.zeros((len(labels), 0)),
            srate=srate,
            channel_labels=labels,
            start_index=smax + 1,
            smax=smax,
        )
