from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

import numpy as np

from ..errors import RangeError, ShapeError
from .models import Marker

logger = logging.getLogger(__name__)

DEFAULT_MARKER_CAPACITY = 1000


@dataclass(frozen=True)
class _MarkerRecord:
    record_id: int  # absolute 1-based marker count at insertion
    sample: int  # absolute 1-based sample the marker is attached to
    offset: float  # sub-sample offset in [0, 1)
    marker: Marker


class RingBuffer:
    """
    Fixed-capacity circular storage for multichannel samples and markers.

    ``smax`` counts every sample ever written. Logical sample ``i``
    (1-based) lives in column ``(i - 1) % capacity``; only samples with
    ``smax - capacity < i <= smax`` are retrievable. Markers sit in a separate
    ring of ``marker_capacity`` records with a sparse slot -> record table.
    """

    def __init__(
        self,
        capacity: int,
        channel_count: int,
        *,
        marker_capacity: int = DEFAULT_MARKER_CAPACITY,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if channel_count <= 0:
            raise ValueError("channel_count must be positive")
        if marker_capacity <= 0:
            raise ValueError("marker_capacity must be positive")
        self._capacity = int(capacity)
        self._channel_count = int(channel_count)
        self._marker_capacity = int(marker_capacity)
        self._buffer = np.zeros((self._channel_count, self._capacity), dtype=np.float64)
        self._smax = 0
        self._marker_buffer: List[Optional[_MarkerRecord]] = [None] * self._marker_capacity
        self._marker_pos: Dict[int, List[int]] = {}
        self._mmax = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def channel_count(self) -> int:
        return self._channel_count

    @property
    def marker_capacity(self) -> int:
        return self._marker_capacity

    @property
    def smax(self) -> int:
        """Total number of samples ever written."""
        return self._smax

    @property
    def mmax(self) -> int:
        """Total number of markers ever written."""
        return self._mmax

    def __len__(self) -> int:  # pragma: no cover - trivial
        return min(self._smax, self._capacity)

    def _slot(self, index: int) -> int:
        return (index - 1) % self._capacity

    # ------------------------------------------------------------------ write
    def append(self, samples: np.ndarray, markers: Iterable[Marker] = ()) -> None:
        """
        Write a ``channels x k`` block at ``smax + 1 .. smax + k``.

        Marker latencies are 1-based relative to the block and are clamped
        into it. Raises :class:`ShapeError` on a channel-count mismatch.
        """
        arr = np.asarray(samples, dtype=np.float64)
        if arr.ndim == 1 and self._channel_count == 1:
            arr = arr.reshape(1, -1)
        if arr.ndim != 2:
            raise ShapeError(
                f"samples must be a 2-D (channels x samples) array, got {arr.ndim} dimension(s)"
            )
        if arr.shape[0] != self._channel_count:
            raise ShapeError(
                f"samples have {arr.shape[0]} channels but the buffer holds "
                f"{self._channel_count}; transpose or reselect the input block"
            )

        k = int(arr.shape[1])
        first = self._smax + 1
        new_smax = self._smax + k
        if k:
            # Only the newest `capacity` samples of an oversized block survive.
            keep = min(k, self._capacity)
            indices = np.arange(new_smax - keep + 1, new_smax + 1)
            slots = (indices - 1) % self._capacity
            for slot in slots.tolist():
                self._marker_pos.pop(slot, None)
            self._buffer[:, slots] = arr[:, k - keep:]
            self._smax = new_smax

        for marker in markers:
            self._store_marker(marker, first, new_smax)

    def _store_marker(self, marker: Marker, first: int, last: int) -> None:
        if last < 1:
            logger.warning("Dropping marker %r: no samples have been written yet", marker.type)
            return
        lower = first if last >= first else last
        absolute = first - 1 + float(marker.latency)
        sample = int(math.floor(absolute))
        offset = absolute - sample
        if sample < lower or sample > last:
            sample = min(max(sample, lower), last)
            offset = 0.0
        if last - sample >= self._capacity:
            # attached to a sample that was overwritten within the same block
            return
        self._mmax += 1
        record = _MarkerRecord(
            record_id=self._mmax,
            sample=sample,
            offset=offset,
            marker=marker,
        )
        self._marker_buffer[(self._mmax - 1) % self._marker_capacity] = record
        self._marker_pos.setdefault(self._slot(sample), []).append(self._mmax)

    # ------------------------------------------------------------------- read
    def _check_range(self, start: int, end: int) -> None:
        if start < 1:
            raise RangeError(f"start index must be >= 1, got {start}")
        if end > self._smax:
            raise RangeError(
                f"end index {end} is past the newest sample ({self._smax}); "
                "wait for more data or reduce the requested length"
            )
        if end < start - 1:
            raise RangeError(f"end index {end} precedes start index {start}")
        if end >= start and self._smax - start >= self._capacity:
            raise RangeError(
                f"sample {start} was overwritten (buffer holds samples "
                f"{max(1, self._smax - self._capacity + 1)}..{self._smax}); "
                "reduce the requested length or enlarge the buffer"
            )

    def read_window(self, start_index: int, end_index: int) -> np.ndarray:
        """
        Return a copy of samples ``start_index .. end_index`` (inclusive, 1-based).

        ``end_index == start_index - 1`` yields an empty ``channels x 0`` array.
        """
        start, end = int(start_index), int(end_index)
        self._check_range(start, end)
        if end < start:
            return np.zeros((self._channel_count, 0), dtype=np.float64)
        slots = (np.arange(start, end + 1) - 1) % self._capacity
        return self._buffer[:, slots]

    def read_markers(self, start_index: int, end_index: int) -> List[Marker]:
        """
        Markers attached to samples ``start_index .. end_index``.

        Latencies come back 1-based relative to ``start_index``. Markers whose
        record was recycled by newer markers are skipped.
        """
        start, end = int(start_index), int(end_index)
        self._check_range(start, end)
        if end < start or not self._mmax:
            return []
        found: List[_MarkerRecord] = []
        for record_ids in self._marker_pos.values():
            for record_id in record_ids:
                record = self._marker_buffer[(record_id - 1) % self._marker_capacity]
                if record is None or record.record_id != record_id:
                    continue
                if start <= record.sample <= end:
                    found.append(record)
        found.sort(key=lambda rec: (rec.sample, rec.record_id))
        return [
            replace(rec.marker, latency=rec.sample - start + 1 + rec.offset)
            for rec in found
        ]
