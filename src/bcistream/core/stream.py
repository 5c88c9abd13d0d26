"""
Named live streams and the registry that resolves them.

A :class:`StreamHandle` owns one :class:`RingBuffer`; a single writer appends
while any number of readers (peek calls, pipeline leaves) take copies of
windows without blocking each other for long.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..errors import InvalidArgumentError, NotFoundError, StaleBindingError
from .models import Marker
from .ringbuffer import DEFAULT_MARKER_CAPACITY, RingBuffer

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SECONDS = 30.0


class StreamHandle:
    """Ring buffer plus lock and channel metadata for one live source.

    The RLock lets a producer thread append samples while consumers copy
    windows out without observing a half-written block.
    """

    def __init__(
        self,
        name: str,
        srate: float,
        channel_labels: Sequence[str],
        *,
        buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
        capacity: int | None = None,
        marker_capacity: int = DEFAULT_MARKER_CAPACITY,
        channel_locations: Sequence[Any] | None = None,
    ) -> None:
        if srate <= 0:
            raise InvalidArgumentError("srate", f"srate must be positive, got {srate}")
        labels = tuple(str(label) for label in channel_labels)
        if not labels:
            raise InvalidArgumentError("channel_labels", "a stream needs at least one channel label")
        if len(set(labels)) != len(labels):
            raise InvalidArgumentError("channel_labels", f"channel labels must be unique, got {labels}")
        if channel_locations is not None and len(channel_locations) != len(labels):
            raise InvalidArgumentError(
                "channel_locations",
                f"got {len(channel_locations)} channel locations for {len(labels)} channels",
            )
        if capacity is None:
            capacity = max(1, int(round(float(buffer_seconds) * float(srate))))

        self.name = name
        self.stream_id = uuid.uuid4().hex
        self.srate = float(srate)
        self.channel_labels = labels
        self.channel_locations = tuple(channel_locations) if channel_locations is not None else None
        self._buffer = RingBuffer(capacity, len(labels), marker_capacity=marker_capacity)
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return (
            f"StreamHandle(name={self.name!r}, srate={self.srate}, "
            f"channels={len(self.channel_labels)}, smax={self.smax})"
        )

    @property
    def lock(self) -> threading.RLock:
        """Hold this to read ``smax`` and a window consistently."""
        return self._lock

    @property
    def capacity(self) -> int:
        return self._buffer.capacity

    @property
    def smax(self) -> int:
        with self._lock:
            return self._buffer.smax

    @property
    def mmax(self) -> int:
        with self._lock:
            return self._buffer.mmax

    def append(self, samples: np.ndarray, markers: Iterable[Marker] = ()) -> None:
        """Append a ``channels x k`` block (and its markers)."""
        with self._lock:
            self._buffer.append(samples, list(markers))

    def read(self, start_index: int, end_index: int) -> tuple[np.ndarray, List[Marker]]:
        """Copy samples and markers of an absolute inclusive index range."""
        with self._lock:
            data = self._buffer.read_window(start_index, end_index)
            events = self._buffer.read_markers(start_index, end_index)
        return data, events

    def channel_indices(self, labels: Iterable[str]) -> List[int]:
        lookup = {label: idx for idx, label in enumerate(self.channel_labels)}
        return [lookup[label] for label in labels]


class StreamRegistry:
    """Mapping of name -> :class:`StreamHandle`.

    Replacing a name installs a new handle with a new ``stream_id`` so that
    anything bound to the old one can notice.
    """

    def __init__(self) -> None:
        self._streams: Dict[str, StreamHandle] = {}
        self._lock = threading.RLock()

    def create(self, name: str, srate: float, channel_labels: Sequence[str], **kwargs: Any) -> StreamHandle:
        handle = StreamHandle(name, srate, channel_labels, **kwargs)
        self.add(handle)
        return handle

    def add(self, handle: StreamHandle) -> None:
        _check_name(handle.name)
        with self._lock:
            previous = self._streams.get(handle.name)
            self._streams[handle.name] = handle
        if previous is not None and previous is not handle:
            logger.info("Stream %r replaced (id %s -> %s)", handle.name, previous.stream_id, handle.stream_id)

    def get(self, name: str) -> StreamHandle:
        with self._lock:
            handle = self._streams.get(name)
        if handle is None:
            raise NotFoundError(
                f"The stream named {name!r} was not found; create it with StreamRegistry.create() first."
            )
        return handle

    def resolve(self, name: str, expected_id: Optional[str] = None) -> StreamHandle:
        """Look up ``name`` and verify it is still the stream with ``expected_id``."""
        handle = self.get(name)
        if not isinstance(handle, StreamHandle):
            raise StaleBindingError(
                f"The entry {name!r} is not a stream; it has possibly been overwritten."
            )
        if expected_id is not None and handle.stream_id != expected_id:
            raise StaleBindingError(
                f"The stream {name!r} was replaced (expected id {expected_id}, found {handle.stream_id}); "
                "rebuild the pipeline against the new stream."
            )
        return handle

    def remove(self, name: str) -> Optional[StreamHandle]:
        with self._lock:
            return self._streams.pop(name, None)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._streams.keys())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)


def _check_name(name: Any) -> None:
    if not isinstance(name, str) or not name.strip():
        raise InvalidArgumentError("stream_name", f"stream names must be non-empty strings, got {name!r}")


def new_stream(
    registry: StreamRegistry,
    name: str,
    srate: float,
    channel_labels: Sequence[str],
    **kwargs: Any,
) -> StreamHandle:
    """Create (or replace) the stream ``name`` in ``registry``."""
    return registry.create(name, srate, channel_labels, **kwargs)
