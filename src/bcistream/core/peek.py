"""Windowed, wraparound-safe views into live streams."""

from __future__ import annotations

import logging
import numbers
from typing import Optional, Sequence, Union

import numpy as np

from ..errors import InvalidArgumentError
from .models import Chunk
from .stream import StreamHandle, StreamRegistry

logger = logging.getLogger(__name__)

UNITS = ("seconds", "samples", "index")
ChannelSelection = Optional[Sequence[Union[int, str]]]


def samples_to_get(srate: float, capacity: int, length: float, unit: str, smax: int) -> int:
    """
    Translate ``length``/``unit`` into a sample count for a buffer at ``smax``.

    - ``"seconds"``: ``round(srate * length)``
    - ``"samples"``: ``length``
    - ``"index"``: every sample newer than absolute index ``length``

    The result never exceeds the buffer capacity or the number of samples
    ever written.
    """
    if unit == "seconds":
        wanted = int(round(srate * float(length)))
    elif unit == "samples":
        wanted = int(length)
    elif unit == "index":
        wanted = smax - int(length)
    else:
        raise InvalidArgumentError("unit", f"Unrecognized length unit {unit!r}; expected one of {UNITS}.")
    return max(0, min(capacity, wanted, smax))


def _validate(stream_name: object, length: object, unit: object, channels: object) -> None:
    if not isinstance(stream_name, str) or not stream_name:
        raise InvalidArgumentError(
            "stream_name",
            f"The given stream_name must be the name of a registered stream, but was: {stream_name!r}",
        )
    if not isinstance(unit, str) or not unit:
        raise InvalidArgumentError("unit", f"The given unit argument must be a string, but was: {unit!r}")
    if unit not in UNITS:
        raise InvalidArgumentError("unit", f"Unrecognized length unit {unit!r}; expected one of {UNITS}.")
    if isinstance(length, bool) or not isinstance(length, numbers.Real) or not np.isfinite(float(length)):
        raise InvalidArgumentError(
            "length", f"The given length argument must be a finite numeric scalar, but was: {length!r}"
        )
    if float(length) < 0:
        raise InvalidArgumentError("length", f"The given length argument must be non-negative, but was: {length!r}")
    if channels is not None:
        is_sequence = isinstance(channels, (Sequence, np.ndarray))
        if isinstance(channels, (str, bytes)) or not is_sequence:
            raise InvalidArgumentError(
                "channels",
                f"The given channels argument must be a sequence of indices or labels, but was: {channels!r}",
            )


def _resolve_channels(handle: StreamHandle, channels: ChannelSelection) -> list[int]:
    if channels is None:
        return list(range(len(handle.channel_labels)))
    lookup = {label: idx for idx, label in enumerate(handle.channel_labels)}
    indices: list[int] = []
    for item in channels:
        if isinstance(item, str):
            if item not in lookup:
                raise InvalidArgumentError(
                    "channels", f"Channel {item!r} is not present in stream {handle.name!r}."
                )
            indices.append(lookup[item])
        elif isinstance(item, numbers.Integral) and not isinstance(item, bool):
            if not 0 <= int(item) < len(handle.channel_labels):
                raise InvalidArgumentError(
                    "channels",
                    f"Channel index {item} is out of range for stream {handle.name!r} "
                    f"with {len(handle.channel_labels)} channels.",
                )
            indices.append(int(item))
        else:
            raise InvalidArgumentError(
                "channels", f"Channel entries must be integer indices or labels, got {item!r}."
            )
    return indices


def peek(
    registry: StreamRegistry,
    stream_name: str,
    length: float = 10,
    unit: str = "seconds",
    channels: ChannelSelection = None,
    *,
    expected_id: Optional[str] = None,
) -> Chunk:
    """
    Return the most recent data of a stream as an immutable :class:`Chunk`.

    Parameters
    ----------
    registry:
        Registry holding the live streams.
    stream_name:
        Name of the stream to read from.
    length:
        Desired window length, interpreted according to ``unit``.
    unit:
        ``"seconds"`` (default), ``"samples"`` or ``"index"`` (all samples
        newer than the absolute sample index ``length``).
    channels:
        ``None`` for all channels, or a sequence of 0-based indices or labels.
    expected_id:
        When given, the stream must still carry this ``stream_id``.

    Event latencies in the chunk are 1-based relative to its first sample.
    """
    _validate(stream_name, length, unit, channels)
    handle = registry.resolve(stream_name, expected_id)

    selected = _resolve_channels(handle, channels)
    with handle.lock:
        smax = handle.smax
        count = samples_to_get(handle.srate, handle.capacity, float(length), unit, smax)
        data, events = handle.read(smax - count + 1, smax)

    srate = handle.srate
    xmax = (smax - 1) / srate
    xmin = xmax - (count - 1) / srate
    locations = None
    if handle.channel_locations is not None:
        locations = tuple(handle.channel_locations[i] for i in selected)
    return Chunk(
        data=data[selected, :],
        srate=srate,
        channel_labels=tuple(handle.channel_labels[i] for i in selected),
        channel_locations=locations,
        events=tuple(events),
        xmin=xmin,
        xmax=xmax,
        start_index=smax - count + 1,
        smax=smax,
    )
