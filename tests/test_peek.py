from __future__ import annotations

import numpy as np
import pytest

from bcistream.core.models import Marker
from bcistream.core.peek import peek, samples_to_get
from bcistream.core.stream import StreamRegistry, new_stream
from bcistream.errors import InvalidArgumentError, NotFoundError, StaleBindingError


def _filled_registry(capacity: int = 10, total: int = 25, srate: float = 10.0) -> StreamRegistry:
    streams = StreamRegistry()
    handle = new_stream(streams, "eeg", srate, ["C3", "Cz", "C4"], capacity=capacity)
    values = np.arange(1, total + 1, dtype=float)
    handle.append(np.vstack([values, 10 * values, 100 * values]))
    return streams


def test_peek_after_wraparound_returns_newest_samples() -> None:
    streams = _filled_registry()

    chunk = peek(streams, "eeg", 5, "samples")

    np.testing.assert_array_equal(chunk.data[0], [21, 22, 23, 24, 25])
    assert chunk.start_index == 21
    assert chunk.smax == 25
    assert chunk.channel_labels == ("C3", "Cz", "C4")


def test_peek_seconds_unit() -> None:
    streams = _filled_registry()
    chunk = peek(streams, "eeg", 0.3, "seconds")
    np.testing.assert_array_equal(chunk.data[0], [23, 24, 25])


def test_peek_index_unit_returns_everything_after_index() -> None:
    streams = _filled_registry()

    chunk = peek(streams, "eeg", 20, "index")

    np.testing.assert_array_equal(chunk.data[0], [21, 22, 23, 24, 25])
    assert peek(streams, "eeg", 25, "index").is_empty


def test_peek_clamps_to_capacity_and_smax() -> None:
    streams = _filled_registry()
    assert peek(streams, "eeg", 100, "samples").n_samples == 10

    short = _filled_registry(capacity=10, total=3)
    chunk = peek(short, "eeg", 10, "seconds")
    np.testing.assert_array_equal(chunk.data[0], [1, 2, 3])


def test_samples_to_get_never_negative() -> None:
    assert samples_to_get(100.0, 50, 30, "index", 10) == 0
    assert samples_to_get(100.0, 50, 0.25, "seconds", 100) == 25
    assert samples_to_get(100.0, 50, 5, "samples", 0) == 0


def test_peek_time_axis() -> None:
    streams = _filled_registry()
    chunk = peek(streams, "eeg", 5, "samples")
    assert chunk.xmax == pytest.approx(2.4)
    assert chunk.xmin == pytest.approx(2.0)


def test_peek_channel_subset_by_label_and_index() -> None:
    streams = _filled_registry()

    by_label = peek(streams, "eeg", 2, "samples", ["C4", "C3"])
    by_index = peek(streams, "eeg", 2, "samples", [2, 0])

    assert by_label.channel_labels == ("C4", "C3")
    np.testing.assert_array_equal(by_label.data, by_index.data)
    np.testing.assert_array_equal(by_label.data[0], [2400, 2500])


def test_peek_event_latency_is_relative_to_chunk() -> None:
    streams = StreamRegistry()
    handle = new_stream(streams, "eeg", 100.0, ["C3"], capacity=500)
    handle.append(np.zeros((1, 120)), [Marker("stim", 107.0)])

    chunk = peek(streams, "eeg", 21, "samples")

    assert chunk.start_index == 100
    assert [m.latency for m in chunk.events] == [8.0]


def test_peek_returns_read_only_snapshot() -> None:
    streams = _filled_registry()
    chunk = peek(streams, "eeg", 5, "samples")
    with pytest.raises(ValueError):
        chunk.data[0, 0] = 0.0


@pytest.mark.parametrize(
    "kwargs, argument",
    [
        ({"unit": "minutes"}, "unit"),
        ({"length": -1}, "length"),
        ({"length": float("nan")}, "length"),
        ({"channels": "C3"}, "channels"),
        ({"channels": ["O1"]}, "channels"),
        ({"channels": [7]}, "channels"),
    ],
)
def test_peek_rejects_invalid_arguments(kwargs: dict, argument: str) -> None:
    streams = _filled_registry()
    with pytest.raises(InvalidArgumentError) as excinfo:
        peek(streams, "eeg", **kwargs)
    assert excinfo.value.argument == argument


def test_peek_unknown_and_stale_streams() -> None:
    streams = _filled_registry()
    with pytest.raises(NotFoundError):
        peek(streams, "missing")
    with pytest.raises(InvalidArgumentError):
        peek(streams, "")
    old_id = streams.get("eeg").stream_id
    new_stream(streams, "eeg", 10.0, ["C3"])
    with pytest.raises(StaleBindingError):
        peek(streams, "eeg", 1, "samples", expected_id=old_id)
