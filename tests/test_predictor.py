from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pytest

from bcistream.core.models import Chunk, Marker
from bcistream.core.stream import StreamRegistry, new_stream
from bcistream.errors import InvalidArgumentError, NotFoundError, StaleBindingError
from bcistream.online.predictor import PredictorRegistry, format_output, new_predictor
from bcistream.pipeline.expression import RawData, flt


@dataclass
class RecordingModel:
    expression: Any
    window: float = 0.1
    epoch: Optional[tuple[float, float]] = None
    classes: tuple[float, ...] = (1.0, 2.0)
    seen: list[Chunk] = field(default_factory=list)

    def predict(self, chunk: Chunk) -> np.ndarray:
        self.seen.append(chunk)
        return np.array([[0.25, 0.75]])


def _setup(**model_kwargs: Any) -> tuple[StreamRegistry, RecordingModel]:
    streams = StreamRegistry()
    new_stream(streams, "eeg", 100.0, ("C3", "C4"), capacity=500)
    model = RecordingModel(flt("scale", RawData(channel_labels=("C3", "C4")), 1.0), **model_kwargs)
    return streams, model


def test_format_output_variants() -> None:
    raw = np.array([[0.25, 0.75], [0.9, 0.1]])
    np.testing.assert_array_equal(format_output(raw, "distribution"), raw)
    np.testing.assert_allclose(format_output(raw, "expectation", (1.0, 2.0)), [1.75, 1.1])
    np.testing.assert_array_equal(format_output(raw, "mode", (-1.0, 1.0)), [1.0, -1.0])
    assert format_output(raw, "raw") is raw
    with pytest.raises(InvalidArgumentError):
        format_output(raw, "probabilities")
    with pytest.raises(InvalidArgumentError):
        format_output(raw, "mode", (1.0, 2.0, 3.0))


def test_predict_waits_for_a_full_window_and_new_samples() -> None:
    streams, model = _setup()
    predictor = new_predictor("p", model, streams, "eeg")

    streams.get("eeg").append(np.zeros((2, 5)))
    assert math.isnan(predictor.predict())

    streams.get("eeg").append(np.zeros((2, 7)))
    result = predictor.predict("expectation")
    np.testing.assert_allclose(result, [1.75])
    assert model.seen[-1].n_samples == 10
    assert model.seen[-1].smax == 12

    assert math.isnan(predictor.predict())
    assert len(model.seen) == 1


def test_custom_empty_result_value() -> None:
    streams, model = _setup()
    predictor = new_predictor("p", model, streams, "eeg", empty_result_value=None)
    assert predictor.predict() is None


def test_predict_at_markers_uses_epoch_after_marker() -> None:
    streams, model = _setup(epoch=(0.0, 0.04))
    predictor = new_predictor("p", model, streams, "eeg", predict_at=["go"])
    handle = streams.get("eeg")

    handle.append(np.zeros((2, 10)), [Marker("go", 3.0), Marker("other", 4.0), Marker("go", 8.0)])
    first = predictor.predict("mode")

    np.testing.assert_array_equal(first, [2.0])
    assert model.seen[0].start_index == 3
    assert model.seen[0].n_samples == 5
    assert [m.type for m in model.seen[0].events] == ["go", "other"]

    assert math.isnan(predictor.predict())

    handle.append(np.zeros((2, 5)))
    second = predictor.predict()
    np.testing.assert_array_equal(second, [[0.25, 0.75]])
    assert model.seen[1].start_index == 8


def test_predict_rejects_unknown_format() -> None:
    streams, model = _setup()
    predictor = new_predictor("p", model, streams, "eeg")
    with pytest.raises(InvalidArgumentError):
        predictor.predict("probability")


def test_predictor_registry_tokens() -> None:
    streams, model = _setup()
    registry = PredictorRegistry()
    first = new_predictor("p", model, streams, "eeg", predictors=registry)
    assert registry.resolve("p", first.predictor_id) is first

    second = new_predictor("p", model, streams, "eeg", predictors=registry)
    assert registry.get("p") is second
    with pytest.raises(StaleBindingError):
        registry.resolve("p", first.predictor_id)

    registry.remove("p")
    with pytest.raises(NotFoundError):
        registry.get("p")


def test_new_predictor_validates_model() -> None:
    streams, _ = _setup()

    class NoExpression:
        def predict(self, chunk):
            return chunk

    with pytest.raises(InvalidArgumentError):
        new_predictor("p", NoExpression(), streams, "eeg")
    with pytest.raises(InvalidArgumentError):
        new_predictor("", RecordingModel(None), streams, "eeg")
