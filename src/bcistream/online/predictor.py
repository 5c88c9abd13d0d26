"""
Predictors: a calibrated model applied to the output of its live pipeline.

The model itself (training, feature extraction, classification) is external;
it only has to satisfy the small :class:`Model` protocol.
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from ..core.models import Chunk
from ..core.stream import StreamRegistry
from ..errors import InvalidArgumentError, NotFoundError, StaleBindingError
from ..pipeline.evaluator import IncrementalEvaluator
from ..pipeline.expression import Expression
from ..pipeline.graph import PipelineGraph, new_pipeline

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("distribution", "expectation", "mode", "raw")
DEFAULT_WINDOW_SECONDS = 1.0


@runtime_checkable
class Model(Protocol):
    """What a calibrated model has to provide.

    ``predict`` receives a chunk of pipeline output and returns either one
    row of class probabilities / raw outputs, or one row per trial.
    Optional attributes: ``classes`` (values the probability columns stand
    for), ``window`` (seconds of output to predict on), ``epoch``
    (``(tmin, tmax)`` seconds around a marker, used with predict-at markers).
    """

    expression: Expression

    def predict(self, chunk: Chunk) -> Any:  # pragma: no cover - protocol
        ...


def format_output(raw: Any, output_format: str, classes: Optional[Sequence[Any]] = None) -> Any:
    """Convert raw model output into the requested output format."""
    if output_format not in OUTPUT_FORMATS:
        raise InvalidArgumentError(
            "output_format", f"Unsupported output format {output_format!r}; expected one of {OUTPUT_FORMATS}."
        )
    if output_format == "raw":
        return raw
    probs = np.atleast_2d(np.asarray(raw, dtype=float))
    if output_format == "distribution":
        return probs
    values = np.asarray(classes if classes is not None else np.arange(1, probs.shape[1] + 1), dtype=float)
    if values.shape[0] != probs.shape[1]:
        raise InvalidArgumentError(
            "classes", f"model lists {values.shape[0]} classes but predicted {probs.shape[1]} probabilities"
        )
    if output_format == "expectation":
        return probs @ values
    return values[np.argmax(probs, axis=1)]


class Predictor:
    """
    A model bound to a pipeline over live streams.

    Without ``predict_at`` every :meth:`predict` call predicts on the most
    recent ``model.window`` seconds of pipeline output, provided new samples
    arrived since the last call. With ``predict_at`` it predicts once for each
    newly seen marker of a listed type, as soon as the epoch around that
    marker is available.
    """

    def __init__(
        self,
        name: str,
        model: Model,
        pipeline: PipelineGraph,
        *,
        predict_at: Sequence[str] = (),
        empty_result_value: Any = math.nan,
    ) -> None:
        self.name = name
        self.predictor_id = uuid.uuid4().hex
        self.model = model
        self.pipeline = pipeline
        self.evaluator = IncrementalEvaluator(pipeline)
        self.predict_at = tuple(predict_at)
        self.empty_result_value = empty_result_value
        self._last_predicted_smax = 0
        self._pending_markers: List[int] = []
        self._marker_scan_smax = 0

    def __repr__(self) -> str:
        return f"Predictor(name={self.name!r}, predict_at={self.predict_at}, pipeline={self.pipeline!r})"

    @property
    def window_samples(self) -> int:
        window = getattr(self.model, "window", None) or DEFAULT_WINDOW_SECONDS
        return max(1, int(round(float(window) * self.pipeline.srate)))

    @property
    def epoch_samples(self) -> tuple[int, int]:
        epoch = getattr(self.model, "epoch", None)
        if epoch is None:
            return 0, self.window_samples - 1
        tmin, tmax = epoch
        srate = self.pipeline.srate
        return int(round(float(tmin) * srate)), int(round(float(tmax) * srate))

    def predict(self, output_format: str = "distribution") -> Any:
        """Advance the pipeline and return a formatted prediction (or the empty value)."""
        if output_format not in OUTPUT_FORMATS:
            raise InvalidArgumentError(
                "output_format", f"Unsupported output format {output_format!r}; expected one of {OUTPUT_FORMATS}."
            )
        self.evaluator.evaluate()
        if self.predict_at:
            raw = self._predict_at_markers()
        else:
            raw = self._predict_latest()
        if raw is None:
            return self.empty_result_value
        return format_output(raw, output_format, getattr(self.model, "classes", None))

    def _predict_latest(self) -> Any:
        output = self.pipeline.output
        smax = output.smax
        window = self.window_samples
        if smax == self._last_predicted_smax or smax < window:
            return None
        chunk = self.pipeline.peek_output(min(window, output.capacity), "samples")
        self._last_predicted_smax = smax
        return self.model.predict(chunk)

    def _predict_at_markers(self) -> Any:
        output = self.pipeline.output
        smax = output.smax
        if smax > self._marker_scan_smax:
            start = max(self._marker_scan_smax + 1, smax - output.capacity + 1)
            for marker in output.read_markers(start, smax):
                if marker.type in self.predict_at:
                    self._pending_markers.append(start + int(marker.latency) - 1)
            self._marker_scan_smax = smax

        begin, end = self.epoch_samples
        results: List[np.ndarray] = []
        remaining: List[int] = []
        for position in self._pending_markers:
            first, last = position + begin, position + end
            if last > smax:
                remaining.append(position)
                continue
            if smax - first >= output.capacity or first < 1:
                logger.warning(
                    "Predictor %r skipped a marker at sample %d: its epoch is no longer buffered",
                    self.name,
                    position,
                )
                continue
            count = last - first + 1
            chunk = self.pipeline.peek_output(smax - first + 1, "samples").slice_samples(0, count)
            results.append(np.atleast_2d(np.asarray(self.model.predict(chunk), dtype=float)))
        self._pending_markers = remaining
        if not results:
            return None
        return np.vstack(results)


class PredictorRegistry:
    """Mapping of name -> :class:`Predictor`, mirroring :class:`StreamRegistry`."""

    def __init__(self) -> None:
        self._predictors: Dict[str, Predictor] = {}
        self._lock = threading.RLock()

    def add(self, predictor: Predictor) -> None:
        with self._lock:
            previous = self._predictors.get(predictor.name)
            self._predictors[predictor.name] = predictor
        if previous is not None and previous is not predictor:
            logger.info("Predictor %r replaced", predictor.name)

    def get(self, name: str) -> Predictor:
        with self._lock:
            predictor = self._predictors.get(name)
        if predictor is None:
            raise NotFoundError(f"The predictor named {name!r} was not found.")
        return predictor

    def resolve(self, name: str, expected_id: Optional[str] = None) -> Predictor:
        predictor = self.get(name)
        if expected_id is not None and predictor.predictor_id != expected_id:
            raise StaleBindingError(f"The predictor {name!r} was replaced.")
        return predictor

    def remove(self, name: str) -> Optional[Predictor]:
        with self._lock:
            return self._predictors.pop(name, None)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._predictors.keys())

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._predictors


def new_predictor(
    name: str,
    model: Model,
    streams: StreamRegistry,
    stream_names: Optional[Sequence[str] | str] = None,
    *,
    predict_at: Sequence[str] = (),
    empty_result_value: Any = math.nan,
    predictors: Optional[PredictorRegistry] = None,
    needed_channels: Optional[Sequence[str]] = None,
    output_capacity: Optional[int] = None,
) -> Predictor:
    """Build the model's pipeline over ``stream_names`` and register a new predictor."""
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError("predictor_name", f"predictor names must be non-empty strings, got {name!r}")
    expression = getattr(model, "expression", None)
    if expression is None:
        raise InvalidArgumentError("model", "The model does not carry a calibrated filter expression.")
    pipeline = new_pipeline(
        expression,
        streams,
        stream_names,
        needed_channels,
        output_capacity=output_capacity,
    )
    predictor = Predictor(
        name,
        model,
        pipeline,
        predict_at=predict_at,
        empty_result_value=empty_result_value,
    )
    if predictors is not None:
        predictors.add(predictor)
    return predictor
