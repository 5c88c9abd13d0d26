"""Background prediction: periodically predict from a live stream and report results."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from ..config.runtime import OnlineConfig
from ..core.stream import StreamRegistry
from ..errors import InvalidArgumentError
from .predictor import OUTPUT_FORMATS, Model, PredictorRegistry, new_predictor
from .scheduler import PeriodicScheduler
from .timers import TimerDriver

logger = logging.getLogger(__name__)

# Predictors registered by start_background when the caller brings no registry.
default_predictors = PredictorRegistry()

_UNSET: Any = object()


def start_background(
    result_writer: Callable[[Any], None],
    streams: StreamRegistry,
    stream_name: str = "laststream",
    model: Optional[Model] = None,
    output_format: str = _UNSET,
    update_freq: float = _UNSET,
    start_delay: float = _UNSET,
    predictor_name: str = "lastpredictor",
    predict_at: Sequence[str] = (),
    empty_result_value: Any = _UNSET,
    predictors: Optional[PredictorRegistry] = None,
    driver: Optional[TimerDriver] = None,
    config: Optional[OnlineConfig] = None,
) -> PeriodicScheduler:
    """
    Bind ``model`` to ``stream_name`` and call ``result_writer`` with a
    prediction ``update_freq`` times per second.

    The scheduler stops by itself once the stream or the predictor is
    replaced or removed. Arguments left unset take their value from
    ``config`` (default: :class:`OnlineConfig`).

    Returns the started :class:`PeriodicScheduler`; call ``cancel()`` on it
    to stop early.
    """
    cfg = (config or OnlineConfig()).sanitized()
    if output_format is _UNSET:
        output_format = cfg.output_format
    if update_freq is _UNSET:
        update_freq = cfg.update_freq
    if start_delay is _UNSET:
        start_delay = cfg.start_delay
    if empty_result_value is _UNSET:
        empty_result_value = cfg.empty_result_value

    if not callable(result_writer):
        raise InvalidArgumentError("result_writer", "Please pass a function that receives the predictions.")
    if model is None:
        raise InvalidArgumentError("model", "No model given; calibrate a model before starting background prediction.")
    if output_format not in OUTPUT_FORMATS:
        raise InvalidArgumentError(
            "output_format", f"Unsupported output format {output_format!r}; expected one of {OUTPUT_FORMATS}."
        )
    if not update_freq or update_freq <= 0:
        raise InvalidArgumentError("update_freq", f"update_freq must be a positive frequency in Hz, got {update_freq}")
    if isinstance(predict_at, str):
        predict_at = (predict_at,)

    stream = streams.get(stream_name)
    registry = predictors if predictors is not None else default_predictors
    predictor = new_predictor(
        predictor_name,
        model,
        streams,
        stream_name,
        predict_at=predict_at,
        empty_result_value=empty_result_value,
        predictors=registry,
        output_capacity=cfg.output_capacity or None,
    )

    stream_id = stream.stream_id
    predictor_id = predictor.predictor_id
    bindings = [
        (predictor.pipeline.nodes[i].stream_name, predictor.pipeline.nodes[i].stream_id)
        for i in predictor.pipeline.leaves
    ]

    def check_alive() -> bool:
        streams.resolve(stream_name, expected_id=stream_id)
        for name, expected in bindings:
            streams.resolve(name, expected_id=expected)
        registry.resolve(predictor_name, expected_id=predictor_id)
        return True

    def task() -> Any:
        return predictor.predict(output_format)

    scheduler = PeriodicScheduler(
        task,
        result_writer,
        1.0 / float(update_freq),
        start_delay=start_delay,
        check_alive=check_alive,
        driver=driver,
        name=f"{predictor_name}@{stream_name}",
        overrun_warn_after=cfg.overrun_warn_after,
    )
    scheduler.predictor = predictor
    logger.info(
        "Background prediction %r on stream %r at %.2f Hz (%s output)",
        predictor_name,
        stream_name,
        float(update_freq),
        output_format,
    )
    return scheduler.start()
