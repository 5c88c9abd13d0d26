"""Online prediction: predictors, timer drivers and background scheduling."""

from .background import default_predictors, start_background
from .predictor import (
    OUTPUT_FORMATS,
    Model,
    Predictor,
    PredictorRegistry,
    format_output,
    new_predictor,
)
from .scheduler import PeriodicScheduler, SchedulerState
from .timers import ManualTimerDriver, QtTimerDriver, ThreadTimerDriver, TimerDriver, TimerHandle

__all__ = [
    "OUTPUT_FORMATS",
    "Model",
    "Predictor",
    "PredictorRegistry",
    "format_output",
    "new_predictor",
    "PeriodicScheduler",
    "SchedulerState",
    "ManualTimerDriver",
    "QtTimerDriver",
    "ThreadTimerDriver",
    "TimerDriver",
    "TimerHandle",
    "default_predictors",
    "start_background",
]
