"""Signal-processing helpers and runtime diagnostics."""

from .filters import butter_design, causal_filter, initial_conditions
from .rate import RateController, TickStats

__all__ = [
    "butter_design",
    "causal_filter",
    "initial_conditions",
    "RateController",
    "TickStats",
]
