"""Opt-in timing of pipeline ticks and node evaluations (``BCISTREAM_DEBUG``)."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Iterator, MutableMapping, Optional

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


def debug_enabled() -> bool:
    """True when ``BCISTREAM_DEBUG`` is set to a truthy value."""
    return os.getenv("BCISTREAM_DEBUG", "").lower() in _TRUTHY


@contextmanager
def time_block(
    label: str,
    *,
    timings: Optional[MutableMapping[str, float]] = None,
    enabled: Optional[bool] = None,
) -> Iterator[None]:
    """
    Log the wall time spent in the block at DEBUG level.

    Runs only when ``enabled`` is true (default: :func:`debug_enabled`).
    Elapsed milliseconds are also added to ``timings[label]`` when a mapping
    is given, so repeated blocks accumulate.
    """
    if not (debug_enabled() if enabled is None else enabled):
        yield
        return

    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if timings is not None:
            timings[label] = timings.get(label, 0.0) + elapsed_ms
        logger.debug("%s took %.3f ms", label, elapsed_ms)
