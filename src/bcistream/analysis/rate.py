from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

MAX_TICKS_TRACKED = 300


class RateController:
    """
    Estimate the rate at which ticks (or samples) actually arrive.

    Notes
    -----
    - Timestamps are assumed to be in seconds (monotonic increasing).
    - The estimate covers the last ``window_size`` timestamps only, so it
      follows drifts in the timer or the acquisition clock.
    """

    def __init__(self, window_size: int = 100, default_hz: float = 0.0) -> None:
        if window_size <= 1:
            raise ValueError("window_size must be > 1")
        self._times: Deque[float] = deque(maxlen=window_size)
        self.default_hz = float(default_hz)

    def add_time(self, t: float) -> None:
        """
        Append a new timestamp.

        Parameters
        ----------
        t:
            Timestamp in seconds (monotonic increasing).
        """
        self._times.append(float(t))

    @property
    def estimated_hz(self) -> float:
        """Estimate Hz from the current timestamp window."""
        if len(self._times) < 2:
            return self.default_hz
        span = self._times[-1] - self._times[0]
        if span <= 0:
            return self.default_hz
        return (len(self._times) - 1) / span

    @property
    def span_s(self) -> float:
        """Time span (seconds) covered by the current timestamp window."""
        if len(self._times) < 2:
            return 0.0
        return self._times[-1] - self._times[0]

    def reset(self) -> None:
        self._times.clear()


@dataclass
class TickStats:
    """Ring-buffer style tracking of recent scheduler tick performance."""

    period_s: float
    tick_durations: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_TICKS_TRACKED))
    rate: RateController = field(default_factory=RateController)
    ticks: int = 0
    overruns: int = 0
    skipped: int = 0
    last_tick_at: Optional[float] = None

    def record_tick(self, start_ts: float, end_ts: float) -> bool:
        """Add one tick; returns True when it took longer than the period."""
        duration = end_ts - start_ts
        self.tick_durations.append(duration)
        self.rate.add_time(start_ts)
        self.ticks += 1
        self.last_tick_at = start_ts
        overrun = duration > self.period_s
        if overrun:
            self.overruns += 1
        return overrun

    def record_skipped(self, count: int = 1) -> None:
        """Track timer ticks that were dropped because the previous one ran late."""
        self.skipped += int(count)

    def avg_tick_ms(self) -> float:
        if not self.tick_durations:
            return 0.0
        return 1000.0 * sum(self.tick_durations) / len(self.tick_durations)

    def max_tick_ms(self) -> float:
        if not self.tick_durations:
            return 0.0
        return 1000.0 * max(self.tick_durations)

    def as_dict(self) -> dict[str, float]:
        """
        Return a snapshot of commonly-used metrics.

        This is useful for structured logging when a scheduler stops.
        """
        return {
            "ticks": float(self.ticks),
            "tick_hz": self.rate.estimated_hz,
            "avg_tick_ms": self.avg_tick_ms(),
            "max_tick_ms": self.max_tick_ms(),
            "overruns": float(self.overruns),
            "skipped": float(self.skipped),
        }

    def reset(self) -> None:
        """Clear all stored samples."""
        self.tick_durations.clear()
        self.rate.reset()
        self.ticks = 0
        self.overruns = 0
        self.skipped = 0
        self.last_tick_at = None
