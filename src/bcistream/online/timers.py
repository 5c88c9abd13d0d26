"""
Timer drivers for :class:`~bcistream.online.scheduler.PeriodicScheduler`.

A driver fires a callback after an initial delay and then once per period
until the returned handle is cancelled. Three drivers are provided:

- :class:`ManualTimerDriver` runs on a fake clock advanced explicitly, for
  tests and offline replays.
- :class:`ThreadTimerDriver` runs each timer on its own daemon thread.
- :class:`QtTimerDriver` runs on a Qt event loop through ``QTimer``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Protocol

from ..errors import InvalidArgumentError

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle(Protocol):
    skipped: int

    @property
    def active(self) -> bool:  # pragma: no cover - protocol
        ...

    def cancel(self) -> None:  # pragma: no cover - protocol
        ...


class TimerDriver(Protocol):
    def schedule(
        self,
        period: float,
        delay: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> TimerHandle:  # pragma: no cover - protocol
        ...


def _check_timing(period: float, delay: float) -> tuple[float, float]:
    period = float(period)
    delay = float(delay)
    if not period > 0:
        raise InvalidArgumentError("period", f"timer period must be > 0 seconds, got {period}")
    if delay < 0:
        raise InvalidArgumentError("start_delay", f"timer start delay must be >= 0 seconds, got {delay}")
    return period, delay


class ManualTimer:
    def __init__(self, driver: "ManualTimerDriver", period: float, due: float, callback: Callback, name: str) -> None:
        self._driver = driver
        self.period = period
        self.due = due
        self.callback = callback
        self.name = name
        self.skipped = 0
        self.fired = 0
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False

    def __repr__(self) -> str:
        return f"ManualTimer(name={self.name!r}, period={self.period}, due={self.due}, active={self._active})"


class ManualTimerDriver:
    """
    Deterministic driver on a fake clock.

    Nothing fires until :meth:`advance` moves the clock; every due tick then
    fires in time order, so a timer never misses a tick.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = float(start)
        self.timers: List[ManualTimer] = []

    def schedule(
        self,
        period: float,
        delay: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> ManualTimer:
        period, delay = _check_timing(period, delay)
        timer = ManualTimer(self, period, self.now + delay, callback, name or f"timer-{len(self.timers)}")
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> int:
        """Move the clock forward by ``seconds``; returns the number of ticks fired."""
        if seconds < 0:
            raise InvalidArgumentError("seconds", "the clock cannot go backwards")
        target = self.now + float(seconds)
        fired = 0
        while True:
            due = [timer for timer in self.timers if timer.active and timer.due <= target + 1e-12]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = max(self.now, timer.due)
            timer.due += timer.period
            timer.fired += 1
            fired += 1
            timer.callback()
        self.now = target
        self.timers = [timer for timer in self.timers if timer.active]
        return fired

    @property
    def active_timers(self) -> int:
        return sum(1 for timer in self.timers if timer.active)


class ThreadTimer:
    def __init__(self, period: float, delay: float, callback: Callback, name: str) -> None:
        self.period = period
        self.delay = delay
        self.callback = callback
        self.skipped = 0
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def active(self) -> bool:
        return not self.stop_event.is_set() and self.thread.is_alive()

    def start(self) -> None:
        self.thread.start()

    def cancel(self, *, join: bool = False, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if join and threading.current_thread() is not self.thread:
            self.thread.join(timeout)

    def _run(self) -> None:
        next_due = time.monotonic() + self.delay
        while not self.stop_event.wait(max(0.0, next_due - time.monotonic())):
            try:
                self.callback()
            except Exception:
                logger.exception("Timer callback on %s raised", self.thread.name)
            next_due += self.period
            now = time.monotonic()
            if now > next_due:
                # fixed rate: drop the ticks we are already late for
                missed = int((now - next_due) // self.period) + 1
                self.skipped += missed
                next_due += missed * self.period


class ThreadTimerDriver:
    """Run each timer on a dedicated daemon thread (fixed rate, late ticks skipped)."""

    def __init__(self, thread_name_prefix: str = "BciStreamTimer") -> None:
        self.thread_name_prefix = thread_name_prefix

    def schedule(
        self,
        period: float,
        delay: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> ThreadTimer:
        period, delay = _check_timing(period, delay)
        timer = ThreadTimer(period, delay, callback, f"{self.thread_name_prefix}({name or 'timer'})")
        timer.start()
        return timer


class QtTimer:
    def __init__(self, period: float, delay: float, callback: Callback, parent=None) -> None:
        from PySide6.QtCore import QTimer, Qt

        self.period = period
        self.callback = callback
        self.skipped = 0
        self._started = False
        self._timer = QTimer(parent)
        self._timer.setTimerType(Qt.PreciseTimer)
        self._timer.setInterval(max(0, int(round(delay * 1000.0))))
        self._timer.timeout.connect(self._on_timeout)
        self._timer.start()

    @property
    def active(self) -> bool:
        return self._timer.isActive()

    def _on_timeout(self) -> None:
        if not self._started:
            self._started = True
            self._timer.setInterval(max(1, int(round(self.period * 1000.0))))
        self.callback()

    def cancel(self) -> None:
        self._timer.stop()


class QtTimerDriver:
    """Drive timers from a running Qt event loop (requires the ``qt`` extra)."""

    def __init__(self, parent=None) -> None:
        self.parent = parent

    def schedule(
        self,
        period: float,
        delay: float,
        callback: Callback,
        *,
        name: Optional[str] = None,
    ) -> QtTimer:
        period, delay = _check_timing(period, delay)
        timer = QtTimer(period, delay, callback, self.parent)
        if name:
            timer._timer.setObjectName(name)
        return timer
