"""Periodic execution of a prediction task with lifecycle checks."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Any, Callable, Optional

from ..analysis.rate import TickStats
from ..errors import InvalidArgumentError
from .timers import ThreadTimerDriver, TimerDriver, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_OVERRUN_WARN_AFTER = 5


class SchedulerState(enum.Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"


class PeriodicScheduler:
    """
    Call ``task`` every ``period`` seconds and hand its value to ``result_writer``.

    Per tick: ``check_alive()`` first (returning False or raising a
    ``LookupError`` means what the task is bound to went away, which stops
    the scheduler quietly), then ``task()`` (an exception stops the
    scheduler), then ``result_writer(value)`` (an exception is logged and the
    scheduler keeps going).
    """

    def __init__(
        self,
        task: Callable[[], Any],
        result_writer: Callable[[Any], None],
        period: float,
        *,
        start_delay: float = 0.0,
        check_alive: Optional[Callable[[], bool]] = None,
        driver: Optional[TimerDriver] = None,
        name: str = "scheduler",
        overrun_warn_after: int = DEFAULT_OVERRUN_WARN_AFTER,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        if not callable(task):
            raise InvalidArgumentError("task", "the scheduled task must be callable")
        if not callable(result_writer):
            raise InvalidArgumentError("result_writer", "the result writer must be callable")
        if not period > 0:
            raise InvalidArgumentError("period", f"period must be > 0 seconds, got {period}")
        if start_delay < 0:
            raise InvalidArgumentError("start_delay", f"start delay must be >= 0 seconds, got {start_delay}")
        self.task = task
        self.result_writer = result_writer
        self.period = float(period)
        self.start_delay = float(start_delay)
        self.check_alive = check_alive
        self.driver: TimerDriver = driver if driver is not None else ThreadTimerDriver()
        self.name = name
        self.overrun_warn_after = max(1, int(overrun_warn_after))
        self.clock = clock
        self.stats = TickStats(period_s=self.period)
        self.state = SchedulerState.CREATED
        self.stop_reason: Optional[str] = None
        self.error: Optional[BaseException] = None
        self.last_result: Any = None
        # set by start_background to the predictor this scheduler drives
        self.predictor: Any = None
        self._timer: Optional[TimerHandle] = None
        self._consecutive_overruns = 0
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"PeriodicScheduler(name={self.name!r}, period={self.period}, state={self.state.value})"

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    def start(self) -> "PeriodicScheduler":
        with self._lock:
            if self.state is not SchedulerState.CREATED:
                raise RuntimeError(f"Scheduler {self.name!r} was already started")
            self.state = SchedulerState.RUNNING
            self._timer = self.driver.schedule(self.period, self.start_delay, self._tick, name=self.name)
        logger.info(
            "Scheduler %r started: every %.3f s after %.3f s",
            self.name,
            self.period,
            self.start_delay,
        )
        return self

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop the scheduler. Calling it again is a no-op."""
        with self._lock:
            if self.state is SchedulerState.STOPPED:
                return
            self.state = SchedulerState.STOPPED
            self.stop_reason = reason
            timer, self._timer = self._timer, None
        if timer is not None:
            self.stats.record_skipped(getattr(timer, "skipped", 0))
            timer.cancel()
        logger.info("Scheduler %r stopped (%s); %s", self.name, reason, self.stats.as_dict())

    stop = cancel

    def _tick(self) -> None:
        with self._lock:
            if self.state is not SchedulerState.RUNNING:
                return
            started = self.clock()
            if not self._alive():
                return
            try:
                value = self.task()
            except Exception as exc:
                self.error = exc
                logger.exception("Scheduler %r task failed; stopping", self.name)
                self.cancel("task failed")
                return
            self.last_result = value
            try:
                self.result_writer(value)
            except Exception:
                logger.exception("Result writer of scheduler %r raised", self.name)
            self._record(started, self.clock())

    def _alive(self) -> bool:
        if self.check_alive is None:
            return True
        try:
            alive = self.check_alive()
        except LookupError as exc:
            self.cancel(f"binding gone: {exc}")
            return False
        except Exception as exc:
            self.error = exc
            logger.exception("Liveness check of scheduler %r failed; stopping", self.name)
            self.cancel("liveness check failed")
            return False
        if not alive:
            self.cancel("binding gone")
            return False
        return True

    def _record(self, started: float, finished: float) -> None:
        if self.stats.record_tick(started, finished):
            self._consecutive_overruns += 1
            if self._consecutive_overruns == self.overrun_warn_after:
                logger.warning(
                    "Scheduler %r overran its %.3f s period %d ticks in a row (last tick %.1f ms)",
                    self.name,
                    self.period,
                    self._consecutive_overruns,
                    1000.0 * (finished - started),
                )
        else:
            self._consecutive_overruns = 0
