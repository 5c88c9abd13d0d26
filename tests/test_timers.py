from __future__ import annotations

import threading

import pytest

from bcistream.errors import InvalidArgumentError
from bcistream.online.timers import ManualTimerDriver, QtTimerDriver, ThreadTimerDriver


def test_manual_driver_fires_after_delay_then_periodically() -> None:
    driver = ManualTimerDriver()
    fired: list[float] = []
    driver.schedule(0.1, 0.5, lambda: fired.append(driver.now))

    assert driver.advance(0.4) == 0
    assert driver.advance(0.1) == 1
    assert driver.advance(0.35) == 3

    assert fired == pytest.approx([0.5, 0.6, 0.7, 0.8])
    assert driver.now == pytest.approx(0.85)


def test_manual_driver_interleaves_timers_in_time_order() -> None:
    driver = ManualTimerDriver()
    order: list[str] = []
    driver.schedule(0.3, 0.0, lambda: order.append("slow"))
    driver.schedule(0.2, 0.1, lambda: order.append("fast"))

    driver.advance(0.65)

    assert order == ["slow", "fast", "slow", "fast", "fast", "slow"]


def test_manual_timer_cancelled_from_its_own_callback() -> None:
    driver = ManualTimerDriver()
    calls: list[int] = []

    def tick() -> None:
        calls.append(1)
        if len(calls) == 2:
            handle.cancel()

    handle = driver.schedule(1.0, 0.0, tick)
    driver.advance(10.0)

    assert len(calls) == 2
    assert not handle.active
    assert driver.active_timers == 0


def test_invalid_timing_is_rejected() -> None:
    driver = ManualTimerDriver()
    with pytest.raises(InvalidArgumentError):
        driver.schedule(0.0, 0.0, lambda: None)
    with pytest.raises(InvalidArgumentError):
        driver.schedule(1.0, -1.0, lambda: None)
    with pytest.raises(InvalidArgumentError):
        driver.advance(-1.0)


def test_thread_driver_ticks_until_cancelled() -> None:
    done = threading.Event()
    calls: list[int] = []

    def tick() -> None:
        calls.append(1)
        if len(calls) >= 3:
            done.set()

    handle = ThreadTimerDriver().schedule(0.01, 0.0, tick, name="test")
    assert done.wait(5.0)
    handle.cancel(join=True, timeout=5.0)

    assert not handle.active
    count = len(calls)
    assert count >= 3
    assert not handle.thread.is_alive()


def test_thread_timer_can_cancel_itself() -> None:
    done = threading.Event()
    holder: dict = {}

    def tick() -> None:
        holder["handle"].cancel(join=True)
        done.set()

    holder["handle"] = ThreadTimerDriver().schedule(0.01, 0.0, tick)
    assert done.wait(5.0)
    holder["handle"].thread.join(5.0)
    assert not holder["handle"].active


def test_qt_driver_runs_on_event_loop() -> None:
    qt_core = pytest.importorskip("PySide6.QtCore")
    app = qt_core.QCoreApplication.instance() or qt_core.QCoreApplication([])
    calls: list[int] = []

    def tick() -> None:
        calls.append(1)
        if len(calls) == 3:
            handle.cancel()
            app.quit()

    handle = QtTimerDriver().schedule(0.01, 0.0, tick, name="qt-test")
    qt_core.QTimer.singleShot(5000, app.quit)
    app.exec()

    assert len(calls) == 3
    assert not handle.active
