from bcistream.analysis.rate import RateController, TickStats


def test_rate_controller_estimates_rate_for_regular_samples() -> None:
    rc = RateController(window_size=100)
    t = 0.0
    for _ in range(100):
        rc.add_time(t)
        t += 0.01  # 100 Hz
    est = rc.estimated_hz
    assert 90.0 < est < 110.0


def test_rate_controller_falls_back_to_default() -> None:
    rc = RateController(window_size=10, default_hz=5.0)
    assert rc.estimated_hz == 5.0
    rc.add_time(1.0)
    rc.add_time(1.0)
    assert rc.estimated_hz == 5.0
    assert rc.span_s == 0.0


def test_tick_stats_counts_overruns() -> None:
    stats = TickStats(period_s=0.1)
    assert stats.record_tick(0.0, 0.05) is False
    assert stats.record_tick(0.1, 0.3) is True
    stats.record_skipped(2)

    snapshot = stats.as_dict()

    assert snapshot["ticks"] == 2.0
    assert snapshot["overruns"] == 1.0
    assert snapshot["skipped"] == 2.0
    assert abs(snapshot["max_tick_ms"] - 200.0) < 1e-6
    assert abs(snapshot["tick_hz"] - 10.0) < 1e-6

    stats.reset()
    assert stats.as_dict()["ticks"] == 0.0
