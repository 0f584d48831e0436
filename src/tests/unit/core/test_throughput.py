"""Tests for ThroughputEstimator."""

from fleethub.core.domain import ThroughputEstimator


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestThroughputEstimator:
    def test_first_sample_sets_baseline(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(clock=clock)
        assert est.update(0) is None
        assert est.eta(0, 1000) is None

    def test_smoothing(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(alpha=0.4, min_interval=0.5, clock=clock)
        est.update(0)

        clock.now = 1.0
        assert est.update(100) == 100.0

        clock.now = 2.0
        # 100 * 0.6 + 200 * 0.4
        assert est.update(300) == 140.0
        assert est.eta(300, 1000) == 5

    def test_samples_are_throttled(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(min_interval=0.5, clock=clock)
        est.update(0)
        clock.now = 1.0
        est.update(100)

        clock.now = 1.2
        assert est.update(1_000_000) == 100.0

    def test_stalled_counter_keeps_rate(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(clock=clock)
        est.update(0)
        clock.now = 1.0
        est.update(100)
        clock.now = 5.0
        assert est.update(100) == 100.0

    def test_eta_at_completion(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(clock=clock)
        est.update(0)
        clock.now = 1.0
        est.update(100)
        assert est.eta(100, 100) == 0

    def test_reset(self) -> None:
        clock = FakeClock()
        est = ThroughputEstimator(clock=clock)
        est.update(0)
        clock.now = 1.0
        est.update(100)
        est.reset()
        assert est.rate is None
