"""Tests for rolling-window health profiling."""

import threading

import pytest

from model_gateway.health import HealthProfiler, HealthSample


def _sample(model_id: str, success: bool, latency_ms: float = 100.0, cost: float = 0.0) -> HealthSample:
    return HealthSample(model_id=model_id, success=success, latency_ms=latency_ms, cost=cost)


class TestHealthScore:
    """Test health_score() and is_healthy()."""

    def test_no_samples_is_fully_healthy(self):
        """Models never tried score 100 so they can be attempted."""
        profiler = HealthProfiler()

        assert profiler.health_score("gpt-4o") == 100.0
        assert profiler.is_healthy("gpt-4o", threshold=40)

    def test_all_failures_score_zero(self):
        profiler = HealthProfiler()
        for _ in range(5):
            profiler.record("m", _sample("m", False))

        assert profiler.health_score("m") == 0.0
        assert not profiler.is_healthy("m", threshold=40)

    def test_recent_outcomes_weigh_more(self):
        """Same success count scores higher when the successes are recent."""
        recovering = HealthProfiler()
        degrading = HealthProfiler()
        for success in [False, False, True, True]:
            recovering.record("m", _sample("m", success))
        for success in [True, True, False, False]:
            degrading.record("m", _sample("m", success))

        # weights 1..4: recovering = (3+4)/10, degrading = (1+2)/10
        assert recovering.health_score("m") == 70.0
        assert degrading.health_score("m") == 30.0

    def test_full_recovery_after_window_of_successes(self):
        """Failures roll out of the window; a full window of successes scores 100."""
        profiler = HealthProfiler(window_size=5)
        for _ in range(5):
            profiler.record("m", _sample("m", False))
        assert profiler.health_score("m") < 100.0

        for _ in range(5):
            profiler.record("m", _sample("m", True))

        assert profiler.health_score("m") == 100.0
        assert profiler.get_stats("m")["sample_count"] == 5

    def test_score_stays_in_range(self):
        profiler = HealthProfiler()
        for i in range(20):
            profiler.record("m", _sample("m", i % 3 == 0))

        assert 0.0 <= profiler.health_score("m") <= 100.0

    def test_threshold_boundary_is_inclusive(self):
        profiler = HealthProfiler()
        for success in [True, True, False, False]:
            profiler.record("m", _sample("m", success))

        assert profiler.is_healthy("m", threshold=30.0)
        assert not profiler.is_healthy("m", threshold=30.01)


class TestWindow:
    """Test the bounded FIFO window."""

    def test_window_evicts_oldest(self):
        """Failures pushed out of the window no longer count."""
        profiler = HealthProfiler(window_size=3)
        profiler.record("m", _sample("m", False))
        for _ in range(3):
            profiler.record("m", _sample("m", True))

        assert profiler.get_stats("m")["sample_count"] == 3
        assert profiler.health_score("m") == 100.0

    def test_models_are_independent(self):
        profiler = HealthProfiler()
        profiler.record("a", _sample("a", False))

        assert profiler.health_score("a") == 0.0
        assert profiler.health_score("b") == 100.0

    def test_invalid_window_size_rejected(self):
        with pytest.raises(ValueError):
            HealthProfiler(window_size=0)


class TestStats:
    """Test get_stats(), snapshot() and reset()."""

    def test_stats_aggregate_window(self):
        profiler = HealthProfiler()
        profiler.record("m", _sample("m", True, latency_ms=100, cost=0.01))
        profiler.record("m", _sample("m", False, latency_ms=300, cost=0.0))

        stats = profiler.get_stats("m")

        assert stats["sample_count"] == 2
        assert stats["success_rate"] == 0.5
        assert stats["avg_latency_ms"] == 200.0
        assert stats["window_cost"] == pytest.approx(0.01)

    def test_snapshot_lists_sampled_models(self):
        profiler = HealthProfiler()
        profiler.record("a", _sample("a", True))
        profiler.record("b", _sample("b", False))

        assert set(profiler.snapshot()) == {"a", "b"}

    def test_reset_one_and_all(self):
        profiler = HealthProfiler()
        profiler.record("a", _sample("a", False))
        profiler.record("b", _sample("b", False))

        profiler.reset("a")
        assert profiler.health_score("a") == 100.0
        assert profiler.health_score("b") == 0.0

        profiler.reset()
        assert profiler.snapshot() == {}


class TestConcurrency:
    """Test thread safety of record()."""

    def test_concurrent_records_are_not_lost(self):
        profiler = HealthProfiler(window_size=10000)

        def worker():
            for _ in range(500):
                profiler.record("m", _sample("m", True))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert profiler.get_stats("m")["sample_count"] == 2000
