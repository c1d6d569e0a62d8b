"""Tests for the concurrency limiter."""

import threading
import time

import pytest

from mgp.engine.errors import ConfigError
from mgp.engine.limiter import Limiter

UNIT = 0.2


class _Gauge:
    """Tracks how many calls are in flight."""

    def __init__(self):
        self.lock = threading.Lock()
        self.now = 0
        self.peak = 0

    def __enter__(self):
        with self.lock:
            self.now += 1
            self.peak = max(self.peak, self.now)

    def __exit__(self, *exc):
        with self.lock:
            self.now -= 1


class TestLimiter:
    """Test the bound, ordering and error handling."""

    def test_rejects_zero(self):
        """Test max_parallel < 1 is a config error."""
        with pytest.raises(ConfigError):
            Limiter(0)

    def test_nine_jobs_three_slots(self):
        """Test 9 one-unit jobs with K=3 take about 3 units and never exceed 3."""
        gauge = _Gauge()

        def work(i):
            with gauge:
                time.sleep(UNIT)
            return i

        start = time.monotonic()
        results = list(Limiter(3).map_unordered(work, range(9)))
        wall = time.monotonic() - start

        assert sorted(results) == list(range(9))
        assert gauge.peak == 3
        assert wall >= 3 * UNIT * 0.9
        assert wall < 6 * UNIT

    def test_completion_order(self):
        """Test results come back as they finish, not as submitted."""
        delays = {"slow": 3 * UNIT, "fast": 0.0}

        def work(name):
            time.sleep(delays[name])
            return name

        out = list(Limiter(2).map_unordered(work, ["slow", "fast"]))
        assert out == ["fast", "slow"]

    def test_single_slot_is_sequential(self):
        """Test K=1 never overlaps."""
        gauge = _Gauge()

        def work(i):
            with gauge:
                time.sleep(0.01)
            return i

        assert len(list(Limiter(1).map_unordered(work, range(5)))) == 5
        assert gauge.peak == 1

    def test_worker_error_stays_in_future(self):
        """Test one failing call does not stop the others."""
        def work(i):
            if i == 2:
                raise RuntimeError("boom")
            return i

        done = {item: fut for item, fut in Limiter(2).imap_unordered(work, range(5))}
        assert len(done) == 5
        assert isinstance(done[2].exception(), RuntimeError)
        assert [done[i].result() for i in (0, 1, 3, 4)] == [0, 1, 3, 4]

    def test_empty_input(self):
        """Test nothing to do yields nothing."""
        assert list(Limiter(3).map_unordered(lambda x: x, [])) == []

    def test_nested_limiters(self):
        """Test K1 samples x K2 tasks peaks at K1*K2 without deadlock."""
        gauge = _Gauge()

        def task(t):
            with gauge:
                time.sleep(UNIT / 2)
            return t

        def sample(s):
            inner = Limiter(2, name=f"inner-{s}")
            return sorted(inner.map_unordered(task, [f"{s}:{t}" for t in range(4)]))

        out = list(Limiter(2).map_unordered(sample, ["A", "B", "C"]))
        assert sorted(r[0] for r in out) == ["A:0", "B:0", "C:0"]
        assert gauge.peak <= 4
