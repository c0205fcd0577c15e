"""
Tests for the login rate limiter.
"""

from print_order_backend.middleware import RateLimiter


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_blocks_after_limit_within_window(self):
        limiter = RateLimiter(requests_per_minute=2, clock=FakeClock())
        assert limiter.is_allowed("10.0.0.1")
        assert limiter.is_allowed("10.0.0.1")
        assert not limiter.is_allowed("10.0.0.1")
        assert limiter.is_allowed("10.0.0.2")

    def test_new_window_resets_count(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=1, clock=clock)
        assert limiter.is_allowed("10.0.0.1")
        assert not limiter.is_allowed("10.0.0.1")

        clock.now += 61
        assert limiter.is_allowed("10.0.0.1")

    def test_stale_entries_are_swept(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=5, clock=clock)
        for n in range(1000):
            limiter.is_allowed(f"10.0.{n // 256}.{n % 256}")
        assert len(limiter.requests) == 1000

        clock.now = 3600
        assert limiter.is_allowed("192.168.1.1")
        assert list(limiter.requests) == ["192.168.1.1"]

    def test_sweep_runs_at_most_once_per_window(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=5, clock=clock)
        limiter.is_allowed("a")

        clock.now = 61
        limiter.is_allowed("b")
        assert list(limiter.requests) == ["b"]

        # Within one window of the last sweep
        clock.now = 100
        limiter.is_allowed("c")
        assert set(limiter.requests) == {"b", "c"}

    def test_cleanup_drops_expired_entries(self):
        clock = FakeClock()
        limiter = RateLimiter(requests_per_minute=5, clock=clock)
        limiter.is_allowed("old")
        clock.now = 30
        limiter.is_allowed("recent")

        clock.now = 75
        limiter.cleanup()
        assert list(limiter.requests) == ["recent"]
