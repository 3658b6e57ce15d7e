"""
Unit tests for the fixed-window rate limiter.
"""

import threading

import pytest

from igrotrend_auth.rate_limiter import RateLimiter, RateLimitPolicy
from tests.helpers import FakeClock


class TestRateLimiter:

    @pytest.mark.parametrize("limit,window_ms", [(1, 1000), (5, 60_000), (10, 3_600_000)])
    def test_rejects_call_after_limit_within_window(self, limit, window_ms):
        limiter = RateLimiter(clock=FakeClock())
        results = [limiter.check("login:1.2.3.4", limit, window_ms) for _ in range(limit + 1)]
        assert results[:limit] == [True] * limit
        assert results[limit] is False

    @pytest.mark.parametrize("limit,window_ms", [(1, 1000), (5, 60_000)])
    def test_accepts_first_call_after_window(self, limit, window_ms):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(limit + 3):
            limiter.check("k", limit, window_ms)
        clock.advance(window_ms)
        assert limiter.check("k", limit, window_ms)

    def test_rejection_does_not_reset_window(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        assert limiter.check("k", 1, 1000)
        clock.advance(600)
        assert not limiter.check("k", 1, 1000)
        clock.advance(300)
        assert not limiter.check("k", 1, 1000)
        clock.advance(100)
        assert limiter.check("k", 1, 1000)

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        assert limiter.check("login:a", 1, 1000)
        assert not limiter.check("login:a", 1, 1000)
        assert limiter.check("login:b", 1, 1000)
        assert limiter.check("verify:a", 1, 1000)

    def test_reset_clears_one_key(self):
        limiter = RateLimiter(clock=FakeClock())
        limiter.check("k", 1, 1000)
        assert not limiter.check("k", 1, 1000)
        limiter.reset("k")
        assert limiter.check("k", 1, 1000)

    def test_invalid_arguments(self):
        limiter = RateLimiter()
        with pytest.raises(ValueError):
            limiter.check("k", 0, 1000)
        with pytest.raises(ValueError):
            limiter.check("k", 1, 0)

    def test_purge_expired(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("old", 5, 100)
        clock.advance(200)
        limiter.check("new", 5, 1000)
        assert limiter.purge_expired() == 1

    def test_expired_keys_swept_during_checks(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock, sweep_interval=3)
        limiter.check("login:1.1.1.1", 5, 100)
        limiter.check("login:2.2.2.2", 5, 100)
        assert len(limiter) == 2

        clock.advance(200)
        limiter.check("login:3.3.3.3", 5, 100)
        assert len(limiter) == 1

    def test_sweep_keeps_live_windows(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock, sweep_interval=2)
        assert limiter.check("k", 1, 1000)
        clock.advance(10)
        assert not limiter.check("k", 1, 1000)
        assert not limiter.check("k", 1, 1000)

    def test_concurrent_increments_are_not_lost(self):
        limiter = RateLimiter()
        allowed = []
        lock = threading.Lock()

        def hit():
            result = limiter.check("shared", 10, 60_000)
            with lock:
                allowed.append(result)

        threads = [threading.Thread(target=hit) for _ in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert allowed.count(True) == 10
        assert allowed.count(False) == 90


class TestRateLimitPolicy:

    def test_uses_configured_thresholds_per_action(self):
        policy = RateLimitPolicy(RateLimiter(clock=FakeClock()), {'login': (2, 1000)})
        assert policy.allow('login', '1.1.1.1')
        assert policy.allow('login', '1.1.1.1')
        assert not policy.allow('login', '1.1.1.1')
        assert policy.allow('login', '2.2.2.2')

    def test_unknown_action_falls_back_to_default(self):
        policy = RateLimitPolicy(RateLimiter(clock=FakeClock()), {})
        limit, _ = RateLimitPolicy.DEFAULT
        results = [policy.allow('other', None) for _ in range(limit + 1)]
        assert results[-1] is False
