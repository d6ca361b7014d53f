"""
Unit tests for the fixed-window rate limiter
"""
from datetime import timedelta

import pytest

from finguard.core.counter_store import CounterStore
from finguard.core.exceptions import CounterStoreError, RateLimitExceededError
from finguard.security.rate_limiting import UNLIMITED, RateLimiter

CLIENT = "198.51.100.23"


class BrokenStore(CounterStore):
    """Counter store whose backend is unreachable"""

    def increment(self, key, ttl):
        raise CounterStoreError("backend unreachable")

    def get(self, key):
        raise CounterStoreError("backend unreachable")

    def delete(self, key):
        raise CounterStoreError("backend unreachable")


class TestRateLimiter:
    """Test cases for RateLimiter"""

    def test_key_format(self):
        assert RateLimiter.key("login", CLIENT) == f"rate_limit:login:{CLIENT}"

    def test_limited_once_quota_recorded(self, limiter):
        for expected in range(1, 6):
            assert not limiter.is_limited("login", CLIENT)
            assert limiter.record_request("login", CLIENT) == expected

        assert limiter.is_limited("login", CLIENT)
        assert limiter.remaining_quota("login", CLIENT) == 0

    def test_remaining_quota_counts_down(self, limiter):
        assert limiter.remaining_quota("login", CLIENT) == 5
        limiter.record_request("login", CLIENT)
        limiter.record_request("login", CLIENT)
        assert limiter.remaining_quota("login", CLIENT) == 3

    def test_endpoints_and_callers_are_independent(self, limiter):
        for _ in range(5):
            limiter.record_request("login", CLIENT)

        assert limiter.is_limited("login", CLIENT)
        assert not limiter.is_limited("register", CLIENT)
        assert not limiter.is_limited("login", "198.51.100.24")

    def test_window_resets(self, limiter, clock):
        for _ in range(5):
            limiter.record_request("login", CLIENT)
        clock.advance(seconds=59)
        assert limiter.is_limited("login", CLIENT)

        clock.advance(seconds=1)
        assert not limiter.is_limited("login", CLIENT)
        assert limiter.record_request("login", CLIENT) == 1

    def test_window_does_not_slide(self, limiter, clock):
        limiter.record_request("login", CLIENT)
        clock.advance(seconds=40)
        for _ in range(4):
            limiter.record_request("login", CLIENT)
        clock.advance(seconds=20)

        # The window opened with the first request, so all five expired together
        assert limiter.remaining_quota("login", CLIENT) == 5

    def test_retry_after(self, limiter, clock):
        assert limiter.retry_after("login", CLIENT) == 0
        for _ in range(5):
            limiter.record_request("login", CLIENT)
        clock.advance(seconds=15.5)

        assert limiter.retry_after("login", CLIENT) == 45

    def test_ensure_allowed_raises_with_retry_after(self, limiter):
        limiter.ensure_allowed("register", CLIENT)
        for _ in range(5):
            limiter.record_request("register", CLIENT)

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.ensure_allowed("register", CLIENT)
        assert exc_info.value.retry_after == 60

    def test_custom_quota_and_window(self, store, test_settings, clock):
        limiter = RateLimiter(
            store, requests_per_window=2, window=timedelta(seconds=10), config=test_settings
        )
        limiter.record_request("reset", CLIENT)
        limiter.record_request("reset", CLIENT)
        assert limiter.is_limited("reset", CLIENT)

        clock.advance(seconds=10)
        assert not limiter.is_limited("reset", CLIENT)

    def test_disabled_limiter_allows_everything(self, store, test_settings):
        limiter = RateLimiter(store, enabled=False, config=test_settings)
        for _ in range(20):
            assert limiter.record_request("login", CLIENT) == 0

        assert not limiter.is_limited("login", CLIENT)
        assert limiter.remaining_quota("login", CLIENT) == UNLIMITED
        assert store.value(RateLimiter.key("login", CLIENT)) == 0

    def test_store_failure_denies(self, test_settings):
        limiter = RateLimiter(BrokenStore(), config=test_settings)

        assert limiter.is_limited("login", CLIENT)
        assert limiter.remaining_quota("login", CLIENT) == 0
        with pytest.raises(RateLimitExceededError):
            limiter.ensure_allowed("login", CLIENT)
        with pytest.raises(CounterStoreError):
            limiter.record_request("login", CLIENT)
