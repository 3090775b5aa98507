"""Tests for admission control and backoff."""
import asyncio

import pytest

from grok_mcp.config import RateLimiterOptions
from grok_mcp.errors import FailureKind, RateLimitExceeded, RateLimitTimeout
from grok_mcp.services import RateLimiter


class TestAdmission:

    @pytest.mark.asyncio
    async def test_acquire_and_record_usage(self):
        limiter = RateLimiter(RateLimiterOptions())
        await limiter.acquire(1000)
        status = limiter.get_status()
        assert status.pending_count == 1
        assert status.tokens_used == 1000
        assert status.requests_used == 1

        limiter.record_usage(1500, 1000)
        status = limiter.get_status()
        assert status.pending_count == 0
        assert status.tokens_used == 1500

    @pytest.mark.asyncio
    async def test_release_returns_reservation(self):
        limiter = RateLimiter(RateLimiterOptions())
        await limiter.acquire(5000)
        limiter.release(5000)
        status = limiter.get_status()
        assert status.tokens_used == 0
        assert status.requests_used == 0
        assert status.pending_count == 0

    @pytest.mark.asyncio
    async def test_pending_requests_are_bounded(self):
        limiter = RateLimiter(RateLimiterOptions(max_pending_requests=2))
        await limiter.acquire(10)
        await limiter.acquire(10)

        third = asyncio.create_task(limiter.acquire(10))
        await asyncio.sleep(0.01)
        assert not third.done()
        assert limiter.get_pending_count() == 2
        assert limiter.get_waiting_count() == 1

        limiter.record_usage(10, 10)
        await asyncio.wait_for(third, 1)
        assert limiter.get_pending_count() == 2
        assert limiter.get_waiting_count() == 0

    @pytest.mark.asyncio
    async def test_waiters_are_admitted_in_order(self):
        limiter = RateLimiter(RateLimiterOptions(max_pending_requests=1))
        await limiter.acquire()
        admitted = []

        async def worker(name):
            await limiter.acquire()
            admitted.append(name)

        tasks = [asyncio.create_task(worker(n)) for n in ("a", "b", "c")]
        await asyncio.sleep(0.01)
        for _ in range(3):
            limiter.release()
            await asyncio.sleep(0.01)
        await asyncio.gather(*tasks)
        assert admitted == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_times_out_waiting_for_admission(self):
        limiter = RateLimiter(RateLimiterOptions(max_pending_requests=1, pending_timeout_ms=50))
        await limiter.acquire()
        with pytest.raises(RateLimitTimeout) as exc_info:
            await limiter.acquire()
        assert exc_info.value.kind is FailureKind.RATE_LIMIT_TIMEOUT
        assert limiter.get_waiting_count() == 0
        assert limiter.get_pending_count() == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_removed(self):
        limiter = RateLimiter(RateLimiterOptions(max_pending_requests=1))
        await limiter.acquire()
        waiting = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0.01)
        waiting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting
        assert limiter.get_waiting_count() == 0
        limiter.release()
        assert limiter.get_pending_count() == 0


class TestTokenWindow:

    def test_window_limits_tokens(self, clock):
        limiter = RateLimiter(RateLimiterOptions(), clock=clock)
        limiter.record_usage(400_000)
        assert limiter.can_make_request(100_000)
        assert not limiter.can_make_request(100_001)

    def test_window_reset_restores_headroom(self, clock):
        limiter = RateLimiter(RateLimiterOptions(), clock=clock)
        limiter.record_usage(500_000)
        assert not limiter.can_make_request(1)
        clock.advance(60)
        assert limiter.can_make_request(1)
        assert limiter.get_status().tokens_used == 0

    def test_oversized_request_only_in_empty_window(self, clock):
        limiter = RateLimiter(RateLimiterOptions(), clock=clock)
        assert limiter.can_make_request(600_000)
        limiter.record_usage(1)
        assert not limiter.can_make_request(600_000)

    def test_enterprise_tier_limits(self):
        limiter = RateLimiter(RateLimiterOptions(tier="enterprise"))
        assert limiter.get_limits() == {"tokens_per_minute": 10_000_000, "requests_per_minute": 10_000}

    def test_set_options_rejects_unknown_tier(self):
        limiter = RateLimiter(RateLimiterOptions())
        with pytest.raises(ValueError):
            limiter.set_options(tier="platinum")

    def test_tier_from_environment(self, monkeypatch):
        monkeypatch.setenv("GROK_RATE_LIMIT_TIER", "enterprise")
        assert RateLimiter().get_limits()["requests_per_minute"] == 10_000

    def test_options_reject_unknown_tier_and_zero_pending(self):
        with pytest.raises(ValueError):
            RateLimiterOptions(tier="platinum")
        with pytest.raises(ValueError):
            RateLimiterOptions(max_pending_requests=0)


class TestBackoff:

    def test_delay_grows_exponentially_and_caps(self, clock):
        limiter = RateLimiter(
            RateLimiterOptions(initial_retry_delay_ms=1000, max_retry_delay_ms=5000), clock=clock
        )
        delays = []
        for _ in range(4):
            limiter.handle_rate_limit_response()
            delays.append(limiter.get_status().current_retry_delay_ms)
        assert delays == [1000, 2000, 4000, 5000]
        assert limiter.is_rate_limited()

    def test_retry_after_header_wins_when_larger(self, clock):
        limiter = RateLimiter(RateLimiterOptions(initial_retry_delay_ms=1000), clock=clock)
        limiter.handle_rate_limit_response(retry_after_seconds=7)
        assert limiter.get_status().current_retry_delay_ms == 7000

    def test_clear_backoff_resets(self, clock):
        limiter = RateLimiter(RateLimiterOptions(), clock=clock)
        limiter.handle_rate_limit_response()
        limiter.clear_backoff()
        status = limiter.get_status()
        assert status.retry_count == 0
        assert status.current_retry_delay_ms == 0
        assert not limiter.is_rate_limited()

    def test_backoff_expires_with_time(self, clock):
        limiter = RateLimiter(RateLimiterOptions(initial_retry_delay_ms=1000), clock=clock)
        limiter.handle_rate_limit_response()
        clock.advance(1)
        assert not limiter.is_rate_limited()

    @pytest.mark.asyncio
    async def test_wait_for_retry_raises_when_exhausted(self, clock):
        limiter = RateLimiter(RateLimiterOptions(max_retries=2), clock=clock)
        for _ in range(3):
            limiter.handle_rate_limit_response()
        assert limiter.retries_exhausted()
        with pytest.raises(RateLimitExceeded):
            await limiter.wait_for_retry()

    @pytest.mark.asyncio
    async def test_reset_clears_everything(self):
        limiter = RateLimiter(RateLimiterOptions(max_pending_requests=1))
        await limiter.acquire(100)
        waiting = asyncio.create_task(limiter.acquire(100))
        await asyncio.sleep(0.01)
        limiter.handle_rate_limit_response()
        limiter.reset()
        await asyncio.wait_for(waiting, 1)
        status = limiter.get_status()
        assert status.retry_count == 0
        assert status.pending_count == 1
