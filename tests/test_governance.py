"""Tests for the governed call sequence shared by every upstream tool."""
import pytest
from unittest.mock import AsyncMock

from grok_mcp.errors import BudgetExceeded, UpstreamRateLimited, XAIError
from grok_mcp.governance import run_governed
from grok_mcp.results import CostEstimate, QueryResult, TokenUsage


def make_result(cost=0.01, total_tokens=120):
    return QueryResult(
        response="done",
        model="grok-4-0709",
        usage=TokenUsage(40, total_tokens - 40, total_tokens),
        cost=CostEstimate(cost, 40, total_tokens - 40, "grok-4-0709", 3.0, 15.0),
    )


class TestRunGoverned:

    @pytest.mark.asyncio
    async def test_success_settles_every_service(self, services):
        call = AsyncMock(return_value=make_result())
        result = await run_governed(
            services, call, model="grok-4-0709", estimated_input_tokens=50, cache_key="k1"
        )
        assert result.response == "done"
        call.assert_awaited_once()

        status = services.rate_limiter.get_status()
        assert status.pending_count == 0
        assert status.tokens_used == 120
        assert services.cost_tracker.get_total_cost() == pytest.approx(0.01)
        assert services.cache.has("k1")

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstream_and_cost(self, services):
        call = AsyncMock(return_value=make_result())
        await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=50, cache_key="k")
        second = await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=50, cache_key="k")

        assert second.cached is True
        assert call.await_count == 1
        assert services.cost_tracker.get_usage_summary().query_count == 1

    @pytest.mark.asyncio
    async def test_no_cache_key_always_calls(self, services):
        call = AsyncMock(return_value=make_result())
        for _ in range(2):
            await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=10)
        assert call.await_count == 2
        assert services.cache.get_stats().size == 0

    @pytest.mark.asyncio
    async def test_budget_refusal_happens_before_admission(self, services):
        services.cost_tracker.add_cost(9.99, "grok-4-0709")
        call = AsyncMock(return_value=make_result())
        with pytest.raises(BudgetExceeded):
            await run_governed(
                services, call, model="grok-4-0709", estimated_input_tokens=10, estimated_cost=0.5
            )
        call.assert_not_awaited()
        assert services.rate_limiter.get_status().requests_used == 0

    @pytest.mark.asyncio
    async def test_failure_releases_admission(self, services):
        call = AsyncMock(side_effect=XAIError("boom", 500))
        with pytest.raises(XAIError):
            await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=500, cache_key="k")

        status = services.rate_limiter.get_status()
        assert status.pending_count == 0
        assert status.tokens_used == 0
        assert status.requests_used == 0
        assert services.cost_tracker.get_total_cost() == 0
        assert not services.cache.has("k")

    @pytest.mark.asyncio
    async def test_retries_after_upstream_429(self, services):
        call = AsyncMock(side_effect=[UpstreamRateLimited("slow down"), make_result()])
        result = await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=10)

        assert result.response == "done"
        assert call.await_count == 2
        status = services.rate_limiter.get_status()
        assert status.retry_count == 0
        assert status.pending_count == 0

    @pytest.mark.asyncio
    async def test_gives_up_when_retries_exhausted(self, services):
        services.rate_limiter.set_options(max_retries=2)
        call = AsyncMock(side_effect=UpstreamRateLimited("slow down"))
        with pytest.raises(UpstreamRateLimited):
            await run_governed(services, call, model="grok-4-0709", estimated_input_tokens=10)

        assert call.await_count == 3
        assert services.rate_limiter.get_pending_count() == 0
