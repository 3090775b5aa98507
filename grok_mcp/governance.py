"""
Governed execution of upstream calls.

Every tool that spends tokens goes through ``run_governed`` so the order of
cache, budget and rate-limit steps is the same everywhere:

1. cache lookup (only when a key is given)
2. budget pre-check
3. rate-limit admission
4. upstream call, retried with backoff on 429
5. on success: settle usage, clear backoff, record cost, store in cache
6. on failure: release the admission exactly once and re-raise
"""

import logging
from typing import Awaitable, Callable, Optional

from .errors import UpstreamRateLimited
from .results import QueryResult
from .services import Services
from .services.cost_tracker import CostTracker
from .services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

UpstreamCall = Callable[[], Awaitable[QueryResult]]


async def call_with_backoff(limiter: RateLimiter, call: UpstreamCall) -> QueryResult:
    """Invoke ``call``, sleeping and retrying while the upstream answers 429."""
    while True:
        try:
            return await call()
        except UpstreamRateLimited as exc:
            limiter.handle_rate_limit_response(exc.retry_after_seconds)
            if limiter.retries_exhausted():
                logger.error("Upstream rate limit retries exhausted")
                raise
            await limiter.wait_for_retry()


async def run_governed(
    services: Services,
    call: UpstreamCall,
    *,
    model: str,
    estimated_input_tokens: int,
    estimated_output_tokens: int = 0,
    estimated_cost: Optional[float] = None,
    cache_key: Optional[str] = None,
) -> QueryResult:
    """
    Run one upstream call under cache, budget and rate-limit control.

    Args:
        services: Shared service bundle
        call: Zero-argument coroutine factory performing the upstream request
        model: Resolved model id, used for the cost estimate
        estimated_input_tokens: Tokens reserved in the rate-limit window
        estimated_output_tokens: Upper bound on completion tokens for the budget check
        estimated_cost: Pre-computed cost estimate (overrides the token-based one)
        cache_key: Fingerprint to look up and store under; None disables caching

    Returns:
        The upstream result, or the cached one with ``cached=True``

    Raises:
        BudgetExceeded, RateLimitTimeout, RateLimitExceeded, XAIError
    """
    cache = services.cache
    cost_tracker = services.cost_tracker
    limiter = services.rate_limiter

    if cache_key and cache.is_enabled():
        cached = cache.get(cache_key)
        if cached is not None:
            logger.info("Cache hit, returning cached response")
            return cached

    if estimated_cost is None:
        estimated_cost = CostTracker.estimate_cost(
            model, estimated_input_tokens, estimated_output_tokens
        ).estimated_usd

    warning = cost_tracker.get_budget_warning()
    if warning:
        logger.warning(warning)
    cost_tracker.check_budget(estimated_cost)

    await limiter.acquire(estimated_input_tokens)
    try:
        result = await call_with_backoff(limiter, call)
    except BaseException:
        limiter.release(estimated_input_tokens)
        raise

    limiter.record_usage(result.usage.total_tokens, estimated_input_tokens)
    limiter.clear_backoff()
    cost_tracker.add_from_estimate(result.cost)

    if cache_key and cache.is_enabled():
        cache.set(cache_key, result)

    return result
