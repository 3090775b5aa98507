"""
Shared request-governance services.

One instance of each service lives for the whole server session; they are
bundled into ``Services`` and passed explicitly to every tool handler.
"""

from dataclasses import dataclass
from typing import Optional

from ..config import CacheOptions, CostTrackerOptions, RateLimiterOptions
from .cache import ResponseCache
from .cost_tracker import CostTracker
from .rate_limiter import RateLimiter
from .streaming import StreamResult, accumulate_stream


@dataclass
class Services:
    cache: ResponseCache
    cost_tracker: CostTracker
    rate_limiter: RateLimiter


def create_services(
    cache_options: Optional[CacheOptions] = None,
    cost_options: Optional[CostTrackerOptions] = None,
    rate_limit_options: Optional[RateLimiterOptions] = None,
) -> Services:
    """Build the service bundle, reading any options not given from the environment."""
    return Services(
        cache=ResponseCache(cache_options),
        cost_tracker=CostTracker(cost_options),
        rate_limiter=RateLimiter(rate_limit_options),
    )


__all__ = [
    "Services",
    "create_services",
    "ResponseCache",
    "CostTracker",
    "RateLimiter",
    "StreamResult",
    "accumulate_stream",
]
