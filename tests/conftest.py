"""Shared fixtures: a controllable clock, service bundles and a test client."""
import pytest

from grok_mcp.client import XAIClient
from grok_mcp.config import CacheOptions, ClientSettings, CostTrackerOptions, RateLimiterOptions
from grok_mcp.services import CostTracker, RateLimiter, ResponseCache, Services

TEST_API_KEY = "xai-test-key"


class FakeClock:
    """Manually advanced time source for TTL and window tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_chat_response(content="Hello from Grok", model="grok-4-fast-non-reasoning",
                       prompt_tokens=10, completion_tokens=20):
    return {
        "id": "chatcmpl-test",
        "model": model,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def services(clock):
    return Services(
        cache=ResponseCache(CacheOptions(), clock=clock),
        cost_tracker=CostTracker(CostTrackerOptions(), clock=clock),
        rate_limiter=RateLimiter(RateLimiterOptions(initial_retry_delay_ms=1, max_retry_delay_ms=10)),
    )


@pytest.fixture
def chat_response():
    return make_chat_response


@pytest.fixture
def client():
    return XAIClient(ClientSettings(api_key=TEST_API_KEY))
