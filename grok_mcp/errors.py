"""
Error types for the Grok MCP server.

Governance failures (budget, admission, exhausted retries) and upstream
failures (HTTP errors from the xAI API) are separate branches of one
hierarchy. Every error carries a FailureKind so handlers can branch on it
instead of matching message text.
"""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    BUDGET_EXCEEDED = "budget_exceeded"
    RATE_LIMIT_TIMEOUT = "rate_limit_timeout"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_AUTH = "upstream_auth"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    UPSTREAM_ERROR = "upstream_error"


class GrokMCPError(Exception):
    """Base class for all errors raised by this package."""

    kind: FailureKind = FailureKind.UPSTREAM_ERROR


# =============================================================================
# Governance errors
# =============================================================================

class GovernanceError(GrokMCPError):
    """A request was refused before reaching the upstream API."""


class BudgetExceeded(GovernanceError):
    kind = FailureKind.BUDGET_EXCEEDED

    def __init__(self, current_cost: float, limit: float, estimated_cost: float):
        self.current_cost = current_cost
        self.limit = limit
        self.estimated_cost = estimated_cost
        remaining = max(0.0, limit - current_cost)
        super().__init__(
            f"Cost limit exceeded: Current session cost is ${current_cost:.4f} of ${limit:.2f} limit. "
            f"Estimated cost of this request: ${estimated_cost:.4f}. "
            f"Remaining budget: ${remaining:.4f}."
        )

    @property
    def used_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return min(100.0, self.current_cost / self.limit * 100)


class RateLimitTimeout(GovernanceError):
    kind = FailureKind.RATE_LIMIT_TIMEOUT

    def __init__(self, timeout_ms: int, pending_count: int = 0):
        self.timeout_ms = timeout_ms
        self.pending_count = pending_count
        super().__init__(f"Request timed out waiting for rate limit ({timeout_ms}ms).")


class RateLimitExceeded(GovernanceError):
    kind = FailureKind.RATE_LIMIT_EXCEEDED

    def __init__(self, tokens_used: int, tokens_limit: int, retry_after_ms: int):
        self.tokens_used = tokens_used
        self.tokens_limit = tokens_limit
        self.retry_after_ms = retry_after_ms
        super().__init__(
            f"Rate limit exceeded: {tokens_used} tokens used of {tokens_limit} limit. "
            f"Retry after {-(-retry_after_ms // 1000)} seconds."
        )


# =============================================================================
# Upstream errors
# =============================================================================

class XAIError(GrokMCPError):
    """
    Error returned by the xAI API.

    The response body is kept off the message so it never leaks into
    user-facing text; use debug_info() for logs.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        status_text: str = "",
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text
        self._response_body = response_body

    def sanitized_message(self) -> str:
        return f"{type(self).__name__}: {self} (HTTP {self.status_code})"

    def debug_info(self) -> dict:
        return {
            "name": type(self).__name__,
            "message": str(self),
            "status_code": self.status_code,
            "status_text": self.status_text,
            "response_body": self._response_body,
        }


class UpstreamRateLimited(XAIError):
    kind = FailureKind.UPSTREAM_RATE_LIMITED

    def __init__(self, message: str, retry_after_seconds: float = 0, response_body: Optional[str] = None):
        super().__init__(message, 429, "Too Many Requests", response_body)
        self.retry_after_seconds = retry_after_seconds


class UpstreamAuthError(XAIError):
    kind = FailureKind.UPSTREAM_AUTH

    def __init__(self, message: str, status_code: int = 401, response_body: Optional[str] = None):
        super().__init__(message, status_code, "Unauthorized", response_body)


class UpstreamTimeout(XAIError):
    kind = FailureKind.UPSTREAM_TIMEOUT

    def __init__(self, message: str, timeout_ms: Optional[int] = None):
        super().__init__(message, 408, "Request Timeout")
        self.timeout_ms = timeout_ms
