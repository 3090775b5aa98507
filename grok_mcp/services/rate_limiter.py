"""
Admission control and backoff for xAI API requests.

The limiter tracks estimated token and request volume in a fixed 60 second
window and caps the number of admitted, unsettled requests. Callers follow
one protocol per request:

    await limiter.acquire(estimated)      # Requested -> Admitted
    ...upstream call...
    limiter.record_usage(actual, estimated)   # Admitted -> Succeeded
    limiter.release(estimated)                # Admitted -> Failed

Blocked callers wait on futures that are resolved from ``record_usage``,
``release`` and a timer at the window boundary. Admission bookkeeping
happens in the same synchronous step that resolves the future, so no other
task can observe a half-admitted request.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..config import RateLimiterOptions
from ..errors import RateLimitExceeded, RateLimitTimeout
from ..models import RATE_LIMITS

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


@dataclass
class RateLimitStatus:
    tier: str
    tokens_used: int
    tokens_remaining: int
    requests_used: int
    requests_remaining: int
    reset_in_ms: int
    window_reset_at: datetime
    pending_count: int
    max_pending_requests: int
    is_limited: bool
    current_retry_delay_ms: int
    retry_count: int


@dataclass
class _Waiter:
    estimated_tokens: int
    future: asyncio.Future


class RateLimiter:
    def __init__(
        self,
        options: Optional[RateLimiterOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._options = options or RateLimiterOptions()
        self._clock = clock
        self._limits = dict(RATE_LIMITS[self._options.tier])

        self._tokens_used = 0
        self._requests_used = 0
        self._window_start = clock()
        self._pending = 0
        self._waiters: deque[_Waiter] = deque()
        self._window_timer: Optional[asyncio.TimerHandle] = None

        self._retry_count = 0
        self._current_retry_delay_ms = 0
        self._next_retry_time = 0.0

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def acquire(self, estimated_tokens: int = 0) -> None:
        """
        Wait until the request may start, then reserve its budget.

        Raises:
            RateLimitExceeded: a backoff is in effect and retries are exhausted
            RateLimitTimeout: not admitted within ``pending_timeout_ms``
        """
        if self.is_rate_limited():
            await self.wait_for_retry()

        if not self._waiters and self._try_admit(estimated_tokens):
            return

        loop = asyncio.get_running_loop()
        waiter = _Waiter(estimated_tokens, loop.create_future())
        self._waiters.append(waiter)
        self._schedule_window_timer(loop)
        logger.debug(
            "Request queued for rate limit (%d pending, %d waiting)",
            self._pending, len(self._waiters),
        )

        timeout_ms = self._options.pending_timeout_ms
        try:
            await asyncio.wait_for(waiter.future, timeout_ms / 1000)
        except asyncio.TimeoutError:
            self._abandon(waiter)
            raise RateLimitTimeout(timeout_ms, self._pending) from None
        except BaseException:
            self._abandon(waiter)
            raise

    def record_usage(self, actual_tokens: int, estimated_tokens: int = 0) -> None:
        """Settle a successful request, correcting the estimate to the actual count."""
        self._tokens_used = max(0, self._tokens_used + actual_tokens - estimated_tokens)
        self._pending = max(0, self._pending - 1)
        self._process_waiters()

    def release(self, estimated_tokens: int = 0) -> None:
        """Settle a failed request, returning its reservation to the window."""
        self._tokens_used = max(0, self._tokens_used - estimated_tokens)
        self._requests_used = max(0, self._requests_used - 1)
        self._pending = max(0, self._pending - 1)
        self._process_waiters()

    def can_make_request(self, estimated_tokens: int = 0) -> bool:
        """Whether the current window has room for a request of this size."""
        self._maybe_reset_window()
        if self._requests_used >= self._limits["requests_per_minute"]:
            return False
        if estimated_tokens > self._limits["tokens_per_minute"]:
            # oversized requests only go into an empty window
            return self._tokens_used == 0
        return self._tokens_used + estimated_tokens <= self._limits["tokens_per_minute"]

    def _try_admit(self, estimated_tokens: int) -> bool:
        if self._pending >= self._options.max_pending_requests:
            return False
        if not self.can_make_request(estimated_tokens):
            return False
        self._pending += 1
        self._tokens_used += estimated_tokens
        self._requests_used += 1
        return True

    def _process_waiters(self) -> None:
        while self._waiters:
            waiter = self._waiters[0]
            if waiter.future.done():
                self._waiters.popleft()
                continue
            if not self._try_admit(waiter.estimated_tokens):
                break
            self._waiters.popleft()
            waiter.future.set_result(None)

    def _abandon(self, waiter: _Waiter) -> None:
        if waiter.future.done() and not waiter.future.cancelled():
            # admitted in the same tick the caller gave up
            self.release(waiter.estimated_tokens)
            return
        waiter.future.cancel()
        if waiter in self._waiters:
            self._waiters.remove(waiter)
        self._process_waiters()

    def _maybe_reset_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= WINDOW_SECONDS:
            self._tokens_used = 0
            self._requests_used = 0
            self._window_start = now

    def _reset_in_seconds(self) -> float:
        return max(0.0, self._window_start + WINDOW_SECONDS - self._clock())

    def _schedule_window_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._window_timer is not None:
            return
        # small buffer so the window has rolled over when the timer fires
        delay = self._reset_in_seconds() + 0.05
        self._window_timer = loop.call_later(delay, self._on_window_timer)

    def _on_window_timer(self) -> None:
        self._window_timer = None
        self._maybe_reset_window()
        self._process_waiters()
        if self._waiters:
            self._schedule_window_timer(asyncio.get_running_loop())

    # ------------------------------------------------------------------
    # Backoff
    # ------------------------------------------------------------------

    def handle_rate_limit_response(self, retry_after_seconds: float = 0) -> None:
        """Record an upstream 429 and compute the next backoff delay."""
        self._retry_count += 1
        exponential = self._options.initial_retry_delay_ms * 2 ** (self._retry_count - 1)
        delay = max(exponential, retry_after_seconds * 1000)
        self._current_retry_delay_ms = int(min(delay, self._options.max_retry_delay_ms))
        self._next_retry_time = self._clock() + self._current_retry_delay_ms / 1000
        logger.warning(
            "Upstream rate limit hit (attempt %d/%d), backing off %dms",
            self._retry_count, self._options.max_retries, self._current_retry_delay_ms,
        )

    def retries_exhausted(self) -> bool:
        return self._retry_count > self._options.max_retries

    async def wait_for_retry(self) -> None:
        if self.retries_exhausted():
            raise RateLimitExceeded(
                self._tokens_used,
                self._limits["tokens_per_minute"],
                self._current_retry_delay_ms,
            )
        wait = self._next_retry_time - self._clock()
        if wait > 0:
            await asyncio.sleep(wait)

    def clear_backoff(self) -> None:
        self._retry_count = 0
        self._current_retry_delay_ms = 0
        self._next_retry_time = 0.0

    def is_rate_limited(self) -> bool:
        return self._clock() < self._next_retry_time

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> RateLimitStatus:
        self._maybe_reset_window()
        reset_in = self._reset_in_seconds()
        return RateLimitStatus(
            tier=self._options.tier,
            tokens_used=self._tokens_used,
            tokens_remaining=max(0, self._limits["tokens_per_minute"] - self._tokens_used),
            requests_used=self._requests_used,
            requests_remaining=max(0, self._limits["requests_per_minute"] - self._requests_used),
            reset_in_ms=int(reset_in * 1000),
            window_reset_at=datetime.now(timezone.utc) + timedelta(seconds=reset_in),
            pending_count=self._pending,
            max_pending_requests=self._options.max_pending_requests,
            is_limited=self.is_rate_limited(),
            current_retry_delay_ms=self._current_retry_delay_ms,
            retry_count=self._retry_count,
        )

    def get_limits(self) -> dict[str, int]:
        return dict(self._limits)

    def get_pending_count(self) -> int:
        return self._pending

    def get_waiting_count(self) -> int:
        return sum(1 for w in self._waiters if not w.future.done())

    def get_options(self) -> RateLimiterOptions:
        return self._options.model_copy()

    def set_options(self, **changes) -> None:
        unknown = set(changes) - set(RateLimiterOptions.model_fields)
        if unknown:
            raise TypeError(f"Unknown rate limiter options: {', '.join(sorted(unknown))}")
        if "tier" in changes and changes["tier"] not in RATE_LIMITS:
            raise ValueError(f"Unknown API tier: {changes['tier']}")
        self._options = self._options.model_copy(update=changes)
        self._limits = dict(RATE_LIMITS[self._options.tier])
        self._process_waiters()

    def reset(self) -> None:
        """Clear window, backoff and in-flight counts; queued callers are re-evaluated."""
        self._tokens_used = 0
        self._requests_used = 0
        self._window_start = self._clock()
        self._pending = 0
        self.clear_backoff()
        self._process_waiters()
