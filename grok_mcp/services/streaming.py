"""
Streaming response accumulation.

Consumes chat-completion chunks under a wall-clock deadline. Each wait for
the next chunk is raced against the time left, so text received before a
timeout is kept and returned as a partial result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterable, Callable

from ..errors import UpstreamTimeout
from ..models import estimate_tokens
from ..results import TokenUsage

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "\n\n[Response truncated due to timeout]"


@dataclass
class StreamResult:
    text: str
    usage: TokenUsage
    partial: bool
    chunks_received: int
    usage_estimated: bool = False


def _delta_text(chunk: dict) -> str:
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


async def accumulate_stream(
    chunks: AsyncIterable[dict],
    *,
    timeout_ms: int,
    prompt_text: str = "",
    clock: Callable[[], float] = time.monotonic,
) -> StreamResult:
    """
    Collect streamed chunks into one result.

    Args:
        chunks: Async iterable of parsed SSE chunk dicts
        timeout_ms: Deadline for the whole stream
        prompt_text: Request text, used to estimate prompt tokens when the
            upstream never reports usage
        clock: Monotonic time source

    Returns:
        StreamResult with ``partial=True`` if the deadline passed or the
        upstream timed out before the stream finished.

    Raises:
        Any error from the chunk source other than a timeout.
    """
    iterator = chunks.__aiter__()
    deadline = clock() + timeout_ms / 1000

    parts: list[str] = []
    usage_block = None
    chunks_received = 0
    partial = False
    finished = False

    try:
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                partial = True
                break
            try:
                chunk = await asyncio.wait_for(iterator.__anext__(), remaining)
            except StopAsyncIteration:
                finished = True
                break
            except (asyncio.TimeoutError, UpstreamTimeout):
                partial = True
                break

            chunks_received += 1
            parts.append(_delta_text(chunk))
            if chunk.get("usage"):
                usage_block = chunk["usage"]
    finally:
        if not finished:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    text = "".join(parts)
    if partial:
        logger.warning("Stream timeout after %d chunks", chunks_received)

    if usage_block:
        usage = TokenUsage.from_api(usage_block)
        estimated = False
    else:
        prompt_tokens = estimate_tokens(prompt_text)
        completion_tokens = estimate_tokens(text)
        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
        estimated = True

    return StreamResult(
        text=text + TRUNCATION_NOTICE if partial else text,
        usage=usage,
        partial=partial,
        chunks_received=chunks_received,
        usage_estimated=estimated,
    )
