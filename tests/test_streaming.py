"""Tests for streamed response accumulation."""
import asyncio

import pytest

from grok_mcp.errors import UpstreamAuthError, UpstreamTimeout
from grok_mcp.services import accumulate_stream
from grok_mcp.services.streaming import TRUNCATION_NOTICE


def delta(text):
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


class FakeStream:
    """Async iterator over canned chunks that can stall or fail part way."""

    def __init__(self, chunks, stall_after=None, error=None):
        self.chunks = list(chunks)
        self.stall_after = stall_after
        self.error = error
        self.sent = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.stall_after is not None and self.sent >= self.stall_after:
            if self.error is not None:
                raise self.error
            await asyncio.sleep(10)
        if self.sent >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self.sent]
        self.sent += 1
        return chunk

    async def aclose(self):
        self.closed = True


class TestCompleteStream:

    @pytest.mark.asyncio
    async def test_concatenates_deltas(self):
        stream = FakeStream([delta("Hel"), delta("lo"), {"choices": []}, delta(" world")])
        result = await accumulate_stream(stream, timeout_ms=1000)
        assert result.text == "Hello world"
        assert result.partial is False
        assert result.chunks_received == 4

    @pytest.mark.asyncio
    async def test_uses_reported_usage(self):
        final = {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}}
        result = await accumulate_stream(FakeStream([delta("abc"), final]), timeout_ms=1000)
        assert result.usage.total_tokens == 15
        assert result.usage_estimated is False

    @pytest.mark.asyncio
    async def test_estimates_usage_when_missing(self):
        result = await accumulate_stream(
            FakeStream([delta("12345678")]), timeout_ms=1000, prompt_text="abcd"
        )
        assert result.usage.prompt_tokens == 1
        assert result.usage.completion_tokens == 2
        assert result.usage.total_tokens == 3
        assert result.usage_estimated is True


class TestPartialStream:

    @pytest.mark.asyncio
    async def test_deadline_keeps_received_text(self):
        stream = FakeStream([delta("first "), delta("second")], stall_after=1)
        result = await accumulate_stream(stream, timeout_ms=50)
        assert result.partial is True
        assert result.chunks_received == 1
        assert result.text == "first " + TRUNCATION_NOTICE
        assert stream.closed

    @pytest.mark.asyncio
    async def test_upstream_timeout_is_partial(self):
        stream = FakeStream([delta("only")], stall_after=1, error=UpstreamTimeout("read timed out"))
        result = await accumulate_stream(stream, timeout_ms=1000)
        assert result.partial is True
        assert result.text.startswith("only")

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        stream = FakeStream([delta("x")], stall_after=1, error=UpstreamAuthError("bad key"))
        with pytest.raises(UpstreamAuthError):
            await accumulate_stream(stream, timeout_ms=1000)
        assert stream.closed
