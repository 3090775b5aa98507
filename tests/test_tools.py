"""Tests for the non-query tools and server dispatch."""
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from grok_mcp.client import XAIClient
from grok_mcp.config import ClientSettings
from grok_mcp.server import create_server, dispatch_tool
from grok_mcp.tools import ALL_TOOLS, TOOL_HANDLERS
from grok_mcp.tools.analyze_code import detect_language, handle_grok_analyze_code, parse_analysis_response
from grok_mcp.tools.estimate_cost import cost_warning, estimate_query_cost, handle_grok_estimate_cost
from grok_mcp.tools.execute_code import extract_execution_output, handle_grok_execute_code
from grok_mcp.tools.list_models import get_model_status, handle_grok_models
from grok_mcp.tools.reason import handle_grok_reason, parse_reasoning_response
from grok_mcp.tools.search import build_agent_tools, handle_grok_search_x
from grok_mcp.tools.session_stats import format_duration, get_session_stats, handle_grok_session_stats
from grok_mcp.tools.status import determine_status, handle_grok_status
from grok_mcp.tools.with_file import detect_file_type, handle_grok_with_file


class TestReason:

    def test_parses_tagged_sections(self):
        text = "<thinking>\nstep one\n</thinking>\n<answer>42</answer>"
        assert parse_reasoning_response(text) == ("step one", "42")

    def test_parses_conclusion_marker(self):
        assert parse_reasoning_response("Some steps\nTherefore: 42") == ("Some steps", "42")

    def test_unstructured_text_is_the_answer(self):
        assert parse_reasoning_response("just text") == ("", "just text")

    @pytest.mark.asyncio
    async def test_handler_shows_thinking(self, client, services, chat_response):
        reply = chat_response("<thinking>consider it</thinking><answer>yes</answer>", model="grok-4-1-fast-reasoning")
        mock = AsyncMock(return_value=reply)
        with patch.object(client, "chat_completion", new=mock):
            shown = await handle_grok_reason({"query": "Is it?", "effort": "high"}, client, services)
            hidden = await handle_grok_reason({"query": "Is it?", "show_thinking": False}, client, services)

        assert "### Thinking Process" in shown.content[0].text
        assert "consider it" in shown.content[0].text
        assert "### Thinking Process" not in hidden.content[0].text
        first_call = mock.await_args_list[0].kwargs
        assert first_call["model"] == "grok-4-1-fast-reasoning"
        assert first_call["temperature"] == 0.7
        assert first_call["max_tokens"] == 8000

    @pytest.mark.asyncio
    async def test_context_becomes_acknowledged_turn(self, client, services, chat_response):
        mock = AsyncMock(return_value=chat_response("fine"))
        with patch.object(client, "chat_completion", new=mock):
            await handle_grok_reason({"query": "q", "context": "background"}, client, services)

        roles = [m["role"] for m in mock.await_args.kwargs["messages"]]
        assert roles == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    async def test_rejects_unknown_effort(self, client, services):
        result = await handle_grok_reason({"query": "q", "effort": "extreme"}, client, services)
        assert result.isError


class TestAnalyzeCode:

    def test_detect_language(self):
        assert detect_language("def add(a, b):\n    return a + b") == "python"
        assert detect_language("package main\nfunc main() {}") == "go"
        assert detect_language("const x = 1;") == "javascript"
        assert detect_language("hello there") == "unknown"

    def test_parse_issues(self):
        text = json.dumps({
            "issues": [
                {"type": "security", "severity": "CRITICAL", "line": 3, "message": "SQL injection"},
                {"type": "style", "severity": "whatever", "message": "naming"},
            ],
            "summary": "Needs work",
        })
        issues, summary = parse_analysis_response(f"```json\n{text}\n```")
        assert summary == "Needs work"
        assert [i.severity for i in issues] == ["critical", "medium"]
        assert issues[0].line == 3

    def test_unparseable_output_becomes_summary(self):
        issues, summary = parse_analysis_response("x" * 600)
        assert issues == []
        assert len(summary) == 500

    @pytest.mark.asyncio
    async def test_handler_groups_by_severity(self, client, services, chat_response):
        body = json.dumps({
            "issues": [
                {"type": "bug", "severity": "high", "line": 1, "message": "off by one", "suggestion": "use <="},
                {"type": "security", "severity": "critical", "message": "eval of input"},
            ],
            "summary": "Two problems",
        })
        mock = AsyncMock(return_value=chat_response(body, model="grok-code-fast-1"))
        with patch.object(client, "chat_completion", new=mock):
            result = await handle_grok_analyze_code({"code": "def f(x):\n    return eval(x)"}, client, services)

        text = result.content[0].text
        assert "**Language:** python" in text
        assert "Issues Found (2)" in text
        assert text.index("CRITICAL (1)") < text.index("HIGH (1)")
        assert "*Suggestion:* use <=" in text
        kwargs = mock.await_args.kwargs
        assert kwargs["model"] == "grok-code-fast-1"
        assert kwargs["temperature"] == 0.1
        assert kwargs["timeout_ms"] == 60_000


class TestWithFile:

    def test_detects_by_extension_then_content(self):
        assert detect_file_type("main.py") == "code"
        assert detect_file_type("README.MD") == "markdown"
        assert detect_file_type(None, '{"a": 1}') == "json"
        assert detect_file_type(None, "# Title\nbody") == "markdown"
        assert detect_file_type(None, "plain words only") == "text"

    @pytest.mark.asyncio
    async def test_handler_includes_file_in_prompt(self, client, services, chat_response):
        mock = AsyncMock(return_value=chat_response("Three tasks"))
        args = {"query": "How many tasks?", "file_content": "- a\n- b\n- c", "filename": "todo.md"}
        with patch.object(client, "chat_completion", new=mock):
            result = await handle_grok_with_file(args, client, services)

        text = result.content[0].text
        assert "**File:** todo.md | **Type:** markdown | **Lines:** 3" in text
        assert "Three tasks" in text
        prompt = mock.await_args.kwargs["messages"][-1]["content"]
        assert "todo.md" in prompt
        assert "- b" in prompt

    @pytest.mark.asyncio
    async def test_requires_file_content(self, client, services):
        result = await handle_grok_with_file({"query": "q"}, client, services)
        assert result.isError


class TestSearch:

    def test_agent_tools_defaults_to_x_search(self):
        assert build_agent_tools({}) == [{"type": "x_search"}]

    def test_agent_tools_limits_and_exclusivity(self):
        tools = build_agent_tools({
            "x_handles": [f"user{i}" for i in range(15)],
            "enable_web_search": True,
            "domains": ["a.com"],
            "exclude_domains": ["b.com"],
        })
        assert len(tools[0]["allowed_x_handles"]) == 10
        assert tools[1] == {"type": "web_search", "allowed_domains": ["a.com"]}

    @pytest.mark.asyncio
    async def test_handler_lists_sources(self, client, services):
        response = {
            "model": "grok-4-1-fast",
            "output": [{"content": [{"type": "output_text", "text": "People are excited"}]}],
            "citations": ["https://x.com/post/1"],
            "usage": {"input_tokens": 900, "output_tokens": 100},
        }
        mock = AsyncMock(return_value=response)
        with patch.object(client, "responses_create", new=mock):
            result = await handle_grok_search_x({"query": "launch reactions"}, client, services)

        text = result.content[0].text
        assert "People are excited" in text
        assert "1. https://x.com/post/1" in text
        assert "Tokens: 1000" in text
        payload = mock.await_args.args[0]
        assert payload["tools"] == [{"type": "x_search"}]
        assert payload["max_turns"] == 3
        assert services.rate_limiter.get_status().tokens_used == 1000

    @pytest.mark.asyncio
    async def test_requires_a_search_type(self, client, services):
        result = await handle_grok_search_x({"query": "q", "enable_x_search": False}, client, services)
        assert result.isError
        assert "Enable at least one search type" in result.content[0].text


class TestExecuteCode:

    def test_extracts_fenced_output(self):
        text = "The sum is shown below.\n```output\n4\n```"
        assert extract_execution_output(text) == "4"

    def test_extracts_output_section(self):
        assert extract_execution_output("Result:\n42\n\nDone.") == "42"
        assert extract_execution_output("Nothing quoted here") is None

    @pytest.mark.asyncio
    async def test_handler_runs_code_interpreter(self, client, services):
        response = {
            "model": "grok-4-1-fast",
            "output": [{"content": [{"type": "output_text", "text": "It printed:\n```\n4\n```"}]}],
            "usage": {"input_tokens": 400, "output_tokens": 100},
        }
        mock = AsyncMock(return_value=response)
        with patch.object(client, "responses_create", new=mock):
            result = await handle_grok_execute_code(
                {"code": "print(2 + 2)", "description": "add", "max_turns": 1}, client, services
            )

        assert not result.isError
        text = result.content[0].text
        assert text.startswith("**Code Execution Results**")
        assert "**Raw Output:**\n```\n4\n```" in text
        assert "500 tokens" in text
        payload = mock.await_args.args[0]
        assert payload["tools"] == [{"type": "code_interpreter"}]
        assert payload["max_turns"] == 1
        assert "Task: add" in payload["input"][1]["content"]
        assert services.cost_tracker.get_usage_summary().query_count == 1

    @pytest.mark.asyncio
    async def test_flags_execution_errors(self, client, services):
        response = {
            "model": "grok-4-1-fast",
            "content": "Traceback: NameError, name 'x' is not defined",
            "usage": {"input_tokens": 10, "output_tokens": 10},
        }
        with patch.object(client, "responses_create", new=AsyncMock(return_value=response)):
            result = await handle_grok_execute_code({"code": "print(x)", "include_output": False}, client, services)

        assert "Execution encountered errors" in result.content[0].text
        assert "Raw Output" not in result.content[0].text

    @pytest.mark.asyncio
    async def test_rejects_oversized_code(self, client, services):
        result = await handle_grok_execute_code({"code": "x" * 50_001}, client, services)
        assert result.isError
        assert "maximum length" in result.content[0].text


class TestEstimateCost:

    def test_explicit_max_tokens(self):
        estimate = estimate_query_cost("hi", model="fast", max_tokens=100)
        assert estimate.model == "grok-4-fast-non-reasoning"
        assert estimate.input_tokens == 5
        assert estimate.output_tokens == 100
        assert estimate.total_cost_usd == pytest.approx(5 * 0.2e-6 + 100 * 0.5e-6)

    def test_output_estimate_has_floor(self):
        assert estimate_query_cost("hi", model="fast").output_tokens >= 150

    def test_warnings(self):
        assert cost_warning(0.5, "grok-4-fast-non-reasoning").startswith("High cost warning")
        assert cost_warning(0.02, "grok-4-0709").startswith("Using premium model")
        assert cost_warning(0.02, "grok-4-fast-non-reasoning") is None

    @pytest.mark.asyncio
    async def test_handler_makes_no_api_call(self):
        result = await handle_grok_estimate_cost({"query": "Explain recursion", "model": "smartest"})
        text = result.content[0].text
        assert "Grok Cost Estimate" in text
        assert "grok-4-0709" in text

    @pytest.mark.asyncio
    async def test_handler_rejects_missing_query(self):
        assert (await handle_grok_estimate_cost({})).isError


class TestModels:

    def test_model_status(self):
        assert get_model_status("grok-4-0709") == "available"
        assert get_model_status("grok-3-beta") == "deprecated"
        assert get_model_status("grok-99") == "unknown"

    @pytest.mark.asyncio
    async def test_handler_reports_cache_state(self):
        def handler(request):
            return httpx.Response(200, json={"data": [{"id": "grok-3-beta"}, {"id": "grok-4-0709"}]})

        client = XAIClient(ClientSettings(api_key="xai-test-key"), transport=httpx.MockTransport(handler))
        first = (await handle_grok_models({}, client)).content[0].text
        second = (await handle_grok_models({}, client)).content[0].text
        refreshed = (await handle_grok_models({"refresh": True}, client)).content[0].text

        assert "Cached: No" in first
        assert "Cached: Yes" in second
        assert "Cached: No" in refreshed
        # available models sort first
        assert first.index("grok-4-0709") < first.index("grok-3-beta")
        assert "| auto | grok-4-0709 |" in first

    @pytest.mark.asyncio
    async def test_handler_reports_upstream_failure(self):
        client = XAIClient(
            ClientSettings(api_key="xai-test-key"),
            transport=httpx.MockTransport(lambda request: httpx.Response(401)),
        )
        result = await handle_grok_models({}, client)
        assert result.isError


class TestStatus:

    def test_determine_status(self, services):
        assert determine_status(services) == "operational"
        services.rate_limiter.set_options(initial_retry_delay_ms=60_000)
        services.rate_limiter.handle_rate_limit_response()
        assert determine_status(services) == "rate_limited"
        services.cost_tracker.add_cost(10.0, "grok-4-0709")
        assert determine_status(services) == "budget_exceeded"

    @pytest.mark.asyncio
    async def test_handler_details(self, services):
        services.cost_tracker.add_cost(0.25, "grok-4-0709", 100, 100)
        plain = (await handle_grok_status({}, services=services)).content[0].text
        detailed = (await handle_grok_status({"include_details": True}, services=services)).content[0].text

        assert "OPERATIONAL" in plain
        assert "### Details" not in plain
        assert "### Details" in detailed
        assert "- grok-4-0709: $0.2500" in detailed


class TestSessionStats:

    def test_format_duration(self):
        assert format_duration(5_000) == "5s"
        assert format_duration(65_000) == "1m 5s"
        assert format_duration(3_723_000) == "1h 2m 3s"

    def test_detail_levels(self, services, clock):
        services.cost_tracker.add_cost(0.1, "grok-4-0709", 100, 300)
        services.cost_tracker.add_cost(0.1, "grok-code-fast-1", 100, 100)
        clock.advance(120)

        summary = get_session_stats(services)
        assert summary["totals"]["queries"] == 2
        assert summary["totals"]["total_tokens"] == 600
        assert summary["rates"]["queries_per_minute"] == 1.0
        assert "by_model" not in summary

        detailed = get_session_stats(services, "detailed")
        assert detailed["by_model"]["grok-4-0709"]["cost_percent"] == 50.0
        assert "timeline" not in detailed

        full = get_session_stats(services, "full")
        recent = full["timeline"]["recent_queries"]
        assert [r["model"] for r in recent] == ["grok-code-fast-1", "grok-4-0709"]

    @pytest.mark.asyncio
    async def test_handler_output_formats(self, services):
        services.cost_tracker.add_cost(0.01, "grok-4-0709", 10, 10)
        as_json = await handle_grok_session_stats({"format": "json", "detail_level": "full"}, services=services)
        as_markdown = await handle_grok_session_stats({}, services=services)

        assert json.loads(as_json.content[0].text)["totals"]["queries"] == 1
        assert as_markdown.content[0].text.startswith("## Session Statistics")


class TestServer:

    def test_tool_names_are_unique(self):
        names = [tool.name for tool in ALL_TOOLS]
        assert len(names) == len(set(names)) == 11
        assert set(names) == set(TOOL_HANDLERS)

    def test_create_server(self, client, services):
        assert create_server(client, services).name == "grok-mcp"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, client, services):
        result = await dispatch_tool("grok_nope", {}, client, services)
        assert result.isError
        assert "Unknown tool: grok_nope" in result.content[0].text

    @pytest.mark.asyncio
    async def test_unexpected_handler_error_is_wrapped(self, client, services):
        failing = AsyncMock(side_effect=RuntimeError("kaput"))
        with patch.dict(TOOL_HANDLERS, {"grok_query": failing}):
            result = await dispatch_tool("grok_query", {"query": "q"}, client, services)
        assert result.isError
        assert result.content[0].text == "Error: kaput"

    @pytest.mark.asyncio
    async def test_dispatches_to_handler(self, client, services):
        result = await dispatch_tool("grok_status", {}, client, services)
        assert not result.isError
        assert "Grok MCP Status" in result.content[0].text
