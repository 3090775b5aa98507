"""grok_search_x: agentic X/Twitter and web search through the responses API."""

import time
from typing import Any

from mcp.types import CallToolResult, Tool

from ..client import XAIClient
from ..errors import GrokMCPError
from ..governance import run_governed
from ..results import QueryResult, TokenUsage
from ..services import Services
from .common import ToolInputError, failure, get_bool, get_int, get_string, get_string_list, text_result

DEFAULT_SEARCH_MODEL = "grok-4-1-fast"
SEARCH_ESTIMATED_TOKENS = 1000
MAX_X_HANDLES = 10
MAX_DOMAINS = 5

SEARCH_SYSTEM_PROMPT = "Summarize findings. Do not reproduce posts verbatim."

_STRING_ARRAY = {"type": "array", "items": {"type": "string"}}

SEARCH_X_TOOL = Tool(
    name="grok_search_x",
    description="Search X/Twitter and web using Grok agentic search.",
    inputSchema={
        "type": "object",
        "properties": {
            "query": {"type": "string", "minLength": 1, "maxLength": 10000},
            "enable_web_search": {"type": "boolean", "default": False},
            "enable_x_search": {"type": "boolean", "default": True},
            "max_turns": {"type": "integer", "minimum": 1, "maximum": 20, "default": 3},
            "x_handles": {**_STRING_ARRAY, "description": f"Only search these handles (max {MAX_X_HANDLES})"},
            "exclude_x_handles": {**_STRING_ARRAY, "description": f"Skip these handles (max {MAX_X_HANDLES})"},
            "from_date": {"type": "string", "description": "Start date (YYYY-MM-DD)"},
            "to_date": {"type": "string", "description": "End date (YYYY-MM-DD)"},
            "domains": {**_STRING_ARRAY, "description": f"Only search these domains (max {MAX_DOMAINS})"},
            "exclude_domains": {**_STRING_ARRAY, "description": f"Skip these domains (max {MAX_DOMAINS})"},
            "include_citations": {"type": "boolean", "default": True},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
)


def build_agent_tools(arguments: dict[str, Any]) -> list[dict]:
    tools = []
    if get_bool(arguments, "enable_x_search", default=True):
        x_search: dict[str, Any] = {"type": "x_search"}
        handles = get_string_list(arguments, "x_handles", MAX_X_HANDLES)
        excluded = get_string_list(arguments, "exclude_x_handles", MAX_X_HANDLES)
        if handles:
            x_search["allowed_x_handles"] = handles
        if excluded:
            x_search["excluded_x_handles"] = excluded
        for key in ("from_date", "to_date"):
            value = get_string(arguments, key)
            if value:
                x_search[key] = value
        tools.append(x_search)

    if get_bool(arguments, "enable_web_search"):
        web_search: dict[str, Any] = {"type": "web_search"}
        domains = get_string_list(arguments, "domains", MAX_DOMAINS)
        excluded_domains = get_string_list(arguments, "exclude_domains", MAX_DOMAINS)
        # allowed and excluded domains are mutually exclusive upstream
        if domains:
            web_search["allowed_domains"] = domains
        elif excluded_domains:
            web_search["excluded_domains"] = excluded_domains
        tools.append(web_search)

    return tools


def extract_output_text(response: dict) -> str:
    """Final assistant text of a responses-API answer."""
    output = response.get("output")
    if isinstance(output, list) and output:
        last = output[-1]
        content = last.get("content") if isinstance(last, dict) else None
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and first.get("text"):
                return first["text"]
            return "\n".join(c["text"] for c in content if isinstance(c, dict) and c.get("text"))
    content = response.get("content")
    return content if isinstance(content, str) else ""


async def execute_search(client: XAIClient, query: str, tools: list[dict], max_turns: int) -> QueryResult:
    start = time.monotonic()
    response = await client.responses_create({
        "model": DEFAULT_SEARCH_MODEL,
        "input": [
            {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": query},
        ],
        "tools": tools,
        "max_turns": max_turns,
    })
    usage = TokenUsage.from_api(response.get("usage"))
    model = response.get("model") or DEFAULT_SEARCH_MODEL
    return QueryResult(
        response=extract_output_text(response),
        model=model,
        usage=usage,
        cost=client.calculate_cost(model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={
            "citations": response.get("citations") or [],
            "tool_usage": response.get("server_side_tool_usage") or {},
        },
    )


def format_search_output(result: QueryResult, include_citations: bool = True) -> str:
    out = "**Search Results**\n\n" + (result.response or "[No search results available]")
    citations = result.extra.get("citations", [])
    if include_citations and citations:
        out += "\n\n**Sources:**\n"
        for i, cite in enumerate(citations, 1):
            if isinstance(cite, dict):
                label = cite.get("title") or cite.get("url", "")
            else:
                label = str(cite)
            out += f"{i}. {label}\n"
    out += (
        f"\n---\nModel: {result.model} | Tokens: {result.usage.total_tokens} "
        f"| Cost: ${result.cost.estimated_usd:.4f} | Time: {result.response_time_ms}ms"
    )
    return out


async def handle_grok_search_x(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_search_x tool invocation."""
    try:
        query = get_string(arguments, "query", required=True, max_length=10_000)
        max_turns = get_int(arguments, "max_turns", default=3, minimum=1, maximum=20)
        include_citations = get_bool(arguments, "include_citations", default=True)
        tools = build_agent_tools(arguments)
        if not tools:
            raise ToolInputError("Enable at least one search type")

        result = await run_governed(
            services,
            lambda: execute_search(client, query, tools, max_turns),
            model=DEFAULT_SEARCH_MODEL,
            estimated_input_tokens=SEARCH_ESTIMATED_TOKENS,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Search failed", e)

    return text_result(format_search_output(result, include_citations))
