"""
grok_query: general chat completion, with optional streaming, vision input
and JSON mode.

Non-streaming text queries are cached. Streaming queries never are, since a
stream cut short by its deadline returns a partial answer.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from ..client import XAIClient
from ..errors import GrokMCPError
from ..governance import run_governed
from ..models import (
    MODEL_ALIASES,
    VISION_CAPABLE_MODELS,
    AutoModelSelection,
    estimate_tokens,
    get_model_timeout,
)
from ..results import QueryResult, TokenUsage
from ..services import Services, accumulate_stream
from .common import (
    ToolInputError,
    failure,
    get_bool,
    get_choice,
    get_int,
    get_number,
    get_string,
    message_text,
    parse_json_text,
    text_result,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7

EXPENSIVE_QUERY_COST = 0.05
BUDGET_NOTICE_PERCENT = 75
BUDGET_ALERT_PERCENT = 90
LOW_CONFIDENCE_PERCENT = 50

JSON_MODE_SYSTEM_PROMPT = """You MUST respond with valid JSON only. Follow these rules strictly:
1. Output ONLY valid JSON - no markdown, no explanations, no code blocks
2. Do NOT wrap JSON in ```json``` or any code blocks
3. Ensure all strings are properly escaped
4. Use double quotes for all keys and string values
5. If you cannot provide JSON, return: {"error": "reason"}"""

# Output price per 1M tokens, used for "try a cheaper model" tips
MODEL_COST_TIERS = {
    "grok-4-fast": ("cheap", 0.5),
    "grok-4-fast-non-reasoning": ("cheap", 0.5),
    "grok-code-fast-1": ("moderate", 1.5),
    "grok-4-1-fast-reasoning": ("moderate", 3.0),
    "grok-4": ("expensive", 15.0),
    "grok-4-0709": ("expensive", 15.0),
}

QUERY_TOOL = Tool(
    name="grok_query",
    description=(
        "Query xAI's Grok models. Use for getting Grok's perspective on questions, "
        "code analysis, explanations, and creative tasks. Returns response with "
        "token usage and cost estimate."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The question or prompt to send to Grok",
                "minLength": 1,
                "maxLength": 100000,
            },
            "model": {
                "type": "string",
                "description": (
                    "Model to use. Aliases: auto, default, fast, smartest, code, reasoning, "
                    "cheap, vision. Or use a model ID directly (e.g., grok-4, grok-4-fast)"
                ),
                "default": "auto",
            },
            "context": {
                "type": "string",
                "description": "Optional system context to guide the response",
                "maxLength": 50000,
            },
            "max_tokens": {
                "type": "integer",
                "description": "Maximum tokens in the response (default: 4096)",
                "minimum": 1,
                "maximum": 131072,
                "default": DEFAULT_MAX_TOKENS,
            },
            "temperature": {
                "type": "number",
                "description": "Sampling temperature (0.0-2.0, default: 0.7)",
                "minimum": 0,
                "maximum": 2,
                "default": DEFAULT_TEMPERATURE,
            },
            "top_p": {
                "type": "number",
                "description": (
                    "Nucleus sampling (0-1). Alternative to temperature; "
                    "adjust one or the other, not both."
                ),
                "minimum": 0,
                "maximum": 1,
            },
            "stream": {
                "type": "boolean",
                "description": (
                    "Stream the response. A stream that exceeds the timeout returns "
                    "the text received so far, marked as partial. Streamed responses are not cached."
                ),
                "default": False,
            },
            "timeout": {
                "type": "integer",
                "description": (
                    "Request timeout in milliseconds (default: 30000, 90000 for flagship grok-4). "
                    "Increase for complex queries to slower models."
                ),
                "minimum": 1000,
                "maximum": 120000,
            },
            "image_url": {
                "type": "string",
                "description": (
                    "Image URL for vision queries: an HTTPS URL or a base64 data URI "
                    "(data:image/png;base64,...). With model 'auto' a vision-capable model is chosen."
                ),
                "maxLength": 10000000,
            },
            "image_detail": {
                "type": "string",
                "enum": ["auto", "low", "high"],
                "description": "Detail level for image analysis (default: auto)",
                "default": "auto",
            },
            "response_format": {
                "type": "object",
                "description": 'Request structured JSON output with { "type": "json_object" }.',
                "properties": {
                    "type": {"type": "string", "enum": ["json_object"]},
                },
                "required": ["type"],
                "additionalProperties": False,
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    },
)


@dataclass
class QueryInput:
    query: str
    model: str = "auto"
    context: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    top_p: Optional[float] = None
    stream: bool = False
    timeout_ms: Optional[int] = None
    image_url: Optional[str] = None
    image_detail: str = "auto"
    json_mode: bool = False

    @property
    def is_vision(self) -> bool:
        return bool(self.image_url)


def _is_valid_image_url(url: str) -> bool:
    if url.startswith("https://"):
        return len(url) > len("https://")
    return url.startswith("data:image/") and ";base64," in url


def validate_query_input(arguments: dict[str, Any]) -> QueryInput:
    query = get_string(arguments, "query", required=True, max_length=100_000)
    image_url = get_string(arguments, "image_url", max_length=10_000_000)
    if image_url is not None and not _is_valid_image_url(image_url):
        raise ToolInputError(
            "'image_url' must be a valid HTTPS URL or base64 data URI (data:image/...;base64,...)"
        )

    response_format = arguments.get("response_format")
    json_mode = False
    if response_format is not None:
        if not isinstance(response_format, dict) or response_format.get("type") != "json_object":
            raise ToolInputError("'response_format.type' must be \"json_object\"")
        json_mode = True

    return QueryInput(
        query=query,
        model=get_string(arguments, "model", default="auto") or "auto",
        context=get_string(arguments, "context", max_length=50_000),
        max_tokens=get_int(arguments, "max_tokens", default=DEFAULT_MAX_TOKENS, minimum=1, maximum=131_072),
        temperature=get_number(arguments, "temperature", default=DEFAULT_TEMPERATURE, minimum=0, maximum=2),
        top_p=get_number(arguments, "top_p", minimum=0, maximum=1),
        stream=get_bool(arguments, "stream"),
        timeout_ms=get_int(arguments, "timeout", minimum=1000, maximum=120_000),
        image_url=image_url,
        image_detail=get_choice(arguments, "image_detail", ["auto", "low", "high"], "auto"),
        json_mode=json_mode,
    )


def resolve_query_model(client: XAIClient, inp: QueryInput) -> str:
    if inp.is_vision and inp.model == "auto":
        model = MODEL_ALIASES["vision"]
    else:
        model = client.resolve_model(inp.model, inp.query, inp.context)
    if inp.is_vision and model not in VISION_CAPABLE_MODELS:
        raise ToolInputError(
            f"Model {model} does not support vision. Use 'auto', 'vision', "
            "or a vision-capable model like grok-4."
        )
    return model


def build_messages(inp: QueryInput) -> list[dict]:
    messages: list[dict] = []
    if inp.json_mode:
        messages.append({"role": "system", "content": JSON_MODE_SYSTEM_PROMPT})
    if inp.context:
        messages.append({"role": "system", "content": inp.context})

    if inp.is_vision:
        content: Any = [
            {"type": "image_url", "image_url": {"url": inp.image_url, "detail": inp.image_detail}},
            {"type": "text", "text": inp.query},
        ]
    else:
        content = inp.query
    messages.append({"role": "user", "content": content})
    return messages


async def execute_query(client: XAIClient, inp: QueryInput, model: str) -> QueryResult:
    start = time.monotonic()
    response = await client.chat_completion(
        model=model,
        messages=build_messages(inp),
        max_tokens=inp.max_tokens,
        temperature=inp.temperature,
        top_p=inp.top_p,
        timeout_ms=inp.timeout_ms,
    )
    text = message_text(response)
    usage = TokenUsage.from_api(response.get("usage"))
    response_model = response.get("model") or model
    return QueryResult(
        response=text,
        model=response_model,
        usage=usage,
        cost=client.calculate_cost(response_model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        json_result=parse_json_text(text) if inp.json_mode else None,
    )


async def execute_query_streaming(client: XAIClient, inp: QueryInput, model: str) -> QueryResult:
    start = time.monotonic()
    timeout_ms = get_model_timeout(model, inp.timeout_ms, client.timeout_ms)
    chunks = client.chat_completion_stream(
        model=model,
        messages=build_messages(inp),
        max_tokens=inp.max_tokens,
        temperature=inp.temperature,
        top_p=inp.top_p,
        timeout_ms=timeout_ms,
    )
    stream = await accumulate_stream(
        chunks,
        timeout_ms=timeout_ms,
        prompt_text=inp.query + (inp.context or ""),
    )
    usage = stream.usage
    return QueryResult(
        response=stream.text,
        model=model,
        usage=usage,
        cost=client.calculate_cost(model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        partial=stream.partial,
        chunks_received=stream.chunks_received,
        json_result=parse_json_text(stream.text) if inp.json_mode and not stream.partial else None,
    )


def cheaper_alternatives(model: str) -> list[tuple[str, int]]:
    """Models at least 50% cheaper on output than ``model``, at most two."""
    tier = MODEL_COST_TIERS.get(model)
    if tier is None or tier[0] == "cheap":
        return []
    current_rate = tier[1]
    alternatives = []
    for other, (_, rate) in MODEL_COST_TIERS.items():
        if rate < current_rate:
            savings = round((1 - rate / current_rate) * 100)
            if savings >= 50:
                alternatives.append((other, savings))
    return alternatives[:2]


def format_query_response(
    result: QueryResult,
    *,
    original_model: str,
    auto_selection: Optional[AutoModelSelection] = None,
    cache_ttl_seconds: Optional[int] = None,
    budget_used_percent: Optional[float] = None,
    remaining_budget: Optional[float] = None,
    limit_usd: Optional[float] = None,
    is_vision: bool = False,
) -> str:
    lines = ["🤖 **Grok:**", "", result.response, "", "---"]

    status = []
    if result.cached:
        if cache_ttl_seconds:
            status.append(f"📦 **CACHED** ({-(-cache_ttl_seconds // 60)}m remaining)")
        else:
            status.append("📦 **CACHED**")
    if result.partial:
        status.append(f"⚠️ **PARTIAL** ({result.chunks_received} chunks)")
    if is_vision:
        status.append("🖼️ **VISION**")

    score = auto_selection.complexity_score if auto_selection else None
    if original_model == "auto" and score is not None:
        status.append(f"{result.model} (complexity: {score.adjusted}%, confidence: {score.confidence}%)")
    else:
        status.append(result.model)

    status.append(f"{result.usage.total_tokens} tokens")
    status.append(f"${result.cost.estimated_usd:.4f}")
    status.append(f"{result.response_time_ms}ms")
    lines.append(f"⚡ *{' • '.join(status)}*")

    if result.json_result is not None:
        lines.append("")
        if result.json_result.json_valid:
            lines.append("✅ **JSON Valid**")
        else:
            lines.append(f"⚠️ **JSON Parse Error**: {result.json_result.parse_error}")

    warnings = []
    if original_model == "auto" and score is not None and score.confidence < LOW_CONFIDENCE_PERCENT:
        warnings.append(
            f"⚠️ Low confidence ({score.confidence}%) - consider specifying the model explicitly"
        )
    if budget_used_percent is not None:
        if budget_used_percent >= BUDGET_ALERT_PERCENT:
            warnings.append(
                f"⚠️ **Budget Alert**: {budget_used_percent:.0f}% used "
                f"(${remaining_budget:.2f} of ${limit_usd:.2f} remaining)"
            )
        elif budget_used_percent >= BUDGET_NOTICE_PERCENT:
            warnings.append(f"💰 Budget: {budget_used_percent:.0f}% used (${remaining_budget:.2f} remaining)")
    if not result.cached and result.cost.estimated_usd > 0.01:
        alternatives = cheaper_alternatives(result.model)
        if alternatives:
            tips = " or ".join(f"`{m}` ({pct}% cheaper)" for m, pct in alternatives)
            warnings.append(f"💡 **Tip**: For similar queries, try {tips}")
    if result.cost.estimated_usd > EXPENSIVE_QUERY_COST and not result.cached:
        warnings.append(f"💸 This query cost ${result.cost.estimated_usd:.4f}")

    if warnings:
        lines.append("")
        lines.append("\n".join(warnings))

    return "\n".join(lines)


async def handle_grok_query(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_query tool invocation."""
    try:
        inp = validate_query_input(arguments)

        auto_selection = None
        if inp.model == "auto" and not inp.is_vision:
            auto_selection = client.select_auto_model(inp.query, inp.context)
        model = resolve_query_model(client, inp)

        # vision answers depend on the image, which is not part of the key
        cache_key = None
        if not inp.stream and not inp.is_vision:
            cache_key = services.cache.generate_key(
                inp.query, model, inp.context, mode="json" if inp.json_mode else None
            )

        if inp.stream:
            call = lambda: execute_query_streaming(client, inp, model)  # noqa: E731
        else:
            call = lambda: execute_query(client, inp, model)  # noqa: E731

        result = await run_governed(
            services,
            call,
            model=model,
            estimated_input_tokens=estimate_tokens(inp.query, inp.context),
            estimated_output_tokens=inp.max_tokens,
            cache_key=cache_key,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Error", e)

    tracker = services.cost_tracker
    options = tracker.get_options()
    text = format_query_response(
        result,
        original_model=inp.model,
        auto_selection=auto_selection,
        cache_ttl_seconds=services.cache.get_ttl_remaining(cache_key) if result.cached else None,
        budget_used_percent=tracker.get_budget_used_percent(),
        remaining_budget=tracker.get_remaining_budget(),
        limit_usd=options.limit_usd,
        is_vision=inp.is_vision,
    )
    return text_result(text)
