"""Helpers shared by the tool handlers: results, argument checks, formatting."""

import json
import re
from typing import Any, Optional

from mcp.types import CallToolResult, TextContent

from ..errors import (
    BudgetExceeded,
    RateLimitExceeded,
    RateLimitTimeout,
    UpstreamAuthError,
    UpstreamRateLimited,
    UpstreamTimeout,
    XAIError,
)
from ..results import JsonResult, QueryResult


class ToolInputError(ValueError):
    """Invalid tool arguments."""


# =============================================================================
# Results
# =============================================================================

def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)])


def error_result(text: str) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        isError=True,
    )


def describe_error(exc: BaseException) -> str:
    """User-facing message for an exception, with a hint where one helps."""
    if isinstance(exc, BudgetExceeded):
        return (
            f"{exc} Budget used: {exc.used_percent:.0f}%. "
            "Use grok_estimate_cost to plan queries, choose a cheaper model, "
            "or raise GROK_COST_LIMIT_USD."
        )
    if isinstance(exc, RateLimitTimeout):
        return f"{exc} The server is handling too many requests; try again shortly."
    if isinstance(exc, RateLimitExceeded):
        return f"{exc} Wait for the rate limit window to reset."
    if isinstance(exc, UpstreamAuthError):
        return f"Grok API error ({exc.status_code}): {exc}. Check your XAI_API_KEY environment variable."
    if isinstance(exc, UpstreamRateLimited):
        return f"Grok API error (429): {exc}. Rate limit exceeded. Try again later."
    if isinstance(exc, UpstreamTimeout):
        return f"Grok API error ({exc.status_code}): {exc}. Increase the timeout or use a faster model."
    if isinstance(exc, XAIError):
        return f"Grok API error ({exc.status_code}): {exc}"
    return str(exc) or type(exc).__name__


def failure(prefix: str, exc: BaseException) -> CallToolResult:
    return error_result(f"{prefix}: {describe_error(exc)}")


# =============================================================================
# Argument validation
# =============================================================================

def get_string(
    arguments: dict[str, Any],
    name: str,
    *,
    required: bool = False,
    max_length: Optional[int] = None,
    default: Optional[str] = None,
) -> Optional[str]:
    value = arguments.get(name)
    if value is None:
        if required:
            raise ToolInputError(f"'{name}' is required")
        return default
    if not isinstance(value, str):
        raise ToolInputError(f"'{name}' must be a string")
    if required and not value.strip():
        raise ToolInputError(f"'{name}' cannot be empty")
    if max_length is not None and len(value) > max_length:
        raise ToolInputError(f"'{name}' exceeds maximum length of {max_length:,} characters")
    return value


def get_int(
    arguments: dict[str, Any],
    name: str,
    *,
    default: Optional[int] = None,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> Optional[int]:
    value = arguments.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise ToolInputError(f"'{name}' must be an integer")
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ToolInputError(f"'{name}' must be between {minimum:,} and {maximum:,}")
    return value


def get_number(
    arguments: dict[str, Any],
    name: str,
    *,
    default: Optional[float] = None,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> Optional[float]:
    value = arguments.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolInputError(f"'{name}' must be a number")
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise ToolInputError(f"'{name}' must be between {minimum} and {maximum}")
    return float(value)


def get_bool(arguments: dict[str, Any], name: str, default: bool = False) -> bool:
    value = arguments.get(name)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ToolInputError(f"'{name}' must be a boolean")
    return value


def get_choice(arguments: dict[str, Any], name: str, choices: list[str], default: str) -> str:
    value = arguments.get(name)
    if value is None:
        return default
    if value not in choices:
        raise ToolInputError(f"'{name}' must be one of: {', '.join(choices)}")
    return value


def get_string_list(arguments: dict[str, Any], name: str, limit: Optional[int] = None) -> list[str]:
    value = arguments.get(name)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ToolInputError(f"'{name}' must be an array of strings")
    return value[:limit] if limit else value


# =============================================================================
# Formatting
# =============================================================================

def message_text(response: dict) -> str:
    """Assistant text from a chat completion, joining multimodal text parts."""
    choices = response.get("choices") or []
    if not choices:
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(p.get("text", "") for p in content if isinstance(p, dict) and p.get("type") == "text")


def parse_json_text(text: str) -> JsonResult:
    """Parse model output as JSON, unwrapping a fenced code block if present."""
    candidate = text.strip()
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        return JsonResult(json_valid=True, parsed=json.loads(candidate))
    except json.JSONDecodeError as e:
        return JsonResult(json_valid=False, parse_error=str(e))


def usage_footer(result: QueryResult) -> str:
    return (
        f"⚡ *{result.model} • {result.usage.total_tokens} tokens • "
        f"${result.cost.estimated_usd:.4f} • {result.response_time_ms}ms*"
    )


def format_context_window(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1000:
        return f"{tokens / 1000:.0f}K"
    return str(tokens)
