"""grok_status: rate limits, cache and session metrics for this server."""

import math
from typing import Any

from mcp.types import CallToolResult, Tool

from ..services import Services
from .common import ToolInputError, error_result, get_bool, text_result

STATUS_ICONS = {
    "operational": "✅",
    "rate_limited": "⚠️",
    "budget_exceeded": "🛑",
}

STATUS_TOOL = Tool(
    name="grok_status",
    description=(
        "Get current status of the Grok MCP server including rate limits, cache stats, "
        "and session metrics."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "include_details": {
                "type": "boolean",
                "description": "Include detailed breakdown by model and memory usage (default: false)",
            },
        },
        "additionalProperties": False,
    },
)


def determine_status(services: Services) -> str:
    summary = services.cost_tracker.get_usage_summary()
    if summary.limit_enforced and summary.remaining_budget_usd <= 0:
        return "budget_exceeded"
    if services.rate_limiter.is_rate_limited():
        return "rate_limited"
    return "operational"


def get_status_report(services: Services, include_details: bool = False) -> dict[str, Any]:
    """Collect a snapshot of every service into a plain dict."""
    limiter = services.rate_limiter.get_status()
    cache_stats = services.cache.get_stats()
    summary = services.cost_tracker.get_usage_summary()

    report: dict[str, Any] = {
        "status": determine_status(services),
        "rate_limits": {
            "tokens_remaining": limiter.tokens_remaining,
            "requests_remaining": limiter.requests_remaining,
            "reset_in_seconds": math.ceil(limiter.reset_in_ms / 1000),
            "pending": limiter.pending_count,
            "is_limited": limiter.is_limited,
        },
        "cache": {
            "enabled": services.cache.is_enabled(),
            "hit_rate_percent": services.cache.get_hit_rate(),
            "entries": cache_stats.size,
            "max_entries": cache_stats.max_entries,
        },
        "session": {
            "queries": summary.query_count,
            "total_cost_usd": summary.total_cost_usd,
            "remaining_budget_usd": summary.remaining_budget_usd,
            "budget_used_percent": summary.budget_used_percent,
            "duration_minutes": round(services.cost_tracker.get_session_duration() / 60_000),
        },
    }

    if include_details:
        report["details"] = {
            "cache_bytes": cache_stats.approximate_bytes,
            "rate_limit_tier": limiter.tier,
            "cost_by_model": {model: usage.cost for model, usage in summary.by_model.items()},
            "retry_state": {
                "count": limiter.retry_count,
                "delay_ms": limiter.current_retry_delay_ms,
            },
        }
    return report


def format_status_output(report: dict[str, Any]) -> str:
    status = report["status"]
    limits = report["rate_limits"]
    cache = report["cache"]
    session = report["session"]

    lines = [
        f"## Grok MCP Status: {STATUS_ICONS[status]} {status.upper()}",
        "",
        "### Rate Limits",
        f"- **Tokens Remaining:** {limits['tokens_remaining']:,}",
        f"- **Requests Remaining:** {limits['requests_remaining']:,}",
        f"- **Reset In:** {limits['reset_in_seconds']}s",
    ]
    if limits["pending"]:
        lines.append(f"- **In Flight:** {limits['pending']}")
    if limits["is_limited"]:
        lines.append("- **Status:** ⚠️ Rate limited")
    lines.extend([
        "",
        "### Cache",
        f"- **Enabled:** {'Yes' if cache['enabled'] else 'No'}",
        f"- **Hit Rate:** {cache['hit_rate_percent']}%",
        f"- **Entries:** {cache['entries']} / {cache['max_entries']}",
        "",
        "### Session",
        f"- **Queries:** {session['queries']}",
        f"- **Total Cost:** ${session['total_cost_usd']:.4f}",
        f"- **Remaining Budget:** ${session['remaining_budget_usd']:.2f}",
        f"- **Budget Used:** {session['budget_used_percent']:.1f}%",
        f"- **Duration:** {session['duration_minutes']} minutes",
    ])

    details = report.get("details")
    if details:
        lines.extend([
            "",
            "### Details",
            f"- **Cache Memory:** {details['cache_bytes'] / 1024:.1f} KB",
            f"- **API Tier:** {details['rate_limit_tier']}",
        ])
        if details["cost_by_model"]:
            lines.extend(["", "**Cost by Model:**"])
            lines.extend(f"- {model}: ${cost:.4f}" for model, cost in details["cost_by_model"].items())
        retry = details["retry_state"]
        if retry["count"] > 0:
            lines.extend(["", f"**Retry State:** {retry['count']} retries, {retry['delay_ms']}ms delay"])

    return "\n".join(lines)


async def handle_grok_status(arguments: dict[str, Any], client=None, services: Services = None) -> CallToolResult:
    """Handle grok_status tool invocation."""
    try:
        include_details = get_bool(arguments, "include_details")
    except ToolInputError as e:
        return error_result(f"Error getting status: {e}")
    return text_result(format_status_output(get_status_report(services, include_details)))
