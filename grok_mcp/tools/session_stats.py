"""grok_session_stats: usage analytics for the current server session."""

import json
from datetime import datetime, timezone
from typing import Any

from mcp.types import CallToolResult, Tool

from ..services import CostTracker, Services
from .common import ToolInputError, error_result, get_choice, text_result

DETAIL_LEVELS = ["summary", "detailed", "full"]
OUTPUT_FORMATS = ["markdown", "json"]
TIMELINE_LENGTH = 10

format_cost = CostTracker.format_cost

SESSION_STATS_TOOL = Tool(
    name="grok_session_stats",
    description=(
        "Get detailed session analytics including queries, tokens, cost, cache efficiency, "
        "and per-model breakdown."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "detail_level": {
                "type": "string",
                "enum": DETAIL_LEVELS,
                "description": (
                    "Level of detail: summary (default), detailed (per-model breakdown), "
                    "or full (all metrics with timeline)"
                ),
            },
            "format": {
                "type": "string",
                "enum": OUTPUT_FORMATS,
                "description": "Output format: markdown (default, human-readable) or json (structured data)",
            },
        },
        "additionalProperties": False,
    },
)


def format_duration(ms: int) -> str:
    total = ms // 1000
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def get_session_stats(services: Services, detail_level: str = "summary") -> dict[str, Any]:
    tracker = services.cost_tracker
    summary = tracker.get_usage_summary()
    duration_ms = tracker.get_session_duration()
    cache_stats = services.cache.get_stats()

    queries = summary.query_count
    total_tokens = summary.total_input_tokens + summary.total_output_tokens
    duration_minutes = duration_ms / 60_000
    tokens_per_query = total_tokens / queries if queries else 0
    cost_per_query = summary.total_cost_usd / queries if queries else 0

    stats: dict[str, Any] = {
        "session": {
            "started_at": tracker.get_session_start_time().isoformat(),
            "duration": format_duration(duration_ms),
            "duration_seconds": duration_ms // 1000,
        },
        "totals": {
            "queries": queries,
            "input_tokens": summary.total_input_tokens,
            "output_tokens": summary.total_output_tokens,
            "total_tokens": total_tokens,
            "cost_usd": summary.total_cost_usd,
            "cost_formatted": format_cost(summary.total_cost_usd),
        },
        "cache": {
            "hit_rate_percent": services.cache.get_hit_rate(),
            "hits": cache_stats.hits,
            "misses": cache_stats.misses,
            # hits are priced at the session average
            "tokens_saved": round(cache_stats.hits * tokens_per_query),
            "cost_saved_usd": cache_stats.hits * cost_per_query,
        },
        "rates": {
            "queries_per_minute": round(queries / duration_minutes, 2) if duration_minutes > 0 else 0,
            "tokens_per_query": round(tokens_per_query),
            "cost_per_query_usd": round(cost_per_query, 4),
        },
    }

    if detail_level in ("detailed", "full"):
        input_ratio = summary.total_input_tokens / total_tokens if total_tokens else 0.5
        by_model = {}
        for model, usage in summary.by_model.items():
            estimated_input = round(usage.tokens * input_ratio)
            by_model[model] = {
                "queries": usage.queries,
                "query_percent": round(usage.queries / queries * 100, 1) if queries else 0,
                "input_tokens": estimated_input,
                "output_tokens": usage.tokens - estimated_input,
                "total_tokens": usage.tokens,
                "cost_usd": usage.cost,
                "cost_formatted": format_cost(usage.cost),
                "cost_percent": round(usage.cost / summary.total_cost_usd * 100, 1) if summary.total_cost_usd else 0,
            }
        stats["by_model"] = by_model

    if detail_level == "full":
        recent = list(reversed(tracker.get_records()[-TIMELINE_LENGTH:]))
        stats["timeline"] = {
            "recent_queries": [
                {
                    "timestamp": datetime.fromtimestamp(r.timestamp, tz=timezone.utc).isoformat(),
                    "model": r.model,
                    "tokens": r.input_tokens + r.output_tokens,
                    "cost_usd": r.cost_usd,
                }
                for r in recent
            ]
        }

    return stats


def format_session_stats_markdown(stats: dict[str, Any]) -> str:
    session, totals, cache, rates = stats["session"], stats["totals"], stats["cache"], stats["rates"]
    lines = [
        "## Session Statistics",
        "",
        "### Session",
        f"- **Started:** {session['started_at']}",
        f"- **Duration:** {session['duration']}",
        "",
        "### Totals",
        f"- **Queries:** {totals['queries']}",
        f"- **Total Tokens:** {totals['total_tokens']:,} "
        f"({totals['input_tokens']:,} in / {totals['output_tokens']:,} out)",
        f"- **Total Cost:** {totals['cost_formatted']}",
        "",
        "### Cache Efficiency",
        f"- **Hit Rate:** {cache['hit_rate_percent']}%",
        f"- **Hits / Misses:** {cache['hits']} / {cache['misses']}",
    ]
    if cache["tokens_saved"] > 0:
        lines.append(
            f"- **Estimated Savings:** ~{cache['tokens_saved']:,} tokens (~{format_cost(cache['cost_saved_usd'])})"
        )
    lines.extend([
        "",
        "### Rates",
        f"- **Queries/min:** {rates['queries_per_minute']}",
        f"- **Tokens/query:** {rates['tokens_per_query']:,}",
        f"- **Cost/query:** {format_cost(rates['cost_per_query_usd'])}",
    ])

    by_model = stats.get("by_model")
    if by_model:
        lines.extend([
            "",
            "### Model Usage",
            "",
            "| Model | Queries | Tokens | Cost | % of Cost |",
            "|-------|---------|--------|------|-----------|",
        ])
        for model, m in by_model.items():
            lines.append(
                f"| {model} | {m['queries']} ({m['query_percent']}%) | {m['total_tokens']:,} "
                f"| {m['cost_formatted']} | {m['cost_percent']}% |"
            )

    timeline = stats.get("timeline", {}).get("recent_queries")
    if timeline:
        lines.extend(["", "### Recent Activity", ""])
        for i, entry in enumerate(timeline, 1):
            when = datetime.fromisoformat(entry["timestamp"]).strftime("%H:%M:%S")
            lines.append(
                f"{i}. {when} - {entry['model']} - {entry['tokens']:,} tokens - {format_cost(entry['cost_usd'])}"
            )

    return "\n".join(lines)


async def handle_grok_session_stats(
    arguments: dict[str, Any],
    client=None,
    services: Services = None,
) -> CallToolResult:
    """Handle grok_session_stats tool invocation."""
    try:
        detail_level = get_choice(arguments, "detail_level", DETAIL_LEVELS, "summary")
        output_format = get_choice(arguments, "format", OUTPUT_FORMATS, "markdown")
    except ToolInputError as e:
        return error_result(f"Error getting session stats: {e}")

    stats = get_session_stats(services, detail_level)
    if output_format == "json":
        return text_result(json.dumps(stats, indent=2))
    return text_result(format_session_stats_markdown(stats))
