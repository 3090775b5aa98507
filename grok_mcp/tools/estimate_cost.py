"""
grok_estimate_cost: pre-flight cost estimate for a query. No API call is made.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from ..models import calculate_complexity_score, get_pricing, resolve_model
from .common import ToolInputError, error_result, get_int, get_string, text_result

HIGH_COST_WARNING_USD = 0.1
PREMIUM_MODEL_WARNING_USD = 0.01

# (base multiplier of input tokens, minimum output tokens)
OUTPUT_MULTIPLIERS = {
    "code": (4.0, 500),
    "reasoning": (3.5, 400),
    "complex": (3.0, 350),
    "simple": (2.0, 150),
}

_ASSIGNMENT_RE = re.compile(r"\b(const|let|var)\s+\w+\s*=")

ESTIMATE_COST_TOOL = Tool(
    name="grok_estimate_cost",
    description=(
        "Estimate the cost of a Grok query before running it. Returns token estimates, "
        "a cost breakdown and model pricing. Does not call the API."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The query text to estimate the cost for",
            },
            "model": {
                "type": "string",
                "description": (
                    'Model to use for estimation. Default: auto. Use aliases like '
                    '"fast", "smartest", "code", "reasoning"'
                ),
            },
            "context": {
                "type": "string",
                "description": "Additional system context that would be included with the query",
            },
            "max_tokens": {
                "type": "integer",
                "minimum": 1,
                "maximum": 100000,
                "description": "Expected maximum output tokens. Default: estimated from the query",
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    },
)


@dataclass
class CostBreakdown:
    model: str
    input_tokens: int
    output_tokens: int
    input_cost_usd: float
    output_cost_usd: float
    input_per_1m: float
    output_per_1m: float
    warning: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost_usd(self) -> float:
        return self.input_cost_usd + self.output_cost_usd


def estimate_message_tokens(text: Optional[str]) -> int:
    """Tokens for one message: whitespace-normalized chars / 4, plus 4 for message framing."""
    if not text:
        return 0
    normalized = " ".join(text.split())
    return max(1, -(-len(normalized) // 4) + 4)


def _quick_complexity(query: str, context: Optional[str]) -> tuple[int, str]:
    score = calculate_complexity_score(f"{query} {context or ''}")
    code = score.code_score
    if context and ("```" not in query) and (
        "```" in context or "function " in context or "class " in context or _ASSIGNMENT_RE.search(context)
    ):
        code += 15

    top = max(code, score.reasoning_score, score.complexity_score)
    if top == 0:
        return 0, "simple"
    if code == top:
        category = "code"
    elif score.reasoning_score == top:
        category = "reasoning"
    else:
        category = "complex"
    return min(100, top), category


def estimate_output_tokens(query: str, context: Optional[str] = None, max_tokens: Optional[int] = None) -> int:
    """
    Expected completion length.

    An explicit ``max_tokens`` wins. Otherwise the input size is scaled by a
    per-category multiplier, boosted by up to 50% for high-complexity queries.
    """
    if max_tokens:
        return max_tokens
    score, category = _quick_complexity(query, context)
    base, minimum = OUTPUT_MULTIPLIERS[category]
    multiplier = base * (1 + (score / 100) * 0.5)
    return max(minimum, round(estimate_message_tokens(query) * multiplier))


def cost_warning(cost_usd: float, model: str) -> Optional[str]:
    if cost_usd > HIGH_COST_WARNING_USD:
        return (
            f"High cost warning: This query is estimated to cost ${cost_usd:.4f}. "
            'Consider using a cheaper model like "fast" or "cheap".'
        )
    if "grok-4" in model and "fast" not in model and cost_usd > PREMIUM_MODEL_WARNING_USD:
        return 'Using premium model: Consider "fast" or "code" aliases for lower cost.'
    return None


def estimate_query_cost(
    query: str,
    model: str = "auto",
    context: Optional[str] = None,
    max_tokens: Optional[int] = None,
) -> CostBreakdown:
    resolved = resolve_model(model, query, context)
    pricing = get_pricing(resolved)
    input_tokens = estimate_message_tokens(query) + estimate_message_tokens(context)
    output_tokens = estimate_output_tokens(query, context, max_tokens)
    input_cost = input_tokens / 1_000_000 * pricing["input"]
    output_cost = output_tokens / 1_000_000 * pricing["output"]
    return CostBreakdown(
        model=resolved,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        input_cost_usd=input_cost,
        output_cost_usd=output_cost,
        input_per_1m=pricing["input"],
        output_per_1m=pricing["output"],
        warning=cost_warning(input_cost + output_cost, resolved),
    )


def format_estimate_output(estimate: CostBreakdown) -> str:
    lines = ["🤖 **Grok Cost Estimate:**", ""]
    if estimate.warning:
        lines.extend([f"> ⚠️ **{estimate.warning}**", ""])
    lines.extend([
        f"### Estimated Cost: ${estimate.total_cost_usd:.6f}",
        "",
        "| Component | Tokens | Cost |",
        "|-----------|--------|------|",
        f"| Input | {estimate.input_tokens:,} | ${estimate.input_cost_usd:.6f} |",
        f"| Output (est.) | {estimate.output_tokens:,} | ${estimate.output_cost_usd:.6f} |",
        f"| **Total** | **{estimate.total_tokens:,}** | **${estimate.total_cost_usd:.6f}** |",
        "",
        "### Model Pricing",
        f"- **Model:** {estimate.model}",
        f"- **Input:** ${estimate.input_per_1m:.2f} per 1M tokens",
        f"- **Output:** ${estimate.output_per_1m:.2f} per 1M tokens",
        "",
        "---",
        f"⚡ *{estimate.model} • Token counts are estimates. Actual costs may vary.*",
    ])
    return "\n".join(lines)


async def handle_grok_estimate_cost(arguments: dict[str, Any], client=None, services=None) -> CallToolResult:
    """Handle grok_estimate_cost tool invocation."""
    try:
        estimate = estimate_query_cost(
            query=get_string(arguments, "query", required=True),
            model=get_string(arguments, "model") or "auto",
            context=get_string(arguments, "context"),
            max_tokens=get_int(arguments, "max_tokens", minimum=1, maximum=100_000),
        )
    except ToolInputError as e:
        return error_result(f"Error estimating cost: {e}")
    return text_result(format_estimate_output(estimate))
