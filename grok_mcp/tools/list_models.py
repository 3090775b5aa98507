"""grok_models: available models with capabilities, pricing and aliases."""

from dataclasses import dataclass, field
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from ..client import XAIClient
from ..errors import GrokMCPError
from ..models import CATEGORY_MODELS, MODEL_ALIASES, MODEL_PRICING
from .common import ToolInputError, failure, format_context_window, get_bool, text_result

MODEL_CAPABILITIES = {
    "grok-4-0709": ["chat", "reasoning", "code", "vision", "function-calling"],
    "grok-4-fast-non-reasoning": ["chat", "code", "function-calling"],
    "grok-4-fast-reasoning": ["chat", "reasoning", "code", "function-calling"],
    "grok-4-1-fast-non-reasoning": ["chat", "code", "function-calling"],
    "grok-4-1-fast-reasoning": ["chat", "reasoning", "code", "function-calling", "extended-thinking"],
    "grok-code-fast-1": ["chat", "code", "function-calling", "agentic"],
    "grok-3": ["chat", "code", "function-calling"],
    "grok-3-mini": ["chat", "code"],
    "grok-2-vision-1212": ["chat", "vision"],
    "grok-2-1212": ["chat"],
    "grok-2-image-1212": ["chat", "image-generation"],
}

MODEL_CONTEXT_WINDOWS = {
    "grok-4-0709": 256_000,
    "grok-4-fast-non-reasoning": 2_000_000,
    "grok-4-fast-reasoning": 2_000_000,
    "grok-4-1-fast-non-reasoning": 2_000_000,
    "grok-4-1-fast-reasoning": 2_000_000,
    "grok-code-fast-1": 256_000,
    "grok-3": 131_000,
    "grok-3-mini": 131_000,
    "grok-2-vision-1212": 32_000,
    "grok-2-1212": 32_000,
    "grok-2-image-1212": 32_000,
}

MODEL_RECOMMENDATIONS = {
    "grok-4-0709": ["complex reasoning", "multi-step analysis", "vision tasks"],
    "grok-4-fast-non-reasoning": ["quick queries", "cost-effective", "general tasks"],
    "grok-4-fast-reasoning": ["quick queries with reasoning", "balanced tasks"],
    "grok-4-1-fast-non-reasoning": ["high-speed processing", "large context"],
    "grok-4-1-fast-reasoning": ["extended thinking", "chain-of-thought", "large context"],
    "grok-code-fast-1": ["code generation", "agentic coding", "refactoring"],
    "grok-3": ["legacy compatibility", "simple queries"],
    "grok-3-mini": ["lightweight tasks", "cost-sensitive"],
    "grok-2-vision-1212": ["image analysis", "visual understanding"],
    "grok-2-1212": ["legacy support"],
    "grok-2-image-1212": ["image generation"],
}

RECOMMENDED_MODELS = {
    "general": CATEGORY_MODELS["complex"],
    "fast": CATEGORY_MODELS["simple"],
    "code": CATEGORY_MODELS["code"],
    "reasoning": CATEGORY_MODELS["reasoning"],
}

DEPRECATED_MARKERS = ("beta", "preview", "1212")
STATUS_ICONS = {"available": "✓", "deprecated": "⚠️", "unknown": "?"}

MODELS_TOOL = Tool(
    name="grok_models",
    description=(
        "List available Grok models with capabilities, pricing, and recommendations. "
        "Results are cached for 1 hour unless refresh is requested."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "refresh": {
                "type": "boolean",
                "description": "Force refresh from API, bypassing cache (default: false)",
                "default": False,
            },
        },
        "additionalProperties": False,
    },
)


@dataclass
class ModelInfo:
    id: str
    context_window: int
    input_per_1m: float
    output_per_1m: float
    status: str
    alias: Optional[str] = None
    capabilities: list[str] = field(default_factory=list)
    recommended_for: list[str] = field(default_factory=list)


def find_model_alias(model_id: str) -> Optional[str]:
    for alias, target in MODEL_ALIASES.items():
        if target == model_id:
            return alias
    return None


def get_model_status(model_id: str) -> str:
    if any(marker in model_id for marker in DEPRECATED_MARKERS):
        return "deprecated"
    if model_id in MODEL_PRICING:
        return "available"
    return "unknown"


def describe_model(entry: dict) -> ModelInfo:
    """Merge an API model entry with the locally known capabilities and pricing."""
    model_id = entry["id"]
    pricing = MODEL_PRICING.get(model_id, {"input": 0, "output": 0})
    return ModelInfo(
        id=model_id,
        alias=find_model_alias(model_id),
        context_window=MODEL_CONTEXT_WINDOWS.get(model_id) or entry.get("context_window") or 0,
        capabilities=MODEL_CAPABILITIES.get(model_id) or entry.get("capabilities") or [],
        input_per_1m=pricing["input"],
        output_per_1m=pricing["output"],
        status=get_model_status(model_id),
        recommended_for=MODEL_RECOMMENDATIONS.get(model_id, []),
    )


def sort_models(models: list[ModelInfo]) -> list[ModelInfo]:
    """Available models first, then by context window, largest first."""
    return sorted(models, key=lambda m: (m.status != "available", -m.context_window))


def format_model_row(model: ModelInfo) -> str:
    alias = f"({model.alias})" if model.alias else ""
    pricing = f"${model.input_per_1m}/${model.output_per_1m}" if model.input_per_1m > 0 else "Unknown"
    return (
        f"| {model.id} {alias} | {format_context_window(model.context_window)} "
        f"| {pricing} | {STATUS_ICONS[model.status]} |"
    )


def format_models_output(models: list[ModelInfo], cached: bool, cache_expires_at: Optional[str]) -> str:
    lines = [
        "## Available Grok Models",
        "",
        "| Model | Context | Pricing (per 1M) | Status |",
        "|-------|---------|------------------|--------|",
        *(format_model_row(m) for m in models),
        "",
        "### Recommended Models",
        "",
        f"- **General tasks**: `{RECOMMENDED_MODELS['general']}`",
        f"- **Fast/cheap**: `{RECOMMENDED_MODELS['fast']}`",
        f"- **Code generation**: `{RECOMMENDED_MODELS['code']}`",
        f"- **Reasoning**: `{RECOMMENDED_MODELS['reasoning']}`",
        "",
        "### Model Aliases",
        "",
        "| Alias | Resolves To |",
        "|-------|-------------|",
        *(f"| {alias} | {target} |" for alias, target in MODEL_ALIASES.items()),
        "",
        "---",
        f"Cached: {'Yes' if cached else 'No'}" + (f" (expires: {cache_expires_at})" if cache_expires_at else ""),
    ]
    return "\n".join(lines)


async def handle_grok_models(arguments: dict[str, Any], client: XAIClient, services=None) -> CallToolResult:
    """Handle grok_models tool invocation."""
    try:
        refresh = get_bool(arguments, "refresh")
        cached = client.is_models_cached() and not refresh
        response = await client.list_models(force_refresh=refresh)
    except (GrokMCPError, ToolInputError) as e:
        return failure("Error", e)

    models = sort_models([describe_model(m) for m in response.get("data", []) if m.get("id")])
    expiry = client.get_models_cache_expiry()
    return text_result(format_models_output(models, cached, expiry.isoformat() if expiry else None))
