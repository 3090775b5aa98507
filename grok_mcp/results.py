"""Result records passed between the client, the services and the tools."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    reasoning_tokens: Optional[int] = None

    @classmethod
    def from_api(cls, usage: Optional[dict]) -> "TokenUsage":
        """
        Build from an API usage block.

        The /responses endpoint reports input_tokens/output_tokens, chat
        completions report prompt_tokens/completion_tokens.
        """
        usage = usage or {}
        prompt = usage.get("prompt_tokens", usage.get("input_tokens", 0)) or 0
        completion = usage.get("completion_tokens", usage.get("output_tokens", 0)) or 0
        total = usage.get("total_tokens") or prompt + completion
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
            reasoning_tokens=usage.get("reasoning_tokens"),
        )


@dataclass
class CostEstimate:
    estimated_usd: float
    input_tokens: int
    output_tokens: int
    model: str
    input_per_1m: float
    output_per_1m: float


@dataclass
class JsonResult:
    json_valid: bool
    parsed: Any = None
    parse_error: Optional[str] = None


@dataclass
class QueryResult:
    """Outcome of one governed upstream call."""

    response: str
    model: str
    usage: TokenUsage
    cost: CostEstimate
    response_time_ms: int = 0
    cached: bool = False
    partial: bool = False
    chunks_received: int = 0
    json_result: Optional[JsonResult] = None
    # tool-specific payload (citations, images, ...)
    extra: dict[str, Any] = field(default_factory=dict)
