"""grok_reason: step-by-step reasoning with an optional thinking trace."""

import re
import time
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from ..client import XAIClient
from ..errors import GrokMCPError
from ..governance import run_governed
from ..models import estimate_tokens
from ..results import QueryResult, TokenUsage
from ..services import Services
from .common import (
    ToolInputError,
    failure,
    get_bool,
    get_choice,
    get_string,
    message_text,
    text_result,
    usage_footer,
)

DEFAULT_REASONING_MODEL = "grok-4-1-fast-reasoning"

EFFORT_CONFIG = {
    "low": {
        "temperature": 0.3,
        "max_tokens": 2000,
        "system_prompt": (
            "You are a reasoning assistant. Provide a concise analysis with clear logical steps.\n"
            "Be direct and focus on the most likely correct answer.\n"
            "Format: Brief thinking, then the answer"
        ),
    },
    "medium": {
        "temperature": 0.5,
        "max_tokens": 4000,
        "system_prompt": """You are a reasoning assistant specializing in careful analysis.
Work through the problem step by step, considering multiple angles.
Format:
<thinking>
[Your step-by-step reasoning process]
</thinking>

<answer>
[Your final conclusion]
</answer>""",
    },
    "high": {
        "temperature": 0.7,
        "max_tokens": 8000,
        "system_prompt": """You are an expert reasoning assistant for complex problems.
Engage in deep, thorough analysis:
1. Break down the problem into components
2. Consider multiple perspectives and approaches
3. Evaluate evidence and assumptions
4. Identify potential edge cases or counterarguments
5. Synthesize insights into a well-reasoned conclusion

Format:
<thinking>
## Understanding the Problem
[Initial analysis]

## Key Considerations
[Important factors to consider]

## Reasoning Steps
[Detailed step-by-step reasoning]

## Potential Issues
[Edge cases, counterarguments]

## Synthesis
[Bringing it all together]
</thinking>

<answer>
[Your final, well-supported conclusion]
</answer>""",
    },
}

_THINKING_RE = re.compile(r"<thinking>([\s\S]*?)</thinking>", re.IGNORECASE)
_ANSWER_RE = re.compile(r"<answer>([\s\S]*?)</answer>", re.IGNORECASE)
_CONCLUSION_RES = [
    re.compile(
        r"(?:^|\n)(?:Final (?:Answer|Conclusion)|Therefore|In conclusion|To summarize)[:\s]*(.*)$",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(r"(?:^|\n)(?:Answer|Conclusion)[:\s]*(.*)$", re.IGNORECASE | re.DOTALL),
]

REASON_TOOL = Tool(
    name="grok_reason",
    description=(
        "Extended reasoning with Grok's reasoning models. Works through complex problems "
        "step by step and can include the thinking trace in the output."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The question or problem to reason through",
            },
            "effort": {
                "type": "string",
                "enum": ["low", "medium", "high"],
                "default": "medium",
                "description": (
                    "Reasoning effort level: low (quick analysis), medium (balanced), "
                    "high (thorough deep thinking)"
                ),
            },
            "show_thinking": {
                "type": "boolean",
                "default": True,
                "description": "Whether to include the thinking/reasoning process in the output",
            },
            "model": {
                "type": "string",
                "description": f"Model to use for reasoning. Default: {DEFAULT_REASONING_MODEL}",
            },
            "context": {
                "type": "string",
                "description": "Additional context or background information relevant to the problem",
            },
        },
        "required": ["query"],
        "additionalProperties": False,
    },
)


def parse_reasoning_response(text: str) -> tuple[str, str]:
    """Split a response into (thinking, answer)."""
    thinking = _THINKING_RE.search(text)
    answer = _ANSWER_RE.search(text)
    if thinking and answer:
        return thinking.group(1).strip(), answer.group(1).strip()

    for pattern in _CONCLUSION_RES:
        match = pattern.search(text)
        if match:
            return text[: match.start()].strip(), match.group(1).strip()

    return "", text


def build_reason_messages(query: str, effort: str, context: Optional[str] = None) -> list[dict]:
    messages = [{"role": "system", "content": EFFORT_CONFIG[effort]["system_prompt"]}]
    if context:
        messages.append({"role": "user", "content": f"Context:\n{context}"})
        messages.append(
            {"role": "assistant", "content": "I understand the context. Please provide your question."}
        )
    messages.append({"role": "user", "content": query})
    return messages


async def execute_reason(
    client: XAIClient,
    query: str,
    model: str,
    effort: str = "medium",
    context: Optional[str] = None,
) -> QueryResult:
    config = EFFORT_CONFIG[effort]
    start = time.monotonic()
    response = await client.chat_completion(
        model=model,
        messages=build_reason_messages(query, effort, context),
        temperature=config["temperature"],
        max_tokens=config["max_tokens"],
    )
    thinking, answer = parse_reasoning_response(message_text(response))
    usage = TokenUsage.from_api(response.get("usage"))
    response_model = response.get("model") or model
    return QueryResult(
        response=answer,
        model=response_model,
        usage=usage,
        cost=client.calculate_cost(response_model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={"effort": effort, "thinking": thinking},
    )


def format_reason_output(result: QueryResult, show_thinking: bool = True) -> str:
    lines = [
        "🤖 **Grok Reasoning:**",
        "",
        f"**Model:** {result.model} | **Effort:** {result.extra.get('effort')}",
        "",
    ]

    thinking = result.extra.get("thinking")
    if show_thinking and thinking:
        lines.extend([
            "### Thinking Process",
            "",
            "<details>",
            "<summary>Click to expand reasoning trace</summary>",
            "",
            thinking,
            "",
            "</details>",
            "",
        ])

    lines.extend(["### Answer", "", result.response, "", "---", usage_footer(result)])
    return "\n".join(lines)


async def handle_grok_reason(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_reason tool invocation."""
    try:
        query = get_string(arguments, "query", required=True)
        effort = get_choice(arguments, "effort", list(EFFORT_CONFIG), "medium")
        show_thinking = get_bool(arguments, "show_thinking", default=True)
        context = get_string(arguments, "context")
        model = client.resolve_model(get_string(arguments, "model") or DEFAULT_REASONING_MODEL)

        result = await run_governed(
            services,
            lambda: execute_reason(client, query, model, effort, context),
            model=model,
            estimated_input_tokens=estimate_tokens(query, context),
            estimated_output_tokens=EFFORT_CONFIG[effort]["max_tokens"],
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Error in reasoning", e)

    return text_result(format_reason_output(result, show_thinking))
