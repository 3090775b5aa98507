"""grok_execute_code: run Python server-side with the code_interpreter agent tool."""

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
from .common import ToolInputError, failure, get_bool, get_int, get_string, text_result
from .search import extract_output_text

DEFAULT_EXECUTE_MODEL = "grok-4-1-fast"
DEFAULT_MAX_TURNS = 3
MAX_CODE_LENGTH = 50_000
# room for the system prompt and the model's explanation
PROMPT_OVERHEAD_TOKENS = 500

EXECUTE_SYSTEM_PROMPT = """You are a Python code execution assistant. Your task is to:

1. Execute the provided Python code
2. Explain what the code does and what results it produced
3. If there are errors, explain what went wrong and suggest fixes
4. Present results clearly with proper formatting

Always be concise and focus on the execution results."""

ERROR_PATTERN = re.compile(r"error|exception|traceback|failed", re.IGNORECASE)
OUTPUT_BLOCK_PATTERN = re.compile(r"```(?:output|stdout|result)?\n([\s\S]*?)```")
OUTPUT_SECTION_PATTERN = re.compile(r"(?:Output|Result|Returns?):\s*\n?([\s\S]*?)(?:\n\n|$)", re.IGNORECASE)

EXECUTE_CODE_TOOL = Tool(
    name="grok_execute_code",
    description="Execute Python code server-side for calculations, data analysis, and algorithm testing.",
    inputSchema={
        "type": "object",
        "properties": {
            "code": {
                "type": "string",
                "minLength": 1,
                "maxLength": MAX_CODE_LENGTH,
                "description": "Python code to execute",
            },
            "description": {
                "type": "string",
                "maxLength": 1000,
                "description": "What the code should accomplish (used as context)",
            },
            "include_output": {
                "type": "boolean",
                "default": True,
                "description": "Include raw stdout/stderr in response",
            },
            "max_turns": {
                "type": "integer",
                "minimum": 1,
                "maximum": 10,
                "default": DEFAULT_MAX_TURNS,
                "description": "Maximum execution iterations",
            },
            "model": {
                "type": "string",
                "description": f"Model to use (default: {DEFAULT_EXECUTE_MODEL})",
            },
        },
        "required": ["code"],
        "additionalProperties": False,
    },
)


def build_user_message(code: str, description: Optional[str] = None) -> str:
    message = f"Task: {description}\n\n" if description else ""
    return message + f"Execute this Python code:\n```python\n{code}\n```"


def extract_execution_output(text: str) -> Optional[str]:
    """Raw program output quoted in the model's answer, if any."""
    match = OUTPUT_BLOCK_PATTERN.search(text) or OUTPUT_SECTION_PATTERN.search(text)
    if match:
        return match.group(1).strip() or None
    return None


async def execute_code(
    client: XAIClient,
    model: str,
    code: str,
    description: Optional[str],
    max_turns: int,
) -> QueryResult:
    start = time.monotonic()
    response = await client.responses_create({
        "model": model,
        "input": [
            {"role": "system", "content": EXECUTE_SYSTEM_PROMPT},
            {"role": "user", "content": build_user_message(code, description)},
        ],
        "tools": [{"type": "code_interpreter"}],
        "max_turns": max_turns,
        "include": ["code_interpreter_call.outputs"],
    })
    usage = TokenUsage.from_api(response.get("usage"))
    response_model = response.get("model") or model
    text = extract_output_text(response)
    return QueryResult(
        response=text,
        model=response_model,
        usage=usage,
        cost=client.calculate_cost(response_model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={
            "execution_output": extract_execution_output(text),
            "has_error": bool(ERROR_PATTERN.search(text)),
            "tool_usage": response.get("server_side_tool_usage") or {},
        },
    )


def format_execution_output(result: QueryResult, include_output: bool = True) -> str:
    out = "**Code Execution Results**\n\n" + result.response
    raw = result.extra.get("execution_output")
    if include_output and raw:
        out += f"\n\n**Raw Output:**\n```\n{raw}\n```"
    if result.extra.get("has_error"):
        out += "\n\n*Note: Execution encountered errors. See details above.*"
    out += (
        f"\n\n---\n*{result.model} | {result.usage.total_tokens} tokens | "
        f"${result.cost.estimated_usd:.4f} | {result.response_time_ms}ms*"
    )
    return out


async def handle_grok_execute_code(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_execute_code tool invocation."""
    try:
        code = get_string(arguments, "code", required=True, max_length=MAX_CODE_LENGTH)
        description = get_string(arguments, "description", max_length=1000)
        include_output = get_bool(arguments, "include_output", default=True)
        max_turns = get_int(arguments, "max_turns", default=DEFAULT_MAX_TURNS, minimum=1, maximum=10)
        model = client.resolve_model(get_string(arguments, "model") or DEFAULT_EXECUTE_MODEL, code)

        result = await run_governed(
            services,
            lambda: execute_code(client, model, code, description, max_turns),
            model=model,
            estimated_input_tokens=estimate_tokens(code, description) + PROMPT_OVERHEAD_TOKENS,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Code execution failed", e)

    return text_result(format_execution_output(result, include_output))
