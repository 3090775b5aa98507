"""grok_with_file: ask questions about a document passed in as text."""

import logging
import re
import time
from dataclasses import dataclass
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
    get_choice,
    get_int,
    get_number,
    get_string,
    message_text,
    text_result,
    usage_footer,
)

logger = logging.getLogger(__name__)

FILE_TYPES = ["code", "text", "markdown", "json", "csv", "xml", "yaml"]
MAX_RECOMMENDED_SIZE = 100 * 1024

_CODE_EXTENSIONS = (
    "js ts jsx tsx py rb go rs java c cpp h hpp cs php swift kt scala sh bash ps1 "
    "sql html css scss less vue svelte"
)
EXTENSION_MAP = {ext: "code" for ext in _CODE_EXTENSIONS.split()}
EXTENSION_MAP.update({
    "md": "markdown", "mdx": "markdown", "markdown": "markdown",
    "json": "json", "jsonc": "json", "json5": "json",
    "yaml": "yaml", "yml": "yaml",
    "xml": "xml", "xhtml": "xml", "svg": "xml", "xsd": "xml", "xsl": "xml",
    "csv": "csv", "tsv": "csv",
    "txt": "text", "text": "text", "log": "text", "conf": "text", "cfg": "text",
    "ini": "text", "env": "text", "gitignore": "text", "dockerignore": "text",
})

# Markdown is checked before JSON since markdown links start with "["
CONTENT_PATTERNS = [
    (re.compile(r"^#+ .+", re.MULTILINE), "markdown"),
    (re.compile(r"^\[.+\]\(.+\)", re.MULTILINE), "markdown"),
    (re.compile(r"^[-*+] .+", re.MULTILINE), "markdown"),
    (re.compile(r'^\s*\{[\s\S]*"[^"]+"\s*:'), "json"),
    (re.compile(r'^\s*\[[\s\S]*[\[{"\d]'), "json"),
    (re.compile(r"^---\s*$", re.MULTILINE), "yaml"),
    (re.compile(r"^\w+:\s+\S", re.MULTILINE), "yaml"),
    (re.compile(r"^\s*<\?xml", re.IGNORECASE), "xml"),
    (re.compile(r"^\s*<[a-z]+[^>]*>", re.IGNORECASE), "xml"),
    (re.compile(r"^[^,\n]+,[^,\n]+", re.MULTILINE), "csv"),
    (re.compile(r"\b(function|def|fn|func|class|import|require|export)\b"), "code"),
]

FILE_SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes file content and answers questions about it. "
    "Provide clear, accurate, and well-structured responses."
)

WITH_FILE_TOOL = Tool(
    name="grok_with_file",
    description=(
        "Query Grok with file content as context. Ask questions about documents, extract "
        "information, summarize content, or analyze file data. Supports code, text, markdown, "
        "JSON, CSV, XML, and YAML files."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The question or task to perform on the file content",
                "minLength": 1,
            },
            "file_content": {
                "type": "string",
                "description": "The file content as text",
                "minLength": 1,
            },
            "filename": {
                "type": "string",
                "description": (
                    "Original filename (helps with format detection). "
                    "Examples: config.json, README.md, data.csv"
                ),
            },
            "file_type": {
                "type": "string",
                "enum": FILE_TYPES,
                "description": "File type (auto-detected from filename or content if not provided)",
            },
            "model": {
                "type": "string",
                "description": (
                    "Model to use. Aliases: auto, default, fast, smartest, code, reasoning, "
                    "cheap, vision. Or use model ID directly."
                ),
            },
            "context": {
                "type": "string",
                "description": "Additional context about the file or what you want to accomplish",
            },
            "max_tokens": {
                "type": "integer",
                "description": "Maximum tokens in the response (default: 4096)",
                "minimum": 1,
                "maximum": 131072,
                "default": 4096,
            },
            "temperature": {
                "type": "number",
                "description": "Sampling temperature (0.0-2.0, default: 0.7)",
                "minimum": 0,
                "maximum": 2,
                "default": 0.7,
            },
        },
        "required": ["query", "file_content"],
        "additionalProperties": False,
    },
)


@dataclass
class FileInfo:
    detected_type: str
    size_bytes: int
    line_count: int
    filename: Optional[str] = None


def detect_file_type(filename: Optional[str] = None, content: Optional[str] = None) -> str:
    """Guess the file type from the extension, then the content, defaulting to text."""
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext in EXTENSION_MAP:
            return EXTENSION_MAP[ext]
    if content:
        for pattern, file_type in CONTENT_PATTERNS:
            if pattern.search(content):
                return file_type
    return "text"


def get_file_info(content: str, file_type: str, filename: Optional[str] = None) -> FileInfo:
    return FileInfo(
        detected_type=file_type,
        size_bytes=len(content.encode("utf-8")),
        line_count=content.count("\n") + 1,
        filename=filename,
    )


def build_file_prompt(query: str, content: str, info: FileInfo, context: Optional[str] = None) -> str:
    parts = ["You are analyzing a file. Here is the file information:", ""]
    if info.filename:
        parts.append(f"**Filename:** {info.filename}")
    parts.extend([
        f"**Type:** {info.detected_type}",
        f"**Lines:** {info.line_count}",
        f"**Size:** {info.size_bytes} bytes",
        "",
        "<file_content>",
        content,
        "</file_content>",
        "",
        f"**User Query:** {query}",
    ])
    if context:
        parts.extend(["", f"**Additional Context:** {context}"])
    parts.extend([
        "",
        "Please analyze the file and answer the query. Be specific and reference relevant "
        "parts of the file when applicable.",
    ])
    return "\n".join(parts)


async def execute_with_file(
    client: XAIClient,
    query: str,
    content: str,
    info: FileInfo,
    model: str,
    context: Optional[str] = None,
    max_tokens: int = 4096,
    temperature: float = 0.7,
) -> QueryResult:
    if info.size_bytes > MAX_RECOMMENDED_SIZE:
        logger.warning(
            "File size (%d bytes) exceeds recommended limit (%d bytes); consider truncating",
            info.size_bytes, MAX_RECOMMENDED_SIZE,
        )

    start = time.monotonic()
    response = await client.chat_completion(
        model=model,
        messages=[
            {"role": "system", "content": FILE_SYSTEM_PROMPT},
            {"role": "user", "content": build_file_prompt(query, content, info, context)},
        ],
        temperature=temperature,
        max_tokens=max_tokens,
    )
    usage = TokenUsage.from_api(response.get("usage"))
    response_model = response.get("model") or model
    return QueryResult(
        response=message_text(response) or "No response generated",
        model=response_model,
        usage=usage,
        cost=client.calculate_cost(response_model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={"file_info": info},
    )


def format_with_file_output(result: QueryResult) -> str:
    info: FileInfo = result.extra["file_info"]
    return "\n".join([
        "🤖 **Grok File Analysis:**",
        "",
        f"**File:** {info.filename or 'unnamed'} | **Type:** {info.detected_type} "
        f"| **Lines:** {info.line_count}",
        "",
        "### Response",
        "",
        result.response,
        "",
        "---",
        usage_footer(result),
    ])


async def handle_grok_with_file(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_with_file tool invocation."""
    try:
        query = get_string(arguments, "query", required=True)
        content = get_string(arguments, "file_content", required=True)
        filename = get_string(arguments, "filename")
        context = get_string(arguments, "context")
        max_tokens = get_int(arguments, "max_tokens", default=4096, minimum=1, maximum=131_072)
        temperature = get_number(arguments, "temperature", default=0.7, minimum=0, maximum=2)
        file_type = arguments.get("file_type")
        if file_type is None:
            file_type = detect_file_type(filename, content)
        else:
            file_type = get_choice(arguments, "file_type", FILE_TYPES, "text")
        model = client.resolve_model(get_string(arguments, "model") or "auto", query, context)
        info = get_file_info(content, file_type, filename)

        result = await run_governed(
            services,
            lambda: execute_with_file(client, query, content, info, model, context, max_tokens, temperature),
            model=model,
            estimated_input_tokens=estimate_tokens(content, query, context),
            estimated_output_tokens=max_tokens,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Error processing file", e)

    return text_result(format_with_file_output(result))
