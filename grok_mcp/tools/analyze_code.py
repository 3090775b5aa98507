"""grok_analyze_code: code review for bugs, performance, security and style."""

import json
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
    get_string,
    message_text,
    text_result,
    usage_footer,
)

DEFAULT_CODE_MODEL = "grok-code-fast-1"
DEFAULT_ANALYSIS_TIMEOUT_MS = 60_000
ANALYSIS_MAX_TOKENS = 4000
ANALYSIS_TYPES = ["performance", "bugs", "security", "style", "all"]
SEVERITIES = ["critical", "high", "medium", "low"]
SEVERITY_ICONS = {"critical": "🔴", "high": "🟠", "medium": "🟡", "low": "🔵"}

# Checked in order; typescript comes before javascript
LANGUAGE_PATTERNS = [
    (re.compile(r":\s*(string|number|boolean|void|any|never)\b"), "typescript"),
    (re.compile(r"interface\s+\w+\s*\{"), "typescript"),
    (re.compile(r"<[A-Z]\w*>"), "typescript"),
    (re.compile(r"\b(const|let|var)\s+\w+\s*="), "javascript"),
    (re.compile(r"=>\s*\{"), "javascript"),
    (re.compile(r"function\s*\w*\s*\([^)]*\)\s*\{"), "javascript"),
    (re.compile(r"def\s+\w+\s*\([^)]*\)\s*:"), "python"),
    (re.compile(r"import\s+\w+(\s+as\s+\w+)?$"), "python"),
    (re.compile(r"from\s+\w+\s+import"), "python"),
    (re.compile(r"if\s+.*:\s*$"), "python"),
    (re.compile(r"func\s+(\([^)]+\)\s*)?\w+\s*\([^)]*\)\s*(\w+|\([^)]+\))?\s*\{"), "go"),
    (re.compile(r"package\s+\w+"), "go"),
    (re.compile(r":="), "go"),
    (re.compile(r"fn\s+\w+\s*(<[^>]+>)?\s*\([^)]*\)\s*(->.*?)?\s*\{"), "rust"),
    (re.compile(r"let\s+mut\s+"), "rust"),
    (re.compile(r"impl\s+(<[^>]+>\s*)?\w+"), "rust"),
    (re.compile(r"public\s+class\s+\w+"), "java"),
    (re.compile(r"public\s+static\s+void\s+main"), "java"),
    (re.compile(r"System\.out\.print"), "java"),
    (re.compile(r"namespace\s+\w+(\.\w+)*\s*\{"), "csharp"),
    (re.compile(r"public\s+async\s+Task"), "csharp"),
    (re.compile(r"using\s+System"), "csharp"),
    (re.compile(r"#include\s*<[^>]+>"), "c"),
    (re.compile(r"int\s+main\s*\([^)]*\)\s*\{"), "c"),
    (re.compile(r"std::"), "cpp"),
    (re.compile(r"def\s+\w+(\s*\([^)]*\))?\s*$"), "ruby"),
    (re.compile(r"class\s+\w+\s*<\s*\w+"), "ruby"),
    (re.compile(r"require\s+['\"]"), "ruby"),
    (re.compile(r"<\?php"), "php"),
    (re.compile(r"\$\w+\s*="), "php"),
    (re.compile(r"SELECT\s+.*\s+FROM", re.IGNORECASE), "sql"),
    (re.compile(r"CREATE\s+TABLE", re.IGNORECASE), "sql"),
    (re.compile(r"<!DOCTYPE\s+html>", re.IGNORECASE), "html"),
    (re.compile(r"<html[^>]*>", re.IGNORECASE), "html"),
    (re.compile(r"\{[^}]*:\s*[^;]+;\s*\}"), "css"),
    (re.compile(r"@media\s+"), "css"),
    (re.compile(r"^#!"), "bash"),
    (re.compile(r"\$\(\s*\w+"), "bash"),
]

ANALYSIS_INSTRUCTIONS = {
    "performance": """Focus on performance issues such as:
- Inefficient algorithms or data structures
- Unnecessary computations or memory allocations
- N+1 query problems or excessive iterations
- Missing caching opportunities
- Blocking operations that could be async""",
    "bugs": """Focus on potential bugs such as:
- Logic errors and edge cases
- Null/undefined reference issues
- Off-by-one errors
- Race conditions
- Incorrect type handling
- Resource leaks""",
    "security": """Focus on security vulnerabilities such as:
- SQL injection
- XSS (Cross-Site Scripting)
- Command injection
- Path traversal
- Insecure deserialization
- Hardcoded secrets or credentials
- Missing input validation
- Improper error handling that leaks information""",
    "style": """Focus on code style and quality issues such as:
- Naming conventions
- Code organization and structure
- Excessive complexity
- Code duplication
- Missing documentation
- Inconsistent formatting
- Magic numbers or strings""",
    "all": """Perform a comprehensive analysis covering:
1. Performance issues
2. Potential bugs and logic errors
3. Security vulnerabilities
4. Code style and quality""",
}

REVIEWER_SYSTEM_PROMPT = (
    "You are an expert code reviewer. Analyze code and respond with structured JSON "
    "containing issues and suggestions."
)

ANALYZE_CODE_TOOL = Tool(
    name="grok_analyze_code",
    description=(
        "Analyze code for performance problems, bugs, security vulnerabilities and style "
        "issues using Grok's code models. Issues are grouped by severity."
    ),
    inputSchema={
        "type": "object",
        "properties": {
            "code": {"type": "string", "description": "The code to analyze"},
            "language": {
                "type": "string",
                "description": (
                    "Programming language (auto-detected if not provided). "
                    "Examples: javascript, python, typescript, go, rust, java"
                ),
            },
            "analysis_type": {
                "type": "string",
                "enum": ANALYSIS_TYPES,
                "default": "all",
                "description": (
                    "Type of analysis: performance, bugs, security, style, or all"
                ),
            },
            "model": {
                "type": "string",
                "description": f"Model to use for analysis. Default: {DEFAULT_CODE_MODEL}",
            },
            "context": {
                "type": "string",
                "description": "Additional context about the code, such as its purpose or constraints",
            },
            "timeout": {
                "type": "integer",
                "description": "Request timeout in milliseconds. Default: 60000 for code analysis.",
                "minimum": 1000,
                "maximum": 120000,
            },
        },
        "required": ["code"],
        "additionalProperties": False,
    },
)


@dataclass
class CodeIssue:
    type: str
    severity: str
    message: str
    line: Optional[int] = None
    end_line: Optional[int] = None
    suggestion: Optional[str] = None
    code_snippet: Optional[str] = None


def detect_language(code: str) -> str:
    """Best-effort language guess from the first matching pattern."""
    for pattern, language in LANGUAGE_PATTERNS:
        if pattern.search(code):
            return language
    return "unknown"


def build_analysis_prompt(code: str, language: str, analysis_type: str, context: Optional[str] = None) -> str:
    context_block = f"Additional context: {context}\n\n" if context else ""
    return f"""Analyze the following {language} code and identify issues.

{ANALYSIS_INSTRUCTIONS[analysis_type]}

{context_block}Respond with a JSON object containing:
1. "issues": An array of issues, each with:
   - "type": Category (performance/bug/security/style)
   - "severity": low/medium/high/critical
   - "line": Line number (if identifiable)
   - "message": Clear description of the issue
   - "suggestion": How to fix it
   - "codeSnippet": Relevant code if helpful

2. "summary": A brief overall assessment

Respond ONLY with valid JSON, no markdown or explanations.

Code to analyze:
```{language}
{code}
```"""


def _severity(value: Any) -> str:
    if isinstance(value, str) and value.lower() in SEVERITIES:
        return value.lower()
    return "medium"


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def parse_analysis_response(text: str) -> tuple[list[CodeIssue], str]:
    """
    Extract issues and summary from the model's JSON answer.

    Output that is not valid JSON becomes the summary (first 500 chars)
    with no issues.
    """
    candidate = text
    match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
    if match:
        candidate = match.group(1).strip()
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return [], text[:500]
    if not isinstance(parsed, dict):
        return [], text[:500]

    issues = []
    for raw in parsed.get("issues") or []:
        if not isinstance(raw, dict):
            continue
        issues.append(CodeIssue(
            type=str(raw.get("type") or "unknown"),
            severity=_severity(raw.get("severity")),
            message=str(raw.get("message") or ""),
            line=_optional_int(raw.get("line")),
            end_line=_optional_int(raw.get("endLine")),
            suggestion=str(raw["suggestion"]) if raw.get("suggestion") else None,
            code_snippet=str(raw["codeSnippet"]) if raw.get("codeSnippet") else None,
        ))
    return issues, str(parsed.get("summary") or "Analysis completed.")


async def execute_analyze_code(
    client: XAIClient,
    code: str,
    language: str,
    analysis_type: str,
    model: str,
    context: Optional[str] = None,
    timeout_ms: Optional[int] = None,
) -> QueryResult:
    start = time.monotonic()
    response = await client.chat_completion(
        model=model,
        messages=[
            {"role": "system", "content": REVIEWER_SYSTEM_PROMPT},
            {"role": "user", "content": build_analysis_prompt(code, language, analysis_type, context)},
        ],
        temperature=0.1,
        max_tokens=ANALYSIS_MAX_TOKENS,
        timeout_ms=timeout_ms or DEFAULT_ANALYSIS_TIMEOUT_MS,
    )
    text = message_text(response) or "No response"
    issues, summary = parse_analysis_response(text)
    usage = TokenUsage.from_api(response.get("usage"))
    response_model = response.get("model") or model
    return QueryResult(
        response=summary,
        model=response_model,
        usage=usage,
        cost=client.calculate_cost(response_model, usage.prompt_tokens, usage.completion_tokens),
        response_time_ms=int((time.monotonic() - start) * 1000),
        extra={"issues": issues, "language": language, "analysis_type": analysis_type},
    )


def format_analysis_output(result: QueryResult) -> str:
    issues: list[CodeIssue] = result.extra.get("issues", [])
    lines = [
        "🤖 **Grok Code Analysis:**",
        "",
        f"**Language:** {result.extra.get('language')} | **Type:** {result.extra.get('analysis_type')} "
        f"| **Model:** {result.model}",
        "",
        "### Summary",
        result.response,
        "",
    ]

    if issues:
        lines.extend([f"### Issues Found ({len(issues)})", ""])
        for severity in SEVERITIES:
            group = [i for i in issues if i.severity == severity]
            if not group:
                continue
            lines.extend([f"#### {SEVERITY_ICONS[severity]} {severity.upper()} ({len(group)})", ""])
            for issue in group:
                line_info = ""
                if issue.line:
                    line_info = f" (line {issue.line}{f'-{issue.end_line}' if issue.end_line else ''})"
                lines.append(f"- **{issue.type}**{line_info}: {issue.message}")
                if issue.suggestion:
                    lines.append(f"  - *Suggestion:* {issue.suggestion}")
                if issue.code_snippet:
                    lines.extend(["  ```", f"  {issue.code_snippet}", "  ```"])
            lines.append("")
    else:
        lines.extend(["### No Issues Found", "The code analysis did not identify any issues.", ""])

    lines.extend(["---", usage_footer(result)])
    return "\n".join(lines)


async def handle_grok_analyze_code(arguments: dict[str, Any], client: XAIClient, services: Services) -> CallToolResult:
    """Handle grok_analyze_code tool invocation."""
    try:
        code = get_string(arguments, "code", required=True)
        language = get_string(arguments, "language") or detect_language(code)
        analysis_type = get_choice(arguments, "analysis_type", ANALYSIS_TYPES, "all")
        context = get_string(arguments, "context")
        timeout_ms = get_int(arguments, "timeout", minimum=1000, maximum=120_000)
        model = client.resolve_model(get_string(arguments, "model") or DEFAULT_CODE_MODEL)

        result = await run_governed(
            services,
            lambda: execute_analyze_code(client, code, language, analysis_type, model, context, timeout_ms),
            model=model,
            estimated_input_tokens=estimate_tokens(code, context),
            estimated_output_tokens=ANALYSIS_MAX_TOKENS,
        )
    except (GrokMCPError, ToolInputError) as e:
        return failure("Error analyzing code", e)

    return text_result(format_analysis_output(result))
