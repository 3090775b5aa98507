"""
MCP tools exposed by the server.

Every handler has the signature ``handler(arguments, client, services)``
and returns a ``CallToolResult``.
"""

from typing import Awaitable, Callable

from mcp.types import CallToolResult, Tool

from .analyze_code import ANALYZE_CODE_TOOL, handle_grok_analyze_code
from .estimate_cost import ESTIMATE_COST_TOOL, handle_grok_estimate_cost
from .execute_code import EXECUTE_CODE_TOOL, handle_grok_execute_code
from .generate_image import GENERATE_IMAGE_TOOL, handle_grok_generate_image
from .list_models import MODELS_TOOL, handle_grok_models
from .query import QUERY_TOOL, handle_grok_query
from .reason import REASON_TOOL, handle_grok_reason
from .search import SEARCH_X_TOOL, handle_grok_search_x
from .session_stats import SESSION_STATS_TOOL, handle_grok_session_stats
from .status import STATUS_TOOL, handle_grok_status
from .with_file import WITH_FILE_TOOL, handle_grok_with_file

ToolHandler = Callable[..., Awaitable[CallToolResult]]

_REGISTRY: list[tuple[Tool, ToolHandler]] = [
    (QUERY_TOOL, handle_grok_query),
    (REASON_TOOL, handle_grok_reason),
    (ANALYZE_CODE_TOOL, handle_grok_analyze_code),
    (WITH_FILE_TOOL, handle_grok_with_file),
    (SEARCH_X_TOOL, handle_grok_search_x),
    (EXECUTE_CODE_TOOL, handle_grok_execute_code),
    (GENERATE_IMAGE_TOOL, handle_grok_generate_image),
    (ESTIMATE_COST_TOOL, handle_grok_estimate_cost),
    (MODELS_TOOL, handle_grok_models),
    (STATUS_TOOL, handle_grok_status),
    (SESSION_STATS_TOOL, handle_grok_session_stats),
]

ALL_TOOLS: list[Tool] = [tool for tool, _ in _REGISTRY]
TOOL_HANDLERS: dict[str, ToolHandler] = {tool.name: handler for tool, handler in _REGISTRY}

__all__ = ["ALL_TOOLS", "TOOL_HANDLERS", "ToolHandler"]
