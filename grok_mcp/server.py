#!/usr/bin/env python3
"""
Grok MCP Server - xAI Grok API Integration

Provides MCP tools for interacting with xAI's Grok API:
- Chat queries with automatic model selection, streaming, vision and JSON mode
- Extended reasoning, code analysis and questions about file content
- X (Twitter) and web search through Grok's agentic search
- Image generation
- Cost estimation, model listing, server status and session statistics

Every tool that calls the API shares one response cache, one session cost
budget and one rate limiter for the lifetime of the process.
"""

import asyncio
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, TextContent, Tool

from . import __version__
from .client import XAIClient, create_client
from .config import configure_logging
from .services import Services, create_services
from .tools import ALL_TOOLS, TOOL_HANDLERS

logger = logging.getLogger(__name__)

SERVER_NAME = "grok-mcp"


def create_server(client: XAIClient, services: Services) -> Server:
    """Build the MCP server with every tool bound to ``client`` and ``services``."""
    server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available Grok tools."""
        return ALL_TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Handle tool invocations."""
        return await dispatch_tool(name, arguments, client, services)

    return server


async def dispatch_tool(
    name: str,
    arguments: dict[str, Any],
    client: XAIClient,
    services: Services,
) -> CallToolResult:
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return CallToolResult(
            content=[TextContent(type="text", text=f"Unknown tool: {name}")],
            isError=True,
        )
    try:
        return await handler(arguments or {}, client, services)
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return CallToolResult(
            content=[TextContent(type="text", text=f"Error: {str(e)}")],
            isError=True,
        )


def log_startup(services: Services) -> None:
    cache = services.cache.get_options()
    cost = services.cost_tracker.get_options()
    limits = services.rate_limiter.get_limits()
    logger.info("Grok MCP server %s starting", __version__)
    logger.info(
        "Cache: %s (TTL %ds, max %d entries)",
        "enabled" if cache.enabled else "disabled", cache.ttl_seconds, cache.max_entries,
    )
    logger.info(
        "Cost limit: $%.2f (%s)", cost.limit_usd, "enforced" if cost.enforce_limit else "not enforced"
    )
    logger.info(
        "Rate limits (%s tier): %d tokens/min, %d requests/min",
        services.rate_limiter.get_options().tier,
        limits["tokens_per_minute"], limits["requests_per_minute"],
    )


async def main():
    """Run the Grok MCP server."""
    configure_logging()
    client = create_client()
    services = create_services()
    log_startup(services)

    server = create_server(client, services)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run():
    """Console-script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
