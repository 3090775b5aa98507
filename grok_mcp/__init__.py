"""
Grok MCP Server - xAI Grok API Integration for Model Context Protocol

This MCP server provides tools for:
- Chat queries with automatic model selection (grok-4, grok-4-fast, grok-code-fast-1, ...)
- Reasoning, code analysis and file analysis
- X (Twitter) and web search, image generation
- Response caching, session cost budgets and rate limiting shared by every tool
"""

__version__ = "3.0.0"
