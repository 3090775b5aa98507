#!/usr/bin/env python3
"""
Run script for Grok MCP Server

This script runs the Grok MCP server for integration with Claude and other MCP clients.
Make sure XAI_API_KEY environment variable is set before running.
"""

from grok_mcp.server import run

if __name__ == "__main__":
    run()
