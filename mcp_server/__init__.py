"""MCP server exposing Mobile App Generator tools.

This module implements the Model Context Protocol (MCP) server that
exposes build submission and tracking to AI tools and external systems.

MCP tools:
- Return structured errors with stable codes
- Map directly to core services
"""

from mcp_server.server import mcp

__all__ = ["mcp"]
