# MCP Server Package
"""
Model Context Protocol server for the snippet WASM sandbox.

This package exposes snippet execution and the rendering sandbox to MCP
clients.
"""

__version__ = "0.1.0"

from .config import HTTPTransportConfig, MCPConfig, StdioTransportConfig
from .server import MCPServer, MCPToolResult, create_mcp_server

__all__ = [
    "HTTPTransportConfig",
    "MCPConfig",
    "MCPServer",
    "MCPToolResult",
    "StdioTransportConfig",
    "create_mcp_server",
]
