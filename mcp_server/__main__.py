#!/usr/bin/env python3
"""
MCP Server CLI for the snippet WASM sandbox.

Command-line interface to run the MCP server over stdio or HTTP.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import Any

from snippet_sandbox.config import load_config
from snippet_sandbox.core.logging import configure_structlog

from .config import MCPConfig
from .server import create_mcp_server

try:
    import importlib.metadata

    __version__ = importlib.metadata.version("snippet-wasm-sandbox")
except Exception:
    __version__ = "unknown"


class ProtocolFilterIO:
    """
    A smart wrapper for stdout that directs JSON-RPC messages to real stdout
    and everything else (banners, logs) to stderr.

    This prevents FastMCP's banner and console log lines from breaking the
    MCP protocol.
    """

    def __init__(self, original_stdout: Any, stderr: Any) -> None:
        self.original_stdout = original_stdout
        self.stderr = stderr
        # Expose the underlying buffer for binary I/O operations
        self.buffer = original_stdout.buffer if hasattr(original_stdout, "buffer") else None

    def write(self, message: str) -> int:
        # MCP JSON-RPC messages are JSON objects starting with '{'
        try:
            if message.strip().startswith("{"):
                self.original_stdout.write(message)
                self.original_stdout.flush()
            else:
                self.stderr.write(message)
                self.stderr.flush()
        except ValueError:
            # Closed file during shutdown
            pass
        return len(message)

    def flush(self) -> None:
        with contextlib.suppress(ValueError):
            self.original_stdout.flush()
        with contextlib.suppress(ValueError):
            self.stderr.flush()

    def isatty(self) -> bool:
        return bool(self.original_stdout.isatty())

    def __getattr__(self, name: str) -> Any:
        return getattr(self.original_stdout, name)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="snippet-sandbox-mcp",
        description="Snippet WASM Sandbox MCP Server - sandboxed snippet execution and rendering",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport to serve on (default: stdio)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="MCP server TOML configuration file",
    )
    parser.add_argument(
        "--engine-config",
        type=Path,
        default=None,
        metavar="FILE",
        help="Engine TOML configuration (default: $SNIPPET_SANDBOX_CONFIG or config/sandbox.toml)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser.parse_args(argv)


async def async_main(args: argparse.Namespace) -> None:
    """Async main entry point with proper signal handling."""
    config = MCPConfig.from_file(args.config) if args.config else MCPConfig()
    engine_path = args.engine_config or config.engine.config_path
    engine_config = load_config(str(engine_path) if engine_path else None)

    configure_structlog(
        level=logging.getLevelName(config.logging.level),
        use_json=config.logging.structured,
    )

    server = create_mcp_server(config, engine_config=engine_config)
    print("Available tools: execute_code, render_visual, list_runtimes", file=sys.stderr)

    try:
        if args.transport == "http":
            await server.start_http()
        else:
            await server.start_stdio()
    except asyncio.CancelledError:
        print("\nShutting down MCP server...", file=sys.stderr)
    except Exception as e:
        print(f"MCP server error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        await server.shutdown()


def main() -> None:
    """Main CLI entry point."""
    args = parse_args()

    print(f"Snippet WASM Sandbox MCP Server v{__version__}", file=sys.stderr)
    print("Security relies on WASM sandbox boundaries and per-job deadlines.", file=sys.stderr)
    print("", file=sys.stderr)

    if args.transport == "stdio":
        # Keep banners and log lines off the JSON-RPC channel
        original_stdout = sys.stdout
        sys.stdout = ProtocolFilterIO(original_stdout, sys.stderr)

    try:
        asyncio.run(async_main(args))
    except KeyboardInterrupt:
        print("\nGraceful shutdown complete.", file=sys.stderr)


if __name__ == "__main__":
    main()
