"""
MCP Server for the snippet WASM sandbox.

This module implements a Model Context Protocol (MCP) server that exposes
snippet execution and the rendering sandbox to MCP clients.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP
from pydantic import BaseModel

from snippet_sandbox.config import EngineConfig, load_config
from snippet_sandbox.core.logging import SandboxLogger
from snippet_sandbox.core.models import Language
from snippet_sandbox.executor import ExecutionHost
from snippet_sandbox.protocol import handle_mount_request, handle_request
from snippet_sandbox.registry import RuntimeRegistry
from snippet_sandbox.rendering import RenderingSandbox

from .config import HTTPTransportConfig, MCPConfig

RUNTIME_DESCRIPTIONS = {
    "python": "CPython compiled to WebAssembly (WASI)",
    "javascript": "QuickJS JavaScript engine in WebAssembly (WASI)",
    "typescript": "JS-compatible TypeScript, executed by the JavaScript runtime",
}


class MCPToolResult(BaseModel):
    """Result from an MCP tool execution."""

    content: str
    structured_content: dict[str, Any] | None = None
    execution_time_ms: float | None = None
    success: bool = True


class MCPServer:
    """
    MCP Server for sandboxed snippet execution and rendering.

    Every execute_code call runs in a fresh guest instance; runtimes are
    initialized once per process by the shared RuntimeRegistry.
    """

    def __init__(
        self,
        config: MCPConfig | None = None,
        engine_config: EngineConfig | None = None,
        registry: RuntimeRegistry | None = None,
    ):
        self.config = config or MCPConfig()
        self.logger = SandboxLogger()
        self.engine_config = engine_config or load_config(self.config.engine.config_path)
        self.registry = registry or RuntimeRegistry(config=self.engine_config, logger=self.logger)
        self.host = ExecutionHost(
            registry=self.registry, config=self.engine_config, logger=self.logger
        )
        self.rendering = RenderingSandbox(config=self.engine_config, logger=self.logger)

        self.app = FastMCP(
            name=self.config.server.name,
            version=self.config.server.version,
            instructions=self.config.server.instructions,
            lifespan=lambda _mcp: self._lifespan(),
        )

        self._register_tools()

        self.logger._emit(
            logging.INFO,
            "MCP server initialized",
            server=self.config.server.name,
            runtimes=self.registry.languages,
        )

    async def execute_code(
        self,
        code: str,
        language: str,
        timeout_ms: int | None = None,
        runtime_config: dict[str, Any] | None = None,
    ) -> MCPToolResult:
        """Run one snippet through the job protocol."""
        payload: dict[str, Any] = {"code": code, "language": language}
        if timeout_ms is not None:
            payload["timeoutMs"] = timeout_ms
        if runtime_config is not None:
            payload["runtimeConfig"] = runtime_config

        started = time.perf_counter()
        response = await handle_request(payload, self.host)
        elapsed_ms = (time.perf_counter() - started) * 1000

        lines = list(response["logs"])
        if not response["ok"] and not lines:
            lines.append(response["error"])
        return MCPToolResult(
            content="\n".join(lines),
            structured_content=response,
            execution_time_ms=elapsed_ms,
            success=response["ok"],
        )

    async def render_visual(
        self,
        js: str,
        html: str | None = None,
        css: str | None = None,
        data: Any = None,
        policy_override: dict[str, Any] | None = None,
    ) -> MCPToolResult:
        """Mount a visual bundle and return its sandboxed document."""
        payload: dict[str, Any] = {"js": js, "html": html, "css": css, "data": data}
        if policy_override is not None:
            payload["policyOverride"] = policy_override

        response = handle_mount_request(payload, self.rendering)
        if not response["ok"]:
            return MCPToolResult(
                content=f"Render rejected: {response['error']}",
                structured_content=response,
                success=False,
            )
        return MCPToolResult(
            content=response["iframe"],
            structured_content=response,
        )

    async def list_runtimes(self) -> MCPToolResult:
        """Describe the languages this server can execute."""
        aliases: dict[str, list[str]] = {}
        for alias, name in Language.aliases().items():
            aliases.setdefault(name, []).append(alias)

        runtimes = []
        for language in Language:
            runtimes.append(
                {
                    "name": language.value,
                    "runtime": language.runtime_key,
                    "description": RUNTIME_DESCRIPTIONS.get(language.value, ""),
                    "aliases": sorted(aliases.get(language.value, [])),
                    "default_timeout_ms": self.engine_config.default_timeout_for(language.value),
                    "state": self.registry.state(language).value,
                }
            )

        content_lines = ["Available runtimes:"]
        for runtime in runtimes:
            content_lines.append(
                f"- {runtime['name']} ({runtime['state']}, default timeout "
                f"{runtime['default_timeout_ms']} ms): {runtime['description']}"
            )
        return MCPToolResult(
            content="\n".join(content_lines),
            structured_content={"runtimes": runtimes},
        )

    def _register_tools(self) -> None:
        """Register all MCP tools."""

        @self.app.tool(
            name="execute_code",
            description="""Execute a code snippet in a secure WebAssembly sandbox.

            Supports python, javascript and typescript (aliases: py, python3, js, ts).
            Output is whatever the snippet prints (print / console.log); nothing else.
            Each call runs in a fresh interpreter with no network and no host files.

            Parameters:
            - code (str): Source code to run
            - language (str): Language name or alias
            - timeout_ms (int|None): Deadline in milliseconds (python 3000, js/ts 2000 by default)
            - runtime_config (dict|None): Optional fuel_budget / memory_bytes limits

            Returns: {ok, logs, error?}. When the snippet raises or times out, logs end
            with "[exception] <message>" and error holds the message.
            """,
        )
        async def execute_code(
            code: str,
            language: str,
            timeout_ms: int | None = None,
            runtime_config: dict[str, Any] | None = None,
        ) -> MCPToolResult:
            """Execute a snippet."""
            return await self.execute_code(code, language, timeout_ms, runtime_config)

        @self.app.tool(
            name="render_visual",
            description="""Mount an AI-generated visualization in an isolated rendering sandbox.

            The bundle (html, css, js, data) runs in a sandboxed iframe with an opaque
            origin. Only the allowed library URLs (d3 v7 and three.js by default) can be
            loaded; network requests, top-level navigation and host page access are blocked.
            data is exposed to the script as window.vizData.

            policy_override may set allowedOrigins (https URLs), sandboxFlags and csp.

            Returns the srcdoc document, an iframe element, CSP headers and the
            effective policy.
            """,
        )
        async def render_visual(
            js: str,
            html: str | None = None,
            css: str | None = None,
            data: Any = None,
            policy_override: dict[str, Any] | None = None,
        ) -> MCPToolResult:
            """Mount a visual bundle."""
            return await self.render_visual(js, html, css, data, policy_override)

        @self.app.tool(
            name="list_runtimes",
            description="List the languages available in the sandbox with their aliases, default deadlines and initialization state",
        )
        async def list_runtimes() -> MCPToolResult:
            """List available runtimes."""
            return await self.list_runtimes()

    async def start_stdio(self) -> None:
        """Start the MCP server with stdio transport."""
        self.logger._emit(logging.INFO, "Starting MCP server with stdio transport")
        await self.app.run_stdio_async()

    async def start_http(self, config: HTTPTransportConfig | None = None) -> None:
        """Start the MCP server with HTTP transport."""
        http_config = config or self.config.transport_http

        self.logger._emit(
            logging.INFO,
            "Starting MCP server with HTTP transport",
            host=http_config.host,
            port=http_config.port,
        )

        http_app = self.app.http_app(path=http_config.path)
        http_app.add_middleware(
            http_config.get_cors_middleware_class(),  # type: ignore[arg-type]
            allow_origins=http_config.cors_origins,
            allow_credentials=False,
            allow_methods=["POST", "GET", "OPTIONS"],
            allow_headers=["*"],
        )

        # Extract host/port separately to avoid duplicate parameters in FastMCP
        uvicorn_config = http_config.get_uvicorn_config()
        host = uvicorn_config.pop("host")
        port = uvicorn_config.pop("port")

        await self.app.run_http_async(
            host=host,
            port=port,
            path=http_config.path,
            uvicorn_config=uvicorn_config,
        )

    @asynccontextmanager
    async def _lifespan(self) -> AsyncGenerator[None, None]:
        """FastMCP lifespan: release runtimes when the server stops."""
        self.logger._emit(logging.DEBUG, "Starting MCP server lifespan")
        try:
            yield
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Shutdown the MCP server and release initialized runtimes."""
        self.logger._emit(logging.INFO, "Shutting down MCP server")
        self.registry.shutdown()


def create_mcp_server(
    config: MCPConfig | None = None,
    engine_config: EngineConfig | None = None,
    registry: RuntimeRegistry | None = None,
) -> MCPServer:
    """Create and configure an MCP server instance.

    Args:
        config: MCP server configuration. If None, uses defaults.
        engine_config: Engine configuration. If None, loaded from
            ``config.engine.config_path`` (or the default TOML location).
        registry: Runtime registry to share. If None, a new one is created.

    Returns:
        Configured MCPServer instance.
    """
    return MCPServer(config, engine_config=engine_config, registry=registry)
