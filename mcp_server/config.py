"""
MCP Server Configuration.

Configuration models for the MCP server.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


def _get_package_version() -> str:
    """Get package version from metadata."""
    try:
        import importlib.metadata

        return importlib.metadata.version("snippet-wasm-sandbox")
    except Exception:
        return "0.1.0"


class ServerConfig(BaseModel):
    """Server identification and metadata."""

    name: str = "snippet-wasm-sandbox"
    version: str = Field(default_factory=_get_package_version)
    instructions: str = (
        "This server runs short, untrusted code snippets in a WebAssembly sandbox "
        "and mounts AI-generated visualizations in an isolated rendering surface.\n\n"
        "- execute_code: run Python, JavaScript or TypeScript and get back "
        "{ok, logs, error}. Output comes from print/console calls only.\n"
        "- render_visual: mount an html/css/js bundle with optional data; "
        "the surface cannot reach the network or the host page.\n"
        "- list_runtimes: show supported languages, aliases and default deadlines.\n\n"
        "Each execution starts from a clean interpreter: no state, files or "
        "network access carry over between calls."
    )


class StdioTransportConfig(BaseModel):
    """Configuration for stdio transport."""

    enabled: bool = True


class HTTPTransportConfig(BaseModel):
    """Configuration for HTTP transport."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8080, ge=1, le=65535)
    path: str = "/mcp"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    max_concurrent_requests: int = Field(default=10, ge=1)
    request_timeout_seconds: int = Field(default=30, ge=1)

    def get_uvicorn_config(self) -> dict[str, Any]:
        """Get uvicorn configuration for this transport."""
        return {
            "host": self.host,
            "port": self.port,
            "access_log": True,
            "log_level": "info",
            "limit_concurrency": self.max_concurrent_requests,
            "timeout_keep_alive": self.request_timeout_seconds,
        }

    def get_cors_middleware_class(self) -> type:
        """Get CORS middleware class for adding to Starlette app."""
        from starlette.middleware.cors import CORSMiddleware

        return CORSMiddleware


class EngineSection(BaseModel):
    """Location of the engine TOML file (see snippet_sandbox.config)."""

    config_path: str | None = None


class LoggingConfig(BaseModel):
    """Configuration for MCP logging."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    structured: bool = True


class MCPConfig(BaseModel):
    """Main MCP server configuration."""

    server: ServerConfig = ServerConfig()
    transport_stdio: StdioTransportConfig = StdioTransportConfig()
    transport_http: HTTPTransportConfig = HTTPTransportConfig()
    engine: EngineSection = EngineSection()
    logging: LoggingConfig = LoggingConfig()

    @classmethod
    def from_file(cls, path: Path | str) -> MCPConfig:
        """Load configuration from TOML file."""
        import tomllib

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        return cls.model_validate(data)
