"""Engine configuration for snippet execution and rendering.

Provides secure defaults and TOML-based configuration loading for runtime
asset locations, per-language deadlines, WASM guest resource limits,
output capture caps and rendering sandbox defaults.
"""

from __future__ import annotations

import os
import tomllib
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from snippet_sandbox.core.errors import PolicyValidationError

CONFIG_ENV_VAR = "SNIPPET_SANDBOX_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    # Directory searched first for python.wasm / quickjs.wasm (None = bundled lookup)
    "assets_path": None,

    # Deadlines applied when a request omits timeoutMs; Python pays for interpreter startup
    "default_timeouts_ms": {
        "python": 3000,
        "javascript": 2000,
        "typescript": 2000,
    },
    "max_timeout_ms": 60_000,

    # WASM instruction limit - secondary bound next to the wall-clock deadline
    "fuel_budget": 5_000_000_000,

    # Linear memory cap - prevents memory bombs
    "memory_bytes": 128_000_000,

    # Epoch ticker resolution for forced interruption on deadline
    "epoch_tick_ms": 10,

    # Capture caps - prevents log flooding
    "max_log_lines": 10_000,
    "max_log_bytes": 2_000_000,

    # Environment whitelist - only expose explicitly required variables
    "env": {
        "PYTHONUTF8": "1",
        "LC_ALL": "C.UTF-8",
        "PYTHONIOENCODING": "utf-8",
        "PYTHONHASHSEED": "0",  # Deterministic hash seeds for reproducibility
    },

    # Rendering surface defaults - library URLs and iframe sandbox tokens
    "render_allowed_origins": [
        "https://d3js.org/d3.v7.min.js",
        "https://cdn.jsdelivr.net/npm/three@0.169.0/build/three.min.js",
    ],
    "render_sandbox_flags": ["allow-scripts"],
}


class EngineConfig(BaseModel):
    """Type-safe configuration for the execution engine.

    Attributes:
        assets_path: Base directory for runtime support assets (WASM binaries)
        default_timeouts_ms: Deadline per language when a request omits one
        max_timeout_ms: Upper bound accepted for any requested deadline
        fuel_budget: WASM instruction limit per job
        memory_bytes: Linear memory cap in bytes per job
        epoch_tick_ms: Interval between epoch increments of the interrupt ticker
        max_log_lines: Maximum captured log lines per job
        max_log_bytes: Maximum captured output bytes per job
        env: Environment variables exposed to guests (whitelist pattern)
        render_allowed_origins: Library URLs a rendering surface may load by default
        render_sandbox_flags: iframe sandbox tokens granted by default
    """

    assets_path: str | None = Field(default=None, description="Runtime asset base path")
    default_timeouts_ms: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_CONFIG["default_timeouts_ms"]),
        description="Per-language default deadlines",
    )
    max_timeout_ms: int = Field(default=60_000, gt=0)
    fuel_budget: int = Field(default=5_000_000_000, gt=0)
    memory_bytes: int = Field(default=128_000_000, gt=0)
    epoch_tick_ms: int = Field(default=10, gt=0, le=1000)
    max_log_lines: int = Field(default=10_000, gt=0)
    max_log_bytes: int = Field(default=2_000_000, gt=0)
    env: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CONFIG["env"]))
    render_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CONFIG["render_allowed_origins"])
    )
    render_sandbox_flags: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CONFIG["render_sandbox_flags"])
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise PolicyValidationError(f"Invalid engine configuration: {e}") from e

    @field_validator("default_timeouts_ms")
    @classmethod
    def validate_timeouts(cls, v: dict[str, int]) -> dict[str, int]:
        """Ensure every default deadline is positive."""
        for language, timeout in v.items():
            if timeout <= 0:
                raise ValueError(f"Default timeout for {language} must be positive")
        return v

    def default_timeout_for(self, language: str) -> int:
        """Return the default deadline for a language (falls back to 2000 ms)."""
        return self.default_timeouts_ms.get(language, 2000)


def load_config(path: str | None = None) -> EngineConfig:
    """Load and merge user engine configuration with secure defaults.

    Performs a shallow merge of user-provided TOML settings with DEFAULT_CONFIG.
    The env and default_timeouts_ms tables are deep-merged so a file can add
    or adjust single entries without replacing the whole default set.

    Args:
        path: Path to the TOML file. If None, uses $SNIPPET_SANDBOX_CONFIG or
              "config/sandbox.toml". If the file doesn't exist, returns
              EngineConfig with defaults.

    Returns:
        EngineConfig: Validated configuration model.

    Raises:
        PolicyValidationError: If the configuration contains invalid values
        tomllib.TOMLDecodeError: If TOML file is malformed
        OSError: If file exists but cannot be read
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR, "config/sandbox.toml")

    if not os.path.exists(path):
        return EngineConfig(**DEFAULT_CONFIG)

    with open(path, "rb") as f:
        data = tomllib.load(f)

    # Merge top-level keys, with user overrides taking precedence
    config = DEFAULT_CONFIG | data

    # Deep merge tables so defaults for other languages/variables survive
    config["env"] = DEFAULT_CONFIG["env"] | data.get("env", {})
    config["default_timeouts_ms"] = DEFAULT_CONFIG["default_timeouts_ms"] | data.get(
        "default_timeouts_ms", {}
    )

    return EngineConfig(**config)
