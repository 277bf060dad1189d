"""Pydantic models for type-safe jobs, results and sandbox policies.

Provides validated data models for execution jobs, language selection,
structured execution results and rendering sandbox policies, with automatic
field validation and camelCase wire aliases for the job protocol.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from snippet_sandbox.core.errors import JobValidationError


class Language(str, Enum):
    """Languages accepted by the execution engine.

    PYTHON: CPython compiled to WASM
    JAVASCRIPT: QuickJS compiled to WASM
    TYPESCRIPT: JS-compatible TypeScript, executed by the JavaScript runtime
    """
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"

    @classmethod
    def parse(cls, value: Any) -> Language:
        """Resolve a language name or short alias (py, js, ts)."""
        if isinstance(value, Language):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Language must be a string, got {type(value).__name__}")
        normalized = value.strip().lower()
        normalized = _LANGUAGE_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            supported = ", ".join(member.value for member in cls)
            raise ValueError(f"Unsupported language: {value!r}. Supported: {supported}") from None

    @classmethod
    def aliases(cls) -> dict[str, str]:
        """Short alias -> canonical language name."""
        return dict(_LANGUAGE_ALIASES)

    @property
    def runtime_key(self) -> str:
        """Registry key of the runtime that executes this language."""
        if self is Language.TYPESCRIPT:
            return Language.JAVASCRIPT.value
        return self.value


_LANGUAGE_ALIASES = {
    "py": "python",
    "python3": "python",
    "js": "javascript",
    "ts": "typescript",
}


class ExecutionJob(BaseModel):
    """One request to run a snippet of code under a time budget.

    Immutable once created. Owned by the execution host for the lifetime of
    the job and discarded after the result is delivered.

    Attributes:
        code: Untrusted source code
        language: Target language (aliases are normalized)
        timeout_ms: Wall-clock budget in milliseconds
        runtime_config: Runtime-specific string settings (see protocol)
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    code: str = Field(description="Untrusted source code")
    language: Language = Field(description="Target language")
    timeout_ms: int = Field(gt=0, le=2**32 - 1, description="Deadline in milliseconds")
    runtime_config: dict[str, str] = Field(
        default_factory=dict,
        description="Runtime-specific configuration (e.g., assets_path)",
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise JobValidationError(f"Invalid execution job: {e}") from e

    @field_validator("language", mode="before")
    @classmethod
    def normalize_language(cls, v: Any) -> Language:
        return Language.parse(v)


class ExecutionResult(BaseModel):
    """Structured outcome of one execution job.

    Invariant: ``ok`` is False if and only if ``error`` is present. ``logs``
    holds everything captured before the terminating condition, in emission
    order, even on failure.
    """

    ok: bool
    logs: list[str] = Field(default_factory=list)
    error: str | None = None

    @model_validator(mode="after")
    def check_error_matches_ok(self) -> ExecutionResult:
        if self.ok and self.error is not None:
            raise ValueError("A successful result cannot carry an error")
        if not self.ok and self.error is None:
            raise ValueError("A failed result must carry an error")
        return self

    @classmethod
    def success(cls, logs: list[str]) -> ExecutionResult:
        return cls(ok=True, logs=list(logs))

    @classmethod
    def failure(cls, logs: list[str], error: str) -> ExecutionResult:
        return cls(ok=False, logs=list(logs), error=error)

    def to_response(self) -> dict[str, Any]:
        """Serialize to the wire shape ``{ok, logs, error?}``."""
        return self.model_dump(exclude_none=True)


class SandboxPolicy(BaseModel):
    """Capability set applied to one rendering surface.

    Resolved once per rendering job and never mutated afterwards.

    Attributes:
        allowed_origins: Fully-qualified library URLs the bundle may load
        sandbox_flags: iframe sandbox tokens granted to the surface
        csp: Content-Security-Policy enforced inside the surface
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    allowed_origins: tuple[str, ...] = ()
    sandbox_flags: tuple[str, ...] = ()
    csp: str = "default-src 'none'"


class PolicyOverride(BaseModel):
    """Job-supplied partial policy; unset fields fall back to the defaults."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    allowed_origins: tuple[str, ...] | None = None
    sandbox_flags: tuple[str, ...] | None = None
    csp: str | None = None


class VisualBundle(BaseModel):
    """AI-generated markup/style/script bundle for the rendering sandbox."""

    html: str | None = None
    css: str | None = None
    js: str
    data: Any = None
