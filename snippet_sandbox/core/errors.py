"""Exception classes for sandbox errors and validation failures.

Provides domain-specific exceptions for the execution engine and the
rendering sandbox. Only host-side code raises these; the job protocol
converts every one of them into a structured ExecutionResult so no
exception ever crosses the request/response boundary.
"""

from __future__ import annotations


class SandboxError(Exception):
    """Base class for all snippet sandbox errors."""

    pass


class RuntimeUnavailable(SandboxError):
    """Raised when a language runtime could not be initialized.

    Indicates that the runtime's support assets (e.g., the WASM binary)
    could not be located, compiled, or loaded. Not retryable without caller
    intervention such as a packaging fix; the registry does not cache the
    failed instance so a later call may try again.
    """

    def __init__(self, language: str, reason: str) -> None:
        self.language = language
        self.reason = reason
        super().__init__(f"Runtime '{language}' unavailable: {reason}")


class ExecutionException(SandboxError):
    """The submitted code raised or threw.

    The message is the guest's own error message, reported verbatim.
    """

    pass


class ExecutionTimeout(SandboxError):
    """The job exceeded its deadline."""

    def __init__(self, message: str = "Execution timeout") -> None:
        super().__init__(message)


class SerializationFailure(SandboxError):
    """An output value could not be captured as text.

    Always recovered locally by the capture channel (a sentinel line is
    appended instead); never escalated to the caller.
    """

    pass


class JobValidationError(SandboxError):
    """Raised when an execution request does not match the job protocol."""

    pass


class PolicyValidationError(SandboxError):
    """Raised when configuration or a sandbox policy is invalid.

    Wraps Pydantic ValidationError with a clearer domain-specific name, and
    is raised by the caller-layer validation of rendering policy overrides.
    """

    pass


class SandboxExecutionError(SandboxError):
    """Raised when the sandbox host itself fails unexpectedly.

    Indicates a failure in the runtime machinery (not user code), such as
    WASI configuration failures or a missing wasmtime capability. Guest code
    errors are reported through RuntimeOutcome and do not raise this.
    """

    pass
