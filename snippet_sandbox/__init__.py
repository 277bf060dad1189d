"""Sandboxed execution of untrusted code snippets and AI-generated visuals.

Jobs (Python, JavaScript, TypeScript) run inside interpreters compiled to
WebAssembly, each in a fresh store with its own deadline, and return
``{ok, logs, error?}``. Visual bundles are mounted into a sandboxed iframe
surface with a strict Content-Security-Policy.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .capture import CaptureBuffer, CaptureChannel, CaptureHandle, CaptureSink
from .config import EngineConfig, load_config
from .core import (
    ExecutionJob,
    ExecutionResult,
    ExecutionTimeout,
    JobValidationError,
    Language,
    PolicyOverride,
    PolicyValidationError,
    RuntimeUnavailable,
    SandboxError,
    SandboxPolicy,
    VisualBundle,
)
from .executor import ExecutionHost
from .protocol import handle_message, handle_mount_request, handle_request, parse_request
from .registry import RuntimeRegistry, get_default_registry
from .rendering import RenderingSandbox, SandboxHandle, csp_allows, mount, resolve_policy, validate_override

__all__ = [
    "CaptureBuffer",
    "CaptureChannel",
    "CaptureHandle",
    "CaptureSink",
    "EngineConfig",
    "ExecutionHost",
    "ExecutionJob",
    "ExecutionResult",
    "ExecutionTimeout",
    "JobValidationError",
    "Language",
    "PolicyOverride",
    "PolicyValidationError",
    "RenderingSandbox",
    "RuntimeRegistry",
    "RuntimeUnavailable",
    "SandboxError",
    "SandboxHandle",
    "SandboxPolicy",
    "VisualBundle",
    "csp_allows",
    "get_default_registry",
    "handle_message",
    "handle_mount_request",
    "handle_request",
    "load_config",
    "mount",
    "parse_request",
    "resolve_policy",
    "validate_override",
]
