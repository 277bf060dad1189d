"""Core sandbox abstractions and models.

This module provides the foundational types and interfaces for the snippet
execution engine, including Pydantic models for jobs, results and rendering
policies, the runtime base abstraction, and error types.
"""

from __future__ import annotations

from .base import BaseRuntime, Deadline, RuntimeOutcome
from .errors import (
    ExecutionException,
    ExecutionTimeout,
    JobValidationError,
    PolicyValidationError,
    RuntimeUnavailable,
    SandboxError,
    SandboxExecutionError,
    SerializationFailure,
)
from .models import (
    ExecutionJob,
    ExecutionResult,
    Language,
    PolicyOverride,
    SandboxPolicy,
    VisualBundle,
)

__all__ = [
    "BaseRuntime",
    "Deadline",
    "ExecutionException",
    "ExecutionJob",
    "ExecutionResult",
    "ExecutionTimeout",
    "JobValidationError",
    "Language",
    "PolicyOverride",
    "PolicyValidationError",
    "RuntimeOutcome",
    "RuntimeUnavailable",
    "SandboxError",
    "SandboxExecutionError",
    "SandboxPolicy",
    "SerializationFailure",
    "VisualBundle",
]
