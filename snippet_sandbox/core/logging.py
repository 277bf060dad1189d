"""Structured logging for execution, runtime lifecycle and security events.

Provides SandboxLogger class that uses structlog for structured event emission
(execution.start, execution.complete, runtime.ready, security events).
Configures structlog with console rendering by default but allows custom
configuration. Submitted code is never logged, only its size.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from snippet_sandbox.core.models import ExecutionJob, ExecutionResult, SandboxPolicy


def configure_structlog(level: int = logging.INFO, use_json: bool = False) -> None:
    """Configure structlog with sensible defaults for sandbox logging.

    Args:
        level: Minimum log level (default: logging.INFO)
        use_json: If True, use JSON renderer; otherwise use console renderer
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class SandboxLogger:
    """Wrapper for structured logging of sandbox events.

    Accepts either structlog or standard logging.Logger instances and normalizes
    emission so callers do not need to care which backend is in use.
    """

    def __init__(self, logger: Any = None) -> None:
        """Initialize SandboxLogger with optional custom logger.

        Args:
            logger: Optional structlog BoundLogger, logging.Logger, or string name.
                    If None, a default structlog logger named 'snippet_sandbox' is created.
                    If string, creates a structlog logger with that name.
        """
        if logger is None:
            self._logger = structlog.get_logger("snippet_sandbox")
        elif isinstance(logger, str):
            self._logger = structlog.get_logger(logger)
        else:
            self._logger = logger

    @property
    def logger(self) -> Any:
        """Expose the underlying logger instance (structlog or logging.Logger)."""
        return self._logger

    def _emit(self, level: int, message: str, **fields: Any) -> None:
        """Emit a log record regardless of logger backend."""
        extra = dict(fields)
        extra.setdefault("log_message", message)
        # Ensure event key is always present for downstream processors
        extra.setdefault("event", message.split(".", 1)[-1] if "." in message else message)
        extra.setdefault("event_type", extra.get("event"))

        if isinstance(self._logger, logging.Logger):
            # Standard logging expects structured data in the 'extra' mapping
            self._logger.log(level, message, extra=extra)
            return

        method_name = logging.getLevelName(level).lower()
        log_method = getattr(self._logger, method_name, None)
        if not callable(log_method):
            log_method = self._logger.info

        log_kwargs = dict(extra)
        event_value = log_kwargs.pop("event", None)
        event_arg = event_value if event_value is not None else message
        log_method(event_arg, **log_kwargs)

    def log_execution_start(self, job: ExecutionJob, job_id: str) -> None:
        """Log the start of a job with its budget, never its code.

        Args:
            job: The execution job about to run
            job_id: Identifier correlating start/complete events
        """
        self._emit(
            logging.INFO,
            "sandbox.execution.start",
            event="execution.start",
            job_id=job_id,
            language=job.language.value,
            timeout_ms=job.timeout_ms,
            code_bytes=len(job.code.encode("utf-8", errors="replace")),
            runtime_config_keys=sorted(job.runtime_config),
        )

    def log_execution_complete(
        self,
        result: ExecutionResult,
        job_id: str,
        language: str,
        duration_ms: float,
        outcome: str,
    ) -> None:
        """Log the completion of a job with result metrics.

        Args:
            result: ExecutionResult delivered to the caller
            job_id: Identifier correlating start/complete events
            language: Language of the job
            duration_ms: Wall-clock time until the response was built
            outcome: One of "completed", "exception", "timeout", "unavailable"
        """
        self._emit(
            logging.INFO,
            "sandbox.execution.complete",
            event="execution.complete",
            job_id=job_id,
            language=language,
            ok=result.ok,
            outcome=outcome,
            duration_ms=duration_ms,
            log_lines=len(result.logs),
        )

    def log_execution_timeout(self, job_id: str, language: str, timeout_ms: int, interrupted: bool) -> None:
        """Log a deadline expiry.

        Args:
            job_id: Identifier of the timed-out job
            language: Language of the job
            timeout_ms: Budget that was exceeded
            interrupted: True when the guest was forcibly trapped, False when
                         the host stopped waiting before the trap was observed
        """
        self._emit(
            logging.WARNING,
            "sandbox.execution.timeout",
            event="execution.timeout",
            job_id=job_id,
            language=language,
            timeout_ms=timeout_ms,
            interrupted=interrupted,
        )

    def log_runtime_event(self, state: str, language: str, **details: Any) -> None:
        """Log a runtime lifecycle transition (initializing, ready, failed).

        Failures are emitted at ERROR level, other transitions at INFO.
        """
        level = logging.ERROR if state == "failed" else logging.INFO
        event = f"runtime.{state}"
        self._emit(level, f"sandbox.{event}", event=event, language=language, **details)

    def log_render_mounted(self, mount_id: str, policy: SandboxPolicy, document_bytes: int) -> None:
        """Log the creation of a rendering surface with its effective policy."""
        self._emit(
            logging.INFO,
            "sandbox.render.mounted",
            event="render.mounted",
            mount_id=mount_id,
            allowed_origins=list(policy.allowed_origins),
            sandbox_flags=list(policy.sandbox_flags),
            csp=policy.csp,
            document_bytes=document_bytes,
        )

    def log_security_event(self, event_type: str, details: dict[str, Any]) -> None:
        """Log a security-relevant event at WARNING level.

        Emits a WARNING-level structured log for security monitoring, such as
        CSP violations reported by a rendering surface, rejected policy
        overrides, or fuel and memory exhaustion inside a guest.

        Args:
            event_type: Type of security event (e.g., "csp_violation",
                       "policy_rejected", "fuel_exhausted")
            details: Dict containing event-specific details
        """
        event = f"security.{event_type}"
        self._emit(logging.WARNING, f"sandbox.{event}", event=event, **details)

    def log_unprintable(self, job_id: str | None, error: str) -> None:
        """Log a recovered serialization failure at DEBUG level."""
        self._emit(
            logging.DEBUG,
            "sandbox.capture.unprintable",
            event="capture.unprintable",
            job_id=job_id,
            error=error,
        )
