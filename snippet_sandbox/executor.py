"""Execution host: runs one job against its runtime under a deadline.

The host resolves the runtime through the registry, opens a capture sink,
prepends the language preamble and runs the unit on a worker thread raced
against the job deadline. Every exit path (completion, guest exception,
timeout, host failure) restores the capture handle exactly once before the
result is built.

Guests are also forcibly interrupted on the same deadline by the runtime
(epoch interruption for WASM runtimes), so a timed-out job does not keep
consuming CPU in the background after its response has been sent.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable

from snippet_sandbox.capture import EXCEPTION_PREFIX, CaptureBuffer, CaptureChannel
from snippet_sandbox.config import EngineConfig
from snippet_sandbox.core.base import Deadline, RuntimeOutcome
from snippet_sandbox.core.errors import (
    ExecutionException,
    ExecutionTimeout,
    RuntimeUnavailable,
    SandboxError,
)
from snippet_sandbox.core.logging import SandboxLogger
from snippet_sandbox.core.models import ExecutionJob, ExecutionResult
from snippet_sandbox.registry import RuntimeRegistry, get_default_registry

TIMEOUT_MESSAGE = str(ExecutionTimeout())

# runtime_config keys forwarded to the runtime as per-job limits
_LIMIT_KEYS = ("fuel_budget", "memory_bytes")


class ExecutionHost:
    """Runs execution jobs and always produces an ExecutionResult.

    Without an explicit ``registry`` the host shares the process-wide
    default registry. That registry keeps the EngineConfig it was first
    created with; pass a dedicated RuntimeRegistry to run runtimes under a
    different config.

    Attributes:
        registry: RuntimeRegistry providing memoized runtimes
        capture: CaptureChannel creating per-job sinks
        config: EngineConfig with limits and defaults
        logger: SandboxLogger for structured events
    """

    def __init__(
        self,
        registry: RuntimeRegistry | None = None,
        capture: CaptureChannel | None = None,
        config: EngineConfig | None = None,
        logger: SandboxLogger | None = None,
    ) -> None:
        self.logger = logger or (registry.logger if registry is not None else SandboxLogger())
        self.config = config or (registry.config if registry is not None else EngineConfig())
        self.registry = registry or get_default_registry(config=self.config, logger=self.logger)
        self.capture = capture or CaptureChannel(
            max_log_lines=self.config.max_log_lines,
            max_log_bytes=self.config.max_log_bytes,
            logger=self.logger,
        )

    async def run(self, job: ExecutionJob) -> ExecutionResult:
        """Execute ``job`` and return its structured result.

        Returns:
            ``{ok: True, logs}`` on completion, otherwise ``{ok: False, logs,
            error}`` where logs end with an ``[exception] <message>`` line
            (except when the runtime itself is unavailable).
        """
        job_id = uuid.uuid4().hex
        started = time.perf_counter()
        self.logger.log_execution_start(job, job_id)

        if not job.code.strip():
            return self._finish(ExecutionResult.success([]), job, job_id, started, "completed")

        try:
            runtime = await self.registry.get_runtime(job.language, job.runtime_config)
        except RuntimeUnavailable as e:
            return self._finish(ExecutionResult.failure([], str(e)), job, job_id, started, "unavailable")

        handle, buffer = self.capture.intercept(job, job_id)
        deadline = Deadline(job.timeout_ms)
        overrides = {k: v for k, v in job.runtime_config.items() if k in _LIMIT_KEYS}
        interrupted = True

        try:
            unit = runtime.prepare(job.code)
            try:
                outcome = await asyncio.wait_for(
                    asyncio.to_thread(runtime.execute, unit, handle.sink, deadline, overrides),
                    timeout=job.timeout_ms / 1000,
                )
            except TimeoutError:
                interrupted = False
                outcome = RuntimeOutcome(timed_out=True)
        except Exception as e:
            self.logger._emit(
                logging.ERROR,
                "sandbox.execution.host_error",
                job_id=job_id,
                language=job.language.value,
                error=f"{type(e).__name__}: {e}",
            )
            outcome = RuntimeOutcome(error=f"{type(e).__name__}: {e}")
        finally:
            self.capture.restore(handle)

        if outcome.completed:
            return self._finish(ExecutionResult.success(buffer.snapshot()), job, job_id, started, "completed")

        failure: SandboxError
        if outcome.timed_out:
            self.logger.log_execution_timeout(job_id, job.language.value, job.timeout_ms, interrupted)
            failure, kind = ExecutionTimeout(TIMEOUT_MESSAGE), "timeout"
        else:
            failure, kind = ExecutionException(outcome.error), "exception"
        return self._finish(self._failure(buffer, failure), job, job_id, started, kind)

    @staticmethod
    def _failure(buffer: CaptureBuffer, failure: SandboxError) -> ExecutionResult:
        """Close the log with the terminating ``[exception]`` line."""
        message = str(failure)
        buffer.append(EXCEPTION_PREFIX + message, force=True)
        return ExecutionResult.failure(buffer.snapshot(), message)

    async def run_many(self, jobs: Iterable[ExecutionJob]) -> list[ExecutionResult]:
        """Run jobs concurrently; results are returned in submission order."""
        return list(await asyncio.gather(*(self.run(job) for job in jobs)))

    def _finish(
        self,
        result: ExecutionResult,
        job: ExecutionJob,
        job_id: str,
        started: float,
        outcome: str,
    ) -> ExecutionResult:
        self.logger.log_execution_complete(
            result,
            job_id=job_id,
            language=job.language.value,
            duration_ms=(time.perf_counter() - started) * 1000,
            outcome=outcome,
        )
        return result
