"""Capture channel: per-job output interception and restoration.

Every job gets its own CaptureBuffer and a CaptureSink bound to it. Guests
write line-framed JSON records (``{"log": ...}`` / ``{"exception": ...}``)
to a private stdout file owned by the sink; in-process runtimes call
``sink.emit(*args)`` directly. ``CaptureChannel.restore`` performs the final
drain, detaches the sink and removes its files exactly once per job, so a
failed or timed-out job can never leave output redirected into a stale
buffer that a later job would share.
"""

from __future__ import annotations

import json
import shutil
import tempfile
import threading
import uuid
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from snippet_sandbox.core.errors import SerializationFailure
from snippet_sandbox.core.logging import SandboxLogger
from snippet_sandbox.core.models import ExecutionJob

UNPRINTABLE = "[unprintable]"
TRUNCATED = "[truncated]"
EXCEPTION_PREFIX = "[exception] "

RECORD_LOG = "log"
RECORD_EXCEPTION = "exception"


def coerce_args(args: tuple[Any, ...], sep: str = " ") -> str:
    """Join the string form of each argument, as one print call would.

    Raises:
        SerializationFailure: If any argument cannot be converted to text
    """
    try:
        return sep.join(str(arg) for arg in args)
    except Exception as e:
        raise SerializationFailure(f"{type(e).__name__}: {e}") from e


class CaptureBuffer:
    """Ordered log lines for exactly one job, bounded by line and byte caps.

    Once a cap is hit a single "[truncated]" line is recorded and further
    output is dropped. Exception lines are always recorded.
    """

    def __init__(self, max_lines: int = 10_000, max_bytes: int = 2_000_000) -> None:
        self._lines: list[str] = []
        self._bytes = 0
        self._max_lines = max_lines
        self._max_bytes = max_bytes
        self._lock = threading.Lock()
        self.truncated = False

    def append(self, line: str, force: bool = False) -> None:
        with self._lock:
            if force:
                self._lines.append(line)
                return
            if self.truncated:
                return
            size = len(line.encode("utf-8", errors="replace"))
            if len(self._lines) >= self._max_lines or self._bytes + size > self._max_bytes:
                self.truncated = True
                self._lines.append(TRUNCATED)
                return
            self._lines.append(line)
            self._bytes += size

    def snapshot(self) -> list[str]:
        """Copy of the lines captured so far."""
        with self._lock:
            return list(self._lines)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class CaptureSink:
    """Output sink for one job: in-process emit plus guest record files."""

    def __init__(
        self,
        job_id: str,
        buffer: CaptureBuffer,
        directory: Path,
        logger: SandboxLogger | None = None,
    ) -> None:
        self.job_id = job_id
        self.buffer = buffer
        self.directory = directory
        self.stdout_path = directory / "stdout.log"
        self.stderr_path = directory / "stderr.log"
        self.exception: str | None = None
        self.detached = False
        self._offset = 0
        self._lock = threading.Lock()
        self._logger = logger

    def emit(self, *args: Any) -> None:
        """Record one print/log call, space-joined."""
        if self.detached:
            return
        try:
            line = coerce_args(args)
        except SerializationFailure as e:
            if self._logger is not None:
                self._logger.log_unprintable(self.job_id, str(e))
            line = UNPRINTABLE
        self.buffer.append(line)

    def raise_exception(self, message: str) -> None:
        """Record the terminating exception message reported by a runtime."""
        self.exception = message

    def drain(self, final: bool = False) -> None:
        """Parse records appended to the guest stdout file since the last drain.

        A trailing partial line is kept for the next call unless ``final`` is set.
        """
        with self._lock:
            if self.detached:
                return
            try:
                with open(self.stdout_path, "rb") as f:
                    f.seek(self._offset)
                    data = f.read()
            except FileNotFoundError:
                return

            if not final:
                cut = data.rfind(b"\n") + 1
                data = data[:cut]
            self._offset += len(data)

            for raw in data.splitlines():
                self._consume(raw.decode("utf-8", errors="replace"))

    def _consume(self, line: str) -> None:
        if not line.strip():
            return
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            self.buffer.append(line)
            return

        if not isinstance(record, dict):
            self.buffer.append(line)
        elif RECORD_LOG in record:
            value = record[RECORD_LOG]
            self.buffer.append(value if isinstance(value, str) else UNPRINTABLE)
        elif RECORD_EXCEPTION in record:
            value = record[RECORD_EXCEPTION]
            self.exception = value if isinstance(value, str) else UNPRINTABLE
        else:
            self.buffer.append(line)

    def read_stderr(self, limit: int = 4096) -> str:
        """Read the tail of raw guest stderr (interpreter-level failures)."""
        try:
            data = self.stderr_path.read_bytes()
        except FileNotFoundError:
            return ""
        return data[-limit:].decode("utf-8", errors="replace").strip()

    def detach(self) -> None:
        with self._lock:
            self.detached = True


class CaptureHandle:
    """Interception handle returned by CaptureChannel.intercept()."""

    def __init__(self, job_id: str, sink: CaptureSink) -> None:
        self.job_id = job_id
        self.sink = sink
        self.restored = False
        self._lock = threading.Lock()


class CaptureChannel:
    """Creates per-job capture sinks and restores them exactly once."""

    def __init__(
        self,
        max_log_lines: int = 10_000,
        max_log_bytes: int = 2_000_000,
        scratch_root: str | None = None,
        logger: SandboxLogger | None = None,
    ) -> None:
        self.max_log_lines = max_log_lines
        self.max_log_bytes = max_log_bytes
        self.scratch_root = scratch_root
        self.logger = logger or SandboxLogger()
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @property
    def active_count(self) -> int:
        """Number of intercepted jobs not yet restored."""
        with self._lock:
            return len(self._active)

    def intercept(self, job: ExecutionJob, job_id: str | None = None) -> tuple[CaptureHandle, CaptureBuffer]:
        """Open a fresh sink and buffer for one job."""
        job_id = job_id or uuid.uuid4().hex
        buffer = CaptureBuffer(self.max_log_lines, self.max_log_bytes)
        directory = Path(tempfile.mkdtemp(prefix="snippet-capture-", dir=self.scratch_root))
        sink = CaptureSink(job_id, buffer, directory, self.logger)
        sink.stdout_path.touch()
        sink.stderr_path.touch()
        with self._lock:
            self._active.add(job_id)
        return CaptureHandle(job_id, sink), buffer

    def restore(self, handle: CaptureHandle) -> bool:
        """Final drain, detach and cleanup. Returns False if already restored."""
        with handle._lock:
            if handle.restored:
                return False
            handle.restored = True

        try:
            handle.sink.drain(final=True)
        finally:
            handle.sink.detach()
            shutil.rmtree(handle.sink.directory, ignore_errors=True)
            with self._lock:
                self._active.discard(handle.job_id)
        return True
