"""Shared pytest fixtures for all tests.

Most tests run against FakeRuntime, an in-process runtime that executes the
submitted snippet as Python with ``print`` bound to the job's capture sink.
It honours the job deadline cooperatively through ``spin()``, so timeout
behaviour can be exercised without the WASM interpreter binaries.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Mapping
from typing import Any

import pytest

from snippet_sandbox.capture import CaptureChannel, CaptureSink
from snippet_sandbox.config import EngineConfig
from snippet_sandbox.core.base import BaseRuntime, Deadline, RuntimeOutcome
from snippet_sandbox.executor import ExecutionHost
from snippet_sandbox.registry import RuntimeRegistry
from snippet_sandbox.runtime_paths import PYTHON_BINARY, QUICKJS_BINARY, get_bundled_binary_path


class _DeadlineReached(Exception):
    pass


class FakeRuntime(BaseRuntime):
    """In-process runtime executing snippets as Python source.

    Snippet globals: ``print`` (the capture sink), ``spin()`` (busy-wait until
    the deadline interrupts it), ``sleep(seconds)`` (ignores the deadline) and
    ``unprintable`` (an object whose ``__str__`` raises).
    """

    language = "python"

    def initialize(self) -> FakeRuntime:
        self.ready = True
        return self

    def execute(
        self,
        unit: str,
        sink: CaptureSink,
        deadline: Deadline,
        overrides: Mapping[str, Any] | None = None,
    ) -> RuntimeOutcome:
        def spin() -> None:
            while not deadline.expired:
                time.sleep(0.001)
            raise _DeadlineReached

        namespace = {
            "print": sink.emit,
            "spin": spin,
            "sleep": time.sleep,
            "unprintable": Unprintable(),
            "overrides": dict(overrides or {}),
        }
        try:
            exec(compile(unit, "<snippet>", "exec"), namespace)
        except _DeadlineReached:
            return RuntimeOutcome(timed_out=True, trap_reason="deadline")
        except Exception as e:
            sink.raise_exception(str(e) or type(e).__name__)
            return RuntimeOutcome(error=sink.exception, exit_code=1)
        return RuntimeOutcome(exit_code=0)


class Unprintable:
    def __str__(self) -> str:
        raise RuntimeError("no string form")


class CountingFactory:
    """Runtime factory that counts constructions and can be slowed or failed."""

    def __init__(self, delay: float = 0.0, failures: int = 0) -> None:
        self.delay = delay
        self.failures = failures
        self.calls = 0
        self.assets_paths: list[str | None] = []
        self._lock = threading.Lock()

    def __call__(self, config: Any = None, logger: Any = None, assets_path: str | None = None) -> BaseRuntime:
        with self._lock:
            self.calls += 1
            self.assets_paths.append(assets_path)
            fail = self.failures > 0
            if fail:
                self.failures -= 1
        time.sleep(self.delay)
        if fail:
            raise OSError("runtime image missing")
        return FakeRuntime(config=config, logger=logger, assets_path=assets_path)


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig()


@pytest.fixture
def fake_registry(engine_config: EngineConfig) -> Iterator[RuntimeRegistry]:
    registry = RuntimeRegistry(
        factories={"python": FakeRuntime, "javascript": FakeRuntime},
        config=engine_config,
    )
    yield registry
    registry.shutdown()


@pytest.fixture
def capture_channel(engine_config: EngineConfig) -> CaptureChannel:
    return CaptureChannel(
        max_log_lines=engine_config.max_log_lines,
        max_log_bytes=engine_config.max_log_bytes,
    )


@pytest.fixture
def host(
    fake_registry: RuntimeRegistry,
    capture_channel: CaptureChannel,
    engine_config: EngineConfig,
) -> ExecutionHost:
    return ExecutionHost(registry=fake_registry, capture=capture_channel, config=engine_config)


def _binary_available(name: str) -> bool:
    try:
        get_bundled_binary_path(name)
    except FileNotFoundError:
        return False
    return True


requires_python_wasm = pytest.mark.skipif(
    not _binary_available(PYTHON_BINARY), reason=f"{PYTHON_BINARY} not available"
)
requires_quickjs_wasm = pytest.mark.skipif(
    not _binary_available(QUICKJS_BINARY), reason=f"{QUICKJS_BINARY} not available"
)
