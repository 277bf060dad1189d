"""Tests for ExecutionHost: results, deadlines, restoration and concurrency.

Runs against the in-process FakeRuntime from conftest; ``spin()`` stands in
for a non-terminating loop that the runtime interrupts on the deadline.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from conftest import CountingFactory
from snippet_sandbox.capture import CaptureChannel
from snippet_sandbox.core.base import BaseRuntime, RuntimeOutcome
from snippet_sandbox.core.errors import ExecutionTimeout
from snippet_sandbox.core.models import ExecutionJob
from snippet_sandbox.executor import TIMEOUT_MESSAGE, ExecutionHost
from snippet_sandbox.registry import RuntimeRegistry


def _job(code: str, timeout_ms: int = 3000, language: str = "python", **runtime_config: str) -> ExecutionJob:
    return ExecutionJob(code=code, language=language, timeout_ms=timeout_ms, runtime_config=runtime_config)


class TestExecutionResults:
    """Scenarios for completion, exceptions and empty code."""

    @pytest.mark.asyncio
    async def test_print_hi(self, host):
        result = await host.run(_job("print('hi')"))

        assert result.to_response() == {"ok": True, "logs": ["hi"]}

    @pytest.mark.asyncio
    async def test_raise_boom(self, host):
        result = await host.run(_job("raise Exception('boom')"))

        assert result.to_response() == {"ok": False, "logs": ["[exception] boom"], "error": "boom"}

    @pytest.mark.asyncio
    async def test_logs_before_exception_are_kept_in_order(self, host):
        result = await host.run(_job("print('a')\nprint('b', 2)\nraise ValueError('bad value')"))

        assert result.ok is False
        assert result.logs == ["a", "b 2", "[exception] bad value"]
        assert result.error == "bad value"

    @pytest.mark.asyncio
    async def test_empty_code(self, host, fake_registry):
        result = await host.run(_job(""))

        assert result.to_response() == {"ok": True, "logs": []}

    @pytest.mark.asyncio
    async def test_whitespace_code_does_not_initialize_runtime(self, host, fake_registry):
        await host.run(_job("   \n"))

        assert fake_registry.initialization_count("python") == 0

    @pytest.mark.asyncio
    async def test_unprintable_value_is_recovered(self, host):
        result = await host.run(_job("print(unprintable)\nprint('next')"))

        assert result.ok is True
        assert result.logs == ["[unprintable]", "next"]

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_type_name(self, host):
        result = await host.run(_job("raise KeyError()"))

        assert result.error == "KeyError"
        assert result.logs == ["[exception] KeyError"]

    @pytest.mark.asyncio
    async def test_limit_overrides_reach_runtime(self, host):
        result = await host.run(
            _job("print(sorted(overrides.items()))", fuel_budget="10", assets_path="/x")
        )

        assert result.logs == ["[('fuel_budget', '10')]"]


class TestDeadlines:
    """Timeout behaviour and response latency."""

    @pytest.mark.asyncio
    async def test_infinite_loop_times_out(self, host):
        started = time.perf_counter()
        result = await host.run(_job("print('before')\nspin()", timeout_ms=50))
        elapsed = time.perf_counter() - started

        assert result.ok is False
        assert result.error == TIMEOUT_MESSAGE
        assert result.logs == ["before", f"[exception] {TIMEOUT_MESSAGE}"]
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_response_does_not_wait_for_unresponsive_guest(self, host):
        started = time.perf_counter()
        result = await host.run(_job("sleep(0.6)\nprint('late')", timeout_ms=50))
        elapsed = time.perf_counter() - started

        assert result.error == TIMEOUT_MESSAGE
        assert "late" not in result.logs
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_late_output_never_reaches_a_returned_result(self, host):
        result = await host.run(_job("sleep(0.2)\nprint('late')", timeout_ms=50))
        logs = list(result.logs)

        await asyncio.sleep(0.3)

        assert result.logs == logs


class TestRestoration:
    """Capture restoration after every outcome."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code, timeout_ms",
        [("print('first')", 1000), ("print('first')\nraise Exception('x')", 1000), ("print('first')\nspin()", 50)],
    )
    async def test_next_job_sees_only_its_own_output(self, host, code, timeout_ms):
        await host.run(_job(code, timeout_ms=timeout_ms))

        result = await host.run(_job("print('second')"))

        assert result.to_response() == {"ok": True, "logs": ["second"]}
        assert host.capture.active_count == 0

    @pytest.mark.asyncio
    async def test_restore_happens_on_host_failure(self, host, monkeypatch):
        runtime = await host.registry.get_runtime("python")

        def explode(code):
            raise RuntimeError("preamble failed")

        monkeypatch.setattr(runtime, "prepare", explode)
        result = await host.run(_job("print('x')"))

        assert result.ok is False
        assert result.error == "RuntimeError: preamble failed"
        assert result.logs == ["[exception] RuntimeError: preamble failed"]
        assert host.capture.active_count == 0


class TestRuntimeAvailability:
    @pytest.mark.asyncio
    async def test_unavailable_runtime_is_reported(self):
        registry = RuntimeRegistry(factories={"python": CountingFactory(failures=1)})
        host = ExecutionHost(registry=registry, capture=CaptureChannel())

        result = await host.run(_job("print('hi')"))

        assert result.ok is False
        assert result.logs == []
        assert "Runtime 'python' unavailable" in result.error
        registry.shutdown()

    @pytest.mark.asyncio
    async def test_typescript_runs_on_javascript_runtime(self, host, fake_registry):
        result = await host.run(_job("print('ts')", language="ts"))

        assert result.logs == ["ts"]
        assert fake_registry.initialization_count("javascript") == 1


class TestConcurrency:
    """Concurrent first use and independent results."""

    @pytest.mark.asyncio
    async def test_fifty_concurrent_jobs_initialize_once(self):
        factory = CountingFactory(delay=0.05)
        registry = RuntimeRegistry(factories={"python": factory})
        host = ExecutionHost(registry=registry, capture=CaptureChannel())

        results = await host.run_many(_job(f"print({i})") for i in range(50))

        assert factory.calls == 1
        assert [result.to_response() for result in results] == [
            {"ok": True, "logs": [str(i)]} for i in range(50)
        ]
        registry.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_jobs_do_not_share_output(self, host):
        jobs = [
            _job("print('a1')\nsleep(0.02)\nprint('a2')"),
            _job("print('b1')\nraise Exception('b failed')"),
            _job("print('c1')\nspin()", timeout_ms=50),
        ]

        a, b, c = await host.run_many(jobs)

        assert a.logs == ["a1", "a2"]
        assert b.logs == ["b1", "[exception] b failed"]
        assert c.logs == ["c1", f"[exception] {TIMEOUT_MESSAGE}"]


class ScriptedRuntime(BaseRuntime):
    """Runtime that prints one line and returns a fixed outcome."""

    def __init__(self, outcome: RuntimeOutcome, **kwargs) -> None:
        super().__init__(**kwargs)
        self.outcome = outcome

    def initialize(self) -> ScriptedRuntime:
        self.ready = True
        return self

    def execute(self, unit, sink, deadline, overrides=None) -> RuntimeOutcome:
        sink.emit("started")
        return self.outcome


class TestOutcomeMapping:
    """Runtime outcomes map onto results through the domain errors."""

    def test_timeout_message(self):
        assert TIMEOUT_MESSAGE == str(ExecutionTimeout()) == "Execution timeout"

    @pytest.mark.parametrize(
        "outcome, completed",
        [
            (RuntimeOutcome(exit_code=0), True),
            (RuntimeOutcome(error="boom", exit_code=1), False),
            (RuntimeOutcome(timed_out=True, trap_reason="deadline"), False),
        ],
    )
    def test_completed(self, outcome, completed):
        assert outcome.completed is completed

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome, expected",
        [
            (RuntimeOutcome(exit_code=0), {"ok": True, "logs": ["started"]}),
            (
                RuntimeOutcome(error="Execution fuel exhausted", trap_reason="out_of_fuel", exit_code=1),
                {
                    "ok": False,
                    "logs": ["started", "[exception] Execution fuel exhausted"],
                    "error": "Execution fuel exhausted",
                },
            ),
            (
                RuntimeOutcome(timed_out=True, trap_reason="deadline"),
                {"ok": False, "logs": ["started", "[exception] Execution timeout"], "error": "Execution timeout"},
            ),
        ],
    )
    async def test_outcome_to_result(self, outcome, expected):
        registry = RuntimeRegistry(
            factories={"python": lambda **kwargs: ScriptedRuntime(outcome, **kwargs)}
        )
        host = ExecutionHost(registry=registry, capture=CaptureChannel())

        result = await host.run(_job("ignored"))

        assert result.to_response() == expected
        registry.shutdown()
