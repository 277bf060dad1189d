"""WASM host layer shared by every language runtime.

Runs a language interpreter compiled to WASI inside Wasmtime. The compiled
module is the memoized runtime image; every job instantiates a fresh Store,
WASI context and scratch directory, which is the job's isolated execution
context. Defense is layered:
- WASM memory safety and sandboxing
- WASI capability-based filesystem isolation (only the job scratch dir)
- Forced interruption on deadline via epoch interruption
- Fuel budgeting and memory caps to prevent resource exhaustion
"""

from __future__ import annotations

import math
import shutil
import tempfile
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from wasmtime import (
    Config,
    Engine,
    ExitTrap,
    Linker,
    Module,
    Store,
    Trap,
    WasiConfig,
    WasmtimeError,
)

from snippet_sandbox.core.base import BaseRuntime, Deadline, RuntimeOutcome
from snippet_sandbox.core.errors import SandboxExecutionError
from snippet_sandbox.runtime_paths import get_bundled_binary_path

if TYPE_CHECKING:
    from snippet_sandbox.capture import CaptureSink

TRAP_MESSAGES = {
    "out_of_fuel": "Execution fuel exhausted",
    "memory_limit": "Memory limit exceeded",
}


class WasmRuntime(BaseRuntime):
    """Runtime backed by an interpreter compiled to WASI.

    Subclasses provide the binary name, the guest argv and the preamble.

    Attributes:
        engine: Wasmtime Engine with fuel and epoch interruption enabled
        module: Compiled interpreter module shared by all jobs
        wasm_path: Resolved path of the interpreter binary
    """

    binary_name: ClassVar[str] = ""
    code_filename: ClassVar[str] = ""
    guest_mount_path: ClassVar[str] = "/app"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.engine: Engine | None = None
        self.module: Module | None = None
        self.wasm_path: Path | None = None
        self._ticker: threading.Thread | None = None
        self._stop_ticker = threading.Event()

    def guest_argv(self) -> list[str]:
        raise NotImplementedError

    def initialize(self) -> WasmRuntime:
        """Resolve and compile the interpreter, then start the epoch ticker.

        Raises:
            FileNotFoundError: If the interpreter binary cannot be found
            wasmtime.WasmtimeError: If the module fails to compile
        """
        wasm_path = get_bundled_binary_path(self.binary_name, self.assets_path)

        cfg = Config()
        cfg.consume_fuel = True
        cfg.epoch_interruption = True
        engine = Engine(cfg)
        module = Module.from_file(engine, str(wasm_path))

        self.engine = engine
        self.module = module
        self.wasm_path = wasm_path
        self._start_ticker()
        self.ready = True
        return self

    def _start_ticker(self) -> None:
        """Advance the engine epoch every epoch_tick_ms until close()."""
        engine = self.engine
        interval = self.config.epoch_tick_ms / 1000

        def _tick() -> None:
            while not self._stop_ticker.wait(interval):
                engine.increment_epoch()  # type: ignore[union-attr]

        self._ticker = threading.Thread(
            target=_tick, name=f"{self.language}-epoch-ticker", daemon=True
        )
        self._ticker.start()

    def close(self) -> None:
        self._stop_ticker.set()
        if self._ticker is not None:
            self._ticker.join(timeout=1)
            self._ticker = None
        self.ready = False

    def execute(
        self,
        unit: str,
        sink: CaptureSink,
        deadline: Deadline,
        overrides: Mapping[str, Any] | None = None,
    ) -> RuntimeOutcome:
        """Execute a prepared unit in a fresh store with hard limits.

        The guest sees only a private scratch directory at guest_mount_path,
        the whitelisted environment, and its stdout/stderr redirected to the
        sink's files. The store's epoch deadline matches the job deadline so
        the guest is trapped when the time budget runs out.

        Raises:
            SandboxExecutionError: If the runtime is not initialized or the
                store cannot be configured
        """
        if not self.ready or self.engine is None or self.module is None:
            raise SandboxExecutionError(f"Runtime '{self.language}' is not initialized")

        overrides = overrides or {}
        fuel_budget = int(overrides.get("fuel_budget", self.config.fuel_budget))
        memory_bytes = int(overrides.get("memory_bytes", self.config.memory_bytes))

        scratch = tempfile.mkdtemp(prefix=f"wasm-{self.language}-")
        exit_code: int | None = None
        trap_reason: str | None = None
        trap_message: str | None = None
        fuel_consumed: int | None = None

        try:
            (Path(scratch) / self.code_filename).write_text(unit, encoding="utf-8")

            wasi = WasiConfig()
            wasi.preopen_dir(scratch, self.guest_mount_path)
            wasi.argv = tuple(self.guest_argv())
            wasi.env = [(k, v) for k, v in self.config.env.items()]
            wasi.stdout_file = str(sink.stdout_path)
            wasi.stderr_file = str(sink.stderr_path)

            store = Store(self.engine)
            store.set_wasi(wasi)
            store.set_fuel(fuel_budget)

            if not hasattr(store, "set_limits"):
                raise SandboxExecutionError(
                    "Memory limit enforcement is unavailable: wasmtime.Store.set_limits is missing"
                )
            try:
                store.set_limits(memory_size=memory_bytes)
            except Exception as e:
                raise SandboxExecutionError(
                    f"Failed to enforce memory limit of {memory_bytes} bytes"
                ) from e

            if deadline.expired:
                return RuntimeOutcome(timed_out=True, trap_reason="deadline")
            ticks = max(1, math.ceil(deadline.remaining_ms() / self.config.epoch_tick_ms))
            store.set_epoch_deadline(ticks)

            linker = Linker(self.engine)
            linker.define_wasi()

            try:
                instance = linker.instantiate(store, self.module)
                start = instance.exports(store)["_start"]
                start(store)  # type: ignore[operator]
                exit_code = 0
            except ExitTrap as trap:
                # Normal WASI proc_exit - use exit code to determine success
                exit_code = trap.code
            except (Trap, WasmtimeError) as trap:
                trap_message = str(trap)
                trap_reason = _classify_trap(trap_message, deadline)
                exit_code = 1

            try:
                fuel_consumed = fuel_budget - store.get_fuel()
            except Exception:
                fuel_consumed = None

            sink.drain(final=True)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        if trap_reason == "deadline":
            return RuntimeOutcome(
                timed_out=True,
                trap_reason=trap_reason,
                exit_code=exit_code,
                fuel_consumed=fuel_consumed,
            )

        error: str | None = None
        if trap_reason is not None:
            error = TRAP_MESSAGES.get(trap_reason, f"Execution trapped: {trap_message}")
            self.logger.log_security_event(
                "guest_trap",
                {"language": self.language, "trap_reason": trap_reason, "job_id": sink.job_id},
            )
        elif sink.exception is not None:
            error = sink.exception
        elif exit_code not in (None, 0):
            error = sink.read_stderr() or f"Guest exited with code {exit_code}"

        return RuntimeOutcome(
            error=error,
            trap_reason=trap_reason,
            exit_code=exit_code,
            fuel_consumed=fuel_consumed,
        )


def _classify_trap(message: str | None, deadline: Deadline | None = None) -> str | None:
    """Classify trap reason based on message content for easier diagnostics."""
    if message is None:
        return None

    lowered = message.lower()
    if "interrupt" in lowered or "epoch" in lowered:
        return "deadline"
    if "fuel" in lowered:
        return "out_of_fuel"
    if "memory" in lowered:
        return "memory_limit"
    if deadline is not None and deadline.expired:
        return "deadline"
    return "trap"
