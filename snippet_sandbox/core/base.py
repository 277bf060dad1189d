"""Abstract base class for language runtime implementations.

Provides BaseRuntime ABC that defines the contract for every language the
execution host can dispatch to (Python, JavaScript, ...). A runtime is
initialized once per process by the registry and then executes many jobs,
each with its own output sink and deadline.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from snippet_sandbox.capture import CaptureSink
    from snippet_sandbox.config import EngineConfig
    from snippet_sandbox.core.logging import SandboxLogger


class Deadline:
    """Monotonic point in time after which a job must stop."""

    def __init__(self, timeout_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout_ms = timeout_ms
        self._clock = clock
        self.started_at = clock()
        self.expires_at = self.started_at + timeout_ms / 1000

    def remaining_ms(self) -> float:
        return max(0.0, (self.expires_at - self._clock()) * 1000)

    @property
    def expired(self) -> bool:
        return self._clock() >= self.expires_at


@dataclass
class RuntimeOutcome:
    """Raw outcome of one guest execution.

    Attributes:
        error: Guest exception message (None when the code completed)
        timed_out: True when the guest was interrupted on its deadline
        trap_reason: Classified trap (deadline, out_of_fuel, memory_limit, trap)
        exit_code: Guest process exit code when known
        fuel_consumed: WASM instructions executed (None if not tracked)
    """

    error: str | None = None
    timed_out: bool = False
    trap_reason: str | None = None
    exit_code: int | None = None
    fuel_consumed: int | None = None

    @property
    def completed(self) -> bool:
        return self.error is None and not self.timed_out


class BaseRuntime(ABC):
    """Abstract base class for language runtimes.

    Subclasses implement ``initialize()`` (load the runtime image, called
    exactly once by the registry) and ``execute()`` (run one prepared unit
    against an explicit output sink and deadline). ``prepare()`` prepends the
    language's output-redirection preamble.

    Attributes:
        language: Registry key of this runtime
        config: EngineConfig with limits and asset locations
        assets_path: Asset base path honoured at initialization
        logger: SandboxLogger for structured events
    """

    language: ClassVar[str] = ""

    def __init__(
        self,
        config: EngineConfig | None = None,
        logger: SandboxLogger | None = None,
        assets_path: str | None = None,
    ) -> None:
        if config is None:
            from snippet_sandbox.config import EngineConfig
            config = EngineConfig()
        if logger is None:
            # Import here to avoid circular dependency
            from snippet_sandbox.core.logging import SandboxLogger
            logger = SandboxLogger()

        self.config = config
        self.logger = logger
        self.assets_path = assets_path or config.assets_path
        self.ready = False

    @abstractmethod
    def initialize(self) -> BaseRuntime:
        """Load the runtime image. Raises on failure; returns self when ready."""
        pass

    def prepare(self, code: str) -> str:
        """Build the executable unit for ``code`` (no preamble by default)."""
        return code

    @abstractmethod
    def execute(
        self,
        unit: str,
        sink: CaptureSink,
        deadline: Deadline,
        overrides: Mapping[str, Any] | None = None,
    ) -> RuntimeOutcome:
        """Run a prepared unit, writing all output into ``sink``.

        Guest errors are reported through the returned RuntimeOutcome, never
        raised. Exceptions escaping this method indicate a host failure.
        """
        pass

    def close(self) -> None:
        """Release background resources held by the runtime."""
        self.ready = False
