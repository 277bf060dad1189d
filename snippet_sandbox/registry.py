"""Runtime registry: lazy, single-flight construction of language runtimes.

Holds one RuntimeInstance per runtime key for the life of the process. Each
key maps to a tri-state cell (uninitialized, initializing, ready). The first
caller for a key submits the initialization to a dedicated executor; every
concurrent caller awaits that same future, so a runtime image is never
loaded twice and no caller ever observes a partially-initialized instance.
A failed initialization is not cached: the cell is cleared and the next
caller starts a fresh attempt.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any

from snippet_sandbox.config import EngineConfig
from snippet_sandbox.core.base import BaseRuntime
from snippet_sandbox.core.errors import RuntimeUnavailable
from snippet_sandbox.core.logging import SandboxLogger
from snippet_sandbox.core.models import Language

RuntimeFactory = Callable[..., BaseRuntime]


class RuntimeState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class _RuntimeCell:
    """Per-key state: the in-flight future and, once ready, the instance."""

    def __init__(self) -> None:
        self.state = RuntimeState.INITIALIZING
        self.runtime: BaseRuntime | None = None
        self.future: Future[BaseRuntime] | None = None


def runtime_key(language: Language | str) -> str:
    """Map a language (or alias) to the key of the runtime that executes it.

    Unknown names are returned unchanged so custom factories can be
    registered under arbitrary keys.
    """
    if isinstance(language, Language):
        return language.runtime_key
    try:
        return Language.parse(language).runtime_key
    except ValueError:
        return language


class RuntimeRegistry:
    """Process-wide memo of initialized runtimes keyed by language.

    Attributes:
        config: EngineConfig handed to every runtime factory
        logger: SandboxLogger for lifecycle events
    """

    def __init__(
        self,
        factories: Mapping[str, RuntimeFactory] | None = None,
        config: EngineConfig | None = None,
        logger: SandboxLogger | None = None,
        max_init_workers: int = 2,
    ) -> None:
        if factories is None:
            # Import here so registries with custom factories never load wasmtime
            from snippet_sandbox.runtimes import DEFAULT_RUNTIMES
            factories = DEFAULT_RUNTIMES

        self._factories: dict[str, RuntimeFactory] = dict(factories)
        self.config = config or EngineConfig()
        self.logger = logger or SandboxLogger()
        self._cells: dict[str, _RuntimeCell] = {}
        self._init_counts: Counter[str] = Counter()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_init_workers, thread_name_prefix="runtime-init"
        )

    @property
    def languages(self) -> list[str]:
        """Runtime keys this registry can construct."""
        return sorted(self._factories)

    def initialization_count(self, language: Language | str) -> int:
        """How many initializations were started for a runtime key."""
        with self._lock:
            return self._init_counts[runtime_key(language)]

    def state(self, language: Language | str) -> RuntimeState:
        with self._lock:
            cell = self._cells.get(runtime_key(language))
            return cell.state if cell is not None else RuntimeState.UNINITIALIZED

    async def get_runtime(
        self,
        language: Language | str,
        runtime_config: Mapping[str, str] | None = None,
    ) -> BaseRuntime:
        """Return the ready runtime for ``language``, initializing it once.

        ``runtime_config["assets_path"]`` is honoured only by the call that
        triggers initialization; later calls reuse the memoized instance.

        Raises:
            RuntimeUnavailable: If no runtime is registered for the language or
                its initialization failed
        """
        key = runtime_key(language)
        with self._lock:
            cell = self._cells.get(key)
            if cell is not None and cell.state is RuntimeState.READY and cell.runtime is not None:
                return cell.runtime

            if cell is None:
                factory = self._factories.get(key)
                if factory is None:
                    raise RuntimeUnavailable(key, "no runtime registered for this language")
                assets_path = (runtime_config or {}).get("assets_path")
                cell = _RuntimeCell()
                self._cells[key] = cell
                self._init_counts[key] += 1
                cell.future = self._executor.submit(
                    self._initialize, key, factory, cell, assets_path
                )
            future = cell.future

        assert future is not None
        # Shield: a cancelled waiter must not cancel the shared initialization
        return await asyncio.shield(asyncio.wrap_future(future))

    def _initialize(
        self,
        key: str,
        factory: RuntimeFactory,
        cell: _RuntimeCell,
        assets_path: str | None,
    ) -> BaseRuntime:
        self.logger.log_runtime_event("initializing", key, assets_path=assets_path)
        started = time.perf_counter()
        try:
            runtime = factory(config=self.config, logger=self.logger, assets_path=assets_path)
            runtime.initialize()
        except Exception as e:
            with self._lock:
                if self._cells.get(key) is cell:
                    del self._cells[key]
            reason = f"{type(e).__name__}: {e}"
            self.logger.log_runtime_event("failed", key, error=reason)
            raise RuntimeUnavailable(key, reason) from e

        with self._lock:
            cell.runtime = runtime
            cell.state = RuntimeState.READY
        self.logger.log_runtime_event(
            "ready", key, duration_ms=(time.perf_counter() - started) * 1000
        )
        return runtime

    def shutdown(self) -> None:
        """Close ready runtimes and forget all cells."""
        with self._lock:
            cells = list(self._cells.values())
            self._cells.clear()
        for cell in cells:
            if cell.runtime is not None:
                cell.runtime.close()
        self._executor.shutdown(wait=False, cancel_futures=True)


_default_registry: RuntimeRegistry | None = None
_default_lock = threading.Lock()


def get_default_registry(**kwargs: Any) -> RuntimeRegistry:
    """Return the process-wide registry, creating it on first use.

    ``kwargs`` only apply to the call that creates the registry. A later call
    asking for a different ``config`` gets the existing registry and a
    warning, since its runtimes were already built with the first config.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = RuntimeRegistry(**kwargs)
            return _default_registry
        registry = _default_registry

    config = kwargs.get("config")
    if config is not None and config != registry.config:
        registry.logger._emit(
            logging.WARNING,
            "sandbox.registry.config_ignored",
            reason="default registry already exists with a different EngineConfig",
        )
    return registry
