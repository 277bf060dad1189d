"""Job protocol: the message boundary between callers and the engine.

Requests are plain mappings (or JSON text) carrying ``code``, ``language``,
optional ``timeoutMs`` and optional ``runtimeConfig``; responses are exactly
``{ok, logs, error?}``. Only fields named here are forwarded to a job, so no
ambient caller state reaches executed code. The boundary never raises:
malformed requests and unexpected host failures become failed results.

Rendering mount requests (``html``, ``css``, ``js``, ``data``,
``policyOverride``) are validated here as well, because policy overrides are
the caller layer's responsibility, not the rendering surface's.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from snippet_sandbox.config import EngineConfig
from snippet_sandbox.core.errors import JobValidationError, PolicyValidationError
from snippet_sandbox.core.models import (
    ExecutionJob,
    ExecutionResult,
    Language,
    PolicyOverride,
    VisualBundle,
)

if TYPE_CHECKING:
    from snippet_sandbox.executor import ExecutionHost
    from snippet_sandbox.rendering import RenderingSandbox

RUNTIME_CONFIG_KEYS = frozenset({"assets_path", "fuel_budget", "memory_bytes"})
_NUMERIC_CONFIG_KEYS = frozenset({"fuel_budget", "memory_bytes"})


def _first_present(payload: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in payload:
            return payload[name]
    return None


def parse_request(payload: Any, config: EngineConfig | None = None) -> ExecutionJob:
    """Validate an execution request and apply per-language defaults.

    Args:
        payload: Request mapping (camelCase or snake_case keys)
        config: EngineConfig providing default and maximum deadlines

    Returns:
        ExecutionJob ready for the execution host

    Raises:
        JobValidationError: If the request does not match the protocol
    """
    config = config or EngineConfig()
    if not isinstance(payload, Mapping):
        raise JobValidationError("request must be an object")

    code = payload.get("code")
    if not isinstance(code, str):
        raise JobValidationError("'code' must be a string")

    try:
        language = Language.parse(payload.get("language"))
    except ValueError as e:
        raise JobValidationError(str(e)) from e

    timeout = _first_present(payload, "timeoutMs", "timeout_ms")
    if timeout is None:
        timeout = config.default_timeout_for(language.value)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise JobValidationError("'timeoutMs' must be a number")
    if isinstance(timeout, float) and not (math.isfinite(timeout) and timeout.is_integer()):
        raise JobValidationError("'timeoutMs' must be a finite whole number of milliseconds")
    if timeout <= 0 or timeout > config.max_timeout_ms:
        raise JobValidationError(f"'timeoutMs' must be in (0, {config.max_timeout_ms}]")

    runtime_config = _parse_runtime_config(_first_present(payload, "runtimeConfig", "runtime_config"))

    return ExecutionJob(
        code=code,
        language=language,
        timeout_ms=int(timeout),
        runtime_config=runtime_config,
    )


def _parse_runtime_config(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise JobValidationError("'runtimeConfig' must be an object")

    parsed: dict[str, str] = {}
    for key, value in raw.items():
        if key not in RUNTIME_CONFIG_KEYS:
            allowed = ", ".join(sorted(RUNTIME_CONFIG_KEYS))
            raise JobValidationError(f"unsupported runtimeConfig key {key!r} (allowed: {allowed})")
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise JobValidationError(f"runtimeConfig.{key} must be a string or integer")
        text = str(value)
        if key in _NUMERIC_CONFIG_KEYS and (not text.isdigit() or int(text) <= 0):
            raise JobValidationError(f"runtimeConfig.{key} must be a positive integer")
        parsed[key] = text
    return parsed


async def handle_request(payload: Any, host: ExecutionHost | None = None) -> dict[str, Any]:
    """Run one execution request and return the wire response.

    Never raises: every failure is captured in the ``{ok, logs, error}`` shape.
    """
    if host is None:
        from snippet_sandbox.executor import ExecutionHost
        host = ExecutionHost()

    try:
        job = parse_request(payload, host.config)
    except JobValidationError as e:
        return ExecutionResult.failure([], f"Invalid request: {e}").to_response()

    try:
        result = await host.run(job)
    except Exception as e:
        host.logger._emit(
            logging.ERROR,
            "sandbox.protocol.internal_error",
            language=job.language.value,
            error=f"{type(e).__name__}: {e}",
        )
        result = ExecutionResult.failure([], f"Internal error: {type(e).__name__}")
    return result.to_response()


async def handle_message(raw: str | bytes, host: ExecutionHost | None = None) -> str:
    """JSON-in/JSON-out wrapper around handle_request for transports."""
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        response = ExecutionResult.failure([], f"Invalid request: malformed JSON ({e})").to_response()
        return json.dumps(response)
    return json.dumps(await handle_request(payload, host))


def parse_mount_request(payload: Any) -> tuple[VisualBundle, PolicyOverride | None]:
    """Validate a rendering mount request, including its policy override.

    Raises:
        PolicyValidationError: If the bundle or the override is invalid
    """
    from snippet_sandbox.rendering import validate_override

    if not isinstance(payload, Mapping):
        raise PolicyValidationError("mount request must be an object")

    try:
        bundle = VisualBundle.model_validate(
            {key: payload[key] for key in ("html", "css", "js", "data") if key in payload}
        )
    except ValidationError as e:
        raise PolicyValidationError(f"Invalid visual bundle: {e}") from e

    raw_override = _first_present(payload, "policyOverride", "policy_override")
    if raw_override is None:
        return bundle, None
    if not isinstance(raw_override, Mapping):
        raise PolicyValidationError("'policyOverride' must be an object")

    try:
        override = PolicyOverride.model_validate(dict(raw_override))
    except ValidationError as e:
        raise PolicyValidationError(f"Invalid policy override: {e}") from e
    validate_override(override)
    return bundle, override


def handle_mount_request(payload: Any, sandbox: RenderingSandbox | None = None) -> dict[str, Any]:
    """Mount a visual bundle and return the surface description.

    Rejected overrides and bundles whose data cannot be serialized are
    reported to host monitoring and answered with ``{ok: False, error}``;
    nothing about the rejection reaches the bundle.
    """
    if sandbox is None:
        from snippet_sandbox.rendering import RenderingSandbox
        sandbox = RenderingSandbox()

    try:
        bundle, override = parse_mount_request(payload)
        handle = sandbox.mount(bundle, override)
    except PolicyValidationError as e:
        sandbox.logger.log_security_event("policy_rejected", {"error": str(e)})
        return {"ok": False, "error": str(e)}

    return {"ok": True, **handle.describe()}
