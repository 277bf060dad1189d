"""JavaScript runtime using QuickJS compiled to WASM.

Provides JavaScriptRuntime, which executes untrusted JavaScript (and
JS-compatible TypeScript) snippets with console.* redirected into the job's
capture sink.
"""

from .runtime import JavaScriptRuntime

__all__ = ["JavaScriptRuntime"]
