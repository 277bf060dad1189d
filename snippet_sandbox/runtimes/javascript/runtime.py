"""JavaScriptRuntime: QuickJS WASM guest with console redirection."""

from __future__ import annotations

from snippet_sandbox.preambles import wrap_javascript
from snippet_sandbox.runtime_paths import QUICKJS_BINARY
from snippet_sandbox.runtimes.wasm import WasmRuntime


class JavaScriptRuntime(WasmRuntime):
    """Executes JavaScript snippets in QuickJS compiled to WASI.

    The submitted code runs in strict mode inside ``new Function`` with a
    frozen ``console`` whose methods emit capture records; ``console.error``,
    ``console.warn`` and ``console.info`` lines carry an ``[error]``,
    ``[warn]`` or ``[info]`` prefix. TypeScript jobs run here unchanged, so
    they must be JS-compatible.
    """

    language = "javascript"
    binary_name = QUICKJS_BINARY
    code_filename = "user_code.js"

    def guest_argv(self) -> list[str]:
        # --std: expose std/os as globals, the preamble writes records through std.out
        return ["qjs", "--std", f"{self.guest_mount_path}/{self.code_filename}"]

    def prepare(self, code: str) -> str:
        return wrap_javascript(code)
