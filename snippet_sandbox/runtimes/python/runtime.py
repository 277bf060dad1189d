"""PythonRuntime: CPython WASM guest with print redirection."""

from __future__ import annotations

from snippet_sandbox.preambles import wrap_python
from snippet_sandbox.runtime_paths import PYTHON_BINARY
from snippet_sandbox.runtimes.wasm import WasmRuntime


class PythonRuntime(WasmRuntime):
    """Executes Python snippets in CPython compiled to WASI.

    The unit written to ``/app/user_code.py`` is the print-redirection
    preamble followed by the submitted code embedded as a string literal,
    so ``print`` calls and writes to ``sys.stdout``/``sys.stderr`` become
    capture records and an uncaught exception becomes the job error.

    Example:
        Through the execution host::

            host = ExecutionHost()
            result = await host.run(ExecutionJob(code="print('hi')", language="python", timeout_ms=3000))
            result.logs  # ["hi"]
    """

    language = "python"
    binary_name = PYTHON_BINARY
    code_filename = "user_code.py"

    def guest_argv(self) -> list[str]:
        # "-I" isolates from user site-packages for predictability
        return ["python", "-I", "-X", "utf8", f"{self.guest_mount_path}/{self.code_filename}"]

    def prepare(self, code: str) -> str:
        return wrap_python(code)
