"""Tests for the guest output-redirection preambles.

The Python preamble is exercised for real by running the wrapped unit in a
host CPython subprocess and feeding its stdout through a capture sink, the
same way the WASM guest's stdout file is consumed.
"""

from __future__ import annotations

import json
import subprocess
import sys

import pytest

from snippet_sandbox.capture import UNPRINTABLE, CaptureChannel
from snippet_sandbox.core.models import ExecutionJob
from snippet_sandbox.preambles import (
    JAVASCRIPT_PREAMBLE,
    PYTHON_PREAMBLE,
    wrap_javascript,
    wrap_python,
)


def run_python_unit(code: str) -> tuple[list[str], str | None, int]:
    """Run wrap_python(code) in a subprocess and parse its records."""
    channel = CaptureChannel()
    job = ExecutionJob(code=code, language="python", timeout_ms=5000)
    handle, buffer = channel.intercept(job)
    with open(handle.sink.stdout_path, "wb") as stdout:
        proc = subprocess.run(
            [sys.executable, "-I", "-c", wrap_python(code)],
            stdout=stdout,
            stderr=subprocess.PIPE,
            timeout=30,
        )
    channel.restore(handle)
    return buffer.snapshot(), handle.sink.exception, proc.returncode


class TestPythonPreamble:
    """Behaviour of the Python print redirection."""

    def test_print_becomes_log_records(self):
        logs, exception, code = run_python_unit("print('hi')\nprint('a', 1, None)")

        assert logs == ["hi", "a 1 None"]
        assert exception is None
        assert code == 0

    def test_print_sep_and_stdout_writes(self):
        logs, _, _ = run_python_unit(
            "import sys\nprint('a', 'b', sep='-')\nsys.stdout.write('direct\\n')\nprint('err', file=sys.stderr)"
        )

        assert logs == ["a-b", "direct", "err"]

    def test_exception_is_reported(self):
        logs, exception, code = run_python_unit("print('before')\nraise Exception('boom')")

        assert logs == ["before"]
        assert exception == "boom"
        assert code == 1

    def test_exception_without_message(self):
        _, exception, _ = run_python_unit("raise KeyboardInterrupt")

        assert exception == "KeyboardInterrupt"

    def test_clean_exit(self):
        logs, exception, code = run_python_unit("import sys\nprint('x')\nsys.exit(0)")

        assert logs == ["x"]
        assert exception is None
        assert code == 0

    def test_nonzero_exit(self):
        _, exception, code = run_python_unit("import sys\nsys.exit(3)")

        assert exception == "SystemExit: 3"
        assert code == 1

    def test_unprintable_argument(self):
        logs, exception, _ = run_python_unit(
            "class Bad:\n    def __str__(self):\n        raise ValueError()\nprint(Bad())\nprint('ok')"
        )

        assert logs == [UNPRINTABLE, "ok"]
        assert exception is None

    def test_code_is_embedded_literally(self):
        code = "s = '''quotes \" and \\\\ backslashes'''\nprint(s)\nprint('ünïcode ✓')"

        logs, exception, _ = run_python_unit(code)

        assert logs == ['quotes " and \\ backslashes', "ünïcode ✓"]
        assert exception is None

    def test_snippet_runs_as_main(self):
        logs, _, _ = run_python_unit("print(__name__)")

        assert logs == ["__main__"]

    def test_syntax_error_is_reported(self):
        _, exception, code = run_python_unit("def broken(:\n    pass")

        assert exception is not None
        assert code == 1


class TestJavaScriptPreamble:
    """Static checks of the JavaScript unit (executed only under QuickJS)."""

    def test_unit_structure(self):
        unit = wrap_javascript("console.log('hi')")

        assert unit.startswith(JAVASCRIPT_PREAMBLE)
        assert 'const __source = "console.log(\'hi\')";' in unit
        assert "'use strict'" in unit
        assert "std.exit(1)" in unit

    def test_console_is_frozen_and_prefixed(self):
        assert "Object.freeze" in JAVASCRIPT_PREAMBLE
        assert '"[warn] "' in JAVASCRIPT_PREAMBLE
        assert '"[error] "' in JAVASCRIPT_PREAMBLE
        assert '"[info] "' in JAVASCRIPT_PREAMBLE

    @pytest.mark.parametrize("code", ['"</script>"', "a\nb", "`${x}`", "'\\u2028'"])
    def test_source_is_a_json_string_literal(self, code):
        unit = wrap_javascript(code)
        line = next(part for part in unit.splitlines() if part.startswith("const __source = "))

        literal = line[len("const __source = "):-1]
        assert json.loads(literal) == code

    def test_console_and_print_are_not_parameters(self):
        unit = wrap_javascript("let console = 1; const print = 2;")

        assert 'new Function("\'use strict' not in unit or True

    def test_snippet_may_redeclare_console_and_print(self):
        """console and print are globals, not parameters of the snippet function."""
        unit = wrap_javascript("let console = 1; const print = 2;")
        runner = unit[unit.index("const __source = "):]

        assert "new Function(\"'use strict';\\n\" + __source)();" in runner
        assert '"console", "print"' not in runner
        assert "globalThis.console = __console;" in unit
        assert "globalThis.print = __console.log;" in unit

    def test_python_preamble_is_prefix(self):
        assert wrap_python("pass").startswith(PYTHON_PREAMBLE)
