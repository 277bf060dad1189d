"""Guest-side output redirection preambles.

Each runtime prepends one of these to the submitted code. The preamble
replaces the guest's print/log entry points with emitters that write
line-framed JSON records to the real stdout, which the capture channel
parses on the host. The submitted code is embedded as a string literal and
executed inside a try block so its terminating exception is reported as an
``{"exception": message}`` record instead of a raw traceback.
"""

from __future__ import annotations

import json

from snippet_sandbox.capture import RECORD_EXCEPTION, RECORD_LOG, UNPRINTABLE

PYTHON_PREAMBLE = f'''\
import builtins as _builtins
import json as _json
import sys as _sys

_out = _sys.__stdout__
_original_print = _builtins.print


def _emit(kind, text):
    _out.write(_json.dumps({{kind: text}}) + "\\n")
    _out.flush()


def _format(args, sep):
    try:
        return (" " if sep is None else str(sep)).join(str(arg) for arg in args)
    except Exception:
        return "{UNPRINTABLE}"


def _print(*args, sep=" ", end="\\n", file=None, flush=False):
    if file is not None and file is not _sys.stdout and file is not _sys.stderr:
        return _original_print(*args, sep=sep, end=end, file=file, flush=flush)
    _emit("{RECORD_LOG}", _format(args, sep))


class _Capture:
    def write(self, s):
        if s and s.strip():
            _emit("{RECORD_LOG}", s.rstrip("\\n"))
        return len(s)

    def flush(self):
        pass

    def isatty(self):
        return False


_builtins.print = _print
_sys.stdout = _Capture()
_sys.stderr = _Capture()
'''

PYTHON_RUNNER = f'''
_namespace = {{"__name__": "__main__", "__builtins__": _builtins}}
try:
    exec(compile(_SOURCE, "<snippet>", "exec"), _namespace)
except SystemExit as _exit:
    if _exit.code not in (None, 0):
        _emit("{RECORD_EXCEPTION}", "SystemExit: " + str(_exit.code))
        _sys.exit(1)
except BaseException as _error:
    _emit("{RECORD_EXCEPTION}", str(_error) or type(_error).__name__)
    _sys.exit(1)
'''

JAVASCRIPT_PREAMBLE = f'''\
const __emit = (kind, text) => {{
  std.out.puts(JSON.stringify({{ [kind]: text }}) + "\\n");
  std.out.flush();
}};
const __format = (prefix, args) => {{
  try {{
    return prefix + args.map(String).join(" ");
  }} catch (e) {{
    return prefix + "{UNPRINTABLE}";
  }}
}};
const __console = Object.freeze({{
  log: (...args) => __emit("{RECORD_LOG}", __format("", args)),
  debug: (...args) => __emit("{RECORD_LOG}", __format("", args)),
  info: (...args) => __emit("{RECORD_LOG}", __format("[info] ", args)),
  warn: (...args) => __emit("{RECORD_LOG}", __format("[warn] ", args)),
  error: (...args) => __emit("{RECORD_LOG}", __format("[error] ", args)),
}});
globalThis.console = __console;
globalThis.print = __console.log;
'''

JAVASCRIPT_RUNNER = f'''
try {{
  new Function("'use strict';\\n" + __source)();
}} catch (e) {{
  let message;
  try {{
    message = e !== null && typeof e === "object" && "message" in e ? String(e.message) : String(e);
  }} catch (_) {{
    message = "{UNPRINTABLE}";
  }}
  __emit("{RECORD_EXCEPTION}", message || "Unknown error");
  std.exit(1);
}}
'''


def wrap_python(code: str) -> str:
    """Build the Python executable unit for ``code``."""
    return PYTHON_PREAMBLE + f"\n_SOURCE = {code!r}\n" + PYTHON_RUNNER


def wrap_javascript(code: str) -> str:
    """Build the JavaScript executable unit for ``code``."""
    return JAVASCRIPT_PREAMBLE + f"\nconst __source = {json.dumps(code)};\n" + JAVASCRIPT_RUNNER
