"""Runtime implementations for different programming languages.

Each subdirectory contains the runtime for a specific language (Python,
JavaScript) built on the shared WASM host layer in ``wasm.py``.
"""

from __future__ import annotations

from .javascript import JavaScriptRuntime
from .python import PythonRuntime

DEFAULT_RUNTIMES = {
    PythonRuntime.language: PythonRuntime,
    JavaScriptRuntime.language: JavaScriptRuntime,
}

__all__ = ["DEFAULT_RUNTIMES", "JavaScriptRuntime", "PythonRuntime"]
