"""Python runtime using CPython compiled to WASM.

Provides PythonRuntime, which executes untrusted Python snippets with
print/stdout redirected into the job's capture sink.
"""

from .runtime import PythonRuntime

__all__ = ["PythonRuntime"]
