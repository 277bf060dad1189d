"""Runtime asset path resolution for bundled WASM runtimes.

Locates the WASM binaries that back each language runtime, honouring a
configurable asset base path first and falling back to the bundled and
project-relative locations used in development.
"""

from __future__ import annotations

from pathlib import Path

PYTHON_BINARY = "python.wasm"
QUICKJS_BINARY = "quickjs.wasm"


def get_bundled_binary_path(binary_name: str, assets_path: str | Path | None = None) -> Path:
    """Get path to a WASM binary, searching the configured base path first.

    Searches in the following order:
    1. The configured asset base path (runtime config or engine config)
    2. In package installation directory (bin/ next to the package)
    3. In current working directory's bin/
    4. In site-packages bin/ when installed as a wheel

    Args:
        binary_name: Name of WASM binary file (e.g., "python.wasm", "quickjs.wasm")
        assets_path: Optional base directory containing the binary

    Returns:
        Path to WASM binary file

    Raises:
        FileNotFoundError: If binary cannot be found in any search location
    """
    search_locations: list[Path] = []

    if assets_path is not None:
        configured = Path(assets_path) / binary_name
        if configured.is_file():
            return configured.resolve()
        search_locations.append(configured)

    package_dir = Path(__file__).parent.parent  # snippet_sandbox/ -> project root
    bundled_path = package_dir / "bin" / binary_name
    if bundled_path.is_file():
        return bundled_path
    search_locations.append(bundled_path)

    cwd_bin = Path.cwd() / "bin" / binary_name
    if cwd_bin.is_file():
        return cwd_bin
    search_locations.append(cwd_bin)

    if "site-packages" in str(Path(__file__)):
        site_bin = Path(__file__).parent.parent.parent / "bin" / binary_name
        if site_bin.is_file():
            return site_bin
        search_locations.append(site_bin)

    raise FileNotFoundError(
        f"WASM binary '{binary_name}' not found. Searched locations:\n"
        + "\n".join(f"  - {loc}" for loc in search_locations)
    )
