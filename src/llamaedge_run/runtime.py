"""Installing and probing the WasmEdge runtime."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

import requests
import structlog

from llamaedge_run.config import WASI_NN_PLUGIN, WASMEDGE_INSTALL_URL, WASMEDGE_UNINSTALL_URL
from llamaedge_run.download import fetch_text
from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)

WASMEDGE_HOME = Path.home() / ".wasmedge"
PLUGIN_GLOB = "libwasmedgePluginWasiNN.*"
UNINSTALL_COMMAND = f"bash <(curl -sSf {WASMEDGE_UNINSTALL_URL}) -q"


def find_wasmedge() -> Optional[str]:
    """Path of the wasmedge binary on PATH, if any."""
    return shutil.which("wasmedge")


def _run_script(url: str, args: List[str], session: requests.Session) -> None:
    """Fetch a shell script and run it through ``bash -s`` with ``args``."""
    script = fetch_text(url, session)
    log.debug(f"Running {url} with {args}")
    result = subprocess.run(["bash", "-s", "--", *args], input=script, text=True)
    if result.returncode != 0:
        raise SetupError(f"{url} exited with status {result.returncode}")


def activate_wasmedge_env(home: Path = WASMEDGE_HOME) -> None:
    """Make a fresh install visible to this process, as ``source $HOME/.wasmedge/env`` would."""
    bin_dir = str(home / "bin")
    lib_dir = str(home / "lib")

    path = os.environ.get("PATH", "")
    if bin_dir not in path.split(os.pathsep):
        os.environ["PATH"] = os.pathsep.join([bin_dir, path]) if path else bin_dir

    for var in ("LD_LIBRARY_PATH", "DYLD_LIBRARY_PATH"):
        current = os.environ.get(var, "")
        if lib_dir not in current.split(os.pathsep):
            os.environ[var] = os.pathsep.join([lib_dir, current]) if current else lib_dir


def install_wasmedge(session: requests.Session) -> str:
    """Reinstall the latest WasmEdge with the GGML backend plugin.

    Returns:
        Path of the installed wasmedge binary

    Raises:
        SetupError: If either upstream script fails
    """
    try:
        _run_script(WASMEDGE_UNINSTALL_URL, ["-q"], session)
    except SetupError as e:
        raise SetupError(f"Failed to uninstall WasmEdge: {e}") from e

    try:
        _run_script(WASMEDGE_INSTALL_URL, ["--plugins", WASI_NN_PLUGIN], session)
    except SetupError as e:
        raise SetupError(f"Failed to install WasmEdge: {e}") from e

    activate_wasmedge_env()
    wasmedge = find_wasmedge()
    if wasmedge is None:
        raise SetupError(f"WasmEdge was installed but no wasmedge binary was found in {WASMEDGE_HOME / 'bin'}")
    log.info(f"WasmEdge installed at {wasmedge}")
    return wasmedge


def plugin_dir(wasmedge: str) -> Path:
    """Plugin directory belonging to a wasmedge binary (``<root>/bin/wasmedge``)."""
    return Path(wasmedge).parent.parent / "plugin"


def has_ggml_plugin(wasmedge: str) -> bool:
    """Whether the wasi-nn GGML plugin sits next to the given binary."""
    directory = plugin_dir(wasmedge)
    return any(path.is_file() for path in directory.glob(PLUGIN_GLOB))


def wasm_version(wasmedge: str, wasm_file: Path) -> Optional[str]:
    """Version reported by ``wasmedge <wasm_file> -V``, or None."""
    wasm_file = Path(wasm_file)
    if not wasm_file.is_file():
        return None

    try:
        result = subprocess.run(
            [wasmedge, str(wasm_file), "-V"],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning(f"Could not read version of {wasm_file}: {e}")
        return None

    parts = result.stdout.split()
    if result.returncode != 0 or len(parts) < 2:
        log.debug(f"Unexpected version output from {wasm_file}: {result.stdout!r}")
        return None
    return parts[1]
