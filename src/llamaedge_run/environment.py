"""Host checks: required tools and the GPU backend."""

import platform
import shutil
from typing import Dict, Iterable, List

import structlog

from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)

# bash runs the upstream WasmEdge installer scripts
REQUIRED_TOOLS: List[str] = ["bash"]

INSTALL_HINTS: Dict[str, List[str]] = {
    "bash": [
        "For macOS, please install it with 'brew install bash'",
        "For Debian/Ubuntu, please install it with 'sudo apt install bash'",
    ],
}


def check_prerequisites(tools: Iterable[str] = REQUIRED_TOOLS) -> None:
    """Make sure every tool in ``tools`` is on PATH.

    Raises:
        SetupError: naming the first missing tool, with install hints if known
    """
    for tool in tools:
        if shutil.which(tool) is None:
            message = f"{tool} not found"
            hints = INSTALL_HINTS.get(tool)
            if hints:
                message += "\n" + "\n".join(f"  - {hint}" for hint in hints)
            raise SetupError(message)
        log.debug(f"Found required tool: {tool}")


def detect_backend() -> str:
    """Guess which GGML backend WasmEdge will use on this machine."""
    if platform.system() == "Darwin":
        return "metal"
    if shutil.which("nvcc") is not None:
        return "cuda"
    return "cpu"
