"""Assembling and launching the final wasmedge command."""

import shlex
import subprocess
from typing import List

import structlog

from llamaedge_run.config import (
    DEFAULT_CTX_SIZE,
    DEFAULT_N_GPU_LAYERS,
    DEFAULT_N_PREDICT,
    LaunchConfig,
    RunningMode,
)
from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)


def model_name_from_weights(weights_file: str) -> str:
    """Model name served by the API server: the file name up to its last ``-Q`` tag.

    >>> model_name_from_weights("Llama-2-7b-chat-hf-Q5_K_M.gguf")
    'Llama-2-7b-chat-hf'
    """
    head, sep, _ = weights_file.rpartition("-Q")
    return head if sep else weights_file


def build_command(config: LaunchConfig) -> List[str]:
    """Build the argv for running the selected LlamaEdge app."""
    cmd = [
        config.wasmedge,
        "--dir", ".:.",
        "--nn-preload", f"default:GGML:AUTO:{config.weights_file}",
        config.wasm_file,
        "-p", config.prompt.prompt_type,
    ]

    if config.mode is RunningMode.API_SERVER:
        cmd.extend(["-m", model_name_from_weights(config.weights_file)])
        cmd.extend(["--socket-addr", f"127.0.0.1:{config.port}"])

    if config.prompt.reverse_prompt:
        cmd.extend(["-r", config.prompt.reverse_prompt])

    # Only pass values that differ from the app's own defaults
    if config.ctx_size != DEFAULT_CTX_SIZE:
        cmd.extend(["--ctx-size", str(config.ctx_size)])
    if config.n_gpu_layers != DEFAULT_N_GPU_LAYERS:
        cmd.extend(["--n-gpu-layers", str(config.n_gpu_layers)])
    if config.n_predict != DEFAULT_N_PREDICT:
        cmd.extend(["--n-predict", str(config.n_predict)])

    if config.log_prompts:
        cmd.append("--log-prompts")
    if config.log_stat:
        cmd.append("--log-stat")

    return cmd


def format_command(cmd: List[str]) -> str:
    """Shell-quoted form of ``cmd`` for display."""
    return " ".join(shlex.quote(arg) for arg in cmd)


def launch(config: LaunchConfig) -> int:
    """Run the app in the working directory, attached to this terminal.

    Returns:
        The exit status of the app
    """
    cmd = build_command(config)
    log.info(f"Launching: {format_command(cmd)}")
    try:
        result = subprocess.run(cmd, cwd=config.work_dir)
    except OSError as e:
        raise SetupError(f"Failed to launch {cmd[0]}: {e}") from e
    return result.returncode
