"""Constants, defaults and the per-run launch configuration."""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

# Defaults for the LlamaEdge apps; flags are only passed when a value differs
DEFAULT_PORT = 8080
DEFAULT_CTX_SIZE = 512
DEFAULT_N_PREDICT = 1024
DEFAULT_N_GPU_LAYERS = 100

# Quantization tags, in the order they are matched against file names
WEIGHT_TYPES: List[str] = [
    "Q2_K",
    "Q3_K_L",
    "Q3_K_M",
    "Q3_K_S",
    "Q4_0",
    "Q4_K_M",
    "Q4_K_S",
    "Q5_0",
    "Q5_K_M",
    "Q5_K_S",
    "Q6_K",
    "Q8_0",
]

HF_BASE_URL = "https://huggingface.co"
SECOND_STATE_URL = f"{HF_BASE_URL}/second-state"

SAMPLE_REPOS: List[str] = [
    f"{SECOND_STATE_URL}/Llama-2-7B-Chat-GGUF",
    f"{SECOND_STATE_URL}/Mistral-7B-Instruct-v0.2-GGUF",
    f"{SECOND_STATE_URL}/dolphin-2.6-mistral-7B-GGUF",
    f"{SECOND_STATE_URL}/Orca-2-13B-GGUF",
    f"{SECOND_STATE_URL}/TinyLlama-1.1B-Chat-v1.0-GGUF",
    f"{SECOND_STATE_URL}/OpenChat-3.5-0106-GGUF",
    f"{SECOND_STATE_URL}/SOLAR-10.7B-Instruct-v1.0-GGUF",
    f"{SECOND_STATE_URL}/OpenHermes-2.5-Mistral-7B-GGUF",
]

PROMPT_TYPES: List[str] = [
    "llama-2-chat",
    "chatml",
    "openchat",
    "zephyr",
    "codellama-instruct",
    "mistral-instruct",
    "mistrallite",
    "vicuna-chat",
    "vicuna-1.1-chat",
    "wizard-coder",
    "intel-neural",
    "deepseek-chat",
    "deepseek-coder",
    "solar-instruct",
    "belle-llama-2-chat",
]

# Upstream locations
MODEL_SEARCH_URL = f"{HF_BASE_URL}/models?sort=trending&search=gguf"
PROMPT_TYPES_DOC_URL = "https://github.com/second-state/LlamaEdge/raw/main/api-server/chat-prompts/README.md"
WASMEDGE_INSTALL_URL = "https://raw.githubusercontent.com/WasmEdge/WasmEdge/master/utils/install.sh"
WASMEDGE_UNINSTALL_URL = "https://raw.githubusercontent.com/WasmEdge/WasmEdge/master/utils/uninstall.sh"
WASMEDGE_RELEASES_URL = "https://github.com/WasmEdge/WasmEdge/releases/"
WASI_NN_PLUGIN = "wasi_nn-ggml"
LLAMAEDGE_REPO = "second-state/LlamaEdge"
LLAMAEDGE_RELEASES_API = f"https://api.github.com/repos/{LLAMAEDGE_REPO}/releases"
CHATBOT_UI_DIR = "chatbot-ui"
CHATBOT_UI_URL = "https://github.com/second-state/chatbot-ui/releases/latest/download/chatbot-ui.tar.gz"


class RunningMode(Enum):
    """How the downloaded model is served."""
    API_SERVER = 1
    CLI_CHATBOT = 2

    @property
    def label(self) -> str:
        return {
            RunningMode.API_SERVER: "API Server",
            RunningMode.CLI_CHATBOT: "CLI ChatBot",
        }[self]

    @property
    def wasm_file(self) -> str:
        return {
            RunningMode.API_SERVER: "llama-api-server.wasm",
            RunningMode.CLI_CHATBOT: "llama-chat.wasm",
        }[self]


class LogOption(Enum):
    """Logging switches passed to the LlamaEdge app."""
    PROMPTS = 1
    STATISTICS = 2
    ALL = 3
    DISABLED = 4

    @property
    def label(self) -> str:
        return {
            LogOption.PROMPTS: "Show prompts",
            LogOption.STATISTICS: "Show execution statistics",
            LogOption.ALL: "Show all",
            LogOption.DISABLED: "Disable log",
        }[self]

    @property
    def log_prompts(self) -> bool:
        return self in (LogOption.PROMPTS, LogOption.ALL)

    @property
    def log_stat(self) -> bool:
        return self in (LogOption.STATISTICS, LogOption.ALL)


@dataclass
class PromptSettings:
    """Chat template settings for the model."""
    prompt_type: str
    reverse_prompt: Optional[str] = None


@dataclass
class LaunchConfig:
    """Everything needed to assemble the final command line."""
    weights_file: str
    mode: RunningMode
    prompt: PromptSettings
    wasmedge: str = "wasmedge"  # Binary name or absolute path
    port: int = DEFAULT_PORT
    ctx_size: int = DEFAULT_CTX_SIZE
    n_predict: int = DEFAULT_N_PREDICT
    n_gpu_layers: int = DEFAULT_N_GPU_LAYERS
    log_prompts: bool = False
    log_stat: bool = False
    work_dir: Path = Path(".")

    @property
    def wasm_file(self) -> str:
        return self.mode.wasm_file
