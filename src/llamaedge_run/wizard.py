"""Interactive setup wizard.

Walks the user through choosing a model, fetching its weights, installing
WasmEdge and the LlamaEdge app, and picking runtime options. The result is
a :class:`~llamaedge_run.config.LaunchConfig` ready to be launched.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence

import requests
import structlog
from huggingface_hub import HfApi
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt, Prompt

from llamaedge_run.config import (
    CHATBOT_UI_DIR,
    CHATBOT_UI_URL,
    DEFAULT_CTX_SIZE,
    DEFAULT_N_GPU_LAYERS,
    DEFAULT_N_PREDICT,
    DEFAULT_PORT,
    MODEL_SEARCH_URL,
    PROMPT_TYPES,
    PROMPT_TYPES_DOC_URL,
    SAMPLE_REPOS,
    SECOND_STATE_URL,
    WASMEDGE_RELEASES_URL,
    LaunchConfig,
    LogOption,
    PromptSettings,
    RunningMode,
)
from llamaedge_run.download import (
    download_file,
    extract_tarball,
    make_session,
    mark_complete,
    needs_download,
)
from llamaedge_run.errors import SetupError
from llamaedge_run.hub import (
    WeightChoice,
    build_weight_menu,
    fetch_readme,
    format_size,
    is_second_state,
    list_gguf_files,
    parse_prompt_settings,
    parse_repo_choice,
    repo_id_from_url,
    weights_url,
)
from llamaedge_run.releases import Release, fetch_releases, select_releases
from llamaedge_run.runtime import (
    UNINSTALL_COMMAND,
    find_wasmedge,
    has_ggml_plugin,
    install_wasmedge,
    plugin_dir,
    wasm_version,
)

log = structlog.get_logger(__name__)

INTRO = """
[bold]This is a helper for deploying a LlamaEdge app on this machine.[/bold]

The following tasks will be done:
  • Download a GGUF model
  • Install the WasmEdge Runtime and the wasi-nn_ggml plugin
  • Download the LlamaEdge API Server or CLI Chatbot

Once done, the selected app is started with the selected model.

Please note:
  • All downloaded files are stored in {work_dir}
  • The API server listens on 127.0.0.1:{port}
  • The app runs with default settings which are not always optimal
  • Do not judge the quality of a model based on the results from this helper
  • This helper is only for demonstration purposes

You can press Ctrl-C to abort at any time.
"""


class Wizard:
    """Interactive setup of a LlamaEdge app."""

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        work_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
        api: Optional[HfApi] = None,
        console: Optional[Console] = None,
    ):
        self.port = port
        self.work_dir = Path(work_dir) if work_dir is not None else Path.cwd()
        self.session = session or make_session()
        self.api = api or HfApi()
        self.console = console or Console()

    def run(self) -> LaunchConfig:
        """Run every step and return the launch configuration."""
        self.show_intro()

        repo_url = self.choose_repo()
        choice = self.choose_weights(repo_url)
        weights = self.fetch_weights(repo_url, choice.file.name)
        prompt = self.choose_prompt(repo_url)

        wasmedge = self.setup_runtime()
        mode = self.choose_mode()
        self.fetch_app(mode, wasmedge)
        if mode is RunningMode.API_SERVER:
            self.fetch_chatbot_ui()

        ctx_size = self.ask_value("context size", "Enter context size", DEFAULT_CTX_SIZE, minimum=1)
        n_predict = self.ask_value(
            "number of tokens to predict", "Enter number of tokens to predict", DEFAULT_N_PREDICT, minimum=1
        )
        n_gpu_layers = self.ask_value("number of GPU layers", "Enter number of GPU layers", DEFAULT_N_GPU_LAYERS)
        log_option = self.choose_log_option()

        return LaunchConfig(
            weights_file=weights.name,
            mode=mode,
            prompt=prompt,
            wasmedge=wasmedge,
            port=self.port,
            ctx_size=ctx_size,
            n_predict=n_predict,
            n_gpu_layers=n_gpu_layers,
            log_prompts=log_option.log_prompts,
            log_stat=log_option.log_stat,
            work_dir=self.work_dir,
        )

    # Prompt helpers

    def _choose(self, prompt: str, choices: Sequence[str]) -> str:
        return Prompt.ask(prompt, choices=list(choices), show_choices=False, console=self.console)

    def _print_menu(self, items: Sequence[str], start: int = 1) -> None:
        for i, item in enumerate(items, start):
            self.console.print(f"  {i:2d}) {item}", highlight=False)
        self.console.print()

    # Steps

    def show_intro(self) -> None:
        self.console.print(INTRO.format(work_dir=self.work_dir, port=self.port))
        self.console.input("Press Enter to continue ...")

    def choose_repo(self) -> str:
        """Ask for a sample repository number or a Hugging Face URL."""
        self.console.print(f"\n[bold]The most popular models at {SECOND_STATE_URL}:[/bold]\n")
        self._print_menu(SAMPLE_REPOS, start=0)

        while True:
            self.console.print(f"Or choose one from: {MODEL_SEARCH_URL}\n")
            answer = Prompt.ask("Please select a number from the list above or enter an URL", console=self.console)
            try:
                repo_url = parse_repo_choice(answer, SAMPLE_REPOS)
                repo_id_from_url(repo_url)
            except ValueError as e:
                self.console.print(f"[red]{escape(str(e))}[/red]")
                continue
            log.info(f"Selected repository {repo_url}")
            return repo_url

    def choose_weights(self, repo_url: str) -> WeightChoice:
        """List the GGUF files of ``repo_url`` by weight type and ask for one."""
        repo_id = repo_id_from_url(repo_url)
        self.console.print(f"\nChecking for GGUF model files in {repo_url}")
        menu = build_weight_menu(list_gguf_files(repo_id, api=self.api))
        if not menu:
            raise SetupError(f"No GGUF model files with a known weight type found in {repo_url}")

        self.console.print("\n[bold]Available models:[/bold]\n")
        self.print_weight_menu(menu)

        index = self._choose("Please select a number from the list above", [str(i) for i in menu])
        return menu[int(index)]

    def print_weight_menu(self, menu: Dict[int, WeightChoice]) -> None:
        for index, choice in menu.items():
            have = "*" if (self.work_dir / Path(choice.file.name).name).is_file() else " "
            size = format_size(choice.file.size)
            self.console.print(f"  {index:2d}) {have} {size:>9}   {choice.file.name}", highlight=False)
        self.console.print()

    def fetch_weights(self, repo_url: str, filename: str) -> Path:
        """Download the weights file unless a complete copy is already here."""
        weights = self.work_dir / Path(filename).name
        if not needs_download(weights):
            self.console.print(f"Using cached model {filename}")
            return weights

        url = weights_url(repo_url, filename)
        self.console.print(f"Downloading the selected model from {url}")
        download_file(url, weights, self.session)
        chk = mark_complete(weights)
        self.console.print(f"Created check file {chk.name}")
        return weights

    def choose_prompt(self, repo_url: str) -> PromptSettings:
        """Take the prompt settings from the model card, or ask for them."""
        if is_second_state(repo_url):
            readme = fetch_readme(repo_id_from_url(repo_url))
            settings = parse_prompt_settings(readme) if readme else None
            if settings is not None:
                self.console.print(f"Prompt type: [cyan]{escape(settings.prompt_type)}[/cyan]")
                if settings.reverse_prompt:
                    self.console.print(f"Reverse prompt: [cyan]{escape(settings.reverse_prompt)}[/cyan]", highlight=False)
                else:
                    self.console.print("No reverse prompt required")
                return settings
            log.warning(f"No prompt type found in the model card of {repo_url}")

        self.console.print("\n[bold]Please select a prompt type from the list below.[/bold]")
        self.console.print(f"The definitions of the prompt types can be found at {PROMPT_TYPES_DOC_URL}\n")
        self._print_menu(PROMPT_TYPES, start=0)
        index = self._choose("Select prompt type", [str(i) for i in range(len(PROMPT_TYPES))])
        prompt_type = PROMPT_TYPES[int(index)]

        reverse_prompt = None
        if Confirm.ask("Need reverse prompt?", console=self.console):
            reverse_prompt = Prompt.ask("Enter the reverse prompt", console=self.console) or None

        return PromptSettings(prompt_type=prompt_type, reverse_prompt=reverse_prompt)

    def setup_runtime(self) -> str:
        """Install WasmEdge, or keep the current one if it has the GGML plugin.

        Returns:
            Path of the wasmedge binary
        """
        self.console.print("\n[bold]Installing WasmEdge ...[/bold]\n")
        current = find_wasmedge()

        if current is not None:
            self._print_menu([
                "Install the latest version of WasmEdge and wasi-nn_ggml plugin (recommended)",
                "Keep the current version",
            ])
            if self._choose("Select a number from the list above", ["1", "2"]) == "2":
                if not has_ggml_plugin(current):
                    raise SetupError(
                        "wasi-nn_ggml plugin not found. Please download it from "
                        f"{WASMEDGE_RELEASES_URL} and move it to {plugin_dir(current)}. "
                        "After that, please rerun this helper."
                    )
                log.info(f"Keeping WasmEdge at {current}")
                return current

        wasmedge = install_wasmedge(self.session)
        self.console.print(f"\nThe WasmEdge Runtime is installed in {wasmedge}.")
        self.console.print(f"  * To uninstall it, use the command '{UNINSTALL_COMMAND}'\n", highlight=False)
        return wasmedge

    def choose_mode(self) -> RunningMode:
        self.console.print("\n[bold]Running mode:[/bold]\n")
        modes = list(RunningMode)
        self._print_menu([mode.label for mode in modes])
        answer = self._choose("Select a number from the list above", [str(mode.value) for mode in modes])
        mode = RunningMode(int(answer))
        self.console.print(f"Selected running mode: {mode.value} ({mode.label})")
        return mode

    def choose_release(self, releases: List[Release], installed: Optional[str]) -> Release:
        items = [f"{'*' if release.version == installed else ' '} {release.name}" for release in releases]
        self._print_menu(items)
        answer = self._choose("Select a number from the list above", [str(i) for i in range(1, len(releases) + 1)])
        return releases[int(answer) - 1]

    def fetch_app(self, mode: RunningMode, wasmedge: str) -> Path:
        """Pick a LlamaEdge release and download its wasm app if needed."""
        target = self.work_dir / mode.wasm_file
        installed = wasm_version(wasmedge, target)
        if installed:
            log.info(f"Found {mode.wasm_file} version {installed}")

        releases = select_releases(fetch_releases(self.session), mode.wasm_file)
        if not releases:
            raise SetupError(f"No LlamaEdge release provides {mode.wasm_file}")

        self.console.print(f"\n[bold]The latest releases of LlamaEdge {mode.label}:[/bold]\n")
        release = self.choose_release(releases, installed)

        if release.version == installed:
            self.console.print(f"Using cached {mode.wasm_file}")
            return target

        self.console.print(f"Downloading {mode.wasm_file} ({release.name}) ...")
        download_file(release.asset_url, target, self.session)
        return target

    def fetch_chatbot_ui(self) -> Path:
        """Download and unpack the chatbot web app for the API server."""
        ui_dir = self.work_dir / CHATBOT_UI_DIR
        if ui_dir.is_dir():
            self.console.print("Using cached Chatbot web app")
            return ui_dir

        self.console.print("Downloading Chatbot web app ...")
        archive = self.work_dir / f"{CHATBOT_UI_DIR}.tar.gz"
        try:
            download_file(CHATBOT_UI_URL, archive, self.session)
            extract_tarball(archive, self.work_dir)
        except SetupError as e:
            raise SetupError(
                f"{e}\nPlease manually download {CHATBOT_UI_URL} and unpack "
                f"{archive.name} in {self.work_dir}."
            ) from e
        return ui_dir

    def ask_value(self, name: str, prompt: str, default: int, minimum: int = 0) -> int:
        """Keep ``default`` or ask for an integer of at least ``minimum``."""
        if Confirm.ask(f"Use default {name} ({default})?", console=self.console):
            return default

        while True:
            value = IntPrompt.ask(prompt, console=self.console)
            if value >= minimum:
                return value
            self.console.print(f"[red]Please enter a number of at least {minimum}[/red]")

    def choose_log_option(self) -> LogOption:
        self.console.print("\n[bold]Log options:[/bold]\n")
        options = list(LogOption)
        self._print_menu([option.label for option in options])
        answer = self._choose("Select a number from the list above", [str(option.value) for option in options])
        option = LogOption(int(answer))
        self.console.print(f"Selected log option: {option.value} ({option.label})\n")
        return option
