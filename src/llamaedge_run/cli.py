"""Command-line interface for the LlamaEdge run helper."""

import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape

from llamaedge_run.command import build_command, format_command, launch
from llamaedge_run.config import DEFAULT_PORT, RunningMode
from llamaedge_run.environment import check_prerequisites, detect_backend
from llamaedge_run.errors import SetupError
from llamaedge_run.wizard import Wizard

log = structlog.get_logger(__name__)
app = typer.Typer(add_completion=False)
console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Set up structlog for console output."""
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


@app.command()
def run(
    port: int = typer.Option(DEFAULT_PORT, min=1, max=65535, help="Port the API server listens on"),
    work_dir: Optional[Path] = typer.Option(
        None, "--dir", file_okay=False, help="Directory for downloaded files (default: current directory)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """Download a GGUF model, install WasmEdge and run a LlamaEdge app with it."""
    configure_logging(verbose)

    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)

    try:
        check_prerequisites()
        log.info(f"Detected backend: {detect_backend()}")

        config = Wizard(port=port, work_dir=work_dir).run()

        if config.mode is RunningMode.API_SERVER:
            console.print("\n[bold]Start LlamaEdge server[/bold]\n")
            console.print(f"    >>> Chatbot web app can be accessed at http://localhost:{config.port} <<<\n")
        else:
            console.print("\n[bold]Start LlamaEdge chat[/bold]\n")
        console.print(f"+ {format_command(build_command(config))}", highlight=False, markup=False, soft_wrap=True)

        returncode = launch(config)
    except SetupError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Aborted[/yellow]")
        raise typer.Exit(code=130)

    raise typer.Exit(code=returncode)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
