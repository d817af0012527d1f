"""Downloading files into the working directory.

Large files are streamed to a ``.part`` file and renamed once complete.
Model weights additionally get an empty ``.chk`` marker so that an
interrupted download is not mistaken for a finished one on the next run.
"""

import tarfile
from pathlib import Path
from typing import Optional

import requests
import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from llamaedge_run import __version__
from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)
console = Console()

USER_AGENT = f"llamaedge-run/{__version__}"
CHUNK_SIZE = 1024 * 1024
TIMEOUT_SECONDS = 30


def make_session() -> requests.Session:
    """Create the HTTP session shared by all downloads."""
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def fetch_text(url: str, session: requests.Session) -> str:
    """GET ``url`` and return the body as text."""
    try:
        response = session.get(url, timeout=TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as e:
        raise SetupError(f"Failed to fetch {url}: {e}") from e
    return response.text


def download_file(url: str, dest: Path, session: requests.Session) -> Path:
    """Stream ``url`` to ``dest`` with a progress bar.

    Args:
        url: Source URL (redirects are followed)
        dest: Destination file path
        session: HTTP session to use

    Returns:
        The destination path

    Raises:
        SetupError: If the request fails, the connection drops or the
            file cannot be written
    """
    dest = Path(dest)
    tmp = dest.with_name(dest.name + ".part")
    log.info(f"Downloading {url} to {dest}")

    try:
        with session.get(url, stream=True, timeout=TIMEOUT_SECONDS, allow_redirects=True) as response:
            response.raise_for_status()
            total = int(response.headers.get("Content-Length", 0)) or None

            with Progress(
                TextColumn(f"[bold]{dest.name}[/bold]"),
                BarColumn(),
                DownloadColumn(),
                TransferSpeedColumn(),
                TimeRemainingColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("download", total=total)
                with open(tmp, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        progress.update(task, advance=len(chunk))
    except requests.RequestException as e:
        tmp.unlink(missing_ok=True)
        raise SetupError(f"Failed to download {url}: {e}") from e
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise SetupError(f"Failed to write {tmp}: {e}") from e
    except BaseException:
        # Ctrl-C and friends: no partial file survives
        tmp.unlink(missing_ok=True)
        raise

    tmp.replace(dest)
    return dest


def check_file_path(weights: Path) -> Path:
    """Path of the completion marker for a weights file."""
    weights = Path(weights)
    return weights.with_name(weights.name + ".chk")


def needs_download(weights: Path) -> bool:
    """Decide whether a weights file has to be (re)downloaded.

    True if the file is missing, if its check file is missing, or if the
    file was modified after the check file was written.
    """
    weights = Path(weights)
    chk = check_file_path(weights)

    if not weights.is_file():
        return True
    if not chk.is_file():
        return True
    return weights.stat().st_mtime > chk.stat().st_mtime


def mark_complete(weights: Path) -> Path:
    """Touch the check file after a successful download."""
    chk = check_file_path(weights)
    chk.touch()
    return chk


def extract_tarball(archive: Path, dest: Optional[Path] = None) -> None:
    """Unpack a gzipped tarball next to itself and remove it."""
    archive = Path(archive)
    dest = Path(dest) if dest is not None else archive.parent

    try:
        with tarfile.open(archive, "r:gz") as tar:
            if hasattr(tarfile, "data_filter"):
                tar.extractall(dest, filter="data")
            else:
                tar.extractall(dest)
    except tarfile.TarError as e:
        raise SetupError(f"Failed to extract {archive}: {e}") from e

    archive.unlink()
