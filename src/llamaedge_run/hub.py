"""Hugging Face repositories: choosing one and finding its GGUF weights."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote, urlparse

import httpx
import requests
import structlog
from huggingface_hub import HfApi, hf_hub_download
from huggingface_hub.utils import HfHubHTTPError

from llamaedge_run.config import HF_BASE_URL, SECOND_STATE_URL, WEIGHT_TYPES, PromptSettings
from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)

_TREE_SUFFIX = re.compile(r"/tree/main/?$")
_URL_PREFIX = re.compile(r"^https?://")
_INDEX = re.compile(r"\d+", re.ASCII)
_BACKTICKED = re.compile(r"`([^`]*)`")


@dataclass
class WeightFile:
    """A GGUF file in a model repository."""
    name: str
    size: Optional[int] = None  # Bytes, if the Hub reported it


@dataclass
class WeightChoice:
    """An entry of the weights menu."""
    index: int  # Position of the weight type in WEIGHT_TYPES
    weight_type: str
    file: WeightFile


def normalize_repo_url(url: str) -> str:
    """Strip a ``/tree/main`` suffix and trailing slashes from a repo URL."""
    url = url.strip()
    url = _TREE_SUFFIX.sub("", url)
    return url.rstrip("/")


def parse_repo_choice(text: str, repos: Sequence[str]) -> str:
    """Turn the user's answer into a repository URL.

    Args:
        text: A number indexing ``repos`` or an http(s) URL
        repos: The sample repositories shown to the user

    Returns:
        The normalized repository URL

    Raises:
        ValueError: If the answer is neither a valid index nor a URL
    """
    text = text.strip()
    if _INDEX.fullmatch(text):
        index = int(text)
        if 0 <= index < len(repos):
            return normalize_repo_url(repos[index])
        raise ValueError(f"Invalid repo index: {text}")
    if _URL_PREFIX.match(text):
        return normalize_repo_url(text)
    raise ValueError(f"Invalid repo URL: {text}")


def repo_id_from_url(url: str) -> str:
    """Extract ``owner/name`` from a huggingface.co repository URL."""
    parsed = urlparse(normalize_repo_url(url))
    if parsed.netloc not in ("huggingface.co", "www.huggingface.co"):
        raise ValueError(f"Not a Hugging Face repository URL: {url}")

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Repository URL must look like {HF_BASE_URL}/<owner>/<name>: {url}")
    return f"{parts[0]}/{parts[1]}"


def is_second_state(repo_url: str) -> bool:
    """Whether the repository is one of the second-state GGUF repos."""
    return normalize_repo_url(repo_url).startswith(SECOND_STATE_URL + "/")


def weights_url(repo_url: str, filename: str) -> str:
    """Direct download URL of a file on the main branch."""
    return f"{normalize_repo_url(repo_url)}/resolve/main/{quote(filename)}"


def list_gguf_files(repo_id: str, api: Optional[HfApi] = None) -> List[WeightFile]:
    """List the GGUF files of a repository with their sizes.

    Raises:
        SetupError: If the repository cannot be queried
    """
    api = api or HfApi()
    try:
        info = api.model_info(repo_id, files_metadata=True)
    except (HfHubHTTPError, requests.RequestException, httpx.HTTPError, OSError) as e:
        raise SetupError(f"Failed to list files of {repo_id}: {e}") from e

    files = [
        WeightFile(name=sibling.rfilename, size=getattr(sibling, "size", None))
        for sibling in (info.siblings or [])
        if sibling.rfilename.lower().endswith(".gguf")
    ]
    log.debug(f"Found {len(files)} GGUF files in {repo_id}")
    return files


def match_weight_type(filename: str) -> Optional[int]:
    """Index of the first weight type contained in ``filename``, or None."""
    upper = filename.upper()
    for index, weight_type in enumerate(WEIGHT_TYPES):
        if weight_type in upper:
            return index
    return None


def build_weight_menu(files: Sequence[WeightFile]) -> Dict[int, WeightChoice]:
    """Group files by weight type.

    Files without a recognizable weight type are left out. When several
    files share a type, the last one listed wins.
    """
    menu: Dict[int, WeightChoice] = {}
    for weight_file in files:
        index = match_weight_type(weight_file.name)
        if index is None:
            log.debug(f"Skipping {weight_file.name}: unknown weight type")
            continue
        menu[index] = WeightChoice(index=index, weight_type=WEIGHT_TYPES[index], file=weight_file)
    return dict(sorted(menu.items()))


def format_size(size: Optional[int]) -> str:
    """Human readable size, as shown on the Hub."""
    if size is None:
        return "?"
    if size >= 1000 ** 3:
        return f"{size / 1000 ** 3:.2f} GB"
    if size >= 1000 ** 2:
        return f"{size / 1000 ** 2:.2f} MB"
    if size >= 1000:
        return f"{size / 1000:.2f} kB"
    return f"{size} B"


def _backticked_value(line: str) -> Optional[str]:
    match = _BACKTICKED.search(line)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def parse_prompt_settings(readme: str) -> Optional[PromptSettings]:
    """Read the prompt type and reverse prompt from a model card.

    second-state model cards carry lines such as::

        - Prompt type: `chatml`
        - Reverse prompt: `<|im_end|>`

    Returns:
        The settings, or None if the card names no prompt type
    """
    prompt_type = None
    reverse_prompt = None

    for line in readme.splitlines():
        lowered = line.lower()
        if prompt_type is None and "prompt type:" in lowered:
            prompt_type = _backticked_value(line)
        elif reverse_prompt is None and "reverse prompt:" in lowered:
            reverse_prompt = _backticked_value(line)

    if prompt_type is None:
        return None
    return PromptSettings(prompt_type=prompt_type, reverse_prompt=reverse_prompt)


def fetch_readme(repo_id: str) -> Optional[str]:
    """Download the model card of a repository, or None if it has none."""
    try:
        path = hf_hub_download(repo_id=repo_id, filename="README.md")
    except (HfHubHTTPError, httpx.HTTPError, OSError) as e:
        log.warning(f"Could not fetch README.md of {repo_id}: {e}")
        return None
    return Path(path).read_text(encoding="utf-8")
