"""LlamaEdge releases on GitHub."""

import re
from dataclasses import dataclass
from typing import Any, Dict, List

import requests
import structlog

from llamaedge_run.config import LLAMAEDGE_RELEASES_API
from llamaedge_run.download import TIMEOUT_SECONDS
from llamaedge_run.errors import SetupError

log = structlog.get_logger(__name__)

RELEASE_NAME = re.compile(r"^LlamaEdge \d+\.\d+\.\d+$")


@dataclass
class Release:
    """A LlamaEdge release carrying the wasm app we need."""
    name: str  # e.g. "LlamaEdge 0.2.9"
    version: str  # e.g. "0.2.9"
    asset_url: str


def fetch_releases(session: requests.Session, url: str = LLAMAEDGE_RELEASES_API) -> List[Dict[str, Any]]:
    """Fetch the release list from the GitHub API, newest first."""
    try:
        response = session.get(url, headers={"Accept": "application/vnd.github+json"}, timeout=TIMEOUT_SECONDS)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise SetupError(f"Failed to fetch LlamaEdge releases: {e}") from e

    if not isinstance(payload, list):
        raise SetupError(f"Unexpected response from {url}: {payload!r:.200}")
    return payload


def select_releases(payload: List[Dict[str, Any]], asset_name: str, limit: int = 3) -> List[Release]:
    """Pick the stable releases providing ``asset_name``.

    Only the first ``limit`` releases are considered. Pre-releases and other
    entries whose name is not ``LlamaEdge X.Y.Z`` are skipped, as are
    releases without the asset.
    """
    releases = []
    for entry in payload[:limit]:
        name = (entry.get("name") or "").strip()
        if not RELEASE_NAME.match(name):
            log.debug(f"Skipping release {name!r}")
            continue

        asset_url = None
        for asset in entry.get("assets") or []:
            if asset.get("name") == asset_name:
                asset_url = asset.get("browser_download_url")
                break

        if not asset_url:
            log.warning(f"{name} has no {asset_name} asset")
            continue

        releases.append(Release(name=name, version=name.split(" ")[1], asset_url=asset_url))

    return releases
