"""Icon and splash screen staging.

This module handles:
- Copying assets referenced by local path into the workspace
- Downloading assets referenced by http(s) URL with httpx
- Skipping (with a warning) assets that are missing or unreachable

Assets are placed under `resources/` where Capacitor asset tooling expects
them; no image processing happens here.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from mobile_appgen.apps.schema import AppConfigSnapshot

logger = logging.getLogger(__name__)

RESOURCES_DIR = "resources"
DEFAULT_ASSET_SUFFIX = ".png"
DOWNLOAD_TIMEOUT = 60.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Snapshot attribute -> staged file stem
ASSET_FIELDS = {
    "app_icon": "icon",
    "splash_screen": "splash",
}


class AssetError(Exception):
    """Raised when an asset cannot be staged."""

    def __init__(self, message: str, code: str = "asset_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class StagedAssets:
    """Outcome of staging a snapshot's assets.

    Attributes:
        staged: Asset name -> staged file path.
        skipped: Asset name -> reason it was skipped.
    """

    staged: dict[str, Path] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)


def is_url(reference: str) -> bool:
    """Whether an asset reference is an http(s) URL."""
    return urlparse(reference).scheme in ("http", "https")


def asset_suffix(reference: str) -> str:
    """File suffix for an asset reference (path or URL)."""
    path = urlparse(reference).path if is_url(reference) else reference
    suffix = PurePosixPath(path).suffix.lower()
    return suffix or DEFAULT_ASSET_SUFFIX


def download_asset(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """Download an asset to `dest_path`.

    Raises:
        AssetError: If the download fails.
    """
    logger.info("Downloading asset %s to %s", url, dest_path)
    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise AssetError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise AssetError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise AssetError(
            f"Network error downloading {url}: {e}", code="network_error"
        ) from e
    return dest_path


def copy_asset(source: Path, dest_path: Path) -> Path:
    """Copy a local asset to `dest_path`.

    Raises:
        AssetError: If the source is missing or cannot be copied.
    """
    if not source.is_file():
        raise AssetError(f"Asset file not found: {source}", code="not_found")
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest_path)
    except OSError as e:
        raise AssetError(f"Failed to copy asset {source}: {e}") from e
    return dest_path


def stage_assets(
    workspace: Path,
    config: AppConfigSnapshot,
    client: httpx.Client | None = None,
    base_path: Path | None = None,
) -> StagedAssets:
    """Stage the icon and splash screen referenced by a snapshot.

    Args:
        workspace: Job workspace.
        config: Validated configuration snapshot.
        client: HTTP client for URL assets (one is created when needed).
        base_path: Base for relative local paths (default: cwd).

    Returns:
        StagedAssets listing what was staged and what was skipped.
    """
    result = StagedAssets()
    base_path = base_path or Path.cwd()
    resources = workspace / RESOURCES_DIR

    own_client: httpx.Client | None = None
    try:
        for attr, stem in ASSET_FIELDS.items():
            reference = getattr(config, attr)
            if not reference:
                continue

            dest = resources / f"{stem}{asset_suffix(reference)}"
            try:
                if is_url(reference):
                    if client is None:
                        own_client = client = httpx.Client(follow_redirects=True)
                    download_asset(client, reference, dest)
                else:
                    source = Path(reference)
                    if not source.is_absolute():
                        source = base_path / source
                    copy_asset(source, dest)
            except AssetError as e:
                logger.warning("Skipping %s: %s", attr, e)
                result.skipped[attr] = str(e)
                continue

            result.staged[attr] = dest
            logger.debug("Staged %s at %s", attr, dest)
    finally:
        if own_client is not None:
            own_client.close()

    return result


__all__ = [
    "ASSET_FIELDS",
    "RESOURCES_DIR",
    "AssetError",
    "StagedAssets",
    "asset_suffix",
    "copy_asset",
    "download_asset",
    "is_url",
    "stage_assets",
]
