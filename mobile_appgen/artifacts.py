"""Durable storage of build artifacts.

This module handles:
- Copying produced packages out of the workspace into the artifacts root
- Computing checksums and sizes
- Discarding staged packages of jobs that did not complete
- Writing a per-job manifest.json
- Resolving references and local paths for downloads
"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mobile_appgen.jobs.store import RecordStore
from mobile_appgen.types import ArtifactInfo, Platform

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024
MANIFEST_NAME = "manifest.json"

PACKAGE_EXTENSIONS = {
    Platform.ANDROID: ".apk",
    Platform.IOS: ".ipa",
}

# Order in which a single download link is chosen
DOWNLOAD_PREFERENCE = [Platform.ANDROID, Platform.IOS]


class ArtifactError(Exception):
    """Raised when an artifact cannot be stored."""

    def __init__(self, message: str, code: str = "artifact_error") -> None:
        super().__init__(message)
        self.code = code


def compute_file_hash(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute SHA-256 hash of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def artifact_filename(job_id: str, platform: Platform, source: Path) -> str:
    """Stored filename: `<job_id>-<platform><ext>`."""
    suffix = PACKAGE_EXTENSIONS.get(platform) or source.suffix
    return f"{job_id}-{platform.value}{suffix}"


def generate_manifest(
    job_id: str,
    artifacts: list[ArtifactInfo],
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate the job's artifact manifest."""
    manifest: dict[str, Any] = {
        "version": "1.0",
        "job_id": job_id,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
        "summary": {
            "total_artifacts": len(artifacts),
            "total_size_bytes": sum(a.size_bytes for a in artifacts),
            "platforms": sorted(a.platform for a in artifacts),
        },
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)
    logger.debug("Wrote manifest to %s", output_path)
    return output_path


class ArtifactManager:
    """Stores platform packages and resolves their references.

    A reference is `{base_url}/{job_id}/{filename}` when a base URL is
    configured, otherwise the absolute path of the stored file.

    Args:
        artifacts_dir: Root directory for stored packages.
        records: Record store the references are read from.
        base_url: Public base URL for downloads, or None for file paths.
    """

    def __init__(
        self,
        artifacts_dir: Path,
        records: RecordStore,
        base_url: str | None = None,
    ) -> None:
        self.artifacts_dir = artifacts_dir
        self.records = records
        self.base_url = base_url.rstrip("/") if base_url else None

    def job_dir(self, job_id: str) -> Path:
        """Directory holding a job's stored files."""
        return self.artifacts_dir / job_id

    def reference_for(self, job_id: str, filename: str) -> str:
        """Build the reference for a stored file."""
        if self.base_url is not None:
            return f"{self.base_url}/{job_id}/{filename}"
        return str((self.job_dir(job_id) / filename).resolve())

    def store(self, job_id: str, platform: Platform, source: Path) -> ArtifactInfo:
        """Copy a produced package into durable storage.

        The package is not recorded on the job here. Its reference becomes
        visible when the record store completes the job with the returned
        info; `discard` removes it otherwise.

        Args:
            job_id: Owning job.
            platform: Platform that produced the package.
            source: Package inside the workspace.

        Returns:
            ArtifactInfo for the stored file.

        Raises:
            ArtifactError: If the source is missing or the copy fails.
        """
        if not source.is_file():
            raise ArtifactError(f"Artifact not found: {source}", code="not_found")

        filename = artifact_filename(job_id, platform, source)
        dest = self.job_dir(job_id) / filename
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
        except OSError as e:
            raise ArtifactError(f"Failed to store artifact {source}: {e}") from e

        info = ArtifactInfo(
            platform=platform.value,
            filename=filename,
            reference=self.reference_for(job_id, filename),
            size_bytes=dest.stat().st_size,
            sha256=compute_file_hash(dest),
        )
        logger.info(
            "Stored %s artifact for job %s (%d bytes)",
            platform.value,
            job_id,
            info.size_bytes,
        )
        return info

    def discard(self, job_id: str, infos: Iterable[ArtifactInfo]) -> None:
        """Delete staged packages of a job that did not complete."""
        for info in infos:
            path = self.job_dir(job_id) / info.filename
            path.unlink(missing_ok=True)
            logger.info("Discarded %s artifact for job %s", info.platform, job_id)

    def write_job_manifest(self, job_id: str) -> Path:
        """Rewrite manifest.json from the job's recorded artifacts."""
        artifacts = [
            ArtifactInfo(
                platform=a.platform,
                filename=a.filename,
                reference=a.reference,
                size_bytes=a.size_bytes,
                sha256=a.sha256 or "",
            )
            for a in self.records.get_artifacts(job_id)
        ]
        manifest = generate_manifest(job_id, artifacts)
        return write_manifest(manifest, self.job_dir(job_id) / MANIFEST_NAME)

    def resolve(self, job_id: str, platform: Platform | str) -> str | None:
        """Return the stored reference for a platform, or None."""
        platform_value = Platform(platform).value
        for artifact in self.records.get_artifacts(job_id):
            if artifact.platform == platform_value:
                return artifact.reference
        return None

    def path_for(self, job_id: str, platform: Platform | str) -> Path | None:
        """Return the local path of a stored package, or None."""
        platform_value = Platform(platform).value
        for artifact in self.records.get_artifacts(job_id):
            if artifact.platform == platform_value:
                path = self.job_dir(job_id) / artifact.filename
                return path if path.is_file() else None
        return None

    def download_url(
        self, job_id: str, platform: Platform | str | None = None
    ) -> str | None:
        """Reference for download, preferring android then ios."""
        if platform is not None:
            return self.resolve(job_id, platform)
        for candidate in DOWNLOAD_PREFERENCE:
            reference = self.resolve(job_id, candidate)
            if reference is not None:
                return reference
        return None


__all__ = [
    "DOWNLOAD_PREFERENCE",
    "MANIFEST_NAME",
    "PACKAGE_EXTENSIONS",
    "ArtifactError",
    "ArtifactManager",
    "artifact_filename",
    "compute_file_hash",
    "generate_manifest",
    "write_manifest",
]
