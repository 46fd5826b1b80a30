"""Tests for artifacts.py module."""

import hashlib
import json
from pathlib import Path

import pytest

from mobile_appgen.artifacts import (
    MANIFEST_NAME,
    ArtifactError,
    ArtifactManager,
    artifact_filename,
    compute_file_hash,
    generate_manifest,
)
from mobile_appgen.jobs.store import SqlRecordStore
from mobile_appgen.types import ArtifactInfo, JobStatus, Platform


@pytest.fixture
def job_id(store: SqlRecordStore, make_request) -> str:
    """A stored job to attach artifacts to."""
    return store.create_job(make_request(platform="both")).id


@pytest.fixture
def package(tmp_path: Path) -> Path:
    """A produced package inside a workspace."""
    path = tmp_path / "ws" / "app-debug.apk"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"apk-bytes")
    return path


class TestHelpers:
    """Tests for module-level helpers."""

    def test_compute_file_hash(self, tmp_path: Path) -> None:
        """The hash is the SHA-256 of the file contents."""
        path = tmp_path / "f.bin"
        path.write_bytes(b"data" * 100_000)
        assert compute_file_hash(path) == hashlib.sha256(b"data" * 100_000).hexdigest()

    def test_artifact_filename(self) -> None:
        """Stored names combine job id, platform and extension."""
        assert artifact_filename("abc", Platform.ANDROID, Path("x.apk")) == "abc-android.apk"
        assert artifact_filename("abc", Platform.IOS, Path("App.ipa")) == "abc-ios.ipa"

    def test_generate_manifest(self) -> None:
        """The manifest summarises the artifacts."""
        infos = [
            ArtifactInfo("android", "a.apk", "/d/a.apk", 10, "h1"),
            ArtifactInfo("ios", "a.ipa", "/d/a.ipa", 5, "h2"),
        ]
        manifest = generate_manifest("job", infos)
        assert manifest["job_id"] == "job"
        assert manifest["summary"] == {
            "total_artifacts": 2,
            "total_size_bytes": 15,
            "platforms": ["android", "ios"],
        }


def _complete(store: SqlRecordStore, job_id: str, *infos: ArtifactInfo) -> None:
    """Finish a job with staged packages, as the pipeline does."""
    store.update_status(job_id, JobStatus.BUILDING)
    store.complete_job(job_id, infos)


class TestArtifactManager:
    """Tests for ArtifactManager."""

    def test_store_with_base_url(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """Stored packages get a URL reference but stay off the job."""
        manager = ArtifactManager(tmp_path / "artifacts", store, base_url="/downloads/")

        info = manager.store(job_id, Platform.ANDROID, package)

        assert info.filename == f"{job_id}-android.apk"
        assert info.reference == f"/downloads/{job_id}/{job_id}-android.apk"
        assert info.size_bytes == len(b"apk-bytes")
        assert info.sha256 == hashlib.sha256(b"apk-bytes").hexdigest()
        stored = tmp_path / "artifacts" / job_id / info.filename
        assert stored.read_bytes() == b"apk-bytes"

        job = store.get_job(job_id)
        assert job is not None
        assert job.artifact_map() == {}
        assert manager.resolve(job_id, Platform.ANDROID) is None

    def test_completed_job_exposes_package(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """A stored package is visible once the job completes with it."""
        manager = ArtifactManager(tmp_path / "artifacts", store, base_url="/downloads")
        info = manager.store(job_id, Platform.ANDROID, package)

        _complete(store, job_id, info)

        job = store.get_job(job_id)
        assert job is not None
        assert job.artifact_map() == {"android": info.reference}
        assert manager.resolve(job_id, "android") == info.reference

    def test_store_without_base_url(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """Without a base URL the reference is the absolute file path."""
        manager = ArtifactManager(tmp_path / "artifacts", store)
        reference = manager.store(job_id, Platform.ANDROID, package).reference
        assert Path(reference).is_absolute()
        assert Path(reference).read_bytes() == b"apk-bytes"

    def test_survives_workspace_removal(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """The stored copy does not depend on the workspace."""
        manager = ArtifactManager(tmp_path / "artifacts", store)
        _complete(store, job_id, manager.store(job_id, Platform.ANDROID, package))
        package.unlink()
        assert manager.path_for(job_id, Platform.ANDROID) is not None

    def test_missing_source(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str
    ) -> None:
        """A missing package raises and copies nothing."""
        manager = ArtifactManager(tmp_path / "artifacts", store)
        with pytest.raises(ArtifactError) as exc_info:
            manager.store(job_id, Platform.ANDROID, tmp_path / "none.apk")
        assert exc_info.value.code == "not_found"
        assert not (tmp_path / "artifacts" / job_id).exists()

    def test_discard_removes_staged_files(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """discard deletes staged packages and tolerates missing ones."""
        manager = ArtifactManager(tmp_path / "artifacts", store)
        info = manager.store(job_id, Platform.ANDROID, package)
        stored = tmp_path / "artifacts" / job_id / info.filename
        assert stored.is_file()

        manager.discard(job_id, [info])
        manager.discard(job_id, [info])

        assert not stored.exists()
        assert store.get_artifacts(job_id) == []

    def test_manifest_lists_all_platforms(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """manifest.json lists every recorded package."""
        ipa = tmp_path / "ws" / "App.ipa"
        ipa.write_bytes(b"ipa")
        manager = ArtifactManager(tmp_path / "artifacts", store, base_url="/d")
        _complete(
            store,
            job_id,
            manager.store(job_id, Platform.ANDROID, package),
            manager.store(job_id, Platform.IOS, ipa),
        )

        manager.write_job_manifest(job_id)

        manifest = json.loads((tmp_path / "artifacts" / job_id / MANIFEST_NAME).read_text())
        assert manifest["summary"]["platforms"] == ["android", "ios"]
        assert manifest["summary"]["total_artifacts"] == 2

    def test_resolve_and_download_url(
        self, tmp_path: Path, store: SqlRecordStore, job_id: str, package: Path
    ) -> None:
        """download_url prefers android and falls back to ios."""
        ipa = tmp_path / "ws" / "App.ipa"
        ipa.write_bytes(b"ipa")
        manager = ArtifactManager(tmp_path / "artifacts", store, base_url="/d")

        assert manager.download_url(job_id) is None
        ios = manager.store(job_id, Platform.IOS, ipa)
        store.set_artifact(
            job_id, ios.platform, ios.reference, filename=ios.filename
        )
        assert manager.download_url(job_id) == f"/d/{job_id}/{job_id}-ios.ipa"
        android = manager.store(job_id, Platform.ANDROID, package)
        store.set_artifact(
            job_id, android.platform, android.reference, filename=android.filename
        )
        assert manager.download_url(job_id) == f"/d/{job_id}/{job_id}-android.apk"
        assert manager.download_url(job_id, "ios") == f"/d/{job_id}/{job_id}-ios.ipa"
