"""Record store for build jobs.

The engine reads and writes job state only through the `RecordStore`
contract. `SqlRecordStore` implements it on SQLAlchemy with one short
transaction per call, so records are durable as soon as a call returns.

Several engines (an HTTP server, an MCP server, `appgen build submit
--wait`) may share one database. Each store carries the id of the engine
it belongs to; status changes are conditional UPDATEs, and a job being
built belongs to the engine that claimed it.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections.abc import Collection, Iterable
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from mobile_appgen.db import get_session
from mobile_appgen.jobs.models import BuildJob, BuildLogEntry, StoredArtifact, utcnow
from mobile_appgen.jobs.schema import BuildRequest
from mobile_appgen.jobs.state import InvalidTransitionError, can_transition
from mobile_appgen.types import ArtifactInfo, JobStatus, LogEntry

logger = logging.getLogger(__name__)


class JobNotFoundError(Exception):
    """Raised when a job is not found."""

    def __init__(self, job_id: str, code: str = "job_not_found") -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id
        self.code = code


class JobOwnedElsewhereError(InvalidTransitionError):
    """Raised when a job is being built by another engine."""

    def __init__(
        self, job_id: str, current: JobStatus, target: JobStatus, owner: str
    ) -> None:
        super().__init__(job_id, current, target, code="owned_elsewhere")
        self.owner = owner
        self.args = (f"Job {job_id} is owned by engine {owner}",)


def _status_values(
    status: JobStatus,
    engine_id: str,
    error: str | None = None,
    error_type: str | None = None,
) -> dict[str, Any]:
    """Column values written when a job enters `status`."""
    now = utcnow()
    values: dict[str, Any] = {"status": status.value}
    if status is JobStatus.BUILDING:
        values.update(started_at=now, owner=engine_id, heartbeat_at=now)
    elif status.is_terminal:
        values["completed_at"] = now
    if status is JobStatus.FAILED:
        if error_type:
            values["error_type"] = error_type
        if error:
            values["error"] = error
    return values


def _put_artifact(session: Session, job_id: str, info: ArtifactInfo) -> None:
    """Insert or replace the artifact row for `info.platform`."""
    stmt = select(StoredArtifact).where(
        StoredArtifact.job_id == job_id,
        StoredArtifact.platform == info.platform,
    )
    artifact = session.execute(stmt).scalar_one_or_none()
    if artifact is None:
        artifact = StoredArtifact(job_id=job_id, platform=info.platform)
        session.add(artifact)
    artifact.reference = info.reference
    artifact.filename = info.filename
    artifact.size_bytes = info.size_bytes
    artifact.sha256 = info.sha256 or None


class RecordStore(Protocol):
    """Persistence contract used by the build engine."""

    engine_id: str

    def create_job(self, request: BuildRequest) -> BuildJob: ...

    def get_job(self, job_id: str) -> BuildJob | None: ...

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        error_type: str | None = None,
    ) -> None: ...

    def complete_job(self, job_id: str, artifacts: Iterable[ArtifactInfo]) -> None: ...

    def heartbeat(self) -> int: ...

    def fail_orphaned(
        self,
        stale_before: datetime,
        error: str,
        error_type: str,
        exclude: Collection[str] = (),
    ) -> list[str]: ...

    def append_log(self, job_id: str, entry: LogEntry) -> None: ...

    def set_artifact(
        self,
        job_id: str,
        platform: str,
        reference: str,
        filename: str,
        size_bytes: int = 0,
        sha256: str | None = None,
    ) -> None: ...

    def set_workspace(self, job_id: str, path: str | None) -> None: ...

    def get_logs(self, job_id: str) -> list[BuildLogEntry]: ...

    def get_artifacts(self, job_id: str) -> list[StoredArtifact]: ...

    def list_jobs(
        self,
        app_id: str | None = None,
        user_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
        oldest_first: bool = False,
    ) -> list[BuildJob]: ...

    def count_by_status(self, user_id: str | None = None) -> dict[str, int]: ...


class SqlRecordStore:
    """SQLAlchemy-backed RecordStore.

    Args:
        session_factory: Session factory bound to the jobs database.
        engine_id: Id of the engine using this store (random when omitted).
    """

    def __init__(
        self, session_factory: sessionmaker[Session], engine_id: str | None = None
    ) -> None:
        self.session_factory = session_factory
        self.engine_id = engine_id or uuid.uuid4().hex

    def create_job(self, request: BuildRequest) -> BuildJob:
        """Create a queued job from a submission.

        The configuration snapshot is deep-copied so later changes to the
        caller's mapping never reach the stored record.
        """
        with get_session(self.session_factory) as session:
            job = BuildJob(
                app_id=request.app_id,
                user_id=request.user_id,
                platform=request.platform.value,
                build_type=request.build_type.value,
                config_snapshot=copy.deepcopy(request.config_snapshot),
                status=JobStatus.QUEUED.value,
            )
            session.add(job)
            session.flush()
            logger.debug("Created job %s", job.id)
            return job

    def get_job(self, job_id: str) -> BuildJob | None:
        """Get a job with its logs and artifacts loaded, or None."""
        with get_session(self.session_factory) as session:
            stmt = (
                select(BuildJob)
                .where(BuildJob.id == job_id)
                .options(selectinload(BuildJob.logs), selectinload(BuildJob.artifacts))
            )
            return session.execute(stmt).scalar_one_or_none()

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        error: str | None = None,
        error_type: str | None = None,
    ) -> None:
        """Apply a status transition as a single conditional UPDATE.

        The row only changes if its current status may move to `status` and
        the job is unowned or owned by this engine. Moving to `building`
        claims the job for this engine, so two engines sharing a database
        can never both start it.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidTransitionError: If the transition is not monotonic.
            JobOwnedElsewhereError: If another engine owns the job.
        """
        sources = [s.value for s in JobStatus if can_transition(s, status)]
        values = _status_values(status, self.engine_id, error, error_type)
        stmt = (
            update(BuildJob)
            .where(
                BuildJob.id == job_id,
                BuildJob.status.in_(sources),
                self._owned_here(),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with get_session(self.session_factory) as session:
            if session.execute(stmt).rowcount == 1:
                return
            self._raise_rejected(session, job_id, status)

    def complete_job(self, job_id: str, artifacts: Iterable[ArtifactInfo]) -> None:
        """Record the job's artifacts and mark it completed in one transaction.

        Raises:
            JobNotFoundError: If the job does not exist.
            InvalidTransitionError: If the job is not building.
            JobOwnedElsewhereError: If another engine owns the job.
        """
        stmt = (
            update(BuildJob)
            .where(
                BuildJob.id == job_id,
                BuildJob.status == JobStatus.BUILDING.value,
                self._owned_here(),
            )
            .values(**_status_values(JobStatus.COMPLETED, self.engine_id))
            .execution_options(synchronize_session=False)
        )
        with get_session(self.session_factory) as session:
            if session.execute(stmt).rowcount != 1:
                self._raise_rejected(session, job_id, JobStatus.COMPLETED)
            for info in artifacts:
                _put_artifact(session, job_id, info)

    def heartbeat(self) -> int:
        """Refresh the heartbeat of every job this engine is building.

        Returns:
            Number of jobs touched.
        """
        stmt = (
            update(BuildJob)
            .where(
                BuildJob.owner == self.engine_id,
                BuildJob.status == JobStatus.BUILDING.value,
            )
            .values(heartbeat_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        with get_session(self.session_factory) as session:
            return session.execute(stmt).rowcount

    def fail_orphaned(
        self,
        stale_before: datetime,
        error: str,
        error_type: str,
        exclude: Collection[str] = (),
    ) -> list[str]:
        """Fail `building` jobs no live engine is working on.

        A building job is orphaned when it is unowned, owned by this engine
        but not in `exclude` (its running jobs), or its owner's last
        heartbeat is older than `stale_before`. Jobs of other live engines
        are left alone.

        Returns:
            Ids of the jobs that were failed.
        """
        orphaned = or_(
            BuildJob.owner.is_(None),
            BuildJob.owner == self.engine_id,
            BuildJob.heartbeat_at.is_(None),
            BuildJob.heartbeat_at < stale_before,
        )
        values = _status_values(JobStatus.FAILED, self.engine_id, error, error_type)
        failed: list[str] = []
        with get_session(self.session_factory) as session:
            candidates = session.execute(
                select(BuildJob.id)
                .where(BuildJob.status == JobStatus.BUILDING.value, orphaned)
                .order_by(BuildJob.created_at)
            ).scalars().all()
            for job_id in candidates:
                if job_id in exclude:
                    continue
                stmt = (
                    update(BuildJob)
                    .where(
                        BuildJob.id == job_id,
                        BuildJob.status == JobStatus.BUILDING.value,
                        orphaned,
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if session.execute(stmt).rowcount == 1:
                    failed.append(job_id)
        return failed

    def _owned_here(self) -> ColumnElement[bool]:
        return or_(BuildJob.owner.is_(None), BuildJob.owner == self.engine_id)

    def _raise_rejected(self, session: Session, job_id: str, status: JobStatus) -> None:
        job = session.get(BuildJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        current = JobStatus(job.status)
        if job.owner not in (None, self.engine_id):
            raise JobOwnedElsewhereError(job_id, current, status, job.owner)
        raise InvalidTransitionError(job_id, current, status)

    def append_log(self, job_id: str, entry: LogEntry) -> None:
        """Append one log entry to a job."""
        with get_session(self.session_factory) as session:
            session.add(
                BuildLogEntry(
                    job_id=job_id,
                    timestamp=entry.timestamp,
                    level=entry.level.value,
                    message=entry.message,
                )
            )

    def set_artifact(
        self,
        job_id: str,
        platform: str,
        reference: str,
        filename: str,
        size_bytes: int = 0,
        sha256: str | None = None,
    ) -> None:
        """Record (or replace) the stored artifact for a platform."""
        with get_session(self.session_factory) as session:
            _put_artifact(
                session,
                job_id,
                ArtifactInfo(
                    platform=platform,
                    filename=filename,
                    reference=reference,
                    size_bytes=size_bytes,
                    sha256=sha256 or "",
                ),
            )

    def set_workspace(self, job_id: str, path: str | None) -> None:
        """Record the job's working directory."""
        with get_session(self.session_factory) as session:
            job = session.get(BuildJob, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.workspace_path = path

    def get_logs(self, job_id: str) -> list[BuildLogEntry]:
        """Return a job's log entries in emission order."""
        with get_session(self.session_factory) as session:
            stmt = (
                select(BuildLogEntry)
                .where(BuildLogEntry.job_id == job_id)
                .order_by(BuildLogEntry.seq)
            )
            return list(session.execute(stmt).scalars().all())

    def get_artifacts(self, job_id: str) -> list[StoredArtifact]:
        """Return a job's stored artifacts."""
        with get_session(self.session_factory) as session:
            stmt = select(StoredArtifact).where(StoredArtifact.job_id == job_id)
            return list(session.execute(stmt).scalars().all())

    def list_jobs(
        self,
        app_id: str | None = None,
        user_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 100,
        oldest_first: bool = False,
    ) -> list[BuildJob]:
        """List jobs with optional filters.

        Args:
            app_id: Filter by app.
            user_id: Filter by user.
            status: Filter by status.
            limit: Maximum results to return.
            oldest_first: Order by submission time ascending instead of descending.

        Returns:
            List of BuildJob instances (artifacts loaded, logs not).
        """
        stmt = select(BuildJob).options(selectinload(BuildJob.artifacts))

        if app_id is not None:
            stmt = stmt.where(BuildJob.app_id == app_id)
        if user_id is not None:
            stmt = stmt.where(BuildJob.user_id == user_id)
        if status is not None:
            stmt = stmt.where(BuildJob.status == status.value)

        order = BuildJob.created_at.asc() if oldest_first else BuildJob.created_at.desc()
        stmt = stmt.order_by(order).limit(limit)

        with get_session(self.session_factory) as session:
            return list(session.execute(stmt).scalars().all())

    def count_by_status(self, user_id: str | None = None) -> dict[str, int]:
        """Count jobs per status, optionally for a single user."""
        stmt = select(BuildJob.status, func.count()).group_by(BuildJob.status)
        if user_id is not None:
            stmt = stmt.where(BuildJob.user_id == user_id)
        with get_session(self.session_factory) as session:
            return {status: count for status, count in session.execute(stmt).all()}


__all__ = [
    "JobNotFoundError",
    "JobOwnedElsewhereError",
    "RecordStore",
    "SqlRecordStore",
]
