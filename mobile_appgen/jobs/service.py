"""Build job service layer.

This module provides the operations shared by the CLI, HTTP API and MCP
server:
- Wiring store, pipeline and scheduler together from settings
- Status, log and listing queries shaped as response schemas
- Per-status build statistics
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mobile_appgen.artifacts import ArtifactManager
from mobile_appgen.db import create_all_tables, get_engine, get_session_factory
from mobile_appgen.jobs.models import BuildJob
from mobile_appgen.jobs.schema import JobStatusResponse, JobSummary, LogEntrySchema
from mobile_appgen.jobs.store import JobNotFoundError, RecordStore, SqlRecordStore
from mobile_appgen.pipeline import BuildPipeline
from mobile_appgen.scheduler import BuildScheduler
from mobile_appgen.types import JobStatus

if TYPE_CHECKING:
    from mobile_appgen.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class BuildServices:
    """The engine's collaborating objects, created once per process."""

    store: SqlRecordStore
    pipeline: BuildPipeline
    scheduler: BuildScheduler

    @property
    def artifacts(self) -> ArtifactManager:
        """Artifact manager used by the pipeline."""
        return self.pipeline.artifacts

    @classmethod
    def from_settings(cls, settings: Settings) -> BuildServices:
        """Create the database schema and assemble the engine (not started)."""
        engine = get_engine(settings.db_url)
        create_all_tables(engine)
        store = SqlRecordStore(get_session_factory(engine))
        pipeline = BuildPipeline.from_settings(store, settings)
        scheduler = BuildScheduler(
            store,
            pipeline,
            max_concurrent_builds=settings.max_concurrent_builds,
            build_timeout=settings.build_timeout,
            heartbeat_interval=settings.heartbeat_interval,
            orphan_timeout=settings.orphan_timeout,
        )
        return cls(store=store, pipeline=pipeline, scheduler=scheduler)


def to_status_response(job: BuildJob) -> JobStatusResponse:
    """Shape a job (with logs and artifacts loaded) as a status response."""
    return JobStatusResponse(
        id=job.id,
        app_id=job.app_id,
        user_id=job.user_id,
        platform=job.platform,
        build_type=job.build_type,
        status=job.status,
        logs=[LogEntrySchema.model_validate(entry) for entry in job.logs],
        artifacts=job.artifact_map(),
        error=job.error,
        error_type=job.error_type,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def to_summary(job: BuildJob) -> JobSummary:
    """Shape a job (artifacts loaded) as a listing entry."""
    return JobSummary(
        id=job.id,
        app_id=job.app_id,
        user_id=job.user_id,
        platform=job.platform,
        build_type=job.build_type,
        status=job.status,
        error=job.error,
        error_type=job.error_type,
        created_at=job.created_at,
        completed_at=job.completed_at,
        artifacts=job.artifact_map(),
    )


def get_job_status(store: RecordStore, job_id: str) -> JobStatusResponse:
    """Get the status response for a job.

    Raises:
        JobNotFoundError: If the job does not exist.
    """
    job = store.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return to_status_response(job)


def get_job_logs(store: RecordStore, job_id: str) -> list[LogEntrySchema]:
    """Get a job's log entries in order.

    Raises:
        JobNotFoundError: If the job does not exist.
    """
    if store.get_job(job_id) is None:
        raise JobNotFoundError(job_id)
    return [LogEntrySchema.model_validate(entry) for entry in store.get_logs(job_id)]


def list_job_summaries(
    store: RecordStore,
    app_id: str | None = None,
    user_id: str | None = None,
    status: JobStatus | None = None,
    limit: int = 100,
) -> list[JobSummary]:
    """List jobs, newest first."""
    jobs = store.list_jobs(app_id=app_id, user_id=user_id, status=status, limit=limit)
    return [to_summary(job) for job in jobs]


def get_build_stats(store: RecordStore, user_id: str | None = None) -> dict[str, int]:
    """Count jobs per status (every status present) plus a total."""
    counts = store.count_by_status(user_id=user_id)
    stats = {status.value: counts.get(status.value, 0) for status in JobStatus}
    stats["total"] = sum(stats.values())
    return stats


__all__ = [
    "BuildServices",
    "get_build_stats",
    "get_job_logs",
    "get_job_status",
    "list_job_summaries",
    "to_status_response",
    "to_summary",
]
