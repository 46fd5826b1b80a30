"""Build job endpoints.

- POST /builds - Submit a build
- GET /builds - List builds (without logs)
- GET /builds/stats - Per-status counts
- GET /builds/{id} - Full status with logs and artifacts
- GET /builds/{id}/logs - Log entries
- POST /builds/{id}/cancel - Cancel a queued or running build
- GET /builds/{id}/download - Download a stored package
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from fastapi.responses import FileResponse

from mobile_appgen.artifacts import DOWNLOAD_PREFERENCE, ArtifactManager
from mobile_appgen.jobs.schema import (
    BuildRequest,
    CancelResult,
    JobStatusResponse,
    JobSummary,
    LogEntrySchema,
)
from mobile_appgen.jobs.service import (
    get_build_stats,
    get_job_logs,
    get_job_status,
    list_job_summaries,
)
from mobile_appgen.jobs.store import JobNotFoundError, RecordStore
from mobile_appgen.scheduler import BuildScheduler
from mobile_appgen.types import JobStatus, Platform
from web.deps import get_artifacts, get_scheduler, get_store

router = APIRouter()


def _not_found(e: JobNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={"code": e.code, "message": str(e)},
    )


@router.post("", status_code=http_status.HTTP_201_CREATED)
def submit_build(
    request: BuildRequest,
    scheduler: BuildScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Submit a build job.

    The job is queued immediately; it never fails for lack of capacity.
    """
    job_id = scheduler.submit(request)
    return {"id": job_id, "status": JobStatus.QUEUED.value}


@router.get("")
def list_builds_endpoint(
    app_id: str | None = Query(None, description="Filter by app ID"),
    user_id: str | None = Query(None, description="Filter by user ID"),
    status: str | None = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum results"),
    store: RecordStore = Depends(get_store),
) -> list[JobSummary]:
    """List build jobs, newest first."""
    status_filter: JobStatus | None = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in JobStatus)
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "invalid_status",
                    "message": f"Invalid status: {status}. Valid values: {valid}",
                },
            ) from None

    return list_job_summaries(
        store, app_id=app_id, user_id=user_id, status=status_filter, limit=limit
    )


@router.get("/stats")
def build_stats(
    user_id: str | None = Query(None, description="Restrict to one user"),
    store: RecordStore = Depends(get_store),
) -> dict[str, int]:
    """Count builds per status."""
    return get_build_stats(store, user_id=user_id)


@router.get("/{job_id}")
def get_build(
    job_id: str,
    store: RecordStore = Depends(get_store),
) -> JobStatusResponse:
    """Get the full status of a build job."""
    try:
        return get_job_status(store, job_id)
    except JobNotFoundError as e:
        raise _not_found(e) from None


@router.get("/{job_id}/logs")
def get_build_logs(
    job_id: str,
    store: RecordStore = Depends(get_store),
) -> list[LogEntrySchema]:
    """Get the log entries of a build job."""
    try:
        return get_job_logs(store, job_id)
    except JobNotFoundError as e:
        raise _not_found(e) from None


@router.post("/{job_id}/cancel")
def cancel_build(
    job_id: str,
    scheduler: BuildScheduler = Depends(get_scheduler),
) -> CancelResult:
    """Cancel a build job.

    Returns `cancelled: false` for unknown or already finished jobs.
    """
    return CancelResult(cancelled=scheduler.cancel(job_id))


@router.get("/{job_id}/download")
def download_build(
    job_id: str,
    platform: Platform | None = Query(
        None, description="Platform to download (android first by default)"
    ),
    store: RecordStore = Depends(get_store),
    artifacts: ArtifactManager = Depends(get_artifacts),
) -> FileResponse:
    """Download the stored package of a completed build."""
    job = store.get_job(job_id)
    if job is None:
        raise _not_found(JobNotFoundError(job_id))
    if job.job_status is not JobStatus.COMPLETED:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail={
                "code": "build_not_completed",
                "message": f"Build {job_id} is {job.status}, not completed",
            },
        )

    candidates = [platform] if platform is not None else DOWNLOAD_PREFERENCE
    for candidate in candidates:
        path = artifacts.path_for(job_id, candidate)
        if path is not None:
            return FileResponse(
                path,
                media_type="application/octet-stream",
                filename=path.name,
            )

    raise HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={
            "code": "artifact_not_found",
            "message": f"No artifact available for build {job_id}",
        },
    )
