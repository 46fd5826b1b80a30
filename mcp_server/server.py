"""MCP server implementation.

This module creates the FastMCP server and registers all tools.
Tools are thin wrappers around the mobile_appgen build services.

- Submissions are admitted to the same FIFO queue as the HTTP API
- Return structured errors with codes
- The engine is created and started on first use
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Annotated, Any

from mcp.server.fastmcp import FastMCP
from pydantic import Field, ValidationError

from mcp_server.errors import (
    INTERNAL_ERROR,
    artifact_not_found,
    build_not_completed,
    job_not_found,
    make_error,
    validation_error,
)
from mcp_server.schemas import (
    CancelBuildResponse,
    GetArtifactResponse,
    GetBuildResponse,
    ListBuildsResponse,
    SubmitBuildResponse,
)

if TYPE_CHECKING:
    from mobile_appgen.jobs.service import BuildServices

logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP(
    name="mobile-appgen",
)

_services: BuildServices | None = None
_services_lock = threading.Lock()


def _get_services() -> BuildServices:
    """Get the process-wide build services, starting the scheduler once.

    Returns:
        Started BuildServices.
    """
    global _services
    from mobile_appgen.config import get_settings
    from mobile_appgen.jobs.service import BuildServices

    with _services_lock:
        if _services is None:
            _services = BuildServices.from_settings(get_settings())
        if not _services.scheduler.is_running:
            _services.scheduler.start()
        return _services


def set_services(services: BuildServices | None) -> None:
    """Replace the process-wide build services (None resets)."""
    global _services
    with _services_lock:
        _services = services


@mcp.tool()
def submit_build(
    app_id: Annotated[str, Field(description="External app identifier")],
    user_id: Annotated[str, Field(description="External user identifier")],
    platform: Annotated[
        str, Field(description="Target platform: android, ios or both")
    ],
    config_snapshot: Annotated[
        dict[str, Any],
        Field(description="App configuration (app, firebase, appsflyer, features, styling)"),
    ],
    build_type: Annotated[
        str, Field(description="Build variant: debug or release")
    ] = "debug",
) -> SubmitBuildResponse:
    """Submit a mobile app build.

    The job is queued immediately and built in the background. Poll
    get_build with the returned id to follow progress.

    Returns:
        SubmitBuildResponse with the new job id or error.
    """
    from mobile_appgen.jobs.schema import BuildRequest

    try:
        request = BuildRequest(
            app_id=app_id,
            user_id=user_id,
            platform=platform,
            build_type=build_type,
            config_snapshot=config_snapshot,
        )
    except ValidationError as e:
        error = validation_error(
            "Invalid build request", details={"errors": e.errors(include_url=False)}
        )
        return SubmitBuildResponse(success=False, error=error.to_dict())

    try:
        services = _get_services()
        job_id = services.scheduler.submit(request)
        return SubmitBuildResponse(success=True, id=job_id, status="queued")

    except Exception as e:
        logger.exception("submit_build failed")
        error = make_error(INTERNAL_ERROR, str(e))
        return SubmitBuildResponse(success=False, error=error.to_dict())


@mcp.tool()
def get_build(
    job_id: Annotated[str, Field(description="Build job ID")],
) -> GetBuildResponse:
    """Get status, logs and artifact references of a build job.

    Returns:
        GetBuildResponse with job details or error.
    """
    from mobile_appgen.jobs.service import get_job_status
    from mobile_appgen.jobs.store import JobNotFoundError

    try:
        services = _get_services()
        build = get_job_status(services.store, job_id)
        return GetBuildResponse(success=True, build=build)

    except JobNotFoundError:
        return GetBuildResponse(success=False, error=job_not_found(job_id).to_dict())
    except Exception as e:
        logger.exception("get_build failed")
        error = make_error(INTERNAL_ERROR, str(e))
        return GetBuildResponse(success=False, error=error.to_dict())


@mcp.tool()
def list_builds(
    app_id: Annotated[str | None, Field(description="Filter by app ID")] = None,
    user_id: Annotated[str | None, Field(description="Filter by user ID")] = None,
    status: Annotated[
        str | None,
        Field(description="Filter by status (queued, building, completed, failed, cancelled)"),
    ] = None,
    limit: Annotated[
        int, Field(description="Maximum results to return", ge=1, le=1000)
    ] = 50,
) -> ListBuildsResponse:
    """List build jobs, newest first.

    Returns:
        ListBuildsResponse with job summaries or error.
    """
    from mobile_appgen.jobs.service import list_job_summaries
    from mobile_appgen.types import JobStatus

    status_filter = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in JobStatus)
            error = validation_error(f"Invalid status '{status}'. Valid: {valid}")
            return ListBuildsResponse(
                success=False, builds=[], total=0, error=error.to_dict()
            )

    try:
        services = _get_services()
        builds = list_job_summaries(
            services.store,
            app_id=app_id,
            user_id=user_id,
            status=status_filter,
            limit=limit,
        )
        return ListBuildsResponse(success=True, builds=builds, total=len(builds))

    except Exception as e:
        logger.exception("list_builds failed")
        error = make_error(INTERNAL_ERROR, str(e))
        return ListBuildsResponse(
            success=False, builds=[], total=0, error=error.to_dict()
        )


@mcp.tool()
def cancel_build(
    job_id: Annotated[str, Field(description="Build job ID")],
) -> CancelBuildResponse:
    """Cancel a queued or running build job.

    Cancelling a job that already finished is not an error; the response
    reports `cancelled: false`.

    Returns:
        CancelBuildResponse indicating whether the job was cancelled.
    """
    try:
        services = _get_services()
        if services.store.get_job(job_id) is None:
            return CancelBuildResponse(
                success=False, id=job_id, error=job_not_found(job_id).to_dict()
            )
        cancelled = services.scheduler.cancel(job_id)
        return CancelBuildResponse(success=True, id=job_id, cancelled=cancelled)

    except Exception as e:
        logger.exception("cancel_build failed")
        error = make_error(INTERNAL_ERROR, str(e))
        return CancelBuildResponse(success=False, id=job_id, error=error.to_dict())


@mcp.tool()
def get_artifact(
    job_id: Annotated[str, Field(description="Build job ID")],
    platform: Annotated[
        str | None,
        Field(description="android or ios (default: first available, android first)"),
    ] = None,
) -> GetArtifactResponse:
    """Resolve the download reference of a completed build's package.

    Returns:
        GetArtifactResponse with the artifact reference or error.
    """
    from mobile_appgen.types import JobStatus, Platform

    if platform is not None and platform not in (Platform.ANDROID, Platform.IOS):
        error = validation_error(f"Invalid platform '{platform}'. Valid: android, ios")
        return GetArtifactResponse(success=False, id=job_id, error=error.to_dict())

    try:
        services = _get_services()
        job = services.store.get_job(job_id)
        if job is None:
            return GetArtifactResponse(
                success=False, id=job_id, error=job_not_found(job_id).to_dict()
            )
        if job.job_status is not JobStatus.COMPLETED:
            error = build_not_completed(job_id, job.status)
            return GetArtifactResponse(success=False, id=job_id, error=error.to_dict())

        artifacts = job.artifact_map()
        if platform is None:
            platform = next(
                (p.value for p in (Platform.ANDROID, Platform.IOS) if p.value in artifacts),
                None,
            )
        if platform is None or platform not in artifacts:
            error = artifact_not_found(job_id, platform)
            return GetArtifactResponse(success=False, id=job_id, error=error.to_dict())

        return GetArtifactResponse(
            success=True,
            id=job_id,
            platform=platform,
            reference=artifacts[platform],
        )

    except Exception as e:
        logger.exception("get_artifact failed")
        error = make_error(INTERNAL_ERROR, str(e))
        return GetArtifactResponse(success=False, id=job_id, error=error.to_dict())


__all__ = [
    "cancel_build",
    "get_artifact",
    "get_build",
    "list_builds",
    "mcp",
    "set_services",
    "submit_build",
]
