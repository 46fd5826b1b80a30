"""Pydantic schemas for MCP tool responses.

These schemas define the structured output formats for MCP tools,
ensuring consistent JSON responses across all tools.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from mobile_appgen.jobs.schema import JobStatusResponse, JobSummary


class SubmitBuildResponse(BaseModel):
    """Response for submit_build tool."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    id: str | None = None
    status: str | None = None
    error: dict[str, Any] | None = None


class GetBuildResponse(BaseModel):
    """Response for get_build tool."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    build: JobStatusResponse | None = None
    error: dict[str, Any] | None = None


class ListBuildsResponse(BaseModel):
    """Response for list_builds tool."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    builds: list[JobSummary]
    total: int
    error: dict[str, Any] | None = None


class CancelBuildResponse(BaseModel):
    """Response for cancel_build tool."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    id: str
    cancelled: bool = False
    error: dict[str, Any] | None = None


class GetArtifactResponse(BaseModel):
    """Response for get_artifact tool."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    id: str
    platform: str | None = None
    reference: str | None = None
    error: dict[str, Any] | None = None


__all__ = [
    "CancelBuildResponse",
    "GetArtifactResponse",
    "GetBuildResponse",
    "ListBuildsResponse",
    "SubmitBuildResponse",
]
