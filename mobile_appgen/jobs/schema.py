"""Pydantic models for build submission and status responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mobile_appgen.types import BuildType, JobStatus, LogLevel, Platform


class BuildRequest(BaseModel):
    """A build submission.

    Attributes:
        app_id: External app reference (not validated).
        user_id: External user reference (not validated).
        platform: android, ios or both.
        build_type: debug or release.
        config_snapshot: App configuration captured at submission time.
    """

    model_config = ConfigDict(extra="forbid")

    app_id: str = Field(min_length=1, max_length=64)
    user_id: str = Field(min_length=1, max_length=64)
    platform: Platform
    build_type: BuildType = BuildType.DEBUG
    config_snapshot: dict[str, Any] = Field(default_factory=dict)


class LogEntrySchema(BaseModel):
    """One job log entry."""

    model_config = ConfigDict(from_attributes=True)

    timestamp: datetime
    level: LogLevel
    message: str


class JobStatusResponse(BaseModel):
    """Status query response for a job."""

    id: str
    app_id: str
    user_id: str
    platform: Platform
    build_type: BuildType
    status: JobStatus
    logs: list[LogEntrySchema] = Field(default_factory=list)
    artifacts: dict[str, str] = Field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobSummary(BaseModel):
    """Job listing entry (no logs)."""

    id: str
    app_id: str
    user_id: str
    platform: Platform
    build_type: BuildType
    status: JobStatus
    error: str | None = None
    error_type: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    artifacts: dict[str, str] = Field(default_factory=dict)


class CancelResult(BaseModel):
    """Cancellation response."""

    cancelled: bool


__all__ = [
    "BuildRequest",
    "CancelResult",
    "JobStatusResponse",
    "JobSummary",
    "LogEntrySchema",
]
