"""Shared type definitions for mobile_appgen.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    """Status of a build job."""

    QUEUED = "queued"
    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition can occur from this status."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class Platform(str, Enum):
    """Target platform selection for a build request."""

    ANDROID = "android"
    IOS = "ios"
    BOTH = "both"

    def expand(self) -> list["Platform"]:
        """Return the concrete platforms to build, in execution order."""
        if self is Platform.BOTH:
            return [Platform.ANDROID, Platform.IOS]
        return [self]


class BuildType(str, Enum):
    """Native build variant."""

    DEBUG = "debug"
    RELEASE = "release"


class LogLevel(str, Enum):
    """Severity of a job log entry."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorType(str, Enum):
    """Stable error codes recorded on failed jobs."""

    PRECONDITION_FAILED = "precondition_failed"
    SETUP_FAILED = "setup_failed"
    BUILD_FAILED = "build_failed"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


class CancelReason(str, Enum):
    """Why a running job was asked to stop."""

    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


@dataclass
class LogEntry:
    """A single append-only job log entry."""

    timestamp: datetime
    level: LogLevel
    message: str


@dataclass
class ArtifactInfo:
    """Information about a stored build artifact."""

    platform: str
    filename: str
    reference: str
    size_bytes: int
    sha256: str


__all__ = [
    "TERMINAL_STATUSES",
    "ArtifactInfo",
    "BuildType",
    "CancelReason",
    "ErrorType",
    "JobStatus",
    "LogEntry",
    "LogLevel",
    "Platform",
]
