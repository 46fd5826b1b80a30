"""Error definitions for MCP tools.

This module defines structured error types with stable codes
that can be surfaced to MCP clients.
"""

from dataclasses import dataclass
from typing import Any

VALIDATION_ERROR = "validation"
JOB_NOT_FOUND = "job_not_found"
ARTIFACT_NOT_FOUND = "artifact_not_found"
BUILD_NOT_COMPLETED = "build_not_completed"
INTERNAL_ERROR = "internal_error"


@dataclass
class MCPError:
    """Structured error response for MCP tools.

    Attributes:
        code: Stable error code for programmatic handling.
        message: Human-readable error message.
        details: Optional additional error details.
    """

    code: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


def make_error(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> MCPError:
    """Create an MCPError instance."""
    return MCPError(code=code, message=message, details=details)


def validation_error(message: str, details: dict[str, Any] | None = None) -> MCPError:
    """Create a validation error."""
    return make_error(VALIDATION_ERROR, message, details)


def job_not_found(job_id: str) -> MCPError:
    """Create a job not found error."""
    return make_error(
        JOB_NOT_FOUND,
        f"Job not found: {job_id}",
        details={"job_id": job_id},
    )


def artifact_not_found(job_id: str, platform: str | None = None) -> MCPError:
    """Create an artifact not found error."""
    target = f"{platform} artifact" if platform else "artifact"
    return make_error(
        ARTIFACT_NOT_FOUND,
        f"No {target} for job {job_id}",
        details={"job_id": job_id, "platform": platform},
    )


def build_not_completed(job_id: str, status: str) -> MCPError:
    """Create an error for artifact lookups on unfinished builds."""
    return make_error(
        BUILD_NOT_COMPLETED,
        f"Job {job_id} is {status}, not completed",
        details={"job_id": job_id, "status": status},
    )


__all__ = [
    "ARTIFACT_NOT_FOUND",
    "BUILD_NOT_COMPLETED",
    "INTERNAL_ERROR",
    "JOB_NOT_FOUND",
    "VALIDATION_ERROR",
    "MCPError",
    "artifact_not_found",
    "build_not_completed",
    "job_not_found",
    "make_error",
    "validation_error",
]
