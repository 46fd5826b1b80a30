"""Job state machine and job logger.

States::

    queued -> building -> {completed | failed | cancelled}
    queued -> {failed | cancelled}

``completed``, ``failed`` and ``cancelled`` are terminal. Every transition
appends exactly one log entry describing its cause; phases inside
``building`` (workspace setup, dependency install, per-platform builds)
are plain log entries, not states.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from mobile_appgen.types import ArtifactInfo, JobStatus, LogEntry, LogLevel

if TYPE_CHECKING:
    from mobile_appgen.jobs.store import RecordStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset(
        {JobStatus.BUILDING, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.BUILDING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

_TRANSITION_LEVELS = {
    JobStatus.FAILED: LogLevel.ERROR,
    JobStatus.CANCELLED: LogLevel.WARN,
}

_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class InvalidTransitionError(Exception):
    """Raised when a status change would move a job backwards."""

    def __init__(
        self,
        job_id: str,
        current: JobStatus,
        target: JobStatus,
        code: str = "invalid_transition",
    ) -> None:
        super().__init__(
            f"Job {job_id}: cannot transition from {current.value} to {target.value}"
        )
        self.job_id = job_id
        self.current = current
        self.target = target
        self.code = code


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Check whether moving from `current` to `target` is allowed."""
    return target in ALLOWED_TRANSITIONS[current]


class JobTracker:
    """Applies status transitions and appends job log entries.

    All writes go through the record store. A tracker is shared by the
    scheduler and the pipeline; per-job ordering is guaranteed by the
    fact that only the worker owning a job writes to it.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        cause: str,
        error: str | None = None,
        error_type: str | None = None,
    ) -> None:
        """Move a job to `status` and log the cause.

        Args:
            job_id: Job identifier.
            status: Target status.
            cause: Human-readable description of why the transition happens.
            error: Failure description (failed only).
            error_type: Stable failure code (failed only).

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if status is not JobStatus.FAILED:
            error = None
            error_type = None
        self.store.update_status(job_id, status, error=error, error_type=error_type)
        self._append(job_id, _TRANSITION_LEVELS.get(status, LogLevel.INFO), cause)

    def complete(self, job_id: str, artifacts: list[ArtifactInfo], cause: str) -> None:
        """Record the artifacts and mark the job completed in one step.

        Raises:
            InvalidTransitionError: If the job is not building.
        """
        self.store.complete_job(job_id, artifacts)
        self._append(job_id, LogLevel.INFO, cause)

    def info(self, job_id: str, message: str) -> None:
        """Append an info entry."""
        self._append(job_id, LogLevel.INFO, message)

    def warn(self, job_id: str, message: str) -> None:
        """Append a warning entry."""
        self._append(job_id, LogLevel.WARN, message)

    def error(self, job_id: str, message: str) -> None:
        """Append an error entry."""
        self._append(job_id, LogLevel.ERROR, message)

    def _append(self, job_id: str, level: LogLevel, message: str) -> None:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc), level=level, message=message
        )
        self.store.append_log(job_id, entry)
        logger.log(_LOGGING_LEVELS[level], "[job %s] %s", job_id, message)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "JobTracker",
    "can_transition",
]
