"""Build job ORM models.

This module defines the BuildJob, BuildLogEntry and StoredArtifact models
that make up the record of one build request and its lifecycle.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mobile_appgen.db import Base
from mobile_appgen.types import JobStatus


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Return a fresh, never reused job identifier."""
    return uuid.uuid4().hex


class BuildJob(Base):
    """ORM model for a build job.

    A BuildJob captures one submission: the immutable request fields and
    configuration snapshot, the current status, timing, and the terminal
    error. Logs and artifacts hang off it as child rows.

    Attributes:
        id: Opaque job identifier (uuid4 hex).
        app_id: External app reference.
        user_id: External user reference.
        platform: Requested platform (android, ios, both).
        build_type: Requested build type (debug, release).
        config_snapshot: Copy of the app configuration at submission.
        status: Job status (queued, building, completed, failed, cancelled).
        error: Human-readable failure description.
        error_type: Stable failure code.
        workspace_path: Working directory while (or if retained after) building.
        owner: Id of the engine that claimed the job for building.
        heartbeat_at: Last time the owning engine reported the job alive.
        created_at: Submission time.
        started_at: Time the job entered building.
        completed_at: Time the job reached a terminal state.
    """

    __tablename__ = "build_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_job_id)

    app_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    build_type: Mapped[str] = mapped_column(String(16), nullable=False)
    config_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED.value, index=True
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    workspace_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    owner: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    logs: Mapped[list["BuildLogEntry"]] = relationship(
        "BuildLogEntry",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="BuildLogEntry.seq",
    )
    artifacts: Mapped[list["StoredArtifact"]] = relationship(
        "StoredArtifact", back_populates="job", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_build_jobs_app_status", "app_id", "status"),)

    def __repr__(self) -> str:
        """Return string representation of BuildJob."""
        return (
            f"<BuildJob(id='{self.id}', app_id='{self.app_id}', "
            f"platform='{self.platform}', status='{self.status}')>"
        )

    @property
    def job_status(self) -> JobStatus:
        """Status as an enum."""
        return JobStatus(self.status)

    def is_terminal(self) -> bool:
        """Check if this job reached a terminal state."""
        return self.job_status.is_terminal

    def artifact_map(self) -> dict[str, str]:
        """Return the platform -> reference mapping."""
        return {a.platform: a.reference for a in self.artifacts}


class BuildLogEntry(Base):
    """ORM model for one append-only job log entry.

    Entries are ordered by `seq`, an auto-increment key assigned at insert
    time, so emission order is preserved even for equal timestamps.
    """

    __tablename__ = "build_logs"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("build_jobs.id"), nullable=False, index=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    job: Mapped["BuildJob"] = relationship("BuildJob", back_populates="logs")

    def __repr__(self) -> str:
        """Return string representation of BuildLogEntry."""
        return f"<BuildLogEntry(job_id='{self.job_id}', level='{self.level}')>"


class StoredArtifact(Base):
    """ORM model for a stored platform package.

    Attributes:
        id: Primary key.
        job_id: Foreign key to BuildJob.
        platform: Platform that produced the package (android, ios).
        reference: Opaque download reference (URL or absolute path).
        filename: Stored filename.
        size_bytes: File size in bytes.
        sha256: SHA-256 hash of the file.
    """

    __tablename__ = "artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("build_jobs.id"), nullable=False, index=True
    )
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    reference: Mapped[str] = mapped_column(String(500), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    job: Mapped["BuildJob"] = relationship("BuildJob", back_populates="artifacts")

    __table_args__ = (UniqueConstraint("job_id", "platform"),)

    def __repr__(self) -> str:
        """Return string representation of StoredArtifact."""
        return (
            f"<StoredArtifact(job_id='{self.job_id}', platform='{self.platform}', "
            f"filename='{self.filename}')>"
        )


__all__ = ["BuildJob", "BuildLogEntry", "StoredArtifact", "new_job_id", "utcnow"]
