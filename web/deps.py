"""Build engine dependencies for FastAPI.

Route handlers receive the record store, scheduler and artifact manager
created in the application lifespan through these dependencies.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, Request

from mobile_appgen.artifacts import ArtifactManager
from mobile_appgen.jobs.service import BuildServices
from mobile_appgen.jobs.store import RecordStore
from mobile_appgen.scheduler import BuildScheduler


def get_services(request: Request) -> BuildServices:
    """Get the build engine from app state."""
    services: Any = request.app.state.services
    return services  # type: ignore[no-any-return]


def get_store(services: BuildServices = Depends(get_services)) -> RecordStore:
    """Record store holding the build jobs."""
    return services.store


def get_scheduler(services: BuildServices = Depends(get_services)) -> BuildScheduler:
    """Scheduler that owns the build queue."""
    return services.scheduler


def get_artifacts(services: BuildServices = Depends(get_services)) -> ArtifactManager:
    """Artifact manager for download lookups."""
    return services.artifacts
