"""FastAPI application factory and main app.

This module creates the FastAPI application with all routers and
dependency injection configured. The build engine (record store,
pipeline and scheduler) is created in the lifespan and kept on
`app.state.services`.

Web routes are thin proxies to core APIs.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mobile_appgen import __version__
from mobile_appgen.config import configure_logging, get_settings
from mobile_appgen.jobs.service import BuildServices
from web.routers import builds, config, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager.

    Creates the build engine (unless one was injected), starts the worker
    pool on startup and stops it on shutdown.
    """
    services: BuildServices | None = getattr(app.state, "services", None)
    if services is None:
        settings = get_settings()
        configure_logging(settings.log_level)
        services = BuildServices.from_settings(settings)
        app.state.services = services

    if not services.scheduler.is_running:
        services.scheduler.start()
    try:
        yield
    finally:
        services.scheduler.shutdown(wait=True, cancel_running=True)


def create_app(services: BuildServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Pre-built engine to serve (created from settings if None).

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="Mobile App Generator API",
        description="HTTP API for submitting and tracking mobile app builds",
        version=__version__,
        lifespan=lifespan,
    )
    if services is not None:
        application.state.services = services

    # Include routers
    application.include_router(health.router, tags=["health"])
    application.include_router(config.router, prefix="/config", tags=["config"])
    application.include_router(builds.router, prefix="/builds", tags=["builds"])

    return application


# Create the default application instance
app = create_app()
