"""Health check endpoints."""

from fastapi import APIRouter

from mobile_appgen import __version__

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        Health status with version.
    """
    return {"status": "ok", "version": __version__}


@router.get("/")
def root() -> dict[str, str]:
    """Root endpoint."""
    return {"name": "Mobile App Generator API", "version": __version__}
