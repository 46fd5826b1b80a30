"""Configuration endpoints."""

from typing import Any

from fastapi import APIRouter

from mobile_appgen.config import get_settings

router = APIRouter()


@router.get("")
def get_config() -> dict[str, Any]:
    """Get effective configuration.

    Returns:
        Current configuration as JSON.
    """
    settings = get_settings()
    return {
        "template_dir": str(settings.template_dir),
        "workspaces_dir": str(settings.workspaces_dir),
        "artifacts_dir": str(settings.artifacts_dir),
        "artifacts_base_url": settings.artifacts_base_url,
        "db_url": settings.db_url,
        "log_level": settings.log_level,
        "max_concurrent_builds": settings.max_concurrent_builds,
        "build_timeout": settings.build_timeout,
        "install_timeout": settings.install_timeout,
        "terminate_grace_period": settings.terminate_grace_period,
        "heartbeat_interval": settings.heartbeat_interval,
        "orphan_timeout": settings.orphan_timeout,
        "keep_workspaces": settings.keep_workspaces,
        "ios_enabled": settings.ios_enabled,
    }
