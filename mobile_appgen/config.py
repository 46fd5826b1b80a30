"""Configuration settings for mobile_appgen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "mobile-appgen"


def _default_template_dir() -> Path:
    """Return the default mobile template directory."""
    return Path.cwd() / "mobile-template"


def _default_workspaces_dir() -> Path:
    """Return the default jobs working root."""
    return _default_data_dir() / "workspaces"


def _default_artifacts_dir() -> Path:
    """Return the default artifacts directory."""
    return _default_data_dir() / "artifacts"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the APPGEN_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="APPGEN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    template_dir: Path = Field(
        default_factory=_default_template_dir,
        description="Read-only Capacitor project template",
    )
    workspaces_dir: Path = Field(
        default_factory=_default_workspaces_dir,
        description="Root directory for per-job working copies",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Root directory for stored build artifacts",
    )
    artifacts_base_url: str | None = Field(
        default="/downloads",
        description="URL prefix for artifact references (absolute paths if unset)",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Maximum concurrently executing build jobs",
    )

    # Timeouts (in seconds)
    build_timeout: int = Field(
        default=3600,
        ge=1,
        description="Maximum wall-clock duration of one build job",
    )
    install_timeout: int = Field(
        default=1200,
        ge=1,
        description="Timeout for dependency installation",
    )
    terminate_grace_period: float = Field(
        default=10.0,
        gt=0,
        description="Seconds between SIGTERM and SIGKILL when stopping a build",
    )
    heartbeat_interval: float = Field(
        default=15.0,
        gt=0,
        description="Seconds between heartbeats on jobs this engine is building",
    )
    orphan_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Heartbeat age after which another engine's building job is failed",
    )

    # Workspace retention
    keep_workspaces: bool = Field(
        default=False,
        description="Keep job workspaces after completion for diagnostics",
    )
    workspace_retention_hours: int = Field(
        default=24,
        ge=1,
        description="Age after which stale workspaces are pruned",
    )

    # External tools
    install_command: list[str] = Field(
        default_factory=lambda: ["npm", "install", "--legacy-peer-deps"],
        description="Dependency install command run in each workspace",
    )
    web_build_command: list[str] = Field(
        default_factory=lambda: ["npm", "run", "build"],
        description="Web asset build command (run when a build script exists)",
    )
    npx_command: str = Field(
        default="npx",
        description="npx executable used for Capacitor sync",
    )
    ios_enabled: bool | None = Field(
        default=None,
        description="Force iOS builds on/off (auto-detect when unset)",
    )

    @model_validator(mode="after")
    def check_orphan_timeout(self) -> "Settings":
        if self.orphan_timeout <= self.heartbeat_interval:
            raise ValueError("orphan_timeout must exceed heartbeat_interval")
        return self


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for CLI and server entry points.

    Args:
        level: Log level name; uses settings default if not provided.
    """
    if level is None:
        level = get_settings().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s %(message)s",
    )


__all__ = ["Settings", "configure_logging", "get_settings", "print_settings_json"]
