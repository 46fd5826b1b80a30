"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from mobile_appgen.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        data_dir = Path.home() / ".local" / "share" / "mobile-appgen"
        assert settings.workspaces_dir == data_dir / "workspaces"
        assert settings.artifacts_dir == data_dir / "artifacts"
        assert "sqlite" in settings.db_url
        assert settings.log_level == "INFO"
        assert settings.max_concurrent_builds == 2
        assert settings.keep_workspaces is False
        assert settings.ios_enabled is None
        assert settings.install_command == ["npm", "install", "--legacy-peer-deps"]

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "APPGEN_LOG_LEVEL": "DEBUG",
                "APPGEN_MAX_CONCURRENT_BUILDS": "4",
                "APPGEN_BUILD_TIMEOUT": "120",
                "APPGEN_KEEP_WORKSPACES": "true",
                "APPGEN_IOS_ENABLED": "false",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_builds == 4
            assert settings.build_timeout == 120
            assert settings.keep_workspaces is True
            assert settings.ios_enabled is False

    def test_list_settings_from_env_json(self) -> None:
        """List settings should parse JSON arrays from the environment."""
        with patch.dict(
            os.environ,
            {"APPGEN_INSTALL_COMMAND": '["pnpm", "install", "--frozen-lockfile"]'},
        ):
            settings = Settings()
            assert settings.install_command == ["pnpm", "install", "--frozen-lockfile"]

    def test_paths_from_env(self, tmp_path: Path) -> None:
        """Path settings should be read from the environment."""
        with patch.dict(
            os.environ,
            {
                "APPGEN_TEMPLATE_DIR": str(tmp_path / "template"),
                "APPGEN_ARTIFACTS_DIR": str(tmp_path / "artifacts"),
            },
        ):
            settings = Settings()
            assert settings.template_dir == tmp_path / "template"
            assert settings.artifacts_dir == tmp_path / "artifacts"

    def test_max_concurrent_builds_must_be_positive(self) -> None:
        """A pool size of zero should be rejected."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_builds=0)

    def test_heartbeat_settings(self) -> None:
        """Heartbeat and orphan timeouts have defaults and read the environment."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        assert settings.heartbeat_interval == 15.0
        assert settings.orphan_timeout == 120.0

        with patch.dict(
            os.environ,
            {"APPGEN_HEARTBEAT_INTERVAL": "5", "APPGEN_ORPHAN_TIMEOUT": "30"},
        ):
            settings = Settings()
            assert settings.heartbeat_interval == 5.0
            assert settings.orphan_timeout == 30.0

    def test_orphan_timeout_must_exceed_heartbeat(self) -> None:
        """A stale threshold below the heartbeat interval should be rejected."""
        with pytest.raises(ValidationError):
            Settings(heartbeat_interval=30.0, orphan_timeout=20.0)


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings_instance(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_returns_valid_json(self) -> None:
        """print_settings_json should return valid JSON."""
        data = json.loads(print_settings_json())
        assert "template_dir" in data
        assert "db_url" in data
        assert "max_concurrent_builds" in data

    def test_with_custom_settings(self, tmp_path: Path) -> None:
        """print_settings_json should render the given settings."""
        settings = Settings(template_dir=tmp_path / "tpl", build_timeout=60)
        data = json.loads(print_settings_json(settings))
        assert data["template_dir"] == str(tmp_path / "tpl")
        assert data["build_timeout"] == 60
