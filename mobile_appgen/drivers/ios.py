"""iOS build driver.

iOS packaging needs Xcode, so the driver is only available on macOS hosts
with `xcodebuild` on PATH. The build archives the Capacitor App workspace
and exports an IPA.
"""

from __future__ import annotations

import logging
import os
import plistlib
import shutil
import sys
from pathlib import Path

from mobile_appgen.drivers.base import DriverError, PlatformDriver
from mobile_appgen.drivers.process import CancelHandle, ProcessRunner
from mobile_appgen.types import BuildType, Platform

logger = logging.getLogger(__name__)

IOS_PROJECT_DIR = Path("ios") / "App"
IOS_BUILD_DIR = IOS_PROJECT_DIR / "build"
IPA_NAME = "App.ipa"

XCODE_CONFIGURATIONS = {
    BuildType.DEBUG: "Debug",
    BuildType.RELEASE: "Release",
}

EXPORT_METHODS = {
    BuildType.DEBUG: "development",
    BuildType.RELEASE: "ad-hoc",
}


def xcode_env() -> dict[str, str]:
    """Environment overrides for xcodebuild (DEVELOPER_DIR from XCODE_PATH)."""
    xcode_path = os.environ.get("XCODE_PATH")
    return {"DEVELOPER_DIR": xcode_path} if xcode_path else {}


def write_export_options(path: Path, build_type: BuildType) -> Path:
    """Write a minimal ExportOptions.plist for `xcodebuild -exportArchive`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        plistlib.dump(
            {"method": EXPORT_METHODS[build_type], "compileBitcode": False}, f
        )
    return path


def find_ipa(workspace: Path) -> Path:
    """Locate the exported IPA.

    Raises:
        DriverError: If no IPA was produced.
    """
    build_dir = workspace / IOS_BUILD_DIR
    preferred = build_dir / IPA_NAME
    if preferred.is_file():
        return preferred
    if build_dir.is_dir():
        for ipa in sorted(build_dir.rglob("*.ipa")):
            return ipa
    raise DriverError(
        "IPA file not found after build",
        platform=Platform.IOS,
        code="artifact_not_found",
    )


class IOSDriver(PlatformDriver):
    """Builds an IPA with Capacitor and xcodebuild.

    Args:
        runner: Process runner used for every external command.
        npx_command: npx executable used for `cap sync`.
        enabled: Force availability on or off; auto-detected when None.
    """

    platform = Platform.IOS

    def __init__(
        self,
        runner: ProcessRunner,
        npx_command: str = "npx",
        enabled: bool | None = None,
    ) -> None:
        super().__init__(runner, npx_command)
        self.enabled = enabled

    def is_available(self) -> bool:
        """iOS builds need macOS and xcodebuild."""
        if self.enabled is not None:
            return self.enabled
        return sys.platform == "darwin" and shutil.which("xcodebuild") is not None

    @property
    def unavailable_reason(self) -> str:
        """Message logged when iOS is skipped."""
        return "Skipping iOS build (requires macOS)"

    def build(
        self,
        workspace: Path,
        build_type: BuildType,
        handle: CancelHandle | None = None,
        log_path: Path | None = None,
    ) -> Path:
        """Build the iOS package.

        Raises:
            DriverError: If sync, archive, export or IPA discovery fails.
            BuildCancelledError: If the job is cancelled mid-build.
        """
        log_path = log_path or self.default_log_path(workspace)

        self.sync(workspace, handle, log_path)

        project_dir = workspace / IOS_PROJECT_DIR
        build_dir = workspace / IOS_BUILD_DIR
        archive_path = build_dir / "App.xcarchive"
        configuration = XCODE_CONFIGURATIONS[build_type]

        self.run_step(
            [
                "xcodebuild",
                "-workspace",
                str(project_dir / "App.xcworkspace"),
                "-scheme",
                "App",
                "-configuration",
                configuration,
                "-archivePath",
                str(archive_path),
                "archive",
            ],
            cwd=project_dir,
            handle=handle,
            log_path=log_path,
            step=f"xcodebuild archive ({configuration})",
            env=xcode_env(),
        )

        export_options = project_dir / "ExportOptions.plist"
        if not export_options.exists():
            write_export_options(build_dir / "ExportOptions.plist", build_type)
            export_options = build_dir / "ExportOptions.plist"

        self.run_step(
            [
                "xcodebuild",
                "-exportArchive",
                "-archivePath",
                str(archive_path),
                "-exportPath",
                str(build_dir),
                "-exportOptionsPlist",
                str(export_options),
            ],
            cwd=project_dir,
            handle=handle,
            log_path=log_path,
            step="xcodebuild export",
            env=xcode_env(),
        )

        ipa_path = find_ipa(workspace)
        logger.info("Found IPA: %s", ipa_path)
        return ipa_path


__all__ = [
    "EXPORT_METHODS",
    "IOS_BUILD_DIR",
    "XCODE_CONFIGURATIONS",
    "IOSDriver",
    "find_ipa",
    "write_export_options",
    "xcode_env",
]
