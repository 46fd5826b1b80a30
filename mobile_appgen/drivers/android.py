"""Android build driver.

Runs `cap sync android`, then the Gradle wrapper with the assemble task
matching the build type, and finally looks for the produced APK in the
conventional Gradle output locations.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from mobile_appgen.drivers.base import DriverError, PlatformDriver
from mobile_appgen.drivers.process import CancelHandle
from mobile_appgen.types import BuildType, Platform

logger = logging.getLogger(__name__)

GRADLE_TASKS = {
    BuildType.DEBUG: "assembleDebug",
    BuildType.RELEASE: "assembleRelease",
}

APK_OUTPUT_DIR = Path("android") / "app" / "build" / "outputs" / "apk"

# Searched in order; the first existing file wins
APK_CANDIDATES = {
    BuildType.DEBUG: [
        Path("debug") / "app-debug.apk",
        Path("release") / "app-release.apk",
        Path("release") / "app-release-unsigned.apk",
    ],
    BuildType.RELEASE: [
        Path("release") / "app-release.apk",
        Path("release") / "app-release-unsigned.apk",
        Path("debug") / "app-debug.apk",
    ],
}


def gradle_command(build_type: BuildType) -> list[str]:
    """Compose the Gradle wrapper invocation for a build type."""
    gradlew = "gradlew.bat" if sys.platform == "win32" else "./gradlew"
    return [gradlew, GRADLE_TASKS[build_type]]


def android_env() -> dict[str, str]:
    """Environment overrides for Gradle (ANDROID_HOME from the SDK root)."""
    sdk = os.environ.get("ANDROID_SDK_ROOT") or os.environ.get("ANDROID_HOME")
    return {"ANDROID_HOME": sdk} if sdk else {}


def find_apk(workspace: Path, build_type: BuildType) -> Path:
    """Locate the APK produced by Gradle.

    Args:
        workspace: Job workspace root.
        build_type: Build type that was requested.

    Returns:
        Path to the first matching APK.

    Raises:
        DriverError: If no candidate exists; the message lists what the
            output directory does contain.
    """
    output_dir = workspace / APK_OUTPUT_DIR
    for candidate in APK_CANDIDATES[build_type]:
        apk_path = output_dir / candidate
        if apk_path.is_file():
            return apk_path

    if not output_dir.is_dir():
        raise DriverError(
            f"APK output directory not found after build: {output_dir}",
            platform=Platform.ANDROID,
            code="artifact_not_found",
        )

    contents = sorted(
        p.relative_to(output_dir).as_posix() for p in output_dir.rglob("*")
    )
    listing = ", ".join(contents) if contents else "(empty)"
    raise DriverError(
        f"APK file not found. Available in outputs/apk: {listing}",
        platform=Platform.ANDROID,
        code="artifact_not_found",
    )


class AndroidDriver(PlatformDriver):
    """Builds an APK with Capacitor and the Gradle wrapper."""

    platform = Platform.ANDROID

    def build(
        self,
        workspace: Path,
        build_type: BuildType,
        handle: CancelHandle | None = None,
        log_path: Path | None = None,
    ) -> Path:
        """Build the Android package.

        Args:
            workspace: Job workspace root.
            build_type: debug or release.
            handle: Cancellation handle of the owning job.
            log_path: Build log file.

        Returns:
            Path to the produced APK inside the workspace.

        Raises:
            DriverError: If sync, Gradle or APK discovery fails.
            BuildCancelledError: If the job is cancelled mid-build.
        """
        log_path = log_path or self.default_log_path(workspace)

        self.sync(workspace, handle, log_path)

        android_dir = workspace / "android"
        if not android_dir.is_dir():
            raise DriverError(
                f"Android project not found after sync: {android_dir}",
                platform=self.platform,
                code="tool_missing",
            )

        self.run_step(
            gradle_command(build_type),
            cwd=android_dir,
            handle=handle,
            log_path=log_path,
            step=f"gradle {GRADLE_TASKS[build_type]}",
            env=android_env(),
        )

        apk_path = find_apk(workspace, build_type)
        logger.info("Found APK: %s", apk_path)
        return apk_path


__all__ = [
    "APK_CANDIDATES",
    "APK_OUTPUT_DIR",
    "GRADLE_TASKS",
    "AndroidDriver",
    "android_env",
    "find_apk",
    "gradle_command",
]
