"""Common driver interface for native platform builds."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from mobile_appgen.drivers.process import (
    CancelHandle,
    ProcessResult,
    ProcessRunner,
    ProcessStartError,
    read_log_tail,
)
from mobile_appgen.types import BuildType, Platform

logger = logging.getLogger(__name__)

BUILD_LOG_NAME = "build.log"


class DriverError(Exception):
    """Raised when a platform build fails.

    Attributes:
        platform: Platform whose build failed.
        code: Stable error code (build_failed, tool_missing, artifact_not_found).
        exit_code: Exit code of the failing command, if any.
    """

    def __init__(
        self,
        message: str,
        platform: Platform,
        code: str = "build_failed",
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.code = code
        self.exit_code = exit_code


class PlatformDriver(ABC):
    """Invokes one platform's native toolchain and locates its output.

    Args:
        runner: Process runner used for every external command.
        npx_command: npx executable used for `cap sync`.
    """

    platform: Platform

    def __init__(self, runner: ProcessRunner, npx_command: str = "npx") -> None:
        self.runner = runner
        self.npx_command = npx_command

    def is_available(self) -> bool:
        """Whether this host can build the platform."""
        return True

    @property
    def unavailable_reason(self) -> str:
        """Message logged when the platform is skipped."""
        return f"{self.platform.value} toolchain is not available on this host"

    @abstractmethod
    def build(
        self,
        workspace: Path,
        build_type: BuildType,
        handle: CancelHandle | None = None,
        log_path: Path | None = None,
    ) -> Path:
        """Build the platform package and return its path.

        Raises:
            DriverError: If any step fails or no package is produced.
            BuildCancelledError: If the job is cancelled mid-build.
        """

    def sync(
        self, workspace: Path, handle: CancelHandle | None, log_path: Path
    ) -> None:
        """Synchronise the native wrapper project with the web assets."""
        self.run_step(
            [self.npx_command, "cap", "sync", self.platform.value],
            cwd=workspace,
            handle=handle,
            log_path=log_path,
            step=f"cap sync {self.platform.value}",
        )

    def run_step(
        self,
        cmd: list[str],
        cwd: Path,
        handle: CancelHandle | None,
        log_path: Path,
        step: str,
        env: dict[str, str] | None = None,
    ) -> ProcessResult:
        """Run one command, converting failures into DriverError.

        The error message carries the tail of the tool output, which is the
        most specific description of what went wrong.
        """
        try:
            result = self.runner.run(
                cmd, cwd=cwd, log_path=log_path, handle=handle, env=env
            )
        except ProcessStartError as e:
            raise DriverError(
                f"{self.platform.value} {step} could not start: {e}",
                platform=self.platform,
                code=e.code,
            ) from e

        if not result.success:
            tail = read_log_tail(log_path, lines=15)
            message = f"{self.platform.value} {step} failed with exit code {result.exit_code}"
            if tail:
                message = f"{message}:\n{tail}"
            raise DriverError(message, platform=self.platform, exit_code=result.exit_code)
        return result

    @staticmethod
    def default_log_path(workspace: Path) -> Path:
        """Log file used when the caller does not supply one."""
        return workspace / BUILD_LOG_NAME


__all__ = ["BUILD_LOG_NAME", "DriverError", "PlatformDriver"]
