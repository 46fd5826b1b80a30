"""Per-job workspace management.

This module handles:
- Validating that the project template exists
- Copying the template into an isolated directory per job
- Installing dependencies and building the web assets in the workspace
- Reclaiming workspaces after a job (unless diagnostic retention is on)
- Pruning orphaned workspaces left behind by crashed processes
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from pathlib import Path

from mobile_appgen.drivers.process import (
    CancelHandle,
    ProcessRunner,
    ProcessStartError,
    read_log_tail,
)

logger = logging.getLogger(__name__)

# Never copied from the template: dependencies and native build outputs
IGNORED_TEMPLATE_ENTRIES = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".gradle",
    "Pods",
    "DerivedData",
)

DEFAULT_INSTALL_COMMAND = ["npm", "install", "--legacy-peer-deps"]
DEFAULT_WEB_BUILD_COMMAND = ["npm", "run", "build"]


class PreconditionError(Exception):
    """Raised when a job cannot start (e.g. the template is missing)."""

    def __init__(self, message: str, code: str = "precondition_failed") -> None:
        super().__init__(message)
        self.code = code


class WorkspaceError(Exception):
    """Raised when workspace setup fails."""

    def __init__(self, message: str, code: str = "setup_failed") -> None:
        super().__init__(message)
        self.code = code


class WorkspaceManager:
    """Creates, prepares and reclaims job workspaces.

    Args:
        template_dir: Read-only project template.
        workspaces_dir: Root under which per-job workspaces are created.
        runner: Process runner for install/build commands.
        install_command: Dependency install command.
        web_build_command: Web asset build command.
        install_timeout: Step timeout for the install command, in seconds.
        keep_workspaces: Retain workspaces after jobs finish.
    """

    def __init__(
        self,
        template_dir: Path,
        workspaces_dir: Path,
        runner: ProcessRunner,
        install_command: list[str] | None = None,
        web_build_command: list[str] | None = None,
        install_timeout: float | None = None,
        keep_workspaces: bool = False,
    ) -> None:
        self.template_dir = template_dir
        self.workspaces_dir = workspaces_dir
        self.runner = runner
        self.install_command = list(install_command or DEFAULT_INSTALL_COMMAND)
        self.web_build_command = list(web_build_command or DEFAULT_WEB_BUILD_COMMAND)
        self.install_timeout = install_timeout
        self.keep_workspaces = keep_workspaces

    def validate_template(self) -> None:
        """Check that the template directory exists.

        Raises:
            PreconditionError: If the template is missing.
        """
        if not self.template_dir.is_dir():
            raise PreconditionError(
                f"Mobile template not found at {self.template_dir}"
            )

    def workspace_path(self, job_id: str) -> Path:
        """Return the workspace location for a job."""
        return self.workspaces_dir / job_id

    def prepare(self, job_id: str) -> Path:
        """Copy the template into a fresh workspace for a job.

        Args:
            job_id: Job identifier (names the workspace directory).

        Returns:
            Path to the new workspace.

        Raises:
            PreconditionError: If the template is missing.
            WorkspaceError: If the workspace already exists or copying fails.
        """
        self.validate_template()
        workspace = self.workspace_path(job_id)
        if workspace.exists():
            raise WorkspaceError(f"Workspace already exists: {workspace}")

        self.workspaces_dir.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copytree(
                self.template_dir,
                workspace,
                ignore=shutil.ignore_patterns(*IGNORED_TEMPLATE_ENTRIES),
            )
        except (OSError, shutil.Error) as e:
            raise WorkspaceError(
                f"Failed to copy template into {workspace}: {e}"
            ) from e

        logger.info("Prepared workspace %s", workspace)
        return workspace

    def install_dependencies(
        self, workspace: Path, log_path: Path, handle: CancelHandle | None = None
    ) -> None:
        """Install the project dependencies.

        Raises:
            WorkspaceError: If the install command fails or cannot start.
            BuildCancelledError: If the job is cancelled meanwhile.
        """
        self._run(
            self.install_command,
            workspace,
            log_path,
            handle,
            step="Dependency installation",
            timeout=self.install_timeout,
        )

    def has_web_build(self, workspace: Path) -> bool:
        """Whether package.json declares a `build` script."""
        package_json = workspace / "package.json"
        if not package_json.is_file():
            return False
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return False
        scripts = data.get("scripts") if isinstance(data, dict) else None
        return isinstance(scripts, dict) and "build" in scripts

    def build_web_assets(
        self, workspace: Path, log_path: Path, handle: CancelHandle | None = None
    ) -> bool:
        """Build the web assets when the project has a build script.

        Returns:
            True if the build step ran.

        Raises:
            WorkspaceError: If the build command fails.
        """
        if not self.has_web_build(workspace):
            logger.debug("No build script in %s, skipping web build", workspace)
            return False
        self._run(
            self.web_build_command,
            workspace,
            log_path,
            handle,
            step="Web build",
        )
        return True

    def _run(
        self,
        cmd: list[str],
        workspace: Path,
        log_path: Path,
        handle: CancelHandle | None,
        step: str,
        timeout: float | None = None,
    ) -> None:
        try:
            result = self.runner.run(
                cmd, cwd=workspace, log_path=log_path, handle=handle, timeout=timeout
            )
        except ProcessStartError as e:
            raise WorkspaceError(f"{step} could not start: {e}") from e

        if not result.success:
            reason = (
                f"timed out after {timeout} seconds"
                if result.timed_out
                else f"failed with exit code {result.exit_code}"
            )
            message = f"{step} {reason}"
            tail = read_log_tail(log_path, lines=15)
            if tail:
                message = f"{message}:\n{tail}"
            raise WorkspaceError(message)

    def cleanup(self, workspace: Path, force: bool = False) -> bool:
        """Remove a workspace.

        Errors are logged, never raised.

        Args:
            workspace: Workspace to delete.
            force: Delete even when retention is enabled.

        Returns:
            True if the directory was removed.
        """
        if self.keep_workspaces and not force:
            logger.info("Keeping workspace for diagnostics: %s", workspace)
            return False
        if not workspace.exists():
            return False
        try:
            shutil.rmtree(workspace)
        except OSError as e:
            logger.warning("Failed to clean up workspace %s: %s", workspace, e)
            return False
        logger.debug("Removed workspace %s", workspace)
        return True

    def prune_stale(self, max_age_hours: float) -> list[Path]:
        """Delete workspaces older than `max_age_hours`.

        Returns:
            Workspaces that were removed.
        """
        if not self.workspaces_dir.is_dir():
            return []

        cutoff = time.time() - max_age_hours * 3600
        removed: list[Path] = []
        for entry in sorted(self.workspaces_dir.iterdir()):
            if not entry.is_dir():
                continue
            if entry.stat().st_mtime >= cutoff:
                continue
            if self.cleanup(entry, force=True):
                removed.append(entry)

        if removed:
            logger.info("Pruned %d stale workspaces", len(removed))
        return removed


__all__ = [
    "DEFAULT_INSTALL_COMMAND",
    "DEFAULT_WEB_BUILD_COMMAND",
    "IGNORED_TEMPLATE_ENTRIES",
    "PreconditionError",
    "WorkspaceError",
    "WorkspaceManager",
]
