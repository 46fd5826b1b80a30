"""End-to-end execution of one build job.

This module handles:
- Precondition checks (template, configuration, platform availability)
- Workspace preparation, dependency install and template customization
- Running the platform drivers and storing their packages
- Mapping every failure onto a terminal job status
- Reclaiming the workspace whatever the outcome

`BuildPipeline.execute` runs on a scheduler worker thread and never raises
for job-level failures; the outcome is recorded on the job.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from mobile_appgen.artifacts import ArtifactError, ArtifactManager
from mobile_appgen.drivers.android import AndroidDriver
from mobile_appgen.drivers.base import BUILD_LOG_NAME, DriverError, PlatformDriver
from mobile_appgen.drivers.ios import IOSDriver
from mobile_appgen.drivers.process import BuildCancelledError, CancelHandle, ProcessRunner
from mobile_appgen.jobs.state import InvalidTransitionError, JobTracker
from mobile_appgen.jobs.store import JobNotFoundError, RecordStore
from mobile_appgen.template.assets import stage_assets
from mobile_appgen.template.customize import (
    CustomizationError,
    TemplateCustomizer,
    check_template,
    validate_snapshot,
)
from mobile_appgen.types import (
    ArtifactInfo,
    BuildType,
    CancelReason,
    ErrorType,
    JobStatus,
    Platform,
)
from mobile_appgen.workspace import PreconditionError, WorkspaceError, WorkspaceManager

if TYPE_CHECKING:
    from mobile_appgen.config import Settings

logger = logging.getLogger(__name__)

# Lower rank wins when choosing the error reported for a failed job
_DRIVER_ERROR_RANK = {
    "build_failed": 0,
    "tool_missing": 1,
    "artifact_not_found": 2,
}


def most_specific_error(errors: list[DriverError]) -> DriverError | None:
    """Pick the error that best explains a failed job.

    Native tool failures (with an exit code and tool output) are preferred
    over missing tools, which are preferred over missing outputs.
    """
    if not errors:
        return None
    return min(
        errors,
        key=lambda e: (
            0 if e.exit_code is not None else 1,
            _DRIVER_ERROR_RANK.get(e.code, len(_DRIVER_ERROR_RANK)),
        ),
    )


class BuildPipeline:
    """Runs build jobs end to end.

    Args:
        store: Record store holding the jobs.
        workspaces: Workspace manager.
        customizer: Template customizer.
        artifacts: Artifact manager.
        drivers: Platform -> driver mapping.
        tracker: Job tracker (one is created over `store` when omitted).
        asset_client: HTTP client used to download URL assets.
        asset_base_path: Base directory for relative asset paths.
    """

    def __init__(
        self,
        store: RecordStore,
        workspaces: WorkspaceManager,
        customizer: TemplateCustomizer,
        artifacts: ArtifactManager,
        drivers: dict[Platform, PlatformDriver],
        tracker: JobTracker | None = None,
        asset_client: httpx.Client | None = None,
        asset_base_path: Path | None = None,
    ) -> None:
        self.store = store
        self.workspaces = workspaces
        self.customizer = customizer
        self.artifacts = artifacts
        self.drivers = drivers
        self.tracker = tracker or JobTracker(store)
        self.asset_client = asset_client
        self.asset_base_path = asset_base_path

    @classmethod
    def from_settings(cls, store: RecordStore, settings: Settings) -> BuildPipeline:
        """Assemble a pipeline from application settings."""
        runner = ProcessRunner(grace_period=settings.terminate_grace_period)
        workspaces = WorkspaceManager(
            template_dir=settings.template_dir,
            workspaces_dir=settings.workspaces_dir,
            runner=runner,
            install_command=settings.install_command,
            web_build_command=settings.web_build_command,
            install_timeout=settings.install_timeout,
            keep_workspaces=settings.keep_workspaces,
        )
        artifacts = ArtifactManager(
            settings.artifacts_dir, store, base_url=settings.artifacts_base_url
        )
        drivers: dict[Platform, PlatformDriver] = {
            Platform.ANDROID: AndroidDriver(runner, npx_command=settings.npx_command),
            Platform.IOS: IOSDriver(
                runner,
                npx_command=settings.npx_command,
                enabled=settings.ios_enabled,
            ),
        }
        return cls(store, workspaces, TemplateCustomizer(), artifacts, drivers)

    def log_path(self, job_id: str) -> Path:
        """Raw tool output file for a job, kept next to its artifacts."""
        return self.artifacts.job_dir(job_id) / BUILD_LOG_NAME

    def execute(self, job_id: str, handle: CancelHandle) -> JobStatus:
        """Run one job to a terminal status.

        Args:
            job_id: Job to run (must be queued).
            handle: Cancellation handle owned by the scheduler.

        Returns:
            The job's terminal status.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.job_status is not JobStatus.QUEUED:
            logger.warning("Job %s is %s, not running it", job_id, job.status)
            return job.job_status

        platforms = Platform(job.platform).expand()
        build_type = BuildType(job.build_type)
        workspace: Path | None = None
        started = False

        try:
            handle.check()
            self._check_preconditions(job_id, job.config_snapshot, platforms)

            try:
                self.tracker.transition(
                    job_id,
                    JobStatus.BUILDING,
                    f"Build started: {job.platform} ({build_type.value})",
                )
            except InvalidTransitionError as e:
                logger.info("Job %s not claimed: %s", job_id, e)
                return self._current_status(job_id)
            started = True

            workspace = self.workspaces.prepare(job_id)
            self.store.set_workspace(job_id, str(workspace))
            self.tracker.info(job_id, "Workspace prepared")

            log_path = self.log_path(job_id)
            handle.check()
            self.tracker.info(job_id, "Installing dependencies")
            self.workspaces.install_dependencies(workspace, log_path, handle)
            self.tracker.info(job_id, "Dependencies installed")

            handle.check()
            self.tracker.info(job_id, "Customizing app configuration")
            self.customizer.customize(workspace, job.config_snapshot)
            self._stage_assets(job_id, workspace, job.config_snapshot)

            if self.workspaces.build_web_assets(workspace, log_path, handle):
                self.tracker.info(job_id, "Web assets built")

            self._build_platforms(job_id, workspace, platforms, build_type, handle)

        except BuildCancelledError as e:
            self._finish_stopped(job_id, e.reason, started)
        except (PreconditionError, CustomizationError, WorkspaceError) as e:
            self._fail(job_id, e.code, str(e))
        except Exception as e:
            logger.exception("Unexpected error while building job %s", job_id)
            self._fail(job_id, ErrorType.INTERNAL_ERROR.value, f"Internal error: {e}")
        finally:
            if workspace is not None:
                self.workspaces.cleanup(workspace)

        return self._current_status(job_id)

    def _current_status(self, job_id: str) -> JobStatus:
        job = self.store.get_job(job_id)
        return job.job_status if job is not None else JobStatus.FAILED

    def _check_preconditions(
        self,
        job_id: str,
        snapshot: dict,
        platforms: list[Platform],
    ) -> None:
        """Validate everything that can be checked before building.

        Raises:
            PreconditionError: If the template is missing or no requested
                platform can be built on this host.
            CustomizationError: If the configuration snapshot is invalid.
        """
        self.workspaces.validate_template()
        check_template(self.workspaces.template_dir)
        validate_snapshot(snapshot)

        available = [p for p in platforms if self._driver_available(p)]
        if not available:
            reasons = [self._unavailable_reason(p) for p in platforms]
            for reason in reasons:
                self.tracker.info(job_id, reason)
            raise PreconditionError("; ".join(reasons))

    def _driver_available(self, platform: Platform) -> bool:
        driver = self.drivers.get(platform)
        return driver is not None and driver.is_available()

    def _unavailable_reason(self, platform: Platform) -> str:
        driver = self.drivers.get(platform)
        if driver is None:
            return f"No build driver configured for {platform.value}"
        return driver.unavailable_reason

    def _stage_assets(self, job_id: str, workspace: Path, snapshot: dict) -> None:
        config = validate_snapshot(snapshot)
        staged = stage_assets(
            workspace,
            config,
            client=self.asset_client,
            base_path=self.asset_base_path,
        )
        for name, reason in staged.skipped.items():
            self.tracker.warn(job_id, f"Skipped {name}: {reason}")
        if staged.staged:
            self.tracker.info(
                job_id, f"Staged assets: {', '.join(sorted(staged.staged))}"
            )

    def _build_platforms(
        self,
        job_id: str,
        workspace: Path,
        platforms: list[Platform],
        build_type: BuildType,
        handle: CancelHandle,
    ) -> None:
        """Run each platform driver and finalise the job.

        A failing platform never aborts the others; the job completes when
        at least one package was produced. Packages are staged as each
        driver finishes but only recorded on the job together with the
        transition to `completed`, so a job stopped midway exposes none.
        """
        log_path = self.log_path(job_id)
        staged: dict[Platform, ArtifactInfo] = {}
        errors: list[DriverError] = []
        skipped: list[str] = []

        try:
            for platform in platforms:
                if not self._driver_available(platform):
                    reason = self._unavailable_reason(platform)
                    self.tracker.info(job_id, reason)
                    skipped.append(reason)
                    continue

                handle.check()
                self.tracker.info(
                    job_id, f"Building {platform.value} ({build_type.value})"
                )
                try:
                    package = self.drivers[platform].build(
                        workspace, build_type, handle=handle, log_path=log_path
                    )
                    info = self.artifacts.store(job_id, platform, package)
                except DriverError as e:
                    errors.append(e)
                    self.tracker.error(job_id, f"{platform.value} build failed: {e}")
                    continue
                except ArtifactError as e:
                    errors.append(DriverError(str(e), platform=platform, code=e.code))
                    self.tracker.error(
                        job_id, f"{platform.value} artifact not stored: {e}"
                    )
                    continue

                staged[platform] = info
                self.tracker.info(
                    job_id, f"{platform.value} package built: {info.filename}"
                )

            handle.settle()
        except BuildCancelledError:
            self.artifacts.discard(job_id, staged.values())
            raise

        if staged:
            built = ", ".join(p.value for p in staged)
            try:
                self.tracker.complete(
                    job_id,
                    list(staged.values()),
                    f"Build completed successfully ({built})",
                )
            except InvalidTransitionError as e:
                logger.warning("Job %s not completed: %s", job_id, e)
                self.artifacts.discard(job_id, staged.values())
                return
            self.artifacts.write_job_manifest(job_id)
            return

        error = most_specific_error(errors)
        message = str(error) if error is not None else "; ".join(skipped)
        self._fail(job_id, ErrorType.BUILD_FAILED.value, message)

    def _fail(self, job_id: str, error_type: str, message: str) -> None:
        try:
            self.tracker.transition(
                job_id,
                JobStatus.FAILED,
                f"Build failed: {message}",
                error=message,
                error_type=error_type,
            )
        except InvalidTransitionError:
            logger.warning("Job %s already finished, not marking failed", job_id)

    def _finish_stopped(self, job_id: str, reason: CancelReason, started: bool) -> None:
        if reason is CancelReason.TIMEOUT:
            self._fail(
                job_id,
                ErrorType.TIMEOUT.value,
                "Build timed out and was terminated",
            )
            return
        cause = "Build cancelled" if started else "Build cancelled before start"
        try:
            self.tracker.transition(job_id, JobStatus.CANCELLED, cause)
        except InvalidTransitionError:
            logger.warning("Job %s already finished, not marking cancelled", job_id)


__all__ = ["BuildPipeline", "most_specific_error"]
