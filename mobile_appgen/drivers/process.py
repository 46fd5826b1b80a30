"""External process execution for build steps.

This module handles:
- Running toolchain commands from explicit argument vectors (never a shell)
- Appending stdout/stderr to the job's build log file
- Cooperative cancellation and per-job deadlines via `CancelHandle`
- Terminating the whole process group (SIGTERM, then SIGKILL)
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from mobile_appgen.types import CancelReason

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
DEFAULT_GRACE_PERIOD = 10.0


class BuildCancelledError(Exception):
    """Raised when a job is stopped by cancellation or by its deadline."""

    def __init__(self, reason: CancelReason, code: str = "cancelled") -> None:
        super().__init__(f"Build stopped: {reason.value}")
        self.reason = reason
        self.code = code


class ProcessStartError(Exception):
    """Raised when a command cannot be started (e.g. tool not installed)."""

    def __init__(self, message: str, code: str = "tool_missing") -> None:
        super().__init__(message)
        self.code = code


class CancelHandle:
    """Cancellation token shared between a scheduler and one running job.

    `cancel()` may be called from any thread; the worker running the job
    observes it at process granularity and stops the active process.

    Args:
        deadline: Absolute `time.monotonic()` value after which the job is
            treated as timed out, or None for no deadline.
    """

    def __init__(self, deadline: float | None = None) -> None:
        self.deadline = deadline
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._reason: CancelReason | None = None
        self._settled = False

    def cancel(self, reason: CancelReason = CancelReason.CANCELLED) -> bool:
        """Request the job to stop. The first reason wins.

        Returns:
            False if the job already settled its outcome and can no longer
            be stopped.
        """
        with self._lock:
            if self._settled:
                return False
            if self._reason is None:
                self._reason = reason
            self._event.set()
            return True

    @property
    def is_cancelled(self) -> bool:
        """Whether a stop was requested."""
        return self._event.is_set()

    @property
    def reason(self) -> CancelReason | None:
        """Why the job was asked to stop, if it was."""
        return self._reason

    def expired(self) -> bool:
        """Whether the deadline has passed."""
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self) -> None:
        """Raise if the job must stop; turns an overrun deadline into a timeout.

        Raises:
            BuildCancelledError: If cancelled or past the deadline.
        """
        if not self.is_cancelled and self.expired():
            self.cancel(CancelReason.TIMEOUT)
        if self.is_cancelled:
            raise BuildCancelledError(self._reason or CancelReason.CANCELLED)

    def settle(self) -> None:
        """Check one last time, then refuse further cancellation.

        Called once the job's outcome is decided and about to be recorded.

        Raises:
            BuildCancelledError: If cancelled or past the deadline.
        """
        with self._lock:
            if self._reason is None and self.expired():
                self._reason = CancelReason.TIMEOUT
                self._event.set()
            if self._reason is not None:
                raise BuildCancelledError(self._reason)
            self._settled = True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or `timeout` elapses."""
        return self._event.wait(timeout)


@dataclass
class ProcessResult:
    """Result of one external command.

    Attributes:
        command: The command line, shell-quoted for display.
        exit_code: Process exit code (124 on step timeout).
        timed_out: Whether the step's own timeout fired.
        duration: Wall-clock seconds.
        log_path: Log file the output was appended to.
    """

    command: str
    exit_code: int
    timed_out: bool
    duration: float
    log_path: Path

    @property
    def success(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0 and not self.timed_out


def read_log_tail(log_path: Path, lines: int = 20) -> str:
    """Return the last `lines` lines of a log file (empty if missing)."""
    if not log_path.exists():
        return ""
    with log_path.open(encoding="utf-8", errors="replace") as f:
        return "".join(deque(f, maxlen=lines)).strip()


class ProcessRunner:
    """Runs external commands with cancellation and process-group cleanup.

    Args:
        grace_period: Seconds to wait after SIGTERM before sending SIGKILL.
    """

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD) -> None:
        self.grace_period = grace_period

    def run(
        self,
        cmd: list[str],
        cwd: Path,
        log_path: Path,
        handle: CancelHandle | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> ProcessResult:
        """Run a command to completion.

        Args:
            cmd: Argument vector.
            cwd: Working directory.
            log_path: File that stdout/stderr are appended to.
            handle: Optional cancellation handle of the owning job.
            env: Optional environment overrides merged over os.environ.
            timeout: Step timeout in seconds (None = only the job deadline).

        Returns:
            ProcessResult with exit details.

        Raises:
            ProcessStartError: If the executable cannot be started.
            BuildCancelledError: If the job was cancelled or hit its deadline;
                the process group is terminated before raising.
        """
        if handle is not None:
            handle.check()

        cmd_str = shlex.join(cmd)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Executing: %s (cwd=%s)", cmd_str, cwd)

        full_env: dict[str, str] | None = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)

        started = time.monotonic()
        step_deadline = started + timeout if timeout is not None else None
        timed_out = False

        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {datetime.now(timezone.utc).isoformat()}\n")
            log_file.write(f"# CWD: {cwd}\n")
            log_file.flush()

            try:
                proc = subprocess.Popen(
                    cmd,
                    cwd=cwd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    env=full_env,
                    start_new_session=(os.name != "nt"),
                )
            except OSError as e:
                log_file.write(f"# Failed to start: {e}\n")
                raise ProcessStartError(f"Failed to execute {cmd[0]}: {e}") from e

            try:
                while proc.poll() is None:
                    if handle is not None and (handle.is_cancelled or handle.expired()):
                        self.terminate(proc)
                        log_file.write("\n# TERMINATED\n")
                        handle.check()
                    if step_deadline is not None and time.monotonic() >= step_deadline:
                        timed_out = True
                        self.terminate(proc)
                        log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
                        break
                    time.sleep(POLL_INTERVAL)
            except BaseException:
                if proc.poll() is None:
                    self.terminate(proc)
                raise

            exit_code = 124 if timed_out else int(proc.returncode)
            duration = time.monotonic() - started
            log_file.write(f"\n# Exit code: {exit_code}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n\n")

        if exit_code != 0:
            logger.warning("Command exited with %d: %s", exit_code, cmd_str)

        return ProcessResult(
            command=cmd_str,
            exit_code=exit_code,
            timed_out=timed_out,
            duration=duration,
            log_path=log_path,
        )

    def terminate(self, proc: subprocess.Popen[bytes]) -> None:
        """Stop a process and its children, escalating to SIGKILL."""
        if os.name != "nt":
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except ProcessLookupError:
                return
        else:
            proc.terminate()

        try:
            proc.wait(timeout=self.grace_period)
            return
        except subprocess.TimeoutExpired:
            logger.warning("Process %d ignored SIGTERM, killing", proc.pid)

        if os.name != "nt":
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
        else:
            proc.kill()
        proc.wait()


__all__ = [
    "BuildCancelledError",
    "CancelHandle",
    "ProcessResult",
    "ProcessRunner",
    "ProcessStartError",
    "read_log_tail",
]
