"""Tests for drivers/process.py module.

Runs real short-lived shell commands to check log capture, step timeouts,
cancellation and deadline handling.
"""

import threading
import time
from pathlib import Path

import pytest

from mobile_appgen.drivers.process import (
    BuildCancelledError,
    CancelHandle,
    ProcessRunner,
    ProcessStartError,
    read_log_tail,
)
from mobile_appgen.types import CancelReason


@pytest.fixture
def runner() -> ProcessRunner:
    """Runner with a short termination grace period."""
    return ProcessRunner(grace_period=1.0)


class TestCancelHandle:
    """Tests for CancelHandle."""

    def test_initial_state(self) -> None:
        """A new handle is neither cancelled nor expired."""
        handle = CancelHandle()
        assert not handle.is_cancelled
        assert handle.reason is None
        assert not handle.expired()
        handle.check()

    def test_cancel_sets_reason(self) -> None:
        """cancel() records the reason and check() raises."""
        handle = CancelHandle()
        handle.cancel()
        assert handle.is_cancelled
        assert handle.reason is CancelReason.CANCELLED
        with pytest.raises(BuildCancelledError) as exc_info:
            handle.check()
        assert exc_info.value.reason is CancelReason.CANCELLED

    def test_first_reason_wins(self) -> None:
        """A later cancel does not overwrite the first reason."""
        handle = CancelHandle()
        handle.cancel(CancelReason.TIMEOUT)
        handle.cancel(CancelReason.CANCELLED)
        assert handle.reason is CancelReason.TIMEOUT

    def test_expired_deadline_becomes_timeout(self) -> None:
        """check() past the deadline raises with the timeout reason."""
        handle = CancelHandle(deadline=time.monotonic() - 1)
        assert handle.expired()
        with pytest.raises(BuildCancelledError) as exc_info:
            handle.check()
        assert exc_info.value.reason is CancelReason.TIMEOUT

    def test_wait_returns_when_cancelled(self) -> None:
        """wait() wakes up as soon as the handle is cancelled."""
        handle = CancelHandle()
        threading.Timer(0.1, handle.cancel).start()
        assert handle.wait(timeout=5.0) is True

    def test_settled_handle_refuses_cancel(self) -> None:
        """After settle() a cancel is refused and check() stays quiet."""
        handle = CancelHandle()
        handle.settle()
        assert handle.cancel() is False
        assert not handle.is_cancelled
        handle.check()

    def test_settle_raises_when_cancelled(self) -> None:
        """settle() raises for a cancelled handle and leaves it cancellable."""
        handle = CancelHandle()
        assert handle.cancel() is True
        with pytest.raises(BuildCancelledError) as exc_info:
            handle.settle()
        assert exc_info.value.reason is CancelReason.CANCELLED
        assert handle.cancel(CancelReason.TIMEOUT) is True
        assert handle.reason is CancelReason.CANCELLED

    def test_settle_raises_past_deadline(self) -> None:
        """settle() past the deadline raises with the timeout reason."""
        handle = CancelHandle(deadline=time.monotonic() - 1)
        with pytest.raises(BuildCancelledError) as exc_info:
            handle.settle()
        assert exc_info.value.reason is CancelReason.TIMEOUT
        assert handle.is_cancelled


class TestProcessRunner:
    """Tests for ProcessRunner.run."""

    def test_success_appends_output(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """Output and a header are appended to the log file."""
        log_path = tmp_path / "logs" / "build.log"
        result = runner.run(["sh", "-c", "echo hello"], cwd=tmp_path, log_path=log_path)

        assert result.success
        assert result.exit_code == 0
        content = log_path.read_text()
        assert "# Command: sh -c 'echo hello'" in content
        assert "hello" in content
        assert "# Exit code: 0" in content

    def test_log_is_appended_not_truncated(
        self, runner: ProcessRunner, tmp_path: Path
    ) -> None:
        """Consecutive commands share one log file."""
        log_path = tmp_path / "build.log"
        runner.run(["sh", "-c", "echo first"], cwd=tmp_path, log_path=log_path)
        runner.run(["sh", "-c", "echo second"], cwd=tmp_path, log_path=log_path)

        content = log_path.read_text()
        assert content.index("first") < content.index("second")

    def test_failure_exit_code(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """A non-zero exit is reported, not raised."""
        result = runner.run(
            ["sh", "-c", "echo broken >&2; exit 3"],
            cwd=tmp_path,
            log_path=tmp_path / "build.log",
        )
        assert not result.success
        assert result.exit_code == 3
        assert "broken" in read_log_tail(tmp_path / "build.log")

    def test_missing_executable(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """An executable that does not exist raises ProcessStartError."""
        with pytest.raises(ProcessStartError) as exc_info:
            runner.run(
                ["definitely-not-a-real-tool-xyz"],
                cwd=tmp_path,
                log_path=tmp_path / "build.log",
            )
        assert exc_info.value.code == "tool_missing"

    def test_env_overrides(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """Environment overrides reach the child process."""
        log_path = tmp_path / "build.log"
        runner.run(
            ["sh", "-c", "echo value=$APPGEN_TEST_VAR"],
            cwd=tmp_path,
            log_path=log_path,
            env={"APPGEN_TEST_VAR": "42"},
        )
        assert "value=42" in log_path.read_text()

    def test_step_timeout(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """A step timeout terminates the command with exit code 124."""
        started = time.monotonic()
        result = runner.run(
            ["sh", "-c", "sleep 30"],
            cwd=tmp_path,
            log_path=tmp_path / "build.log",
            timeout=0.5,
        )
        assert result.timed_out
        assert result.exit_code == 124
        assert time.monotonic() - started < 10

    def test_cancel_terminates_process(
        self, runner: ProcessRunner, tmp_path: Path
    ) -> None:
        """Cancelling the handle stops the running process and raises."""
        handle = CancelHandle()
        threading.Timer(0.3, handle.cancel).start()
        started = time.monotonic()

        with pytest.raises(BuildCancelledError) as exc_info:
            runner.run(
                ["sh", "-c", "sleep 30"],
                cwd=tmp_path,
                log_path=tmp_path / "build.log",
                handle=handle,
            )
        assert exc_info.value.reason is CancelReason.CANCELLED
        assert time.monotonic() - started < 10
        assert "# TERMINATED" in (tmp_path / "build.log").read_text()

    def test_deadline_terminates_process(
        self, runner: ProcessRunner, tmp_path: Path
    ) -> None:
        """Reaching the job deadline stops the process with a timeout reason."""
        handle = CancelHandle(deadline=time.monotonic() + 0.3)
        with pytest.raises(BuildCancelledError) as exc_info:
            runner.run(
                ["sh", "-c", "sleep 30"],
                cwd=tmp_path,
                log_path=tmp_path / "build.log",
                handle=handle,
            )
        assert exc_info.value.reason is CancelReason.TIMEOUT

    def test_cancelled_before_start(self, runner: ProcessRunner, tmp_path: Path) -> None:
        """A handle cancelled beforehand prevents the command from starting."""
        handle = CancelHandle()
        handle.cancel()
        log_path = tmp_path / "build.log"
        with pytest.raises(BuildCancelledError):
            runner.run(["sh", "-c", "echo hi"], cwd=tmp_path, log_path=log_path, handle=handle)
        assert not log_path.exists()


class TestReadLogTail:
    """Tests for read_log_tail."""

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing log yields an empty tail."""
        assert read_log_tail(tmp_path / "none.log") == ""

    def test_last_lines(self, tmp_path: Path) -> None:
        """Only the last lines are returned."""
        log_path = tmp_path / "build.log"
        log_path.write_text("".join(f"line {i}\n" for i in range(50)))
        tail = read_log_tail(log_path, lines=3)
        assert tail == "line 47\nline 48\nline 49"
