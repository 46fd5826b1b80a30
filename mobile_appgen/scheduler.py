"""Build queue and worker pool.

This module handles:
- Admitting submissions to a strict FIFO queue
- Running at most `max_concurrent_builds` jobs on fixed worker threads
- Cancelling queued jobs (dequeue) and running jobs (signal the handle)
- Per-job wall-clock deadlines
- Heartbeats on the jobs this engine is building
- Recovering jobs left behind by a previous or dead engine

The scheduler is an explicit object: create one, `start()` it, and pass it
to whatever needs to submit or cancel builds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import timedelta
from typing import TYPE_CHECKING

from mobile_appgen.drivers.process import CancelHandle
from mobile_appgen.jobs.models import utcnow
from mobile_appgen.jobs.state import InvalidTransitionError, JobTracker
from mobile_appgen.types import CancelReason, ErrorType, JobStatus

if TYPE_CHECKING:
    from mobile_appgen.jobs.schema import BuildRequest
    from mobile_appgen.jobs.store import RecordStore
    from mobile_appgen.pipeline import BuildPipeline

logger = logging.getLogger(__name__)

WAIT_POLL_INTERVAL = 0.2
RESTART_ERROR = "Build interrupted by engine restart"


class SchedulerError(Exception):
    """Raised when the scheduler is used in an invalid state."""

    def __init__(self, message: str, code: str = "scheduler_error") -> None:
        super().__init__(message)
        self.code = code


class BuildScheduler:
    """FIFO build queue served by a fixed pool of worker threads.

    Args:
        store: Record store holding the jobs.
        pipeline: Pipeline that executes one job.
        max_concurrent_builds: Number of worker threads.
        build_timeout: Per-job wall-clock limit in seconds (None = no limit).
        heartbeat_interval: Seconds between heartbeats on running jobs.
        orphan_timeout: Heartbeat age in seconds after which a building job
            owned by another engine is considered abandoned.
    """

    def __init__(
        self,
        store: RecordStore,
        pipeline: BuildPipeline,
        max_concurrent_builds: int = 2,
        build_timeout: float | None = None,
        heartbeat_interval: float = 15.0,
        orphan_timeout: float = 120.0,
    ) -> None:
        if max_concurrent_builds < 1:
            raise ValueError("max_concurrent_builds must be at least 1")
        if orphan_timeout <= heartbeat_interval:
            raise ValueError("orphan_timeout must exceed heartbeat_interval")
        self.store = store
        self.pipeline = pipeline
        self.max_concurrent_builds = max_concurrent_builds
        self.build_timeout = build_timeout
        self.heartbeat_interval = heartbeat_interval
        self.orphan_timeout = orphan_timeout
        self.tracker = JobTracker(store)

        self._lock = threading.Lock()
        self._work_available = threading.Condition(self._lock)
        self._finished = threading.Condition(self._lock)
        self._queue: deque[str] = deque()
        self._running: dict[str, CancelHandle] = {}
        self._workers: list[threading.Thread] = []
        self._heartbeat: threading.Thread | None = None
        self._heartbeat_stop = threading.Event()
        self._stopping = False

    @property
    def is_running(self) -> bool:
        """Whether worker threads are active."""
        return bool(self._workers) and not self._stopping

    def start(self, recover: bool = True) -> None:
        """Spawn the worker pool.

        Args:
            recover: Reconcile jobs left over by a previous process first.
        """
        with self._lock:
            if self._workers:
                raise SchedulerError("Scheduler already started")
            self._stopping = False

        if recover:
            self.recover_orphans()

        with self._lock:
            for index in range(self.max_concurrent_builds):
                worker = threading.Thread(
                    target=self._worker_loop,
                    name=f"build-worker-{index}",
                    daemon=True,
                )
                self._workers.append(worker)
                worker.start()
        self._heartbeat_stop.clear()
        self._heartbeat = threading.Thread(
            target=self._heartbeat_loop, name="build-heartbeat", daemon=True
        )
        self._heartbeat.start()
        logger.info("Started %d build workers", self.max_concurrent_builds)

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop the worker pool.

        Queued jobs stay queued (they are re-enqueued on the next start).

        Args:
            wait: Join the worker threads.
            cancel_running: Signal running jobs to stop first.
        """
        with self._lock:
            self._stopping = True
            if cancel_running:
                for handle in self._running.values():
                    handle.cancel(CancelReason.CANCELLED)
            self._work_available.notify_all()
            workers = list(self._workers)

        if wait:
            for worker in workers:
                worker.join()

        # Running jobs keep their heartbeat until their workers return
        self._heartbeat_stop.set()
        if self._heartbeat is not None:
            if wait:
                self._heartbeat.join()
            self._heartbeat = None

        with self._lock:
            self._workers = []
        logger.info("Build workers stopped")

    def submit(self, request: BuildRequest) -> str:
        """Create a queued job and admit it to the queue.

        Never rejects for capacity; the job waits in `queued` until a
        worker is free.

        Returns:
            The new job id.
        """
        job = self.store.create_job(request)
        job_id = job.id
        self.tracker.info(
            job_id,
            f"Build queued: {request.platform.value} ({request.build_type.value})",
        )
        self._enqueue(job_id)
        return job_id

    def _enqueue(self, job_id: str) -> None:
        with self._lock:
            self._queue.append(job_id)
            self._work_available.notify()
        logger.debug("Enqueued job %s (queue length %d)", job_id, len(self._queue))

    def cancel(self, job_id: str) -> bool:
        """Cancel a queued or running job.

        A queued job is removed from the queue and marked cancelled right
        away. A running job has its handle signalled; its worker terminates
        the active process and marks the job cancelled. Once a running job
        starts recording its packages it can no longer be cancelled.

        Returns:
            False if the job is unknown or can no longer be cancelled.
        """
        with self._lock:
            if job_id in self._queue:
                self._queue.remove(job_id)
                dequeued = True
            else:
                dequeued = False
                handle = self._running.get(job_id)
                if handle is not None:
                    if not handle.cancel(CancelReason.CANCELLED):
                        # Its outcome is already being recorded
                        return False
                    logger.info("Cancellation requested for running job %s", job_id)
                    return True

        if dequeued:
            try:
                self.tracker.transition(
                    job_id, JobStatus.CANCELLED, "Build cancelled while queued"
                )
            except InvalidTransitionError:
                return False
            self._notify_finished()
            return True

        job = self.store.get_job(job_id)
        if job is None or job.job_status is not JobStatus.QUEUED:
            return False

        # Queued in the store but not admitted (scheduler not started)
        try:
            self.tracker.transition(
                job_id, JobStatus.CANCELLED, "Build cancelled while queued"
            )
        except InvalidTransitionError:
            return False
        self._notify_finished()
        return True

    def wait(self, job_id: str, timeout: float | None = None) -> JobStatus | None:
        """Block until a job is terminal.

        Returns:
            The terminal status, the current status on timeout, or None if
            the job does not exist.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            job = self.store.get_job(job_id)
            if job is None:
                return None
            if job.is_terminal():
                return job.job_status

            remaining = WAIT_POLL_INTERVAL
            if deadline is not None:
                remaining = min(remaining, deadline - time.monotonic())
                if remaining <= 0:
                    return job.job_status
            with self._lock:
                self._finished.wait(remaining)

    def pending(self) -> list[str]:
        """Queued job ids in admission order."""
        with self._lock:
            return list(self._queue)

    def running(self) -> list[str]:
        """Ids of jobs currently executing."""
        with self._lock:
            return list(self._running)

    def recover_orphans(self) -> tuple[list[str], list[str]]:
        """Reconcile jobs left over by a previous or dead engine.

        Building jobs nobody is working on are failed with `internal_error`:
        this engine's own jobs that are not running here, and jobs whose
        owner stopped sending heartbeats more than `orphan_timeout` seconds
        ago. Jobs still `queued` are re-enqueued in submission order; if
        another engine runs one first, the claim in the pipeline skips it.

        Returns:
            Tuple of (failed job ids, re-enqueued job ids).
        """
        with self._lock:
            known = set(self._queue) | set(self._running)

        failed = self._fail_orphaned(known)

        requeued: list[str] = []
        for job in self.store.list_jobs(
            status=JobStatus.QUEUED, limit=10_000, oldest_first=True
        ):
            if job.id in known:
                continue
            self._enqueue(job.id)
            requeued.append(job.id)

        if failed or requeued:
            logger.info(
                "Recovered jobs: %d failed, %d re-enqueued", len(failed), len(requeued)
            )
        return failed, requeued

    def _fail_orphaned(self, running: set[str]) -> list[str]:
        stale_before = utcnow() - timedelta(seconds=self.orphan_timeout)
        failed = self.store.fail_orphaned(
            stale_before,
            RESTART_ERROR,
            ErrorType.INTERNAL_ERROR.value,
            exclude=running,
        )
        for job_id in failed:
            self.tracker.error(job_id, RESTART_ERROR)
        return failed

    def _heartbeat_loop(self) -> None:
        while not self._heartbeat_stop.wait(self.heartbeat_interval):
            try:
                self.store.heartbeat()
                # Holding the lock keeps newly claimed jobs out of the sweep
                with self._lock:
                    failed = self._fail_orphaned(set(self._running))
            except Exception:
                logger.exception("Heartbeat failed")
                continue
            if failed:
                logger.warning("Failed %d abandoned jobs: %s", len(failed), failed)

    def _next_job(self) -> tuple[str, CancelHandle] | None:
        """Pop the next job and register its handle, or None on shutdown."""
        with self._lock:
            while not self._queue and not self._stopping:
                self._work_available.wait()
            if self._stopping:
                return None
            job_id = self._queue.popleft()
            deadline = (
                time.monotonic() + self.build_timeout
                if self.build_timeout is not None
                else None
            )
            handle = CancelHandle(deadline=deadline)
            self._running[job_id] = handle
            return job_id, handle

    def _worker_loop(self) -> None:
        while True:
            item = self._next_job()
            if item is None:
                return
            job_id, handle = item
            logger.info("Worker %s picked up job %s", threading.current_thread().name, job_id)
            try:
                status = self.pipeline.execute(job_id, handle)
                logger.info("Job %s finished: %s", job_id, status.value)
            except Exception:
                logger.exception("Worker failed to run job %s", job_id)
                self._fail_unexpected(job_id)
            finally:
                with self._lock:
                    self._running.pop(job_id, None)
                    self._finished.notify_all()

    def _fail_unexpected(self, job_id: str) -> None:
        job = self.store.get_job(job_id)
        if job is None or job.is_terminal():
            return
        message = "Internal error while running build"
        try:
            self.tracker.transition(
                job_id,
                JobStatus.FAILED,
                message,
                error=message,
                error_type=ErrorType.INTERNAL_ERROR.value,
            )
        except Exception:
            logger.exception("Could not mark job %s as failed", job_id)

    def _notify_finished(self) -> None:
        with self._lock:
            self._finished.notify_all()


__all__ = ["RESTART_ERROR", "BuildScheduler", "SchedulerError"]
