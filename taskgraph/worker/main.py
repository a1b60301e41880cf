"""
Worker process for executing tasks.

The worker polls the shared store for ready tasks, leases and claims them,
runs their bodies through an executor, and records the outcome according to
the task lifecycle. Workers share nothing in memory; every coordination step
is a conditional update against the store.
"""

import asyncio
import logging
import os
import signal
import time
from contextlib import suppress

from taskgraph.config import get_settings
from taskgraph.constants import CANDIDATE_OVERFETCH_FACTOR, SPAN_EXECUTE_TASK, TaskStatus
from taskgraph.core.dependencies import is_ready, promote_dependents
from taskgraph.core.lease import LeaseManager
from taskgraph.db.connection import TaskStore
from taskgraph.db.repository import TaskRepository
from taskgraph.errors import LeaseLostError, StoreUnavailableError
from taskgraph.observability.logging import bind_context, setup_logging
from taskgraph.observability.metrics import get_metrics
from taskgraph.observability.tracing import get_tracer, setup_tracing_from_settings
from taskgraph.reaper.main import StaleLeaseReclaimer
from taskgraph.types.events import TaskEvent
from taskgraph.types.task import (
    InFlightTask,
    TaskContext,
    TaskResult,
    TaskSnapshot,
    WorkerStats,
)
from taskgraph.worker.executors import SimulatedExecutor, TaskExecutor, execute_task
from taskgraph.worker.observer import LoggingObserver, WorkerObserver

logger = logging.getLogger(__name__)


class Worker:
    """
    Task worker that polls for and executes ready tasks.

    Features:
    - Lease acquisition through a single conditional update
    - Per-task lease renewal for long-running bodies
    - Up to `max_concurrent` bodies at once
    - Retry and terminal-failure handling
    - Graceful shutdown that releases every held lease
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor | None = None,
        worker_id: str | None = None,
        max_concurrent: int | None = None,
        poll_interval: float | None = None,
        lease_ttl_seconds: float | None = None,
        observer: WorkerObserver | None = None,
        reclaim_on_start: bool | None = None,
    ):
        """
        Initialize the worker.

        Args:
            store: The shared task store.
            executor: Runs task bodies. Defaults to a SimulatedExecutor.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            max_concurrent: Maximum number of bodies running at once.
            poll_interval: Seconds between polls.
            lease_ttl_seconds: Lease duration; renewed every half TTL.
            observer: Receives lifecycle notifications.
            reclaim_on_start: Run one reclaimer sweep before polling.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.max_concurrent = max_concurrent or settings.worker_max_concurrent
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.reclaim_on_start = (
            reclaim_on_start if reclaim_on_start is not None else settings.worker_reclaim_on_start
        )

        self._store = store
        self._executor = executor or SimulatedExecutor()
        self._observer = observer or LoggingObserver()
        self._leases = LeaseManager(store, self.worker_id, lease_ttl_seconds)

        self._running = False
        self._in_flight: dict[str, InFlightTask] = {}
        self._poll_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def running_count(self) -> int:
        """Number of task bodies currently executing."""
        return len(self._in_flight)

    @property
    def lease_ttl_seconds(self) -> float:
        return self._leases.ttl_seconds

    async def start(self) -> None:
        """Start polling in the background."""
        if self._running:
            return

        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "max_concurrent": self.max_concurrent},
        )
        self._running = True
        self._in_flight = {}

        if self.reclaim_on_start:
            try:
                await StaleLeaseReclaimer(self._store).run_once()
            except StoreUnavailableError as e:
                self._report_error(e)

        self._poll_task = asyncio.create_task(
            self._poll_loop(), name=f"worker-poll-{self.worker_id}"
        )

    async def stop(self, drain: bool = False) -> None:
        """
        Stop the worker.

        Polling stops immediately and every lease held by this worker is
        released. In-flight bodies are not aborted; with `drain` the call
        waits for them to finish first.

        Args:
            drain: Wait for in-flight bodies before releasing leases.
        """
        if not self._running:
            return

        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

        if drain and self._in_flight:
            logger.info(f"Waiting for {len(self._in_flight)} tasks to complete")
            executions = [entry.execution for entry in self._in_flight.values() if entry.execution]
            await asyncio.gather(*executions, return_exceptions=True)

        for entry in list(self._in_flight.values()):
            await self._stop_renewal(entry)

        try:
            released = await self._leases.release_all()
        except StoreUnavailableError as e:
            self._report_error(e)
            released = 0

        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "released_leases": released},
        )

    def get_stats(self) -> WorkerStats:
        """Get a point-in-time view of this worker."""
        return WorkerStats(
            worker_id=self.worker_id,
            running_tasks=self.running_count,
            max_concurrent=self.max_concurrent,
            is_running=self._running,
            task_ids=sorted(self._in_flight),
        )

    async def _poll_loop(self) -> None:
        while self._running:
            await self.poll_once()
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """
        Run one polling cycle.

        Errors while polling are reported to the observer and the cycle is
        skipped; they never stop the worker.

        Returns:
            Number of tasks started by this cycle.
        """
        available = self.max_concurrent - len(self._in_flight)
        if available <= 0:
            return 0

        try:
            return await self._claim_candidates(available)
        except Exception as e:
            logger.exception(
                f"Error in worker loop: {e}",
                extra={"worker_id": self.worker_id},
            )
            self._report_error(e)
            return 0

    async def _claim_candidates(self, available: int) -> int:
        async with self._store.session() as session:
            candidates = await TaskRepository(session).query_ready(
                self.worker_id,
                limit=available * CANDIDATE_OVERFETCH_FACTOR,
            )
            candidate_ids = [candidate.id for candidate in candidates]

        started = 0
        for task_id in candidate_ids:
            if len(self._in_flight) >= self.max_concurrent:
                break
            if task_id in self._in_flight:
                continue
            if not await self._make_ready(task_id):
                continue
            if not await self._leases.acquire(task_id):
                continue

            try:
                snapshot = await self._claim(task_id)
            except Exception:
                await self._leases.release(task_id)
                raise
            if snapshot is None:
                await self._leases.release(task_id)
                continue

            self._launch(snapshot)
            started += 1

        return started

    async def _make_ready(self, task_id: str) -> bool:
        """Check readiness and promote a ready PENDING candidate to QUEUED."""
        async with self._store.session() as session:
            repo = TaskRepository(session)
            task = await repo.get_task(task_id)
            if task is None or not await is_ready(repo, task):
                return False
            if task.status == TaskStatus.PENDING:
                await repo.promote_task(task_id)
            return True

    async def _claim(self, task_id: str) -> TaskSnapshot | None:
        async with self._store.session() as session:
            task = await TaskRepository(session).start_task(task_id, self.worker_id)
            return TaskSnapshot.model_validate(task) if task else None

    def _launch(self, snapshot: TaskSnapshot) -> None:
        entry = InFlightTask(
            task_id=snapshot.id,
            snapshot=snapshot,
            started_monotonic=time.monotonic(),
        )
        self._in_flight[snapshot.id] = entry
        self._notify("task_started", TaskEvent.task_started(self.worker_id, snapshot))

        entry.renewal = asyncio.create_task(
            self._leases.keep_alive(snapshot.id), name=f"lease-renewal-{snapshot.id}"
        )
        entry.execution = asyncio.create_task(
            self._run_task(entry), name=f"execute-{snapshot.id}"
        )

    async def _run_task(self, entry: InFlightTask) -> None:
        """
        Execute a single claimed task.

        Handles the rest of the lifecycle:
        1. Run the body through the executor
        2. Stop lease renewal
        3. Mark as COMPLETED, or requeue / fail it
        """
        snapshot = entry.snapshot
        context = TaskContext(
            task_id=snapshot.id,
            duration=snapshot.duration,
            attempt=snapshot.attempts,
            max_attempts=snapshot.max_attempts,
            dependencies=list(snapshot.dependencies),
            worker_id=self.worker_id,
            lease_expires_at=snapshot.locked_until,
        )
        # Runs in its own asyncio task, so the bound context stays per task
        bind_context(worker_id=self.worker_id, task_id=snapshot.id)

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_TASK) as span:
                span.set_attribute("task_id", snapshot.id)
                span.set_attribute("worker_id", self.worker_id)
                span.set_attribute("attempt", context.attempt)

                result = await execute_task(self._executor, context)
                span.set_attribute("success", result.success)

            # Renewal bumps the version the failure transition compares against
            await self._stop_renewal(entry)
            await self._record_outcome(entry, result)

        except LeaseLostError as e:
            logger.debug(str(e), extra={"task_id": snapshot.id, "worker_id": self.worker_id})
            self._metrics.record_lease_lost(self.worker_id)

        except Exception as e:
            logger.exception(
                "Exception recording task outcome",
                extra={"task_id": snapshot.id, "error": str(e)},
            )
            self._report_error(e)

        finally:
            await self._stop_renewal(entry)
            self._in_flight.pop(entry.task_id, None)

    async def _record_outcome(self, entry: InFlightTask, result: TaskResult) -> None:
        task_id = entry.task_id
        duration = time.monotonic() - entry.started_monotonic

        async with self._store.session() as session:
            repo = TaskRepository(session)

            if result.success:
                task = await repo.complete_task(task_id, self.worker_id, result=result.output)
                if task is None:
                    raise LeaseLostError(task_id, self.worker_id)
                # Same transaction as the completion
                await promote_dependents(repo, task_id)
            else:
                task = await repo.fail_task(
                    task_id, self.worker_id, error=result.error or "Unknown error"
                )
                if task is None:
                    raise LeaseLostError(task_id, self.worker_id)

            snapshot = TaskSnapshot.model_validate(task)

        if snapshot.status == TaskStatus.COMPLETED:
            self._metrics.record_task_finished(self.worker_id, "completed", duration)
            self._notify("task_completed", TaskEvent.task_completed(self.worker_id, snapshot))
        elif snapshot.status == TaskStatus.FAILED:
            self._metrics.record_task_finished(self.worker_id, "failed", duration)
            self._notify(
                "task_failed",
                TaskEvent.task_failed(self.worker_id, snapshot, snapshot.last_error or ""),
            )
        else:
            self._metrics.record_task_finished(self.worker_id, "retry", duration)
            self._notify(
                "task_retry",
                TaskEvent.task_retry(self.worker_id, snapshot, snapshot.last_error or ""),
            )

    async def _stop_renewal(self, entry: InFlightTask) -> None:
        renewal = entry.renewal
        if renewal is None or renewal.done():
            return
        renewal.cancel()
        with suppress(asyncio.CancelledError):
            await renewal

    def _notify(self, hook: str, event: TaskEvent) -> None:
        try:
            getattr(self._observer, hook)(event)
        except Exception:
            logger.exception(f"Observer {hook} hook failed", extra={"worker_id": self.worker_id})

    def _report_error(self, error: Exception) -> None:
        try:
            self._observer.worker_error(self.worker_id, error)
        except Exception:
            logger.exception("Observer worker_error hook failed", extra={"worker_id": self.worker_id})


async def run_async() -> None:
    """Run a single worker until SIGINT/SIGTERM."""
    setup_logging("worker")
    setup_tracing_from_settings("worker")

    store = TaskStore.from_settings()
    await store.create_schema()

    worker = Worker(store)
    stop_event = asyncio.Event()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await worker.start()
        await stop_event.wait()
    finally:
        await worker.stop(drain=True)
        await store.close()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
