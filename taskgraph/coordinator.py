"""
Coordinator for a fleet of workers sharing one task store.

The coordinator owns the store, starts N workers and one stale-lease
reclaimer, and exposes submission and query pass-throughs. It holds no
scheduling state of its own.
"""

import asyncio
import logging
import signal
from collections.abc import Sequence

from taskgraph.config import get_settings
from taskgraph.constants import TaskStatus
from taskgraph.db.connection import TaskStore
from taskgraph.db.repository import TaskRepository
from taskgraph.errors import TaskNotFoundError
from taskgraph.observability.logging import setup_logging
from taskgraph.observability.metrics import get_metrics, serve_metrics
from taskgraph.observability.tracing import setup_tracing_from_settings
from taskgraph.reaper.main import StaleLeaseReclaimer
from taskgraph.types.task import CoordinatorStats, TaskSnapshot
from taskgraph.worker.executors import TaskExecutor
from taskgraph.worker.main import Worker
from taskgraph.worker.observer import LoggingObserver, WorkerObserver

logger = logging.getLogger(__name__)


class Coordinator:
    """
    Runs workers and the reclaimer against a shared store.

    Example:
        coordinator = Coordinator(worker_count=4)
        await coordinator.start()
        await coordinator.submit_task("build", duration=2.0)
        await coordinator.submit_task("deploy", dependencies=["build"])
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        store: TaskStore | None = None,
        executor: TaskExecutor | None = None,
        worker_count: int | None = None,
        max_concurrent_per_worker: int | None = None,
        poll_interval: float | None = None,
        lease_ttl_seconds: float | None = None,
        reclaim_interval_seconds: float | None = None,
        observer: WorkerObserver | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Shared task store. Built from settings when omitted.
            executor: Executor shared by every worker.
            worker_count: Number of workers to run. Zero runs none.
            max_concurrent_per_worker: Concurrency limit of each worker.
            poll_interval: Worker poll interval in seconds.
            lease_ttl_seconds: Lease duration.
            reclaim_interval_seconds: Seconds between reclaimer sweeps.
            observer: Observer shared by every worker.
        """
        settings = get_settings()

        self._store = store or TaskStore.from_settings()
        self._executor = executor
        self.worker_count = worker_count if worker_count is not None else settings.worker_count
        self.max_concurrent_per_worker = (
            max_concurrent_per_worker or settings.worker_max_concurrent
        )
        self.poll_interval = poll_interval
        self.lease_ttl_seconds = lease_ttl_seconds
        self.reclaim_interval_seconds = reclaim_interval_seconds
        self._observer = observer or LoggingObserver()

        self._workers: list[Worker] = []
        self._reclaimer: StaleLeaseReclaimer | None = None
        self._running = False
        self._metrics = get_metrics()

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def workers(self) -> Sequence[Worker]:
        return tuple(self._workers)

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Create the schema, then start the workers and the reclaimer."""
        if self._running:
            return

        await self._store.create_schema()

        self._workers = [
            Worker(
                self._store,
                executor=self._executor,
                worker_id=f"worker-{i}",
                max_concurrent=self.max_concurrent_per_worker,
                poll_interval=self.poll_interval,
                lease_ttl_seconds=self.lease_ttl_seconds,
                observer=self._observer,
                reclaim_on_start=False,
            )
            for i in range(self.worker_count)
        ]
        self._reclaimer = StaleLeaseReclaimer(self._store, self.reclaim_interval_seconds)
        try:
            for worker in self._workers:
                await worker.start()
            await self._reclaimer.run_once()
            await self._reclaimer.start()
        except Exception:
            logger.exception("Coordinator failed to start, stopping started components")
            await self._stop_components(drain=False)
            raise

        self._running = True
        logger.info(
            "Coordinator started",
            extra={
                "worker_count": self.worker_count,
                "max_concurrent_per_worker": self.max_concurrent_per_worker,
            },
        )

    async def stop(self, drain: bool = False) -> None:
        """
        Stop workers, then the reclaimer, then close the store.

        Args:
            drain: Let every worker finish its in-flight tasks first.
        """
        if not self._running:
            return
        self._running = False

        await self._stop_components(drain)
        await self._store.close()

        logger.info("Coordinator stopped")

    async def _stop_components(self, drain: bool) -> None:
        # Workers and reclaimer tolerate stop() when never started
        for worker in self._workers:
            await worker.stop(drain=drain)
        if self._reclaimer:
            await self._reclaimer.stop()

    def _ensure_started(self) -> None:
        if not self._running:
            raise RuntimeError("Coordinator not started")

    async def submit_task(
        self,
        task_id: str,
        duration: float = 0.0,
        dependencies: Sequence[str] | None = None,
        max_attempts: int | None = None,
    ) -> TaskSnapshot:
        """
        Submit a new task.

        Raises:
            DuplicateTaskError: A task with this id already exists.
            InvalidTaskError: The submission failed validation.
        """
        self._ensure_started()

        async with self._store.session() as session:
            task = await TaskRepository(session).create_task(
                task_id,
                duration=duration,
                dependencies=dependencies,
                max_attempts=max_attempts,
            )
            snapshot = TaskSnapshot.model_validate(task)

        self._metrics.record_task_submitted(snapshot.status.value)
        return snapshot

    async def get_task(self, task_id: str) -> TaskSnapshot:
        """
        Get a task by id.

        Raises:
            TaskNotFoundError: No task with this id exists.
        """
        self._ensure_started()

        async with self._store.session() as session:
            task = await TaskRepository(session).get_task(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return TaskSnapshot.model_validate(task)

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[TaskSnapshot], int]:
        """List tasks newest first. Returns (tasks, total)."""
        self._ensure_started()

        async with self._store.session() as session:
            tasks, total = await TaskRepository(session).list_tasks(
                status=status, limit=limit, offset=offset
            )
            return [TaskSnapshot.model_validate(task) for task in tasks], total

    async def count_by_status(self) -> dict[str, int]:
        self._ensure_started()

        async with self._store.session() as session:
            return await TaskRepository(session).count_by_status()

    def get_stats(self) -> CoordinatorStats:
        """Get per-worker in-flight counts and fleet capacity."""
        workers = [worker.get_stats() for worker in self._workers]
        return CoordinatorStats(
            total_workers=len(workers),
            total_capacity=sum(stats.max_concurrent for stats in workers),
            running_tasks=sum(stats.running_tasks for stats in workers),
            is_running=self._running,
            workers=[
                {
                    "worker_id": stats.worker_id,
                    "running_tasks": stats.running_tasks,
                    "max_concurrent": stats.max_concurrent,
                    "is_running": stats.is_running,
                }
                for stats in workers
            ],
        )


async def run_async() -> None:
    """Run a worker fleet in one process until SIGINT/SIGTERM."""
    setup_logging("coordinator")
    setup_tracing_from_settings("coordinator")
    serve_metrics(get_settings().prometheus_port)

    coordinator = Coordinator()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    await coordinator.start()
    try:
        await stop_event.wait()
    finally:
        await coordinator.stop(drain=True)


def run() -> None:
    """Run the coordinator."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
