"""
Stale-lease reclaimer.

Runs periodically against the shared store to recover tasks whose worker
crashed: expired RUNNING tasks go back to the queue, leftover lease fields
are cleared, and pending tasks whose dependencies have all completed are
promoted.
"""

import asyncio
import logging
import signal

from taskgraph.config import get_settings
from taskgraph.constants import SPAN_RECLAIM
from taskgraph.core.dependencies import promote_ready
from taskgraph.db.connection import TaskStore
from taskgraph.db.models import utcnow
from taskgraph.db.repository import TaskRepository
from taskgraph.observability.logging import setup_logging
from taskgraph.observability.metrics import get_metrics
from taskgraph.observability.tracing import get_tracer, setup_tracing_from_settings
from taskgraph.types.task import ReclaimReport

logger = logging.getLogger(__name__)


class StaleLeaseReclaimer:
    """
    Recovers tasks with expired leases.

    Every sweep:
    1. Requeues RUNNING tasks with an expired lease (or fails them when no
       attempts are left)
    2. Clears expired lease fields in any status
    3. Promotes PENDING tasks whose dependencies are all completed
    """

    def __init__(self, store: TaskStore, interval_seconds: float | None = None):
        """
        Initialize the reclaimer.

        Args:
            store: The shared task store.
            interval_seconds: Seconds between sweeps.
        """
        settings = get_settings()
        self._store = store
        self.interval = interval_seconds or settings.reclaim_interval_seconds
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start sweeping in the background."""
        if self._running:
            return
        logger.info(f"Reclaimer starting with interval {self.interval}s")
        self._running = True
        self._loop_task = asyncio.create_task(self._sweep_loop(), name="stale-lease-reclaimer")

    async def stop(self) -> None:
        """Stop sweeping. A sweep in progress is cancelled."""
        if not self._running:
            return
        logger.info("Reclaimer stopping")
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("Reclaimer stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in reclaimer loop: {e}")

    async def run_once(self) -> ReclaimReport:
        """
        Run one sweep (also used directly by tests and worker start-up).

        Returns:
            What the sweep changed.
        """
        with get_tracer().start_as_current_span(SPAN_RECLAIM) as span:
            async with self._store.session() as session:
                repo = TaskRepository(session)
                now = utcnow()

                requeued, failed = await repo.recover_expired_leases(now)
                cleared = await repo.clear_stale_leases(now)
                promoted = await promote_ready(repo)
                depth = await repo.get_queue_depth()

            report = ReclaimReport(
                requeued=requeued,
                failed=failed,
                cleared=cleared,
                promoted=len(promoted),
            )
            span.set_attribute("requeued", report.requeued)
            span.set_attribute("failed", report.failed)
            span.set_attribute("promoted", report.promoted)

        self._metrics.record_leases_reclaimed(requeued, failed)
        self._metrics.update_queue_depth(depth)

        if report.total:
            logger.info(
                "Reclaimer sweep changed tasks",
                extra={
                    "requeued": report.requeued,
                    "failed": report.failed,
                    "cleared": report.cleared,
                    "promoted": report.promoted,
                },
            )
        return report


async def run_async() -> None:
    """Run a standalone reclaimer until SIGINT/SIGTERM."""
    setup_logging("reaper")
    setup_tracing_from_settings("reaper")

    store = TaskStore.from_settings()
    await store.create_schema()

    reclaimer = StaleLeaseReclaimer(store)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await reclaimer.run_once()
        await reclaimer.start()
        await stop_event.wait()
    finally:
        await reclaimer.stop()
        await store.close()


def run() -> None:
    """Run the reclaimer."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
