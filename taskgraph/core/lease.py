"""
Lease protocol.

A lease is a (locked_by, locked_until) pair on the task row. It is taken with
a single conditional UPDATE, renewed by its holder every half TTL, and simply
expires when the holder disappears.
"""

import asyncio
import logging

from taskgraph.config import get_settings
from taskgraph.constants import SPAN_ACQUIRE_LEASE
from taskgraph.db.connection import TaskStore
from taskgraph.db.repository import TaskRepository
from taskgraph.errors import StoreUnavailableError
from taskgraph.observability.metrics import get_metrics
from taskgraph.observability.tracing import get_tracer

logger = logging.getLogger(__name__)


class LeaseManager:
    """
    Acquires, renews and releases leases on behalf of one worker.

    Each operation runs in its own store transaction.
    """

    def __init__(
        self,
        store: TaskStore,
        worker_id: str,
        ttl_seconds: float | None = None,
    ):
        """
        Initialize the lease manager.

        Args:
            store: The shared task store.
            worker_id: Identity written into `locked_by`.
            ttl_seconds: Lease duration. Defaults to the configured TTL.
        """
        self._store = store
        self.worker_id = worker_id
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().lease_ttl_seconds
        self._metrics = get_metrics()

    @property
    def renew_interval(self) -> float:
        """Seconds between renewals of a held lease."""
        return self.ttl_seconds / 2

    async def acquire(self, task_id: str) -> bool:
        """
        Try to take the lease on a task.

        Returns:
            True on success, False if another worker holds a live lease or the
            task is no longer leasable.
        """
        with get_tracer().start_as_current_span(SPAN_ACQUIRE_LEASE) as span:
            span.set_attribute("task_id", task_id)
            span.set_attribute("worker_id", self.worker_id)

            async with self._store.session() as session:
                acquired = await TaskRepository(session).acquire_lease(
                    task_id, self.worker_id, self.ttl_seconds
                )

            span.set_attribute("acquired", acquired)

        if acquired:
            self._metrics.record_lease_acquired(self.worker_id)
            logger.debug(
                "Acquired lease",
                extra={"task_id": task_id, "worker_id": self.worker_id},
            )
        return acquired

    async def renew(self, task_id: str) -> bool:
        """
        Push the lease expiry forward by one TTL.

        Returns:
            False if the lease is no longer held by this worker.
        """
        async with self._store.session() as session:
            return await TaskRepository(session).extend_lease(
                task_id, self.worker_id, self.ttl_seconds
            )

    async def release(self, task_id: str) -> bool:
        """Release the lease on one task if this worker holds it."""
        async with self._store.session() as session:
            return await TaskRepository(session).release_lease(task_id, self.worker_id)

    async def release_all(self) -> int:
        """
        Release every lease held by this worker.

        Returns:
            Number of released leases.
        """
        async with self._store.session() as session:
            return await TaskRepository(session).release_worker_leases(self.worker_id)

    async def keep_alive(self, task_id: str) -> None:
        """
        Renew the lease on `task_id` until cancelled or lost.

        A lost lease ends renewal quietly; transient store errors are logged
        and retried on the next tick.
        """
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                renewed = await self.renew(task_id)
            except StoreUnavailableError as e:
                logger.warning(
                    f"Lease renewal failed: {e}",
                    extra={"task_id": task_id, "worker_id": self.worker_id},
                )
                continue

            if not renewed:
                self._metrics.record_lease_lost(self.worker_id)
                logger.debug(
                    "Lease no longer held, stopping renewal",
                    extra={"task_id": task_id, "worker_id": self.worker_id},
                )
                return

            logger.debug(
                "Extended lease",
                extra={"task_id": task_id, "worker_id": self.worker_id},
            )
