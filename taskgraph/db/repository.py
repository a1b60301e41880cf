"""
Task repository for database operations.
Implements the data access patterns behind leasing and task transitions.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskgraph.config import get_settings
from taskgraph.constants import STATUS_POLL_PRIORITY, TaskStatus
from taskgraph.core.state_machine import (
    LEASABLE_STATUSES,
    can_transition,
    initial_status,
    normalize_dependencies,
    status_after_failure,
)
from taskgraph.db.models import Task, utcnow
from taskgraph.errors import DuplicateTaskError, InvalidTaskError

logger = logging.getLogger(__name__)

_LEASE_CLEARED = {"locked_by": None, "locked_until": None}


def _lease_is_free(now: datetime):
    return or_(Task.locked_by.is_(None), Task.locked_until < now)


def _held_by_or_released(worker_id: str):
    """The finishing worker still holds the lease, or nobody does."""
    return or_(Task.locked_by == worker_id, Task.locked_by.is_(None))


class TaskRepository:
    """
    Repository for task database operations.

    Every mutation is a conditional UPDATE whose affected row count decides
    the outcome; no row locks or lock tables are used. Implements:
    - Submission with duplicate-id detection
    - Lease acquisition, renewal and release
    - Status transitions
    - Expired lease recovery
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session
        self._settings = get_settings()

    async def create_task(
        self,
        task_id: str,
        duration: float = 0.0,
        dependencies: Sequence[str] | None = None,
        max_attempts: int | None = None,
    ) -> Task:
        """
        Create a new task.

        The task starts PENDING when it has dependencies, QUEUED otherwise.

        Args:
            task_id: Caller-supplied unique id.
            duration: Execution budget in seconds.
            dependencies: Ids of tasks that must complete first.
            max_attempts: Maximum attempts. Defaults to the configured value.

        Returns:
            The created Task.

        Raises:
            DuplicateTaskError: If a task with this id exists.
            InvalidTaskError: If the submission is malformed.
        """
        deps = normalize_dependencies(dependencies)
        if max_attempts is None:
            max_attempts = self._settings.default_max_attempts

        if not task_id:
            raise InvalidTaskError("Task id must not be empty")
        if task_id in deps:
            raise InvalidTaskError(f"Task {task_id} cannot depend on itself")
        if duration < 0:
            raise InvalidTaskError("Duration must not be negative")
        if max_attempts < 1:
            raise InvalidTaskError("max_attempts must be at least 1")

        now = utcnow()
        task = Task(
            id=task_id,
            duration=duration,
            status=initial_status(deps),
            dependencies=deps,
            attempts=0,
            max_attempts=max_attempts,
            locked_by=None,
            locked_until=None,
            version=0,
            created_at=now,
            updated_at=now,
            started_at=None,
            completed_at=None,
            failed_at=None,
            last_error=None,
            result=None,
        )
        self._session.add(task)

        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateTaskError(task_id) from e

        logger.info(
            "Created task",
            extra={"task_id": task_id, "status": task.status.value, "dependencies": deps},
        )
        return task

    async def get_task(self, task_id: str) -> Task | None:
        """
        Get a task by ID, always re-read from the store.

        Args:
            task_id: The task id.

        Returns:
            The Task or None if not found.
        """
        return await self._session.get(Task, task_id, populate_existing=True)

    async def get_statuses(self, task_ids: Iterable[str]) -> dict[str, TaskStatus]:
        """
        Get current status for a set of task ids.

        Ids with no task are absent from the result.
        """
        ids = list(task_ids)
        if not ids:
            return {}
        stmt = select(Task.id, Task.status).where(Task.id.in_(ids))
        result = await self._session.execute(stmt)
        return {task_id: status for task_id, status in result.all()}

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> tuple[Sequence[Task], int]:
        """
        List tasks with optional status filtering.

        Args:
            status: Optional status filter.
            limit: Maximum number of tasks to return.
            offset: Offset for pagination.
            newest_first: Order by creation time descending.

        Returns:
            Tuple of (tasks, total_count).
        """
        filters = []
        if status is not None:
            filters.append(Task.status == status)

        count_stmt = select(func.count()).select_from(Task).where(*filters)
        total = (await self._session.execute(count_stmt)).scalar() or 0

        order = (
            (Task.created_at.desc(), Task.id.desc())
            if newest_first
            else (Task.created_at.asc(), Task.id.asc())
        )
        stmt = (
            select(Task)
            .where(*filters)
            .order_by(*order)
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all(), total

    async def query_ready(
        self,
        worker_id: str,
        now: datetime | None = None,
        limit: int = 10,
    ) -> Sequence[Task]:
        """
        Fetch candidate tasks for a worker.

        Returns QUEUED and PENDING tasks whose lease is free, expired, or
        already held by this worker, QUEUED first and then oldest first.
        Dependency readiness is not checked here.

        Args:
            worker_id: The polling worker.
            now: Reference time for lease expiry.
            limit: Maximum number of candidates.

        Returns:
            Candidate tasks in polling order.
        """
        now = now or utcnow()
        priority = case(
            *[(Task.status == status, rank) for status, rank in STATUS_POLL_PRIORITY.items()],
            else_=len(STATUS_POLL_PRIORITY),
        )
        stmt = (
            select(Task)
            .where(
                Task.status.in_(LEASABLE_STATUSES),
                or_(_lease_is_free(now), Task.locked_by == worker_id),
            )
            .order_by(priority, Task.created_at.asc(), Task.id.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_pending(self, depends_on: str | None = None) -> Sequence[Task]:
        """
        List PENDING tasks, optionally only those listing `depends_on`.

        Args:
            depends_on: Only return tasks with this id among their dependencies.
        """
        stmt = (
            select(Task)
            .where(Task.status == TaskStatus.PENDING)
            .order_by(Task.created_at.asc(), Task.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        tasks = result.scalars().all()
        if depends_on is None:
            return tasks
        return [task for task in tasks if depends_on in (task.dependencies or [])]

    async def conditional_update(
        self,
        task_id: str,
        *predicates: Any,
        **values: Any,
    ) -> int:
        """
        Update one task only if it matches every predicate.

        Always bumps `version` and `updated_at`.

        Args:
            task_id: The task id.
            *predicates: Extra WHERE clauses the row must satisfy.
            **values: Column values to set.

        Returns:
            Number of affected rows (0 or 1).
        """
        return await self._update(Task.id == task_id, *predicates, **values)

    async def _update(self, *predicates: Any, **values: Any) -> int:
        stmt = (
            update(Task)
            .where(and_(*predicates))
            .values(version=Task.version + 1, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def acquire_lease(
        self,
        task_id: str,
        worker_id: str,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Try to take the lease on a task.

        This is the only mutual-exclusion point: the UPDATE matches only when
        the task is leasable and its lease is free or expired, so at most one
        of several concurrent callers affects the row.

        Args:
            task_id: The task id.
            worker_id: The requesting worker.
            ttl_seconds: Lease duration.
            now: Reference time.

        Returns:
            True if this worker now holds the lease.
        """
        now = now or utcnow()
        count = await self.conditional_update(
            task_id,
            Task.status.in_(LEASABLE_STATUSES),
            _lease_is_free(now),
            locked_by=worker_id,
            locked_until=now + timedelta(seconds=ttl_seconds),
        )
        return count == 1

    async def extend_lease(
        self,
        task_id: str,
        worker_id: str,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Extend the lease on a task (heartbeat).

        Returns:
            True if the lease was extended, False if it is no longer ours.
        """
        now = now or utcnow()
        count = await self.conditional_update(
            task_id,
            Task.locked_by == worker_id,
            locked_until=now + timedelta(seconds=ttl_seconds),
        )
        return count == 1

    async def release_lease(self, task_id: str, worker_id: str) -> bool:
        """Clear the lease on one task if `worker_id` holds it."""
        count = await self.conditional_update(
            task_id,
            Task.locked_by == worker_id,
            **_LEASE_CLEARED,
        )
        return count == 1

    async def release_worker_leases(self, worker_id: str) -> int:
        """
        Clear every lease held by a worker.

        Returns:
            Number of released leases.
        """
        count = await self._update(Task.locked_by == worker_id, **_LEASE_CLEARED)
        if count > 0:
            logger.info(
                "Released worker leases",
                extra={"worker_id": worker_id, "count": count},
            )
        return count

    async def promote_task(self, task_id: str) -> bool:
        """
        Move a task from PENDING to QUEUED.

        Idempotent: only a task still PENDING is affected.
        """
        count = await self.conditional_update(
            task_id,
            Task.status == TaskStatus.PENDING,
            status=TaskStatus.QUEUED,
        )
        return count == 1

    async def start_task(
        self,
        task_id: str,
        worker_id: str,
        now: datetime | None = None,
    ) -> Task | None:
        """
        Transition a leased task from QUEUED to RUNNING.

        Args:
            task_id: The task id.
            worker_id: The worker identifier (must hold the lease).
            now: Reference time.

        Returns:
            Updated Task or None if the transition failed.
        """
        now = now or utcnow()
        count = await self.conditional_update(
            task_id,
            Task.status == TaskStatus.QUEUED,
            Task.locked_by == worker_id,
            Task.attempts < Task.max_attempts,
            status=TaskStatus.RUNNING,
            attempts=Task.attempts + 1,
            started_at=func.coalesce(Task.started_at, now),
        )
        if count == 0:
            return None

        task = await self.get_task(task_id)
        logger.info(
            "Started task execution",
            extra={"task_id": task_id, "worker_id": worker_id, "attempt": task.attempts},
        )
        return task

    async def complete_task(
        self,
        task_id: str,
        worker_id: str,
        result: dict | None = None,
    ) -> Task | None:
        """
        Mark a task as successfully completed and release its lease.

        Args:
            task_id: The task id.
            worker_id: The worker identifier.
            result: Optional output reported by the task body.

        Returns:
            Updated Task or None if the transition failed.
        """
        count = await self.conditional_update(
            task_id,
            Task.status == TaskStatus.RUNNING,
            _held_by_or_released(worker_id),
            status=TaskStatus.COMPLETED,
            completed_at=utcnow(),
            result=result,
            **_LEASE_CLEARED,
        )
        if count == 0:
            return None

        logger.info("Task completed successfully", extra={"task_id": task_id})
        return await self.get_task(task_id)

    async def fail_task(
        self,
        task_id: str,
        worker_id: str,
        error: str,
    ) -> Task | None:
        """
        Handle a failed attempt. Either requeue the task or fail it for good.

        The row is read first to decide between retry and terminal failure,
        then written only if its version is unchanged since the read.

        Args:
            task_id: The task id.
            worker_id: The worker identifier.
            error: Error message.

        Returns:
            Updated Task or None if the transition failed.
        """
        task = await self.get_task(task_id)
        if task is None:
            return None

        if task.locked_by not in (worker_id, None):
            logger.warning(
                "Worker doesn't own task lease",
                extra={"task_id": task_id, "worker_id": worker_id},
            )
            return None

        new_status = status_after_failure(task.attempts, task.max_attempts)
        if not can_transition(task.status, new_status):
            return None

        values: dict[str, Any] = {"status": new_status, "last_error": error, **_LEASE_CLEARED}
        if new_status == TaskStatus.FAILED:
            values["failed_at"] = utcnow()
            logger.warning(
                f"Task failed permanently after {task.attempts} attempts",
                extra={"task_id": task_id, "error": error},
            )
        else:
            logger.info(
                "Task queued for retry",
                extra={"task_id": task_id, "attempt": task.attempts},
            )

        count = await self.conditional_update(
            task_id,
            Task.status == TaskStatus.RUNNING,
            Task.version == task.version,
            **values,
        )
        if count == 0:
            return None
        return await self.get_task(task_id)

    async def recover_expired_leases(self, now: datetime | None = None) -> tuple[int, int]:
        """
        Recover RUNNING tasks whose holder presumably crashed.

        A RUNNING task with an expired (or released) lease goes back to QUEUED,
        or to FAILED when it has no attempts left.

        Returns:
            Tuple of (requeued, failed) counts.
        """
        now = now or utcnow()
        abandoned = and_(
            Task.status == TaskStatus.RUNNING,
            or_(Task.locked_until < now, Task.locked_until.is_(None)),
        )

        requeued = await self._update(
            abandoned,
            Task.attempts < Task.max_attempts,
            status=TaskStatus.QUEUED,
            **_LEASE_CLEARED,
        )
        failed = await self._update(
            abandoned,
            Task.attempts >= Task.max_attempts,
            status=TaskStatus.FAILED,
            failed_at=now,
            last_error="Lease expired after final attempt",
            **_LEASE_CLEARED,
        )

        if requeued or failed:
            logger.info(
                f"Recovered {requeued + failed} tasks with expired leases",
                extra={"requeued": requeued, "failed": failed},
            )
        return requeued, failed

    async def clear_stale_leases(self, now: datetime | None = None) -> int:
        """
        Clear expired lease fields on tasks in any status.

        Returns:
            Number of cleared leases.
        """
        now = now or utcnow()
        return await self._update(
            Task.locked_by.is_not(None),
            or_(Task.locked_until < now, Task.locked_until.is_(None)),
            **_LEASE_CLEARED,
        )

    async def get_queue_depth(self) -> int:
        """Get the number of QUEUED tasks."""
        stmt = select(func.count()).select_from(Task).where(Task.status == TaskStatus.QUEUED)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def count_by_status(self) -> dict[str, int]:
        """
        Get task counts by status.

        Returns:
            Dictionary of status -> count, with every status present.
        """
        stmt = select(Task.status, func.count()).group_by(Task.status)
        result = await self._session.execute(stmt)
        counts = {status.value: 0 for status in TaskStatus}
        for status, count in result.all():
            counts[TaskStatus(status).value] = count
        return counts
