"""
Task-related type definitions for internal use.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from taskgraph.constants import TaskStatus


class TaskSnapshot(BaseModel):
    """
    Immutable copy of a task row.
    Handed to observers, executors and API callers instead of ORM objects.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    duration: float
    status: TaskStatus
    dependencies: list[str]
    attempts: int
    max_attempts: int
    locked_by: str | None = None
    locked_until: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    last_error: str | None = None
    result: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskResult(BaseModel):
    """
    Result of one execution attempt.
    Returned by task executors after running a task body.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class TaskContext:
    """
    Context passed to task executors during execution.
    """

    task_id: str
    duration: float
    attempt: int
    max_attempts: int
    dependencies: list[str]
    worker_id: str
    lease_expires_at: datetime | None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)


@dataclass
class InFlightTask:
    """
    Bookkeeping for one task a worker is executing.
    Owned by the worker for the duration of the attempt.
    """

    task_id: str
    snapshot: TaskSnapshot
    started_monotonic: float
    execution: asyncio.Task | None = None
    renewal: asyncio.Task | None = None


@dataclass
class WorkerStats:
    """Point-in-time view of one worker."""

    worker_id: str
    running_tasks: int
    max_concurrent: int
    is_running: bool
    task_ids: list[str] = field(default_factory=list)


class CoordinatorStats(BaseModel):
    """Aggregated view of a worker fleet."""

    total_workers: int
    total_capacity: int
    running_tasks: int
    is_running: bool
    workers: list[dict[str, Any]]


@dataclass
class ReclaimReport:
    """What one reclaimer sweep changed."""

    requeued: int = 0
    failed: int = 0
    cleared: int = 0
    promoted: int = 0

    @property
    def total(self) -> int:
        return self.requeued + self.failed + self.cleared + self.promoted
