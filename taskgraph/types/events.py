"""
Event type definitions for worker notifications.
"""

from datetime import datetime

from pydantic import BaseModel

from taskgraph.constants import (
    EVENT_TASK_COMPLETED,
    EVENT_TASK_FAILED,
    EVENT_TASK_RETRY,
    EVENT_TASK_STARTED,
)
from taskgraph.db.models import utcnow
from taskgraph.types.task import TaskSnapshot


class TaskEvent(BaseModel):
    """
    Event emitted when a worker moves a task through its lifecycle.
    Carries the worker id and a snapshot of the task after the change.
    """

    event_type: str
    worker_id: str
    task: TaskSnapshot
    timestamp: datetime
    error: str | None = None

    @classmethod
    def task_started(cls, worker_id: str, task: TaskSnapshot) -> "TaskEvent":
        """Create a task started event."""
        return cls(
            event_type=EVENT_TASK_STARTED,
            worker_id=worker_id,
            task=task,
            timestamp=utcnow(),
        )

    @classmethod
    def task_completed(cls, worker_id: str, task: TaskSnapshot) -> "TaskEvent":
        """Create a task completed event."""
        return cls(
            event_type=EVENT_TASK_COMPLETED,
            worker_id=worker_id,
            task=task,
            timestamp=utcnow(),
        )

    @classmethod
    def task_retry(cls, worker_id: str, task: TaskSnapshot, error: str) -> "TaskEvent":
        """Create an event for a failed attempt that will be retried."""
        return cls(
            event_type=EVENT_TASK_RETRY,
            worker_id=worker_id,
            task=task,
            timestamp=utcnow(),
            error=error,
        )

    @classmethod
    def task_failed(cls, worker_id: str, task: TaskSnapshot, error: str) -> "TaskEvent":
        """Create an event for a task that failed permanently."""
        return cls(
            event_type=EVENT_TASK_FAILED,
            worker_id=worker_id,
            task=task,
            timestamp=utcnow(),
            error=error,
        )
