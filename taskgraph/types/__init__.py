"""
Type definitions for the task scheduler.
Contains input/output type definitions grouped by module.
"""

from taskgraph.types.api import (
    HealthResponse,
    StatsResponse,
    SubmitTaskRequest,
    SubmitTaskResponse,
    TaskListResponse,
)
from taskgraph.types.events import TaskEvent
from taskgraph.types.task import (
    CoordinatorStats,
    InFlightTask,
    ReclaimReport,
    TaskContext,
    TaskResult,
    TaskSnapshot,
    WorkerStats,
)

__all__ = [
    # API types
    "SubmitTaskRequest",
    "SubmitTaskResponse",
    "TaskListResponse",
    "StatsResponse",
    "HealthResponse",
    # Task types
    "TaskSnapshot",
    "TaskResult",
    "TaskContext",
    "InFlightTask",
    "WorkerStats",
    "CoordinatorStats",
    "ReclaimReport",
    # Event types
    "TaskEvent",
]
