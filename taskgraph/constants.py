"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle states.

    State transitions:
    - PENDING -> QUEUED (all dependencies completed)
    - QUEUED -> RUNNING (lease acquired and task claimed)
    - RUNNING -> COMPLETED (success)
    - RUNNING -> QUEUED (retry, or lease expired - crash recovery)
    - RUNNING -> FAILED (max attempts exhausted)
    """

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Candidate ordering during polling (lower = considered first)
STATUS_POLL_PRIORITY: dict[TaskStatus, int] = {
    TaskStatus.QUEUED: 0,
    TaskStatus.PENDING: 1,
}

# Default values
DEFAULT_MAX_ATTEMPTS = 3
CANDIDATE_OVERFETCH_FACTOR = 2

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_QUEUE_DEPTH = "task_queue_depth"
METRIC_TASKS_SUBMITTED = "tasks_submitted_total"
METRIC_TASKS_COMPLETED = "tasks_completed_total"
METRIC_TASK_DURATION = "task_duration_seconds"
METRIC_LEASE_ACQUIRED = "lease_acquired_total"
METRIC_LEASE_LOST = "lease_lost_total"
METRIC_LEASE_RECLAIMED = "lease_reclaimed_total"

# Trace span names
SPAN_ACQUIRE_LEASE = "acquire_lease"
SPAN_EXECUTE_TASK = "execute_task"
SPAN_RECLAIM = "reclaim_stale_leases"

# Worker notification types
EVENT_TASK_STARTED = "task.started"
EVENT_TASK_COMPLETED = "task.completed"
EVENT_TASK_FAILED = "task.failed"
EVENT_TASK_RETRY = "task.retry"
