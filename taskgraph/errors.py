"""
Error taxonomy for task submission, leasing and execution.
"""


class TaskGraphError(Exception):
    """Base class for all scheduler errors."""


class DuplicateTaskError(TaskGraphError):
    """A task with the submitted id already exists."""

    def __init__(self, task_id: str):
        super().__init__(f"Task already exists: {task_id}")
        self.task_id = task_id


class TaskNotFoundError(TaskGraphError):
    """No task with the requested id exists."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTaskError(TaskGraphError):
    """A submission failed validation."""


class InvalidTransitionError(TaskGraphError):
    """A status change is not allowed by the task state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid transition: {current} -> {target}")
        self.current = current
        self.target = target


class LeaseLostError(TaskGraphError):
    """
    A conditional transition matched no row.

    Expected under contention: another worker or the reclaimer already
    acted on the task.
    """

    def __init__(self, task_id: str, worker_id: str):
        super().__init__(f"Lease on {task_id} no longer held by {worker_id}")
        self.task_id = task_id
        self.worker_id = worker_id


class StoreUnavailableError(TaskGraphError):
    """The task store could not be reached or failed transiently."""


class TaskExecutionError(TaskGraphError):
    """Raised by a task body to report a failed attempt."""
