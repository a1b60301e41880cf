"""
Task state machine.

Pure logic: no store access. The repository writes each fixed transition as
a conditional update whose status predicate matches this table; the failure
transition picks its target at run time and checks `can_transition` first.
"""

from collections.abc import Sequence

from taskgraph.constants import TaskStatus
from taskgraph.errors import InvalidTransitionError

# Valid next states for each state
VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.QUEUED}),
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset({
        TaskStatus.COMPLETED,
        TaskStatus.QUEUED,  # retry or reclaim
        TaskStatus.FAILED,
    }),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})

# Statuses a lease may be acquired on
LEASABLE_STATUSES = (TaskStatus.QUEUED, TaskStatus.PENDING)


def initial_status(dependencies: Sequence[str]) -> TaskStatus:
    """Status a task is created in."""
    return TaskStatus.PENDING if dependencies else TaskStatus.QUEUED


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in VALID_TRANSITIONS[TaskStatus(current)]


def ensure_transition(current: TaskStatus, target: TaskStatus) -> TaskStatus:
    """
    Validate a transition.

    Raises:
        InvalidTransitionError: If the state machine forbids it.
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(str(current), str(target))
    return target


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def has_attempts_left(attempts: int, max_attempts: int) -> bool:
    return attempts < max_attempts


def status_after_failure(attempts: int, max_attempts: int) -> TaskStatus:
    """
    Where a RUNNING task goes after a failed or abandoned attempt.

    `attempts` already counts the attempt that just ended.
    """
    if has_attempts_left(attempts, max_attempts):
        return TaskStatus.QUEUED
    return TaskStatus.FAILED


def normalize_dependencies(dependencies: Sequence[str] | None) -> list[str]:
    """De-duplicate dependency ids, keeping first-seen order."""
    return list(dict.fromkeys(dependencies or ()))
