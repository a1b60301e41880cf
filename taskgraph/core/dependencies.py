"""
Dependency readiness and promotion.

A task is ready when every id it depends on belongs to a COMPLETED task.
Promotion re-scans PENDING tasks, which is linear in the number of pending
tasks per completion; dependency graphs are expected to be shallow.
"""

import logging

from taskgraph.constants import TaskStatus
from taskgraph.db.models import Task
from taskgraph.db.repository import TaskRepository

logger = logging.getLogger(__name__)


async def is_ready(repo: TaskRepository, task: Task) -> bool:
    """
    Check whether all of a task's dependencies are COMPLETED.

    A dependency id with no matching task is never satisfied.

    Args:
        repo: Repository bound to the current session.
        task: The candidate task.

    Returns:
        True if the task may run.
    """
    dependencies = task.dependencies or []
    if not dependencies:
        return True

    statuses = await repo.get_statuses(dependencies)
    return all(statuses.get(dep_id) == TaskStatus.COMPLETED for dep_id in dependencies)


async def promote_dependents(repo: TaskRepository, completed_task_id: str) -> list[str]:
    """
    Promote PENDING tasks that list `completed_task_id` and are now ready.

    Safe to repeat: a task already promoted is no longer PENDING and is
    neither listed nor updated again.

    Returns:
        Ids of the tasks moved to QUEUED by this call.
    """
    promoted = []
    for task in await repo.list_pending(depends_on=completed_task_id):
        if await is_ready(repo, task) and await repo.promote_task(task.id):
            promoted.append(task.id)

    if promoted:
        logger.info(
            f"Promoted {len(promoted)} dependent tasks",
            extra={"completed_task_id": completed_task_id, "promoted": promoted},
        )
    return promoted


async def promote_ready(repo: TaskRepository) -> list[str]:
    """
    Promote every PENDING task whose dependencies are all COMPLETED.

    Repairs promotions lost when a worker died between completing a task and
    re-scanning its dependents.

    Returns:
        Ids of the tasks moved to QUEUED by this call.
    """
    promoted = []
    for task in await repo.list_pending():
        if await is_ready(repo, task) and await repo.promote_task(task.id):
            promoted.append(task.id)
    return promoted
