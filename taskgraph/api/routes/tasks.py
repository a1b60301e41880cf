"""
Task submission and query routes.
"""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from taskgraph.api.deps import CoordinatorDep
from taskgraph.constants import API_V1_PREFIX, TaskStatus
from taskgraph.errors import DuplicateTaskError, InvalidTaskError, TaskNotFoundError
from taskgraph.types.api import (
    StatsResponse,
    SubmitTaskRequest,
    SubmitTaskResponse,
    TaskListResponse,
)
from taskgraph.types.task import TaskSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix=API_V1_PREFIX, tags=["Tasks"])


@router.post(
    "/tasks",
    response_model=SubmitTaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a task",
    description="Submit a new task. Tasks with dependencies start pending.",
)
async def submit_task(
    request: SubmitTaskRequest,
    coordinator: CoordinatorDep,
) -> SubmitTaskResponse:
    """
    Submit a new task.

    Raises:
        HTTPException: 409 for a duplicate id, 422 for an invalid submission.
    """
    try:
        task = await coordinator.submit_task(
            request.id,
            duration=request.duration,
            dependencies=request.dependencies,
            max_attempts=request.max_attempts,
        )
    except DuplicateTaskError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InvalidTaskError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return SubmitTaskResponse(task=task)


@router.get(
    "/tasks/{task_id}",
    response_model=TaskSnapshot,
    summary="Get task details",
)
async def get_task(task_id: str, coordinator: CoordinatorDep) -> TaskSnapshot:
    try:
        return await coordinator.get_task(task_id)
    except TaskNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get(
    "/tasks",
    response_model=TaskListResponse,
    summary="List tasks",
    description="List tasks newest first with optional status filtering.",
)
async def list_tasks(
    coordinator: CoordinatorDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    status: TaskStatus | None = Query(default=None),
) -> TaskListResponse:
    """
    List tasks.

    Args:
        coordinator: The running coordinator.
        page: Page number (1-indexed).
        page_size: Number of items per page.
        status: Optional status filter.
    """
    offset = (page - 1) * page_size
    tasks, total = await coordinator.list_tasks(status=status, limit=page_size, offset=offset)

    return TaskListResponse(
        tasks=tasks,
        total=total,
        page=page,
        page_size=page_size,
        has_next=offset + len(tasks) < total,
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Scheduler statistics",
    description="Worker fleet capacity and task counts by status.",
)
async def get_stats(coordinator: CoordinatorDep) -> StatsResponse:
    stats = coordinator.get_stats()
    return StatsResponse(
        total_workers=stats.total_workers,
        total_capacity=stats.total_capacity,
        running_tasks=stats.running_tasks,
        workers=stats.workers,
        task_counts=await coordinator.count_by_status(),
    )
