"""
API request and response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from taskgraph.types.task import TaskSnapshot


class SubmitTaskRequest(BaseModel):
    """Request body for submitting a task."""

    id: str = Field(..., min_length=1, max_length=255, description="Unique task id")
    duration: float = Field(default=1.0, ge=0, description="Execution budget in seconds")
    dependencies: list[str] = Field(
        default_factory=list, description="Ids of tasks that must complete first"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, le=100, description="Maximum attempts"
    )


class SubmitTaskResponse(BaseModel):
    """Response body after submitting a task."""

    task: TaskSnapshot
    message: str = "Task submitted successfully"


class TaskListResponse(BaseModel):
    """Paginated list of tasks."""

    tasks: list[TaskSnapshot]
    total: int
    page: int
    page_size: int
    has_next: bool


class StatsResponse(BaseModel):
    """Fleet and queue statistics."""

    total_workers: int
    total_capacity: int
    running_tasks: int
    workers: list[dict]
    task_counts: dict[str, int]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime

