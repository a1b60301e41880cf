"""
Task executors.

An executor runs a task body and reports success or failure; the worker loop
never looks at what a task actually does. Task bodies must be idempotent -
they may run more than once for the same task after a worker crash or a lost
lease.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from taskgraph.config import get_settings
from taskgraph.errors import TaskExecutionError
from taskgraph.types.task import TaskContext, TaskResult

logger = logging.getLogger(__name__)

# A task body may return a full TaskResult, an output dict, or nothing
TaskBody = Callable[[TaskContext], Awaitable[TaskResult | dict[str, Any] | None]]


class TaskExecutor(ABC):
    """Runs one attempt of a task."""

    @abstractmethod
    async def execute(self, context: TaskContext) -> TaskResult:
        """
        Run the task body.

        Implementations report failure either by returning an unsuccessful
        TaskResult or by raising TaskExecutionError.
        """


class SimulatedExecutor(TaskExecutor):
    """
    Stands in for real work by sleeping for the task's duration.

    Always succeeds.
    """

    def __init__(self, time_scale: float | None = None):
        """
        Args:
            time_scale: Multiplier applied to each task's duration.
        """
        self.time_scale = time_scale if time_scale is not None else get_settings().simulated_time_scale

    async def execute(self, context: TaskContext) -> TaskResult:
        delay = context.duration * self.time_scale
        logger.debug(
            "Simulated task starting",
            extra={"task_id": context.task_id, "duration": delay},
        )
        await asyncio.sleep(delay)
        return TaskResult(success=True, output={"slept_for": delay})


class CallableExecutor(TaskExecutor):
    """
    Runs an async callable as the task body.

    Example:
        async def build(context: TaskContext) -> dict:
            ...
            return {"artifact": path}

        worker = Worker(store, executor=CallableExecutor(build))
    """

    def __init__(self, body: TaskBody):
        self._body = body

    async def execute(self, context: TaskContext) -> TaskResult:
        outcome = await self._body(context)
        if isinstance(outcome, TaskResult):
            return outcome
        return TaskResult(success=True, output=outcome)


async def execute_task(executor: TaskExecutor, context: TaskContext) -> TaskResult:
    """
    Execute one attempt and never raise for a failing body.

    Exceptions raised by the body become unsuccessful results so the worker
    can apply the retry policy.

    Args:
        executor: The executor to run.
        context: The task context.

    Returns:
        TaskResult with `duration_ms` filled in.
    """
    started = time.monotonic()
    try:
        result = await executor.execute(context)
    except TaskExecutionError as e:
        result = TaskResult(success=False, error=str(e))
    except Exception as e:
        logger.exception(
            "Task body raised exception",
            extra={"task_id": context.task_id, "error": str(e)},
        )
        result = TaskResult(
            success=False,
            error=f"{type(e).__name__}: {e}",
        )

    return result.model_copy(update={"duration_ms": (time.monotonic() - started) * 1000})
