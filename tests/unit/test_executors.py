"""
Unit tests for task executors.
"""

import asyncio

import pytest

from taskgraph.errors import TaskExecutionError
from taskgraph.types.task import TaskContext, TaskResult
from taskgraph.worker.executors import (
    CallableExecutor,
    SimulatedExecutor,
    execute_task,
)


class TestExecutors:
    """Tests for task executors."""

    @pytest.fixture
    def task_context(self) -> TaskContext:
        """Create a test task context."""
        return TaskContext(
            task_id="build",
            duration=0.5,
            attempt=1,
            max_attempts=3,
            dependencies=[],
            worker_id="test-worker",
            lease_expires_at=None,
        )

    def test_context_attempt_helpers(self, task_context: TaskContext):
        assert task_context.remaining_attempts == 2
        assert not task_context.is_last_attempt

        task_context.attempt = 3
        assert task_context.is_last_attempt

    @pytest.mark.asyncio
    async def test_simulated_executor_scales_duration(self, task_context: TaskContext):
        result = await SimulatedExecutor(time_scale=0.01).execute(task_context)

        assert result.success is True
        assert result.output == {"slept_for": pytest.approx(0.005)}

    @pytest.mark.asyncio
    async def test_callable_returning_dict(self, task_context: TaskContext):
        async def body(context: TaskContext) -> dict:
            return {"id": context.task_id}

        result = await CallableExecutor(body).execute(task_context)

        assert result.success is True
        assert result.output == {"id": "build"}

    @pytest.mark.asyncio
    async def test_callable_returning_nothing(self, task_context: TaskContext):
        async def body(context: TaskContext) -> None:
            await asyncio.sleep(0)

        result = await CallableExecutor(body).execute(task_context)

        assert result.success is True
        assert result.output is None

    @pytest.mark.asyncio
    async def test_callable_returning_failed_result(self, task_context: TaskContext):
        async def body(context: TaskContext) -> TaskResult:
            return TaskResult(success=False, error="bad input")

        result = await execute_task(CallableExecutor(body), task_context)

        assert result.success is False
        assert result.error == "bad input"
        assert result.duration_ms is not None

    @pytest.mark.asyncio
    async def test_execution_error_becomes_failure(self, task_context: TaskContext):
        async def body(context: TaskContext) -> None:
            raise TaskExecutionError("Intentional failure")

        result = await execute_task(CallableExecutor(body), task_context)

        assert result.success is False
        assert result.error == "Intentional failure"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failure(self, task_context: TaskContext):
        async def body(context: TaskContext) -> None:
            raise ValueError("division by zero")

        result = await execute_task(CallableExecutor(body), task_context)

        assert result.success is False
        assert "ValueError" in result.error
        assert "division by zero" in result.error

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, task_context: TaskContext):
        async def body(context: TaskContext) -> None:
            await asyncio.sleep(10)

        running = asyncio.create_task(execute_task(CallableExecutor(body), task_context))
        await asyncio.sleep(0.01)
        running.cancel()

        with pytest.raises(asyncio.CancelledError):
            await running
