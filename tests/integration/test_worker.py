"""
Integration tests for worker functionality.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
import pytest_asyncio

from taskgraph.constants import TaskStatus
from taskgraph.db.connection import TaskStore
from taskgraph.db.models import utcnow
from taskgraph.db.repository import TaskRepository
from taskgraph.errors import StoreUnavailableError, TaskExecutionError
from taskgraph.types.events import TaskEvent
from taskgraph.types.task import TaskContext
from taskgraph.worker.executors import CallableExecutor
from taskgraph.worker.main import Worker
from taskgraph.worker.observer import CompositeObserver, LoggingObserver, WorkerObserver


class RecordingObserver(WorkerObserver):
    """Keeps every notification for assertions."""

    def __init__(self):
        self.events: list[TaskEvent] = []
        self.errors: list[Exception] = []

    def task_started(self, event: TaskEvent) -> None:
        self.events.append(event)

    def task_completed(self, event: TaskEvent) -> None:
        self.events.append(event)

    def task_failed(self, event: TaskEvent) -> None:
        self.events.append(event)

    def task_retry(self, event: TaskEvent) -> None:
        self.events.append(event)

    def worker_error(self, worker_id: str, error: Exception) -> None:
        self.errors.append(error)

    def types_for(self, task_id: str) -> list[str]:
        return [e.event_type for e in self.events if e.task.id == task_id]


class FlakyStore(TaskStore):
    """Shares an engine with a real store and can simulate an outage."""

    def __init__(self, store: TaskStore):
        super().__init__(store.engine)
        self.failing = False

    @asynccontextmanager
    async def session(self):
        if self.failing:
            raise StoreUnavailableError("simulated outage")
        async with super().session() as session:
            yield session


class TestWorkerIntegration:
    """Integration tests for the worker loop."""

    @pytest_asyncio.fixture
    async def make_worker(self, store: TaskStore):
        """Build workers with short intervals; stops them all at teardown."""
        workers: list[Worker] = []

        def _make(**kwargs) -> Worker:
            kwargs.setdefault("worker_id", f"worker-{len(workers)}")
            kwargs.setdefault("poll_interval", 0.02)
            kwargs.setdefault("lease_ttl_seconds", 2.0)
            kwargs.setdefault("reclaim_on_start", False)
            worker = Worker(kwargs.pop("store", store), **kwargs)
            workers.append(worker)
            return worker

        yield _make

        for worker in workers:
            await worker.stop(drain=True)

    @pytest.mark.asyncio
    async def test_dependency_ordering(self, store, submit, wait_for, make_worker):
        """A dependent never starts before its dependencies complete."""
        timeline: list[tuple[str, str]] = []

        async def body(context: TaskContext) -> None:
            timeline.append(("start", context.task_id))
            await asyncio.sleep(0.05)
            timeline.append(("end", context.task_id))

        observer = RecordingObserver()
        await submit("c", dependencies=["a", "b"])
        await submit("b", dependencies=["a"])
        await submit("a")

        for _ in range(2):
            await make_worker(executor=CallableExecutor(body), observer=observer).start()

        statuses = await wait_for(["a", "b", "c"])

        assert set(statuses.values()) == {TaskStatus.COMPLETED}
        assert timeline.index(("end", "a")) < timeline.index(("start", "b"))
        assert timeline.index(("end", "b")) < timeline.index(("start", "c"))
        assert observer.types_for("c") == ["task.started", "task.completed"]

        async with store.session() as session:
            repo = TaskRepository(session)
            a, c = await repo.get_task("a"), await repo.get_task("c")
        assert a.completed_at <= c.started_at

    @pytest.mark.asyncio
    async def test_retry_bound(self, store, submit, wait_for, make_worker):
        """A task that always fails runs exactly max_attempts times."""
        runs: list[int] = []

        async def body(context: TaskContext) -> None:
            runs.append(context.attempt)
            raise TaskExecutionError(f"attempt {context.attempt} failed")

        observer = RecordingObserver()
        await submit("flaky", max_attempts=3)
        await make_worker(
            executor=CallableExecutor(body),
            observer=CompositeObserver([LoggingObserver(), observer]),
        ).start()

        await wait_for(["flaky"])
        await asyncio.sleep(0.2)

        assert runs == [1, 2, 3]
        async with store.session() as session:
            task = await TaskRepository(session).get_task("flaky")
        assert task.status == TaskStatus.FAILED
        assert task.attempts == 3
        assert task.last_error == "attempt 3 failed"
        assert observer.types_for("flaky").count("task.retry") == 2
        assert observer.types_for("flaky")[-1] == "task.failed"

    @pytest.mark.asyncio
    async def test_crash_recovery(self, store, submit, wait_for, make_worker):
        """A task abandoned by a crashed worker is completed by another."""
        await submit("orphan")
        async with store.session() as session:
            repo = TaskRepository(session)
            assert await repo.acquire_lease(
                "orphan", "crashed-worker", ttl_seconds=1, now=utcnow() - timedelta(seconds=60)
            )
            assert await repo.start_task("orphan", "crashed-worker") is not None

        ran_on: list[str] = []

        async def body(context: TaskContext) -> None:
            ran_on.append(context.worker_id)

        await make_worker(
            worker_id="survivor",
            executor=CallableExecutor(body),
            reclaim_on_start=True,
        ).start()

        await wait_for(["orphan"])

        async with store.session() as session:
            task = await TaskRepository(session).get_task("orphan")
        assert task.status == TaskStatus.COMPLETED
        assert task.attempts == 2
        assert ran_on == ["survivor"]

    @pytest.mark.asyncio
    async def test_no_lost_submissions(self, submit, wait_for, make_worker):
        """100 tasks on one worker with two slots all reach a terminal state."""
        active = 0
        peak = 0

        async def body(context: TaskContext) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.001)
            active -= 1

        task_ids = [f"task-{i:03d}" for i in range(100)]
        for task_id in task_ids:
            await submit(task_id)

        worker = make_worker(executor=CallableExecutor(body), max_concurrent=2, poll_interval=0.005)
        await worker.start()

        statuses = await wait_for(task_ids, timeout=60)

        assert set(statuses.values()) == {TaskStatus.COMPLETED}
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_body_exception_does_not_stop_worker(self, submit, wait_for, make_worker):
        async def body(context: TaskContext) -> None:
            if context.task_id == "bad":
                raise ValueError("unexpected")

        await submit("bad", max_attempts=1)
        await submit("good")
        worker = make_worker(executor=CallableExecutor(body))
        await worker.start()

        statuses = await wait_for(["bad", "good"])

        assert statuses == {"bad": TaskStatus.FAILED, "good": TaskStatus.COMPLETED}
        assert worker.is_running

    @pytest.mark.asyncio
    async def test_store_outage_reported_and_skipped(self, store, submit, wait_for, make_worker):
        observer = RecordingObserver()
        flaky = FlakyStore(store)
        worker = make_worker(store=flaky, observer=observer)
        await submit("a")

        flaky.failing = True
        assert await worker.poll_once() == 0
        assert len(observer.errors) == 1
        assert isinstance(observer.errors[0], StoreUnavailableError)

        flaky.failing = False
        assert await worker.poll_once() == 1
        await wait_for(["a"])

    @pytest.mark.asyncio
    async def test_failed_claim_releases_lease(
        self, store, submit, wait_for, make_worker, monkeypatch
    ):
        """A store error between lease and claim leaves the task claimable at once."""
        observer = RecordingObserver()
        worker = make_worker(observer=observer)
        await submit("a")

        start_task = TaskRepository.start_task

        async def unavailable(self, task_id, worker_id, now=None):
            raise StoreUnavailableError("connection dropped")

        monkeypatch.setattr(TaskRepository, "start_task", unavailable)
        assert await worker.poll_once() == 0
        assert isinstance(observer.errors[0], StoreUnavailableError)

        async with store.session() as session:
            task = await TaskRepository(session).get_task("a")
            assert task.status == TaskStatus.QUEUED
            assert task.locked_by is None
            assert task.attempts == 0

        monkeypatch.setattr(TaskRepository, "start_task", start_task)
        assert await worker.poll_once() == 1
        await wait_for(["a"])

    @pytest.mark.asyncio
    async def test_poll_once_respects_max_concurrent(self, submit, wait_for, make_worker):
        gate = asyncio.Event()

        async def body(context: TaskContext) -> None:
            await gate.wait()

        for task_id in ("a", "b", "c"):
            await submit(task_id)
        worker = make_worker(executor=CallableExecutor(body), max_concurrent=2)

        assert await worker.poll_once() == 2
        assert await worker.poll_once() == 0
        stats = worker.get_stats()
        assert stats.running_tasks == 2
        assert stats.task_ids == ["a", "b"]

        gate.set()
        await wait_for(["a", "b"])
        await asyncio.sleep(0.1)

        assert await worker.poll_once() == 1
        await wait_for(["c"])

    @pytest.mark.asyncio
    async def test_stop_releases_leases(self, store, submit, wait_for, make_worker):
        gate = asyncio.Event()

        async def body(context: TaskContext) -> None:
            await gate.wait()

        await submit("a")
        worker = make_worker(executor=CallableExecutor(body))
        await worker.start()
        await wait_for(["a"], statuses=[TaskStatus.RUNNING])

        await worker.stop()

        async with store.session() as session:
            task = await TaskRepository(session).get_task("a")
        assert task.status == TaskStatus.RUNNING
        assert task.locked_by is None
        assert not worker.is_running

        # The in-flight body still reports its outcome
        gate.set()
        await wait_for(["a"])
        await asyncio.sleep(0.1)
        assert worker.running_count == 0

    @pytest.mark.parametrize("max_concurrent", [1, 3])
    @pytest.mark.asyncio
    async def test_stats(self, make_worker, max_concurrent):
        worker = make_worker(max_concurrent=max_concurrent)

        stats = worker.get_stats()

        assert stats.worker_id == "worker-0"
        assert stats.max_concurrent == max_concurrent
        assert stats.running_tasks == 0
        assert stats.is_running is False
