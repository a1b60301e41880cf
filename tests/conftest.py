"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from taskgraph.api.main import create_app
from taskgraph.constants import TaskStatus
from taskgraph.coordinator import Coordinator
from taskgraph.core.state_machine import TERMINAL_STATUSES
from taskgraph.db.connection import TaskStore
from taskgraph.db.repository import TaskRepository
from taskgraph.worker.executors import SimulatedExecutor

WaitFor = Callable[..., Awaitable[dict[str, TaskStatus]]]


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """A file-backed SQLite database private to one test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'taskgraph.db'}"


@pytest_asyncio.fixture
async def store(database_url: str) -> AsyncGenerator[TaskStore]:
    """Create a task store with the schema in place."""
    store = TaskStore.from_url(database_url)
    await store.create_schema()

    yield store

    await store.close()


@pytest_asyncio.fixture
async def db_session(store: TaskStore) -> AsyncGenerator[AsyncSession]:
    """One store transaction, committed when the test ends."""
    async with store.session() as session:
        yield session


@pytest_asyncio.fixture
async def repo(db_session: AsyncSession) -> TaskRepository:
    """Create a repository instance."""
    return TaskRepository(db_session)


@pytest.fixture
def submit(store: TaskStore) -> Callable[..., Awaitable[None]]:
    """Create tasks, each in its own transaction."""

    async def _submit(task_id: str, **kwargs) -> None:
        async with store.session() as session:
            await TaskRepository(session).create_task(task_id, **kwargs)

    return _submit


@pytest.fixture
def wait_for(store: TaskStore) -> WaitFor:
    """
    Poll the store until every given task reaches one of `statuses`.

    Returns the final status of each task; fails the test on timeout.
    """

    async def _wait_for(
        task_ids: Iterable[str],
        statuses: Iterable[TaskStatus] = TERMINAL_STATUSES,
        timeout: float = 15.0,
    ) -> dict[str, TaskStatus]:
        ids = list(task_ids)
        wanted = set(statuses)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            async with store.session() as session:
                current = await TaskRepository(session).get_statuses(ids)
            if all(current.get(task_id) in wanted for task_id in ids):
                return current
            if loop.time() > deadline:
                raise AssertionError(f"Timed out waiting for {sorted(wanted)}: {current}")
            await asyncio.sleep(0.05)

    return _wait_for


@pytest_asyncio.fixture
async def coordinator(store: TaskStore) -> AsyncGenerator[Coordinator]:
    """A started single-worker coordinator with fast simulated tasks."""
    coordinator = Coordinator(
        store=store,
        executor=SimulatedExecutor(time_scale=0.01),
        worker_count=1,
        max_concurrent_per_worker=2,
        poll_interval=0.02,
        lease_ttl_seconds=2.0,
        reclaim_interval_seconds=0.5,
    )
    await coordinator.start()

    yield coordinator

    await coordinator.stop(drain=True)


@pytest.fixture
def app(coordinator: Coordinator) -> FastAPI:
    """Create a FastAPI app serving the test coordinator."""
    return create_app(coordinator)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
