"""
Integration tests for the API endpoints.
"""

import asyncio
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taskgraph.api.main import create_app
from taskgraph.constants import TaskStatus
from taskgraph.coordinator import Coordinator
from taskgraph.db.connection import TaskStore


async def _wait_for_status(
    client: AsyncClient, task_id: str, status: str, timeout: float = 10.0
) -> dict:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        data = (await client.get(f"/v1/tasks/{task_id}")).json()
        if data["status"] == status or loop.time() > deadline:
            return data
        await asyncio.sleep(0.05)


@pytest_asyncio.fixture
async def created_task(client: AsyncClient) -> dict:
    """Submit a task for testing."""
    response = await client.post("/v1/tasks", json={"id": "build", "duration": 1.0})
    return response.json()["task"]


class TestTaskAPI:
    """Integration tests for task API endpoints."""

    @pytest.mark.asyncio
    async def test_submit_task(self, client: AsyncClient):
        response = await client.post(
            "/v1/tasks",
            json={"id": "deploy", "duration": 2.0, "dependencies": ["build"], "max_attempts": 5},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Task submitted successfully"
        assert data["task"]["id"] == "deploy"
        assert data["task"]["status"] == TaskStatus.PENDING
        assert data["task"]["dependencies"] == ["build"]
        assert data["task"]["max_attempts"] == 5

    @pytest.mark.asyncio
    async def test_submit_duplicate(self, client: AsyncClient, created_task: dict):
        response = await client.post("/v1/tasks", json={"id": created_task["id"]})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_submit_self_dependency(self, client: AsyncClient):
        response = await client.post("/v1/tasks", json={"id": "loop", "dependencies": ["loop"]})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_submit_negative_duration(self, client: AsyncClient):
        response = await client.post("/v1/tasks", json={"id": "x", "duration": -1})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_task_runs_to_completion(self, client: AsyncClient, created_task: dict):
        data = await _wait_for_status(client, created_task["id"], TaskStatus.COMPLETED)

        assert data["status"] == TaskStatus.COMPLETED
        assert data["attempts"] == 1
        assert data["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_dependent_runs_after_dependency(self, client: AsyncClient):
        await client.post("/v1/tasks", json={"id": "second", "dependencies": ["first"]})
        await client.post("/v1/tasks", json={"id": "first", "duration": 0.5})

        second = await _wait_for_status(client, "second", TaskStatus.COMPLETED)
        first = (await client.get("/v1/tasks/first")).json()

        assert second["status"] == TaskStatus.COMPLETED
        assert datetime.fromisoformat(first["completed_at"]) <= datetime.fromisoformat(
            second["started_at"]
        )

    @pytest.mark.asyncio
    async def test_get_unknown_task(self, client: AsyncClient):
        response = await client.get("/v1/tasks/missing")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_tasks_paginated(self, client: AsyncClient):
        for i in range(3):
            await client.post("/v1/tasks", json={"id": f"t{i}", "dependencies": ["never"]})

        response = await client.get("/v1/tasks", params={"page": 1, "page_size": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["has_next"] is True
        assert [t["id"] for t in data["tasks"]] == ["t2", "t1"]

        response = await client.get("/v1/tasks", params={"status": "completed"})
        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, created_task: dict):
        response = await client.get("/v1/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_workers"] == 1
        assert data["total_capacity"] == 2
        assert sum(data["task_counts"].values()) == 1


class TestHealthAPI:
    """Tests for health and metrics endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"

    @pytest.mark.asyncio
    async def test_ready_and_live(self, client: AsyncClient):
        assert (await client.get("/ready")).json() == {"ready": True}
        assert (await client.get("/live")).json() == {"alive": True}

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient, created_task: dict):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert created_task["status"] == TaskStatus.QUEUED
        assert 'tasks_submitted_total{initial_status="queued"}' in response.text


class TestStoppedCoordinator:
    """Requests against a coordinator that is not running."""

    @pytest.mark.asyncio
    async def test_returns_service_unavailable(self, store: TaskStore):
        app = create_app(Coordinator(store=store, worker_count=0))
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            assert (await client.post("/v1/tasks", json={"id": "a"})).status_code == 503
            assert (await client.get("/live")).status_code == 200
