# tests/test_server.py

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import test_utils

from core.errors import RemoteAPIError
from core.models.runs import WorkflowStatus
from engine.service import TaskService
from server import create_app

from .fakes import FakeWorkflowClient


@pytest_asyncio.fixture()
async def http(service: TaskService):
    client = test_utils.TestClient(test_utils.TestServer(create_app(service)))
    await client.start_server()
    yield client
    await client.close()


@pytest.mark.asyncio
async def test_health(http: test_utils.TestClient) -> None:
    resp = await http.get("/health")

    assert resp.status == 200
    assert (await resp.json())["status"] == "ok"


@pytest.mark.asyncio
async def test_create_list_get_update_delete(http: test_utils.TestClient, task_payload: dict) -> None:
    resp = await http.post("/api/tasks", json=task_payload)
    assert resp.status == 201
    created = await resp.json()
    task_id = created["id"]
    assert created["task"]["ref"] == "main"

    resp = await http.get("/api/tasks")
    assert [t["id"] for t in await resp.json()] == [task_id]

    resp = await http.get(f"/api/tasks/{task_id}")
    assert (await resp.json())["name"] == "nightly-build"

    resp = await http.put("/api/tasks", json={"id": task_id, "cron": "0 5 * * *"})
    assert resp.status == 200
    body = await resp.json()
    assert body["success"] is True
    assert body["task"]["cron"] == "0 5 * * *"

    resp = await http.delete("/api/tasks", json={"id": task_id})
    assert resp.status == 200
    assert (await resp.json()) == {"success": True}

    resp = await http.get(f"/api/tasks/{task_id}")
    assert resp.status == 404


@pytest.mark.asyncio
async def test_validation_error_is_400_with_field(http: test_utils.TestClient, task_payload: dict) -> None:
    resp = await http.post("/api/tasks", json={**task_payload, "cron": "nope"})

    assert resp.status == 400
    body = await resp.json()
    assert body["field"] == "cron"
    assert (await (await http.get("/api/tasks")).json()) == []


@pytest.mark.asyncio
async def test_invalid_json_is_400(http: test_utils.TestClient) -> None:
    resp = await http.post("/api/tasks", data="{not json", headers={"Content-Type": "application/json"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_duplicate_name_is_409(http: test_utils.TestClient, task_payload: dict) -> None:
    await http.post("/api/tasks", json=task_payload)

    resp = await http.post("/api/tasks", json=task_payload)

    assert resp.status == 409


@pytest.mark.asyncio
async def test_update_without_id_is_400(http: test_utils.TestClient) -> None:
    resp = await http.put("/api/tasks", json={"cron": "0 5 * * *"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_run_now_reports_disabled(http: test_utils.TestClient, client: FakeWorkflowClient, task_payload: dict) -> None:
    task_id = (await (await http.post("/api/tasks", json=task_payload)).json())["id"]
    client.state = "disabled_inactivity"

    resp = await http.post("/api/tasks/run", json={"id": task_id})

    assert resp.status == 200
    body = await resp.json()
    assert body["status"] == "disabled"
    assert body["success"] is False
    assert client.dispatches == []


@pytest.mark.asyncio
async def test_upstream_failure_is_502(http: test_utils.TestClient, client: FakeWorkflowClient, task_payload: dict) -> None:
    task_id = (await (await http.post("/api/tasks", json=task_payload)).json())["id"]
    client.fail_with = RemoteAPIError(422, "GitHub API request failed: No ref found")

    resp = await http.post("/api/tasks/run", json={"id": task_id})

    assert resp.status == 502
    assert (await resp.json())["upstream_status"] == 422


@pytest.mark.asyncio
async def test_status_requires_repo_and_workflow(http: test_utils.TestClient) -> None:
    resp = await http.post("/api/tasks/status", json={"repo": "acme/widgets"})

    assert resp.status == 400


@pytest.mark.asyncio
async def test_status_is_always_200(http: test_utils.TestClient, client: FakeWorkflowClient) -> None:
    client.status = WorkflowStatus(status="API_ERROR", message="API error: boom")

    resp = await http.post("/api/tasks/status", json={"repo": "acme/widgets", "workflow": "build.yml"})

    assert resp.status == 200
    assert (await resp.json())["status"] == "API_ERROR"


@pytest.mark.asyncio
async def test_cancel(http: test_utils.TestClient, client: FakeWorkflowClient) -> None:
    resp = await http.post("/api/tasks/cancel", json={"repo": "acme/widgets", "run_id": 99})

    assert resp.status == 200
    assert client.cancels == [("acme/widgets", 99)]


@pytest.mark.asyncio
async def test_repo_info(http: test_utils.TestClient) -> None:
    resp = await http.get("/api/tasks/repo-info", params={"repo": "acme/widgets"})

    assert resp.status == 200
    assert (await resp.json())["branches"] == ["main", "dev"]


@pytest.mark.asyncio
async def test_repo_info_requires_repo(http: test_utils.TestClient) -> None:
    resp = await http.get("/api/tasks/repo-info")

    assert resp.status == 400


@pytest.mark.asyncio
async def test_repo_info_upstream_404_is_502(http: test_utils.TestClient) -> None:
    resp = await http.get("/api/tasks/repo-info", params={"repo": "missing/repo"})

    assert resp.status == 502
    assert (await resp.json())["upstream_status"] == 404
