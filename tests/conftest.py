# tests/conftest.py

from __future__ import annotations

from pathlib import Path

import pytest

from core.bus import AsyncIOBus
from core.data.store import TaskStore
from engine.dispatch import DispatchGuard
from engine.service import TaskService

from .fakes import FakeWorkflowClient


@pytest.fixture()
def store(tmp_path: Path):
    """Real SQLite store in a per-test directory."""
    s = TaskStore(tmp_path / "tasks.sqlite")
    yield s
    s.close()


@pytest.fixture()
def bus(tmp_path: Path) -> AsyncIOBus:
    return AsyncIOBus(events_dir=tmp_path / "events")


@pytest.fixture()
def client() -> FakeWorkflowClient:
    return FakeWorkflowClient()


@pytest.fixture()
def guard() -> DispatchGuard:
    return DispatchGuard()


@pytest.fixture()
def service(store: TaskStore, client: FakeWorkflowClient, bus: AsyncIOBus, guard: DispatchGuard) -> TaskService:
    return TaskService(store=store, client=client, bus=bus, guard=guard)


@pytest.fixture()
def task_payload() -> dict:
    return {
        "name": "nightly-build",
        "repo": "acme/widgets",
        "workflow": "build.yml",
        "cron": "0 2 * * *",
        "description": "Nightly build",
    }
