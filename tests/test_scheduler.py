# tests/test_scheduler.py

from __future__ import annotations

import asyncio

import pytest

from core.bus import AsyncIOBus
from core.data.store import TaskStore
from core.errors import RemoteAPIError
from core.models.events import EventTypes
from core.models.tasks import TaskInput, TaskPatch
from engine.dispatch import DispatchGuard
from engine.service import TaskService
from scheduler.runner import Scheduler

from .fakes import FakeWorkflowClient, RecordingBus


def _input(name: str = "nightly", cron: str = "0 2 * * *", **overrides) -> TaskInput:
    return TaskInput(name=name, repo="acme/widgets", workflow="build.yml", cron=cron, **overrides)


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_start_registers_only_enabled_tasks(store: TaskStore, client: FakeWorkflowClient) -> None:
    on = store.create(_input("on"))
    store.create(_input("off", enabled=False))
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)

    await scheduler.start()
    try:
        assert scheduler.scheduled_ids() == [on]
        assert scheduler.running is True
        await _wait_for(lambda: scheduler.next_fire_times()[on] is not None)
        assert scheduler.next_fire_times()[on].hour == 2
    finally:
        await scheduler.stop()

    assert scheduler.scheduled_ids() == []
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_unparseable_stored_cron_is_not_scheduled(store: TaskStore, client: FakeWorkflowClient) -> None:
    good = store.create(_input("good"))
    bad = store.create(_input("bad"))
    with store.db:
        store.db.execute("UPDATE tasks SET cron = ? WHERE id = ?", ("not a cron", bad))
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)

    await scheduler.start()
    try:
        assert scheduler.scheduled_ids() == [good]
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_task_events_resync_timers(
    store: TaskStore,
    client: FakeWorkflowClient,
    bus: AsyncIOBus,
    service: TaskService,
    task_payload: dict,
) -> None:
    scheduler = Scheduler(store=store, client=client, bus=bus, check_interval=3600)
    await scheduler.start()
    try:
        task = await service.create_task(task_payload)
        assert scheduler.scheduled_ids() == [task.id]

        await service.update_task(task.id, {"enabled": False})
        assert scheduler.scheduled_ids() == []

        await service.update_task(task.id, {"enabled": True})
        assert scheduler.scheduled_ids() == [task.id]

        await service.delete_task(task.id)
        assert scheduler.scheduled_ids() == []
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_schedule_change_replaces_timer(store: TaskStore, client: FakeWorkflowClient) -> None:
    task_id = store.create(_input(cron="0 2 * * *"))
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)
    await scheduler.start()
    try:
        await _wait_for(lambda: scheduler.next_fire_times()[task_id] is not None)
        before = scheduler.next_fire_times()[task_id]

        store.update(task_id, TaskPatch(cron="0 3 * * *"))
        await scheduler.sync()
        await _wait_for(lambda: scheduler.next_fire_times().get(task_id) is not None)

        after = scheduler.next_fire_times()[task_id]
        assert after.hour == 3
        assert before.hour == 2
        assert scheduler.scheduled_ids() == [task_id]
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_every_second_task_fires(store: TaskStore, client: FakeWorkflowClient) -> None:
    store.create(_input(cron="* * * * * *", ref="release"))
    bus = RecordingBus()
    scheduler = Scheduler(store=store, client=client, bus=bus, check_interval=3600)

    await scheduler.start()
    try:
        await _wait_for(lambda: len(client.dispatches) >= 1)
    finally:
        await scheduler.stop()

    dispatch = client.dispatches[0]
    assert (dispatch.repo, dispatch.workflow, dispatch.ref) == ("acme/widgets", "build.yml", "release")
    assert EventTypes.SCHEDULE_FIRED in bus.types()


@pytest.mark.asyncio
async def test_failed_fire_is_swallowed_and_timer_survives(store: TaskStore, client: FakeWorkflowClient) -> None:
    task_id = store.create(_input(cron="* * * * * *"))
    client.fail_with = RemoteAPIError(500, "GitHub API request failed: boom")
    bus = RecordingBus()
    scheduler = Scheduler(store=store, client=client, bus=bus, check_interval=3600)

    await scheduler.start()
    try:
        await _wait_for(lambda: bus.types().count(EventTypes.SCHEDULE_FIRED) >= 2)
        assert scheduler.scheduled_ids() == [task_id]
    finally:
        await scheduler.stop()

    fired = [e for e in bus.published if e.type == EventTypes.SCHEDULE_FIRED]
    assert fired[0].payload["result"]["status"] == "error"
    assert client.dispatches == []


@pytest.mark.asyncio
async def test_fire_skips_while_dispatch_in_flight(store: TaskStore, client: FakeWorkflowClient) -> None:
    task_id = store.create(_input())
    task = store.get(task_id)
    guard = DispatchGuard()
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), guard=guard)

    client.gate = asyncio.Event()
    first = asyncio.create_task(scheduler.fire(task))
    await _wait_for(lambda: guard.in_flight(task_id))

    second = await scheduler.fire(task)
    assert second.status == "skipped"

    client.gate.set()
    assert (await first).status == "triggered"
    assert guard.in_flight(task_id) is False
    assert len(client.dispatches) == 1


@pytest.mark.asyncio
async def test_disabled_guard_allows_overlap(store: TaskStore, client: FakeWorkflowClient) -> None:
    task = store.get(store.create(_input()))
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), guard=DispatchGuard(enabled=False))

    client.gate = asyncio.Event()
    first = asyncio.create_task(scheduler.fire(task))
    second = asyncio.create_task(scheduler.fire(task))
    await asyncio.sleep(0)
    client.gate.set()

    results = await asyncio.gather(first, second)
    assert [r.status for r in results] == ["triggered", "triggered"]
    assert len(client.dispatches) == 2


@pytest.mark.asyncio
async def test_sync_keeps_timers_when_store_unreadable(store: TaskStore, client: FakeWorkflowClient) -> None:
    task_id = store.create(_input())
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)
    await scheduler.start()
    try:
        store.close()
        await scheduler.sync()
        assert scheduler.scheduled_ids() == [task_id]
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_reconciliation_loop_picks_up_silent_writes(store: TaskStore, client: FakeWorkflowClient) -> None:
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=0.1)
    await scheduler.start()
    try:
        assert scheduler.scheduled_ids() == []

        # Written straight to the store: no task event is published.
        task_id = store.create(_input())

        await _wait_for(lambda: scheduler.scheduled_ids() == [task_id])
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_sync_after_stop_registers_nothing(store: TaskStore, client: FakeWorkflowClient) -> None:
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)
    await scheduler.start()
    await scheduler.stop()

    store.create(_input())
    await scheduler.sync()

    assert scheduler.running is False
    assert scheduler.scheduled_ids() == []


@pytest.mark.asyncio
async def test_task_that_never_fires_is_dropped(store: TaskStore, client: FakeWorkflowClient) -> None:
    good = store.create(_input("good"))
    store.create(_input("feb-30", cron="0 0 30 2 *"))
    scheduler = Scheduler(store=store, client=client, bus=RecordingBus(), check_interval=3600)

    await scheduler.start()
    try:
        await _wait_for(lambda: scheduler.scheduled_ids() == [good])
        assert list(scheduler.next_fire_times()) == [good]
    finally:
        await scheduler.stop()
