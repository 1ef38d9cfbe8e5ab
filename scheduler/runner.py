"""Scheduler runner -- one asyncio timer per enabled task.

At start():
1. Loads every task from the store
2. Registers a timer for each enabled task with a parseable cron
3. Subscribes to task.created / task.updated / task.deleted to re-sync
4. Runs a periodic reconciliation pass as a backstop

Each timer sleeps until the task's next cron occurrence, dispatches the
workflow, and goes back to sleep. A failed dispatch is logged and the timer
keeps running; the fire itself is not retried.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Callable

from core.data.store import TaskStore
from core.errors import StorageError
from core.models.events import Event, EventTypes
from core.models.runs import DispatchResult
from core.models.tasks import Task
from core.protocols import EventBus, WorkflowClient
from engine.dispatch import DispatchGuard
from scheduler.cron import CronSchedule, parse_cron

logger = logging.getLogger(__name__)


@dataclass
class _Timer:
    task: Task
    schedule: CronSchedule
    handle: asyncio.Task | None = None
    next_fire: datetime | None = None
    fire_count: int = 0
    last_result: DispatchResult | None = field(default=None, repr=False)


class Scheduler:
    """Keeps exactly one live timer per enabled task.

    Usage:
        scheduler = Scheduler(store=store, client=client, bus=bus)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: TaskStore,
        client: WorkflowClient,
        bus: EventBus,
        guard: DispatchGuard | None = None,
        tz: tzinfo = timezone.utc,
        check_interval: float = 60.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._bus = bus
        self._guard = guard or DispatchGuard()
        self._tz = tz
        self._check_interval = check_interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timers: dict[str, _Timer] = {}
        self._sync_lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Register timers for all enabled tasks and start reconciling."""
        if self._running:
            return
        self._running = True
        self._bus.subscribe(EventTypes.TASK_EVENTS, self.on_task_event)
        await self.sync()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Scheduler started with %d timer(s) (reconcile every %ss, tz=%s)",
            len(self._timers),
            self._check_interval,
            self._tz,
        )

    async def stop(self) -> None:
        """Cancel every timer and the reconciliation loop."""
        self._running = False
        self._bus.unsubscribe(EventTypes.TASK_EVENTS, self.on_task_event)
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        # Waits out a sync already in progress so it cannot add timers after this.
        async with self._sync_lock:
            for task_id in list(self._timers):
                await self._cancel_timer(task_id)
        logger.info("Scheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._check_interval)
            try:
                await self.sync()
            except Exception:
                logger.exception("Error in scheduler reconciliation")

    async def on_task_event(self, event: Event) -> None:
        logger.debug("Task event %s for %s, re-syncing", event.type, event.payload.get("task_id"))
        await self.sync()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def sync(self) -> None:
        """Make the live timer set match the enabled tasks in the store.

        New tasks get a timer, deleted or disabled ones lose it, and a task
        whose cron, repo, workflow or ref changed gets a fresh timer.
        """
        async with self._sync_lock:
            if not self._running:
                logger.debug("Scheduler stopped; ignoring sync")
                return
            try:
                tasks = self._store.list(strict=True)
            except StorageError:
                logger.exception("Cannot read tasks; keeping %d existing timer(s)", len(self._timers))
                return

            wanted = {t.id: t for t in tasks if t.enabled}

            for task_id in list(self._timers):
                timer = self._timers[task_id]
                task = wanted.get(task_id)
                if task is None:
                    await self._cancel_timer(task_id)
                    logger.info("Unscheduled task %s (%s)", timer.task.name, task_id)
                elif task.schedule_key() != timer.task.schedule_key():
                    await self._cancel_timer(task_id)
                    logger.info("Rescheduling task %s (%s)", task.name, task_id)
                else:
                    timer.task = task

            for task_id, task in wanted.items():
                if task_id not in self._timers:
                    self._register(task)

    def _register(self, task: Task) -> None:
        try:
            schedule = parse_cron(task.cron)
        except ValueError as exc:
            logger.error("Not scheduling task %s: %s", task.name, exc)
            return

        timer = _Timer(task=task, schedule=schedule)
        self._timers[task.id] = timer
        timer.handle = asyncio.create_task(self._run_timer(timer), name=f"cron:{task.id}")
        logger.info("Scheduled task %s (%s) cron=%r", task.name, task.id, task.cron)

    async def _cancel_timer(self, task_id: str) -> None:
        timer = self._timers.pop(task_id, None)
        if timer is None or timer.handle is None:
            return
        timer.handle.cancel()
        if timer.handle is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await timer.handle

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _run_timer(self, timer: _Timer) -> None:
        after = self._clock().astimezone(self._tz)
        while True:
            try:
                next_fire = timer.schedule.next_after(after)
            except ValueError:
                logger.error("Task %s never fires (cron=%r)", timer.task.name, timer.task.cron)
                if self._timers.get(timer.task.id) is timer:
                    del self._timers[timer.task.id]
                return
            timer.next_fire = next_fire

            delay = (next_fire.astimezone(timezone.utc) - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)

            try:
                timer.last_result = await self.fire(timer.task)
                timer.fire_count += 1
            except Exception:
                logger.exception("Unexpected error firing task %s", timer.task.name)

            # A sleep that wakes early must not fire the same occurrence twice.
            after = max(next_fire, self._clock().astimezone(self._tz))

    async def fire(self, task: Task) -> DispatchResult:
        """Dispatch the task's workflow once. Failures are logged, not raised."""
        if not self._guard.claim(task.id):
            logger.warning("Skipping fire for %s: a dispatch is already in flight", task.name)
            result = DispatchResult(
                status="skipped",
                message="A dispatch for this task is already in flight",
                task_id=task.id,
            )
        else:
            try:
                await self._client.trigger_workflow(task.repo, task.workflow, task.ref)
                logger.info("[%s] scheduled dispatch of %s on %s@%s succeeded",
                            task.name, task.workflow, task.repo, task.ref)
                result = DispatchResult(
                    status="triggered",
                    message="Workflow dispatched",
                    task_id=task.id,
                )
            except Exception as exc:
                logger.error("[%s] scheduled dispatch failed: %s", task.name, exc)
                result = DispatchResult(status="error", message=str(exc), task_id=task.id)
            finally:
                self._guard.release(task.id)

        await self._bus.publish(Event(
            type=EventTypes.SCHEDULE_FIRED,
            source="scheduler",
            payload={
                "task_id": task.id,
                "task_name": task.name,
                "repo": task.repo,
                "workflow": task.workflow,
                "ref": task.ref,
                "result": result.model_dump(mode="json"),
            },
        ))
        return result

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def scheduled_ids(self) -> list[str]:
        return sorted(self._timers)

    def next_fire_times(self) -> dict[str, datetime | None]:
        return {task_id: timer.next_fire for task_id, timer in self._timers.items()}

    @property
    def running(self) -> bool:
        return self._running
