"""TaskService -- the operations the HTTP API (or any other front end) calls.

Create/update/delete validate and write through the store, then publish a
task event so the scheduler re-syncs its timers. Remote operations go
straight to the workflow client.

Error policy:
- validation, not-found and conflict failures raise typed AppErrors and
  never leave a partial record behind;
- trigger and cancel failures propagate as RemoteAPIError;
- get_workflow_status never raises (API_ERROR comes back as a value).
"""

from __future__ import annotations

import logging

from core.data.store import TaskStore
from core.errors import BadRequestError, ConflictError
from core.models.events import Event, EventTypes
from core.models.runs import DispatchResult, RepoInfo, WorkflowStatus
from core.models.tasks import Task, is_valid_repo, validate_task_payload
from core.protocols import EventBus, WorkflowClient
from engine.dispatch import DispatchGuard

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(
        self,
        store: TaskStore,
        client: WorkflowClient,
        bus: EventBus,
        guard: DispatchGuard | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._bus = bus
        self._guard = guard or DispatchGuard()

    # ------------------------------------------------------------------
    # Task definitions
    # ------------------------------------------------------------------

    def list_tasks(self) -> list[Task]:
        return self._store.list()

    def get_task(self, task_id: str) -> Task:
        return self._store.get(task_id)

    async def create_task(self, data: dict) -> Task:
        """Validate and store a new task. Returns the stored record."""
        payload = validate_task_payload(data)

        # Early, friendly check; the UNIQUE constraint is what actually holds.
        if self._store.check_name_exists(payload.name):
            raise ConflictError(payload.name)

        task_id = self._store.create(payload)
        task = self._store.get(task_id)
        logger.info("Created task %s (%s) %s %s cron=%r",
                    task.name, task.id, task.repo, task.workflow, task.cron)

        await self._publish(EventTypes.TASK_CREATED, task)
        return task

    async def update_task(self, task_id: str, data: dict) -> Task:
        """Validate the supplied fields and merge them over the stored task."""
        # Raises NotFoundError before the payload is checked.
        self._store.get(task_id)

        patch = validate_task_payload(data, partial=True)

        if patch.name is not None and self._store.check_name_exists(patch.name, exclude_id=task_id):
            raise ConflictError(patch.name)

        task = self._store.update(task_id, patch)
        logger.info("Updated task %s (%s)", task.name, task.id)

        await self._publish(EventTypes.TASK_UPDATED, task)
        return task

    async def delete_task(self, task_id: str) -> None:
        """Delete a task. Deleting an unknown id is a no-op."""
        if not task_id:
            raise BadRequestError("Missing task id")

        existed = self._store.delete(task_id)
        if not existed:
            logger.debug("Delete of unknown task %s ignored", task_id)
            return

        logger.info("Deleted task %s", task_id)
        await self._bus.publish(Event(
            type=EventTypes.TASK_DELETED,
            source="task_service",
            payload={"task_id": task_id},
        ))

    async def _publish(self, event_type: str, task: Task) -> None:
        await self._bus.publish(Event(
            type=event_type,
            source="task_service",
            payload={"task_id": task.id, "task": task.model_dump(mode="json")},
        ))

    # ------------------------------------------------------------------
    # Remote workflows
    # ------------------------------------------------------------------

    async def run_task_now(self, task_id: str) -> DispatchResult:
        """Dispatch a task's workflow immediately, if the workflow is active.

        A workflow in any state other than "active" is not dispatched.
        Lookup and dispatch failures propagate as RemoteAPIError.
        """
        task = self._store.get(task_id)

        info = await self._client.get_workflow_info(task.repo, task.workflow)
        if not info.is_active:
            logger.info("Not running %s: workflow state is %r", task.name, info.state)
            return DispatchResult(
                status="disabled",
                message="Workflow is disabled; enable it and try again",
                task_id=task.id,
                workflow_state=info.state,
            )

        if not self._guard.claim(task.id):
            return DispatchResult(
                status="skipped",
                message="A dispatch for this task is already in flight",
                task_id=task.id,
                workflow_state=info.state,
            )
        try:
            await self._client.trigger_workflow(task.repo, task.workflow, task.ref)
        finally:
            self._guard.release(task.id)

        logger.info("Manual dispatch of %s on %s@%s", task.workflow, task.repo, task.ref)
        await self._bus.publish(Event(
            type=EventTypes.WORKFLOW_DISPATCHED,
            source="task_service",
            payload={"task_id": task.id, "repo": task.repo, "workflow": task.workflow, "ref": task.ref},
        ))
        return DispatchResult(
            status="triggered",
            message="Workflow dispatched",
            task_id=task.id,
            workflow_state=info.state,
        )

    async def get_workflow_status(self, repo: str, workflow: str) -> WorkflowStatus:
        return await self._client.get_workflow_status(_check_repo(repo), workflow)

    async def cancel_run(self, repo: str, run_id: int | str) -> None:
        if not repo or not run_id:
            raise BadRequestError("Both repo and run_id are required")
        repo = _check_repo(repo)
        run_id = _check_run_id(run_id)

        await self._client.cancel_workflow(repo, run_id)
        await self._bus.publish(Event(
            type=EventTypes.WORKFLOW_CANCELLED,
            source="task_service",
            payload={"repo": repo, "run_id": run_id},
        ))

    async def get_repo_info(self, repo: str) -> RepoInfo:
        if not repo or not repo.strip():
            raise BadRequestError("Missing repo parameter")
        return await self._client.get_repo_info(_check_repo(repo))


def _check_repo(repo: str) -> str:
    repo = str(repo or "").strip()
    if not is_valid_repo(repo):
        raise BadRequestError(f"Invalid repo (expected 'owner/name'): {repo!r}")
    return repo


def _check_run_id(run_id: int | str) -> int:
    """Run ids are positive integers; digit strings from JSON bodies are accepted."""
    if isinstance(run_id, bool):
        raise BadRequestError(f"Invalid run_id: {run_id!r}")
    if isinstance(run_id, int):
        value = run_id
    elif isinstance(run_id, str) and run_id.strip().isascii() and run_id.strip().isdigit():
        value = int(run_id.strip())
    else:
        raise BadRequestError(f"Invalid run_id: {run_id!r}")
    if value <= 0:
        raise BadRequestError(f"Invalid run_id: {run_id!r}")
    return value
