"""Core protocols -- the seams between the core and its collaborators.

The scheduler and the task service depend on these protocols, never on the
concrete GitHub client, so tests (and other CI providers) can stand in.

All protocols use Python's structural subtyping (typing.Protocol):
if your class has the right methods, it implements the protocol.
"""

from __future__ import annotations

from typing import Any, Callable, Coroutine, Iterable, Protocol, runtime_checkable

from core.models.events import Event
from core.models.runs import RepoInfo, WorkflowInfo, WorkflowStatus


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe event bus. Default implementation: AsyncIOBus."""

    async def publish(self, event: Event) -> None:
        ...

    def subscribe(self, event_type: str | Iterable[str], callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...

    def unsubscribe(self, event_type: str | Iterable[str], callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        ...


@runtime_checkable
class WorkflowClient(Protocol):
    """Remote CI workflow API.

    Mutating calls (trigger, cancel) raise RemoteAPIError on failure.
    get_workflow_status never raises: failures come back as API_ERROR.
    """

    @property
    def name(self) -> str:
        """Provider name, e.g. 'github'."""
        ...

    async def get_workflow_info(self, repo: str, workflow: str) -> WorkflowInfo:
        ...

    async def trigger_workflow(self, repo: str, workflow: str, ref: str) -> None:
        ...

    async def cancel_workflow(self, repo: str, run_id: int | str) -> None:
        ...

    async def get_repo_info(self, repo: str) -> RepoInfo:
        ...

    async def get_workflow_status(self, repo: str, workflow: str) -> WorkflowStatus:
        ...

    async def close(self) -> None:
        ...
