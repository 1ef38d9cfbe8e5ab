"""Pydantic data models shared across all components."""

from core.models.events import Event, EventTypes
from core.models.runs import (
    DispatchResult,
    NormalizedStatus,
    RemoteRun,
    RepoInfo,
    WorkflowInfo,
    WorkflowRef,
    WorkflowStatus,
)
from core.models.tasks import Task, TaskInput, TaskPatch, validate_task_payload

__all__ = [
    "Event",
    "EventTypes",
    "DispatchResult",
    "NormalizedStatus",
    "RemoteRun",
    "RepoInfo",
    "WorkflowInfo",
    "WorkflowRef",
    "WorkflowStatus",
    "Task",
    "TaskInput",
    "TaskPatch",
    "validate_task_payload",
]
