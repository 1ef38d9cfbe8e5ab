"""Remote workflow models -- what the CI API reports, and the normalized view of it."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

# Synthetic workflow state substituted for a 404 on lookup.
NOT_FOUND_STATE = "not_found"


class NormalizedStatus(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    DISABLED = "DISABLED"
    NEVER_RUN = "NEVER_RUN"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    CANCELLED = "CANCELLED"
    FAILURE = "FAILURE"
    API_ERROR = "API_ERROR"


class WorkflowInfo(BaseModel):
    """Workflow metadata. `state` is "active", one of the "disabled_*" states, or not_found."""

    id: int | None = None
    name: str = ""
    path: str = ""
    state: str = ""

    @classmethod
    def not_found(cls) -> WorkflowInfo:
        return cls(state=NOT_FOUND_STATE)

    @property
    def is_not_found(self) -> bool:
        return self.state == NOT_FOUND_STATE

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    @property
    def is_disabled(self) -> bool:
        return self.state.startswith("disabled")


class RemoteRun(BaseModel):
    """One workflow run. Ephemeral: built from the API response, never stored."""

    id: int
    status: str | None = None  # queued, in_progress, completed, ...
    conclusion: str | None = None
    created_at: datetime | None = None
    html_url: str = ""


class WorkflowStatus(BaseModel):
    """Normalized status of a workflow's latest run.

    `status` is a NormalizedStatus value, or an unrecognized conclusion
    uppercased verbatim.
    """

    status: str
    last_run: datetime | None = None
    run_id: int | None = None
    message: str = ""


class WorkflowRef(BaseModel):
    name: str
    path: str


class RepoInfo(BaseModel):
    branches: list[str] = Field(default_factory=list)
    workflows: list[WorkflowRef] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """Outcome of a run-now request or a scheduled fire."""

    status: Literal["triggered", "disabled", "skipped", "error"] = "triggered"
    message: str = ""
    task_id: str | None = None
    workflow_state: str | None = None
