"""Task model -- scheduled workflow-dispatch definitions."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from core.errors import ValidationError
from scheduler.cron import validate_cron

DEFAULT_REF = "main"

REQUIRED_FIELDS = ("name", "repo", "workflow", "cron")
OPTIONAL_STRING_FIELDS = ("ref", "description")

_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")


def is_valid_repo(repo: str) -> bool:
    """True for an "owner/name" slug whose parts are not dot segments."""
    if not isinstance(repo, str) or not _REPO_RE.fullmatch(repo):
        return False
    return all(part.strip(".") for part in repo.split("/"))


def new_task_id() -> str:
    return f"task_{uuid4().hex[:12]}"


class Task(BaseModel):
    """A persisted task: which workflow to dispatch, on which ref, on what schedule.

    Whether the scheduler holds a timer for a task is derived from its
    existence and `enabled`; nothing about scheduling is stored here.
    """

    id: str = Field(default_factory=new_task_id)
    name: str
    repo: str
    workflow: str
    ref: str = DEFAULT_REF
    cron: str
    description: str = ""
    enabled: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime | None = None

    def schedule_key(self) -> tuple[str, str, str, str]:
        """The fields a live timer depends on."""
        return (self.cron, self.repo, self.workflow, self.ref)


class TaskInput(BaseModel):
    """Validated fields for creating a task."""

    name: str
    repo: str
    workflow: str
    ref: str = DEFAULT_REF
    cron: str
    description: str = ""
    enabled: bool = True


class TaskPatch(BaseModel):
    """Validated fields for updating a task. Unset fields are left alone."""

    name: str | None = None
    repo: str | None = None
    workflow: str | None = None
    ref: str | None = None
    cron: str | None = None
    description: str | None = None
    enabled: bool | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def validate_task_payload(data: Any, partial: bool = False) -> TaskInput | TaskPatch:
    """Check every field of a create/update payload.

    With partial=True only the supplied fields are checked and a TaskPatch is
    returned; otherwise the required fields must all be present and a
    TaskInput is returned. Raises ValidationError naming the first bad field,
    with every failure listed in `errors`.
    """
    if not isinstance(data, dict):
        raise ValidationError("body", "must be a JSON object")

    errors: list[dict] = []
    clean: dict[str, Any] = {}

    def fail(field: str, reason: str) -> None:
        errors.append({"field": field, "reason": reason})

    for field in REQUIRED_FIELDS:
        if field not in data or data[field] is None:
            if not partial:
                fail(field, "is required")
            continue
        value = data[field]
        if not isinstance(value, str):
            fail(field, "must be a string")
            continue
        value = value.strip()
        if not value:
            fail(field, "must not be empty")
            continue
        clean[field] = value

    for field in OPTIONAL_STRING_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if value is None:
            value = ""
        if not isinstance(value, str):
            fail(field, "must be a string")
            continue
        clean[field] = value.strip()

    # An absent or blank ref means the default branch.
    if "ref" in clean and not clean["ref"]:
        clean["ref"] = DEFAULT_REF
    elif "ref" not in clean and not partial:
        clean["ref"] = DEFAULT_REF

    if "enabled" in data and data["enabled"] is not None:
        if isinstance(data["enabled"], bool):
            clean["enabled"] = data["enabled"]
        else:
            fail("enabled", "must be a boolean")

    if "repo" in clean and not is_valid_repo(clean["repo"]):
        fail("repo", "must look like 'owner/name'")

    if "cron" in clean:
        problem = validate_cron(clean["cron"])
        if problem:
            fail("cron", problem)

    if errors:
        first = errors[0]
        raise ValidationError(first["field"], first["reason"], errors=errors)

    if partial:
        return TaskPatch(**clean)
    return TaskInput(**clean)
