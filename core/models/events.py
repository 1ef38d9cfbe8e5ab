"""Event model -- announcements of task mutations and scheduler activity."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field


class Event(BaseModel):
    """A typed event that flows through the bus.

    Events are persisted to daily JSONL files so every task change and every
    dispatch leaves an audit line.
    """

    id: str = Field(default_factory=lambda: f"evt_{uuid4().hex[:12]}")
    type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str = Field(default_factory=lambda: uuid4().hex[:12])
    source: str
    payload: dict = Field(default_factory=dict)


class EventTypes:
    """Well-known event type strings."""

    # Task definitions
    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_DELETED = "task.deleted"

    # Scheduler
    SCHEDULE_FIRED = "schedule.fired"

    # Remote workflows
    WORKFLOW_DISPATCHED = "workflow.dispatched"
    WORKFLOW_CANCELLED = "workflow.cancelled"

    TASK_EVENTS = (TASK_CREATED, TASK_UPDATED, TASK_DELETED)
