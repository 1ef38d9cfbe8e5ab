"""AsyncIOBus -- in-process async pub/sub for task and dispatch events.

Task mutations are published here so the scheduler can re-sync its timers.
When an events directory is configured, every event is also appended to a
daily JSONL audit file.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Coroutine, Iterable

from core.models.events import Event

logger = logging.getLogger(__name__)

Callback = Callable[[Event], Coroutine[Any, Any, None]]


class AsyncIOBus:
    """In-process async pub/sub event bus with optional JSONL audit logging.

    Usage:
        bus = AsyncIOBus(events_dir=Path("~/.actionscron/events"))
        bus.subscribe("task.created", scheduler.on_task_event)
        await bus.publish(event)
    """

    def __init__(self, events_dir: Path | None = None) -> None:
        self._subscribers: dict[str, list[Callback]] = {}
        self._wildcard_subscribers: list[Callback] = []
        self._events_dir = events_dir
        if self._events_dir is not None:
            self._events_dir.mkdir(parents=True, exist_ok=True)

    async def publish(self, event: Event) -> None:
        """Persist the event, then dispatch it to subscribers and wait for them."""
        self._persist(event)

        callbacks = self._subscribers.get(event.type, []) + self._wildcard_subscribers
        if not callbacks:
            logger.debug("No subscribers for event type: %s", event.type)
            return

        logger.debug(
            "Publishing %s to %d subscriber(s) [correlation=%s]",
            event.type,
            len(callbacks),
            event.correlation_id,
        )

        # Subscriber failures never propagate to the publisher.
        await asyncio.gather(
            *(self._safe_invoke(cb, event) for cb in callbacks),
            return_exceptions=True,
        )

    def subscribe(self, event_type: str | Iterable[str], callback: Callback) -> None:
        """Register a callback for one event type, several, or "*" for all."""
        types = [event_type] if isinstance(event_type, str) else list(event_type)
        for t in types:
            if t == "*":
                self._wildcard_subscribers.append(callback)
            else:
                self._subscribers.setdefault(t, []).append(callback)
            logger.debug("Subscribed to '%s': %s", t, callback)

    def unsubscribe(self, event_type: str | Iterable[str], callback: Callback) -> None:
        """Remove a previously registered callback."""
        types = [event_type] if isinstance(event_type, str) else list(event_type)
        for t in types:
            bucket = self._wildcard_subscribers if t == "*" else self._subscribers.get(t, [])
            if callback in bucket:
                bucket.remove(callback)

    async def _safe_invoke(self, callback: Callback, event: Event) -> None:
        try:
            await callback(event)
        except Exception:
            logger.exception(
                "Error in event handler for %s [correlation=%s]",
                event.type,
                event.correlation_id,
            )

    def _persist(self, event: Event) -> None:
        """Append event to today's JSONL audit file."""
        if self._events_dir is None:
            return

        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        filepath = self._events_dir / f"{today}.jsonl"

        try:
            with open(filepath, "a") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError:
            logger.exception("Failed to persist event to %s", filepath)
