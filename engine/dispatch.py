"""Per-task in-flight guard shared by scheduled fires and run-now requests."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class DispatchGuard:
    """Tracks which tasks have a dispatch request in flight.

    A workflow_dispatch is not idempotent: two overlapping requests start two
    runs. With the guard enabled, a second dispatch for the same task is
    refused until the first one returns. Disabled, claim() always succeeds.
    """

    def __init__(self, enabled: bool = True) -> None:
        self._enabled = enabled
        self._in_flight: set[str] = set()

    def claim(self, task_id: str) -> bool:
        if not self._enabled:
            return True
        if task_id in self._in_flight:
            logger.debug("Dispatch already in flight for task %s", task_id)
            return False
        self._in_flight.add(task_id)
        return True

    def release(self, task_id: str) -> None:
        self._in_flight.discard(task_id)

    def in_flight(self, task_id: str) -> bool:
        return task_id in self._in_flight
