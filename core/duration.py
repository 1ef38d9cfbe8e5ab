"""Duration parsing helpers for configuration values."""

from __future__ import annotations

import re
from datetime import timedelta

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|[smhd])?\s*$", re.IGNORECASE)
_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration(value: str | int | float) -> timedelta:
    """Parse compact duration strings like '30s', '5m', '1.5h'. Bare numbers are seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=float(value))

    match = _DURATION_RE.match(str(value or ""))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}. Expected '<number><ms|s|m|h|d>'.")

    amount = float(match.group(1))
    unit = (match.group(2) or "s").lower()
    return timedelta(seconds=amount * _UNIT_SECONDS[unit])


def duration_seconds(value: str | int | float) -> float:
    return parse_duration(value).total_seconds()
