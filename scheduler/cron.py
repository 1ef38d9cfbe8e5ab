"""Minimal cron expression parser. No external dependencies.

Supports standard 5-field cron: minute hour day_of_month month day_of_week,
plus an optional leading seconds field (6 fields) and the usual @macros.
"L" in day_of_month means the last day of the month.

Examples:
    "0 2 * * *"       -> every day at 2am
    "0 16 * * 1-5"    -> weekdays at 4pm
    "*/15 * * * *"    -> every 15 minutes
    "0 9,17 * * mon"  -> Mondays at 9am and 5pm
    "30 0 12 * * *"   -> every day at 12:00:30
    "0 0 L * *"       -> midnight on the last day of each month
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_MONTH_NAMES = {
    name: i + 1
    for i, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]
    )
}
_DOW_NAMES = {
    name: i for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])
}

# How far ahead next_after() searches before giving up (e.g. "0 0 30 2 *").
_MAX_SEARCH_DAYS = 366 * 5


@dataclass(frozen=True)
class CronSchedule:
    """A parsed cron expression, one set of allowed values per field."""

    expression: str
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]  # 0=Sun, 6=Sat
    dom_restricted: bool
    dow_restricted: bool
    has_seconds: bool = False
    last_day: bool = False

    def _day_matches(self, dt: datetime) -> bool:
        if dt.month not in self.months:
            return False
        dom_ok = dt.day in self.days or (
            self.last_day and dt.day == calendar.monthrange(dt.year, dt.month)[1]
        )
        dow_ok = (dt.isoweekday() % 7) in self.weekdays
        # Classic cron: when both day fields are restricted, either may match.
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def matches(self, dt: datetime) -> bool:
        return (
            dt.second in self.seconds
            and dt.minute in self.minutes
            and dt.hour in self.hours
            and self._day_matches(dt)
        )

    def next_after(self, dt: datetime) -> datetime:
        """Return the first matching time strictly after dt (same tzinfo).

        Wall-clock arithmetic: on a DST gap the local time may not exist,
        callers that need real instants should normalize through UTC.
        """
        start = dt.replace(microsecond=0) + timedelta(seconds=1)
        day = start.replace(hour=0, minute=0, second=0)
        seconds = sorted(self.seconds)
        minutes = sorted(self.minutes)
        hours = sorted(self.hours)

        for _ in range(_MAX_SEARCH_DAYS):
            if self._day_matches(day):
                for hour in hours:
                    if day.date() == start.date() and hour < start.hour:
                        continue
                    for minute in minutes:
                        for second in seconds:
                            candidate = day.replace(hour=hour, minute=minute, second=second)
                            if candidate >= start:
                                return candidate
            day += timedelta(days=1)

        raise ValueError(f"Cron expression never fires: {self.expression!r}")


def parse_cron(expression: str) -> CronSchedule:
    """Parse a cron expression. Raises ValueError describing what is wrong."""
    if not isinstance(expression, str) or not expression.strip():
        raise ValueError("Empty cron expression")

    text = expression.strip()
    text = MACROS.get(text.lower(), text)
    parts = text.split()

    has_seconds = len(parts) == 6
    if len(parts) == 5:
        parts = ["0", *parts]
    elif len(parts) != 6:
        raise ValueError(f"Invalid cron expression (need 5 or 6 fields): {expression!r}")

    second, minute, hour, dom, month, dow = parts

    days, last_day = _parse_days(dom)

    weekdays = _parse_field(dow, 0, 7, _DOW_NAMES)
    if 7 in weekdays:
        weekdays = (weekdays - {7}) | {0}

    return CronSchedule(
        expression=expression.strip(),
        seconds=_parse_field(second, 0, 59),
        minutes=_parse_field(minute, 0, 59),
        hours=_parse_field(hour, 0, 23),
        days=days,
        months=_parse_field(month, 1, 12, _MONTH_NAMES),
        weekdays=frozenset(weekdays),
        dom_restricted=not _is_wildcard(dom),
        dow_restricted=not _is_wildcard(dow),
        has_seconds=has_seconds,
        last_day=last_day,
    )


def validate_cron(expression: str) -> str | None:
    """Return an error message for an invalid expression, None if it parses."""
    try:
        parse_cron(expression)
    except ValueError as exc:
        return str(exc)
    return None


def cron_matches(expression: str, dt: datetime) -> bool:
    """Check if a datetime (to the minute, or second for 6 fields) matches a cron expression."""
    schedule = parse_cron(expression)
    if not schedule.has_seconds:
        dt = dt.replace(second=0)
    return schedule.matches(dt)


def _is_wildcard(field: str) -> bool:
    return field in ("*", "?")


def _parse_days(field: str) -> tuple[frozenset[int], bool]:
    """Day-of-month values, plus whether "L" (last day of the month) is listed."""
    parts = [p.strip() for p in field.split(",")]
    last_day = any(p.upper() == "L" for p in parts)
    rest = [p for p in parts if p.upper() != "L"]
    if not rest:
        return frozenset(), last_day
    return _parse_field(",".join(rest), 1, 31), last_day


def _parse_value(token: str, names: dict[str, int] | None) -> int:
    lowered = token.lower()
    if names and lowered in names:
        return names[lowered]
    try:
        return int(token)
    except ValueError:
        raise ValueError(f"Invalid cron value: {token!r}") from None


def _parse_field(
    field: str,
    min_val: int,
    max_val: int,
    names: dict[str, int] | None = None,
) -> frozenset[int]:
    """Expand one cron field into the set of values it allows.

    Supports: *, ?, N, N-M, */S, N-M/S, N/S, and comma lists of those.
    """
    values: set[int] = set()

    for part in field.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Invalid cron field: {field!r}")

        step = 1
        if "/" in part:
            base, step_text = part.split("/", 1)
            try:
                step = int(step_text)
            except ValueError:
                raise ValueError(f"Invalid cron step: {part!r}") from None
            if step <= 0:
                raise ValueError(f"Invalid cron step: {part!r}")
        else:
            base = part

        if _is_wildcard(base):
            start, end = min_val, max_val
        elif "-" in base:
            lo, hi = base.split("-", 1)
            start, end = _parse_value(lo, names), _parse_value(hi, names)
        else:
            start = _parse_value(base, names)
            # "N/S" means from N to the end of the range.
            end = max_val if "/" in part else start

        if start < min_val or end > max_val or start > end:
            raise ValueError(
                f"Cron field out of range ({min_val}-{max_val}): {part!r}"
            )

        values.update(range(start, end + 1, step))

    return frozenset(values)
