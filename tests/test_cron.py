# tests/test_cron.py

from __future__ import annotations

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from scheduler.cron import cron_matches, parse_cron, validate_cron


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_daily_at_two() -> None:
    schedule = parse_cron("0 2 * * *")

    assert schedule.next_after(_utc(2024, 3, 1, 1, 59, 59)) == _utc(2024, 3, 1, 2, 0, 0)
    assert schedule.next_after(_utc(2024, 3, 1, 2, 0, 0)) == _utc(2024, 3, 2, 2, 0, 0)


def test_step_minutes() -> None:
    schedule = parse_cron("*/15 * * * *")

    assert schedule.next_after(_utc(2024, 3, 1, 10, 7)) == _utc(2024, 3, 1, 10, 15)
    assert schedule.next_after(_utc(2024, 3, 1, 10, 45)) == _utc(2024, 3, 1, 11, 0)


def test_weekdays_range_skips_weekend() -> None:
    schedule = parse_cron("0 16 * * 1-5")

    # 2024-03-01 is a Friday
    assert schedule.next_after(_utc(2024, 3, 1, 17, 0)) == _utc(2024, 3, 4, 16, 0)


def test_names_and_lists() -> None:
    schedule = parse_cron("0 9,17 * jan-mar mon")

    assert schedule.months == frozenset({1, 2, 3})
    assert schedule.weekdays == frozenset({1})
    assert schedule.hours == frozenset({9, 17})


def test_sunday_as_seven() -> None:
    assert parse_cron("0 0 * * 7").weekdays == frozenset({0})


def test_macros() -> None:
    assert parse_cron("@daily").next_after(_utc(2024, 3, 1, 12, 0)) == _utc(2024, 3, 2, 0, 0)
    assert parse_cron("@hourly").next_after(_utc(2024, 3, 1, 12, 30)) == _utc(2024, 3, 1, 13, 0)


def test_six_fields_fire_on_seconds() -> None:
    schedule = parse_cron("* * * * * *")

    assert schedule.has_seconds is True
    assert schedule.next_after(_utc(2024, 3, 1, 12, 0, 0)) == _utc(2024, 3, 1, 12, 0, 1)


def test_day_of_month_or_day_of_week() -> None:
    # 1st of the month OR any Monday
    schedule = parse_cron("0 0 1 * 1")

    assert schedule.next_after(_utc(2024, 3, 1, 0, 0)) == _utc(2024, 3, 4, 0, 0)
    assert schedule.next_after(_utc(2024, 3, 25, 0, 0)) == _utc(2024, 4, 1, 0, 0)


def test_next_after_keeps_timezone() -> None:
    tz = ZoneInfo("America/New_York")
    schedule = parse_cron("0 9 * * *")

    nxt = schedule.next_after(datetime(2024, 6, 1, 10, 0, tzinfo=tz))

    assert nxt == datetime(2024, 6, 2, 9, 0, tzinfo=tz)
    assert nxt.tzinfo is tz


def test_impossible_date_never_fires() -> None:
    with pytest.raises(ValueError):
        parse_cron("0 0 30 2 *").next_after(_utc(2024, 1, 1))


@pytest.mark.parametrize(
    "expr",
    ["", "* * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "*/0 * * * *", "a * * * *", "5-1 * * * *"],
)
def test_invalid_expressions(expr: str) -> None:
    assert validate_cron(expr) is not None
    with pytest.raises(ValueError):
        parse_cron(expr)


def test_valid_expression_has_no_error() -> None:
    assert validate_cron("0 2 * * *") is None


def test_cron_matches_ignores_seconds_for_five_fields() -> None:
    assert cron_matches("30 14 * * *", _utc(2024, 3, 1, 14, 30, 42))
    assert not cron_matches("30 14 * * *", _utc(2024, 3, 1, 14, 31))
    assert not cron_matches("0 30 14 * * *", _utc(2024, 3, 1, 14, 30, 42))


def test_last_day_of_month() -> None:
    schedule = parse_cron("0 0 L * *")

    assert schedule.next_after(_utc(2024, 2, 10)) == _utc(2024, 2, 29)
    assert schedule.next_after(_utc(2024, 2, 29)) == _utc(2024, 3, 31)
    assert schedule.next_after(_utc(2023, 4, 1)) == _utc(2023, 4, 30)


def test_last_day_combined_with_days() -> None:
    schedule = parse_cron("0 0 15,L * *")

    assert schedule.next_after(_utc(2024, 4, 1)) == _utc(2024, 4, 15)
    assert schedule.next_after(_utc(2024, 4, 15)) == _utc(2024, 4, 30)
    assert validate_cron("0 0 L, * *") is not None
