"""Scheduler time calculation helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import re

from site_patrol.errors import SchedulerError
from site_patrol.models import DailySchedule, HourlySchedule, ScheduleSpec, WeeklySchedule

FAILURE_RETRY_DELAY = timedelta(hours=1)
_FALLBACK_DELAY = timedelta(hours=1)
_TIME_OF_DAY_RE = re.compile(r"^(?P<hour>\d{2}):(?P<minute>\d{2})$")


def next_run_after_success(now: datetime, schedule: ScheduleSpec | object) -> datetime:
    """Return the next not-before instant for a schedule, strictly after ``now``.

    Arithmetic happens on the wall clock of ``now``'s timezone, so daily and
    weekly slots keep their local time across DST changes.
    """
    current = _normalize_datetime(now)

    if isinstance(schedule, HourlySchedule):
        candidate = current.replace(minute=schedule.minute, second=0, microsecond=0)
        if candidate <= current:
            candidate = candidate + timedelta(hours=1)
        return _normalize_datetime(candidate)

    if isinstance(schedule, DailySchedule):
        hour, minute = parse_time_of_day(schedule.at)
        candidate = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate <= current:
            candidate = candidate + timedelta(days=1)
        return _normalize_datetime(candidate)

    if isinstance(schedule, WeeklySchedule):
        hour, minute = parse_time_of_day(schedule.at)
        days_to_add = (schedule.day_of_week - sunday_based_weekday(current) + 7) % 7
        candidate = current.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if days_to_add == 0 and candidate <= current:
            days_to_add = 7
        return _normalize_datetime(candidate + timedelta(days=days_to_add))

    return _elapsed(current, _FALLBACK_DELAY)


def next_run_after_failure(now: datetime) -> datetime:
    """Return the retry instant after a failed run: always one hour later."""
    return _elapsed(_normalize_datetime(now), FAILURE_RETRY_DELAY)


def is_due(next_run_at: datetime | None, now: datetime) -> bool:
    """Not-before check: unset or past instants are due, lateness is tolerated."""
    if next_run_at is None:
        return True
    return _normalize_datetime(next_run_at) <= _normalize_datetime(now)


def sunday_based_weekday(value: datetime) -> int:
    """Return 0 for Sunday through 6 for Saturday."""
    return (value.weekday() + 1) % 7


def parse_time_of_day(raw: str) -> tuple[int, int]:
    """Parse a strict two-digit ``HH:MM`` value with range checks."""
    if not isinstance(raw, str):
        raise SchedulerError(f"Invalid time '{raw}'. Expected HH:MM (24-hour clock).")
    match = _TIME_OF_DAY_RE.fullmatch(raw.strip())
    if match is None:
        raise SchedulerError(f"Invalid time '{raw}'. Expected HH:MM (24-hour clock).")
    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    if hour > 23:
        raise SchedulerError(f"Invalid time '{raw}'. Hour must be between 00 and 23.")
    if minute > 59:
        raise SchedulerError(f"Invalid time '{raw}'. Minute must be between 00 and 59.")
    return hour, minute


def is_valid_time_of_day(raw: object) -> bool:
    try:
        parse_time_of_day(raw)  # type: ignore[arg-type]
    except SchedulerError:
        return False
    return True


def _elapsed(value: datetime, delta: timedelta) -> datetime:
    # Absolute elapsed time, independent of wall-clock shifts.
    return (value.astimezone(timezone.utc) + delta).astimezone(value.tzinfo)


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    # Canonicalize around DST boundaries by round-tripping through UTC.
    zone = value.tzinfo
    return value.astimezone(timezone.utc).astimezone(zone)
