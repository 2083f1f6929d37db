"""Next-run computation for cron, interval, and once schedules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from croniter import croniter

from groupcron.infrastructure.config import TIMEZONE


class ScheduleParseError(ValueError):
    """A schedule value that can never produce a next run."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize as UTC ISO-8601 so stored timestamps compare as strings."""
    return moment.astimezone(timezone.utc).isoformat()


def parse_interval_ms(schedule_value: str) -> int:
    try:
        ms = int(schedule_value)
    except (ValueError, TypeError):
        raise ScheduleParseError(f"Invalid interval: {schedule_value}") from None
    if ms <= 0:
        raise ScheduleParseError(f"Invalid interval: {schedule_value}")
    return ms


def next_cron_run(expression: str, now: datetime, tz: str = TIMEZONE) -> datetime:
    """Next occurrence of ``expression`` strictly after ``now``, evaluated in ``tz``."""
    if not croniter.is_valid(expression):
        raise ScheduleParseError(f"Invalid cron expression: {expression}")
    local_now = now.astimezone(ZoneInfo(tz))
    try:
        return croniter(expression, local_now).get_next(datetime)
    except (ValueError, KeyError) as err:
        raise ScheduleParseError(f"Invalid cron expression: {expression}") from err


def compute_next_run(
    schedule_type: str,
    schedule_value: str,
    now: datetime | None = None,
    tz: str = TIMEZONE,
) -> datetime | None:
    """Next trigger after a run that started at ``now``.

    ``once`` schedules are exhausted after their run and return None.
    """
    now = now or utc_now()
    if schedule_type == "cron":
        return next_cron_run(schedule_value, now, tz)
    if schedule_type == "interval":
        return now + timedelta(milliseconds=parse_interval_ms(schedule_value))
    if schedule_type == "once":
        return None
    raise ScheduleParseError(f"Unknown schedule type: {schedule_type}")


def initial_next_run(
    schedule_type: str,
    schedule_value: str,
    now: datetime | None = None,
    tz: str = TIMEZONE,
) -> datetime:
    """First trigger for a newly created (or resumed) task."""
    if schedule_type == "once":
        try:
            scheduled = datetime.fromisoformat(schedule_value)
        except ValueError:
            raise ScheduleParseError(f"Invalid timestamp: {schedule_value}") from None
        if scheduled.tzinfo is None:
            scheduled = scheduled.replace(tzinfo=ZoneInfo(tz))
        return scheduled

    next_run = compute_next_run(schedule_type, schedule_value, now, tz)
    if next_run is None:
        raise ScheduleParseError(f"No upcoming run for {schedule_type} schedule: {schedule_value}")
    return next_run
