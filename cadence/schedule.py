"""Cron expression helpers built on APScheduler's ``CronTrigger``."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger

from .errors import ScheduleError

DEFAULT_TIMEZONE = "UTC"


def parse_cron(expr: str, tz: str = DEFAULT_TIMEZONE) -> CronTrigger:
    """Parse a standard 5-field crontab expression."""

    if len(expr.split()) != 5:
        raise ScheduleError(f"Cron expression {expr!r} must have exactly 5 fields")
    try:
        return CronTrigger.from_crontab(expr, timezone=tz)
    except (ValueError, TypeError) as exc:
        raise ScheduleError(f"Invalid cron expression {expr!r}: {exc}") from exc


def _aware(moment: datetime) -> datetime:
    # naive datetimes are taken as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def fire_times(expr: str, start: datetime, count: int, tz: str = DEFAULT_TIMEZONE) -> List[datetime]:
    """Return the next ``count`` fire times strictly after ``start``."""

    trigger = parse_cron(expr, tz)
    now = _aware(start) + timedelta(microseconds=1)
    times: List[datetime] = []
    previous: Optional[datetime] = None
    while len(times) < count:
        next_time = trigger.get_next_fire_time(previous, now)
        if next_time is None:
            break
        times.append(next_time)
        previous = now = next_time
    return times


def fixed_interval(
    expr: str,
    start: Optional[datetime] = None,
    samples: int = 8,
    tz: str = DEFAULT_TIMEZONE,
) -> Optional[timedelta]:
    """Return the gap between consecutive fire times when it never varies."""

    start = start or datetime.now(timezone.utc)
    times = fire_times(expr, start, samples + 1, tz)
    gaps = {later - earlier for earlier, later in zip(times, times[1:])}
    if len(gaps) != 1:
        return None
    return gaps.pop()


def format_interval(interval: timedelta) -> str:
    seconds = int(interval.total_seconds())
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds % size == 0:
            amount = seconds // size
            return f"every {amount} {unit}" + ("s" if amount != 1 else "")
    return f"every {seconds} seconds"


def describe(expr: str, tz: str = DEFAULT_TIMEZONE) -> str:
    interval = fixed_interval(expr, tz=tz)
    if interval is None:
        return f"{expr} ({tz}, irregular)"
    return f"{expr} ({tz}, {format_interval(interval)})"
