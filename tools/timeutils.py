"""
Time Utilities
Wall-clock source and local-time to UTC conversion for occurrences
"""

from datetime import datetime, date, time, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Current time as naive UTC, the storage convention for all timestamps"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware or naive (assumed UTC) datetime to naive UTC"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name; raises ValueError for unknown zones"""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def local_to_utc(day: date, time_of_day: time, tz_name: str = "UTC") -> datetime:
    """
    Attach a wall-clock time to a calendar date in the given zone and
    return the instant as naive UTC.

    Date arithmetic happens before this step, so daylight-saving shifts
    only ever move the UTC instant, never the calendar date.
    """
    local = datetime.combine(day, time_of_day).replace(tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def occurrence_window(
    day: date,
    time_of_day: time,
    tz_name: str,
    grace_minutes: int
) -> Tuple[datetime, datetime]:
    """Return (scheduled_start, scheduled_end) in naive UTC"""
    start = local_to_utc(day, time_of_day, tz_name)
    return start, start + timedelta(minutes=grace_minutes)
