"""
Recurrence Expander Tool
Maps a recurrence template and a date window to the dates an occurrence is due
"""

import logging
from typing import Iterable, List, Optional, Any
from dataclasses import dataclass, field
from datetime import date, datetime, time
from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, WEEKLY, MO, TU, WE, TH, FR, SA, SU, rrule

from exceptions import InvalidRecurrenceError
from models import Frequency


logger = logging.getLogger(__name__)


@dataclass
class RecurrenceRule:
    """
    Recurrence shape of a template, independent of storage.

    Anything exposing the same attributes (e.g. a RecurrenceTemplate row)
    can be passed to expand() directly.
    """
    start_date: date
    end_date: date
    frequency: Frequency = Frequency.DAILY
    interval: int = 1
    days_of_week: List[int] = field(default_factory=list)  # ISO 1=Mon .. 7=Sun


def _normalize_frequency(value: Any) -> Frequency:
    try:
        return Frequency(value)
    except ValueError as e:
        raise InvalidRecurrenceError(f"Unknown frequency: {value!r}") from e


def validate_recurrence(
    frequency: Any,
    interval: Optional[int],
    days_of_week: Optional[Iterable[int]],
    start_date: date,
    end_date: date
) -> List[int]:
    """
    Validate a recurrence shape.

    Returns the normalized (sorted, de-duplicated) weekday list, which is
    empty for non-weekly frequencies since days_of_week is ignored there.

    Raises:
        InvalidRecurrenceError: on any malformed field
    """
    freq = _normalize_frequency(frequency)

    if interval is None or isinstance(interval, bool) or not isinstance(interval, int):
        raise InvalidRecurrenceError(f"Interval must be an integer, got {interval!r}")
    if interval < 1:
        raise InvalidRecurrenceError(f"Interval must be >= 1, got {interval}")

    if start_date > end_date:
        raise InvalidRecurrenceError(
            f"start_date {start_date.isoformat()} is after end_date {end_date.isoformat()}"
        )

    if freq != Frequency.WEEKLY:
        return []

    days = sorted(set(days_of_week or []))
    if not days:
        raise InvalidRecurrenceError("Weekly recurrence requires at least one day of week")
    invalid = [d for d in days if isinstance(d, bool) or not isinstance(d, int) or not 1 <= d <= 7]
    if invalid:
        raise InvalidRecurrenceError(f"Days of week must be 1 (Mon) to 7 (Sun), got {invalid}")
    return days


# rrule weekday constants indexed by ISO weekday - 1
RRULE_WEEKDAYS = (MO, TU, WE, TH, FR, SA, SU)


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _between(rule: rrule, first: date, last: date) -> List[date]:
    return [dt.date() for dt in rule.between(_midnight(first), _midnight(last), inc=True)]


def _expand_daily(rule: Any, first: date, last: date) -> List[date]:
    # dtstart pins the interval grid to start_date, whatever the window
    daily = rrule(
        DAILY,
        dtstart=_midnight(rule.start_date),
        interval=rule.interval,
        until=_midnight(last)
    )
    return _between(daily, first, last)


def _expand_weekly(rule: Any, days: List[int], first: date, last: date) -> List[date]:
    byweekday = [RRULE_WEEKDAYS[d - 1] for d in days]

    # The interval counts weeks from the week of the first matching date
    anchor = rrule(WEEKLY, dtstart=_midnight(rule.start_date), byweekday=byweekday, wkst=MO, count=1)[0]

    weekly = rrule(
        WEEKLY,
        dtstart=anchor,
        interval=rule.interval,
        byweekday=byweekday,
        wkst=MO,
        until=_midnight(last)
    )
    return _between(weekly, first, last)


def _expand_monthly(rule: Any, first: date, last: date) -> List[date]:
    # relativedelta clamps to the month's last day and keeps the anchor day
    dates = []
    step = 0
    while True:
        current = rule.start_date + relativedelta(months=step * rule.interval)
        if current > last:
            break
        if current >= first:
            dates.append(current)
        step += 1
    return dates


def expand(template: Any, window_start: date, window_end: date) -> List[date]:
    """
    Expand a template into the ordered dates on which an occurrence is due.

    Pure and deterministic: the same template and window always yield the
    same dates, so callers may re-run it freely.

    Args:
        template: RecurrenceRule, RecurrenceTemplate or any object with
            start_date, end_date, frequency, interval, days_of_week
        window_start: first date of interest (inclusive)
        window_end: last date of interest (inclusive)

    Returns:
        Sorted dates within [window_start, window_end] ∩ [start_date, end_date]
    """
    days = validate_recurrence(
        template.frequency,
        template.interval,
        template.days_of_week,
        template.start_date,
        template.end_date,
    )

    first = max(window_start, template.start_date)
    last = min(window_end, template.end_date)
    if first > last:
        return []

    frequency = _normalize_frequency(template.frequency)
    if frequency == Frequency.DAILY:
        return _expand_daily(template, first, last)
    if frequency == Frequency.WEEKLY:
        return _expand_weekly(template, days, first, last)
    return _expand_monthly(template, first, last)


def count_occurrences(template: Any, from_date: Optional[date] = None) -> int:
    """Number of occurrences from `from_date` (default: start) through end_date"""
    start = from_date or template.start_date
    return len(expand(template, start, template.end_date))


__all__ = [
    "RecurrenceRule",
    "validate_recurrence",
    "expand",
    "count_occurrences",
]
