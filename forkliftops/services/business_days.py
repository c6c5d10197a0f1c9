"""Business-day arithmetic in Malaysia local time.

Working week is Monday to Saturday. Sundays and configured public holidays
are skipped.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from forkliftops.core.clock import as_utc

MALAYSIA_TZ = timezone(timedelta(hours=8), "MYT")


def is_business_day(day: date, holidays: Iterable[date] = ()) -> bool:
    if day.weekday() == 6:
        return False
    return day not in set(holidays)


def add_business_days(start: datetime, days: int, holidays: Iterable[date] = ()) -> datetime:
    """Return ``start`` moved forward by ``days`` business days.

    The time of day is preserved in local time and the result is returned
    in UTC.
    """
    if days < 0:
        raise ValueError("days must be >= 0")

    holiday_set = set(holidays)
    local = as_utc(start).astimezone(MALAYSIA_TZ)

    remaining = int(days)
    while remaining > 0:
        local = local + timedelta(days=1)
        if is_business_day(local.date(), holiday_set):
            remaining -= 1

    return local.astimezone(timezone.utc)


def business_days_between(start: datetime, end: datetime, holidays: Iterable[date] = ()) -> int:
    """Count business days after ``start``'s local date up to and including ``end``'s."""
    holiday_set = set(holidays)
    d = as_utc(start).astimezone(MALAYSIA_TZ).date()
    last = as_utc(end).astimezone(MALAYSIA_TZ).date()

    count = 0
    while d < last:
        d = d + timedelta(days=1)
        if is_business_day(d, holiday_set):
            count += 1
    return count
