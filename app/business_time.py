from __future__ import annotations

import datetime
from functools import lru_cache
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

UTC = datetime.timezone.utc
BUSINESS_TIMEZONE = "America/New_York"
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
SHORT_DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


@lru_cache(maxsize=8)
def business_zone(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or BUSINESS_TIMEZONE)


def parse_clock(label: str) -> datetime.time:
    hours, minutes = [int(part) for part in label.strip().split(":", 1)]
    return datetime.time(hour=hours, minute=minutes)


def local_instant(day: datetime.date, label: str, zone: Optional[str] = None) -> datetime.datetime:
    """Return the UTC instant for a wall-clock time on ``day`` in the business zone."""
    local = datetime.datetime.combine(day, parse_clock(label), tzinfo=business_zone(zone))
    return local.astimezone(UTC)


def to_local(value: datetime.datetime, zone: Optional[str] = None) -> datetime.datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(business_zone(zone))


def local_date(value: datetime.datetime, zone: Optional[str] = None) -> datetime.date:
    return to_local(value, zone).date()


def normalize_week_start(value: datetime.date) -> datetime.date:
    """Return the Sunday on or before ``value``."""
    if isinstance(value, datetime.datetime):
        value = value.date()
    # date.weekday(): Monday = 0 ... Sunday = 6
    return value - datetime.timedelta(days=(value.weekday() + 1) % 7)


def week_days(week_start: datetime.date) -> List[datetime.date]:
    return [week_start + datetime.timedelta(days=offset) for offset in range(7)]


def week_bounds(week_start: datetime.date, zone: Optional[str] = None) -> Tuple[datetime.datetime, datetime.datetime]:
    """Return the UTC instants of local midnight at the start and end of the week."""
    start = local_instant(week_start, "00:00", zone)
    end = local_instant(week_start + datetime.timedelta(days=7), "00:00", zone)
    return start, end


def day_index(week_start: datetime.date, value: datetime.datetime, zone: Optional[str] = None) -> int:
    """Day offset of ``value`` (local calendar day) from ``week_start``; may fall outside 0..6."""
    return (local_date(value, zone) - week_start).days


def clock_hours(start: datetime.datetime, end: datetime.datetime) -> float:
    return (end - start).total_seconds() / 3600.0
