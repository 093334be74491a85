from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class Holiday:
    date: datetime.date
    name: str
    closed: bool = False
    paid: bool = False


def easter_sunday(year: int) -> datetime.date:
    """Anonymous Gregorian computus."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return datetime.date(year, month, day + 1)


def nth_weekday(year: int, month: int, weekday: int, n: int) -> datetime.date:
    """Return the n-th ``weekday`` (Monday = 0) of a month."""
    first = datetime.date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + datetime.timedelta(days=offset + 7 * (n - 1))


def last_weekday(year: int, month: int, weekday: int) -> datetime.date:
    if month == 12:
        last = datetime.date(year, 12, 31)
    else:
        last = datetime.date(year, month + 1, 1) - datetime.timedelta(days=1)
    return last - datetime.timedelta(days=(last.weekday() - weekday) % 7)


def thanksgiving(year: int) -> datetime.date:
    return nth_weekday(year, 11, 3, 4)


def closed_holidays(year: int) -> List[Holiday]:
    """Days the stores do not open."""
    return [
        Holiday(easter_sunday(year), "Easter", closed=True),
        Holiday(thanksgiving(year), "Thanksgiving", closed=True, paid=True),
        Holiday(datetime.date(year, 12, 25), "Christmas", closed=True, paid=True),
    ]


def paid_holidays(year: int) -> List[Holiday]:
    """Days credited to eligible full-time staff whether or not they work."""
    return [
        Holiday(datetime.date(year, 1, 1), "New Year's Day", paid=True),
        Holiday(last_weekday(year, 5, 0), "Memorial Day", paid=True),
        Holiday(datetime.date(year, 7, 4), "Independence Day", paid=True),
        Holiday(nth_weekday(year, 9, 0, 1), "Labor Day", paid=True),
        Holiday(thanksgiving(year), "Thanksgiving", closed=True, paid=True),
        Holiday(datetime.date(year, 12, 25), "Christmas", closed=True, paid=True),
    ]


def is_holiday(date: datetime.date) -> Optional[str]:
    """Return the closed-holiday name for ``date`` or None."""
    if isinstance(date, datetime.datetime):
        date = date.date()
    for holiday in closed_holidays(date.year):
        if holiday.date == date:
            return holiday.name
    return None


def _in_range(builder, start: datetime.date, end: datetime.date) -> List[Holiday]:
    found: List[Holiday] = []
    for year in range(start.year, end.year + 1):
        found.extend(holiday for holiday in builder(year) if start <= holiday.date <= end)
    return sorted(found, key=lambda holiday: holiday.date)


def closed_holidays_in_range(start: datetime.date, end: datetime.date) -> List[Holiday]:
    return _in_range(closed_holidays, start, end)


def paid_holidays_in_range(start: datetime.date, end: datetime.date) -> List[Holiday]:
    return _in_range(paid_holidays, start, end)


def is_full_time(employment_type: Optional[str], max_weekly_hours: Optional[float] = None, threshold: float = 32.0) -> bool:
    label = (employment_type or "").strip().lower().replace("_", "-").replace(" ", "-")
    if label in {"full-time", "fulltime", "ft"}:
        return True
    if label in {"part-time", "parttime", "pt"}:
        return False
    return max_weekly_hours is not None and float(max_weekly_hours) >= threshold


def is_eligible_for_paid_holiday(
    hire_date: Optional[datetime.date],
    holiday_date: datetime.date,
    employment_type: Optional[str],
    *,
    max_weekly_hours: Optional[float] = None,
    service_days: int = 30,
) -> bool:
    """Full-time staff with at least ``service_days`` of service on the holiday."""
    if hire_date is None:
        return False
    if isinstance(hire_date, datetime.datetime):
        hire_date = hire_date.date()
    if not is_full_time(employment_type, max_weekly_hours):
        return False
    return (holiday_date - hire_date).days >= service_days
