from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional

from business_time import clock_hours, local_instant
from policy import DEFAULT_RULES, WINDOW_KINDS, SchedulingRules, window_table


@dataclass(frozen=True)
class ShiftWindow:
    name: str
    kind: str
    start: datetime.datetime
    end: datetime.datetime

    @property
    def clock_hours(self) -> float:
        return clock_hours(self.start, self.end)


class DayShifts:
    """Named shift windows for one calendar day in the business timezone.

    Windows are available as attributes (``shifts.opener``) and by name
    (``shifts["gap_mid"]``). Sunday windows follow the shorter Sunday hours.
    """

    def __init__(self, day: datetime.date, windows: Dict[str, ShiftWindow]) -> None:
        self.day = day
        self._windows = windows

    def __getattr__(self, name: str) -> ShiftWindow:
        windows = self.__dict__.get("_windows") or {}
        if name in windows:
            return windows[name]
        raise AttributeError(name)

    def __getitem__(self, name: str) -> ShiftWindow:
        return self._windows[name]

    @property
    def full(self) -> List[ShiftWindow]:
        return [self.opener, self.early9, self.mid10, self.mid11, self.closer]

    @property
    def mids(self) -> List[ShiftWindow]:
        return [self.mid10, self.mid11, self.early9]


def build_day_shifts(day: datetime.date, rules: Optional[SchedulingRules] = None) -> DayShifts:
    rules = rules or DEFAULT_RULES
    # date.weekday(): Sunday = 6
    table = window_table(is_sunday=day.weekday() == 6)
    windows: Dict[str, ShiftWindow] = {}
    for name, (start_label, end_label) in table.items():
        windows[name] = ShiftWindow(
            name=name,
            kind=WINDOW_KINDS.get(name, "full"),
            start=local_instant(day, start_label, rules.timezone),
            end=local_instant(day, end_label, rules.timezone),
        )
    return DayShifts(day, windows)
