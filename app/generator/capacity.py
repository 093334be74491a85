from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from business_time import DAY_NAMES, day_index, to_local, week_days
from database import ensure_aware
from holiday_calendar import closed_holidays_in_range, is_eligible_for_paid_holiday, paid_holidays_in_range
from policy import DEFAULT_RULES, SchedulingRules

logger = logging.getLogger(__name__)

APPROVED = "approved"


@dataclass(frozen=True)
class ExistingShift:
    employee_id: int
    day_index: int
    start: datetime.datetime
    end: datetime.datetime
    paid_hours: float


@dataclass
class EmployeeCapacity:
    employee_id: int
    paid_leave_hours: float = 0.0
    holiday_hours: float = 0.0
    existing_hours: float = 0.0
    blocked_days: Set[int] = field(default_factory=set)
    existing_days: Set[int] = field(default_factory=set)
    holidays_credited: List[str] = field(default_factory=list)

    @property
    def pre_counted_hours(self) -> float:
        return self.paid_leave_hours + self.holiday_hours + self.existing_hours


@dataclass
class WeekCapacity:
    week_start: datetime.date
    employees: Dict[int, EmployeeCapacity] = field(default_factory=dict)
    existing_shifts: List[ExistingShift] = field(default_factory=list)
    closed_days: Dict[int, str] = field(default_factory=dict)

    def for_employee(self, employee_id: int) -> EmployeeCapacity:
        return self.employees.setdefault(employee_id, EmployeeCapacity(employee_id))

    def is_closed(self, day: int) -> bool:
        return day in self.closed_days

    def is_blocked(self, employee_id: int, day: int) -> bool:
        entry = self.employees.get(employee_id)
        return bool(entry and day in entry.blocked_days)

    def has_existing(self, employee_id: int, day: int) -> bool:
        entry = self.employees.get(employee_id)
        return bool(entry and day in entry.existing_days)

    def count_existing(self, employee_ids: Iterable[int], day: int) -> int:
        return sum(1 for employee_id in employee_ids if self.has_existing(employee_id, day))

    def existing_on(self, day: int) -> List[ExistingShift]:
        return [shift for shift in self.existing_shifts if shift.day_index == day]


def _is_approved(record) -> bool:
    return (getattr(record, "status", APPROVED) or "").strip().lower() == APPROVED


def _offset(week_start: datetime.date, value: datetime.date) -> Optional[int]:
    if isinstance(value, datetime.datetime):
        value = value.date()
    offset = (value - week_start).days
    return offset if 0 <= offset < 7 else None


def build_week_capacity(
    week_start: datetime.date,
    staff: Sequence,
    *,
    time_off: Iterable = (),
    paid_leave: Iterable = (),
    unpaid_leave: Iterable = (),
    existing_shifts: Iterable = (),
    rules: SchedulingRules = DEFAULT_RULES,
) -> WeekCapacity:
    """Pre-counted hours and blocked days for every member of ``staff``.

    Existing shifts for employees outside ``staff`` are ignored; their rows
    belong to another location's run.
    """
    days = week_days(week_start)
    week_end = days[-1]
    capacity = WeekCapacity(week_start=week_start)
    for holiday in closed_holidays_in_range(week_start, week_end):
        offset = _offset(week_start, holiday.date)
        if offset is not None:
            capacity.closed_days[offset] = holiday.name
    members = {member.id: member for member in staff}
    for member in staff:
        entry = capacity.for_employee(member.id)
        for offset, name in enumerate(DAY_NAMES):
            if name in member.non_working_days:
                entry.blocked_days.add(offset)

    for request in time_off:
        if request.employee_id not in members or not _is_approved(request):
            continue
        entry = capacity.for_employee(request.employee_id)
        for offset, day in enumerate(days):
            if request.start_date <= day <= request.end_date:
                entry.blocked_days.add(offset)

    for leave in paid_leave:
        if leave.employee_id not in members or not _is_approved(leave):
            continue
        offset = _offset(week_start, leave.work_date)
        if offset is None:
            continue
        entry = capacity.for_employee(leave.employee_id)
        entry.paid_leave_hours += float(leave.total_minutes or 0) / 60.0
        entry.blocked_days.add(offset)

    for leave in unpaid_leave:
        if leave.employee_id not in members or not _is_approved(leave):
            continue
        offset = _offset(week_start, leave.work_date)
        if offset is not None:
            capacity.for_employee(leave.employee_id).blocked_days.add(offset)

    for shift in existing_shifts:
        if shift.employee_id not in members:
            continue
        start = ensure_aware(shift.start_time)
        end = ensure_aware(shift.end_time)
        offset = day_index(week_start, start, rules.timezone)
        if not 0 <= offset < 7:
            continue
        paid = rules.paid_hours((end - start).total_seconds() / 3600.0)
        capacity.existing_shifts.append(ExistingShift(shift.employee_id, offset, start, end, paid))
        entry = capacity.for_employee(shift.employee_id)
        entry.existing_hours += paid
        entry.existing_days.add(offset)
        entry.blocked_days.add(offset)

    paid_days = paid_holidays_in_range(week_start, week_end)
    for member in staff:
        entry = capacity.for_employee(member.id)
        for holiday in paid_days:
            if is_eligible_for_paid_holiday(
                member.hire_date,
                holiday.date,
                member.employment_type,
                max_weekly_hours=member.max_weekly_hours,
                service_days=rules.paid_holiday_service_days,
            ):
                entry.holiday_hours += rules.paid_holiday_hours
                entry.holidays_credited.append(holiday.name)
        if entry.pre_counted_hours > 0:
            logger.debug(
                "%s: %.1f leave + %.1f holiday + %.1f existing hours pre-counted",
                getattr(member, "name", member.id),
                entry.paid_leave_hours,
                entry.holiday_hours,
                entry.existing_hours,
            )
    return capacity


def existing_slot(
    shift: ExistingShift,
    opener_start: datetime.datetime,
    closer_end: datetime.datetime,
    zone: Optional[str] = None,
) -> str:
    """Classify a persisted shift as ``opener``, ``closer`` or ``mid`` by its local times."""
    start = to_local(shift.start, zone).time()
    end = to_local(shift.end, zone).time()
    if start <= to_local(opener_start, zone).time():
        return "opener"
    if end >= to_local(closer_end, zone).time():
        return "closer"
    return "mid"
