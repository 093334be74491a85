from __future__ import annotations

import datetime
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from business_time import DAY_NAMES, clock_hours
from policy import DEFAULT_RULES, SchedulingRules
from roles import canonical_role

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RandomSource:
    """Every shuffle and random pick in a run goes through one of these."""

    def __init__(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._random = random.Random(seed)

    def shuffle(self, items: Iterable[T]) -> List[T]:
        shuffled = list(items)
        self._random.shuffle(shuffled)
        return shuffled

    def pick(self, items: Sequence[T]) -> T:
        return items[self._random.randrange(len(items))]


@dataclass(frozen=True)
class StaffMember:
    """Read-only view of an employee for one generation run."""

    id: int
    name: str
    job_code: str
    role: Optional[str]
    max_weekly_hours: float
    max_days: int
    non_working_days: FrozenSet[str] = frozenset()
    is_active: bool = True
    hire_date: Optional[datetime.date] = None
    employment_type: Optional[str] = None
    location: Optional[str] = None
    full_time: bool = False

    @property
    def part_time(self) -> bool:
        return not self.full_time

    @classmethod
    def from_employee(cls, employee, rules: SchedulingRules = DEFAULT_RULES) -> "StaffMember":
        max_hours = employee.max_weekly_hours
        max_hours = float(40 if max_hours is None else max_hours)
        raw_days = getattr(employee, "non_working_day_list", None)
        if raw_days is None:
            raw_days = [day for day in (getattr(employee, "non_working_days", "") or "").split(",")]
        days_off = frozenset(
            name for name in DAY_NAMES if name.lower() in {str(day).strip().lower() for day in raw_days}
        )
        active = employee.is_active
        return cls(
            id=employee.id,
            name=employee.name,
            job_code=employee.job_code,
            role=canonical_role(employee.job_code),
            max_weekly_hours=max_hours,
            max_days=int(employee.preferred_days_per_week or rules.default_days_per_week),
            non_working_days=days_off,
            is_active=(True if active is None else bool(active)) and not bool(getattr(employee, "is_hidden", False)),
            hire_date=employee.hire_date,
            employment_type=employee.employment_type,
            location=employee.location,
            full_time=max_hours >= rules.full_time_threshold_hours,
        )


@dataclass
class EmployeeState:
    hours_scheduled: float = 0.0
    days_worked_on: Set[int] = field(default_factory=set)

    @property
    def days_worked(self) -> int:
        return len(self.days_worked_on)


@dataclass(frozen=True)
class ProposedShift:
    employee_id: int
    start_time: datetime.datetime
    end_time: datetime.datetime
    day_index: int
    window: str = ""
    phase: str = ""

    def as_row(self) -> Dict[str, object]:
        return {"employee_id": self.employee_id, "start_time": self.start_time, "end_time": self.end_time}


def _valid_instant(value) -> bool:
    return isinstance(value, datetime.datetime) and value.tzinfo is not None and value.utcoffset() is not None


class ShiftLedger:
    """Proposed shifts plus the per-employee hours/day state they imply."""

    def __init__(self, rules: SchedulingRules = DEFAULT_RULES) -> None:
        self.rules = rules
        self.states: Dict[int, EmployeeState] = {}
        self.pending: List[ProposedShift] = []

    def seed_state(self, employee_id: int, hours: float, days: Iterable[int]) -> EmployeeState:
        state = EmployeeState(hours_scheduled=float(hours), days_worked_on=set(days))
        self.states[employee_id] = state
        return state

    def state(self, employee_id: int) -> EmployeeState:
        return self.states.setdefault(employee_id, EmployeeState())

    def paid_hours(self, start: datetime.datetime, end: datetime.datetime) -> float:
        return self.rules.paid_hours(clock_hours(start, end))

    def schedule(self, member: StaffMember, window, day_index: int, *, phase: str = "") -> ProposedShift:
        proposed = ProposedShift(
            employee_id=member.id,
            start_time=window.start,
            end_time=window.end,
            day_index=day_index,
            window=window.name,
            phase=phase,
        )
        self.pending.append(proposed)
        state = self.state(member.id)
        state.hours_scheduled += self.paid_hours(window.start, window.end)
        state.days_worked_on.add(day_index)
        return proposed

    def finalize(self) -> Tuple[List[ProposedShift], int]:
        """Drop shifts with unusable timestamps or non-positive length."""
        valid: List[ProposedShift] = []
        for shift in self.pending:
            if not (_valid_instant(shift.start_time) and _valid_instant(shift.end_time)) or (
                shift.end_time <= shift.start_time
            ):
                logger.error(
                    "Discarding invalid shift: employee=%s start=%s end=%s",
                    shift.employee_id,
                    shift.start_time,
                    shift.end_time,
                )
                continue
            valid.append(shift)
        discarded = len(self.pending) - len(valid)
        if discarded:
            logger.warning("Filtered out %d invalid shifts", discarded)
        return valid, discarded
