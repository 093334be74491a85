from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .engine import ScheduleGenerator
from .state import ProposedShift, RandomSource
from business_time import day_index, normalize_week_start, week_bounds
from database import (
    Employee,
    Shift,
    create_shifts_batch,
    ensure_aware,
    get_global_settings,
    get_location_by_name,
    get_paid_leave_entries,
    get_shifts,
    get_unpaid_leave_entries,
    list_employees,
    list_time_off_requests,
    shift_to_dict,
)
from policy import SchedulingRules, rules_from_settings, station_limits

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
HOURS_EPSILON = 1e-6


def _require_week_start(week_start: Any) -> datetime.date:
    if week_start is None:
        raise ValueError("week_start is required.")
    if not isinstance(week_start, datetime.date):
        raise TypeError("week_start must be a date.")
    return normalize_week_start(week_start)


def load_schedule_inputs(session, week_start: datetime.date, location: Optional[str] = None) -> Dict[str, Any]:
    """Bulk read of everything one generation run needs."""
    week_start = _require_week_start(week_start)
    week_end = week_start + datetime.timedelta(days=6)
    employees = list_employees(session, location)
    settings = get_global_settings(session)
    rules = rules_from_settings(settings)
    location_row = get_location_by_name(session, location)
    start, end = week_bounds(week_start, rules.timezone)
    existing = get_shifts(session, start, end, employee_ids=[employee.id for employee in employees])
    inputs = {
        "week_start": week_start,
        "location": location,
        "employees": employees,
        "rules": rules,
        "stations": station_limits(location_row, rules),
        "time_off": list_time_off_requests(session, week_start, week_end),
        "paid_leave": get_paid_leave_entries(session, week_start, week_end),
        "unpaid_leave": get_unpaid_leave_entries(session, week_start, week_end),
        "existing_shifts": existing,
    }
    logger.info(
        "Loaded inputs for %s (location=%s): %d employees, %d existing shifts",
        week_start.isoformat(),
        location or "all",
        len(employees),
        len(existing),
    )
    return inputs


def _run_score(summary: Dict[str, Any]) -> Tuple[int, float]:
    return len(summary.get("warnings", [])), -float(summary.get("total_hours", 0.0))


def _stored_week_load(
    session, week_start: datetime.date, employee_ids: List[int], rules: SchedulingRules
) -> Dict[int, Tuple[float, Set[int]]]:
    """Paid hours and day indices already saved for each employee this week."""
    start, end = week_bounds(week_start, rules.timezone)
    load: Dict[int, Tuple[float, Set[int]]] = {}
    for shift in get_shifts(session, start, end, employee_ids=employee_ids):
        shift_start, shift_end = ensure_aware(shift.start_time), ensure_aware(shift.end_time)
        hours, days = load.get(shift.employee_id, (0.0, set()))
        hours += rules.paid_hours((shift_end - shift_start).total_seconds() / 3600.0)
        days.add(day_index(week_start, shift_start, rules.timezone))
        load[shift.employee_id] = (hours, days)
    return load


def _fits_stored_week(
    proposed: List[ProposedShift],
    load: Dict[int, Tuple[float, Set[int]]],
    generator: ScheduleGenerator,
) -> Tuple[List[ProposedShift], int]:
    """Keep the proposed shifts that still fit next to what is stored now.

    A shift is dropped when its day is already taken or when it would push the
    employee past the weekly hour cap or day cap, leave and holiday credit included.
    """
    members = {member.id: member for member in generator.active}
    rules = generator.rules
    survivors: List[ProposedShift] = []
    conflicts = 0
    for shift in proposed:
        member = members[shift.employee_id]
        credit = generator.capacity.for_employee(member.id)
        hours, days = load.get(member.id, (0.0, set()))
        paid = rules.paid_hours((shift.end_time - shift.start_time).total_seconds() / 3600.0)
        total = credit.paid_leave_hours + credit.holiday_hours + hours + paid
        if (
            shift.day_index in days
            or len(days) + 1 > member.max_days
            or total > member.max_weekly_hours + HOURS_EPSILON
        ):
            conflicts += 1
            continue
        days.add(shift.day_index)
        load[member.id] = (hours + paid, days)
        survivors.append(shift)
    return survivors, conflicts


def _proposed_to_dict(proposed: ProposedShift, employee: Optional[Employee]) -> Dict[str, Any]:
    return {
        "id": None,
        "employee_id": proposed.employee_id,
        "employee_name": employee.name if employee else None,
        "job_code": employee.job_code if employee else None,
        "start_time": proposed.start_time,
        "end_time": proposed.end_time,
    }


def _generate(
    session_factory: Callable,
    week_start: datetime.date,
    location: Optional[str],
    *,
    seed: Optional[int],
    max_attempts: int,
    persist: bool,
) -> Tuple[Dict[str, Any], List[Shift]]:
    week_start = _require_week_start(week_start)
    attempts = max(1, int(max_attempts or 1))
    with session_factory() as session:
        inputs = load_schedule_inputs(session, week_start, location)
    employees = {employee.id: employee for employee in inputs["employees"]}
    rules: SchedulingRules = inputs["rules"]
    random_source = RandomSource(seed)

    best_summary: Dict[str, Any] = {}
    best_generator: Optional[ScheduleGenerator] = None
    attempts_used = 0
    for attempt in range(1, attempts + 1):
        attempts_used = attempt
        generator = ScheduleGenerator(
            week_start,
            inputs["employees"],
            rules=rules,
            stations=inputs["stations"],
            time_off=inputs["time_off"],
            paid_leave=inputs["paid_leave"],
            unpaid_leave=inputs["unpaid_leave"],
            existing_shifts=inputs["existing_shifts"],
            random_source=random_source,
        )
        summary = generator.generate()
        logger.info(
            "Attempt %d/%d: %d shifts, %.1f hours, %d warnings",
            attempt,
            attempts,
            summary["shifts_created"],
            summary["total_hours"],
            len(summary["warnings"]),
        )
        if not best_summary or _run_score(summary) < _run_score(best_summary):
            best_summary = summary
            best_generator = generator
        if not summary["warnings"]:
            break

    proposed: List[ProposedShift] = best_summary["shifts"]
    conflicts = 0
    created: List[Shift] = []
    if persist and proposed:
        with session_factory() as session:
            load = _stored_week_load(session, week_start, list(employees), rules)
            survivors, conflicts = _fits_stored_week(proposed, load, best_generator)
            if conflicts:
                logger.warning(
                    "Dropped %d shifts that no longer fit next to shifts saved since the inputs were read", conflicts
                )
            created = create_shifts_batch(session, [shift.as_row() for shift in survivors])
        proposed = survivors
        shift_rows = [shift_to_dict(shift, employees.get(shift.employee_id)) for shift in created]
    else:
        shift_rows = [_proposed_to_dict(shift, employees.get(shift.employee_id)) for shift in proposed]

    total_hours = sum(rules.paid_hours((shift.end_time - shift.start_time).total_seconds() / 3600.0) for shift in proposed)
    result = dict(best_summary)
    result.update(
        {
            "location": location,
            "shifts": shift_rows,
            "shifts_created": len(created) if persist else len(proposed),
            "total_hours": round(total_hours, 2),
            "conflicts": conflicts,
            "attempts": attempts_used,
            "persisted": bool(persist),
            "seed": seed,
        }
    )
    return result, created


def generate_schedule_for_week(
    session_factory: Callable,
    week_start: datetime.date,
    location: Optional[str] = None,
    *,
    seed: Optional[int] = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    persist: bool = True,
) -> Dict[str, Any]:
    """Generate a week, keep the best of ``max_attempts`` runs and batch-insert it.

    Storage errors propagate unchanged; nothing is written when the insert fails.
    """
    summary, _ = _generate(
        session_factory, week_start, location, seed=seed, max_attempts=max_attempts, persist=persist
    )
    return summary


def generate_schedule(
    session_factory: Callable,
    week_start: datetime.date,
    location: Optional[str] = None,
    *,
    seed: Optional[int] = None,
) -> List[Shift]:
    _, created = _generate(
        session_factory, week_start, location, seed=seed, max_attempts=DEFAULT_MAX_ATTEMPTS, persist=True
    )
    return created
