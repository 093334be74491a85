from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from business_time import SHORT_DAY_NAMES, day_index, local_date, normalize_week_start, week_bounds
from database import (
    Employee,
    Location,
    Shift,
    ensure_aware,
    get_global_settings,
    get_paid_leave_entries,
    get_shifts,
    get_unpaid_leave_entries,
    list_employees,
    list_locations,
    list_time_off_requests,
)
from generator.capacity import ExistingShift, WeekCapacity, build_week_capacity, existing_slot
from generator.geometry import DayShifts, build_day_shifts
from generator.state import StaffMember
from holiday_calendar import is_holiday
from policy import SchedulingRules, rules_from_settings
from roles import CASHIER_ROLE, GREETER_ROLE, canonical_role, is_higher_tier, is_leadership_role

EPSILON = 1e-6


def validate_week_schedule(session, week_start: datetime.date, location: Optional[str] = None) -> Dict[str, Any]:
    """Return validation findings for the requested week."""
    if week_start is None:
        raise ValueError("week_start is required.")
    normalized_start = normalize_week_start(week_start)
    week_end = normalized_start + datetime.timedelta(days=6)
    rules = rules_from_settings(get_global_settings(session))
    employees = {employee.id: employee for employee in list_employees(session, location)}
    start, end = week_bounds(normalized_start, rules.timezone)
    shifts = [
        shift
        for shift in get_shifts(session, start, end, employee_ids=list(employees))
        if shift.employee_id in employees
    ]
    staff = {employee_id: StaffMember.from_employee(employee, rules) for employee_id, employee in employees.items()}
    # Existing shifts are what is being checked, so only leave and holidays are pre-counted here.
    capacity = build_week_capacity(
        normalized_start,
        list(staff.values()),
        time_off=list_time_off_requests(session, normalized_start, week_end),
        paid_leave=get_paid_leave_entries(session, normalized_start, week_end),
        unpaid_leave=get_unpaid_leave_entries(session, normalized_start, week_end),
        rules=rules,
    )

    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_geometry_issues(shifts, employees))
    valid = [shift for shift in shifts if ensure_aware(shift.end_time) > ensure_aware(shift.start_time)]
    by_day = _group_by_day(valid, normalized_start, rules)
    issues.extend(_closed_holiday_issues(valid, employees, rules))
    issues.extend(_double_booking_issues(by_day, employees))
    issues.extend(_availability_issues(by_day, employees, capacity))
    issues.extend(_weekly_hours_issues(valid, staff, capacity, rules))
    issues.extend(_day_cap_issues(by_day, staff))
    issues.extend(_weekend_balance_issues(by_day, employees))
    warnings.extend(_leadership_warnings(by_day, employees, normalized_start, rules))
    warnings.extend(_coverage_warnings(by_day, employees, normalized_start, rules))
    locations = {row.name: row for row in list_locations(session)}
    warnings.extend(_station_limit_warnings(by_day, employees, locations, normalized_start, rules))
    return {
        "week_start": normalized_start.isoformat(),
        "location": location,
        "shift_count": len(shifts),
        "checks": _build_validation_checklist(issues, warnings),
        "issues": issues,
        "warnings": warnings,
    }


def _employee_name(employees: Dict[int, Employee], employee_id: int) -> str:
    employee = employees.get(employee_id)
    return employee.name if employee else f"Employee {employee_id}"


def _group_by_day(
    shifts: List[Shift], week_start: datetime.date, rules: SchedulingRules
) -> Dict[int, List[Shift]]:
    grouped: Dict[int, List[Shift]] = defaultdict(list)
    for shift in shifts:
        grouped[day_index(week_start, ensure_aware(shift.start_time), rules.timezone)].append(shift)
    return grouped


def _geometry_issues(shifts: List[Shift], employees: Dict[int, Employee]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for shift in shifts:
        if ensure_aware(shift.end_time) > ensure_aware(shift.start_time):
            continue
        name = _employee_name(employees, shift.employee_id)
        issues.append(
            {
                "type": "invalid_shift",
                "severity": "error",
                "shift_id": shift.id,
                "employee_id": shift.employee_id,
                "employee": name,
                "message": f"Shift {shift.id} for {name} ends before it starts.",
            }
        )
    return issues


def _closed_holiday_issues(
    shifts: List[Shift], employees: Dict[int, Employee], rules: SchedulingRules
) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for shift in shifts:
        date_value = local_date(ensure_aware(shift.start_time), rules.timezone)
        holiday = is_holiday(date_value)
        if not holiday:
            continue
        name = _employee_name(employees, shift.employee_id)
        issues.append(
            {
                "type": "closed_holiday",
                "severity": "error",
                "shift_id": shift.id,
                "employee_id": shift.employee_id,
                "employee": name,
                "date": date_value.isoformat(),
                "message": f"{name} is scheduled on {holiday} ({date_value.isoformat()}) while the store is closed.",
            }
        )
    return issues


def _double_booking_issues(by_day: Dict[int, List[Shift]], employees: Dict[int, Employee]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for day, shifts in sorted(by_day.items()):
        counts: Dict[int, int] = defaultdict(int)
        for shift in shifts:
            counts[shift.employee_id] += 1
        for employee_id, count in counts.items():
            if count < 2:
                continue
            name = _employee_name(employees, employee_id)
            issues.append(
                {
                    "type": "double_booking",
                    "severity": "error",
                    "employee_id": employee_id,
                    "employee": name,
                    "day": SHORT_DAY_NAMES[day % 7],
                    "message": f"{name} has {count} shifts on {SHORT_DAY_NAMES[day % 7]}.",
                }
            )
    return issues


def _availability_issues(
    by_day: Dict[int, List[Shift]], employees: Dict[int, Employee], capacity: WeekCapacity
) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for day, shifts in sorted(by_day.items()):
        for shift in shifts:
            if not capacity.is_blocked(shift.employee_id, day):
                continue
            name = _employee_name(employees, shift.employee_id)
            issues.append(
                {
                    "type": "availability",
                    "severity": "error",
                    "shift_id": shift.id,
                    "employee_id": shift.employee_id,
                    "employee": name,
                    "day": SHORT_DAY_NAMES[day % 7],
                    "message": f"{name} is on leave, time off or a non-working day on {SHORT_DAY_NAMES[day % 7]}.",
                }
            )
    return issues


def _weekly_hours_issues(
    shifts: List[Shift],
    staff: Dict[int, StaffMember],
    capacity: WeekCapacity,
    rules: SchedulingRules,
) -> List[Dict[str, Any]]:
    """Scheduled paid hours plus leave and holiday credit against each weekly cap."""
    issues: List[Dict[str, Any]] = []
    scheduled: Dict[int, float] = defaultdict(float)
    for shift in shifts:
        clock = (ensure_aware(shift.end_time) - ensure_aware(shift.start_time)).total_seconds() / 3600
        scheduled[shift.employee_id] += rules.paid_hours(clock)
    for employee_id, hours in scheduled.items():
        member = staff[employee_id]
        total = hours + capacity.for_employee(employee_id).pre_counted_hours
        if total <= member.max_weekly_hours + EPSILON:
            continue
        issues.append(
            {
                "type": "weekly_hours",
                "severity": "error",
                "employee_id": employee_id,
                "employee": member.name,
                "hours": round(total, 2),
                "limit": member.max_weekly_hours,
                "message": f"{member.name} is at {round(total, 2)} paid hours "
                f"(limit {member.max_weekly_hours:g}).",
            }
        )
    return issues


def _day_cap_issues(by_day: Dict[int, List[Shift]], staff: Dict[int, StaffMember]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    days_by_employee: Dict[int, set] = defaultdict(set)
    for day, shifts in by_day.items():
        for shift in shifts:
            days_by_employee[shift.employee_id].add(day)
    for employee_id, days in days_by_employee.items():
        member = staff[employee_id]
        if len(days) <= member.max_days:
            continue
        issues.append(
            {
                "type": "day_cap",
                "severity": "error",
                "employee_id": employee_id,
                "employee": member.name,
                "days": len(days),
                "limit": member.max_days,
                "message": f"{member.name} works {len(days)} days (prefers at most {member.max_days}).",
            }
        )
    return issues


def _weekend_balance_issues(by_day: Dict[int, List[Shift]], employees: Dict[int, Employee]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for role in (GREETER_ROLE, CASHIER_ROLE):
        sunday, saturday = (
            sum(1 for shift in by_day.get(day, []) if canonical_role(employees[shift.employee_id].job_code) == role)
            for day in (0, 6)
        )
        if sunday <= saturday:
            continue
        issues.append(
            {
                "type": "weekend_balance",
                "severity": "error",
                "role": role,
                "message": f"{role}: Sunday has {sunday} shifts but Saturday only {saturday}.",
            }
        )
    return issues


def _slot_of(shift: Shift, day: int, day_shifts: DayShifts, rules: SchedulingRules) -> str:
    existing = ExistingShift(shift.employee_id, day, ensure_aware(shift.start_time), ensure_aware(shift.end_time), 0.0)
    return existing_slot(existing, day_shifts.opener.start, day_shifts.closer.end, rules.timezone)


def _leadership_slots(
    shifts: List[Shift], employees: Dict[int, Employee], day: int, week_start: datetime.date, rules: SchedulingRules
) -> Dict[str, List[Tuple[str, bool]]]:
    day_shifts = build_day_shifts(week_start + datetime.timedelta(days=day), rules)
    slots: Dict[str, List[Tuple[str, bool]]] = {"opener": [], "closer": [], "mid": []}
    for shift in shifts:
        employee = employees[shift.employee_id]
        role = canonical_role(employee.job_code)
        if not is_leadership_role(role):
            continue
        slots[_slot_of(shift, day, day_shifts, rules)].append((employee.name, is_higher_tier(role)))
    return slots


def _leadership_warnings(
    by_day: Dict[int, List[Shift]],
    employees: Dict[int, Employee],
    week_start: datetime.date,
    rules: SchedulingRules,
) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for day in range(7):
        shifts = by_day.get(day, [])
        if not shifts:
            continue
        slots = _leadership_slots(shifts, employees, day, week_start, rules)
        label = SHORT_DAY_NAMES[day]
        for slot in ("opener", "closer"):
            if not slots[slot]:
                warnings.append(
                    {
                        "type": "leadership_coverage",
                        "severity": "warning",
                        "day": label,
                        "slot": slot,
                        "message": f"No leadership {slot} on {label}.",
                    }
                )
        for slot, other in (("opener", "closer"), ("closer", "opener")):
            leads = [name for name, higher in slots[slot] if not higher]
            if not leads or any(higher for _, higher in slots[slot]):
                continue
            if any(higher for _, higher in slots[other]):
                continue
            warnings.append(
                {
                    "type": "team_lead_alone",
                    "severity": "warning",
                    "day": label,
                    "slot": slot,
                    "message": f"Team lead {leads[0]} is the {slot} on {label} without a store or assistant manager "
                    f"as {other}.",
                }
            )
    return warnings


def _coverage_warning(type_name: str, label: str, message: str, **extra: Any) -> Dict[str, Any]:
    entry = {"type": type_name, "severity": "warning", "day": label, "message": f"{label}: {message}"}
    entry.update(extra)
    return entry


def _coverage_warnings(
    by_day: Dict[int, List[Shift]],
    employees: Dict[int, Employee],
    week_start: datetime.date,
    rules: SchedulingRules,
) -> List[Dict[str, Any]]:
    """Per-day opener, closer, manager, greeter, cashier and mid-shift coverage."""
    warnings: List[Dict[str, Any]] = []
    for day in range(7):
        shifts = by_day.get(day, [])
        if not shifts:
            continue
        day_shifts = build_day_shifts(week_start + datetime.timedelta(days=day), rules)
        label = SHORT_DAY_NAMES[day]
        slots: Dict[str, List[Optional[str]]] = {"opener": [], "closer": [], "mid": []}
        for shift in shifts:
            role = canonical_role(employees[shift.employee_id].job_code)
            slots[_slot_of(shift, day, day_shifts, rules)].append(role)

        for slot, required in (("opener", rules.openers_required), ("closer", rules.closers_required)):
            if len(slots[slot]) < required:
                warnings.append(
                    _coverage_warning(
                        f"{slot}_count", label, f"{len(slots[slot])}/{required} {slot}s scheduled.",
                        scheduled=len(slots[slot]), required=required,
                    )
                )
        for slot in ("opener", "closer"):
            managers = sum(1 for role in slots[slot] if is_higher_tier(role))
            if managers < rules.managers_required:
                warnings.append(
                    _coverage_warning(
                        "manager_coverage", label,
                        f"need {rules.managers_required} {slot} manager(s), have {managers}.",
                        slot=slot,
                    )
                )
        for type_name, role_name, noun in (
            ("greeter_coverage", GREETER_ROLE, "donor greeter"),
            ("cashier_coverage", CASHIER_ROLE, "cashier"),
        ):
            for slot, wording in (("opener", "opening"), ("closer", "closing")):
                if role_name not in slots[slot]:
                    warnings.append(_coverage_warning(type_name, label, f"missing {wording} {noun}.", slot=slot))
        if not slots["mid"]:
            warnings.append(_coverage_warning("mid_coverage", label, "no mid-shifts scheduled."))
    return warnings


def _station_limit_warnings(
    by_day: Dict[int, List[Shift]],
    employees: Dict[int, Employee],
    locations: Dict[str, Location],
    week_start: datetime.date,
    rules: SchedulingRules,
) -> List[Dict[str, Any]]:
    """Morning production shifts per location against its station counts."""
    warnings: List[Dict[str, Any]] = []
    limits = {
        "Apparel Processor": ("apparel_processor_stations", "apparel processors"),
        "Donation Pricer": ("donation_pricing_stations", "donation pricers"),
    }
    for day in range(7):
        shifts = by_day.get(day, [])
        if not shifts:
            continue
        afternoon_start = build_day_shifts(week_start + datetime.timedelta(days=day), rules).prod_afternoon.start
        counts: Dict[Tuple[str, str], int] = defaultdict(int)
        for shift in shifts:
            employee = employees[shift.employee_id]
            role = canonical_role(employee.job_code)
            if role not in limits or not employee.location:
                continue
            if ensure_aware(shift.start_time) >= afternoon_start:
                continue
            counts[(employee.location, role)] += 1
        label = SHORT_DAY_NAMES[day]
        for (location_name, role), count in sorted(counts.items()):
            location = locations.get(location_name)
            if location is None:
                continue
            field_name, noun = limits[role]
            limit = getattr(location, field_name) or 0
            if limit <= 0 or count <= limit:
                continue
            warnings.append(
                _coverage_warning(
                    "station_limit", label,
                    f"{location_name} has {count} {noun} (max {limit} stations).",
                    location=location_name, role=role, scheduled=count, limit=limit,
                )
            )
    return warnings


def _build_validation_checklist(
    issues: List[Dict[str, Any]], warnings: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    checks: List[Dict[str, Any]] = []
    labels = [
        ("invalid_shift", "Every shift ends after it starts?"),
        ("weekly_hours", "Weekly hour caps respected?"),
        ("double_booking", "One shift per employee per day?"),
        ("day_cap", "Preferred day counts respected?"),
        ("availability", "Leave, time off and non-working days respected?"),
        ("closed_holiday", "Closed holidays left empty?"),
        ("weekend_balance", "Saturday staffed at least as heavily as Sunday?"),
        ("leadership_coverage", "Leadership opener and closer every day?"),
        ("team_lead_alone", "Team leads paired with a manager when opening or closing?"),
        ("opener_count", "Enough openers every day?"),
        ("closer_count", "Enough closers every day?"),
        ("manager_coverage", "Required managers opening and closing?"),
        ("greeter_coverage", "Donor greeter opening and closing every day?"),
        ("cashier_coverage", "Cashier opening and closing every day?"),
        ("mid_coverage", "Mid-shifts scheduled every day?"),
        ("station_limit", "Production staffing within station limits?"),
    ]
    findings = issues + warnings
    for type_name, label in labels:
        matches = [entry for entry in findings if entry.get("type") == type_name]
        details = "; ".join(str(entry.get("message")) for entry in matches[:5])
        if len(matches) > 5:
            details = f"{details}; +{len(matches) - 5} more"
        checks.append({"label": label, "status": "fail" if matches else "ok", "details": details})
    return checks
