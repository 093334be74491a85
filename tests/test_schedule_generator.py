from __future__ import annotations

import datetime
import sys
from collections import defaultdict
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional
import unittest
from unittest import mock

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from business_time import SHORT_DAY_NAMES, day_index, local_instant  # noqa: E402
from database import Base, Employee, Shift, ensure_aware  # noqa: E402
from generator import api as generator_api  # noqa: E402
from generator.api import generate_schedule, generate_schedule_for_week  # noqa: E402
from generator.engine import ScheduleGenerator  # noqa: E402
from generator.geometry import ShiftWindow  # noqa: E402
from generator.state import RandomSource, ShiftLedger, StaffMember  # noqa: E402
from policy import DEFAULT_RULES  # noqa: E402
from roles import canonical_role, is_higher_tier  # noqa: E402

WEEK = datetime.date(2025, 6, 1)  # Sunday, no holidays
THANKSGIVING_WEEK = datetime.date(2025, 11, 23)


def _member(
    member_id: int,
    job_code: str,
    hours: float = 40,
    days: int = 5,
    *,
    days_off: tuple = (),
    hire_date: Optional[datetime.date] = None,
    employment_type: Optional[str] = None,
    active: bool = True,
) -> StaffMember:
    return StaffMember(
        id=member_id,
        name=f"{job_code.title()} {member_id}",
        job_code=job_code,
        role=canonical_role(job_code),
        max_weekly_hours=float(hours),
        max_days=days,
        non_working_days=frozenset(days_off),
        is_active=active,
        hire_date=hire_date,
        employment_type=employment_type,
        full_time=hours >= DEFAULT_RULES.full_time_threshold_hours,
    )


def _full_roster() -> List[StaffMember]:
    return [
        _member(1, "STSUPER"),
        _member(2, "STASSTSP"),
        _member(3, "STASSTSP"),
        _member(4, "STLDWKR"),
        _member(5, "STLDWKR", 29, 4),
        _member(6, "DONDOOR"),
        _member(7, "DONDOOR", 25, 4),
        _member(8, "DONDOOR", 20, 4),
        _member(9, "DONPRI"),
        _member(10, "DONPRI", 29, 5),
        _member(11, "APPROC"),
        _member(12, "APPROC", 24, 4),
        _member(13, "CASHSLS"),
        _member(14, "CASHSLS", 29, 5),
        _member(15, "CASHSLS", 25, 4),
        _member(16, "CASHSLS", 20, 4),
    ]


def _run(staff, week_start=WEEK, seed: int = 11, **kwargs) -> Dict:
    generator = ScheduleGenerator(week_start, staff, random_source=RandomSource(seed), **kwargs)
    return generator.generate()


def _paid(shift) -> float:
    return DEFAULT_RULES.paid_hours((shift.end_time - shift.start_time).total_seconds() / 3600.0)


def _hours_by_employee(shifts) -> Dict[int, float]:
    totals: Dict[int, float] = defaultdict(float)
    for shift in shifts:
        totals[shift.employee_id] += _paid(shift)
    return totals


def _days_by_employee(shifts) -> Dict[int, List[int]]:
    days: Dict[int, List[int]] = defaultdict(list)
    for shift in shifts:
        days[shift.employee_id].append(shift.day_index)
    return days


class ScheduleGeneratorTests(unittest.TestCase):
    """Properties every generated week must hold."""

    def test_full_roster_respects_hour_and_day_caps(self) -> None:
        staff = _full_roster()
        for seed in (1, 11, 2024):
            result = _run(staff, seed=seed)
            shifts = result["shifts"]
            self.assertGreater(len(shifts), 0)
            hours = _hours_by_employee(shifts)
            days = _days_by_employee(shifts)
            for member in staff:
                self.assertLessEqual(hours.get(member.id, 0.0), member.max_weekly_hours + 1e-6, member.name)
                worked = days.get(member.id, [])
                self.assertEqual(len(worked), len(set(worked)), f"{member.name} double-booked")
                self.assertLessEqual(len(worked), member.max_days, member.name)
            self.assertAlmostEqual(result["total_hours"], sum(hours.values()), places=2)
            self.assertEqual(result["discarded"], 0)

    def test_every_shift_is_well_formed(self) -> None:
        result = _run(_full_roster())
        for shift in result["shifts"]:
            self.assertIsNotNone(shift.start_time.tzinfo)
            self.assertGreater(shift.end_time, shift.start_time)
            self.assertEqual(day_index(WEEK, shift.start_time), shift.day_index)
            self.assertIn(_paid(shift), {8.0, 5.5, 5.0, 4.0})

    def test_sunday_never_outstaffs_saturday_for_greeters_and_cashiers(self) -> None:
        staff = _full_roster()
        roles = {member.id: member.role for member in staff}
        for seed in (3, 5, 8):
            result = _run(staff, seed=seed)
            for role in ("Donor Greeter", "Cashier"):
                sunday = sum(1 for s in result["shifts"] if roles[s.employee_id] == role and s.day_index == 0)
                saturday = sum(1 for s in result["shifts"] if roles[s.employee_id] == role and s.day_index == 6)
                self.assertLessEqual(sunday, saturday, role)

    def test_team_leads_never_open_or_close_alone(self) -> None:
        staff = _full_roster()
        roles = {member.id: member.role for member in staff}
        for seed in (2, 4, 6):
            result = _run(staff, seed=seed)
            for day in range(7):
                leaders = [
                    s for s in result["shifts"] if s.day_index == day and roles[s.employee_id] in (
                        "Store Manager", "Assistant Manager", "Team Lead"
                    )
                ]
                slots = {"opener": [], "closer": []}
                for shift in leaders:
                    if shift.window in slots:
                        slots[shift.window].append(is_higher_tier(roles[shift.employee_id]))
                for slot, other in (("opener", "closer"), ("closer", "opener")):
                    if slots[slot] and not any(slots[slot]):
                        self.assertTrue(any(slots[other]), f"team lead alone as {slot} on day {day}")
                if not slots["opener"] or not slots["closer"]:
                    label = SHORT_DAY_NAMES[day]
                    self.assertTrue(any(label in warning for warning in result["warnings"]))

    def test_two_managers_cover_every_opener_and_closer(self) -> None:
        staff = [_member(1, "STSUPER", 56, 7), _member(2, "WVSTAST", 56, 7)]
        result = _run(staff)
        for day in range(7):
            windows = {s.window for s in result["shifts"] if s.day_index == day}
            self.assertIn("opener", windows)
            self.assertIn("closer", windows)
        self.assertFalse(any("leadership" in warning or "manager" in warning for warning in result["warnings"]))

    def test_single_full_time_employee_gets_a_full_week(self) -> None:
        result = _run([_member(1, "CASHSLS", 40, 5)])
        self.assertEqual(result["shifts_created"], 5)
        self.assertEqual(result["total_hours"], 40.0)

    def test_part_time_hours_use_the_best_shift_mix(self) -> None:
        result = _run([_member(1, "CASHSLS", 29, 5)])
        self.assertEqual(result["total_hours"], 29.0)
        self.assertEqual(sorted(_paid(s) for s in result["shifts"]), [5.0, 8.0, 8.0, 8.0])

    def test_closed_holiday_gets_no_shifts(self) -> None:
        staff = [
            _member(1, "CASHSLS", 40, 5, hire_date=datetime.date(2020, 1, 1), employment_type="full_time"),
            _member(2, "DONDOOR", 40, 5),
        ]
        result = _run(staff, week_start=THANKSGIVING_WEEK)
        self.assertEqual(result["closed_days"], {"2025-11-27": "Thanksgiving"})
        self.assertFalse([s for s in result["shifts"] if s.day_index == 4])
        # The eligible full-timer is credited 8 paid holiday hours up front.
        self.assertEqual(_hours_by_employee(result["shifts"])[1], 32.0)
        self.assertEqual(result["holiday_credit"], {1: ["Thanksgiving"]})

    def test_time_off_blocks_only_approved_days(self) -> None:
        time_off = [
            SimpleNamespace(employee_id=1, start_date=datetime.date(2025, 6, 6), end_date=datetime.date(2025, 6, 7), status="approved"),
            SimpleNamespace(employee_id=1, start_date=datetime.date(2025, 6, 2), end_date=datetime.date(2025, 6, 2), status="pending"),
        ]
        result = _run([_member(1, "CASHSLS", 40, 5)], time_off=time_off)
        days = {s.day_index for s in result["shifts"]}
        self.assertFalse(days & {5, 6})
        self.assertIn(1, days)
        # With no Saturday cashier there is no Sunday cashier either.
        self.assertNotIn(0, days)

    def test_paid_leave_counts_toward_weekly_hours(self) -> None:
        paid_leave = [SimpleNamespace(employee_id=1, work_date=datetime.date(2025, 6, 3), total_minutes=480, status="approved")]
        result = _run([_member(1, "CASHSLS", 40, 5)], paid_leave=paid_leave)
        self.assertEqual(result["total_hours"], 32.0)
        self.assertNotIn(2, {s.day_index for s in result["shifts"]})

    def test_non_working_days_are_respected(self) -> None:
        result = _run([_member(1, "CASHSLS", 40, 5, days_off=("Monday", "Tuesday"))])
        self.assertFalse({s.day_index for s in result["shifts"]} & {1, 2})

    def test_existing_shifts_are_counted_and_never_duplicated(self) -> None:
        monday = datetime.date(2025, 6, 2)
        existing = [
            SimpleNamespace(employee_id=1, start_time=local_instant(monday, "08:00"), end_time=local_instant(monday, "16:30"))
        ]
        result = _run([_member(1, "CASHSLS", 40, 5)], existing_shifts=existing)
        self.assertNotIn(1, {s.day_index for s in result["shifts"]})
        self.assertEqual(result["shifts_created"], 4)
        self.assertEqual(result["total_hours"], 32.0)

    def test_no_active_employees(self) -> None:
        result = _run([])
        self.assertEqual(result["shifts"], [])
        self.assertEqual(result["warnings"], ["No active employees to schedule."])
        inactive = _run([_member(1, "CASHSLS", active=False)])
        self.assertEqual(inactive["shifts_created"], 0)

    def test_same_seed_gives_same_week(self) -> None:
        staff = _full_roster()
        first = [(s.employee_id, s.start_time) for s in _run(staff, seed=42)["shifts"]]
        second = [(s.employee_id, s.start_time) for s in _run(staff, seed=42)["shifts"]]
        self.assertEqual(first, second)

    def test_rejects_missing_week_start(self) -> None:
        with self.assertRaises(ValueError):
            ScheduleGenerator(None, [])
        with self.assertRaises(TypeError):
            ScheduleGenerator("2025-06-01", [])

    def test_greeter_targets_scale_with_pool_capacity(self) -> None:
        small = ScheduleGenerator(WEEK, [_member(1, "DONDOOR", 40, 5)], random_source=RandomSource(1))
        self.assertEqual(set(small.greeter_targets().values()), {1})
        large = ScheduleGenerator(
            WEEK, [_member(i, "DONDOOR", 40, 5) for i in range(1, 5)], random_source=RandomSource(1)
        )
        targets = large.greeter_targets()
        self.assertEqual(targets[6], 3)
        self.assertEqual(targets[5], 3)
        self.assertEqual(targets[0], 3)
        self.assertEqual(targets[1], 3)
        self.assertEqual(targets[3], 3)
        self.assertEqual(targets[4], 2)

    def test_cashier_and_fill_targets(self) -> None:
        generator = ScheduleGenerator(WEEK, [_member(1, "CASHSLS")], random_source=RandomSource(1))
        self.assertEqual(generator.cashier_targets()[6], 3)
        self.assertEqual(generator.cashier_targets()[1], 2)
        fill = generator.general_fill_targets()
        self.assertEqual(fill[1], 4)
        self.assertEqual(fill[5], 6)


class PhaseTests(unittest.TestCase):
    """Single phases driven directly against a fresh generator."""

    def _generator(self, staff, **kwargs) -> ScheduleGenerator:
        return ScheduleGenerator(WEEK, staff, random_source=RandomSource(7), **kwargs)

    def _placed(self, generator: ScheduleGenerator, phase: str) -> List:
        return [shift for shift in generator.ledger.pending if shift.phase == phase]

    def test_ledger_drops_and_counts_unusable_shifts(self) -> None:
        ledger = ShiftLedger()
        member = _member(1, "CASHSLS")
        start = local_instant(WEEK, "10:00")
        ledger.schedule(member, ShiftWindow("opener", "full", start, local_instant(WEEK, "18:30")), 0)
        ledger.schedule(member, ShiftWindow("closer", "full", start, start), 1)
        naive = ShiftWindow("gap_mid", "gap", datetime.datetime(2025, 6, 3, 11), datetime.datetime(2025, 6, 3, 16))
        ledger.schedule(member, naive, 2)

        with self.assertLogs("generator.state", level="ERROR") as captured:
            valid, discarded = ledger.finalize()

        self.assertEqual([shift.window for shift in valid], ["opener"])
        self.assertEqual(discarded, 2)
        self.assertEqual(len([line for line in captured.output if "Discarding invalid shift" in line]), 2)

    def test_stations_fill_full_timers_first_up_to_the_cap(self) -> None:
        staff = [
            _member(1, "DONPRI"),
            _member(2, "DONPRI", 29, 5),
            _member(3, "APPROC"),
            _member(4, "APPROC"),
            _member(5, "APPROC", 29, 5),
        ]
        generator = self._generator(staff, stations={"pricers": 1, "apparel": 2})

        generator._production_phase_one()

        placed = self._placed(generator, "production-1")
        days = _days_by_employee(placed)
        self.assertEqual(sorted(days[1]), [0, 1, 2, 3, 4])
        self.assertEqual(sorted(days[2]), [5, 6])
        self.assertEqual(sorted(days[3]), [0, 1, 2, 3, 4])
        self.assertEqual(sorted(days[4]), [0, 1, 2, 3, 4])
        self.assertEqual(sorted(days[5]), [5, 6])
        for day in range(7):
            apparel = [shift for shift in placed if shift.day_index == day and shift.employee_id in (3, 4, 5)]
            self.assertEqual(len(apparel), 2 if day < 5 else 1)
        self.assertTrue(any("1/2 apparel" in warning for warning in generator.warnings))

    def test_existing_production_shift_fills_a_station(self) -> None:
        monday = datetime.date(2025, 6, 2)
        existing = [
            SimpleNamespace(employee_id=1, start_time=local_instant(monday, "08:00"), end_time=local_instant(monday, "16:30"))
        ]
        generator = self._generator(
            [_member(1, "DONPRI"), _member(2, "DONPRI")], stations={"pricers": 1, "apparel": 1}, existing_shifts=existing
        )

        generator._production_phase_one()

        placed = self._placed(generator, "production-1")
        self.assertNotIn(1, {shift.day_index for shift in placed})
        self.assertEqual({shift.day_index for shift in placed}, {0, 2, 3, 4, 5, 6})

    def test_extra_production_only_on_busy_days(self) -> None:
        staff = [_member(index, "DONPRI") for index in (1, 2, 3)]
        generator = self._generator(staff, stations={"pricers": 1, "apparel": 1})

        generator._production_phase_one()
        generator._production_phase_two()

        extra = self._placed(generator, "production-2")
        self.assertTrue(extra)
        self.assertLessEqual({shift.day_index for shift in extra}, {5, 6})
        for day in range(5):
            self.assertEqual(len([shift for shift in generator.ledger.pending if shift.day_index == day]), 1)

    def test_afternoon_fill_uses_part_timers_after_a_morning_slot(self) -> None:
        staff = [_member(1, "DONPRI"), _member(2, "DONPRI", 24, 5), _member(3, "APPROC", 24, 5)]
        generator = self._generator(staff)
        generator.morning_production["pricers"][2] = 1
        generator.morning_production["apparel"][3] = 1

        generator._production_afternoon_fill()

        placed = self._placed(generator, "production-afternoon")
        self.assertEqual(
            sorted((shift.employee_id, shift.day_index, shift.window) for shift in placed),
            [(2, 2, "prod_afternoon"), (3, 3, "prod_afternoon")],
        )

    def test_fallback_pass_overrides_reserved_days_off(self) -> None:
        generator = self._generator([_member(1, "STSUPER")])
        generator.random_days_off[1] = set(range(7))

        generator._leadership_pass_one()
        self.assertEqual(generator.ledger.pending, [])

        generator._leadership_pass_three()

        placed = self._placed(generator, "leadership-3")
        self.assertEqual(sorted(shift.day_index for shift in placed), [0, 1, 2, 3, 4])
        self.assertTrue(all(shift.window == "opener" for shift in placed))
        self.assertEqual(len(generator.warnings), 7)

    def test_existing_manager_shift_covers_the_day(self) -> None:
        monday = datetime.date(2025, 6, 2)
        existing = [
            SimpleNamespace(employee_id=1, start_time=local_instant(monday, "08:00"), end_time=local_instant(monday, "16:30"))
        ]
        generator = self._generator([_member(1, "STSUPER"), _member(2, "STASSTSP")], existing_shifts=existing)

        generator._seed_leadership_from_existing()
        generator._pick_random_days_off()
        generator._leadership_pass_one()

        self.assertEqual(generator.leadership[1].opener, "higher")
        self.assertTrue(generator.leadership[1].has_higher_tier)
        self.assertNotIn(1, {shift.day_index for shift in generator.ledger.pending})


class GenerateScheduleApiTests(unittest.TestCase):
    """Storage round-trips through the session-factory entry points."""

    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://", future=True, poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        with self.session_factory() as session:
            for index, (code, hours, days) in enumerate(
                [("STSUPER", 40, 5), ("STASSTSP", 40, 5), ("STLDWKR", 40, 5), ("DONDOOR", 40, 5),
                 ("DONDOOR", 25, 4), ("DONPRI", 40, 5), ("APPROC", 40, 5), ("CASHSLS", 40, 5), ("CASHSLS", 29, 5)],
                start=1,
            ):
                session.add(
                    Employee(
                        name=f"Employee {index}",
                        job_code=code,
                        max_weekly_hours=hours,
                        preferred_days_per_week=days,
                        location="Main Street",
                    )
                )
            session.add(Employee(name="Hidden", job_code="CASHSLS", is_hidden=True, location="Main Street"))
            session.commit()

    def tearDown(self) -> None:
        self.engine.dispose()

    def _stored(self) -> List[Shift]:
        with self.session_factory() as session:
            return list(session.scalars(select(Shift)))

    def _hidden_id(self) -> int:
        with self.session_factory() as session:
            return session.scalars(select(Employee.id).where(Employee.name == "Hidden")).one()

    def test_generate_persists_shifts(self) -> None:
        result = generate_schedule_for_week(self.session_factory, datetime.date(2025, 6, 4), seed=9)
        stored = self._stored()
        self.assertEqual(result["week_start"], "2025-06-01")
        self.assertEqual(result["shifts_created"], len(stored))
        self.assertTrue(result["persisted"])
        self.assertGreaterEqual(result["attempts"], 1)
        self.assertNotIn(self._hidden_id(), {shift.employee_id for shift in stored})
        self.assertTrue(all(row["id"] is not None for row in result["shifts"]))

    def test_dry_run_writes_nothing(self) -> None:
        result = generate_schedule_for_week(self.session_factory, WEEK, seed=9, persist=False)
        self.assertGreater(result["shifts_created"], 0)
        self.assertFalse(result["persisted"])
        self.assertEqual(self._stored(), [])

    def test_second_run_tops_up_without_double_booking(self) -> None:
        generate_schedule_for_week(self.session_factory, WEEK, seed=1, max_attempts=1)
        generate_schedule_for_week(self.session_factory, WEEK, seed=2, max_attempts=1)
        seen = set()
        hours: Dict[int, float] = defaultdict(float)
        for shift in self._stored():
            key = (shift.employee_id, day_index(WEEK, ensure_aware(shift.start_time)))
            self.assertNotIn(key, seen)
            seen.add(key)
            hours[shift.employee_id] += _paid(SimpleNamespace(
                start_time=ensure_aware(shift.start_time), end_time=ensure_aware(shift.end_time)
            ))
        with self.session_factory() as session:
            caps = {employee.id: employee.max_weekly_hours for employee in session.scalars(select(Employee))}
        for employee_id, total in hours.items():
            self.assertLessEqual(total, caps[employee_id] + 1e-6)

    def test_generate_schedule_returns_created_rows(self) -> None:
        created = generate_schedule(self.session_factory, WEEK, seed=5)
        self.assertEqual(len(created), len(self._stored()))
        self.assertTrue(all(isinstance(shift, Shift) for shift in created))

    def test_storage_failure_propagates_and_writes_nothing(self) -> None:
        with mock.patch("generator.api.create_shifts_batch", side_effect=SQLAlchemyError("disk full")):
            with self.assertRaises(SQLAlchemyError):
                generate_schedule_for_week(self.session_factory, WEEK, seed=3)
        self.assertEqual(self._stored(), [])

    def test_missing_week_start_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            generate_schedule_for_week(self.session_factory, None)


if __name__ == "__main__":
    unittest.main()


class ConcurrentWeekWriteTests(unittest.TestCase):
    """A run saved while another run is computing must not push anyone past a cap."""

    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://", future=True, poolclass=StaticPool, connect_args={"check_same_thread": False}
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        with self.session_factory() as session:
            for index in range(1, 5):
                session.add(
                    Employee(name=f"Cashier {index}", job_code="CASHSLS", max_weekly_hours=40, preferred_days_per_week=5)
                )
            session.commit()

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_run_saved_between_read_and_write_keeps_caps(self) -> None:
        stored_week_load = generator_api._stored_week_load
        calls = []

        def save_another_run_first(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                generate_schedule_for_week(self.session_factory, WEEK, seed=2, max_attempts=1)
            return stored_week_load(*args, **kwargs)

        with mock.patch("generator.api._stored_week_load", side_effect=save_another_run_first):
            result = generate_schedule_for_week(self.session_factory, WEEK, seed=1, max_attempts=1)

        self.assertEqual(len(calls), 2)
        self.assertGreater(result["conflicts"], 0)
        with self.session_factory() as session:
            stored = list(session.scalars(select(Shift)))
        hours: Dict[int, float] = defaultdict(float)
        days: Dict[int, set] = defaultdict(set)
        for shift in stored:
            start, end = ensure_aware(shift.start_time), ensure_aware(shift.end_time)
            day = day_index(WEEK, start)
            self.assertNotIn(day, days[shift.employee_id])
            days[shift.employee_id].add(day)
            hours[shift.employee_id] += _paid(SimpleNamespace(start_time=start, end_time=end))
        self.assertEqual(set(hours), {1, 2, 3, 4})
        for employee_id in hours:
            self.assertLessEqual(hours[employee_id], 40 + 1e-6)
            self.assertLessEqual(len(days[employee_id]), 5)

    def test_shift_saved_before_the_run_counts_toward_caps(self) -> None:
        with self.session_factory() as session:
            employee_id = session.scalars(select(Employee.id).where(Employee.name == "Cashier 1")).one()
            session.add(
                Shift(
                    employee_id=employee_id,
                    start_time=local_instant(WEEK + datetime.timedelta(days=1), "08:00"),
                    end_time=local_instant(WEEK + datetime.timedelta(days=1), "16:30"),
                )
            )
            session.commit()

        generate_schedule_for_week(self.session_factory, WEEK, seed=4, max_attempts=1)

        with self.session_factory() as session:
            rows = list(session.scalars(select(Shift).where(Shift.employee_id == employee_id)))
        self.assertLessEqual(sum(_paid(SimpleNamespace(
            start_time=ensure_aware(row.start_time), end_time=ensure_aware(row.end_time)
        )) for row in rows), 40 + 1e-6)
        self.assertLessEqual(len(rows), 5)
