from __future__ import annotations

import datetime
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from business_time import SHORT_DAY_NAMES, normalize_week_start, week_days
from policy import DEFAULT_RULES, SchedulingRules, station_limits
from roles import CASHIER_ROLE, GREETER_ROLE, classify_roster, is_higher_tier, is_production_role

from .capacity import WeekCapacity, build_week_capacity, existing_slot
from .geometry import DayShifts, ShiftWindow, build_day_shifts
from .optimizer import optimal_plan
from .state import ProposedShift, RandomSource, ShiftLedger, StaffMember

logger = logging.getLogger(__name__)

EPSILON = 1e-9
# Busiest day first: Sat, Fri, Sun, Mon, Tue, Wed, Thu.
SATURDAY_FIRST = [6, 5, 0, 1, 2, 3, 4]
SUNDAY, SATURDAY = 0, 6
HIGHER = "higher"
TEAM_LEAD = "team_lead"


@dataclass
class LeadershipSlots:
    opener: Optional[str] = None
    closer: Optional[str] = None
    mid: bool = False
    has_higher_tier: bool = False

    def take(self, slot: str, tier: str) -> None:
        if slot == "mid":
            self.mid = True
        elif getattr(self, slot) != HIGHER:
            setattr(self, slot, tier)
        if tier == HIGHER:
            self.has_higher_tier = True

    @property
    def complete(self) -> bool:
        return self.opener is not None and self.closer is not None


class ScheduleGenerator:
    """Builds one week of shifts from a roster snapshot.

    The generator never touches storage: callers hand it the rows read for
    the week and persist the proposed shifts it returns.
    """

    def __init__(
        self,
        week_start: datetime.date,
        employees: Iterable,
        *,
        rules: SchedulingRules = DEFAULT_RULES,
        stations: Optional[Dict[str, int]] = None,
        time_off: Iterable = (),
        paid_leave: Iterable = (),
        unpaid_leave: Iterable = (),
        existing_shifts: Iterable = (),
        random_source: Optional[RandomSource] = None,
    ) -> None:
        if week_start is None:
            raise ValueError("week_start is required.")
        if not isinstance(week_start, datetime.date):
            raise TypeError("week_start must be a date.")
        self.week_start = normalize_week_start(week_start)
        self.rules = rules
        self.stations = dict(stations or station_limits(None, rules))
        self.random = random_source or RandomSource()
        self.staff: List[StaffMember] = [
            member if isinstance(member, StaffMember) else StaffMember.from_employee(member, rules)
            for member in employees
        ]
        self.active = [member for member in self.staff if member.is_active]
        self.capacity: WeekCapacity = build_week_capacity(
            self.week_start,
            self.active,
            time_off=time_off,
            paid_leave=paid_leave,
            unpaid_leave=unpaid_leave,
            existing_shifts=existing_shifts,
            rules=rules,
        )
        self.pools = classify_roster(self.active)
        self.ledger = ShiftLedger(rules)
        for member in self.active:
            entry = self.capacity.for_employee(member.id)
            self.ledger.seed_state(member.id, entry.pre_counted_hours, entry.existing_days)
        self.days = week_days(self.week_start)
        self.shifts: Dict[int, DayShifts] = {
            index: build_day_shifts(day, rules) for index, day in enumerate(self.days)
        }
        self.warnings: List[str] = []
        self.leadership: Dict[int, LeadershipSlots] = {day: LeadershipSlots() for day in range(7)}
        self.random_days_off: Dict[int, Set[int]] = {}
        self.role_counts: Dict[str, Dict[int, int]] = {
            GREETER_ROLE: {day: 0 for day in range(7)},
            CASHIER_ROLE: {day: 0 for day in range(7)},
        }
        self.morning_production: Dict[str, Dict[int, int]] = {
            "pricers": {day: 0 for day in range(7)},
            "apparel": {day: 0 for day in range(7)},
        }
        for role, ids in (
            (GREETER_ROLE, [member.id for member in self.pools.donor_greeters]),
            (CASHIER_ROLE, [member.id for member in self.pools.cashiers]),
        ):
            for day in range(7):
                self.role_counts[role][day] = self.capacity.count_existing(ids, day)
        for key, pool in (("pricers", self.pools.donation_pricers), ("apparel", self.pools.apparel_processors)):
            ids = [member.id for member in pool]
            for day in range(7):
                self.morning_production[key][day] = self.capacity.count_existing(ids, day)

    # ------------------------------------------------------------------ run

    def generate(self) -> Dict[str, Any]:
        if not self.active:
            return self._summary([], 0, extra_warnings=["No active employees to schedule."])
        for day, name in sorted(self.capacity.closed_days.items()):
            logger.info("Skipping %s (%s): store closed", self._label(day), name)
        logger.info(
            "Scheduling week of %s for %d employees: %s",
            self.week_start.isoformat(),
            len(self.active),
            self.pools.counts(),
        )
        self._seed_leadership_from_existing()
        self._pick_random_days_off()
        self._leadership_pass_one()
        self._leadership_pass_two()
        self._leadership_pass_three()
        self._production_phase_one()
        self._production_phase_two()
        self._production_afternoon_fill()
        self._greeter_rounds()
        self._cashier_pass()
        self._general_fill()
        self._maximize_hours()
        self._remainder_fill()
        valid, discarded = self.ledger.finalize()
        return self._summary(valid, discarded)

    def _summary(
        self,
        shifts: List[ProposedShift],
        discarded: int,
        *,
        extra_warnings: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        warnings = list(self.warnings) + list(extra_warnings or [])
        hours_by_day = {index: 0.0 for index in range(7)}
        for shift in shifts:
            hours_by_day[shift.day_index] += self.ledger.paid_hours(shift.start_time, shift.end_time)
        total_hours = sum(hours_by_day.values())
        logger.info("Proposed %d shifts, %.1f hours, %d warnings", len(shifts), total_hours, len(warnings))
        return {
            "week_start": self.week_start.isoformat(),
            "shifts": shifts,
            "shifts_created": len(shifts),
            "total_hours": round(total_hours, 2),
            "hours_by_day": {SHORT_DAY_NAMES[day]: round(hours, 2) for day, hours in hours_by_day.items()},
            "closed_days": {self.days[day].isoformat(): name for day, name in self.capacity.closed_days.items()},
            "holiday_credit": {
                member.id: list(self.capacity.for_employee(member.id).holidays_credited)
                for member in self.active
                if self.capacity.for_employee(member.id).holidays_credited
            },
            "warnings": warnings,
            "discarded": discarded,
        }

    # ------------------------------------------------------------- helpers

    def _label(self, day: int) -> str:
        return f"{SHORT_DAY_NAMES[day]} {self.days[day].isoformat()}"

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _is_open(self, day: int) -> bool:
        return not self.capacity.is_closed(day)

    def _open_days(self, order: Sequence[int]) -> List[int]:
        return [day for day in order if self._is_open(day)]

    def _remaining_hours(self, member: StaffMember) -> float:
        return member.max_weekly_hours - self.ledger.state(member.id).hours_scheduled

    def _remaining_days(self, member: StaffMember) -> int:
        return member.max_days - self.ledger.state(member.id).days_worked

    def _can_work(self, member: StaffMember, day: int, hours: float) -> bool:
        if not member.is_active or not self._is_open(day):
            return False
        if self.capacity.is_blocked(member.id, day):
            return False
        state = self.ledger.state(member.id)
        if day in state.days_worked_on or state.days_worked >= member.max_days:
            return False
        return state.hours_scheduled + hours <= member.max_weekly_hours + EPSILON

    def _can_work_kind(self, member: StaffMember, day: int, kind: str) -> bool:
        return self._can_work(member, day, self.rules.hours_for_kind(kind))

    def _can_work_full(self, member: StaffMember, day: int) -> bool:
        return self._can_work_kind(member, day, "full")

    def _can_work_short_or_full(self, member: StaffMember, day: int) -> bool:
        return self._can_work_kind(member, day, "short") or self._can_work_full(member, day)

    def _leader_can_work(self, member: StaffMember, day: int) -> bool:
        if day in self.random_days_off.get(member.id, ()):
            return False
        return self._can_work_full(member, day)

    def _sunday_allows(self, member: StaffMember, day: int) -> bool:
        """Greeters and cashiers never outnumber Saturday's on Sunday."""
        if day != SUNDAY or member.role not in self.role_counts:
            return True
        counts = self.role_counts[member.role]
        return counts[SUNDAY] < counts[SATURDAY]

    def _priority(self, member: StaffMember) -> float:
        return -(self._remaining_hours(member) * 10 + self._remaining_days(member))

    def _shuffle_and_sort(self, members: Iterable[StaffMember]) -> List[StaffMember]:
        shuffled = self.random.shuffle(members)
        return sorted(shuffled, key=lambda member: (member.part_time, self._priority(member)))

    def _spread_sort(self, members: Iterable[StaffMember]) -> List[StaffMember]:
        shuffled = self.random.shuffle(members)
        return sorted(
            shuffled,
            key=lambda member: (self.ledger.state(member.id).days_worked, self._priority(member)),
        )

    def _place(self, member: StaffMember, window: ShiftWindow, day: int, phase: str) -> ProposedShift:
        proposed = self.ledger.schedule(member, window, day, phase=phase)
        if member.role in self.role_counts:
            self.role_counts[member.role][day] += 1
        logger.debug("%s %s: %s as %s", phase, self._label(day), member.name, window.name)
        return proposed

    # ----------------------------------------------------- shift selection

    def _part_time_window(self, member: StaffMember, day: int) -> Optional[ShiftWindow]:
        """Next shift for a part-timer, following the best full/short/gap mix."""
        shifts = self.shifts[day]
        remaining = self._remaining_hours(member)
        plan = optimal_plan(remaining, self._remaining_days(member), self.rules)
        planned = [kind for kind, count in (("full", plan.full), ("short", plan.short), ("gap", plan.gap)) if count > 0]
        for kind in planned + ["full", "short", "gap"]:
            if self._can_work_kind(member, day, kind):
                return self._part_time_window_of_kind(member, shifts, kind)
        return None

    def _part_time_window_of_kind(self, member: StaffMember, shifts: DayShifts, kind: str) -> ShiftWindow:
        pricer = member.role == "Donation Pricer"
        greeter = member.role == GREETER_ROLE
        if kind == "full":
            if pricer:
                return shifts.opener
            return shifts.closer if greeter else shifts.mid10
        if kind == "short":
            if pricer:
                return shifts.short_morning
            if greeter:
                options = [shifts.short_mid10, shifts.short_mid12, shifts.short_evening]
                return options[(self.ledger.state(member.id).days_worked + member.id) % len(options)]
            return shifts.short_mid
        if pricer:
            return shifts.gap_morning
        return shifts.gap_evening if greeter else shifts.gap_mid

    def _full_time_window(self, member: StaffMember, shifts: DayShifts, *, include_opener: bool) -> ShiftWindow:
        if is_production_role(member.role):
            return self.random.pick([shifts.opener, shifts.early9])
        if member.role == GREETER_ROLE:
            return self.random.pick([shifts.closer, shifts.mid11])
        if include_opener:
            return self.random.pick(shifts.full)
        return self.random.pick([shifts.early9, shifts.mid10, shifts.mid11, shifts.closer])

    def _remainder_window(self, member: StaffMember, shifts: DayShifts, kind: str) -> ShiftWindow:
        if is_production_role(member.role):
            if kind == "gap":
                return shifts.gap_morning
            return self.random.pick([shifts.short_morning, shifts.short_mid10])
        if member.role == GREETER_ROLE:
            if kind == "gap":
                return self.random.pick([shifts.gap_mid, shifts.gap_evening])
            return self.random.pick([shifts.short_mid10, shifts.short_mid12, shifts.short_evening])
        if kind == "gap":
            return self.random.pick([shifts.gap_morning, shifts.gap_mid, shifts.gap_evening])
        return self.random.pick([shifts.short_morning, shifts.short_mid, shifts.short_mid10])

    # ----------------------------------------------------------- leadership

    def _tier(self, member: StaffMember) -> str:
        return HIGHER if is_higher_tier(member.role) else TEAM_LEAD

    def _seed_leadership_from_existing(self) -> None:
        leaders = {member.id: member for member in self.pools.leadership}
        for day in range(7):
            shifts = self.shifts[day]
            for existing in self.capacity.existing_on(day):
                member = leaders.get(existing.employee_id)
                if member is None:
                    continue
                slot = existing_slot(existing, shifts.opener.start, shifts.closer.end, self.rules.timezone)
                self.leadership[day].take(slot, self._tier(member))
            if self.leadership[day].has_higher_tier:
                logger.info("%s: higher-tier leadership already scheduled", self._label(day))

    def _pick_random_days_off(self) -> None:
        """Reserve random days off per leader so coverage rotates between runs."""
        for member in self.pools.leadership:
            state = self.ledger.state(member.id)
            potential = [
                day
                for day in self._open_days(range(7))
                if not self.capacity.is_blocked(member.id, day) and day not in state.days_worked_on
            ]
            allowance = max(0, member.max_days - state.days_worked)
            surplus = len(potential) - allowance
            days_off: Set[int] = set()
            if surplus > 0:
                days_off = set(self.random.shuffle(potential)[:surplus])
                logger.debug(
                    "%s: random days off %s",
                    member.name,
                    ", ".join(SHORT_DAY_NAMES[day] for day in sorted(days_off)),
                )
            self.random_days_off[member.id] = days_off

    def _place_higher_tier(self, day: int, available: List[StaffMember], phase: str) -> None:
        """Put the first available higher-tier leader on an open leadership slot."""
        coverage = self.leadership[day]
        shifts = self.shifts[day]
        open_slots = [slot for slot in ("opener", "closer") if getattr(coverage, slot) is None]
        member = available[0]
        if open_slots:
            slot = self.random.pick(open_slots)
            self._place(member, shifts[slot], day, phase)
        else:
            slot = "mid"
            self._place(member, self.random.pick(shifts.mids), day, phase)
        coverage.take(slot, HIGHER)

    def _leadership_pass_one(self) -> None:
        higher_tier = self.random.shuffle(self.pools.higher_tier)
        for day in self._open_days(self.random.shuffle(range(7))):
            if self.leadership[day].has_higher_tier:
                continue
            available = self.random.shuffle(m for m in higher_tier if self._leader_can_work(m, day))
            if available:
                self._place_higher_tier(day, available, "leadership-1")
            else:
                logger.info("Leadership pass 1 %s: no higher-tier leader available", self._label(day))

    def _leadership_pass_two(self) -> None:
        higher_tier = self.random.shuffle(self.pools.higher_tier)
        team_leads = self.random.shuffle(self.pools.team_leads)
        uncovered = [day for day in range(7) if not self.leadership[day].has_higher_tier]
        covered = [day for day in range(7) if self.leadership[day].has_higher_tier]
        order = self.random.shuffle(uncovered) + self.random.shuffle(covered)
        for day in self._open_days(order):
            coverage = self.leadership[day]
            shifts = self.shifts[day]

            def available_higher() -> List[StaffMember]:
                return self.random.shuffle(m for m in higher_tier if self._leader_can_work(m, day))

            if not coverage.has_higher_tier:
                candidates = available_higher()
                if candidates:
                    self._place_higher_tier(day, candidates, "leadership-2")

            candidates = available_higher()
            if candidates and not coverage.complete:
                open_slots = [slot for slot in ("opener", "closer") if getattr(coverage, slot) is None]
                slot = self.random.pick(open_slots)
                self._place(candidates[0], shifts[slot], day, "leadership-2")
                coverage.take(slot, HIGHER)

            candidates = available_higher()
            if candidates and not coverage.mid and coverage.complete:
                self._place(candidates[0], self.random.pick(shifts.mids), day, "leadership-2")
                coverage.take("mid", HIGHER)

            if not coverage.has_higher_tier:
                continue
            for lead in self.random.shuffle(m for m in team_leads if self._leader_can_work(m, day)):
                slots = self._team_lead_slots(coverage)
                if not slots:
                    break
                slot = self.random.pick(slots)
                window = self.random.pick(shifts.mids) if slot == "mid" else shifts[slot]
                self._place(lead, window, day, "leadership-2")
                coverage.take(slot, TEAM_LEAD)

    @staticmethod
    def _team_lead_slots(coverage: LeadershipSlots) -> List[str]:
        """Slots a team lead may take without being the only leader opening or closing."""
        slots = []
        if coverage.opener is None and coverage.closer == HIGHER:
            slots.append("opener")
        if coverage.closer is None and coverage.opener == HIGHER:
            slots.append("closer")
        if not coverage.mid and coverage.has_higher_tier:
            slots.append("mid")
        return slots

    def _leadership_pass_three(self) -> None:
        """Fallback: ignore random days off (never hour or day caps) to cover open slots."""
        for day in self._open_days(range(7)):
            coverage = self.leadership[day]
            shifts = self.shifts[day]
            if not coverage.complete:
                for member in self.random.shuffle(m for m in self.pools.higher_tier if self._can_work_full(m, day)):
                    if coverage.complete:
                        break
                    slot = "opener" if coverage.opener is None else "closer"
                    self._place(member, shifts[slot], day, "leadership-3")
                    coverage.take(slot, HIGHER)
            if not coverage.complete:
                for lead in self.random.shuffle(m for m in self.pools.team_leads if self._can_work_full(m, day)):
                    if coverage.complete:
                        break
                    if coverage.opener is None and coverage.closer == HIGHER:
                        slot = "opener"
                    elif coverage.closer is None and coverage.opener == HIGHER:
                        slot = "closer"
                    else:
                        continue
                    self._place(lead, shifts[slot], day, "leadership-3")
                    coverage.take(slot, TEAM_LEAD)
            missing = [slot for slot in ("opener", "closer") if getattr(coverage, slot) is None]
            if missing:
                self._warn(f"{self._label(day)}: no leadership {' or '.join(missing)} available.")
            elif not coverage.has_higher_tier:
                self._warn(f"{self._label(day)}: no store or assistant manager scheduled.")

    # ----------------------------------------------------------- production

    def _fill_stations(self, day: int, key: str, pool: List[StaffMember], target: int) -> None:
        counts = self.morning_production[key]
        shifts = self.shifts[day]
        for part_time in (False, True):
            if counts[day] >= target:
                break
            candidates = self._shuffle_and_sort(
                m for m in pool if m.part_time == part_time and self._can_work_full(m, day)
            )
            for member in candidates:
                if counts[day] >= target:
                    break
                self._place(member, self._station_window(key, shifts, counts[day]), day, "production-1")
                counts[day] += 1
        if counts[day] < target:
            self._warn(f"{self._label(day)}: only {counts[day]}/{target} {key} stations staffed.")

    @staticmethod
    def _station_window(key: str, shifts: DayShifts, filled: int) -> ShiftWindow:
        if key == "apparel" and filled % 2:
            return shifts.early9
        return shifts.opener

    def _production_phase_one(self) -> None:
        """Every open day gets its station seats, full-timers before part-timers."""
        for day in self._open_days(range(7)):
            self._fill_stations(day, "pricers", self.pools.donation_pricers, self.stations["pricers"])
            self._fill_stations(day, "apparel", self.pools.apparel_processors, self.stations["apparel"])

    def _production_phase_two(self) -> None:
        """Busy days take every remaining production worker on top of the stations."""
        for day in self._open_days(self.rules.busy_production_days):
            shifts = self.shifts[day]
            for key, pool in (("pricers", self.pools.donation_pricers), ("apparel", self.pools.apparel_processors)):
                counts = self.morning_production[key]
                for member in self._shuffle_and_sort(m for m in pool if self._can_work_full(m, day)):
                    self._place(member, self._station_window(key, shifts, counts[day]), day, "production-2")
                    counts[day] += 1

    def _production_afternoon_fill(self) -> None:
        for day in self._open_days(self.random.shuffle(range(7))):
            window = self.shifts[day].prod_afternoon
            if self.morning_production["pricers"][day] > 0:
                candidates = self._shuffle_and_sort(
                    m
                    for m in self.pools.donation_pricers
                    if m.part_time and self._can_work_kind(m, day, "prod_afternoon")
                )
                if candidates:
                    self._place(candidates[0], window, day, "production-afternoon")
            morning_apparel = self.morning_production["apparel"][day]
            if morning_apparel > 0:
                candidates = self._shuffle_and_sort(
                    m
                    for m in self.pools.apparel_processors
                    if m.part_time and self._can_work_kind(m, day, "prod_afternoon")
                )
                for member in candidates[:morning_apparel]:
                    self._place(member, window, day, "production-afternoon")

    # ------------------------------------------------------ greeters/cashiers

    def greeter_targets(self) -> Dict[int, int]:
        """Per-day greeter headcount derived from the pool's combined day allowance."""
        open_days = self._open_days(range(7))
        if not open_days:
            return {}
        capacity = sum(member.max_days for member in self.pools.donor_greeters)
        base_needed = len(open_days) * 2
        extra = max(0, capacity - base_needed)
        base = 2 if capacity >= base_needed else max(1, capacity // len(open_days))
        targets = {day: base for day in open_days}
        bonus_days = [SATURDAY, 5, SUNDAY]
        for threshold, day in enumerate(bonus_days, start=1):
            if extra >= threshold and day in targets:
                targets[day] += 1
        for day in [1, 2, 3, 4][: max(0, extra - len(bonus_days))]:
            if day in targets:
                targets[day] += 1
        return targets

    def _greeter_rounds(self) -> None:
        greeters = self.pools.donor_greeters
        if not greeters:
            return
        targets = self.greeter_targets()
        counts = self.role_counts[GREETER_ROLE]
        logger.info("Greeter targets: %s", {SHORT_DAY_NAMES[day]: target for day, target in targets.items()})

        def candidates(day: int) -> List[StaffMember]:
            return self._shuffle_and_sort(
                m for m in greeters if self._can_work_full(m, day) and self._sunday_allows(m, day)
            )

        for day in self._open_days(SATURDAY_FIRST):
            if counts[day] >= 1:
                continue
            available = candidates(day)
            if available:
                self._place(available[0], self.shifts[day].opener, day, "greeter-1")
        for day in self._open_days(SATURDAY_FIRST):
            if counts[day] >= targets.get(day, 2):
                continue
            available = candidates(day)
            if available:
                self._place(available[0], self.shifts[day].closer, day, "greeter-2")
        for day in self._open_days(SATURDAY_FIRST):
            while counts[day] < targets.get(day, 2):
                available = candidates(day)
                if not available:
                    break
                self._place(available[0], self.shifts[day].mid10, day, "greeter-3")
        for day in self._open_days(SATURDAY_FIRST):
            wanted = targets.get(day, 2)
            if day == SUNDAY:
                wanted = min(wanted, counts[SATURDAY])
            if counts[day] < wanted:
                self._warn(f"{self._label(day)}: {counts[day]}/{wanted} donor greeters scheduled.")

    def cashier_targets(self) -> Dict[int, int]:
        required = self.rules.openers_required
        targets = {day: required for day in range(7)}
        targets[SATURDAY] = max(required + 1, 3)
        return targets

    def _cashier_pass(self) -> None:
        cashiers = self.pools.cashiers
        if not cashiers:
            return
        targets = self.cashier_targets()
        counts = self.role_counts[CASHIER_ROLE]
        for day in self._open_days(SATURDAY_FIRST):
            shifts = self.shifts[day]
            wanted = targets[day]
            if day == SUNDAY:
                wanted = min(wanted, counts[SATURDAY])
            needed = wanted - counts[day]
            if needed <= 0:
                continue
            openers = self._shuffle_and_sort(m for m in cashiers if self._can_work_full(m, day))
            opened = 0
            for member in openers[: int(math.ceil(needed / 2))]:
                self._place(member, shifts.opener, day, "cashier")
                opened += 1
            closers = self._shuffle_and_sort(m for m in cashiers if self._can_work_full(m, day))
            for member in closers[: needed - opened]:
                self._place(member, shifts.closer, day, "cashier")
            if counts[day] < wanted:
                self._warn(f"{self._label(day)}: {counts[day]}/{wanted} cashiers scheduled.")

    # ---------------------------------------------------------- fill phases

    def general_fill_targets(self) -> Dict[int, int]:
        base = self.rules.general_fill_base_shifts
        return {day: int(math.ceil(base * self.rules.day_multiplier(day) - EPSILON)) for day in range(7)}

    def _general_fill(self) -> None:
        """Round-robin one extra retail shift per day until each day's target is met."""
        targets = self.general_fill_targets()
        assigned = {day: 0 for day in range(7)}
        retail = self.pools.retail
        progress = True
        while progress:
            progress = False
            for day in self._open_days(SATURDAY_FIRST):
                if assigned[day] >= targets[day]:
                    continue
                shifts = self.shifts[day]
                candidates = self._spread_sort(
                    m for m in retail if self._can_work_short_or_full(m, day) and self._sunday_allows(m, day)
                )
                for member in candidates:
                    if member.part_time:
                        window = self._part_time_window(member, day)
                    elif self._can_work_full(member, day):
                        window = self._full_time_window(member, shifts, include_opener=False)
                    else:
                        window = None
                    if window is None:
                        continue
                    self._place(member, window, day, "general-fill")
                    assigned[day] += 1
                    progress = True
                    break

    def _maximize_hours(self) -> None:
        """Bounded round-robin that tops every employee up toward their weekly cap."""
        leaders = {member.id for member in self.pools.leadership}
        everyone = self.pools.coverage
        iterations = 0
        progress = True
        while progress and iterations < self.rules.max_fill_iterations:
            progress = False
            iterations += 1
            for day in self._open_days(SATURDAY_FIRST):
                shifts = self.shifts[day]
                candidates = self._spread_sort(
                    m
                    for m in everyone
                    if (
                        self._leader_can_work(m, day)
                        if m.id in leaders
                        else self._can_work_short_or_full(m, day) and self._sunday_allows(m, day)
                    )
                )
                for member in candidates:
                    if member.id in leaders:
                        self._place_leader_extra(member, day)
                        progress = True
                        break
                    if member.part_time:
                        window = self._part_time_window(member, day)
                    elif self._can_work_full(member, day):
                        window = self._full_time_window(member, shifts, include_opener=True)
                    else:
                        window = None
                    if window is None:
                        continue
                    self._place(member, window, day, "maximize")
                    progress = True
                    break
        logger.info("Hour maximisation finished after %d iteration(s)", iterations)

    def _place_leader_extra(self, member: StaffMember, day: int) -> None:
        coverage = self.leadership[day]
        shifts = self.shifts[day]
        tier = self._tier(member)
        if tier == HIGHER:
            slots = ["opener", "closer", "mid"]
        else:
            slots = [slot for slot in ("opener", "closer") if slot in self._team_lead_slots(coverage)] + ["mid"]
        slot = self.random.pick(slots)
        window = self.random.pick(shifts.mids) if slot == "mid" else shifts[slot]
        self._place(member, window, day, "maximize")
        coverage.take(slot, tier)

    def _remainder_fill(self) -> None:
        """One last short or gap shift for anyone left with 5 to 8 hours unused."""
        short_hours = self.rules.short_shift_hours
        gap_hours = self.rules.gap_shift_hours
        retail = self.random.shuffle(self.pools.retail)
        for member in sorted(retail, key=self._remaining_hours):
            remaining = self._remaining_hours(member)
            if self._remaining_days(member) <= 0 or remaining >= self.rules.full_shift_hours - EPSILON:
                continue
            if remaining >= short_hours - EPSILON:
                kinds = ["short", "gap"]
            elif remaining >= gap_hours - EPSILON:
                kinds = ["gap"]
            else:
                continue
            placed = False
            for kind in kinds:
                for day in self._open_days(SATURDAY_FIRST):
                    if self._can_work_kind(member, day, kind) and self._sunday_allows(member, day):
                        window = self._remainder_window(member, self.shifts[day], kind)
                        self._place(member, window, day, "remainder")
                        placed = True
                        break
                if placed:
                    break
