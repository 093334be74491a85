from __future__ import annotations

import argparse
import datetime
import logging
import sys
from collections import Counter, defaultdict
from pathlib import Path
from typing import Dict, Optional

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from business_time import DAY_NAMES, day_index, normalize_week_start  # noqa: E402
from database import SessionLocal, clear_week_shifts, init_database, list_employees, list_locations  # noqa: E402
from generator.api import generate_schedule_for_week  # noqa: E402
from roles import canonical_role  # noqa: E402
from validation import validate_week_schedule  # noqa: E402


def _default_week_start(today: Optional[datetime.date] = None) -> datetime.date:
    base = today or datetime.date.today()
    return normalize_week_start(base) + datetime.timedelta(days=7)


def _coverage_table(week_start: datetime.date, shifts) -> Dict[str, Counter]:
    table: Dict[str, Counter] = defaultdict(Counter)
    for shift in shifts:
        day = DAY_NAMES[day_index(week_start, shift["start_time"])]
        table[day][canonical_role(shift.get("job_code")) or "Unclassified"] += 1
    return table


def run_workflow(
    week_start: datetime.date,
    *,
    location: Optional[str] = None,
    seed: Optional[int] = None,
    clear: bool = False,
    dry_run: bool = False,
    session_factory=SessionLocal,
) -> int:
    if location:
        with session_factory() as session:
            known = [row.name for row in list_locations(session, only_active=True)]
        if location not in known:
            print(f"[smoke][warning] Unknown location {location}; known: {', '.join(known) or 'none'}.")

    if clear and not dry_run:
        with session_factory() as session:
            ids = [employee.id for employee in list_employees(session, location)] if location else None
            deleted = clear_week_shifts(session, week_start, employee_ids=ids)
        print(f"[smoke] Cleared {deleted} existing shifts.")

    result = generate_schedule_for_week(session_factory, week_start, location, seed=seed, persist=not dry_run)
    print(
        f"[smoke] Generated {result['shifts_created']} shifts ({result['total_hours']:.1f} h) "
        f"for {week_start.isoformat()} in {result['attempts']} attempt(s)."
    )
    for date_label, name in sorted(result.get("closed_days", {}).items()):
        print(f"[smoke] {date_label} closed for {name}.")

    table = _coverage_table(week_start, result["shifts"])
    for day in DAY_NAMES:
        counts = table.get(day)
        if not counts:
            continue
        detail = ", ".join(f"{role}: {count}" for role, count in sorted(counts.items()))
        print(f"[smoke] {day}: {detail}")
    for warning in result.get("warnings") or []:
        print(f"[smoke][warning] {warning}")

    if dry_run:
        print("[smoke] Dry run, nothing saved and validation skipped.")
        return 0

    with session_factory() as session:
        report = validate_week_schedule(session, week_start, location)
    for check in report["checks"]:
        print(f"[smoke][check] {check['label']}: {check['status']} ({check['details']})")
    for issue in report["issues"]:
        print(f"[smoke][issue] {issue['message']}")
    for warning in report["warnings"]:
        print(f"[smoke][coverage] {warning['message']}")
    return 1 if report["issues"] else 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a week of shifts, print per-day coverage and validate the result."
    )
    parser.add_argument("--week-start", help="ISO date (YYYY-MM-DD); snapped back to Sunday. Defaults to next week.")
    parser.add_argument("--location", help="Only schedule employees at this location.")
    parser.add_argument("--seed", type=int, help="Seed for a reproducible run.")
    parser.add_argument("--clear", action="store_true", help="Delete the week's shifts before generating.")
    parser.add_argument("--dry-run", action="store_true", help="Generate without saving.")
    parser.add_argument("--verbose", action="store_true", help="Log generator passes at INFO level.")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_database()
    if args.week_start:
        try:
            week_start = datetime.date.fromisoformat(args.week_start)
        except ValueError as exc:
            raise SystemExit(f"Invalid --week-start value: {exc}") from exc
    else:
        week_start = _default_week_start()
    week_start = normalize_week_start(week_start)
    print(f"[smoke] Target week start: {week_start}")
    raise SystemExit(
        run_workflow(
            week_start,
            location=args.location,
            seed=args.seed,
            clear=args.clear,
            dry_run=args.dry_run,
        )
    )


if __name__ == "__main__":
    main()
