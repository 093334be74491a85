from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import Employee, Location, SessionLocal, get_global_settings, init_database  # noqa: E402
from roles import canonical_role  # noqa: E402

DEFAULT_LOCATION = "Main Street"
DEFAULT_HIRE_YEARS = [2019, 2020, 2021, 2022, 2023, 2024]

SAMPLE_EMPLOYEES: List[Dict] = [
    {"name": "Alicia Moreno", "job_code": "STSUPER", "max_hours": 40},
    {"name": "Ben Whitaker", "job_code": "STASSTSP", "max_hours": 40, "days_off": ["Sunday"]},
    {"name": "Carla Diaz", "job_code": "STASSTSP", "max_hours": 40},
    {"name": "Dev Patel", "job_code": "STLDWKR", "max_hours": 40},
    {"name": "Erin Shaw", "job_code": "STLDWKR", "max_hours": 29, "days": 4},
    {"name": "Felix Grant", "job_code": "DONDOOR", "max_hours": 40},
    {"name": "Gina Lowe", "job_code": "DONDOOR", "max_hours": 25, "days": 4},
    {"name": "Hank Ortiz", "job_code": "DONDOOR", "max_hours": 20, "days": 4, "days_off": ["Wednesday"]},
    {"name": "Ivy Chen", "job_code": "DONPRI", "max_hours": 40},
    {"name": "Jonah Price", "job_code": "DONPRI", "max_hours": 29, "days": 5},
    {"name": "Kara Neal", "job_code": "APPROC", "max_hours": 40},
    {"name": "Liam Porter", "job_code": "APPROC", "max_hours": 24, "days": 4},
    {"name": "Molly Garrison", "job_code": "CASHSLS", "max_hours": 40},
    {"name": "Noel Rasmussen", "job_code": "CASHSLS", "max_hours": 29, "days": 5},
    {"name": "Nora Bell", "job_code": "CASHSLS", "max_hours": 25, "days": 4, "days_off": ["Monday"]},
    {"name": "Oscar Lane", "job_code": "CASHSLS", "max_hours": 20, "days": 4},
    {"name": "Piper Hart", "job_code": "CSHSLSWV", "max_hours": 16, "days": 3},
]


def _hire_date(index: int) -> datetime.date:
    return datetime.date(DEFAULT_HIRE_YEARS[index % len(DEFAULT_HIRE_YEARS)], (index % 12) + 1, 1)


def seed_employees(session_factory=SessionLocal, location: str = DEFAULT_LOCATION) -> Dict[str, int]:
    created = 0
    refreshed = 0
    with session_factory() as session:
        get_global_settings(session)
        if not session.scalars(select(Location).where(Location.name == location)).first():
            session.add(Location(name=location, apparel_processor_stations=2, donation_pricing_stations=2))
            print(f"[seed] Added location {location}.")

        for index, entry in enumerate(SAMPLE_EMPLOYEES):
            if canonical_role(entry["job_code"]) is None:
                print(f"[seed] Skipping {entry['name']} because job code {entry['job_code']} is not scheduled.")
                continue
            max_hours = entry.get("max_hours", 40)
            employee = session.scalars(select(Employee).where(Employee.name == entry["name"])).first()
            if not employee:
                employee = Employee(name=entry["name"], job_code=entry["job_code"])
                session.add(employee)
                created += 1
            else:
                employee.job_code = entry["job_code"]
                refreshed += 1
            employee.email = entry["name"].lower().replace(" ", ".") + "@example.com"
            employee.max_weekly_hours = max_hours
            employee.preferred_days_per_week = entry.get("days", 5)
            employee.non_working_day_list = entry.get("days_off", [])
            employee.hire_date = _hire_date(index)
            employee.employment_type = "full_time" if max_hours >= 32 else "part_time"
            employee.location = location
            employee.is_active = True
        session.commit()
    print(f"[seed] Seed complete. Created {created} employees, refreshed {refreshed} profiles.")
    return {"created": created, "refreshed": refreshed}


if __name__ == "__main__":
    init_database()
    seed_employees()
