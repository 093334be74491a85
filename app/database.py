from __future__ import annotations

import datetime
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from business_time import normalize_week_start, week_bounds


DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'scheduler.db').as_posix()}"
LEAVE_KINDS = {"paid", "unpaid"}
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url == DEFAULT_DATABASE_URL:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    return url


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for every scheduler table."""

    pass


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    job_code: Mapped[str] = mapped_column(String(24), nullable=False)
    max_weekly_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=40)
    preferred_days_per_week: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    non_working_days: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hire_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    employment_type: Mapped[str | None] = mapped_column(String(24), nullable=True)
    location: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @property
    def non_working_day_list(self) -> List[str]:
        return [day.strip() for day in (self.non_working_days or "").split(",") if day.strip()]

    @non_working_day_list.setter
    def non_working_day_list(self, days: Iterable[str]) -> None:
        cleaned = {day.strip().capitalize() for day in days if day and day.strip()}
        self.non_working_days = ", ".join(name for name in WEEKDAY_NAMES if name in cleaned)


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)
    weekly_hours_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    apparel_processor_stations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    donation_pricing_stations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class GlobalSettings(Base):
    __tablename__ = "global_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    total_weekly_hours_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    openers_required: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    closers_required: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    managers_required: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    leadership_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.25)
    production_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.35)
    greeter_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.15)
    cashier_pct: Mapped[float] = mapped_column(Float, nullable=False, default=0.25)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class TimeOffRequest(Base):
    __tablename__ = "time_off_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")


class LeaveEntry(Base):
    """Paid (PAL) or unpaid (UTO) leave for a single work date."""

    __tablename__ = "leave_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(8), nullable=False, default="paid")
    work_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="approved")

    __table_args__ = (
        UniqueConstraint("employee_id", "kind", "work_date", name="uq_leave_employee_kind_date"),
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    start_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(_database_url(), echo=False, future=True)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(engine)


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def list_employees(
    session,
    location: Optional[str] = None,
    *,
    include_inactive: bool = True,
) -> List[Employee]:
    stmt = select(Employee).order_by(Employee.name.asc(), Employee.id.asc())
    if location:
        stmt = stmt.where(Employee.location == location)
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    return list(session.scalars(stmt))


def get_global_settings(session) -> GlobalSettings:
    settings = session.scalars(select(GlobalSettings).order_by(GlobalSettings.id)).first()
    if settings:
        return settings
    settings = GlobalSettings()
    session.add(settings)
    session.commit()
    session.refresh(settings)
    return settings


def list_locations(session, *, only_active: bool = False) -> List[Location]:
    stmt = select(Location).order_by(Location.name)
    if only_active:
        stmt = stmt.where(Location.is_active.is_(True))
    return list(session.scalars(stmt))


def get_location_by_name(session, name: Optional[str]) -> Optional[Location]:
    if not name:
        return None
    return session.scalars(select(Location).where(Location.name == name)).first()


def list_time_off_requests(
    session,
    start: datetime.date,
    end: datetime.date,
) -> List[TimeOffRequest]:
    """Return requests overlapping [start, end], regardless of status."""
    stmt = (
        select(TimeOffRequest)
        .where(TimeOffRequest.start_date <= end, TimeOffRequest.end_date >= start)
        .order_by(TimeOffRequest.start_date)
    )
    return list(session.scalars(stmt))


def _leave_entries(session, kind: str, start: datetime.date, end: datetime.date) -> List[LeaveEntry]:
    if kind not in LEAVE_KINDS:
        raise ValueError(f"Unsupported leave kind '{kind}'.")
    stmt = (
        select(LeaveEntry)
        .where(LeaveEntry.kind == kind, LeaveEntry.work_date >= start, LeaveEntry.work_date <= end)
        .order_by(LeaveEntry.work_date)
    )
    return list(session.scalars(stmt))


def get_paid_leave_entries(session, start: datetime.date, end: datetime.date) -> List[LeaveEntry]:
    return _leave_entries(session, "paid", start, end)


def get_unpaid_leave_entries(session, start: datetime.date, end: datetime.date) -> List[LeaveEntry]:
    return _leave_entries(session, "unpaid", start, end)


def get_shifts(
    session,
    start: datetime.datetime,
    end: datetime.datetime,
    *,
    employee_ids: Optional[Iterable[int]] = None,
) -> List[Shift]:
    """Return shifts starting in [start, end)."""
    stmt = (
        select(Shift)
        .where(Shift.start_time >= ensure_aware(start), Shift.start_time < ensure_aware(end))
        .order_by(Shift.start_time, Shift.employee_id)
    )
    if employee_ids is not None:
        stmt = stmt.where(Shift.employee_id.in_(list(employee_ids)))
    return list(session.scalars(stmt))


def create_shifts_batch(session, rows: Iterable[Dict[str, Any]]) -> List[Shift]:
    shifts = [
        Shift(
            employee_id=row["employee_id"],
            start_time=ensure_aware(row["start_time"]),
            end_time=ensure_aware(row["end_time"]),
        )
        for row in rows
    ]
    if not shifts:
        return []
    session.add_all(shifts)
    session.commit()
    return shifts


def clear_week_shifts(
    session,
    week_start: datetime.date,
    *,
    employee_ids: Optional[Iterable[int]] = None,
    zone: Optional[str] = None,
) -> int:
    """Delete every shift starting in the local week of ``week_start``."""
    start, end = week_bounds(normalize_week_start(week_start), zone)
    stmt = delete(Shift).where(Shift.start_time >= ensure_aware(start), Shift.start_time < ensure_aware(end))
    if employee_ids is not None:
        stmt = stmt.where(Shift.employee_id.in_(list(employee_ids)))
    result = session.execute(stmt)
    session.commit()
    return int(result.rowcount or 0)


def shift_to_dict(shift: Shift, employee: Optional[Employee] = None) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "employee_id": shift.employee_id,
        "employee_name": employee.name if employee else None,
        "job_code": employee.job_code if employee else None,
        "start_time": ensure_aware(shift.start_time),
        "end_time": ensure_aware(shift.end_time),
    }
