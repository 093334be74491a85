"""Thin FastAPI wrapper around the schedule generator.

Generate and clear calls for the same week are serialised with a process-local
lock, whatever location they target, so overlapping runs cannot double-book
the same employees.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
import datetime
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Ensure absolute imports (e.g., "import database") resolve when served from the repo root.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from business_time import normalize_week_start, week_bounds  # noqa: E402
from database import (  # noqa: E402
    SessionLocal,
    clear_week_shifts,
    get_shifts,
    init_database,
    list_employees,
    shift_to_dict,
)
from generator.api import generate_schedule_for_week  # noqa: E402
from validation import validate_week_schedule  # noqa: E402

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_week_locks: Dict[str, threading.Lock] = {}


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Store Shift Scheduler API", version="0.1", lifespan=lifespan)


def get_session_factory() -> Callable:
    return SessionLocal


def get_db(session_factory: Callable = Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def _lock_for(week_start: datetime.date) -> threading.Lock:
    with _locks_guard:
        return _week_locks.setdefault(week_start.isoformat(), threading.Lock())


@contextmanager
def week_lock(week_start: datetime.date) -> Iterator[None]:
    with _lock_for(week_start):
        yield


def _parse_week_start(value: Any) -> datetime.date:
    if not value:
        raise HTTPException(status_code=400, detail="week_start is required")
    try:
        return normalize_week_start(datetime.date.fromisoformat(str(value)))
    except ValueError:
        raise HTTPException(status_code=400, detail="week_start must be YYYY-MM-DD")


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/schedule/generate")
def generate_schedule(
    payload: Dict[str, Any],
    session_factory: Callable = Depends(get_session_factory),
) -> JSONResponse:
    start_date = _parse_week_start(payload.get("week_start") or payload.get("weekStart"))
    location = (payload.get("location") or "").strip() or None
    seed = _optional_int(payload.get("seed"), "seed")
    dry_run = bool(payload.get("dry_run") or payload.get("dryRun"))
    try:
        with week_lock(start_date):
            result = generate_schedule_for_week(
                session_factory, start_date, location, seed=seed, persist=not dry_run
            )
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        logger.exception("Schedule generation failed for %s", start_date)
        raise HTTPException(status_code=500, detail=f"schedule generation failed: {exc}") from exc
    return JSONResponse(content=jsonable_encoder(result))


@app.post("/schedule/clear")
def clear_schedule(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    start_date = _parse_week_start(payload.get("week_start") or payload.get("weekStart"))
    location = (payload.get("location") or "").strip() or None
    employee_ids = [employee.id for employee in list_employees(db, location)] if location else None
    with week_lock(start_date):
        deleted = clear_week_shifts(db, start_date, employee_ids=employee_ids)
    logger.info("Cleared %d shifts for week of %s (location=%s)", deleted, start_date, location or "all")
    return JSONResponse(
        content={"week_start": start_date.isoformat(), "location": location, "deleted": deleted}
    )


@app.get("/schedule/{week_start}")
def week_shifts(
    week_start: str,
    location: Optional[str] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    employees = {employee.id: employee for employee in list_employees(db, location)}
    start, end = week_bounds(start_date)
    shifts = get_shifts(db, start, end, employee_ids=list(employees) if location else None)
    payload = [shift_to_dict(shift, employees.get(shift.employee_id)) for shift in shifts]
    return JSONResponse(
        content=jsonable_encoder({"week_start": start_date.isoformat(), "location": location, "shifts": payload})
    )


@app.get("/schedule/{week_start}/validate")
def validate_schedule_endpoint(
    week_start: str,
    location: Optional[str] = Query(None),
    db=Depends(get_db),
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    report = validate_week_schedule(db, start_date, location)
    return JSONResponse(content=jsonable_encoder(report))
