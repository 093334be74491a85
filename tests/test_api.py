from __future__ import annotations

import datetime
import sys
import threading
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import api  # noqa: E402
from database import Base, Employee, Shift  # noqa: E402


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://", future=True, poolclass=StaticPool, connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with factory() as session:
        for index, (code, location) in enumerate(
            [("STSUPER", "North"), ("STASSTSP", "North"), ("DONDOOR", "North"), ("CASHSLS", "North"),
             ("CASHSLS", "South"), ("STSUPER", "South")]
        ):
            session.add(Employee(name=f"Employee {index}", job_code=code, location=location))
        session.commit()
    yield factory
    engine.dispose()


@pytest.fixture()
def client(session_factory):
    api.app.dependency_overrides[api.get_session_factory] = lambda: session_factory
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def _stored(session_factory):
    with session_factory() as session:
        return list(session.scalars(select(Shift)))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_generate_requires_valid_week_start(client):
    assert client.post("/schedule/generate", json={}).status_code == 400
    response = client.post("/schedule/generate", json={"week_start": "06/01/2025"})
    assert response.status_code == 400
    assert "YYYY-MM-DD" in response.json()["detail"]
    assert client.post("/schedule/generate", json={"week_start": "2025-06-01", "seed": "abc"}).status_code == 400


def test_generate_for_location_snaps_to_sunday(client, session_factory):
    response = client.post("/schedule/generate", json={"weekStart": "2025-06-04", "location": "North", "seed": 4})
    assert response.status_code == 200
    payload = response.json()
    assert payload["week_start"] == "2025-06-01"
    assert payload["location"] == "North"
    assert payload["shifts_created"] == len(_stored(session_factory)) > 0
    with session_factory() as session:
        north_ids = {e.id for e in session.scalars(select(Employee).where(Employee.location == "North"))}
    assert {shift.employee_id for shift in _stored(session_factory)} <= north_ids


def test_week_listing_and_validation(client):
    client.post("/schedule/generate", json={"week_start": "2025-06-01", "seed": 8})

    listing = client.get("/schedule/2025-06-01")
    assert listing.status_code == 200
    shifts = listing.json()["shifts"]
    assert shifts
    assert all(row["employee_name"] for row in shifts)

    south = client.get("/schedule/2025-06-01", params={"location": "South"}).json()["shifts"]
    assert 0 < len(south) < len(shifts)

    report = client.get("/schedule/2025-06-01/validate")
    assert report.status_code == 200
    body = report.json()
    assert body["issues"] == []
    assert {"label", "status", "details"} <= set(body["checks"][0])


def test_clear_removes_only_the_location(client, session_factory):
    client.post("/schedule/generate", json={"week_start": "2025-06-01", "seed": 2})
    before = len(_stored(session_factory))

    response = client.post("/schedule/clear", json={"week_start": "2025-06-01", "location": "South"})

    assert response.status_code == 200
    deleted = response.json()["deleted"]
    assert 0 < deleted < before
    assert len(_stored(session_factory)) == before - deleted
    assert client.post("/schedule/clear", json={"week_start": "2025-06-01"}).json()["deleted"] == before - deleted
    assert _stored(session_factory) == []


def test_bad_path_week_start(client):
    assert client.get("/schedule/not-a-date").status_code == 400
    assert client.get("/schedule/not-a-date/validate").status_code == 400


def test_dry_run_generate_saves_nothing(client, session_factory):
    response = client.post("/schedule/generate", json={"week_start": "2025-06-01", "seed": 3, "dry_run": True})
    assert response.status_code == 200
    payload = response.json()
    assert payload["persisted"] is False
    assert payload["shifts_created"] > 0
    assert all(row["id"] is None for row in payload["shifts"])
    assert _stored(session_factory) == []


def test_week_lock_covers_every_location():
    week = datetime.date(2025, 6, 1)
    acquired = []

    def try_clear_one_location():
        lock = api._lock_for(week)
        acquired.append(lock.acquire(timeout=0.2))
        if acquired[-1]:
            lock.release()

    with api.week_lock(week):
        worker = threading.Thread(target=try_clear_one_location)
        worker.start()
        worker.join()
    assert acquired == [False]

    worker = threading.Thread(target=try_clear_one_location)
    worker.start()
    worker.join()
    assert acquired == [False, True]
