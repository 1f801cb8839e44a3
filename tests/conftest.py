"""Shared test fixtures and helpers."""

import os

# Settings are read at import time
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("FIREBASE_PROJECT_ID", "mindcare-test")

from datetime import date, datetime, time, timedelta, timezone  # noqa: E402
from typing import Optional  # noqa: E402
from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402
from fastapi import Header  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from mindcare.auth import Identity, get_current_identity  # noqa: E402
from mindcare.database import Base, get_db  # noqa: E402
from mindcare.domain.applications.schemas import ApplicationCreate, ReviewDecision  # noqa: E402
from mindcare.domain.applications.service import ApplicationService  # noqa: E402
from mindcare.domain.availability.service import AvailabilityService  # noqa: E402
from mindcare.main import app  # noqa: E402
from mindcare.models import Provider  # noqa: E402

BUCHAREST = ZoneInfo("Europe/Bucharest")

# Monday 26 October 2026, 08:00 UTC; Bucharest is on EET (UTC+2) from the day before
REFERENCE_NOW = datetime(2026, 10, 26, 8, 0, tzinfo=timezone.utc)
# The following Monday
NEXT_MONDAY = date(2026, 11, 2)

ADMIN = Identity(uid="admin-1", email="admin@mindcare.test", is_admin=True)


class FixedClock:
    """Injectable clock; tests move it forward explicitly"""

    def __init__(self, now: datetime = REFERENCE_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def client(db):
    """HTTP client whose caller is chosen per request with X-Test-Uid / X-Test-Admin"""

    def override_get_db():
        yield db

    async def override_identity(
        x_test_uid: str = Header(...),
        x_test_admin: str = Header("false"),
    ) -> Identity:
        return Identity(uid=x_test_uid, is_admin=x_test_admin.lower() == "true")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_identity] = override_identity
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(uid: str) -> dict:
    return {"X-Test-Uid": uid}


def as_admin(uid: str = ADMIN.uid) -> dict:
    return {"X-Test-Uid": uid, "X-Test-Admin": "true"}


def application_form(**overrides) -> ApplicationCreate:
    """Helper to create a valid application form with sensible defaults."""
    data = {
        "full_name": "Ana Popescu",
        "email": "ana.popescu@example.com",
        "phone": "+40 721 234 567",
        "specialization": "Cognitive Behavioral Therapy",
        "license_number": "RO-PSI-12345",
        "years_experience": 7,
        "education": "MSc Clinical Psychology, University of Bucharest",
        "bio": "Works with anxiety and burnout.",
        "certifications": ["CBT Level II", "EMDR"],
        "languages": ["Romanian", "English"],
    }
    data.update(overrides)
    return ApplicationCreate(**data)


def make_provider(db, clock, uid: str = "therapist-1", **form_overrides) -> Provider:
    """Submit and approve an application, returning the provisioned provider"""
    service = ApplicationService(db, clock=clock, fast_track=set())
    application = service.submit(uid, application_form(**form_overrides))
    approved = service.review(application.id, ADMIN.uid, ReviewDecision.APPROVE, "ok")
    return db.get(Provider, approved.provider_id)


def add_window(
    db,
    provider_id: int,
    day_of_week: int = 1,
    start: time = time(9, 0),
    end: time = time(12, 0),
    is_enabled: bool = True,
):
    return AvailabilityService(db).set_window(provider_id, day_of_week, start, end, is_enabled)


def local(day: date, hour: int, minute: int = 0, tz: ZoneInfo = BUCHAREST) -> datetime:
    """Wall-clock time on a date in the provider's timezone"""
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def upcoming_monday(weeks_ahead: int = 1, today: Optional[date] = None) -> date:
    """A Monday at least a week away from the real current date (for HTTP tests)"""
    today = today or datetime.now(BUCHAREST).date()
    days_until = (0 - today.weekday()) % 7 or 7
    return today + timedelta(days=days_until + 7 * weeks_ahead)
