"""
Shared fixtures: in-memory SQLite per test, small entity builders.

Environment must be set before any servicebook import (settings are read
at import time).
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("REMINDER_CHECKER_ENABLED", "false")

from datetime import date, datetime, time  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from servicebook.database import enable_sqlite_fk  # noqa: E402
from servicebook.models import Base  # noqa: E402
from servicebook.models.tables import (  # noqa: E402
    ServiceAddOns,
    ServiceAvailabilityWindows,
    ServiceLocations,
    Services,
    Users,
)
from servicebook.services.events import NotificationConfig, NotificationDispatcher  # noqa: E402

# Monday 2030-01-07 08:00 (naive UTC)
NOW = datetime(2030, 1, 7, 8, 0)
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", enable_sqlite_fk)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user(db):
    obj = Users(name="Ada Client", email="ada@example.com", phone="+440000000")
    db.add(obj)
    db.commit()
    return obj


@pytest.fixture
def service(db):
    return make_service(db)


@pytest.fixture
def monday_window(db, service):
    """Weekly Monday 09:00-12:00, 60-minute slots."""
    return make_window(db, service, pattern="weekly", day_of_week=0, start_time=time(9), end_time=time(12))


@pytest.fixture
def redis_mock():
    return MagicMock()


@pytest.fixture
def notifier(redis_mock):
    return NotificationDispatcher(redis_mock, NotificationConfig(queue="events:test"))


# ── Builders ─────────────────────────────────────────────────────────────


def make_service(db, **overrides):
    values = dict(
        name="Deep tissue massage",
        base_price=10000,
        duration_minutes=60,
        buffer_minutes=0,
        requires_deposit=False,
        status="active",
        auto_confirm_bookings=False,
    )
    values.update(overrides)
    obj = Services(**values)
    db.add(obj)
    db.commit()
    return obj


def make_location(db, service, **overrides):
    values = dict(
        service_id=service.id,
        name="Studio",
        type="business_premises",
        additional_charge=0,
        is_active=True,
    )
    values.update(overrides)
    obj = ServiceLocations(**values)
    db.add(obj)
    db.commit()
    return obj


def make_window(db, service, **overrides):
    values = dict(
        service_id=service.id,
        type="regular",
        pattern="weekly",
        day_of_week=0,
        start_time=time(9),
        end_time=time(12),
        break_duration_minutes=0,
        is_bookable=True,
        is_active=True,
    )
    values.update(overrides)
    obj = ServiceAvailabilityWindows(**values)
    db.add(obj)
    db.commit()
    return obj


def make_add_on(db, service, **overrides):
    values = dict(
        service_id=service.id,
        name="Hot stones",
        price=1500,
        duration_minutes=0,
        max_quantity=2,
        is_required=False,
        is_active=True,
    )
    values.update(overrides)
    obj = ServiceAddOns(**values)
    db.add(obj)
    db.commit()
    return obj
