# backend/tests/conftest.py
"""
Pytest configuration shared by every test package.

Environment is pinned BEFORE any tutorslots import so settings, the engine
and Celery all come up in test mode without touching a real database,
broker or .env file.
"""

import os

os.environ["CI"] = "1"
os.environ["ENVIRONMENT"] = "test"
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tutorslots.database import Base
import tutorslots.models  # noqa: F401
from tutorslots.models import BlockedPeriod, RecurringTemplate, ScheduleSlot

OWNER = "teacher-1"

# Monday
TODAY = date(2026, 3, 2)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, str, Optional[datetime]]] = []
        self.fail = fail

    def notify(self, recipient_id: str, message: str, expires_at: Optional[datetime] = None) -> None:
        if self.fail:
            raise RuntimeError("delivery provider down")
        self.sent.append((recipient_id, message, expires_at))

    @property
    def recipients(self) -> List[str]:
        return [recipient for recipient, _, _ in self.sent]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.combine(TODAY, time(8, 0), tzinfo=timezone.utc))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test; services commit, so nothing is shared."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def unit_db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def hm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def make_slot(
    db: Session,
    on: date,
    start: str,
    end: str,
    *,
    owner_id: str = OWNER,
    status: str = "available",
    **extra: Any,
) -> ScheduleSlot:
    start_t, end_t = hm(start), hm(end)
    slot = ScheduleSlot(
        owner_id=owner_id,
        date=on,
        start_time=start_t,
        end_time=end_t,
        duration_minutes=(end_t.hour * 60 + end_t.minute) - (start_t.hour * 60 + start_t.minute),
        status=status,
        **extra,
    )
    db.add(slot)
    db.commit()
    return slot


def make_template(
    db: Session, day: str, start: str, end: str, *, owner_id: str = OWNER, **extra: Any
) -> RecurringTemplate:
    template = RecurringTemplate(
        owner_id=owner_id, day_of_week=day, start_time=hm(start), end_time=hm(end), **extra
    )
    db.add(template)
    db.commit()
    return template


def make_blocked(
    db: Session,
    start: str,
    end: str,
    *,
    day: Optional[str] = None,
    on: Optional[date] = None,
    owner_id: str = OWNER,
) -> BlockedPeriod:
    period = BlockedPeriod(
        owner_id=owner_id, day_of_week=day, date=on, start_time=hm(start), end_time=hm(end)
    )
    db.add(period)
    db.commit()
    return period
