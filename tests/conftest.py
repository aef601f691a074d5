import os

# settings are read once; point them at throwaway backends before any import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("RECONCILE_INTERVAL_SECONDS", "0")

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from config import Settings
from models import Booking, GymClass, Member
from service import BookingService

TZ = "America/Toronto"
NOW = datetime(2026, 3, 10, 8, 0, tzinfo=ZoneInfo(TZ))
TODAY = NOW.date()


class RecordingDispatcher:
    """Collects emitted events instead of publishing them."""

    def __init__(self):
        self.events = []

    def emit(self, event_type, payload):
        self.events.append((event_type, payload))

    def types(self):
        return [t for t, _ in self.events]


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        local_tz=TZ,
        notifications_enabled=True,
        reconcile_interval_seconds=0,
    )


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def service(session, dispatcher, settings, sleeps):
    return BookingService(session, dispatcher, settings, sleep=sleeps.append, now=lambda: NOW)


@pytest.fixture
def make_member(session):
    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        data = {
            "name": f"Member {counter['n']}",
            "email": f"member{counter['n']}@example.com",
            "gender": "Female",
            "remaining_sessions": 5,
            "total_sessions": 5,
            "status": "Active",
        }
        data.update(kw)
        m = Member(**data)
        session.add(m)
        session.commit()
        session.refresh(m)
        return m

    return _make


@pytest.fixture
def make_class(session):
    def _make(**kw):
        data = {
            "name": "Yoga",
            "trainer": "Sarah Johnson",
            "schedule": TODAY + timedelta(days=2),
            "start_time": time(18, 0),
            "end_time": time(19, 0),
            "capacity": 10,
            "enrolled": 0,
            "gender": "All",
            "status": "Active",
        }
        data.update(kw)
        c = GymClass(**data)
        session.add(c)
        session.commit()
        session.refresh(c)
        return c

    return _make


@pytest.fixture
def make_booking(session):
    def _make(member, gym_class, **kw):
        data = {"user_id": member.id, "class_id": gym_class.id, "status": "confirmed", "session_consumed": True}
        data.update(kw)
        b = Booking(**data)
        session.add(b)
        session.commit()
        session.refresh(b)
        return b

    return _make


def past_day(days: int = 1) -> date:
    return TODAY - timedelta(days=days)
