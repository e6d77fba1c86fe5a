"""
Pytest configuration and fixtures for Venue Tally tests.
"""
import os
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
import pytz
from httpx import AsyncClient, ASGITransport

# Set test configuration before importing main
os.environ["DATABASE_URL"] = "sqlite:///./test_tally.db"
os.environ["AUTH_ENABLED"] = "true"
os.environ["RECORD_RATE_LIMIT"] = "10000/minute"
os.environ["VENUE_TIMEZONE"] = "America/Toronto"

from main import app, database, metadata  # noqa: E402
import sqlalchemy  # noqa: E402

from app import auth, state  # noqa: E402
from app.controllers.archive import ArchiveManager  # noqa: E402
from app.controllers.live_counter import LiveCounter  # noqa: E402
from app.engine import CurrentCount, Event, EventKind, Gender, VenueSchedule, resolve_business_date  # noqa: E402
from app.realtime import ChangeHub  # noqa: E402
from app.store import EventStore  # noqa: E402

TORONTO = pytz.timezone("America/Toronto")
SCHEDULE = VenueSchedule(timezone="America/Toronto")
ADMIN_EMAIL = "manager@venue.test"
ADMIN_PASSWORD = "door-staff-only"


def local_time(value: str) -> datetime:
    """'2024-05-01 16:05' in Toronto time, as an aware UTC datetime."""
    naive = datetime.strptime(value, "%Y-%m-%d %H:%M")
    return TORONTO.localize(naive).astimezone(pytz.utc)


def make_event(value: str, gender="male", kind="entry", **kwargs) -> Event:
    occurred_at = local_time(value)
    kwargs.setdefault("logical_date", resolve_business_date(occurred_at, SCHEDULE))
    return Event(gender=Gender(gender), kind=EventKind(kind), occurred_at=occurred_at, **kwargs)


class FakeClock:
    """Settable clock for controllers."""

    def __init__(self, value: str = "2024-05-01 20:00"):
        self.now = local_time(value)

    def set(self, value: str):
        self.now = local_time(value)

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


@pytest_asyncio.fixture
async def setup_database():
    """Fresh tables and a connected database for each test."""
    engine = sqlalchemy.create_engine(
        "sqlite:///./test_tally.db",
        connect_args={"check_same_thread": False}
    )
    metadata.drop_all(engine)
    metadata.create_all(engine)
    engine.dispose()
    auth._sessions.clear()

    await database.connect()
    yield database
    await state.live_counter.close()
    state.live_counter.count = CurrentCount()
    state.live_counter.last_error = None
    state.live_counter.connection_error = None
    state.live_counter.session_id = None
    state.live_counter.business_date = None
    await database.disconnect()


@pytest_asyncio.fixture
async def client(setup_database):
    """Async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_headers(setup_database):
    """Authorization header for a signed-in admin."""
    await auth.create_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
    token = await auth.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub():
    return ChangeHub()


@pytest_asyncio.fixture
async def store(setup_database, hub):
    return EventStore(database, hub)


@pytest_asyncio.fixture
async def counter(store, hub, clock):
    """Live counter wired to its own hub and a fixed clock."""
    live = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
    yield live
    await live.close()
