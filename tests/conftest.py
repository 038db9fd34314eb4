"""
Pytest configuration and shared fixtures.

Test environment variables are set before any frontdoor import so the cached
settings, the engine and the app all pick them up. The database is a SQLite
file (not :memory:) so threads in the concurrency tests share it.
"""

import os
import tempfile
from datetime import timedelta
from types import SimpleNamespace

import pytest

TEST_SESSION_SECRET = "test-session-secret"
TEST_SCANNER_TOKEN = "test-scanner-token"

os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), f"frontdoor_test_{os.getpid()}.db"),
)
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SESSION_SECRET", TEST_SESSION_SECRET)
os.environ.setdefault("SCANNER_TOKEN", TEST_SCANNER_TOKEN)
os.environ.setdefault("RING_TIMEOUT_SECONDS", "30")
os.environ.setdefault("ADMIN_USER_IDS", "admin-1")

# Clear settings cache before any app imports to ensure test env vars are used
from frontdoor.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from frontdoor import models  # noqa: E402
from frontdoor.main import app  # noqa: E402
from frontdoor.storage import Base, SessionLocal, engine  # noqa: E402
from frontdoor.utils import sign_session_token, utcnow  # noqa: E402


def session_headers(user_id: str) -> dict:
    """X-Session-Token header for a user, signed like the identity provider does."""
    return {"X-Session-Token": sign_session_token(user_id, os.environ["SESSION_SECRET"])}


def scanner_headers() -> dict:
    return {"Authorization": f"Bearer {os.environ['SCANNER_TOKEN']}"}


@pytest.fixture
def tables():
    """Fresh schema for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(tables):
    with TestClient(app) as test_client:
        yield test_client


class Factory:
    """Creates committed rows for tests."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def building(self, name="Twin Oak S1", doorbell_timeout_seconds=None):
        return self._save(models.Building(name=name, doorbell_timeout_seconds=doorbell_timeout_seconds))

    def household(self, building, name="Chen Family", unit_number="3A", members=("resident-1",)):
        household = self._save(models.Household(building_id=building.id, name=name, unit_number=unit_number))
        for user_id in members:
            self._save(models.HouseholdMember(household_id=household.id, user_id=user_id))
        return household

    def door_bell(self, building, household=None, number="3A", is_enabled=True):
        return self._save(models.DoorBell(
            building_id=building.id,
            household_id=household.id if household else None,
            door_bell_number=number,
            is_enabled=is_enabled,
        ))

    def front_desk(self, building, user_id="desk-1", name="Front Desk"):
        return self._save(models.FrontDeskMember(building_id=building.id, user_id=user_id, name=name))

    def call_session(self, door_bell, status="ringing", age_seconds=0, connected=False):
        started_at = utcnow() - timedelta(seconds=age_seconds)
        return self._save(models.DoorBellCallSession(
            door_bell_id=door_bell.id,
            status=status,
            started_at=started_at,
            connected_at=started_at + timedelta(seconds=1) if connected else None,
        ))


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def site(factory):
    """
    One building with a front desk member and a household door bell.

    resident-1 belongs to the household, desk-1 staffs the front desk,
    outsider-1 has no membership at all.
    """
    building = factory.building()
    household = factory.household(building)
    door_bell = factory.door_bell(building, household)
    factory.front_desk(building)
    return SimpleNamespace(
        building_id=building.id,
        household_id=household.id,
        door_bell_id=door_bell.id,
        building=building,
        household=household,
        door_bell=door_bell,
    )
