import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.config import Settings
from ledger.credentials import InMemoryCredentialStore, PasswordHasher
from ledger.storage import MonotonicClock

# Minimum bcrypt cost
TEST_ROUNDS = 4
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin123"


class StepClock(MonotonicClock):
    """Clock that advances by a fixed step on every call."""

    def __init__(self, start: datetime, step: timedelta):
        super().__init__()
        self.current = start
        self.step = step

    def now(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


@pytest.fixture
def hasher():
    return PasswordHasher(rounds=TEST_ROUNDS)


@pytest.fixture
def credential_store(hasher):
    store = InMemoryCredentialStore(hasher)
    store.create(ADMIN_USERNAME, ADMIN_PASSWORD)
    return store


@pytest.fixture
def day_clock():
    return StepClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), timedelta(days=1))


@pytest.fixture
def settings():
    return Settings(
        session_secret="test-session-secret",
        bcrypt_rounds=TEST_ROUNDS,
        default_admin_username=ADMIN_USERNAME,
        default_admin_password=ADMIN_PASSWORD,
        log_level="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings=settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_client(client):
    """TestClient holding a session cookie for the seeded admin."""
    r = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
    r.raise_for_status()
    return client
