"""
Shared fixtures: in-memory store and identity provider, services wired the
way ``build_services`` wires them, and a TestClient over a fresh app.
"""
import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Keep the module-level app on the in-memory backend and quiet.
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from todo_sync.auth import AuthService  # noqa: E402
from todo_sync.identity import InMemoryIdentityProvider  # noqa: E402
from todo_sync.main import create_app  # noqa: E402
from todo_sync.repositories import DocumentTodoRepository  # noqa: E402
from todo_sync.settings import Settings  # noqa: E402
from todo_sync.store import InMemoryDocumentStore  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock for session-age checks."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def settings():
    return Settings(log_level="WARNING")


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider(settings, clock):
    # Low iteration count keeps hashing fast in tests.
    return InMemoryIdentityProvider(
        min_password_length=settings.min_password_length,
        max_failed_attempts=settings.max_failed_sign_ins,
        recent_login_window=timedelta(seconds=settings.recent_login_window_seconds),
        clock=clock,
        hash_iterations=1000,
    )


@pytest.fixture
def repo(store, settings):
    return DocumentTodoRepository(store, settings)


@pytest.fixture
def auth(provider, store, settings):
    return AuthService(provider, store, settings)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


def sign_up(client, email="jane@example.com", password="secret1"):
    """Register through the API and send the returned bearer token from then on."""
    res = client.post("/api/v1/auth/sign-up", json={"email": email, "password": password})
    assert res.status_code == 201
    body = res.json()
    client.headers["Authorization"] = f"Bearer {body['access_token']}"
    return body["user"]


@pytest.fixture
def register():
    return sign_up


@pytest.fixture
def signed_in_client(client):
    sign_up(client)
    return client
