"""Shared fixtures for QuillAuth tests."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from quillauth.config import Settings
from quillauth.container import build_container
from quillauth.main import create_app
from quillauth.metrics import Metrics
from quillauth.services.credentials import (
    CredentialLifecycle,
    InMemoryCredentialStore,
    Role,
    SecretHasher,
    SigningKeyRing,
    TokenCodec,
)
from quillauth.services.email import LogEmailSender

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012"
PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Lowest bcrypt cost so hashing does not dominate test time"""
    monkeypatch.setattr(SecretHasher, "BCRYPT_ROUNDS", 4)


@pytest.fixture
def settings():
    return Settings(
        ENV="test",
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
        JWT_ACCESS_SECRET=ACCESS_SECRET,
        JWT_REFRESH_SECRET=REFRESH_SECRET,
        STORE_BACKEND="memory",
        EMAIL_PROVIDER="stub",
        FRONTEND_BASE_URL="https://app.example.com",
        MAX_REQUEST_SIZE=4096,
    )


@pytest.fixture
def hasher():
    return SecretHasher()


@pytest.fixture
def codec():
    return TokenCodec(
        access_keys=SigningKeyRing(active_kid="v1", active_secret=ACCESS_SECRET),
        refresh_keys=SigningKeyRing(active_kid="v1", active_secret=REFRESH_SECRET),
    )


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def email_sender():
    return LogEmailSender()


@pytest.fixture
def metrics():
    return Metrics(service_name="quillauth", version="0.1.0")


@pytest.fixture
def lifecycle(store, codec, hasher, email_sender, metrics):
    return CredentialLifecycle(
        store=store,
        codec=codec,
        hasher=hasher,
        email_sender=email_sender,
        password_reset_ttl=timedelta(minutes=30),
        frontend_base_url="https://app.example.com",
        metrics=metrics,
    )


@pytest.fixture
def services(settings, store, email_sender, metrics):
    return build_container(settings, metrics=metrics, store=store, email_sender=email_sender)


@pytest.fixture
def app(settings, services):
    return create_app(settings=settings, services=services)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    """Register an account through the API and return the response body"""

    def _register(email: str = "writer@example.com", password: str = PASSWORD) -> dict:
        response = client.post("/api/v1/auth/register", json={"email": email, "password": password})
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def admin_headers(client, register, store):
    """Authorization header for a freshly promoted admin"""
    body = register("admin@example.com")
    store.update_user_role(body["user"]["id"], Role.ADMIN)
    response = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['tokens']['access_token']}"}


@pytest.fixture
def last_reset_token(email_sender):
    """Raw reset token from the last stub email's link"""

    def _last() -> str:
        body = email_sender.sent[-1].body
        return body.rsplit("token=", 1)[1].strip()

    return _last
