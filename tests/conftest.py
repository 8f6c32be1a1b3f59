# Shared fixtures for the authorization server tests.
# Created: 2026-02-20

import base64
import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import pytest

from mcpauth.config import Settings
from mcpauth.oauth2.storage import InMemoryOAuthStorage, SQLiteOAuthStorage

SECRET = "test-secret-" + "x" * 40


class FakeClock:
    """Callable clock the services accept in place of ``utcnow``."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_pkce_pair():
    """Generate a PKCE code_verifier and S256 code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pkce():
    return make_pkce_pair


@pytest.fixture
def settings():
    return Settings(_env_file=None, oauth_secret=SECRET)


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        return InMemoryOAuthStorage()
    return SQLiteOAuthStorage(tmp_path / "oauth.db")
