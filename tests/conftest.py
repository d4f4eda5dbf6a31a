"""
tests/conftest.py -- Shared test fixtures for Tourbook.

This module provides:
  - store:      an isolated UserStore on a named shared-memory SQLite DB
  - mailer:     a RecordingMailer standing in for SMTP
  - service:    an AuthService wired to the two above
  - client:     TestClient on the real app with a patched lifespan
  - make_user:  factory that inserts a user with a known password

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because store calls run on the thread pool. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread.
Each fixture instance gets its own DB name, so tests never see each other's
rows.

Environment must be set before any auth/core import: get_settings() is read
once at import time by several modules.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")  # fast hashes; cost factor is not under test
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("FORGOT_PASSWORD_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.errors import DeliveryFailure
from auth.models import Role, User
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings


class RecordingMailer:
    """Mailer fake that records every message and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []  # (kind, email, url)
        self.fail = False

    async def send_welcome(self, user: User, url: str) -> None:
        self._record("welcome", user, url)

    async def send_password_reset(self, user: User, url: str) -> None:
        self._record("password_reset", user, url)

    def _record(self, kind: str, user: User, url: str) -> None:
        if self.fail:
            raise DeliveryFailure()
        self.sent.append((kind, user.email, url))

    def last_reset_secret(self) -> str:
        """Return the secret embedded in the most recent reset link."""
        urls = [url for kind, _email, url in self.sent if kind == "password_reset"]
        assert urls, "no password reset email was sent"
        return urls[-1].rsplit("/", 1)[1]


def _memory_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore(_memory_db_url())
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(store: UserStore, mailer: RecordingMailer) -> AuthService:
    return AuthService(store, mailer, get_settings())


@pytest.fixture
def make_user(store: UserStore):
    """Return a factory: make_user(email, password="password123", role=Role.USER) -> User."""

    def _make(email: str, password: str = "password123", role: Role = Role.USER, name: str = "Test User") -> User:
        return store.create_user(User(name=name, email=email, hashed_password=hash_password(password), role=role))

    return _make


@pytest.fixture
def client(store: UserStore, mailer: RecordingMailer) -> Generator[TestClient, None, None]:
    """TestClient on the real app, with test doubles wired into app.state.

    The real lifespan would open the configured database and SMTP mailer;
    this one installs the isolated store and the RecordingMailer instead.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.mailer = mailer
        app.state.auth_service = AuthService(store, mailer, get_settings())
        yield

    original = app.router.lifespan_context
    app.router.lifespan_context = test_lifespan
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.router.lifespan_context = original
