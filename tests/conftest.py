"""
tests/conftest.py -- Shared test fixtures for SecureCMS unit and integration tests.

This module provides:
  - settings / db / crypto / credentials / issuer: pure components over a
    fresh in-memory database, seeded with the default roles
  - auth_service / role_service / content_service: services over that db
  - make_subject: registers a subject with a given role and returns it
  - api_client: TestClient with an admin JWT for API integration tests

Design: unit tests use plain sqlite:///:memory:. SQLAlchemy hands every
thread the same connection for it, which is all a single-threaded test needs.
API tests use named shared-memory URIs instead, because TestClient runs route
handlers in a thread pool and each worker thread opens its own connection.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The secrets must be in the environment before any core/auth import, because
api.limiter reads the login rate limit from get_settings() at request time
and get_settings() refuses to build without them.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set secrets before any core/auth import.
os.environ.setdefault("MASTER_ENCRYPTION_KEY", "test-master-key-for-field-encryption")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key-0123456789abcdef")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
# Integration tests log in many times from the same client address.
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_app_state
from audit.models import AuditActor
from auth.crypto import CryptoBox
from auth.models import Subject
from auth.passwords import CredentialStore
from auth.roles import RoleService
from auth.seed import seed_defaults
from auth.service import AuthService
from auth.tokens import SessionIssuer
from content.service import ContentService
from core.config import Settings, load_settings
from db.database import Database

DEFAULT_PASSWORD = "correct-horse-battery"


def _actor(subject: Subject) -> AuditActor:
    return AuditActor(subject_id=subject.id, username=subject.username, ip_address="127.0.0.1")


@pytest.fixture
def actor_for() -> Callable[[Subject], AuditActor]:
    """Factory: actor_for(subject) builds the audit actor a request by subject would carry."""
    return _actor


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return load_settings(database_url="sqlite:///:memory:", bcrypt_rounds=4)


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Fresh in-memory database with the default permissions and roles."""
    database = Database("sqlite:///:memory:")
    seed_defaults(database)
    yield database
    database.close()


@pytest.fixture
def crypto(settings: Settings) -> CryptoBox:
    return CryptoBox.from_settings(settings)


@pytest.fixture(scope="session")
def credentials() -> CredentialStore:
    # Session scope: building the dummy hash costs one bcrypt round trip.
    return CredentialStore(rounds=4)


@pytest.fixture
def issuer(settings: Settings) -> SessionIssuer:
    return SessionIssuer.from_settings(settings)


@pytest.fixture
def auth_service(db, crypto, credentials, issuer) -> AuthService:
    return AuthService(db, crypto, credentials, issuer)


@pytest.fixture
def role_service(db) -> RoleService:
    return RoleService(db)


@pytest.fixture
def content_service(db) -> ContentService:
    return ContentService(db)


@pytest.fixture
def make_subject(auth_service: AuthService) -> Callable[..., Subject]:
    """Factory: make_subject("alice", role="Editor") registers and returns a subject."""

    def _make(username: str, role: str = "Author", **kwargs) -> Subject:
        return auth_service.register(
            username,
            f"{username}@example.com",
            kwargs.pop("password", DEFAULT_PASSWORD),
            role_name=role,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_db(db_suffix: str) -> Database:
    """Create an isolated named shared-memory database, seeded with defaults.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'test_api_routes', 'test_health').
    """
    database = Database(f"sqlite:///file:test_securecms_{db_suffix}?mode=memory&cache=shared&uri=true")
    seed_defaults(database)
    return database


def _patch_lifespan(settings: Settings, database: Database):
    """Return an async context manager that replaces the real lifespan.

    Wires the test database into app.state through the same init_app_state()
    the real lifespan uses, so routes see production components over an
    isolated database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_app_state(app, settings, database)
        yield

    return test_lifespan


def _build_api_client(db_suffix: str) -> Generator[tuple[TestClient, str, int], None, None]:
    settings = load_settings(database_url="sqlite://", bcrypt_rounds=4)
    database = _make_test_db(db_suffix)

    service = AuthService(
        database,
        CryptoBox.from_settings(settings),
        CredentialStore.from_settings(settings),
        SessionIssuer.from_settings(settings),
    )
    admin = service.register("testadmin", "testadmin@example.com", "testpass123", role_name="Admin")
    token, _expires_at, _subject, _roles = service.login("testadmin", "testpass123")

    app.router.lifespan_context = _patch_lifespan(settings, database)

    # TrustedHostMiddleware only admits localhost-style hosts.
    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, admin.id

    database.close()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The admin is registered with the Admin role before the client starts,
    and the token comes from a real login. Each test module gets its own
    database, named after the module.
    """
    yield from _build_api_client(request.module.__name__.rsplit(".", 1)[-1])
