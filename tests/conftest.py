"""
tests/conftest.py -- Shared test fixtures for the card API tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory auth DB
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - image_root: a card image tree on disk (dark_prophecies / premiere)
  - store / hasher / issuer / auth_service: unit-level building blocks
  - api_client: TestClient + a live session secret for integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit fixtures that stay on one thread use plain :memory:.

Environment must be set before any core/api import: DEBUG so get_settings()
auto-generates SECRET_KEY, BCRYPT_ROUNDS so hashing is fast, ALLOWED_HOSTS so
TrustedHostMiddleware accepts TestClient's "testserver" host, and a high
LOGIN_RATE_LIMIT so repeated logins across tests are not throttled.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path

# CRITICAL: Set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.dependencies import RequestGate
from auth.models import User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenIssuer
from core.resolver import ImageResolver

TEST_SECRET_KEY = "k" * 48
TEST_USERNAME = "testuser"
TEST_PASSWORD = "testpass123"

# Fake JPEG payloads -- only the bytes matter, never decoded.
PROPHET_FULL = b"\xff\xd8full-prophet\xff\xd9"
PROPHET_SMALL = b"\xff\xd8small-prophet\xff\xd9"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _build_image_tree(root: Path) -> Path:
    """Lay out a minimal image root: one set with a full and small image, one empty set."""
    prophecies = root / "dark_prophecies"
    prophecies.mkdir(parents=True)
    (prophecies / "02-131_the_prophet.jpg").write_bytes(PROPHET_FULL)
    (prophecies / "02-131_the_prophet_small.jpg").write_bytes(PROPHET_SMALL)
    (root / "premiere").mkdir()
    return root


def _build_service(store: UserStore, issuer: TokenIssuer | None = None) -> AuthService:
    return AuthService(
        store=store,
        hasher=PasswordHasher(rounds=4),
        issuer=issuer or TokenIssuer(lifetime=timedelta(hours=8)),
        secret_key=TEST_SECRET_KEY,
    )


def _patch_lifespan(store: UserStore, image_root: Path):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see
    isolated test DBs and image trees rather than the configured ones.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.auth_service = _build_service(store)
        app.state.gate = RequestGate(app.state.auth_service, header_name="api-auth-key")
        app.state.image_resolver = ImageResolver(image_root)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def image_root(tmp_path: Path) -> Path:
    return _build_image_tree(tmp_path / "card_images")


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(lifetime=timedelta(hours=8))


@pytest.fixture
def auth_service(store: UserStore, hasher: PasswordHasher) -> AuthService:
    """AuthService over an in-memory store with TEST_USERNAME already registered."""
    store.create_user(User(username=TEST_USERNAME, hashed_password=hasher.hash(TEST_PASSWORD)))
    return _build_service(store)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request, tmp_path_factory) -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, secret) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real middleware, the real gate and real route handlers, against an
    isolated store and image tree. TEST_USERNAME is registered and holds a
    live session whose secret is yielded for use in the api-auth-key header.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    store.create_user(User(username=TEST_USERNAME, hashed_password=PasswordHasher(rounds=4).hash(TEST_PASSWORD)))
    image_root = _build_image_tree(tmp_path_factory.mktemp("images") / "card_images")

    app.router.lifespan_context = _patch_lifespan(store, image_root)

    with TestClient(app, raise_server_exceptions=False) as client:
        session = client.app.state.auth_service.authenticate(TEST_USERNAME, TEST_PASSWORD)
        assert session is not None
        yield client, session.secret

    store.close()
