"""
tests/conftest.py -- Shared test fixtures for the ResumeAgent auth service.

This module provides:
  - a throwaway RSA keypair written to a temp dir before any app import
  - user_store / session_store: isolated in-memory DBs per test
  - codec: a TokenCodec over the test keypair
  - make_user: factory for principals with a known password
  - api: TestClient with a patched lifespan wired to the test stores

Stores use named shared-memory SQLite databases: sync routes, the gate and
the tests themselves touch the DB from different threads, and every
connection must see the same tables. A fresh name per test isolates state.

The environment must be set before api.main is imported: the app reads
Settings at import time (CORS origins, allowed hosts, log level).
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from auth.keys import generate_key_material, load_key_material, write_key_material

# CRITICAL: keys and env must exist before any core/api import.
_KEY_DIR = Path(tempfile.mkdtemp(prefix="resumeagent-test-keys-"))
_PRIVATE_KEY_PATH, _PUBLIC_KEY_PATH = write_key_material(generate_key_material(), _KEY_DIR)

os.environ.setdefault("DEBUG", "true")
os.environ["JWT_PRIVATE_KEY_PATH"] = str(_PRIVATE_KEY_PATH)
os.environ["JWT_PUBLIC_KEY_PATH"] = str(_PUBLIC_KEY_PATH)
os.environ["ALLOWED_HOSTS"] = '["testserver"]'
# High enough that the login/register limit never trips across the suite.
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.cookies import CookieTransport
from auth.keys import KeyMaterial
from auth.models import Principal, Role
from auth.passwords import hash_password
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

DEFAULT_PASSWORD = "correct-horse-battery"

# ---------------------------------------------------------------------------
# Keys and codec
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def keys() -> KeyMaterial:
    return load_key_material(str(_PRIVATE_KEY_PATH), str(_PUBLIC_KEY_PATH))


@pytest.fixture(scope="session")
def key_paths() -> tuple[Path, Path]:
    return _PRIVATE_KEY_PATH, _PUBLIC_KEY_PATH


@pytest.fixture
def codec(keys: KeyMaterial) -> TokenCodec:
    return TokenCodec.from_settings(keys, get_settings())


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url() -> str:
    """Named shared-memory SQLite URL, unique per call."""
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def db_url() -> str:
    return _memory_url()


@pytest.fixture
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture
def session_store(db_url: str, user_store: UserStore) -> Generator[SessionStore, None, None]:
    # Depends on user_store so both share one database and the users table exists.
    store = SessionStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture
def password() -> str:
    """Plaintext password make_user() gives every principal by default."""
    return DEFAULT_PASSWORD


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., Principal]:
    """Factory: make_user(email=..., verified=True, active=True, role=Role.USER) -> Principal."""

    def _make(
        email: str = "alice@example.com",
        password: str = DEFAULT_PASSWORD,
        full_name: str = "Alice Example",
        verified: bool = True,
        active: bool = True,
        role: Role = Role.USER,
    ) -> Principal:
        password_hash = hash_password(password)
        uid = user_store.create_user(
            Principal(
                email=email,
                full_name=full_name,
                password_hash=password_hash,
                role=role,
                email_verified=verified,
                is_active=active,
            )
        )
        user_store.add_password_history(uid, password_hash)
        return user_store.get_by_id(uid)

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    users: UserStore
    sessions: SessionStore
    codec: TokenCodec
    cookies: CookieTransport

    def login(self, email: str = "alice@example.com", password: str = DEFAULT_PASSWORD):
        return self.client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _patch_lifespan(users: UserStore, sessions: SessionStore, codec: TokenCodec, cookies: CookieTransport):
    """Return an async context manager that replaces the real lifespan.

    Puts the test stores, codec and cookie transport on app.state. No key
    files are read and the purge task only sleeps until it is cancelled.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.session_store = sessions
        app.state.token_codec = codec
        app.state.cookies = cookies
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api(
    user_store: UserStore,
    session_store: SessionStore,
    codec: TokenCodec,
) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness around the real app with isolated stores.

    base_url is https so the client's cookie jar stores and returns the
    Secure cookies the app sets, exactly as a browser would.
    """
    cookies = CookieTransport.from_settings(get_settings())
    app.router.lifespan_context = _patch_lifespan(user_store, session_store, codec, cookies)
    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, users=user_store, sessions=session_store, codec=codec, cookies=cookies)

