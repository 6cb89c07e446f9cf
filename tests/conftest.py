"""
tests/conftest.py -- Shared test fixtures for quotegate unit and integration tests.

This module provides:
  - _make_test_stores(): builds an isolated AuthStore + CredentialStore + issuer
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - auth_store / credentials / issuer: per-test unit fixtures on a fresh DB
  - api_client: TestClient with an admin access token for API integration tests

Design: every store gets its own SQLite file under pytest's tmp dir. Legacy
credential migration runs on a worker thread, and a file database is the
simplest way for that thread and the TestClient threadpool to see the same
rows.

The environment must be set before any auth/core import: get_settings() is
cached on first use, so DEBUG (auto-generated SECRET_KEY), BCRYPT_ROUNDS and
RATE_LIMIT_ENABLED have to be in place by then.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: set before any auth/core import (see module docstring).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient

from api.main import app
from auth.credentials import CredentialStore, hash_password
from auth.dependencies import require_capability
from auth.models import ROLE_ADMIN, Identity, User
from auth.registration import RegistrationCodeIssuer
from auth.store import AuthStore
from auth.tokens import issue_access_token
from core.status import AnnouncementBoard, MaintenanceState

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Capability-gated probe route
#
# Vendor CRUD lives outside this service; this stands in for one of its write
# routes so the capability gate can be exercised over HTTP.
# ---------------------------------------------------------------------------

_probe_router = APIRouter()


@_probe_router.post("/vendors/probe")
async def vendor_write_probe(identity: Identity = Depends(require_capability)) -> dict:
    return {"success": True, "data": {"editedBy": identity.username}}


if not any(getattr(r, "path", None) == "/vendors/probe" for r in app.routes):
    app.include_router(_probe_router, tags=["Test"])


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_dir: Path) -> tuple[AuthStore, CredentialStore, RegistrationCodeIssuer]:
    """Create an isolated file-backed store and the services that wrap it."""
    store = AuthStore(db_url=f"sqlite:///{db_dir / 'auth.db'}")
    credentials = CredentialStore(store, workers=2)
    issuer = RegistrationCodeIssuer(store, credentials)
    return store, credentials, issuer


def _patch_lifespan(store: AuthStore, credentials: CredentialStore, issuer: RegistrationCodeIssuer):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can cancel a real
    asyncio.Task exactly as it does in production.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.credentials = credentials
        app.state.issuer = issuer
        app.state.maintenance = MaintenanceState()
        app.state.announcements = AnnouncementBoard()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_store(tmp_path: Path) -> Generator[AuthStore, None, None]:
    store = AuthStore(db_url=f"sqlite:///{tmp_path / 'unit.db'}")
    yield store
    store.close()


@pytest.fixture
def credentials(auth_store: AuthStore) -> Generator[CredentialStore, None, None]:
    creds = CredentialStore(auth_store, workers=2)
    yield creds
    creds.close()


@pytest.fixture
def issuer(auth_store: AuthStore, credentials: CredentialStore) -> RegistrationCodeIssuer:
    return RegistrationCodeIssuer(auth_store, credentials)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(tmp_path_factory: pytest.TempPathFactory) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real middleware and route handlers against an isolated database. The
    admin ("testadmin" / "testpass123") is created before the client starts.
    """
    store, credentials, issuer = _make_test_stores(tmp_path_factory.mktemp("api"))

    admin = User(
        username=ADMIN_USERNAME,
        display_name="Test Admin",
        role=ROLE_ADMIN,
        credential=hash_password(ADMIN_PASSWORD),
        created_by="system",
    )
    uid = store.create_user(admin)
    admin.id = uid
    token = issue_access_token(Identity.from_user(admin))

    app.router.lifespan_context = _patch_lifespan(store, credentials, issuer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    credentials.close()
    store.close()
