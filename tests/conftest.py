"""
tests/conftest.py -- Shared test fixtures for the supplier portal test suite.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for credentials and quotes
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client: TestClient over the real app with a recording email sender
  - staff_user / supplier_record / invitation: factories for common records
  - sign_in(): attach a session cookie for a credential without a login round trip

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SESSION_SECRET in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SESSION_SECRET in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
# TestClient sends Host: testserver, which the default allow-list rejects.
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("EMAIL_PROVIDER", "log")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, configure_state
from auth.access_token import new_access_token_expiry
from auth.models import Supplier, User
from auth.store import CredentialStore
from auth.tokens import SESSION_COOKIE, create_session_token, generate_access_token, hash_password
from core.config import get_settings
from notify.email import LogEmailSender
from rfq.models import QuoteRequest
from rfq.store import QuoteStore

STRONG_PASSWORD = "Correct1Horse"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[CredentialStore, QuoteStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so tests never
                   share state.
    """
    url = f"sqlite:///file:test_portal_{db_suffix}?mode=memory&cache=shared&uri=true"
    return CredentialStore(db_url=url), QuoteStore(db_url=url)


def _patch_lifespan(credential_store: CredentialStore, quote_store: QuoteStore, sender: LogEmailSender):
    """Return an async context manager that replaces the real lifespan.

    Goes through configure_state() so the routes see the same service graph
    as production, only with test stores and a recording sender.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, get_settings(), credential_store, quote_store, sender)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[CredentialStore, QuoteStore], None, None]:
    credential_store, quote_store = _make_test_stores(uuid.uuid4().hex)
    yield credential_store, quote_store
    credential_store.close()
    quote_store.close()


@pytest.fixture
def sender() -> LogEmailSender:
    return LogEmailSender("procurement@test.local")


@pytest.fixture
def client(stores, sender) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and a recording sender.

    The slowapi limiter is a module-level singleton shared by every test, so
    its counters are reset here. The magic-link limiters and the lockout
    store are rebuilt per client by configure_state().
    """
    credential_store, quote_store = stores
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(credential_store, quote_store, sender)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.reset()


@pytest.fixture
def staff_user(stores):
    """Factory: create a staff credential, with a password unless password=None."""
    credential_store, _ = stores

    def _create(email: str = "admin@x.com", role: str = "admin", password: str | None = STRONG_PASSWORD, active=True):
        user_id = credential_store.create_user(
            User(
                email=email,
                role=role,
                first_name="Test",
                last_name="User",
                password_hash=hash_password(password) if password else None,
                active=active,
            )
        )
        return credential_store.get_by_id(user_id)

    return _create


@pytest.fixture
def supplier_record(stores):
    """Factory: create a Supplier (no credential)."""
    credential_store, _ = stores

    def _create(email: str = "sales@acme.test", name: str = "Acme Metals", contact: str = "Jane Q Smith"):
        supplier_id = credential_store.create_supplier(
            Supplier(supplier_name=name, contact_person=contact, email=email, phone="0400 000 000")
        )
        return credential_store.get_supplier(supplier_id)

    return _create


@pytest.fixture
def invitation(stores):
    """Factory: create a quote request and invite supplier_id to it.

    Returns (request_id, request_supplier). expires_at overrides the default
    30-day expiry.
    """
    _, quote_store = stores

    def _create(supplier_id: int, material: str = "Steel plate", expires_at: str | None = None):
        request_id = quote_store.create_request(
            QuoteRequest(
                material_name=material,
                quantity_needed="100",
                unit_of_measure="kg",
                submit_by_date="2099-01-01",
            )
        )
        rs = quote_store.invite_supplier(
            request_id, supplier_id, generate_access_token(), expires_at or new_access_token_expiry()
        )
        return request_id, rs

    return _create


@pytest.fixture
def sign_in():
    """Return a helper that attaches a session cookie for a credential, as a login would."""

    def _sign_in(client: TestClient, user: User, auth_type: str = "local") -> None:
        subject = user.email if auth_type == "claims" else str(user.id)
        client.cookies.set(SESSION_COOKIE, create_session_token(auth_type, subject, user.email))

    return _sign_in
