"""
tests/conftest.py -- Shared test fixtures for AccessGate tests.

This module provides:
  - RecordingOutbox: captures reset links the local provider would deliver
  - make_stack(): isolated DirectoryStore + LocalIdentityProvider + services
  - seed_principal(): provision an identity and its directory row in one go
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin bearer token for route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient fixtures because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Unit tests that stay on one thread use plain :memory:.

DEBUG and the rate limits must be set before any api/auth/core import so
get_settings() auto-generates SECRET_KEY and the limits do not trip across a
whole test session.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: set before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("RESET_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_CHECK_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.local import LocalIdentityProvider
from auth.store import IdentityStore
from auth.tokens import extract_reset_token
from core.models import Principal
from directory.lifecycle import CredentialLifecycle
from directory.service import AccountDirectory
from directory.store import DirectoryStore

RESET_RETURN_URL = "http://localhost:5173/reset-password"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Adm1n-Passw0rd!"


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


class RecordingOutbox:
    """Stand-in for reset-link delivery. Records (email, link) pairs."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def __call__(self, email: str, link: str) -> None:
        self.sent.append((email, link))

    def last_token_for(self, email: str) -> str | None:
        for sent_to, link in reversed(self.sent):
            if sent_to == email:
                return extract_reset_token(link)
        return None


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


@dataclass
class Stack:
    store: DirectoryStore
    identities: IdentityStore
    provider: LocalIdentityProvider
    lifecycle: CredentialLifecycle
    directory: AccountDirectory
    outbox: RecordingOutbox = field(default_factory=RecordingOutbox)

    def close(self) -> None:
        self.provider.close()
        self.store.close()


def make_stack(db_suffix: str | None = None) -> Stack:
    """Build a directory + local provider stack on isolated SQLite databases.

    With db_suffix, named shared-memory URIs are used so TestClient worker
    threads see the same data; without it, plain :memory: for unit tests.
    """
    if db_suffix:
        directory_url = f"sqlite:///file:test_directory_{db_suffix}?mode=memory&cache=shared&uri=true"
        identity_url = f"sqlite:///file:test_identity_{db_suffix}?mode=memory&cache=shared&uri=true"
    else:
        directory_url = identity_url = "sqlite:///:memory:"
    outbox = RecordingOutbox()
    store = DirectoryStore(db_url=directory_url)
    identities = IdentityStore(db_url=identity_url)
    provider = LocalIdentityProvider(identities, outbox=outbox)
    lifecycle = CredentialLifecycle(store, provider, RESET_RETURN_URL)
    directory = AccountDirectory(store, provider, lifecycle, temporary_password_length=16)
    return Stack(store, identities, provider, lifecycle, directory, outbox)


def seed_principal(
    stack: Stack,
    email: str,
    password: str,
    role: str | None = "viewer",
    needs_password_reset: bool = False,
    is_active: bool = True,
    **grants,
) -> Principal:
    """Create an identity and directory row directly, skipping the service's reset flow."""
    identity_id = stack.provider.provision_identity(email, password)
    role_row = stack.store.get_role_by_name(role) if role else None
    stack.store.create_user(
        Principal(
            id=identity_id,
            email=email,
            role_id=role_row.id if role_row else None,
            is_active=is_active,
            needs_password_reset=needs_password_reset,
            **grants,
        )
    )
    return stack.store.get_user(identity_id)


def _patch_lifespan(stack: Stack):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test stack into app.state so TestClient routes see
    isolated test DBs rather than the production databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.provider = stack.provider
        app.state.lifecycle = stack.lifecycle
        app.state.directory = stack.directory
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def outbox() -> RecordingOutbox:
    return RecordingOutbox()


@pytest.fixture
def seed():
    """The seed_principal helper, for test modules that cannot import conftest."""
    return seed_principal


@pytest.fixture
def stack() -> Generator[Stack, None, None]:
    """Fresh single-thread stack per test."""
    s = make_stack()
    yield s
    s.close()


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, Stack], None, None]:
    """Yield (client, admin_token, stack) for API integration tests.

    One stack per test module; the DB name includes the module name so
    modules never share rows. The admin is seeded in the normal state and
    signed in through the provider like any other caller.
    """
    suffix = request.module.__name__.replace(".", "_")
    s = make_stack(suffix)
    seed_principal(s, ADMIN_EMAIL, ADMIN_PASSWORD, role="admin")
    token = s.provider.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)

    app.router.lifespan_context = _patch_lifespan(s)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, s

    s.close()
