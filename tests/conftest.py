"""
tests/conftest.py -- Shared test fixtures for tenant-iam.

This module provides:
  - store / hasher / mailer: a fresh IdentityStore, a cheap Argon2 hasher, a FakeMailer
  - make_context(): a full AppContext over isolated in-memory databases
  - _patch_lifespan(): wires a test AppContext into app.state, bypassing real startup
  - env: TestClient plus seeded tenants, users and bearer tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance gets its own uuid-suffixed name, so tests never see each
other's rows.

DEBUG and RATE_LIMIT_ENABLED must be set before any project import:
get_settings() is evaluated at import time by api/limiter.py and api/main.py.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set before any project import so get_settings() auto-generates the
# JWT secrets in dev mode and the limiter is built disabled.
os.environ.setdefault("DEBUG", "true")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient

from api.context import AppContext, build_context
from api.main import app
from audit.store import AuditStore
from auth.models import Role, Tenant, User
from auth.passwords import CredentialHasher
from auth.store import IdentityStore
from core.config import get_settings
from core.errors import UnavailableError
from mailer.smtp import render

PASSWORD = "correct-horse-9"


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def cheap_hasher() -> CredentialHasher:
    """Argon2id with minimal cost. Verification logic is identical; only speed differs."""
    return CredentialHasher(time_cost=1, memory_cost=8, parallelism=1)


class FakeMailer:
    """Records messages instead of talking SMTP. Set fail=True to simulate an outage."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def send_raw(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise UnavailableError("Mailer", "failed to send email")
        self.sent.append((to, subject, html_body))

    def send_template(self, to: str, subject: str, template: str, data: dict) -> None:
        self.send_raw(to, subject, render(template, data))


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> CredentialHasher:
    return cheap_hasher()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def store() -> Generator[IdentityStore, None, None]:
    s = IdentityStore(_memory_url("test_identity"))
    yield s
    s.close()


def make_context(mailer=None) -> AppContext:
    url = _memory_url("test_app")
    return build_context(
        get_settings(),
        identity_store=IdentityStore(url),
        audit_store=AuditStore(url),
        hasher=cheap_hasher(),
        mailer=mailer,
    )


def _patch_lifespan(ctx: AppContext):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.ctx = ctx
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Seeded application
# ---------------------------------------------------------------------------


@dataclass
class Env:
    """Handle on a running test app.

    users/tokens keys: "sa" (system admin, no tenant), "ta"/"tu" (admin/user
    of tenant_a), "ta_b"/"tu_b" (admin/user of tenant_b).
    Every seeded user has the same password.
    """

    client: TestClient
    ctx: AppContext
    mailer: FakeMailer
    tenant_a: Tenant
    tenant_b: Tenant
    users: dict[str, User] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    password: str = PASSWORD

    def auth(self, who: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[who]}"}


def issue_token(ctx: AppContext, user: User) -> str:
    """Persist a live token for user without going through login (which revokes others)."""
    token, expiry = ctx.issuer.issue_access_token(user.uuid, user.tenant_uuid)
    ctx.identity_store.create_access_token(user.uuid, token, expiry)
    return token


def _seed(ctx: AppContext) -> tuple[Tenant, Tenant, dict[str, User]]:
    store = ctx.identity_store
    password_hash = ctx.hasher.hash(PASSWORD)
    tenant_a = store.create_tenant("Tenant A", "doc-a")
    tenant_b = store.create_tenant("Tenant B", "doc-b")
    specs = {
        "sa": ("Root", "root@iam.test", Role.SYSTEM_ADMIN, None),
        "ta": ("Alice Admin", "alice@a.test", Role.TENANT_ADMIN, tenant_a.uuid),
        "tu": ("Andy User", "andy@a.test", Role.TENANT_USER, tenant_a.uuid),
        "ta_b": ("Bob Admin", "bob@b.test", Role.TENANT_ADMIN, tenant_b.uuid),
        "tu_b": ("Bea User", "bea@b.test", Role.TENANT_USER, tenant_b.uuid),
    }
    users = {
        key: store.create_user(name=name, email=email, password_hash=password_hash, role=role, tenant_uuid=tenant)
        for key, (name, email, role, tenant) in specs.items()
    }
    return tenant_a, tenant_b, users


@pytest.fixture
def env() -> Generator[Env, None, None]:
    """Yield an Env backed by a fresh database.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use isolated in-memory stores.
    """
    mailer = FakeMailer()
    ctx = make_context(mailer=mailer)
    tenant_a, tenant_b, users = _seed(ctx)
    tokens = {key: issue_token(ctx, user) for key, user in users.items()}

    app.router.lifespan_context = _patch_lifespan(ctx)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Env(
            client=client,
            ctx=ctx,
            mailer=mailer,
            tenant_a=tenant_a,
            tenant_b=tenant_b,
            users=users,
            tokens=tokens,
        )

    ctx.close()
