"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these own the domain shape. The behaviour here is
AccessToken.state(), which turns the stored timestamps into an explicit
lifecycle state so no caller has to re-derive it from a bare comparison, and
normalize_email(), the one email canonicalisation shared by the store and
the OTP cache.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Closed set of principal roles. Stored and serialized by value."""

    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    TENANT_USER = "TENANT_USER"


def normalize_email(email: str) -> str:
    """Emails are stored, looked up and used as OTP keys trimmed and lowercased."""
    return email.strip().lower()


class TokenState(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Tenant:
    """An organizational unit owning users.

    document is the external tax id and is globally unique. uuid is assigned
    once on create and never changes afterwards.
    """

    uuid: UUID
    name: str
    document: str
    live: bool = True
    create_at: datetime | None = None
    update_at: datetime | None = None


@dataclass
class User:
    """A principal, attached to zero (system admins) or one tenant.

    tenant is only populated when the user is loaded through the session join;
    plain lookups leave it None and carry tenant_uuid alone.
    """

    uuid: UUID
    name: str
    email: str
    password_hash: str
    role: Role
    tenant_uuid: UUID | None = None
    live: bool = True
    create_at: datetime | None = None
    update_at: datetime | None = None
    tenant: Tenant | None = None


@dataclass
class AccessToken:
    """A bearer credential row.

    Revocation is soft: expiry is moved to the revocation instant and
    revoked_at is stamped, so past tokens stay available for audit.
    """

    token: str
    expiry: datetime
    user_uuid: UUID | None = None
    revoked_at: datetime | None = None
    create_at: datetime | None = None

    def state(self, now: datetime) -> TokenState:
        """Return the lifecycle state at `now`. Expiry is exclusive."""
        if self.revoked_at is not None:
            return TokenState.REVOKED
        if now >= self.expiry:
            return TokenState.EXPIRED
        return TokenState.ACTIVE


@dataclass
class RequestMetadata:
    """Per-request facts used only by the access log, never by authorization."""

    trace_id: str
    ip: str = ""
    user_agent: str = ""
    method: str = ""
    path: str = ""
    host: str = ""
    referer: str = ""
    content_type: str = ""
    language: str = ""
    requested_at: datetime | None = None
    latency_ms: float = 0.0


@dataclass
class Login:
    """An authenticated identity: the user, the token it presented, and request metadata."""

    user: User
    access_token: AccessToken
    metadata: RequestMetadata = field(default_factory=lambda: RequestMetadata(trace_id=""))
