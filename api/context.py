"""
api/context.py -- Composition root.

build_context() constructs every long-lived component exactly once, in
dependency order, and returns them bundled in an AppContext. The lifespan in
api/main.py stores it on app.state.ctx; route handlers and dependencies read
it from there. Nothing else in the project instantiates a store, hasher,
issuer or service.

Tests call build_context() with their own stores, a cheap hasher and a fake
mailer instead of patching module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from fastapi import Request

from audit.models import AccessLogEntry, AuditLogEntry
from audit.queue import LogDispatcher
from audit.store import AuditStore
from auth.otp import OTPStore
from auth.passwords import CredentialHasher
from auth.service import AuthService
from auth.sessions import SessionResolver
from auth.store import IdentityStore
from auth.tokens import TokenIssuer
from core.config import Settings
from mailer.smtp import build_mailer
from tenancy.service import TenantService, UserService

logger = logging.getLogger("tenantiam.context")

_UNSET: Any = object()


@dataclass
class AppContext:
    settings: Settings
    identity_store: IdentityStore
    audit_store: AuditStore
    hasher: CredentialHasher
    issuer: TokenIssuer
    otp_store: OTPStore
    mailer: Optional[Any]
    sessions: SessionResolver
    auth: AuthService
    tenants: TenantService
    users: UserService
    log_dispatcher: LogDispatcher

    def log_access(self, entry: AccessLogEntry) -> None:
        if self.settings.access_log_enabled:
            self.log_dispatcher.submit(entry)

    def log_audit(self, entry: AuditLogEntry) -> None:
        if self.settings.audit_log_enabled:
            self.log_dispatcher.submit(entry)

    def close(self) -> None:
        """Drain pending log entries, then release database connections."""
        self.log_dispatcher.close()
        self.audit_store.close()
        self.identity_store.close()


def build_context(
    settings: Settings,
    identity_store: Optional[IdentityStore] = None,
    audit_store: Optional[AuditStore] = None,
    hasher: Optional[CredentialHasher] = None,
    mailer: Any = _UNSET,
) -> AppContext:
    """Wire the application. Raises TokenConfigError on unusable token settings."""
    identity_store = identity_store or IdentityStore(settings.database_url)
    audit_store = audit_store or AuditStore(settings.database_url)
    hasher = hasher or CredentialHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
    issuer = TokenIssuer(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        issuer=settings.app_name,
        access_expiry=timedelta(minutes=settings.jwt_access_expiry_minutes),
    )
    otp_store = OTPStore(ttl=settings.otp_ttl_seconds)
    if mailer is _UNSET:
        mailer = build_mailer(settings)

    log_dispatcher = LogDispatcher(
        writer=audit_store.write,
        maxsize=settings.log_queue_size,
        enabled=settings.access_log_enabled or settings.audit_log_enabled,
    )

    ctx = AppContext(
        settings=settings,
        identity_store=identity_store,
        audit_store=audit_store,
        hasher=hasher,
        issuer=issuer,
        otp_store=otp_store,
        mailer=mailer,
        sessions=SessionResolver(identity_store),
        auth=AuthService(
            store=identity_store,
            hasher=hasher,
            issuer=issuer,
            otp_store=otp_store,
            mailer=mailer,
            otp_length=settings.otp_length,
        ),
        tenants=TenantService(identity_store),
        users=UserService(identity_store, hasher),
        log_dispatcher=log_dispatcher,
    )
    logger.info("Application context built (mailer=%s)", "enabled" if mailer is not None else "disabled")
    return ctx


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the AppContext built by the lifespan."""
    return request.app.state.ctx
