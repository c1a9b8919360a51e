"""
auth/sessions.py -- Turn a presented bearer token into an authenticated Login.

The stored row is the source of truth: the token string is looked up in
users_access_tokens (outer-joined to users and tenant in a single query) and
its stored expiry and revocation stamp decide whether it is still usable.
The JWT signature is not re-checked here.

Every rejection is a SessionError subclass. They all render the same 403 body,
so a caller cannot probe whether a token ever existed; the distinct subclass
only shows up in the log line.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from auth.models import Login, RequestMetadata, TokenState
from auth.store import IdentityStore
from core.errors import (
    SessionError,
    TokenExpiredError,
    TokenInvalidError,
    TokenNotFoundError,
    TokenRevokedError,
)

logger = logging.getLogger("tenantiam.auth.sessions")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionResolver:
    def __init__(self, store: IdentityStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def resolve(self, token: str, metadata: RequestMetadata) -> Login:
        """Return the Login for token or raise a SessionError."""
        try:
            return self._resolve(token, metadata)
        except SessionError as exc:
            logger.info("Session rejected (%s) trace_id=%s", exc.reason, metadata.trace_id)
            raise

    def _resolve(self, token: str, metadata: RequestMetadata) -> Login:
        if not token:
            raise TokenNotFoundError()

        found = self._store.find_login_by_token(token)
        if found is None:
            raise TokenNotFoundError()
        access_token, user = found
        if user is None:
            raise TokenInvalidError()

        state = access_token.state(self._clock())
        if state is TokenState.REVOKED:
            raise TokenRevokedError()
        if state is TokenState.EXPIRED:
            raise TokenExpiredError()

        return Login(user=user, access_token=access_token, metadata=metadata)
