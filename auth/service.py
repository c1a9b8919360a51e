"""
auth/service.py -- Credential flows: login, logout, OTP issue, password reset.

Owns the write side of the AccessToken and OTP lifecycles. Reads of an
existing session go through auth/sessions.py instead.

Security design decisions:
  Login failures are indistinguishable. Unknown email, inactive user, wrong
  password and a corrupt stored hash all raise WrongCredentialsError with the
  same message, and an unknown email still pays for one Argon2 verification.

  Single session per user: a successful login soft-revokes every other live
  token of that user before the new one is stored. The revoke is best-effort
  and not in the same transaction as the insert. A failure there is logged
  and the login still succeeds.

  OTP codes are single use. A reset finds the user first, deletes the code,
  changes the password, then revokes all of the user's live tokens. Emails
  are matched case-insensitively everywhere (auth.models.normalize_email).

  The OTP comparison uses hmac.compare_digest.

Layer rule: no imports from api/, tenancy/, or audit/. The mailer is handed
in by the composition root and only needs send_template().
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Login, User
from auth.otp import OTPStore, generate_otp
from auth.passwords import CredentialError, CredentialHasher
from auth.sessions import utc_now
from auth.store import IdentityStore
from auth.tokens import TokenIssuer
from core.errors import (
    ForbiddenError,
    NotFoundError,
    OTPAlreadyExistsError,
    OTPWrongError,
    TokenDuplicatedError,
    UnavailableError,
    WrongCredentialsError,
)

logger = logging.getLogger("tenantiam.auth.service")

OTP_SUBJECT = "OTP Code"
OTP_TEMPLATE = "<h1>Your OTP code is: {{ code }}</h1><p>It expires in {{ minutes }} minutes.</p>"


class AuthService:
    def __init__(
        self,
        store: IdentityStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        otp_store: OTPStore,
        mailer: Optional[Any] = None,
        clock: Callable[[], datetime] = utc_now,
        otp_length: int = 6,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer
        self._otp = otp_store
        self._mailer = mailer
        self._clock = clock
        self._otp_length = otp_length

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> Login:
        """Verify credentials and issue a fresh access token.

        Raises WrongCredentialsError for every credential failure and
        TokenDuplicatedError if the issued token collides on insert.
        """
        user = self._store.find_user_by_email(email)
        if user is None:
            self._hasher.verify_dummy(password)
            logger.info("Login failed: unknown email")
            raise WrongCredentialsError()

        try:
            self._hasher.verify(user.password_hash, password)
        except CredentialError as exc:
            logger.info("Login failed for user %s: %s", user.uuid, type(exc).__name__)
            raise WrongCredentialsError() from exc

        if not user.live:
            logger.info("Login refused for inactive user %s", user.uuid)
            raise WrongCredentialsError()

        self._maybe_rehash(user, password)

        token, expiry = self._issuer.issue_access_token(user.uuid, user.tenant_uuid)
        self._revoke_all_best_effort(user, "login")
        try:
            access_token = self._store.create_access_token(user.uuid, token, expiry)
        except IntegrityError as exc:
            logger.warning("Issued token collided with an existing row for user %s", user.uuid)
            raise TokenDuplicatedError() from exc

        logger.info("User %s logged in", user.uuid)
        return Login(user=user, access_token=access_token)

    def logout(self, token: str) -> None:
        """Soft-revoke token. Raises ForbiddenError when no such token exists."""
        if not token or not self._store.expire_access_token_by_value(token, self._clock()):
            raise ForbiddenError()

    # ------------------------------------------------------------------
    # OTP / password reset
    # ------------------------------------------------------------------

    def create_otp(self, email: str) -> None:
        """Generate, cache and mail a reset code for email."""
        user = self._store.find_user_by_email(email)
        if user is None:
            raise NotFoundError("user not found")
        if self._mailer is None:
            raise UnavailableError("Mailer", "mailer not initialized")

        code = generate_otp(self._otp_length)
        if not self._otp.add(email, code):
            raise OTPAlreadyExistsError()

        try:
            self._mailer.send_template(
                user.email, OTP_SUBJECT, OTP_TEMPLATE, {"code": code, "minutes": max(1, self._otp.ttl // 60)}
            )
        except UnavailableError:
            self._otp.delete(email)
            raise
        except Exception as exc:
            self._otp.delete(email)
            logger.error("Unexpected mailer failure for user %s: %s", user.uuid, exc)
            raise UnavailableError("Mailer", "failed to send email") from exc
        logger.info("OTP issued for user %s", user.uuid)

    def validate_otp(self, email: str, code: str) -> bool:
        stored = self._otp.get(email)
        if stored is None or not code:
            return False
        return hmac.compare_digest(stored.encode(), code.encode())

    def change_password(self, code: str, email: str, new_password: str) -> None:
        """Replace the password of email's user if code is the live OTP for email."""
        if not self.validate_otp(email, code):
            raise OTPWrongError()
        user = self._store.find_user_by_email(email)
        if user is None:
            raise NotFoundError("user not found")
        self._otp.delete(email)
        self._store.update_user(user.uuid, password_hash=self._hasher.hash(new_password))
        logger.info("Password changed for user %s", user.uuid)
        self._revoke_all_best_effort(user, "password reset")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _revoke_all_best_effort(self, user: User, reason: str) -> None:
        try:
            revoked = self._store.expire_all_non_expired_tokens_for_user(user.uuid, self._clock())
        except SQLAlchemyError as exc:
            logger.warning("Could not revoke tokens for user %s on %s: %s", user.uuid, reason, exc)
            return
        if revoked:
            logger.info("Revoked %d live token(s) for user %s on %s", revoked, user.uuid, reason)

    def _maybe_rehash(self, user: User, password: str) -> None:
        if not self._hasher.needs_rehash(user.password_hash):
            return
        try:
            self._store.update_user(user.uuid, password_hash=self._hasher.hash(password))
        except SQLAlchemyError as exc:
            logger.warning("Could not upgrade password hash for user %s: %s", user.uuid, exc)
