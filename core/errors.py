"""
core/errors.py -- Typed error taxonomy shared by every service layer.

Services raise these; they never build HTTP responses. api/errors.py owns the
single table that maps each class to a status code and an error kind, so the
boundary translation is fixed rather than decided per call site.

Hierarchy:
  AppError
    InvalidInputError          malformed input
    NotFoundError              missing entity
    WrongCredentialsError      login failure (deliberately vague)
    ForbiddenError             role/tenant scope violation
      OTPWrongError
      SessionError             bearer token rejected
        TokenNotFoundError
        TokenInvalidError
        TokenExpiredError
          TokenRevokedError
    ConflictError              uniqueness violation
      TokenDuplicatedError
      OTPAlreadyExistsError
    UnavailableError           dependent subsystem missing/failing
    InternalError              unclassified

Layer rule: core/ is the kernel. No imports from other project packages.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Cause:
    """One field-level reason attached to an error body."""

    field: str
    message: str


class AppError(Exception):
    default_message = "internal server error"

    def __init__(self, message: str | None = None, causes: list[Cause] | None = None) -> None:
        self.message = message or self.default_message
        self.causes = causes or []
        super().__init__(self.message)


class InvalidInputError(AppError):
    default_message = "invalid input data"


class NotFoundError(AppError):
    default_message = "not found"


class WrongCredentialsError(AppError):
    # Same text for unknown email and wrong password -- no user enumeration.
    default_message = "error when logging in"


class ForbiddenError(AppError):
    default_message = "action not allowed"


class OTPWrongError(ForbiddenError):
    default_message = "otp code wrong"


class SessionError(ForbiddenError):
    """A bearer token could not be turned into an authenticated identity.

    Subclasses exist for logging only. Every one of them is rendered with the
    same message so callers cannot tell an expired token from an unknown one.
    """

    default_message = "invalid or expired access token"
    reason = "invalid"

    def __init__(self) -> None:
        super().__init__(SessionError.default_message)


class TokenNotFoundError(SessionError):
    reason = "not_found"


class TokenInvalidError(SessionError):
    reason = "invalid"


class TokenExpiredError(SessionError):
    reason = "expired"


class TokenRevokedError(TokenExpiredError):
    reason = "revoked"


class ConflictError(AppError):
    default_message = "conflict"


class TokenDuplicatedError(ConflictError):
    default_message = "error when logging in"


class OTPAlreadyExistsError(ConflictError):
    default_message = "otp code already exists"


class UnavailableError(AppError):
    """A collaborator (mailer, ...) is not configured or failed to respond."""

    def __init__(self, subsystem: str, detail: str) -> None:
        super().__init__("internal server error", [Cause(subsystem, detail)])
        self.subsystem = subsystem


class InternalError(AppError):
    pass
