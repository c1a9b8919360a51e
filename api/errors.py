"""
api/errors.py -- The one place where domain errors become HTTP responses.

_STATUS maps each core/errors.py class to (status code, error kind). Lookup
walks the exception's MRO, so subclasses (TokenRevokedError, OTPWrongError,
...) inherit the row of their nearest listed ancestor. Anything not listed
renders as a 500.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from api.models import ErrorCause, RestError
from core.errors import (
    AppError,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    UnavailableError,
    WrongCredentialsError,
)

BAD_REQUEST = "bad_request"
NOT_FOUND = "not_found"
FORBIDDEN = "forbidden"
CONFLICT = "conflict"
TOO_MANY_REQUESTS = "too_many_requests"
INTERNAL_SERVER_ERROR = "internal_server_error"

_STATUS: dict[type, tuple[int, str]] = {
    InvalidInputError: (400, BAD_REQUEST),
    WrongCredentialsError: (404, NOT_FOUND),
    NotFoundError: (404, NOT_FOUND),
    ForbiddenError: (403, FORBIDDEN),
    ConflictError: (409, CONFLICT),
    UnavailableError: (500, INTERNAL_SERVER_ERROR),
    InternalError: (500, INTERNAL_SERVER_ERROR),
}

_KIND_BY_STATUS = {
    400: BAD_REQUEST,
    401: FORBIDDEN,
    403: FORBIDDEN,
    404: NOT_FOUND,
    405: BAD_REQUEST,
    409: CONFLICT,
    429: TOO_MANY_REQUESTS,
}


def status_for(exc: AppError) -> tuple[int, str]:
    for cls in type(exc).__mro__:
        if cls in _STATUS:
            return _STATUS[cls]
    return 500, INTERNAL_SERVER_ERROR


def kind_for_status(status_code: int) -> str:
    return _KIND_BY_STATUS.get(status_code, INTERNAL_SERVER_ERROR)


def trace_id_of(request: Request) -> str:
    return getattr(request.state, "trace_id", "") or ""


def error_response(
    request: Request,
    status_code: int,
    kind: str,
    message: str,
    causes: Optional[list[ErrorCause]] = None,
) -> JSONResponse:
    body = RestError(trace_id=trace_id_of(request), message=message, error=kind, code=status_code, causes=causes or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def app_error_response(request: Request, exc: AppError) -> JSONResponse:
    status_code, kind = status_for(exc)
    causes = [ErrorCause(field=c.field, message=c.message) for c in exc.causes]
    return error_response(request, status_code, kind, exc.message, causes)
