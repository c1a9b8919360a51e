"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The bearer token travels in the Authorization header:

    Authorization: Bearer <token>

get_current_login() resolves it through the SessionResolver on
app.state.ctx and stores the Login on request.state.login, where the access
log middleware picks it up after the handler returns.

require_roles() wraps get_current_login() with a role gate. With no roles it
admits any authenticated user.

Both raise ForbiddenError subclasses; api/errors.py renders them as 403.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from fastapi import Depends, Request

from auth.models import Login, RequestMetadata, Role
from auth.policy import check_role
from core.errors import ForbiddenError

_BEARER = "bearer"


def bearer_token(request: Request) -> str:
    """Return the token from the Authorization header or raise ForbiddenError."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != _BEARER or not token:
        raise ForbiddenError("missing or malformed authorization header")
    return token


def request_metadata(request: Request) -> RequestMetadata:
    headers = request.headers
    return RequestMetadata(
        trace_id=getattr(request.state, "trace_id", ""),
        ip=request.client.host if request.client else "",
        user_agent=headers.get("User-Agent", ""),
        method=request.method,
        path=request.url.path,
        host=headers.get("Host", ""),
        referer=headers.get("Referer", ""),
        content_type=headers.get("Content-Type", ""),
        language=headers.get("Accept-Language", ""),
        requested_at=getattr(request.state, "started_at", None) or datetime.now(timezone.utc),
    )


def get_current_login(request: Request) -> Login:
    """Require a valid bearer token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(login: Login = Depends(get_current_login)): ...
    """
    token = bearer_token(request)
    login = request.app.state.ctx.sessions.resolve(token, request_metadata(request))
    request.state.login = login
    return login


def require_roles(*roles: Role) -> Callable[..., Login]:
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/tenant/create")
        def route(login: Login = Depends(require_roles(Role.SYSTEM_ADMIN))): ...
    """

    def dependency(login: Login = Depends(get_current_login)) -> Login:
        check_role(login.user.role, roles)
        return login

    return dependency
