"""
api/routes/v1/auth.py -- Credential endpoints.

Routes:
  POST /api/v1/auth/login              -- email + password login; returns bearer token
  POST /api/v1/auth/logout/{token}     -- revoke a token; 202
  POST /api/v1/auth/otp                -- mail a password reset code; 202
  POST /api/v1/auth/password/reset     -- set a new password with a valid code; 200
  GET  /api/v1/auth/healthcheck        -- echo the current session (requires auth)

Security:
  POST /login and POST /otp are rate-limited per client IP.
  Login failures share one message whether or not the email exists.
  Cache-Control: no-store on responses that carry a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.auditing import audited
from api.context import AppContext, get_context
from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, OTPRequest, PasswordResetRequest
from auth.dependencies import get_current_login, request_metadata
from auth.models import Login
from auth.sessions import utc_now
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login:           public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout/{token}:  public -- possession of the token is the credential
# - POST /api/v1/auth/otp:             public -- the user has lost their password
# - POST /api/v1/auth/password/reset:  public -- the OTP code is the credential
# - GET  /api/v1/auth/healthcheck:     requires auth (get_current_login)
router = APIRouter()


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, ctx: AppContext = Depends(get_context)) -> JSONResponse:
    """Authenticate with email and password and issue a new access token.

    Every other live token of the user is revoked first, so only the newest
    session stays usable.
    """
    with audited(request, "auth", "login", "Login", body.model_dump()) as record:
        result = ctx.auth.login(body.email, body.password)
        result.metadata = request_metadata(request)
        request.state.login = result
        record.login = result
        payload = LoginResponse.from_login(result, utc_now()).model_dump(mode="json")
        record.output = payload
    return _no_store(JSONResponse(status_code=200, content=payload))


@router.post("/auth/logout/{token}", status_code=202)
def logout(token: str, request: Request, ctx: AppContext = Depends(get_context)) -> Response:
    """Revoke token. Unknown tokens answer 403."""
    with audited(request, "auth", "logout", "Logout", {"token": token}):
        ctx.auth.logout(token)
    return Response(status_code=202)


@limiter.limit(_settings.otp_rate_limit)
@router.post("/auth/otp", status_code=202)
def create_otp(request: Request, body: OTPRequest, ctx: AppContext = Depends(get_context)) -> Response:
    """Generate a reset code for the email and send it by mail."""
    with audited(request, "auth", "otp", "CreateOTP", body.model_dump()):
        ctx.auth.create_otp(body.email)
    return Response(status_code=202)


@router.post("/auth/password/reset", status_code=200)
def reset_password(request: Request, body: PasswordResetRequest, ctx: AppContext = Depends(get_context)) -> Response:
    """Replace the password when the OTP matches. The code is consumed on success."""
    with audited(request, "auth", "reset_password", "ResetPassword", body.model_dump()):
        ctx.auth.change_password(body.otp, body.email, body.password)
    return Response(status_code=200)


@router.get("/auth/healthcheck", response_model=LoginResponse)
def healthcheck(login: Login = Depends(get_current_login)) -> JSONResponse:
    """Return the session the presented token resolves to."""
    payload = LoginResponse.from_login(login, utc_now()).model_dump(mode="json")
    return _no_store(JSONResponse(status_code=200, content=payload))
