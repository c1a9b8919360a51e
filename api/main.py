"""
api/main.py -- FastAPI application entry point for tenant-iam.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. trace_requests        -- assigns/echoes X-Request-ID
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. log_requests          -- request log line + access log entry

Lifespan builds the AppContext (api/context.py), starts the OTP purge task,
and on shutdown cancels the task and drains the log queue symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.context import build_context
from api.errors import (
    BAD_REQUEST,
    INTERNAL_SERVER_ERROR,
    TOO_MANY_REQUESTS,
    app_error_response,
    error_response,
    kind_for_status,
    trace_id_of,
)
from api.limiter import limiter
from api.models import ErrorCause, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.tenants import router as tenant_router
from api.routes.v1.users import router as user_router
from audit.models import AccessLogEntry
from core.config import get_settings
from core.errors import AppError

__version__ = "0.1.0"

TRACE_HEADER = "X-Request-ID"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tenantiam.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Drop expired OTP codes every `interval` seconds.

    Reads already ignore expired codes; this only bounds memory. CancelledError
    from task.cancel() during shutdown propagates out of asyncio.sleep and
    unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.ctx.otp_store.purge_expired()
        if removed:
            logger.info("Purged %d expired OTP code(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the application context on startup and tear it down on shutdown.

    build_context() raises on unusable token settings, which aborts startup
    before any request is served.
    """
    logger.info("tenant-iam API starting up")
    app.state.ctx = build_context(settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.otp_sweep_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.ctx.close()
    logger.info("tenant-iam API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tenant-iam API",
    description="Multi-tenant identity and access management: tenants, users, bearer sessions, OTP password reset.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the current stack, so the LAST middleware added is
# the OUTERMOST. @app.middleware("http") functions are added the same way.
# log_requests is declared first so it sits innermost; trace_requests is
# declared last so every other layer already sees request.state.trace_id.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Emit one log line per request and queue an access log entry.

    The access log entry is only written for authenticated requests: the
    auth dependency leaves the Login on request.state.login.
    """
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    client_ip = request.client.host if request.client else "unknown"
    logger.info("%s %s %d %.1fms %s", request.method, request.url.path, response.status_code, ms, client_ip)

    login = getattr(request.state, "login", None)
    if login is not None:
        headers = request.headers
        request.app.state.ctx.log_access(
            AccessLogEntry(
                trace_id=getattr(request.state, "trace_id", ""),
                method=request.method,
                path=request.url.path,
                host=headers.get("Host", ""),
                status_code=response.status_code,
                ip=client_ip,
                tenant_uuid=login.user.tenant_uuid,
                user_uuid=login.user.uuid,
                identifier=login.user.email,
                user_agent=headers.get("User-Agent", ""),
                referer=headers.get("Referer", ""),
                content_type=headers.get("Content-Type", ""),
                language=headers.get("Accept-Language", ""),
                request_time=request.state.started_at,
                latency_ms=ms,
            )
        )
    return response


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", TRACE_HEADER],
    expose_headers=[TRACE_HEADER],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def trace_requests(request: Request, call_next):
    """Honour an inbound X-Request-ID verbatim, else mint a UUID4; echo it back."""
    trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
    request.state.trace_id = trace_id
    request.state.started_at = datetime.now(timezone.utc)
    response = await call_next(request)
    response.headers[TRACE_HEADER] = trace_id
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(tenant_router, prefix="/api/v1", tags=["Tenant"])
app.include_router(user_router, prefix="/api/v1", tags=["User"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same RestError envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Translate a domain error through the fixed table in api/errors.py."""
    return app_error_response(request, exc)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = error_response(request, 429, TOO_MANY_REQUESTS, "too many requests")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one cause per invalid field."""
    causes = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        causes.append(ErrorCause(field=".".join(loc) or "request", message=str(err.get("msg", "invalid value"))))
    return error_response(request, 400, BAD_REQUEST, "invalid input data", causes)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the RestError envelope for routing errors (unknown path, wrong method)."""
    return error_response(request, exc.status_code, kind_for_status(exc.status_code), str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    Starlette runs this handler outside every other middleware, so the trace
    header is set here rather than by trace_requests.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    response = error_response(request, 500, INTERNAL_SERVER_ERROR, "internal server error")
    response.headers[TRACE_HEADER] = trace_id_of(request)
    return response


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    components = {"app": "ok"}
    try:
        request.app.state.ctx.identity_store.ping()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
