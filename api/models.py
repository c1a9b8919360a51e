"""
API request and response models for the tenant-iam REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password hashes never appear in any response model.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Login, Role, Tenant, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class OTPRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    otp: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=6, max_length=1024)


class TenantCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    document: str = Field(min_length=1, max_length=64)


class TenantPatch(BaseModel):
    """Fields to change. Omitted fields are left as they are."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    document: Optional[str] = Field(default=None, max_length=64)
    live: Optional[bool] = None


class UserCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=1024)
    role: Role


class UserPatch(BaseModel):
    """Fields to change. Omitted fields are left as they are."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=1024)
    role: Optional[Role] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TenantResponse(BaseModel):
    uuid: UUID
    name: str
    document: str
    live: bool
    create_at: Optional[datetime] = None
    update_at: Optional[datetime] = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantResponse":
        return cls(
            uuid=tenant.uuid,
            name=tenant.name,
            document=tenant.document,
            live=tenant.live,
            create_at=tenant.create_at,
            update_at=tenant.update_at,
        )


class TenantListResponse(BaseModel):
    tenants: list[TenantResponse]
    page: int
    size: int


class UserResponse(BaseModel):
    uuid: UUID
    tenant_uuid: Optional[UUID] = None
    name: str
    email: str
    role: Role
    live: bool
    create_at: Optional[datetime] = None
    update_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            uuid=user.uuid,
            tenant_uuid=user.tenant_uuid,
            name=user.name,
            email=user.email,
            role=user.role,
            live=user.live,
            create_at=user.create_at,
            update_at=user.update_at,
        )


class UserListResponse(BaseModel):
    users: list[UserResponse]
    page: int
    size: int


class LoginResponse(BaseModel):
    """Returned by POST /auth/login and GET /auth/healthcheck."""

    user: UserResponse
    token: str
    system_time_utc: datetime
    expire: datetime

    @classmethod
    def from_login(cls, login: Login, now: datetime) -> "LoginResponse":
        return cls(
            user=UserResponse.from_user(login.user),
            token=login.access_token.token,
            system_time_utc=now,
            expire=login.access_token.expiry,
        )


class ErrorCause(BaseModel):
    field: str
    message: str


class RestError(BaseModel):
    """Uniform error envelope for every non-2xx response."""

    trace_id: str
    message: str
    error: str
    code: int
    causes: Optional[list[ErrorCause]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    status: str = "healthy"
    version: str
    components: dict[str, str]
