"""
auth/policy.py -- Role gates and tenant scoping rules.

Pure functions over a Login and the requested target. No I/O: the services
in tenancy/ load whatever entity the rule needs and hand it in.

Every function branches on each Role explicitly and ends in a rejecting
else. A role value the rules do not know about is refused, never allowed.

Tenant admins never get to pick a tenant. Whatever tenant they ask for is
replaced by their own, so reads and writes silently stay inside it.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable
from uuid import UUID

from auth.models import Login, Role, User
from core.errors import ForbiddenError, InvalidInputError


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    LIST = "list"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TenantRef:
    """A tenant named either by uuid or by document. uuid wins when both are set."""

    uuid: UUID | None = None
    document: str | None = None

    @property
    def empty(self) -> bool:
        return self.uuid is None and not self.document


def parse_identifier(value: str | None) -> TenantRef:
    """Read a path/query identifier as a uuid when it parses as one, else as a document."""
    if not value:
        return TenantRef()
    try:
        return TenantRef(uuid=UUID(value))
    except ValueError:
        return TenantRef(document=value)


def check_role(role: Role, allowed: Iterable[Role]) -> None:
    """Raise ForbiddenError unless role is in allowed. An empty allow-set admits any role."""
    allowed = set(allowed)
    if not isinstance(role, Role):
        raise ForbiddenError()
    if allowed and role not in allowed:
        raise ForbiddenError()


def _own_tenant(login: Login) -> TenantRef:
    if login.user.tenant_uuid is None:
        raise ForbiddenError()
    return TenantRef(uuid=login.user.tenant_uuid)


def scope_tenant(login: Login, requested: TenantRef, action: Action) -> TenantRef:
    """Resolve which tenant a read or update is allowed to touch."""
    role = login.user.role
    if role is Role.SYSTEM_ADMIN:
        return requested
    elif role is Role.TENANT_ADMIN:
        return _own_tenant(login)
    elif role is Role.TENANT_USER:
        raise ForbiddenError(f"tenant users cannot {action.value} tenants")
    else:
        raise ForbiddenError()


def scope_user_creation(login: Login, requested: TenantRef, new_role: Role) -> TenantRef:
    role = login.user.role
    if role is Role.SYSTEM_ADMIN:
        return requested
    elif role is Role.TENANT_ADMIN:
        if new_role not in (Role.TENANT_ADMIN, Role.TENANT_USER):
            raise InvalidInputError("tenant admins can only create tenant admins or tenant users")
        return _own_tenant(login)
    elif role is Role.TENANT_USER:
        raise ForbiddenError()
    else:
        raise ForbiddenError()


def scope_user_listing(login: Login, requested: TenantRef) -> TenantRef:
    """An empty TenantRef returned for a system admin means every tenant."""
    role = login.user.role
    if role is Role.SYSTEM_ADMIN:
        return requested
    elif role is Role.TENANT_ADMIN:
        return _own_tenant(login)
    elif role is Role.TENANT_USER:
        raise ForbiddenError()
    else:
        raise ForbiddenError()


def authorize_user_target(login: Login, target: User, action: Action) -> None:
    role = login.user.role
    if role is Role.SYSTEM_ADMIN:
        return
    elif role is Role.TENANT_ADMIN:
        if login.user.tenant_uuid is None or target.tenant_uuid != login.user.tenant_uuid:
            raise ForbiddenError()
    elif role is Role.TENANT_USER:
        if target.uuid != login.user.uuid:
            raise ForbiddenError(f"tenant users can only {action.value} themselves")
    else:
        raise ForbiddenError()


def scope_role_change(login: Login, target: User, requested: Role | None) -> Role | None:
    """Return the role to store, or None to leave the target's role unchanged."""
    if requested is None:
        return None
    role = login.user.role
    if role is Role.SYSTEM_ADMIN:
        return requested
    elif role is Role.TENANT_ADMIN:
        if requested is Role.SYSTEM_ADMIN:
            raise ForbiddenError("tenant admins cannot grant system admin")
        if requested not in (Role.TENANT_ADMIN, Role.TENANT_USER):
            raise InvalidInputError("invalid role")
        return requested
    elif role is Role.TENANT_USER:
        return None
    else:
        raise ForbiddenError()
