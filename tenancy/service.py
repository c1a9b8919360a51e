"""
tenancy/service.py -- Tenant and user administration.

Both services take the caller's Login, ask auth/policy.py what the caller may
touch, then act on the narrowed target through IdentityStore. Policy is
never re-derived here.

Uniqueness conflicts surface from the store as IntegrityError and are turned
into ConflictError with a message naming the duplicated field.

Pagination: page <= 0 becomes 1, size <= 0 becomes 10, size > 100 is
rejected.

Layer rule: no imports from api/, audit/, or mailer/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from auth.models import Login, Role, Tenant, User
from auth.passwords import CredentialHasher
from auth.policy import (
    Action,
    TenantRef,
    authorize_user_target,
    parse_identifier,
    scope_role_change,
    scope_tenant,
    scope_user_creation,
    scope_user_listing,
)
from auth.store import IdentityStore
from core.errors import ConflictError, InvalidInputError, NotFoundError

logger = logging.getLogger("tenantiam.tenancy")

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

_SELF_IDENTIFIERS = {"", "undefined", "null"}


@dataclass
class Page:
    items: list
    page: int
    size: int


def normalize_page(page: Optional[int], size: Optional[int]) -> tuple[int, int]:
    page = page if page and page > 0 else DEFAULT_PAGE
    size = size if size and size > 0 else DEFAULT_PAGE_SIZE
    if size > MAX_PAGE_SIZE:
        raise InvalidInputError(f"at most {MAX_PAGE_SIZE} items per page")
    return page, size


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise InvalidInputError("invalid uuid") from exc


class TenantService:
    def __init__(self, store: IdentityStore) -> None:
        self._store = store

    def create(self, name: str, document: str) -> Tenant:
        try:
            tenant = self._store.create_tenant(name, document)
        except IntegrityError as exc:
            raise ConflictError("document already exists") from exc
        logger.info("Tenant %s created", tenant.uuid)
        return tenant

    def read(self, login: Login, tenant_uuid: Optional[str] = None, document: Optional[str] = None) -> Tenant:
        if not tenant_uuid and not document:
            raise InvalidInputError("uuid or document is required")
        requested = TenantRef(uuid=_parse_uuid(tenant_uuid) if tenant_uuid else None, document=document or None)
        return self._get(scope_tenant(login, requested, Action.READ))

    def list(self, page: Optional[int], size: Optional[int]) -> Page:
        page, size = normalize_page(page, size)
        return Page(items=self._store.list_tenants(page, size), page=page, size=size)

    def update(
        self,
        login: Login,
        tenant_uuid: str,
        name: Optional[str] = None,
        document: Optional[str] = None,
        live: Optional[bool] = None,
    ) -> Tenant:
        """Apply the given fields. A tenant admin is pinned to its own tenant and may only rename it."""
        requested = TenantRef(uuid=_parse_uuid(tenant_uuid))
        tenant = self._get(scope_tenant(login, requested, Action.UPDATE))

        fields: dict = {}
        if name:
            fields["name"] = name
        if login.user.role is Role.SYSTEM_ADMIN:
            if document:
                fields["document"] = document
            if live is not None:
                fields["live"] = live
        if not fields:
            return tenant

        try:
            self._store.update_tenant(tenant.uuid, **fields)
        except IntegrityError as exc:
            raise ConflictError("document already exists") from exc
        logger.info("Tenant %s updated (%s)", tenant.uuid, ", ".join(sorted(fields)))
        return self._get(TenantRef(uuid=tenant.uuid))

    def delete(self, tenant_uuid: Optional[str] = None, document: Optional[str] = None) -> None:
        if not tenant_uuid and not document:
            raise InvalidInputError("uuid or document is required")
        ref = TenantRef(uuid=_parse_uuid(tenant_uuid) if tenant_uuid else None, document=document or None)
        tenant = self._get(ref)
        self._store.delete_tenant(tenant.uuid)
        logger.info("Tenant %s deleted", tenant.uuid)

    def _get(self, ref: TenantRef) -> Tenant:
        tenant = self._store.find_tenant(ref.uuid, ref.document)
        if tenant is None:
            raise NotFoundError("tenant not found")
        return tenant


class UserService:
    def __init__(self, store: IdentityStore, hasher: CredentialHasher) -> None:
        self._store = store
        self._hasher = hasher

    def create(
        self,
        login: Login,
        tenant_identifier: str,
        name: str,
        email: str,
        password: str,
        role: Role,
    ) -> User:
        if tenant_identifier is not None and tenant_identifier.strip() in _SELF_IDENTIFIERS:
            tenant_identifier = None
        scoped = scope_user_creation(login, parse_identifier(tenant_identifier), role)
        tenant_uuid: Optional[UUID] = None
        if scoped.empty:
            if role is not Role.SYSTEM_ADMIN:
                raise InvalidInputError("tenant identifier is required")
        else:
            tenant = self._store.find_tenant(scoped.uuid, scoped.document)
            if tenant is None:
                raise NotFoundError("tenant not found")
            tenant_uuid = tenant.uuid

        try:
            user = self._store.create_user(
                name=name,
                email=email,
                password_hash=self._hasher.hash(password),
                role=role,
                tenant_uuid=tenant_uuid,
            )
        except IntegrityError as exc:
            raise ConflictError("email already exists") from exc
        logger.info("User %s created in tenant %s by %s", user.uuid, tenant_uuid, login.user.uuid)
        return user

    def read(self, login: Login, identifier: Optional[str] = None) -> User:
        """Return the user named by identifier (uuid or email). No identifier means the caller."""
        target = self._resolve(login, identifier)
        authorize_user_target(login, target, Action.READ)
        return target

    def list(
        self,
        login: Login,
        page: Optional[int],
        size: Optional[int],
        tenant_identifier: Optional[str] = None,
    ) -> Page:
        page, size = normalize_page(page, size)
        scoped = scope_user_listing(login, parse_identifier(tenant_identifier))
        if scoped.empty:
            return Page(items=self._store.list_users(page, size), page=page, size=size)

        tenant_uuid = scoped.uuid
        if tenant_uuid is None:
            tenant = self._store.find_tenant(document=scoped.document)
            if tenant is None:
                raise NotFoundError("tenant not found")
            tenant_uuid = tenant.uuid
        return Page(items=self._store.list_users_by_tenant(tenant_uuid, page, size), page=page, size=size)

    def update(
        self,
        login: Login,
        identifier: Optional[str],
        name: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> User:
        target = self._resolve(login, identifier)
        authorize_user_target(login, target, Action.UPDATE)

        fields: dict = {}
        if name:
            fields["name"] = name
        if email:
            fields["email"] = email
        if password:
            fields["password_hash"] = self._hasher.hash(password)
        new_role = scope_role_change(login, target, role)
        if new_role is not None:
            fields["role"] = new_role
        if not fields:
            return target

        try:
            self._store.update_user(target.uuid, **fields)
        except IntegrityError as exc:
            raise ConflictError("email already exists") from exc
        logger.info("User %s updated by %s (%s)", target.uuid, login.user.uuid, ", ".join(sorted(fields)))
        return self._require(self._store.find_user_by_id(target.uuid))

    def delete(self, login: Login, identifier: str) -> None:
        target = self._resolve(login, identifier)
        authorize_user_target(login, target, Action.DELETE)
        self._store.delete_user(target.uuid)
        logger.info("User %s deleted by %s", target.uuid, login.user.uuid)

    def _resolve(self, login: Login, identifier: Optional[str]) -> User:
        if identifier is None or identifier.strip() in _SELF_IDENTIFIERS:
            return self._require(self._store.find_user_by_id(login.user.uuid))
        try:
            user = self._store.find_user_by_id(UUID(identifier))
        except ValueError:
            user = self._store.find_user_by_email(identifier)
        return self._require(user)

    @staticmethod
    def _require(user: Optional[User]) -> User:
        if user is None:
            raise NotFoundError("user not found")
        return user
