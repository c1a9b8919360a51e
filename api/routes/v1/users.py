"""
api/routes/v1/users.py -- User administration endpoints.

Routes:
  POST   /api/v1/user/{identifier}   -- create a user in tenant {identifier} (uuid or document)
  GET    /api/v1/user                -- the caller's own user
  GET    /api/v1/user/list           -- paginated list (system admin, tenant admin)
  GET    /api/v1/user/{identifier}   -- one user by uuid or email
  PATCH  /api/v1/user/{identifier}   -- update a user
  DELETE /api/v1/user/{identifier}   -- delete a user (system admin, tenant admin)

"undefined" and "null" as {identifier} mean the caller, which is what
browser clients send when the id is not known yet. On POST they mean no
tenant, which only a system admin creating another system admin may use.

/user/list is registered before /user/{identifier} so "list" is not read as
an identifier.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.auditing import audited
from api.context import AppContext, get_context
from api.models import UserCreate, UserListResponse, UserPatch, UserResponse
from auth.dependencies import require_roles
from auth.models import Login, Role

router = APIRouter()

_admins = require_roles(Role.SYSTEM_ADMIN, Role.TENANT_ADMIN)
_anyone = require_roles(Role.SYSTEM_ADMIN, Role.TENANT_ADMIN, Role.TENANT_USER)


@router.post("/user/{identifier}", response_model=UserResponse, status_code=201)
def create_user(
    identifier: str,
    request: Request,
    body: UserCreate,
    login: Login = Depends(_admins),
    ctx: AppContext = Depends(get_context),
) -> UserResponse:
    input_data = {"tenant_identifier": identifier, **body.model_dump(mode="json")}
    with audited(request, "user", "create", "Create", input_data) as record:
        user = ctx.users.create(login, identifier, body.name, body.email, body.password, body.role)
        resp = UserResponse.from_user(user)
        record.output = resp.model_dump(mode="json")
    return resp


@router.get("/user", response_model=UserResponse)
def read_self(
    request: Request,
    login: Login = Depends(_anyone),
    ctx: AppContext = Depends(get_context),
) -> UserResponse:
    return UserResponse.from_user(ctx.users.read(login, None))


@router.get("/user/list", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1),
    size: int = Query(default=10),
    tenant_identifier: Optional[str] = Query(default=None),
    login: Login = Depends(_admins),
    ctx: AppContext = Depends(get_context),
) -> UserListResponse:
    result = ctx.users.list(login, page, size, tenant_identifier)
    return UserListResponse(
        users=[UserResponse.from_user(u) for u in result.items],
        page=result.page,
        size=result.size,
    )


@router.get("/user/{identifier}", response_model=UserResponse)
def read_user(
    identifier: str,
    request: Request,
    login: Login = Depends(_anyone),
    ctx: AppContext = Depends(get_context),
) -> UserResponse:
    return UserResponse.from_user(ctx.users.read(login, identifier))


@router.patch("/user/{identifier}", response_model=UserResponse)
def update_user(
    identifier: str,
    request: Request,
    body: UserPatch,
    login: Login = Depends(_anyone),
    ctx: AppContext = Depends(get_context),
) -> UserResponse:
    input_data = {"identifier": identifier, **body.model_dump(mode="json", exclude_none=True)}
    with audited(request, "user", "update", "Update", input_data) as record:
        user = ctx.users.update(
            login, identifier, name=body.name, email=body.email, password=body.password, role=body.role
        )
        resp = UserResponse.from_user(user)
        record.output = resp.model_dump(mode="json")
    return resp


@router.delete("/user/{identifier}", status_code=204)
def delete_user(
    identifier: str,
    request: Request,
    login: Login = Depends(_admins),
    ctx: AppContext = Depends(get_context),
) -> Response:
    with audited(request, "user", "delete", "Delete", {"identifier": identifier}) as record:
        ctx.users.delete(login, identifier)
        record.output = {"status": "deleted"}
    return Response(status_code=204)
