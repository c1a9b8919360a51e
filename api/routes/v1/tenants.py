"""
api/routes/v1/tenants.py -- Tenant administration endpoints.

Routes:
  POST   /api/v1/tenant/create            -- create tenant (system admin)
  GET    /api/v1/tenant?uuid=&document=   -- read one tenant (system admin, tenant admin)
  GET    /api/v1/tenant/list              -- paginated list (system admin)
  PATCH  /api/v1/tenant/{uuid}            -- update tenant (system admin, tenant admin)
  DELETE /api/v1/tenant?uuid=&document=   -- delete tenant (system admin)

Tenant admins are always redirected to their own tenant, whatever uuid or
document they pass. See auth/policy.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.auditing import audited
from api.context import AppContext, get_context
from api.models import TenantCreate, TenantListResponse, TenantPatch, TenantResponse
from auth.dependencies import require_roles
from auth.models import Login, Role

router = APIRouter()

_system_admin = require_roles(Role.SYSTEM_ADMIN)
_admins = require_roles(Role.SYSTEM_ADMIN, Role.TENANT_ADMIN)


@router.post("/tenant/create", response_model=TenantResponse, status_code=201)
def create_tenant(
    request: Request,
    body: TenantCreate,
    login: Login = Depends(_system_admin),
    ctx: AppContext = Depends(get_context),
) -> TenantResponse:
    with audited(request, "tenant", "create", "Create", body.model_dump()) as record:
        resp = TenantResponse.from_tenant(ctx.tenants.create(body.name, body.document))
        record.output = resp.model_dump(mode="json")
    return resp


@router.get("/tenant", response_model=TenantResponse)
def read_tenant(
    request: Request,
    uuid: Optional[str] = Query(default=None),
    document: Optional[str] = Query(default=None),
    login: Login = Depends(_admins),
    ctx: AppContext = Depends(get_context),
) -> TenantResponse:
    with audited(request, "tenant", "read", "Read", {"uuid": uuid, "document": document}) as record:
        resp = TenantResponse.from_tenant(ctx.tenants.read(login, uuid, document))
        record.output = resp.model_dump(mode="json")
    return resp


@router.get("/tenant/list", response_model=TenantListResponse)
def list_tenants(
    request: Request,
    page: int = Query(default=1),
    page_size: int = Query(default=10, alias="pageSize"),
    login: Login = Depends(_system_admin),
    ctx: AppContext = Depends(get_context),
) -> TenantListResponse:
    result = ctx.tenants.list(page, page_size)
    return TenantListResponse(
        tenants=[TenantResponse.from_tenant(t) for t in result.items],
        page=result.page,
        size=result.size,
    )


@router.patch("/tenant/{tenant_uuid}", response_model=TenantResponse)
def update_tenant(
    tenant_uuid: str,
    request: Request,
    body: TenantPatch,
    login: Login = Depends(_admins),
    ctx: AppContext = Depends(get_context),
) -> TenantResponse:
    input_data = {"uuid": tenant_uuid, **body.model_dump(exclude_none=True)}
    with audited(request, "tenant", "update", "Update", input_data) as record:
        tenant = ctx.tenants.update(login, tenant_uuid, name=body.name, document=body.document, live=body.live)
        resp = TenantResponse.from_tenant(tenant)
        record.output = resp.model_dump(mode="json")
    return resp


@router.delete("/tenant", status_code=204)
def delete_tenant(
    request: Request,
    uuid: Optional[str] = Query(default=None),
    document: Optional[str] = Query(default=None),
    login: Login = Depends(_system_admin),
    ctx: AppContext = Depends(get_context),
) -> Response:
    with audited(request, "tenant", "delete", "Delete", {"uuid": uuid, "document": document}) as record:
        ctx.tenants.delete(uuid, document)
        record.output = {"status": "deleted"}
    return Response(status_code=204)
