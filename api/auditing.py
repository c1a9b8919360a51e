"""
api/auditing.py -- Audit trail for state-changing endpoints.

Wrap the service call in audited(); the outcome is queued on the
LogDispatcher whether the call succeeds or raises:

    with audited(request, "tenant", "create", "Create", body.model_dump()) as record:
        tenant = ctx.tenants.create(body.name, body.document)
        record.output = TenantResponse.from_tenant(tenant).model_dump(mode="json")

Input data passes through audit.models.redact() before serialization, so
passwords, OTP codes and tokens are never stored.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from audit.models import AuditLogEntry, redact, serialize
from auth.models import Login
from core.errors import AppError


@dataclass
class AuditRecord:
    login: Optional[Login] = None
    output: Any = None


@contextmanager
def audited(
    request: Request,
    domain: str,
    action: str,
    function: str,
    input_data: Any = None,
) -> Iterator[AuditRecord]:
    record = AuditRecord(login=getattr(request.state, "login", None))
    try:
        yield record
    except Exception as exc:
        message = exc.message if isinstance(exc, AppError) else "internal server error"
        _submit(request, record, domain, action, function, False, input_data, {"error": message})
        raise
    _submit(request, record, domain, action, function, True, input_data, record.output)


def _submit(
    request: Request,
    record: AuditRecord,
    domain: str,
    action: str,
    function: str,
    success: bool,
    input_data: Any,
    output_data: Any,
) -> None:
    login = record.login
    identifier = ""
    if login is not None:
        identifier = login.user.email
    elif isinstance(input_data, dict):
        identifier = str(input_data.get("email", ""))

    request.app.state.ctx.log_audit(
        AuditLogEntry(
            trace_id=getattr(request.state, "trace_id", ""),
            domain=domain,
            action=action,
            function=function,
            success=success,
            tenant_uuid=login.user.tenant_uuid if login else None,
            user_uuid=login.user.uuid if login else None,
            identifier=identifier,
            input_data=serialize(redact(input_data)),
            output_data=serialize(redact(output_data)),
        )
    )
