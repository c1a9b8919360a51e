"""
audit/models.py -- Rows written by the access and audit logs.

Pattern: Data class. serialize() and redact() turn arbitrary request and
response payloads into the JSON text stored in audit_log.input_data and
audit_log.output_data.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

REDACTED = "***"
SECRET_KEYS = frozenset({"password", "otp", "token"})


@dataclass
class AccessLogEntry:
    """One authenticated HTTP request."""

    trace_id: str
    method: str
    path: str
    host: str
    status_code: int
    ip: str
    tenant_uuid: Optional[UUID] = None
    user_uuid: Optional[UUID] = None
    identifier: str = ""
    user_agent: str = ""
    referer: str = ""
    content_type: str = ""
    language: str = ""
    request_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: float = 0.0


@dataclass
class AuditLogEntry:
    """One state-changing (or sensitive) domain operation, successful or not."""

    trace_id: str
    domain: str
    action: str
    function: str
    success: bool
    tenant_uuid: Optional[UUID] = None
    user_uuid: Optional[UUID] = None
    identifier: str = ""
    input_data: str = ""
    output_data: str = ""


def redact(data: Any) -> Any:
    """Return a copy of data with every value under a secret key masked, at any depth."""
    if isinstance(data, dict):
        return {k: (REDACTED if str(k).lower() in SECRET_KEYS else redact(v)) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [redact(v) for v in data]
    return data


def serialize(data: Any) -> str:
    """JSON-encode data for storage; falls back to repr() for values json cannot handle."""
    if data is None:
        return ""
    try:
        return json.dumps(data, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return repr(data)
