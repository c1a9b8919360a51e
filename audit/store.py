"""
audit/store.py -- SQLAlchemy Core persistence for access_log and audit_log.

Append-only. Rows are written by the LogDispatcher worker thread, never on
the request path, so a slow or failing database cannot delay a response.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, MetaData, String, Table, Text, create_engine, select
from sqlalchemy.engine import Engine

from audit.models import AccessLogEntry, AuditLogEntry

_metadata = MetaData()

_access_log = Table(
    "access_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_uuid", String(36)),
    Column("user_uuid", String(36)),
    Column("identifier", Text),
    Column("trace_id", String(100), nullable=False),
    Column("method", String(10), nullable=False),
    Column("path", Text, nullable=False),
    Column("host", Text, nullable=False),
    Column("status_code", Integer, nullable=False),
    Column("ip", String(64), nullable=False),
    Column("user_agent", Text),
    Column("referer", Text),
    Column("content_type", Text),
    Column("language", Text),
    Column("request_time", DateTime, nullable=False),
    Column("latency_ms", Float, nullable=False),
    Column("created_at", DateTime, nullable=False),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tenant_uuid", String(36)),
    Column("user_uuid", String(36)),
    Column("identifier", Text),
    Column("trace_id", String(100), nullable=False),
    Column("domain", String(100), nullable=False),
    Column("action", String(100), nullable=False),
    Column("function", String(150), nullable=False),
    Column("success", Boolean, nullable=False),
    Column("input_data", Text),
    Column("output_data", Text),
    Column("created_at", DateTime, nullable=False),
)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


class AuditStore:
    """Writer for access and audit log rows.

    Usage:
        store = AuditStore("sqlite:///tenant_iam.db")
        store.write(AuditLogEntry(trace_id="...", domain="auth", action="login", function="Login", success=True))
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        _metadata.create_all(self.engine)

    def write(self, entry: AccessLogEntry | AuditLogEntry) -> None:
        """Dispatch on entry type. Used as the LogDispatcher writer callback."""
        if isinstance(entry, AccessLogEntry):
            self.save_access(entry)
        elif isinstance(entry, AuditLogEntry):
            self.save_audit(entry)
        else:
            raise TypeError(f"unsupported log entry: {type(entry).__name__}")

    def save_access(self, entry: AccessLogEntry) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _access_log.insert().values(
                    tenant_uuid=_str_or_none(entry.tenant_uuid),
                    user_uuid=_str_or_none(entry.user_uuid),
                    identifier=entry.identifier,
                    trace_id=entry.trace_id,
                    method=entry.method,
                    path=entry.path,
                    host=entry.host,
                    status_code=entry.status_code,
                    ip=entry.ip,
                    user_agent=entry.user_agent,
                    referer=entry.referer,
                    content_type=entry.content_type,
                    language=entry.language,
                    request_time=_naive_utc(entry.request_time),
                    latency_ms=entry.latency_ms,
                    created_at=_naive_utc(datetime.now(timezone.utc)),
                )
            )
            conn.commit()

    def save_audit(self, entry: AuditLogEntry) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _audit_log.insert().values(
                    tenant_uuid=_str_or_none(entry.tenant_uuid),
                    user_uuid=_str_or_none(entry.user_uuid),
                    identifier=entry.identifier,
                    trace_id=entry.trace_id,
                    domain=entry.domain,
                    action=entry.action,
                    function=entry.function,
                    success=entry.success,
                    input_data=entry.input_data,
                    output_data=entry.output_data,
                    created_at=_naive_utc(datetime.now(timezone.utc)),
                )
            )
            conn.commit()

    def list_audit(self, limit: int = 100) -> list[dict]:
        """Most recent audit rows first, as plain dicts."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(_audit_log).order_by(_audit_log.c.id.desc()).limit(limit)).fetchall()
        return [dict(r._mapping) for r in rows]

    def list_access(self, limit: int = 100) -> list[dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_access_log).order_by(_access_log.c.id.desc()).limit(limit)).fetchall()
        return [dict(r._mapping) for r in rows]

    def close(self) -> None:
        self.engine.dispose()
