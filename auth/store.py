"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper.
IdentityStore is the repository; _row_to_tenant and _row_to_user are the
mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness (tenant.document, users.email, users_access_tokens.token) is
  enforced by the database. The store lets sqlalchemy.exc.IntegrityError
  propagate; services translate it into a ConflictError with a
  domain-specific message.

Timestamps are stored as naive UTC DateTime values and handed back to
callers as timezone-aware UTC datetimes.

Emails go through normalize_email() on every write and lookup, the same
rule auth/otp.py applies to its keys.

Layer rule: no imports from api/, tenancy/, audit/, or mailer/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import AccessToken, Role, Tenant, User, normalize_email

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_tenants = Table(
    "tenant",
    _metadata,
    Column("uuid", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("document", String(64), nullable=False, unique=True),
    Column("live", Boolean, nullable=False, server_default="1"),
    Column("create_at", DateTime, nullable=False),
    Column("update_at", DateTime, nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("uuid", String(36), primary_key=True),
    Column("tenant_uuid", String(36), ForeignKey("tenant.uuid", ondelete="SET NULL")),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False),
    Column("live", Boolean, nullable=False, server_default="1"),
    Column("create_at", DateTime, nullable=False),
    Column("update_at", DateTime, nullable=False),
)

_tokens = Table(
    "users_access_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_uuid", String(36), ForeignKey("users.uuid", ondelete="CASCADE")),
    Column("token", Text, nullable=False, unique=True),
    Column("expire_date", DateTime, nullable=False),
    Column("revoked_at", DateTime),
    Column("create_at", DateTime, nullable=False),
)

_TENANT_FIELDS = {"name", "document", "live"}
_USER_FIELDS = {"tenant_uuid", "name", "email", "password_hash", "role", "live"}


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign key enforcement on every new connection.

    SQLite PRAGMAs are per-connection; pooled connections do not inherit them.
    Without foreign_keys=ON the SET NULL / CASCADE rules above are ignored.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _uuid_or_none(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


def _offset(page: int, size: int) -> int:
    return (page - 1) * size


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Tenant, User and AccessToken entities.

    Usage:
        store = IdentityStore("sqlite:///tenant_iam.db")
        tenant = store.create_tenant("Acme", "123")
        user = store.find_user_by_email("admin@acme.io")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def table_names(self) -> list[str]:
        """Return the names of every table in the connected database, sorted."""
        return sorted(inspect(self.engine).get_table_names())

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(self, name: str, document: str, live: bool = True) -> Tenant:
        """Insert a tenant with a freshly generated uuid.

        Raises sqlalchemy.exc.IntegrityError if the document already exists.
        """
        now = _to_db(_utc_now())
        tenant_uuid = uuid.uuid4()
        with self.engine.connect() as conn:
            conn.execute(
                _tenants.insert().values(
                    uuid=str(tenant_uuid),
                    name=name,
                    document=document,
                    live=live,
                    create_at=now,
                    update_at=now,
                )
            )
            conn.commit()
        return Tenant(
            uuid=tenant_uuid, name=name, document=document, live=live, create_at=_from_db(now), update_at=_from_db(now)
        )

    def find_tenant(self, tenant_uuid: uuid.UUID | None = None, document: str | None = None) -> Tenant | None:
        """Look up a tenant by uuid, or by document when no uuid is given."""
        if tenant_uuid is not None:
            clause = _tenants.c.uuid == str(tenant_uuid)
        elif document:
            clause = _tenants.c.document == document
        else:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_tenants.select().where(clause)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def list_tenants(self, page: int, size: int) -> list[Tenant]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tenants.select().order_by(_tenants.c.create_at, _tenants.c.name).limit(size).offset(_offset(page, size))
            ).fetchall()
        return [_row_to_tenant(r) for r in rows]

    def count_tenants(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_tenants)).scalar() or 0

    def update_tenant(self, tenant_uuid: uuid.UUID, **fields) -> bool:
        """Update mutable tenant fields (name, document, live).

        Returns True if a row was updated. Unknown field names raise ValueError.
        Raises sqlalchemy.exc.IntegrityError on a duplicate document.
        """
        unknown = set(fields) - _TENANT_FIELDS
        if unknown:
            raise ValueError(f"Unknown tenant fields: {unknown!r}")
        fields["update_at"] = _to_db(_utc_now())
        with self.engine.connect() as conn:
            result = conn.execute(_tenants.update().where(_tenants.c.uuid == str(tenant_uuid)).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_tenant(self, tenant_uuid: uuid.UUID) -> bool:
        """Delete a tenant. Its users keep existing with tenant_uuid set to NULL."""
        with self.engine.connect() as conn:
            result = conn.execute(_tenants.delete().where(_tenants.c.uuid == str(tenant_uuid)))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        role: Role,
        tenant_uuid: uuid.UUID | None = None,
        live: bool = True,
    ) -> User:
        """Insert a user with a freshly generated uuid.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _to_db(_utc_now())
        user_uuid = uuid.uuid4()
        email = normalize_email(email)
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    uuid=str(user_uuid),
                    tenant_uuid=str(tenant_uuid) if tenant_uuid else None,
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    role=role.value,
                    live=live,
                    create_at=now,
                    update_at=now,
                )
            )
            conn.commit()
        return User(
            uuid=user_uuid,
            name=name,
            email=email,
            password_hash=password_hash,
            role=role,
            tenant_uuid=tenant_uuid,
            live=live,
            create_at=_from_db(now),
            update_at=_from_db(now),
        )

    def find_user_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case and surrounding whitespace. Returns None if not found."""
        email = normalize_email(email)
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_user_by_id(self, user_uuid: uuid.UUID) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.uuid == str(user_uuid))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, page: int, size: int) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().order_by(_users.c.create_at, _users.c.email).limit(size).offset(_offset(page, size))
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_users_by_tenant(self, tenant_uuid: uuid.UUID, page: int, size: int) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.tenant_uuid == str(tenant_uuid))
                .order_by(_users.c.create_at, _users.c.email)
                .limit(size)
                .offset(_offset(page, size))
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def update_user(self, user_uuid: uuid.UUID, **fields) -> bool:
        """Update mutable user fields.

        Accepted fields: tenant_uuid, name, email, password_hash, role, live.
        role may be passed as a Role; tenant_uuid as a UUID or None.

        Returns True if a row was updated, False if user_uuid was not found.
        Raises sqlalchemy.exc.IntegrityError on a duplicate email.
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if isinstance(fields.get("role"), Role):
            fields["role"] = fields["role"].value
        if "tenant_uuid" in fields and fields["tenant_uuid"] is not None:
            fields["tenant_uuid"] = str(fields["tenant_uuid"])
        if fields.get("email"):
            fields["email"] = normalize_email(fields["email"])
        fields["update_at"] = _to_db(_utc_now())
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.uuid == str(user_uuid)).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_uuid: uuid.UUID) -> bool:
        """Delete a user. Its access tokens go with it (ON DELETE CASCADE)."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.uuid == str(user_uuid)))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, user_uuid: uuid.UUID, token: str, expiry: datetime) -> AccessToken:
        """Persist an issued token.

        Raises sqlalchemy.exc.IntegrityError if the token string already exists.
        """
        now = _to_db(_utc_now())
        with self.engine.connect() as conn:
            conn.execute(
                _tokens.insert().values(
                    user_uuid=str(user_uuid),
                    token=token,
                    expire_date=_to_db(expiry),
                    create_at=now,
                )
            )
            conn.commit()
        return AccessToken(token=token, expiry=expiry, user_uuid=user_uuid, create_at=_from_db(now))

    def expire_access_token_by_value(self, token: str, now: datetime) -> bool:
        """Soft-revoke one token. Returns False if no row matched."""
        stamp = _to_db(now)
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.update().where(_tokens.c.token == token).values(expire_date=stamp, revoked_at=stamp)
            )
            conn.commit()
        return result.rowcount > 0

    def expire_all_non_expired_tokens_for_user(self, user_uuid: uuid.UUID, now: datetime) -> int:
        """Soft-revoke every token of user_uuid still live at `now`. Returns rows touched."""
        stamp = _to_db(now)
        with self.engine.connect() as conn:
            result = conn.execute(
                _tokens.update()
                .where(
                    (_tokens.c.user_uuid == str(user_uuid))
                    & (_tokens.c.expire_date > stamp)
                    & (_tokens.c.revoked_at.is_(None))
                )
                .values(expire_date=stamp, revoked_at=stamp)
            )
            conn.commit()
        return result.rowcount

    def find_login_by_token(self, token: str) -> tuple[AccessToken, User | None] | None:
        """Load a token row with its user and the user's tenant in one query.

        Returns None when the token is unknown. The user slot is None when the
        row no longer references a user. Both joins are outer joins so a
        tenantless system admin still resolves.
        """
        query = (
            select(
                _tokens.c.token,
                _tokens.c.user_uuid,
                _tokens.c.expire_date,
                _tokens.c.revoked_at,
                _tokens.c.create_at.label("token_create_at"),
                _users.c.uuid.label("u_uuid"),
                _users.c.tenant_uuid.label("u_tenant_uuid"),
                _users.c.name.label("u_name"),
                _users.c.email.label("u_email"),
                _users.c.password_hash.label("u_password_hash"),
                _users.c.role.label("u_role"),
                _users.c.live.label("u_live"),
                _users.c.create_at.label("u_create_at"),
                _users.c.update_at.label("u_update_at"),
                _tenants.c.uuid.label("t_uuid"),
                _tenants.c.name.label("t_name"),
                _tenants.c.document.label("t_document"),
                _tenants.c.live.label("t_live"),
                _tenants.c.create_at.label("t_create_at"),
                _tenants.c.update_at.label("t_update_at"),
            )
            .select_from(
                _tokens.outerjoin(_users, _tokens.c.user_uuid == _users.c.uuid).outerjoin(
                    _tenants, _users.c.tenant_uuid == _tenants.c.uuid
                )
            )
            .where(_tokens.c.token == token)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None

        access_token = AccessToken(
            token=row.token,
            expiry=_from_db(row.expire_date),
            user_uuid=_uuid_or_none(row.user_uuid),
            revoked_at=_from_db(row.revoked_at),
            create_at=_from_db(row.token_create_at),
        )
        if row.u_uuid is None:
            return access_token, None

        user = User(
            uuid=uuid.UUID(row.u_uuid),
            name=row.u_name,
            email=row.u_email,
            password_hash=row.u_password_hash,
            role=Role(row.u_role),
            tenant_uuid=_uuid_or_none(row.u_tenant_uuid),
            live=bool(row.u_live),
            create_at=_from_db(row.u_create_at),
            update_at=_from_db(row.u_update_at),
        )
        if row.t_uuid is not None:
            user.tenant = Tenant(
                uuid=uuid.UUID(row.t_uuid),
                name=row.t_name,
                document=row.t_document,
                live=bool(row.t_live),
                create_at=_from_db(row.t_create_at),
                update_at=_from_db(row.t_update_at),
            )
        return access_token, user

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        uuid=uuid.UUID(row.uuid),
        name=row.name,
        document=row.document,
        live=bool(row.live),
        create_at=_from_db(row.create_at),
        update_at=_from_db(row.update_at),
    )


def _row_to_user(row) -> User:
    return User(
        uuid=uuid.UUID(row.uuid),
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        tenant_uuid=_uuid_or_none(row.tenant_uuid),
        live=bool(row.live),
        create_at=_from_db(row.create_at),
        update_at=_from_db(row.update_at),
    )
