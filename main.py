#!/usr/bin/env python3
"""
tenant-iam -- Multi-tenant identity and access management service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py create-admin --name "Root" --email root@example.com
  python main.py check-db

Environment variables (see core/config.py for the full list):
  DATABASE_URL         SQLAlchemy URL (default sqlite:///tenant_iam.db)
  JWT_ACCESS_SECRET    Access token signing secret, at least 32 characters
  JWT_REFRESH_SECRET   Refresh token signing secret, at least 32 characters
  DEBUG                true to auto-generate secrets for local development
  ADMIN_PASSWORD       Password for create-admin when --password is omitted
"""

import argparse
import getpass
import logging
import os
import sys

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import Role
from auth.passwords import CredentialHasher
from auth.store import IdentityStore
from core.config import get_settings

logger = logging.getLogger("tenantiam.cli")


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _read_password(args: argparse.Namespace) -> str:
    if args.password:
        return args.password
    env_password = os.environ.get("ADMIN_PASSWORD")
    if env_password:
        return env_password
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match.")
    return first


def _create_admin(args: argparse.Namespace) -> int:
    """Seed a tenantless SYSTEM_ADMIN so the API has someone to log in as."""
    settings = get_settings()
    password = _read_password(args)
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    hasher = CredentialHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
    store = IdentityStore(settings.database_url)
    try:
        user = store.create_user(
            name=args.name,
            email=args.email,
            password_hash=hasher.hash(password),
            role=Role.SYSTEM_ADMIN,
        )
    except IntegrityError:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  System admin created: {user.email} ({user.uuid})")
    return 0


def _check_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    try:
        store = IdentityStore(settings.database_url)
    except SQLAlchemyError as exc:
        print(f"  [!] Database unavailable: {exc}")
        return 1
    try:
        store.ping()
        tables = store.table_names()
        print(f"  Database reachable. Tables ({len(tables)}): {', '.join(tables)}")
        print(f"  Tenants: {store.count_tenants()}  Users: {store.count_users()}")
    except SQLAlchemyError as exc:
        print(f"  [!] Database check failed: {exc}")
        return 1
    finally:
        store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tenant-iam",
        description="Multi-tenant identity and access management service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 8080
  python main.py create-admin --name Root --email root@example.com
  DATABASE_URL=sqlite:///prod.db python main.py check-db
        """,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    serve.set_defaults(func=_serve)

    admin = sub.add_parser("create-admin", help="Create a system admin user")
    admin.add_argument("--name", required=True, help="Display name")
    admin.add_argument("--email", required=True, help="Login email")
    admin.add_argument(
        "--password",
        help="Password (prefer ADMIN_PASSWORD or the interactive prompt; argv is visible to other users)",
    )
    admin.set_defaults(func=_create_admin)

    check = sub.add_parser("check-db", help="Verify the database is reachable and list its tables")
    check.set_defaults(func=_check_db)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
