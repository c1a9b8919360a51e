"""
tests/test_user_routes.py -- Integration tests for /api/v1/user*.

Covers:
  - create: by tenant uuid or document, tenantless system admins, conflicts
  - tenant admins create inside their own tenant and cannot mint system admins
  - read: self via /user, "undefined" and "null"; cross-tenant reads refused
  - list: system admins see everything or one tenant, tenant admins their own
  - update: self-service, role escalation refused, email conflicts
  - delete: admins only, scoped to tenant
"""

from __future__ import annotations

import pytest


def _new_user(email: str, role: str = "TENANT_USER") -> dict:
    return {"name": "New Person", "email": email, "password": "long-enough-pw", "role": role}


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("identifier", ["doc-a", "uuid"])
def test_system_admin_creates_user_in_tenant(env, identifier):
    if identifier == "uuid":
        identifier = str(env.tenant_a.uuid)
    resp = env.client.post(f"/api/v1/user/{identifier}", json=_new_user("new@a.test"), headers=env.auth("sa"))
    assert resp.status_code == 201
    data = resp.json()
    assert data["email"] == "new@a.test"
    assert data["tenant_uuid"] == str(env.tenant_a.uuid)
    assert data["role"] == "TENANT_USER"
    assert "password" not in data and "password_hash" not in data


def test_created_user_can_login(env):
    env.client.post("/api/v1/user/doc-a", json=_new_user("new@a.test"), headers=env.auth("sa"))
    resp = env.client.post("/api/v1/auth/login", json={"email": "new@a.test", "password": "long-enough-pw"})
    assert resp.status_code == 200


def test_system_admin_creates_tenantless_system_admin(env):
    resp = env.client.post(
        "/api/v1/user/null", json=_new_user("root2@iam.test", "SYSTEM_ADMIN"), headers=env.auth("sa")
    )
    assert resp.status_code == 201
    assert resp.json()["tenant_uuid"] is None


def test_tenant_user_needs_a_tenant(env):
    resp = env.client.post("/api/v1/user/undefined", json=_new_user("x@a.test"), headers=env.auth("sa"))
    assert resp.status_code == 400


def test_create_user_unknown_tenant(env):
    resp = env.client.post("/api/v1/user/no-such-doc", json=_new_user("x@a.test"), headers=env.auth("sa"))
    assert resp.status_code == 404
    assert resp.json()["message"] == "tenant not found"


def test_create_user_duplicate_email(env):
    resp = env.client.post("/api/v1/user/doc-a", json=_new_user("andy@a.test"), headers=env.auth("sa"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "email already exists"


def test_created_email_is_stored_lowercase(env):
    resp = env.client.post("/api/v1/user/doc-a", json=_new_user("Mixed.Case@A.Test"), headers=env.auth("sa"))
    assert resp.json()["email"] == "mixed.case@a.test"
    assert env.client.get("/api/v1/user/MIXED.CASE@a.test", headers=env.auth("sa")).status_code == 200


def test_tenant_admin_creates_in_own_tenant(env):
    resp = env.client.post("/api/v1/user/doc-b", json=_new_user("sneaky@b.test"), headers=env.auth("ta"))
    assert resp.status_code == 201
    assert resp.json()["tenant_uuid"] == str(env.tenant_a.uuid)


def test_tenant_admin_cannot_create_system_admin(env):
    resp = env.client.post("/api/v1/user/doc-a", json=_new_user("evil@a.test", "SYSTEM_ADMIN"), headers=env.auth("ta"))
    assert resp.status_code == 400
    assert env.ctx.identity_store.find_user_by_email("evil@a.test") is None


def test_tenant_user_cannot_create_users(env):
    resp = env.client.post("/api/v1/user/doc-a", json=_new_user("x@a.test"), headers=env.auth("tu"))
    assert resp.status_code == 403


def test_create_user_validation(env):
    body = {"name": "N", "email": "x@a.test", "password": "short", "role": "TENANT_USER"}
    resp = env.client.post("/api/v1/user/doc-a", json=body, headers=env.auth("sa"))
    assert resp.status_code == 400

    body = {**_new_user("x@a.test"), "role": "SUPERUSER"}
    resp = env.client.post("/api/v1/user/doc-a", json=body, headers=env.auth("sa"))
    assert resp.status_code == 400
    assert resp.json()["causes"][0]["field"] == "role"


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("path", ["/api/v1/user", "/api/v1/user/undefined", "/api/v1/user/null"])
def test_read_self(env, path):
    resp = env.client.get(path, headers=env.auth("tu"))
    assert resp.status_code == 200
    assert resp.json()["uuid"] == str(env.users["tu"].uuid)


def test_tenant_admin_reads_own_tenant_users(env):
    by_email = env.client.get("/api/v1/user/andy@a.test", headers=env.auth("ta"))
    assert by_email.status_code == 200
    by_uuid = env.client.get(f"/api/v1/user/{env.users['tu'].uuid}", headers=env.auth("ta"))
    assert by_uuid.json()["email"] == "andy@a.test"


def test_tenant_admin_cannot_read_other_tenant(env):
    resp = env.client.get("/api/v1/user/bea@b.test", headers=env.auth("ta"))
    assert resp.status_code == 403


def test_tenant_user_cannot_read_others(env):
    resp = env.client.get("/api/v1/user/alice@a.test", headers=env.auth("tu"))
    assert resp.status_code == 403


def test_read_unknown_user(env):
    resp = env.client.get("/api/v1/user/ghost@a.test", headers=env.auth("sa"))
    assert resp.status_code == 404
    assert resp.json()["message"] == "user not found"


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------


def test_system_admin_lists_all_users(env):
    data = env.client.get("/api/v1/user/list", headers=env.auth("sa")).json()
    assert len(data["users"]) == 5
    assert (data["page"], data["size"]) == (1, 10)


def test_system_admin_lists_one_tenant(env):
    data = env.client.get("/api/v1/user/list?tenant_identifier=doc-b", headers=env.auth("sa")).json()
    assert {u["email"] for u in data["users"]} == {"bob@b.test", "bea@b.test"}


def test_tenant_admin_lists_only_own_tenant(env):
    data = env.client.get("/api/v1/user/list?tenant_identifier=doc-b", headers=env.auth("ta")).json()
    assert {u["email"] for u in data["users"]} == {"alice@a.test", "andy@a.test"}


def test_tenant_user_cannot_list(env):
    assert env.client.get("/api/v1/user/list", headers=env.auth("tu")).status_code == 403


def test_list_users_page_size_ceiling(env):
    assert env.client.get("/api/v1/user/list?size=500", headers=env.auth("sa")).status_code == 400


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def test_tenant_user_updates_self_but_not_role(env):
    resp = env.client.patch(
        "/api/v1/user/undefined", json={"name": "Andrew", "role": "SYSTEM_ADMIN"}, headers=env.auth("tu")
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Andrew"
    assert data["role"] == "TENANT_USER"


def test_tenant_user_cannot_update_others(env):
    resp = env.client.patch("/api/v1/user/alice@a.test", json={"name": "Pwned"}, headers=env.auth("tu"))
    assert resp.status_code == 403


def test_tenant_admin_cannot_grant_system_admin(env):
    resp = env.client.patch("/api/v1/user/andy@a.test", json={"role": "SYSTEM_ADMIN"}, headers=env.auth("ta"))
    assert resp.status_code == 403
    assert env.ctx.identity_store.find_user_by_email("andy@a.test").role.value == "TENANT_USER"


def test_tenant_admin_promotes_within_tenant(env):
    resp = env.client.patch("/api/v1/user/andy@a.test", json={"role": "TENANT_ADMIN"}, headers=env.auth("ta"))
    assert resp.status_code == 200
    assert resp.json()["role"] == "TENANT_ADMIN"


def test_update_email_conflict_by_identifier(env):
    resp = env.client.patch("/api/v1/user/andy@a.test", json={"email": "alice@a.test"}, headers=env.auth("ta"))
    assert resp.status_code == 409
    assert resp.json()["message"] == "email already exists"


def test_update_password(env):
    resp = env.client.patch("/api/v1/user/undefined", json={"password": "fresh-password"}, headers=env.auth("tu"))
    assert resp.status_code == 200
    login = env.client.post("/api/v1/auth/login", json={"email": "andy@a.test", "password": "fresh-password"})
    assert login.status_code == 200


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def test_tenant_user_cannot_delete(env):
    resp = env.client.delete("/api/v1/user/alice@a.test", headers=env.auth("tu"))
    assert resp.status_code == 403


def test_tenant_admin_deletes_own_tenant_user(env):
    assert env.client.delete("/api/v1/user/andy@a.test", headers=env.auth("ta")).status_code == 204
    assert env.client.get("/api/v1/user/andy@a.test", headers=env.auth("ta")).status_code == 404
    assert env.client.get("/api/v1/auth/healthcheck", headers=env.auth("tu")).status_code == 403


def test_tenant_admin_cannot_delete_other_tenant_user(env):
    resp = env.client.delete("/api/v1/user/bea@b.test", headers=env.auth("ta"))
    assert resp.status_code == 403
    assert env.ctx.identity_store.find_user_by_email("bea@b.test") is not None
