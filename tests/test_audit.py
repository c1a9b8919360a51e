"""
tests/test_audit.py -- Tests for the audit/ package and the audit trail of the API.

Covers:
  - redact() masks secrets at any depth; serialize() output
  - LogDispatcher: delivery, drop-on-full with an exact count, writer failures, close() drains
  - AuditStore round trip
  - API: audit rows for success and failure, access rows for authenticated calls
"""

from __future__ import annotations

import json
import threading
import uuid

from audit.models import AccessLogEntry, AuditLogEntry, redact, serialize
from audit.queue import LogDispatcher
from audit.store import AuditStore

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


def test_redact_masks_nested_secrets():
    data = {"email": "a@b.c", "Password": "x", "nested": {"otp": "123456", "items": [{"token": "t", "ok": 1}]}}
    assert redact(data) == {
        "email": "a@b.c",
        "Password": "***",
        "nested": {"otp": "***", "items": [{"token": "***", "ok": 1}]},
    }


def test_redact_leaves_input_untouched():
    data = {"password": "x"}
    redact(data)
    assert data == {"password": "x"}


def test_serialize():
    assert serialize(None) == ""
    assert json.loads(serialize({"b": 1, "a": uuid.UUID(int=1)})) == {"a": str(uuid.UUID(int=1)), "b": 1}


# ---------------------------------------------------------------------------
# LogDispatcher
# ---------------------------------------------------------------------------


def test_dispatcher_delivers_in_order():
    written = []
    dispatcher = LogDispatcher(written.append, maxsize=10)
    for i in range(5):
        assert dispatcher.submit(i)
    dispatcher.flush()
    assert written == [0, 1, 2, 3, 4]
    dispatcher.close()


def test_dispatcher_drops_when_full():
    release = threading.Event()
    started = threading.Event()

    def slow_writer(entry):
        started.set()
        release.wait(5)

    dispatcher = LogDispatcher(slow_writer, maxsize=1)
    assert dispatcher.submit("first")
    started.wait(5)
    assert dispatcher.submit("second")
    assert dispatcher.submit("third") is False
    assert dispatcher.dropped == 1

    release.set()
    dispatcher.close()


def test_drop_counter_is_exact_under_concurrency():
    release = threading.Event()
    started = threading.Event()

    def stuck_writer(entry):
        started.set()
        release.wait(5)

    dispatcher = LogDispatcher(stuck_writer, maxsize=1)
    dispatcher.submit("first")
    started.wait(5)
    dispatcher.submit("fills-the-queue")

    barrier = threading.Barrier(8)

    def flood():
        barrier.wait()
        for _ in range(200):
            dispatcher.submit("extra")

    threads = [threading.Thread(target=flood) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert dispatcher.dropped == 1600
    release.set()
    dispatcher.close()


def test_dispatcher_survives_writer_errors():
    written = []

    def flaky(entry):
        if entry == "boom":
            raise RuntimeError("disk on fire")
        written.append(entry)

    dispatcher = LogDispatcher(flaky)
    dispatcher.submit("boom")
    dispatcher.submit("after")
    dispatcher.flush()
    assert written == ["after"]
    dispatcher.close()


def test_dispatcher_close_drains_and_refuses_new_entries():
    written = []
    dispatcher = LogDispatcher(written.append)
    for i in range(50):
        dispatcher.submit(i)
    dispatcher.close()
    assert written == list(range(50))
    assert dispatcher.submit("late") is False


def test_disabled_dispatcher_accepts_nothing():
    written = []
    dispatcher = LogDispatcher(written.append, enabled=False)
    assert dispatcher.submit("x") is False
    dispatcher.flush()
    dispatcher.close()
    assert written == []


# ---------------------------------------------------------------------------
# AuditStore
# ---------------------------------------------------------------------------


def test_audit_store_round_trip():
    store = AuditStore(f"sqlite:///file:test_audit_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    user_id = uuid.uuid4()
    store.write(
        AuditLogEntry(
            trace_id="t1", domain="tenant", action="create", function="Create", success=True,
            user_uuid=user_id, identifier="root@iam.test", input_data='{"name": "Acme"}',
        )
    )
    store.write(AccessLogEntry(trace_id="t2", method="GET", path="/x", host="h", status_code=200, ip="1.2.3.4"))

    audit = store.list_audit()
    assert len(audit) == 1
    assert audit[0]["user_uuid"] == str(user_id)
    assert audit[0]["success"] is True
    access = store.list_access()
    assert access[0]["path"] == "/x"
    assert access[0]["tenant_uuid"] is None
    store.close()


# ---------------------------------------------------------------------------
# Through the API
# ---------------------------------------------------------------------------


def test_login_is_audited_without_the_password(env):
    env.client.post("/api/v1/auth/login", json={"email": "andy@a.test", "password": env.password})
    env.ctx.log_dispatcher.flush()

    rows = [r for r in env.ctx.audit_store.list_audit() if r["action"] == "login"]
    assert len(rows) == 1
    row = rows[0]
    assert row["success"] is True
    assert row["user_uuid"] == str(env.users["tu"].uuid)
    assert env.password not in row["input_data"]
    assert json.loads(row["input_data"])["password"] == "***"
    assert json.loads(row["output_data"])["token"] == "***"


def test_failed_operation_is_audited(env):
    env.client.post("/api/v1/tenant/create", json={"name": "Dup", "document": "doc-a"}, headers=env.auth("sa"))
    env.ctx.log_dispatcher.flush()

    row = env.ctx.audit_store.list_audit()[0]
    assert (row["domain"], row["action"], row["success"]) == ("tenant", "create", False)
    assert json.loads(row["output_data"]) == {"error": "document already exists"}
    assert row["identifier"] == "root@iam.test"


def test_authenticated_requests_reach_the_access_log(env):
    env.client.get(
        "/api/v1/auth/healthcheck",
        headers={**env.auth("tu"), "X-Request-ID": "trace-access", "User-Agent": "pytest"},
    )
    env.client.get("/api/v1/health")
    env.ctx.log_dispatcher.flush()

    rows = env.ctx.audit_store.list_access()
    assert len(rows) == 1
    row = rows[0]
    assert row["trace_id"] == "trace-access"
    assert row["path"] == "/api/v1/auth/healthcheck"
    assert row["status_code"] == 200
    assert row["user_uuid"] == str(env.users["tu"].uuid)
    assert row["tenant_uuid"] == str(env.tenant_a.uuid)
    assert row["user_agent"] == "pytest"
