import json
import logging
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from app.core.logging_setup import JsonFormatter, bind_log_fields, clear_log_fields
from app.models.role import Role
from app.models.user import User
from app.services.admin_bootstrap import upsert_super_admin
from app.services.passwords import verify_password
from tests.fixtures_data import make_user


def test_health_and_request_id_header(monkeypatch):
    from app import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)

    with TestClient(main.app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
    UUID(response.headers["X-Request-ID"])


def test_startup_failure_is_logged_and_raised(monkeypatch, caplog):
    from app import main

    def _broken():
        raise RuntimeError("SQLite is forbidden in production environment")

    monkeypatch.setattr(main, "validate_database_environment", _broken)

    with pytest.raises(RuntimeError):
        main._startup_tasks()

    assert "startup failed" in caplog.text


def test_system_roles_are_seeded(db):
    names = {role.name for role in db.query(Role).filter(Role.is_system_role.is_(True)).all()}

    assert {"super_admin", "tenant_admin", "admin", "employee", "customer"} <= names


def test_bootstrap_creates_then_keeps_super_admin_password(db):
    admin, created = upsert_super_admin(db, email="Root@Stockroom.example.com", name="Root", password="first-pass")
    again, created_again = upsert_super_admin(db, email="root@stockroom.example.com", name="Root", password="second-pass")

    assert created is True
    assert created_again is False
    assert again.id == admin.id
    assert again.tenant_id is None
    assert verify_password("first-pass", again.password_hash)


def test_bootstrap_resets_password_when_asked(db):
    upsert_super_admin(db, email="root@stockroom.example.com", name="Root", password="first-pass")

    admin, _ = upsert_super_admin(
        db,
        email="root@stockroom.example.com",
        name="Root",
        password="second-pass",
        reset_password=True,
    )

    assert verify_password("second-pass", admin.password_hash)


def test_bootstrap_refuses_to_promote_tenant_user(db, tenant_a):
    make_user(db, tenant_a, "owner@acme.example.com", role="tenant_admin")

    with pytest.raises(ValueError):
        upsert_super_admin(db, email="owner@acme.example.com", name="Owner", password="whatever")

    assert db.query(User).filter(User.email == "owner@acme.example.com").one().role == "tenant_admin"


def test_json_formatter_uses_bound_request_fields():
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "password=hunter2 saved", None, None)
    bind_log_fields(request_id="req-1", tenant_id="7")
    try:
        payload = json.loads(JsonFormatter("%(message)s").format(record))
    finally:
        clear_log_fields()

    assert payload["request_id"] == "req-1"
    assert payload["tenant_id"] == "7"
    assert payload["user_id"] is None
    assert payload["message"] == "password=*** saved"


def test_bind_log_fields_rejects_unknown_names():
    with pytest.raises(KeyError):
        bind_log_fields(session_token="abc")
