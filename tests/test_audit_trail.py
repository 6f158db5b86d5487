from datetime import timedelta
from unittest.mock import patch

import pytest

from app.core.database import utcnow
from app.core.errors import BusinessRuleError
from app.models.audit_log import AuditLog
from app.models.tenant import Tenant
from app.services.audit import cleanup_audit_logs, record_audit
from app.services.tenant_context import RequestContext


def test_record_audit_stores_json_safe_values(db, tenant_a, admin_a):
    ctx = RequestContext(db=db, user=admin_a, tenant=tenant_a)

    entry = record_audit(
        ctx,
        "product_updated",
        table_name="products",
        record_id=7,
        new_values={"updated_at": utcnow().replace(microsecond=0), "price": 12.5},
    )
    db.commit()

    assert entry.tenant_id == tenant_a.id
    assert entry.user_id == admin_a.id
    assert isinstance(entry.new_values["updated_at"], str)


def test_audit_failure_is_swallowed_and_keeps_the_session_usable(db, tenant_a):
    ctx = RequestContext(db=db, tenant=tenant_a)

    with patch("app.services.audit.AuditLog", side_effect=RuntimeError("audit store down")):
        result = record_audit(ctx, "product_created", table_name="products", record_id=1)

    assert result is None
    assert db.query(Tenant).filter(Tenant.id == tenant_a.id).count() == 1


def test_platform_actions_are_logged_without_tenant(db, super_admin):
    entry = record_audit(RequestContext(db=db, user=super_admin), "tenant_created", table_name="tenants")
    db.commit()

    assert entry.tenant_id is None


@pytest.mark.parametrize("days", [29, 366])
def test_cleanup_rejects_retention_outside_bounds(db, tenant_a, days):
    with pytest.raises(BusinessRuleError):
        cleanup_audit_logs(RequestContext(db=db, tenant=tenant_a), days)


def test_cleanup_deletes_only_old_entries_of_the_tenant(db, tenant_a, tenant_b):
    old = utcnow() - timedelta(days=90)
    db.add_all(
        [
            AuditLog(tenant_id=tenant_a.id, action="login", created_at=old),
            AuditLog(tenant_id=tenant_a.id, action="login", created_at=utcnow()),
            AuditLog(tenant_id=tenant_b.id, action="login", created_at=old),
        ]
    )
    db.commit()

    deleted, cutoff = cleanup_audit_logs(RequestContext(db=db, tenant=tenant_a), 30)
    db.commit()

    assert deleted == 1
    assert cutoff < utcnow()
    assert db.query(AuditLog).filter(AuditLog.tenant_id == tenant_b.id).count() == 1


def test_cleanup_endpoint_validates_days(client, headers_a):
    response = client.post("/api/audit-logs/cleanup", json={"days": 10}, headers=headers_a)

    assert response.status_code == 422
    assert "days" in response.json()["errors"]


def test_cleanup_endpoint_reports_and_audits(client, db, tenant_a, headers_a):
    db.add(AuditLog(tenant_id=tenant_a.id, action="login", created_at=utcnow() - timedelta(days=400)))
    db.commit()

    response = client.post("/api/audit-logs/cleanup", json={"days": 365}, headers=headers_a)

    assert response.status_code == 200
    assert response.json()["data"]["deleted_count"] == 1
    assert db.query(AuditLog).filter(AuditLog.action == "audit_logs_cleanup").count() == 1


def test_writes_leave_an_audit_trail(client, db, headers_a):
    category_id = client.post("/api/categories", json={"name": "Fasteners"}, headers=headers_a).json()["data"]["id"]

    trail = client.get(f"/api/audit-logs/trail/categories/{category_id}", headers=headers_a).json()["data"]

    assert [entry["action"] for entry in trail] == ["category_created"]


def test_csv_export(client, db, tenant_a, headers_a):
    db.add(AuditLog(tenant_id=tenant_a.id, action="login", table_name="users", created_at=utcnow()))
    db.commit()

    response = client.get("/api/audit-logs/export", params={"format": "csv"}, headers=headers_a)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    header, *rows = response.text.strip().splitlines()
    assert header.startswith("id,tenant_id,user_id,action")
    assert any(",login," in row for row in rows)
