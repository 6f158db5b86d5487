from app.core import cache
from app.models.audit_log import AuditLog
from tests.fixtures_data import PRODUCT_PAYLOAD, make_product


def test_only_super_admin_manages_tenants(client, headers_a):
    response = client.post("/api/tenants", json={"tenant_code": "initech", "company_name": "Initech"}, headers=headers_a)

    assert response.status_code == 403


def test_super_admin_creates_tenant_and_audit_is_attributed_to_it(client, db, super_headers):
    response = client.post(
        "/api/tenants",
        json={"tenant_code": "initech", "company_name": "Initech", "trial_days": 14},
        headers=super_headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "active"
    assert data["is_trial"] is True
    entry = db.query(AuditLog).filter(AuditLog.action == "tenant_created").one()
    assert entry.tenant_id == data["id"]


def test_tenant_code_must_be_unique(client, tenant_a, super_headers):
    response = client.post("/api/tenants", json={"tenant_code": "acme", "company_name": "Acme 2"}, headers=super_headers)

    assert response.status_code == 422
    assert response.json()["errors"] == {"tenant_code": ["The tenant code has already been taken"]}


def test_suspending_a_tenant_locks_out_its_users(client, tenant_a, headers_a, super_headers):
    assert client.get("/api/products", headers=headers_a).status_code == 200

    suspended = client.post(f"/api/tenants/{tenant_a.id}/suspend", json={"reason": "Unpaid"}, headers=super_headers)
    again = client.post(f"/api/tenants/{tenant_a.id}/suspend", headers=super_headers)

    assert suspended.json()["data"]["status"] == "suspended"
    assert again.status_code == 400
    assert client.get("/api/products", headers=headers_a).status_code == 403


def test_plan_limit_blocks_new_products(client, db, tenant_a, headers_a):
    tenant_a.max_products = 1
    db.commit()
    make_product(db, tenant_a, "A-1")

    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers=headers_a)

    assert response.status_code == 403
    assert response.json()["message"] == "Product limit reached for your subscription plan"


def test_deleting_a_tenant_drops_its_dashboard_entries(client, db, tenant_a, headers_a, super_headers):
    tenant_id = tenant_a.id
    make_product(db, tenant_a, "A-1")
    client.get("/api/dashboard/overview", headers=headers_a)
    assert cache.get((tenant_id, "overview")) is not None

    response = client.delete(f"/api/tenants/{tenant_id}", headers=super_headers)

    assert response.status_code == 200
    assert cache.get((tenant_id, "overview")) is None
