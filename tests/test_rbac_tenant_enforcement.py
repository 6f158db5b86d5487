from app.core.permissions import Permission
from app.models.product import Product
from app.models.user import User
from tests.fixtures_data import PRODUCT_PAYLOAD, make_product, make_session_headers, make_tenant, make_user


def test_missing_or_unknown_token_returns_401(client, tenant_a):
    assert client.get("/api/products").status_code == 401

    response = client.get("/api/products", headers={"Authorization": "Bearer not-a-session"})

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Authentication required"


def test_other_tenant_record_returns_404(client, db, tenant_b, headers_a):
    foreign = make_product(db, tenant_b, "B-1")

    response = client.get(f"/api/products/{foreign.id}", headers=headers_a)

    assert response.status_code == 404
    assert response.json()["message"] == "Product not found"


def test_list_is_limited_to_session_tenant(client, db, tenant_a, tenant_b, headers_a):
    make_product(db, tenant_a, "A-1")
    make_product(db, tenant_b, "B-1")

    body = client.get("/api/products", headers=headers_a).json()

    assert [item["sku"] for item in body["data"]] == ["A-1"]
    assert body["tenant"] == {"id": tenant_a.id, "name": "Acme Supplies", "code": "acme"}
    assert body["meta"]["total"] == 1


def test_header_for_another_tenant_is_forbidden(client, tenant_b, headers_a):
    response = client.get("/api/products", headers={**headers_a, "X-Tenant-ID": str(tenant_b.id)})

    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"


def test_user_of_suspended_tenant_is_rejected(client, db):
    frozen = make_tenant(db, "frozen", "Frozen Goods", status="suspended")
    user = make_user(db, frozen, "clerk@frozen.example.com", role="tenant_admin")

    response = client.get("/api/products", headers=make_session_headers(db, user))

    assert response.status_code == 403
    assert response.json()["message"] == "Tenant not found or inactive"


def test_super_admin_without_tenant_gets_400(client, super_headers):
    response = client.get("/api/products", headers=super_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Tenant context required"


def test_super_admin_can_select_tenant_by_header(client, db, tenant_b, super_headers):
    make_product(db, tenant_b, "B-1")

    body = client.get("/api/products", headers={**super_headers, "X-Tenant-ID": str(tenant_b.id)}).json()

    assert [item["sku"] for item in body["data"]] == ["B-1"]


def test_super_admin_all_tenants_override_reads_every_tenant(client, db, tenant_a, tenant_b, super_headers):
    make_product(db, tenant_a, "A-1")
    make_product(db, tenant_b, "B-1")

    body = client.get("/api/products", headers={**super_headers, "X-All-Tenants": "true"}).json()

    assert sorted(item["sku"] for item in body["data"]) == ["A-1", "B-1"]
    assert body["tenant"] is None


def test_all_tenants_override_is_refused_for_tenant_users(client, headers_a):
    response = client.get("/api/products", headers={**headers_a, "X-All-Tenants": "1"})

    assert response.status_code == 403


def test_all_tenants_override_is_read_only(client, super_headers):
    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers={**super_headers, "X-All-Tenants": "1"})

    assert response.status_code == 400


def test_missing_permission_returns_403(client, db, tenant_a):
    clerk = make_user(db, tenant_a, "clerk@acme.example.com", role="employee")

    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers=make_session_headers(db, clerk))

    assert response.status_code == 403
    assert response.json()["message"] == "Insufficient permissions"


def test_direct_grant_extends_role_bundle(client, db, tenant_a):
    clerk = make_user(
        db,
        tenant_a,
        "clerk@acme.example.com",
        role="employee",
        permissions=[Permission.PRODUCTS_CREATE.value],
    )

    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers=make_session_headers(db, clerk))

    assert response.status_code == 201
    assert response.json()["data"]["sku"] == "DRL-100"


def test_other_tenant_record_cannot_be_updated_or_deleted(client, db, tenant_b, headers_a):
    foreign = make_product(db, tenant_b, "B-1", name="Globex Saw")

    updated = client.put(f"/api/products/{foreign.id}", json={"name": "Taken over"}, headers=headers_a)
    deleted = client.delete(f"/api/products/{foreign.id}", headers=headers_a)

    assert updated.status_code == 404
    assert deleted.status_code == 404
    db.expire_all()
    assert db.query(Product).filter(Product.id == foreign.id).one().name == "Globex Saw"


def test_tenant_header_scopes_even_super_admin_lookups(client, db, tenant_a, tenant_b, super_headers):
    product_a = make_product(db, tenant_a, "A-1")

    response = client.get(f"/api/products/{product_a.id}", headers={**super_headers, "X-Tenant-ID": str(tenant_b.id)})

    assert response.status_code == 404


def test_repeated_reads_return_identical_data(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")

    first = client.get(f"/api/products/{product.id}", headers=headers_a).json()["data"]
    second = client.get(f"/api/products/{product.id}", headers=headers_a).json()["data"]
    listing = client.get("/api/products", headers=headers_a).json()
    listing_again = client.get("/api/products", headers=headers_a).json()

    assert first == second
    assert listing["data"] == listing_again["data"]
    assert listing["meta"] == listing_again["meta"]


def test_super_admin_created_under_tenant_header_has_no_tenant(client, db, tenant_a, super_headers):
    response = client.post(
        "/api/users",
        json={"full_name": "Second Root", "email": "root2@example.com", "password": "secret123", "role": "super_admin"},
        headers={**super_headers, "X-Tenant-ID": str(tenant_a.id)},
    )

    assert response.status_code == 201
    assert db.query(User).filter(User.email == "root2@example.com").one().tenant_id is None


def test_tenant_admin_cannot_create_super_admin(client, headers_a):
    response = client.post(
        "/api/users",
        json={"full_name": "Sneaky", "email": "sneaky@example.com", "password": "secret123", "role": "super_admin"},
        headers=headers_a,
    )

    assert response.status_code == 403
