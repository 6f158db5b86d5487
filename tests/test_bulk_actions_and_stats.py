from app.models.audit_log import AuditLog
from app.models.category import Category
from app.models.product import Product
from app.models.user import User
from app.models.user_session import UserSession
from tests.fixtures_data import DEFAULT_PASSWORD, make_product, make_session_headers, make_tenant, make_user


def _category(db, tenant, name, code, **extra):
    category = Category(tenant_id=tenant.id, name=name, category_code=code, **extra)
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def test_product_bulk_feature_updates_every_row(client, db, tenant_a, headers_a):
    first = make_product(db, tenant_a, "A-1")
    second = make_product(db, tenant_a, "A-2")

    response = client.post(
        "/api/products/bulk",
        json={"action": "feature", "product_ids": [first.id, second.id]},
        headers=headers_a,
    )

    assert response.status_code == 200
    assert len(response.json()["data"]["results"]) == 2
    db.expire_all()
    assert db.query(Product).filter(Product.is_featured.is_(True)).count() == 2
    assert db.query(AuditLog).filter(AuditLog.action == "bulk_product_action").count() == 1


def test_product_bulk_rejects_foreign_ids_without_changes(client, db, tenant_a, tenant_b, headers_a):
    own = make_product(db, tenant_a, "A-1")
    foreign = make_product(db, tenant_b, "B-1")

    response = client.post(
        "/api/products/bulk",
        json={"action": "deactivate", "product_ids": [own.id, foreign.id]},
        headers=headers_a,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Some products not found or do not belong to tenant"
    db.expire_all()
    assert db.query(Product).filter(Product.id == own.id).one().status == "active"
    assert db.query(Product).filter(Product.id == foreign.id).one().status == "active"


def test_product_bulk_update_category_requires_category(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")

    response = client.post(
        "/api/products/bulk",
        json={"action": "update_category", "product_ids": [product.id]},
        headers=headers_a,
    )

    assert response.status_code == 422


def test_needs_reorder_lists_products_at_reorder_point(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, "A-1", stock=4, reorder_point=5)
    make_product(db, tenant_a, "A-2", stock=10, reorder_point=5)
    make_product(db, tenant_a, "A-3", stock=1)

    body = client.get("/api/products/needs-reorder", headers=headers_a).json()

    assert [item["sku"] for item in body["data"]] == ["A-1"]


def test_category_bulk_delete_skips_categories_in_use(client, db, tenant_a, headers_a):
    used = _category(db, tenant_a, "Tools", "CAT0001")
    empty = _category(db, tenant_a, "Paint", "CAT0002")
    make_product(db, tenant_a, "A-1", category_id=used.id)

    response = client.post(
        "/api/categories/bulk",
        json={"action": "delete", "category_ids": [used.id, empty.id]},
        headers=headers_a,
    )

    assert response.status_code == 200
    assert response.json()["data"]["results"] == [
        "Category Tools skipped (has products or subcategories)",
        "Category Paint deleted",
    ]
    db.expire_all()
    assert [category.name for category in db.query(Category).all()] == ["Tools"]


def test_category_roots_children_and_activation(client, db, tenant_a, headers_a):
    root = _category(db, tenant_a, "Tools", "CAT0001")
    _category(db, tenant_a, "Drills", "CAT0002", parent_id=root.id)
    hidden = _category(db, tenant_a, "Saws", "CAT0003", parent_id=root.id, is_active=False)

    roots = client.get("/api/categories/roots", headers=headers_a).json()["data"]
    children = client.get(f"/api/categories/{root.id}/children", headers=headers_a).json()["data"]
    activated = client.post(f"/api/categories/{hidden.id}/activate", headers=headers_a)
    again = client.post(f"/api/categories/{hidden.id}/activate", headers=headers_a)

    assert [category["name"] for category in roots] == ["Tools"]
    assert [category["name"] for category in children] == ["Drills"]
    assert activated.json()["data"]["is_active"] is True
    assert again.status_code == 400
    assert again.json()["message"] == "Category is already active"


def test_category_stats_rank_most_used(client, db, tenant_a, headers_a):
    tools = _category(db, tenant_a, "Tools", "CAT0001")
    _category(db, tenant_a, "Paint", "CAT0002", parent_id=tools.id)
    make_product(db, tenant_a, "A-1", category_id=tools.id)

    data = client.get("/api/categories/stats", headers=headers_a).json()["data"]

    assert data["total_categories"] == 2
    assert data["root_categories"] == 1
    assert data["empty_categories"] == 1
    assert data["most_used_categories"] == [{"id": tools.id, "name": "Tools", "products_count": 1}]


def test_user_bulk_deactivate_skips_self_and_ends_sessions(client, db, tenant_a, admin_a, headers_a):
    clerk = make_user(db, tenant_a, "clerk@acme.example.com")
    make_session_headers(db, clerk)

    response = client.post(
        "/api/users/bulk",
        json={"action": "deactivate", "user_ids": [admin_a.id, clerk.id]},
        headers=headers_a,
    )

    assert response.status_code == 200
    assert response.json()["data"]["results"] == [
        "User admin@acme.example.com skipped (own account)",
        "User clerk@acme.example.com deactivated",
    ]
    db.expire_all()
    assert db.query(User).filter(User.id == admin_a.id).one().is_active is True
    assert db.query(UserSession).filter(UserSession.user_id == clerk.id, UserSession.is_active.is_(True)).count() == 0


def test_user_bulk_delete_keeps_admin_accounts(client, db, tenant_a, headers_a):
    other_admin = make_user(db, tenant_a, "boss@acme.example.com", role="admin")
    clerk = make_user(db, tenant_a, "clerk@acme.example.com")

    response = client.post(
        "/api/users/bulk",
        json={"action": "delete", "user_ids": [other_admin.id, clerk.id]},
        headers=headers_a,
    )

    assert response.status_code == 200
    db.expire_all()
    assert db.query(User).filter(User.id == other_admin.id).count() == 1
    assert db.query(User).filter(User.id == clerk.id).count() == 0


def test_reset_password_replaces_hash_and_ends_sessions(client, db, tenant_a, headers_a):
    clerk = make_user(db, tenant_a, "clerk@acme.example.com")
    make_session_headers(db, clerk)

    mismatch = client.post(
        f"/api/users/{clerk.id}/reset-password",
        json={"password": "brand-new-pass", "password_confirmation": "something-else"},
        headers=headers_a,
    )
    reset = client.post(
        f"/api/users/{clerk.id}/reset-password",
        json={"password": "brand-new-pass", "password_confirmation": "brand-new-pass"},
        headers=headers_a,
    )
    old_login = client.post("/api/auth/login", json={"email": clerk.email, "password": DEFAULT_PASSWORD})
    new_login = client.post("/api/auth/login", json={"email": clerk.email, "password": "brand-new-pass"})

    assert mismatch.status_code == 422
    assert reset.status_code == 200
    assert old_login.status_code == 401
    assert new_login.status_code == 200
    assert db.query(AuditLog).filter(AuditLog.action == "password_reset").count() == 1


def test_user_stats_group_roles(client, db, tenant_a, headers_a):
    make_user(db, tenant_a, "clerk@acme.example.com")
    make_user(db, tenant_a, "depot@acme.example.com", role="warehouse_manager", is_active=False)

    data = client.get("/api/users/stats", headers=headers_a).json()["data"]

    assert data["total_users"] == 3
    assert data["inactive_users"] == 1
    assert data["admins"] == 1
    assert data["managers"] == 1
    assert data["employees"] == 1


def test_tenant_stats_require_super_admin(client, db, tenant_a, headers_a, super_headers):
    make_tenant(db, "initech", "Initech", status="suspended", subscription_plan="basic")

    denied = client.get("/api/tenants/stats", headers=headers_a)
    data = client.get("/api/tenants/stats", headers=super_headers).json()["data"]

    assert denied.status_code == 403
    assert data["total_tenants"] == 2
    assert data["suspended_tenants"] == 1
    assert data["tenants_by_plan"] == {"trial": 1, "basic": 1}
