from app.models.audit_log import AuditLog
from app.models.inventory import InventoryMovement
from app.models.product import Product
from app.models.warehouse import Warehouse
from tests.fixtures_data import make_product


def _warehouses(db, tenant, *, capacity=None):
    main = Warehouse(tenant_id=tenant.id, name="Main", code="WH0001", address="1 Dock Road", capacity=capacity)
    overflow = Warehouse(tenant_id=tenant.id, name="Overflow", code="WH0002", address="9 Quay Street")
    db.add_all([main, overflow])
    db.commit()
    return main, overflow


def _transfer(client, headers, source, destination, *lines):
    return client.post(
        f"/api/warehouses/{source.id}/transfer/{destination.id}",
        json={"transfers": [{"product_id": product.id, "quantity": quantity} for product, quantity in lines]},
        headers=headers,
    )


def test_full_transfer_rehomes_product_and_keeps_stock(client, db, tenant_a, headers_a):
    main, overflow = _warehouses(db, tenant_a)
    product = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=main.id)

    response = _transfer(client, headers_a, main, overflow, (product, 5))

    assert response.status_code == 200
    assert response.json()["data"]["transferred_items"][0]["warehouse_id"] == overflow.id
    db.expire_all()
    stored = db.query(Product).filter(Product.id == product.id).one()
    assert stored.stock_quantity == 5
    assert stored.warehouse_id == overflow.id
    assert stored.status == "active"
    movements = db.query(InventoryMovement).order_by(InventoryMovement.id.asc()).all()
    assert [(m.movement_type, m.quantity, m.warehouse_id) for m in movements] == [
        ("transfer", -5, main.id),
        ("transfer", 5, overflow.id),
    ]
    assert db.query(AuditLog).filter(AuditLog.action == "warehouse_transfer").count() == 1


def test_partial_transfer_leaves_product_in_source(client, db, tenant_a, headers_a):
    main, overflow = _warehouses(db, tenant_a)
    product = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=main.id)

    response = _transfer(client, headers_a, main, overflow, (product, 2))

    assert response.status_code == 200
    db.expire_all()
    assert db.query(Product).filter(Product.id == product.id).one().warehouse_id == main.id


def test_transfer_with_one_bad_line_rolls_back(client, db, tenant_a, headers_a):
    main, overflow = _warehouses(db, tenant_a)
    first = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=main.id)
    second = make_product(db, tenant_a, "A-2", stock=1, warehouse_id=main.id)

    response = _transfer(client, headers_a, main, overflow, (first, 5), (second, 3))

    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient stock for product A-2"
    db.expire_all()
    assert db.query(Product).filter(Product.id == first.id).one().warehouse_id == main.id
    assert db.query(InventoryMovement).count() == 0


def test_transfer_rejects_product_outside_source(client, db, tenant_a, headers_a):
    main, overflow = _warehouses(db, tenant_a)
    product = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=overflow.id)

    response = _transfer(client, headers_a, main, overflow, (product, 1))

    assert response.status_code == 400
    assert response.json()["message"] == "Product A-1 not found in source warehouse"


def test_transfer_to_same_warehouse_is_rejected(client, db, tenant_a, headers_a):
    main, _ = _warehouses(db, tenant_a)
    product = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=main.id)

    response = _transfer(client, headers_a, main, main, (product, 1))

    assert response.status_code == 400
    assert response.json()["message"] == "Source and destination warehouses must differ"


def test_transfer_into_foreign_warehouse_is_404(client, db, tenant_a, tenant_b, headers_a):
    main, _ = _warehouses(db, tenant_a)
    _, foreign = _warehouses(db, tenant_b)
    product = make_product(db, tenant_a, "A-1", stock=5, warehouse_id=main.id)

    response = _transfer(client, headers_a, main, foreign, (product, 1))

    assert response.status_code == 404
    assert response.json()["message"] == "Destination warehouse not found"


def test_capacity_analysis_flags_high_utilization(client, db, tenant_a, headers_a):
    main, _ = _warehouses(db, tenant_a, capacity=100)
    make_product(db, tenant_a, "A-1", stock=60, warehouse_id=main.id)
    make_product(db, tenant_a, "A-2", stock=25, warehouse_id=main.id)

    data = client.get(f"/api/warehouses/{main.id}/capacity", headers=headers_a).json()["data"]

    assert data["utilization_percentage"] == 85.0
    assert data["status"] == "high"
    assert data["available_capacity"] == 15
    assert [line["sku"] for line in data["product_breakdown"]] == ["A-1", "A-2"]


def test_warehouse_stats_count_only_own_tenant(client, db, tenant_a, tenant_b, headers_a):
    main, _ = _warehouses(db, tenant_a, capacity=10)
    _warehouses(db, tenant_b)
    make_product(db, tenant_a, "A-1", stock=9, warehouse_id=main.id)

    data = client.get("/api/warehouses/stats", headers=headers_a).json()["data"]

    assert data["total_warehouses"] == 2
    assert data["warehouses_by_type"] == {"main": 2}
    assert data["high_utilization_warehouses"] == 1
    assert data["products_stored"] == 9
