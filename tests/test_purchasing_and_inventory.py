from app.models.inventory import InventoryMovement
from app.models.product import Product
from app.models.supplier import Supplier
from app.models.warehouse import Warehouse
from tests.fixtures_data import make_product


def _purchase_refs(db, tenant):
    supplier = Supplier(tenant_id=tenant.id, name="Bolt & Nut Ltd")
    warehouse = Warehouse(tenant_id=tenant.id, name="Main", code="WH0001", address="1 Dock Road")
    db.add_all([supplier, warehouse])
    db.commit()
    return supplier, warehouse


def _create_purchase(client, headers, supplier, warehouse, product, quantity=10):
    return client.post(
        "/api/purchases",
        json={
            "supplier_id": supplier.id,
            "warehouse_id": warehouse.id,
            "items": [{"product_id": product.id, "quantity_ordered": quantity, "unit_cost": 4.0}],
        },
        headers=headers,
    )


def test_partial_then_full_receipt_moves_stock(client, db, tenant_a, headers_a):
    supplier, warehouse = _purchase_refs(db, tenant_a)
    product = make_product(db, tenant_a, "A-1", stock=0, status="out_of_stock")
    created = _create_purchase(client, headers_a, supplier, warehouse, product).json()["data"]
    item_id = created["items"][0]["id"]

    client.post(f"/api/purchases/{created['id']}/confirm", headers=headers_a)
    partial = client.post(
        f"/api/purchases/{created['id']}/receive",
        json={"items": [{"purchase_item_id": item_id, "quantity_received": 4}]},
        headers=headers_a,
    ).json()["data"]
    rest = client.post(f"/api/purchases/{created['id']}/receive", headers=headers_a).json()["data"]
    nothing_left = client.post(f"/api/purchases/{created['id']}/receive", headers=headers_a)

    assert partial["status"] == "partially_received"
    assert rest["status"] == "completed"
    assert rest["received_items"] == [{"purchase_item_id": item_id, "product_id": product.id, "quantity": 6}]
    assert nothing_left.status_code == 400
    db.expire_all()
    assert db.query(Product).filter(Product.id == product.id).one().stock_quantity == 10
    assert db.query(InventoryMovement).filter(InventoryMovement.movement_type == "purchase").count() == 2


def test_draft_purchase_cannot_be_received(client, db, tenant_a, headers_a):
    supplier, warehouse = _purchase_refs(db, tenant_a)
    product = make_product(db, tenant_a, "A-1")
    purchase_id = _create_purchase(client, headers_a, supplier, warehouse, product).json()["data"]["id"]

    response = client.post(f"/api/purchases/{purchase_id}/receive", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Purchase cannot be received in current status"


def test_purchase_rejects_supplier_of_another_tenant(client, db, tenant_a, tenant_b, headers_a):
    foreign_supplier, _ = _purchase_refs(db, tenant_b)
    _, warehouse = _purchase_refs(db, tenant_a)
    product = make_product(db, tenant_a, "A-1")

    response = _create_purchase(client, headers_a, foreign_supplier, warehouse, product)

    assert response.status_code == 400
    assert response.json()["message"] == "Supplier not found or does not belong to tenant"


def test_bulk_adjustment_is_all_or_nothing(client, db, tenant_a, headers_a):
    first = make_product(db, tenant_a, "A-1", stock=5)
    second = make_product(db, tenant_a, "A-2", stock=1)

    response = client.post(
        "/api/inventory/adjustments/bulk",
        json={
            "adjustments": [
                {"product_id": first.id, "adjustment_type": "increase", "quantity": 5, "reason": "Recount"},
                {"product_id": second.id, "adjustment_type": "decrease", "quantity": 3, "reason": "Damaged"},
            ]
        },
        headers=headers_a,
    )

    assert response.status_code == 400
    db.expire_all()
    assert db.query(Product).filter(Product.id == first.id).one().stock_quantity == 5
    assert db.query(InventoryMovement).count() == 0


def test_stock_alerts_group_products(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, "EMPTY", stock=0)
    make_product(db, tenant_a, "LOW", stock=1, min_stock_level=5)
    make_product(db, tenant_a, "FINE", stock=50)

    data = client.get("/api/inventory/alerts", headers=headers_a).json()["data"]

    assert [row["sku"] for row in data["out_of_stock"]] == ["EMPTY"]
    assert [row["sku"] for row in data["low_stock"]] == ["LOW"]
