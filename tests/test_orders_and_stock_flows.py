from app.models.inventory import InventoryMovement
from app.models.order import Order, OrderItem
from app.models.product import Product
from tests.fixtures_data import make_product


def _create_order(client, headers, product_id, quantity=2):
    return client.post(
        "/api/orders",
        json={"payment_method": "cash", "items": [{"product_id": product_id, "quantity": quantity}]},
        headers=headers,
    )


def test_create_order_prices_lines_from_product(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", stock=10, price=20.0)

    response = _create_order(client, headers_a, product.id, quantity=3)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert data["total_amount"] == 60.0
    assert data["order_number"].startswith("ORD-")
    assert data["available_actions"] == ["confirm", "cancel", "modify", "delete"]
    assert [item["quantity"] for item in data["items"]] == [3]


def test_missing_product_rolls_back_the_whole_order(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")

    response = client.post(
        "/api/orders",
        json={"items": [{"product_id": product.id, "quantity": 1}, {"product_id": 9999, "quantity": 1}]},
        headers=headers_a,
    )

    assert response.status_code == 500
    assert response.json()["message"].startswith("Failed to create order: Product 9999 not found")
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0


def test_order_lifecycle_deducts_stock_on_ship(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", stock=10)
    order_id = _create_order(client, headers_a, product.id, quantity=4).json()["data"]["id"]

    assert client.post(f"/api/orders/{order_id}/confirm", headers=headers_a).status_code == 200
    shipped = client.post(f"/api/orders/{order_id}/ship", json={"tracking_number": "TRK-1"}, headers=headers_a)
    delivered = client.post(f"/api/orders/{order_id}/deliver", headers=headers_a)

    assert shipped.json()["data"]["tracking_number"] == "TRK-1"
    assert delivered.json()["data"]["status"] == "delivered"
    db.expire_all()
    assert db.query(Product).filter(Product.id == product.id).one().stock_quantity == 6
    movement = db.query(InventoryMovement).filter(InventoryMovement.product_id == product.id).one()
    assert (movement.movement_type, movement.quantity, movement.stock_after) == ("sale", -4, 6)


def test_invalid_transition_returns_400_and_keeps_status(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")
    order_id = _create_order(client, headers_a, product.id).json()["data"]["id"]

    response = client.post(f"/api/orders/{order_id}/deliver", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Order cannot be delivered in current status"
    db.expire_all()
    assert db.query(Order).filter(Order.id == order_id).one().status == "pending"


def test_ship_with_insufficient_stock_is_rejected(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", stock=1)
    order_id = _create_order(client, headers_a, product.id, quantity=5).json()["data"]["id"]
    client.post(f"/api/orders/{order_id}/confirm", headers=headers_a)

    response = client.post(f"/api/orders/{order_id}/ship", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient stock for product A-1"
    db.expire_all()
    assert db.query(Order).filter(Order.id == order_id).one().status == "confirmed"


def test_cancelled_order_cannot_be_paid(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")
    order_id = _create_order(client, headers_a, product.id).json()["data"]["id"]
    client.post(f"/api/orders/{order_id}/cancel", json={"reason": "Customer changed mind"}, headers=headers_a)

    response = client.post(f"/api/orders/{order_id}/payment", json={"payment_method": "card"}, headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot record payment for a cancelled order"


def test_stock_patch_maps_operations(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", stock=10)

    added = client.patch(f"/api/products/{product.id}/stock", json={"quantity": 5, "operation": "add"}, headers=headers_a)
    removed = client.patch(
        f"/api/products/{product.id}/stock",
        json={"quantity": 20, "operation": "subtract"},
        headers=headers_a,
    )

    assert added.json()["data"]["product"]["stock_quantity"] == 15
    assert removed.status_code == 400
