from app.models.order import Order, OrderItem
from app.models.product import Product
from tests.fixtures_data import EXPENSE_PAYLOAD, NOTICE_PAYLOAD, PRODUCT_PAYLOAD, make_product


def test_validation_errors_are_grouped_by_field(client, headers_a):
    payload = {**PRODUCT_PAYLOAD, "name": "", "discount_price": 80.0, "tax_rate": 150}

    response = client.post("/api/products", json=payload, headers=headers_a)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert set(body["errors"]) == {"name", "discount_price", "tax_rate"}
    assert body["errors"]["discount_price"] == ["The discount price must be less than the selling price"]


def test_duplicate_sku_is_a_field_error(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, PRODUCT_PAYLOAD["sku"])

    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers=headers_a)

    assert response.status_code == 422
    assert response.json()["errors"] == {"sku": ["The SKU has already been taken"]}


def test_same_sku_is_allowed_in_another_tenant(client, db, tenant_b, headers_a):
    make_product(db, tenant_b, PRODUCT_PAYLOAD["sku"])

    response = client.post("/api/products", json=PRODUCT_PAYLOAD, headers=headers_a)

    assert response.status_code == 201


def test_new_product_without_stock_is_out_of_stock(client, headers_a):
    response = client.post("/api/products", json={**PRODUCT_PAYLOAD, "stock_quantity": 0}, headers=headers_a)

    assert response.json()["data"]["status"] == "out_of_stock"


def test_update_checks_discount_against_stored_price(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", price=20.0)

    response = client.put(f"/api/products/{product.id}", json={"discount_price": 25.0}, headers=headers_a)

    assert response.status_code == 422
    assert "discount_price" in response.json()["errors"]


def test_product_with_pending_order_cannot_be_deleted(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")
    client.post("/api/orders", json={"items": [{"product_id": product.id, "quantity": 1}]}, headers=headers_a)

    response = client.delete(f"/api/products/{product.id}", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete product with pending orders"
    assert db.query(Product).filter(Product.id == product.id).count() == 1


def test_product_with_order_history_cannot_be_deleted(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1")
    order = Order(tenant_id=tenant_a.id, order_number="ORD-OLD-1", status="delivered", total_amount=20.0)
    db.add(order)
    db.flush()
    db.add(
        OrderItem(
            tenant_id=tenant_a.id,
            order_id=order.id,
            product_id=product.id,
            quantity=1,
            unit_price=20.0,
            total_price=20.0,
        )
    )
    db.commit()

    response = client.delete(f"/api/products/{product.id}", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete product with order history"


def test_category_with_products_cannot_be_deleted(client, db, tenant_a, headers_a):
    category_id = client.post("/api/categories", json={"name": "Power Tools"}, headers=headers_a).json()["data"]["id"]
    make_product(db, tenant_a, "A-1", category_id=category_id)

    response = client.delete(f"/api/categories/{category_id}", headers=headers_a)

    assert response.status_code == 400
    assert response.json()["message"] == "Cannot delete category with products"


def test_rejected_expense_cannot_be_approved(client, headers_a):
    expense_id = client.post("/api/expenses", json=EXPENSE_PAYLOAD, headers=headers_a).json()["data"]["id"]

    rejected = client.post(f"/api/expenses/{expense_id}/reject", json={"reason": "Duplicate"}, headers=headers_a)
    approved = client.post(f"/api/expenses/{expense_id}/approve", headers=headers_a)

    assert rejected.json()["data"]["approval_status"] == "rejected"
    assert approved.status_code == 400
    assert approved.json()["message"] == "Expense cannot be approved in current status"


def test_expense_must_be_approved_before_payment(client, headers_a):
    expense_id = client.post("/api/expenses", json=EXPENSE_PAYLOAD, headers=headers_a).json()["data"]["id"]

    early = client.post(f"/api/expenses/{expense_id}/pay", json={"payment_method": "cash"}, headers=headers_a)
    client.post(f"/api/expenses/{expense_id}/approve", headers=headers_a)
    paid = client.post(f"/api/expenses/{expense_id}/pay", json={"payment_method": "cash"}, headers=headers_a)

    assert early.status_code == 400
    assert paid.json()["data"]["payment_status"] == "paid"


def test_expense_due_date_cannot_precede_expense_date(client, headers_a):
    payload = {**EXPENSE_PAYLOAD, "due_date": "2026-02-01"}

    response = client.post("/api/expenses", json=payload, headers=headers_a)

    assert response.status_code == 422
    assert "due_date" in response.json()["errors"]


def test_notice_cannot_be_published_twice(client, headers_a):
    notice_id = client.post("/api/notices", json=NOTICE_PAYLOAD, headers=headers_a).json()["data"]["id"]

    first = client.post(f"/api/notices/{notice_id}/publish", headers=headers_a)
    second = client.post(f"/api/notices/{notice_id}/publish", headers=headers_a)

    assert first.json()["data"]["is_published"] is True
    assert second.status_code == 400
    assert second.json()["message"] == "Notice cannot be published in current status"


def test_notice_expiry_must_follow_publish_date(client, headers_a):
    payload = {**NOTICE_PAYLOAD, "publish_date": "2026-05-10T09:00:00", "expiry_date": "2026-05-01T09:00:00"}

    response = client.post("/api/notices", json=payload, headers=headers_a)

    assert response.status_code == 422
    assert response.json()["errors"] == {"expiry_date": ["The expiry date must be after the publish date"]}


def test_null_for_required_column_is_a_field_error(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", name="Hammer")

    response = client.put(f"/api/products/{product.id}", json={"name": None, "sku": None}, headers=headers_a)

    assert response.status_code == 422
    assert response.json()["errors"] == {
        "name": ["The name field cannot be null"],
        "sku": ["The sku field cannot be null"],
    }
    db.expire_all()
    assert db.query(Product).filter(Product.id == product.id).one().name == "Hammer"


def test_null_clears_optional_columns(client, db, tenant_a, headers_a):
    product = make_product(db, tenant_a, "A-1", barcode="4006381333931")

    response = client.put(f"/api/products/{product.id}", json={"barcode": None}, headers=headers_a)

    assert response.status_code == 200
    assert response.json()["data"]["barcode"] is None


def test_null_email_on_user_update_is_a_field_error(client, admin_a, headers_a):
    response = client.put(f"/api/users/{admin_a.id}", json={"email": None}, headers=headers_a)

    assert response.status_code == 422
    assert response.json()["errors"] == {"email": ["The email field cannot be null"]}
