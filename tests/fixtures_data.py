"""Reusable records and payloads for the API scenarios."""

from app.models.product import Product
from app.models.tenant import Tenant
from app.models.user import User
from app.services.auth_service import create_session
from app.services.passwords import hash_password

DEFAULT_PASSWORD = "secret123"

PRODUCT_PAYLOAD = {
    "name": "Cordless Drill",
    "sku": "DRL-100",
    "cost_price": 40.0,
    "selling_price": 65.0,
    "stock_quantity": 12,
    "min_stock_level": 3,
}

EXPENSE_PAYLOAD = {
    "category": "Utilities",
    "amount": 120.5,
    "description": "Warehouse electricity",
    "expense_date": "2026-03-01",
    "due_date": "2026-03-15",
}

NOTICE_PAYLOAD = {
    "title": "Stocktake on Friday",
    "content": "All shops close one hour early for the quarterly stocktake.",
    "type": "announcement",
    "priority": "high",
}


def make_tenant(db, code, name, *, status="active", **extra):
    tenant = Tenant(tenant_code=code, company_name=name, status=status, **extra)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def make_user(db, tenant, email, *, role="employee", full_name="Test User", permissions=None, is_active=True):
    user = User(
        tenant_id=tenant.id if tenant is not None else None,
        email=email,
        full_name=full_name,
        password_hash=hash_password(DEFAULT_PASSWORD),
        role=role,
        permissions=permissions or [],
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_session_headers(db, user):
    session = create_session(db, user)
    db.commit()
    return {"Authorization": f"Bearer {session.session_token}"}


def make_product(db, tenant, sku, *, stock=10, price=20.0, **extra):
    product = Product(
        tenant_id=tenant.id,
        name=extra.pop("name", f"Product {sku}"),
        sku=sku,
        cost_price=extra.pop("cost_price", price / 2),
        selling_price=price,
        stock_quantity=stock,
        min_stock_level=extra.pop("min_stock_level", 2),
        status=extra.pop("status", "active"),
        **extra,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product
