from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from app.core.errors import BusinessRuleError, TenantScopeError
from app.models.product import Product
from app.models.warehouse import Warehouse
from app.services.tenant_context import RequestContext, ensure_tenant_reference, get_scoped_or_404, scoped_query
from tests.fixtures_data import make_product


def test_scoped_query_without_tenant_raises(db):
    ctx = RequestContext(db=db)

    with pytest.raises(TenantScopeError):
        scoped_query(ctx, Product)


def test_scoped_query_filters_to_active_tenant(db, tenant_a, tenant_b):
    make_product(db, tenant_a, "A-1")
    make_product(db, tenant_a, "A-2")
    make_product(db, tenant_b, "B-1")

    skus = sorted(product.sku for product in scoped_query(RequestContext(db=db, tenant=tenant_a), Product).all())

    assert skus == ["A-1", "A-2"]


def test_all_tenants_override_requires_super_admin(db, tenant_a, tenant_b):
    make_product(db, tenant_a, "A-1")
    make_product(db, tenant_b, "B-1")

    super_ctx = RequestContext(db=db, user=SimpleNamespace(id=1, role="super_admin", tenant_id=None), all_tenants=True)
    assert scoped_query(super_ctx, Product).count() == 2

    admin_ctx = RequestContext(db=db, user=SimpleNamespace(id=2, role="admin", tenant_id=None), all_tenants=True)
    with pytest.raises(TenantScopeError):
        scoped_query(admin_ctx, Product)


def test_get_scoped_or_404_hides_other_tenant_records(db, tenant_a, tenant_b):
    foreign = make_product(db, tenant_b, "B-1")

    with pytest.raises(HTTPException) as exc:
        get_scoped_or_404(RequestContext(db=db, tenant=tenant_a), Product, foreign.id, "Product")

    assert exc.value.status_code == 404
    assert exc.value.detail == "Product not found"


def test_ensure_tenant_reference_rejects_foreign_rows(db, tenant_a, tenant_b):
    warehouse = Warehouse(tenant_id=tenant_b.id, name="Globex Central", code="WH0001", address="1 Dock Road")
    db.add(warehouse)
    db.commit()
    ctx = RequestContext(db=db, tenant=tenant_a)

    assert ensure_tenant_reference(ctx, Warehouse, None, "Warehouse") is None
    with pytest.raises(BusinessRuleError) as exc:
        ensure_tenant_reference(ctx, Warehouse, warehouse.id, "Warehouse")

    assert str(exc.value) == "Warehouse not found or does not belong to tenant"


def test_require_tenant_raises_400_without_tenant(db):
    with pytest.raises(HTTPException) as exc:
        RequestContext(db=db).require_tenant()

    assert exc.value.status_code == 400
    assert exc.value.detail == "Tenant context required"
