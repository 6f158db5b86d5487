from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.order import Order
from app.models.product import Product
from app.models.shop import Shop
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.numbering import unique_code
from app.services.records import (
    changes_from,
    create_record,
    delete_record,
    ensure_no_dependents,
    ensure_unique,
    update_record,
)
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, ensure_tenant_reference, get_scoped_or_404, scoped_query
from app.services.tenant_limits import ensure_within_limit
from app.services.transactions import atomic

router = APIRouter(prefix="/api/shops", tags=["shops"])

SHOP_TYPE_PATTERN = "^(retail|wholesale|online|franchise)$"


class ShopCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    warehouse_id: Optional[int] = None
    manager_id: Optional[int] = None
    address: str = Field(..., min_length=1)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    shop_type: str = Field("retail", pattern=SHOP_TYPE_PATTERN)
    opening_hours: Optional[str] = Field(None, max_length=100)
    is_active: bool = True


class ShopUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    warehouse_id: Optional[int] = None
    manager_id: Optional[int] = None
    address: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    shop_type: Optional[str] = Field(None, pattern=SHOP_TYPE_PATTERN)
    opening_hours: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None


def _validate_references(ctx: RequestContext, data: dict) -> None:
    ensure_tenant_reference(ctx, Warehouse, data.get("warehouse_id"), "Warehouse")
    ensure_tenant_reference(ctx, User, data.get("manager_id"), "Manager")


@router.get("")
def list_shops(
    params: ListParams = Depends(list_params),
    warehouse_id: Optional[int] = None,
    shop_type: Optional[str] = None,
    ctx: RequestContext = Depends(require_permission(Permission.SHOPS_VIEW)),
):
    query = scoped_query(ctx, Shop)
    if warehouse_id is not None:
        query = query.filter(Shop.warehouse_id == warehouse_id)
    if shop_type:
        query = query.filter(Shop.shop_type == shop_type)
    query = apply_filters(
        query,
        Shop,
        params,
        search_fields=("name", "code", "city", "address"),
        sortable=("name", "code", "city"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Shops retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_shop(payload: ShopCreate, ctx: RequestContext = Depends(require_permission(Permission.SHOPS_CREATE))):
    data = payload.model_dump()
    ensure_unique(ctx, Shop, "code", data["code"], "The shop code has already been taken")
    ensure_within_limit(ctx, "shops")
    with atomic(ctx.db, "Failed to create shop"):
        _validate_references(ctx, data)
        if not data["code"]:
            data["code"] = unique_code(ctx, Shop, "code", "SH")
        shop = create_record(ctx, Shop, data, entity="shop")
    return envelope(to_dict(shop), "Shop created successfully", tenant=ctx.tenant)


@router.get("/{shop_id}")
def show_shop(shop_id: int, ctx: RequestContext = Depends(require_permission(Permission.SHOPS_VIEW))):
    shop = get_scoped_or_404(ctx, Shop, shop_id, "Shop")
    orders = scoped_query(ctx, Order).filter(Order.shop_id == shop.id)
    data = to_dict(
        shop,
        products_count=scoped_query(ctx, Product).filter(Product.shop_id == shop.id).count(),
        orders_count=orders.count(),
        total_sales=round(
            float(
                orders.filter(Order.status == "delivered")
                .with_entities(func.coalesce(func.sum(Order.total_amount), 0))
                .scalar()
                or 0
            ),
            2,
        ),
    )
    return envelope(data, "Shop retrieved successfully", tenant=ctx.tenant)


@router.put("/{shop_id}")
def update_shop(
    shop_id: int,
    payload: ShopUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.SHOPS_EDIT)),
):
    shop = get_scoped_or_404(ctx, Shop, shop_id, "Shop")
    changes = changes_from(payload, Shop)
    ensure_unique(ctx, Shop, "code", changes.get("code"), "The shop code has already been taken", exclude_id=shop.id)
    with atomic(ctx.db, "Failed to update shop"):
        _validate_references(ctx, changes)
        update_record(ctx, shop, changes, entity="shop")
    return envelope(to_dict(shop), "Shop updated successfully", tenant=ctx.tenant)


@router.delete("/{shop_id}")
def delete_shop(shop_id: int, ctx: RequestContext = Depends(require_permission(Permission.SHOPS_DELETE))):
    shop = get_scoped_or_404(ctx, Shop, shop_id, "Shop")
    with atomic(ctx.db, "Failed to delete shop"):
        ensure_no_dependents(ctx, [(Order, Order.shop_id == shop.id, "Cannot delete shop with existing orders")])
        delete_record(ctx, shop, entity="shop")
    return envelope(None, "Shop deleted successfully", tenant=ctx.tenant)
