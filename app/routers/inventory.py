from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.category import Category
from app.models.inventory import MOVEMENT_TYPES, InventoryMovement
from app.models.product import Product
from app.models.shop import Shop
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.inventory import ADJUSTMENT_TYPES, adjust_stock, filter_stock_status, stock_status
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, ensure_tenant_reference, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/inventory", tags=["inventory"])

ADJUSTMENT_PATTERN = "^(" + "|".join(ADJUSTMENT_TYPES) + ")$"


class StockAdjustment(BaseModel):
    product_id: int
    adjustment_type: str = Field(..., pattern=ADJUSTMENT_PATTERN)
    quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=255)
    warehouse_id: Optional[int] = None
    shop_id: Optional[int] = None


class BulkAdjustment(BaseModel):
    adjustments: List[StockAdjustment] = Field(..., min_length=1, max_length=100)


def _apply_adjustment(ctx: RequestContext, adjustment: StockAdjustment) -> dict:
    product = get_scoped_or_404(ctx, Product, adjustment.product_id, "Product")
    ensure_tenant_reference(ctx, Warehouse, adjustment.warehouse_id, "Warehouse")
    ensure_tenant_reference(ctx, Shop, adjustment.shop_id, "Shop")
    movement = adjust_stock(
        ctx,
        product,
        adjustment.adjustment_type,
        adjustment.quantity,
        reason=adjustment.reason,
        warehouse_id=adjustment.warehouse_id,
        shop_id=adjustment.shop_id,
    )
    return to_dict(movement, product_name=product.name, sku=product.sku)


@router.get("/movements")
def list_movements(
    params: ListParams = Depends(list_params),
    product_id: Optional[int] = None,
    movement_type: Optional[str] = Query(None, pattern="^(" + "|".join(MOVEMENT_TYPES) + ")$"),
    warehouse_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_VIEW)),
):
    query = scoped_query(ctx, InventoryMovement)
    for column, value in (
        (InventoryMovement.product_id, product_id),
        (InventoryMovement.movement_type, movement_type),
        (InventoryMovement.warehouse_id, warehouse_id),
        (InventoryMovement.shop_id, shop_id),
    ):
        if value is not None:
            query = query.filter(column == value)
    query = apply_filters(
        query,
        InventoryMovement,
        params,
        search_fields=("reason", "reference_type"),
        sortable=("quantity", "movement_type"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Inventory movements retrieved successfully", tenant=ctx.tenant)


@router.post("/adjustments")
def create_adjustment(
    payload: StockAdjustment,
    ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_ADJUST)),
):
    with atomic(ctx.db, "Failed to adjust stock"):
        data = _apply_adjustment(ctx, payload)
        dashboard.invalidate(ctx.tenant_id)
    return envelope(data, "Stock adjusted successfully", tenant=ctx.tenant)


@router.post("/adjustments/bulk")
def bulk_adjustment(
    payload: BulkAdjustment,
    ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_ADJUST)),
):
    # All adjustments commit together or not at all
    with atomic(ctx.db, "Failed to apply bulk adjustment"):
        movements = [_apply_adjustment(ctx, adjustment) for adjustment in payload.adjustments]
        dashboard.invalidate(ctx.tenant_id)
    return envelope(movements, f"{len(movements)} stock adjustments applied successfully", tenant=ctx.tenant)


@router.get("/overview")
def inventory_overview(ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_VIEW))):
    data = dict(dashboard.inventory_stats(ctx))
    recent = (
        scoped_query(ctx, InventoryMovement)
        .order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .limit(10)
        .all()
    )
    data["recent_movements"] = to_dicts(recent)
    return envelope(data, "Inventory overview retrieved successfully", tenant=ctx.tenant)


@router.get("/stock-levels")
def stock_levels(
    params: ListParams = Depends(list_params),
    warehouse_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    category_id: Optional[int] = None,
    stock_status_filter: Optional[str] = Query(None, alias="stock_status"),
    ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_VIEW)),
):
    query = scoped_query(ctx, Product)
    for column, value in (
        (Product.warehouse_id, warehouse_id),
        (Product.shop_id, shop_id),
        (Product.category_id, category_id),
    ):
        if value is not None:
            query = query.filter(column == value)
    if stock_status_filter:
        query = filter_stock_status(query, stock_status_filter)
    query = apply_filters(
        query,
        Product,
        params,
        search_fields=("name", "sku", "barcode"),
        sortable=("name", "sku", "stock_quantity"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    rows = [
        {
            "id": product.id,
            "name": product.name,
            "sku": product.sku,
            "warehouse_id": product.warehouse_id,
            "shop_id": product.shop_id,
            "stock_quantity": product.stock_quantity,
            "min_stock_level": product.min_stock_level,
            "max_stock_level": product.max_stock_level,
            "reorder_point": product.reorder_point,
            "stock_status": stock_status(product),
        }
        for product in items
    ]
    return paginated(rows, meta, "Stock levels retrieved successfully", tenant=ctx.tenant)


@router.get("/alerts")
def stock_alerts(ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_VIEW))):
    products = scoped_query(ctx, Product).filter(Product.status != "discontinued")
    out_of_stock = filter_stock_status(products, "out_of_stock").order_by(Product.name.asc()).all()
    low_stock = filter_stock_status(products, "low_stock").order_by(Product.stock_quantity.asc()).all()
    reorder = filter_stock_status(products, "needs_reorder").order_by(Product.stock_quantity.asc()).all()
    overstock = (
        products.filter(Product.max_stock_level.isnot(None), Product.stock_quantity > Product.max_stock_level)
        .order_by(Product.name.asc())
        .all()
    )
    fields = ("id", "name", "sku", "stock_quantity", "min_stock_level", "reorder_point", "max_stock_level")
    data = {
        "out_of_stock": [{field: getattr(product, field) for field in fields} for product in out_of_stock],
        "low_stock": [{field: getattr(product, field) for field in fields} for product in low_stock],
        "needs_reorder": [{field: getattr(product, field) for field in fields} for product in reorder],
        "overstock": [{field: getattr(product, field) for field in fields} for product in overstock],
    }
    data["total_alerts"] = sum(len(rows) for rows in data.values())
    return envelope(data, "Stock alerts retrieved successfully", tenant=ctx.tenant)


@router.get("/valuation")
def inventory_valuation(
    warehouse_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_permission(Permission.INVENTORY_VIEW)),
):
    query = scoped_query(ctx, Product)
    if warehouse_id is not None:
        query = query.filter(Product.warehouse_id == warehouse_id)
    cost_value = func.coalesce(func.sum(Product.stock_quantity * Product.cost_price), 0)
    retail_value = func.coalesce(func.sum(Product.stock_quantity * Product.selling_price), 0)
    totals = query.with_entities(cost_value, retail_value, func.coalesce(func.sum(Product.stock_quantity), 0)).one()
    by_category = (
        query.outerjoin(Category, Category.id == Product.category_id)
        .with_entities(Category.name, func.count(Product.id), cost_value, retail_value)
        .group_by(Category.name)
        .all()
    )
    cost, retail = round(float(totals[0] or 0), 2), round(float(totals[1] or 0), 2)
    data = {
        "total_units": int(totals[2] or 0),
        "total_cost_value": cost,
        "total_retail_value": retail,
        "potential_profit": round(retail - cost, 2),
        "by_category": [
            {
                "category": name or "Uncategorized",
                "products": int(count),
                "cost_value": round(float(cost_sum or 0), 2),
                "retail_value": round(float(retail_sum or 0), 2),
            }
            for name, count, cost_sum, retail_sum in by_category
        ],
    }
    return envelope(data, "Inventory valuation retrieved successfully", tenant=ctx.tenant)
