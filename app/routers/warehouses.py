from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func

from app.core.errors import BusinessRuleError
from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.product import Product
from app.models.shop import Shop
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.audit import record_audit
from app.services.inventory import transfer_stock
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

router = APIRouter(prefix="/api/warehouses", tags=["warehouses"])

WAREHOUSE_TYPE_PATTERN = "^(main|distribution|storage|cold_storage)$"
UTILIZATION_LEVELS = ((90, "critical"), (80, "high"), (60, "medium"))


class WarehouseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    address: str = Field(..., min_length=1)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    manager_id: Optional[int] = None
    capacity: Optional[float] = Field(None, ge=0)
    warehouse_type: str = Field("main", pattern=WAREHOUSE_TYPE_PATTERN)
    is_active: bool = True


class WarehouseUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    address: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    email: Optional[EmailStr] = None
    manager_id: Optional[int] = None
    capacity: Optional[float] = Field(None, ge=0)
    warehouse_type: Optional[str] = Field(None, pattern=WAREHOUSE_TYPE_PATTERN)
    is_active: Optional[bool] = None


class TransferLine(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class TransferRequest(BaseModel):
    transfers: List[TransferLine] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=255)


def _stock_by_warehouse(ctx: RequestContext) -> dict[int, int]:
    rows = (
        scoped_query(ctx, Product)
        .filter(Product.warehouse_id.isnot(None))
        .with_entities(Product.warehouse_id, func.coalesce(func.sum(Product.stock_quantity), 0))
        .group_by(Product.warehouse_id)
        .all()
    )
    return {warehouse_id: int(total) for warehouse_id, total in rows}


def _utilization(capacity: float | None, stored: int) -> float | None:
    if not capacity:
        return None
    return round(stored / capacity * 100, 2)


def _utilization_level(percentage: float | None) -> str:
    if percentage is None:
        return "unknown"
    for threshold, level in UTILIZATION_LEVELS:
        if percentage > threshold:
            return level
    return "low"


def _capacity_recommendations(level: str, percentage: float | None) -> list[str]:
    if level == "unknown":
        return ["Set a capacity to track utilization"]
    if level == "critical":
        return ["Transfer stock to another warehouse or expand capacity"]
    if level == "high":
        return ["Plan additional storage before the next large purchase"]
    if percentage is not None and percentage < 20:
        return ["Warehouse is underused; consider consolidating stock"]
    return []


@router.get("")
def list_warehouses(
    params: ListParams = Depends(list_params),
    warehouse_type: Optional[str] = None,
    ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_VIEW)),
):
    query = scoped_query(ctx, Warehouse)
    if warehouse_type:
        query = query.filter(Warehouse.warehouse_type == warehouse_type)
    query = apply_filters(
        query,
        Warehouse,
        params,
        search_fields=("name", "code", "city", "address"),
        sortable=("name", "code", "city"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Warehouses retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def warehouse_stats(ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_VIEW))):
    warehouses = scoped_query(ctx, Warehouse).all()
    stored = _stock_by_warehouse(ctx)
    by_type: dict[str, int] = {}
    for warehouse in warehouses:
        by_type[warehouse.warehouse_type] = by_type.get(warehouse.warehouse_type, 0) + 1
    utilizations = [_utilization(warehouse.capacity, stored.get(warehouse.id, 0)) for warehouse in warehouses]
    measured = [value for value in utilizations if value is not None]
    stock_value = (
        scoped_query(ctx, Product)
        .filter(Product.warehouse_id.isnot(None))
        .with_entities(func.coalesce(func.sum(Product.stock_quantity * Product.cost_price), 0))
        .scalar()
    )
    data = {
        "total_warehouses": len(warehouses),
        "active_warehouses": sum(1 for warehouse in warehouses if warehouse.is_active),
        "inactive_warehouses": sum(1 for warehouse in warehouses if not warehouse.is_active),
        "warehouses_by_type": by_type,
        "total_capacity": round(sum(warehouse.capacity or 0 for warehouse in warehouses), 2),
        "average_utilization": round(sum(measured) / len(measured), 2) if measured else None,
        "high_utilization_warehouses": sum(1 for value in measured if value > 80),
        "products_stored": sum(stored.values()),
        "stock_value": round(float(stock_value or 0), 2),
    }
    return envelope(data, "Warehouse statistics retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_warehouse(
    payload: WarehouseCreate,
    ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_CREATE)),
):
    data = payload.model_dump()
    ensure_unique(ctx, Warehouse, "code", data["code"], "The warehouse code has already been taken")
    ensure_within_limit(ctx, "warehouses")
    with atomic(ctx.db, "Failed to create warehouse"):
        ensure_tenant_reference(ctx, User, data["manager_id"], "Manager")
        if not data["code"]:
            data["code"] = unique_code(ctx, Warehouse, "code", "WH")
        warehouse = create_record(ctx, Warehouse, data, entity="warehouse")
    return envelope(to_dict(warehouse), "Warehouse created successfully", tenant=ctx.tenant)


@router.get("/{warehouse_id}")
def show_warehouse(warehouse_id: int, ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_VIEW))):
    warehouse = get_scoped_or_404(ctx, Warehouse, warehouse_id, "Warehouse")
    products = scoped_query(ctx, Product).filter(Product.warehouse_id == warehouse.id)
    data = to_dict(
        warehouse,
        products_count=products.count(),
        shops_count=scoped_query(ctx, Shop).filter(Shop.warehouse_id == warehouse.id).count(),
        total_stock=int(products.with_entities(func.coalesce(func.sum(Product.stock_quantity), 0)).scalar() or 0),
    )
    return envelope(data, "Warehouse retrieved successfully", tenant=ctx.tenant)


@router.put("/{warehouse_id}")
def update_warehouse(
    warehouse_id: int,
    payload: WarehouseUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_EDIT)),
):
    warehouse = get_scoped_or_404(ctx, Warehouse, warehouse_id, "Warehouse")
    changes = changes_from(payload, Warehouse)
    ensure_unique(
        ctx,
        Warehouse,
        "code",
        changes.get("code"),
        "The warehouse code has already been taken",
        exclude_id=warehouse.id,
    )
    with atomic(ctx.db, "Failed to update warehouse"):
        ensure_tenant_reference(ctx, User, changes.get("manager_id"), "Manager")
        update_record(ctx, warehouse, changes, entity="warehouse")
    return envelope(to_dict(warehouse), "Warehouse updated successfully", tenant=ctx.tenant)


@router.delete("/{warehouse_id}")
def delete_warehouse(
    warehouse_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_DELETE)),
):
    warehouse = get_scoped_or_404(ctx, Warehouse, warehouse_id, "Warehouse")
    with atomic(ctx.db, "Failed to delete warehouse"):
        ensure_no_dependents(
            ctx,
            [
                (Product, Product.warehouse_id == warehouse.id, "Cannot delete warehouse with products"),
                (Shop, Shop.warehouse_id == warehouse.id, "Cannot delete warehouse with associated shops"),
            ],
        )
        delete_record(ctx, warehouse, entity="warehouse")
    return envelope(None, "Warehouse deleted successfully", tenant=ctx.tenant)


@router.get("/{warehouse_id}/capacity")
def capacity_analysis(warehouse_id: int, ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_VIEW))):
    warehouse = get_scoped_or_404(ctx, Warehouse, warehouse_id, "Warehouse")
    stored = _stock_by_warehouse(ctx).get(warehouse.id, 0)
    percentage = _utilization(warehouse.capacity, stored)
    level = _utilization_level(percentage)
    top_products = (
        scoped_query(ctx, Product)
        .filter(Product.warehouse_id == warehouse.id, Product.stock_quantity > 0)
        .order_by(Product.stock_quantity.desc(), Product.id.asc())
        .limit(10)
        .all()
    )
    breakdown: list[dict[str, Any]] = [
        {
            "product_id": product.id,
            "name": product.name,
            "sku": product.sku,
            "stock_quantity": product.stock_quantity,
            "share_percentage": round(product.stock_quantity / stored * 100, 2),
        }
        for product in top_products
    ]
    data = {
        "warehouse_id": warehouse.id,
        "total_capacity": warehouse.capacity,
        "used_capacity": stored,
        "available_capacity": max(warehouse.capacity - stored, 0) if warehouse.capacity else None,
        "utilization_percentage": percentage,
        "status": level,
        "recommendations": _capacity_recommendations(level, percentage),
        "product_breakdown": breakdown,
    }
    return envelope(data, "Warehouse capacity analysis retrieved successfully", tenant=ctx.tenant)


@router.post("/{from_warehouse_id}/transfer/{to_warehouse_id}")
def transfer_products(
    from_warehouse_id: int,
    to_warehouse_id: int,
    payload: TransferRequest,
    ctx: RequestContext = Depends(require_permission(Permission.WAREHOUSES_TRANSFER)),
):
    source = get_scoped_or_404(ctx, Warehouse, from_warehouse_id, "Source warehouse")
    destination = get_scoped_or_404(ctx, Warehouse, to_warehouse_id, "Destination warehouse")
    with atomic(ctx.db, "Transfer failed"):
        if source.id == destination.id:
            raise BusinessRuleError("Source and destination warehouses must differ")
        if not destination.is_active:
            raise BusinessRuleError("Destination warehouse is inactive")
        transferred = []
        for line in payload.transfers:
            product = get_scoped_or_404(ctx, Product, line.product_id, "Product")
            outgoing, incoming = transfer_stock(ctx, product, source, destination, line.quantity, notes=payload.notes)
            transferred.append(
                {
                    "product_id": product.id,
                    "sku": product.sku,
                    "quantity": line.quantity,
                    "warehouse_id": product.warehouse_id,
                    "movement_ids": [outgoing.id, incoming.id],
                }
            )
        record_audit(
            ctx,
            "warehouse_transfer",
            table_name="warehouses",
            record_id=source.id,
            new_values={
                "from_warehouse_id": source.id,
                "to_warehouse_id": destination.id,
                "items": transferred,
                "notes": payload.notes,
            },
        )
    dashboard.invalidate(source.tenant_id)

    data = {
        "transferred_items": transferred,
        "from_warehouse": to_dict(source),
        "to_warehouse": to_dict(destination),
    }
    return envelope(data, "Products transferred successfully", tenant=ctx.tenant)
