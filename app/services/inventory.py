from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.orm import Query

from app.core.errors import BusinessRuleError
from app.models.inventory import InventoryMovement
from app.models.product import Product
from app.models.warehouse import Warehouse
from app.services.tenant_context import RequestContext

ADJUSTMENT_TYPES = ("increase", "decrease", "set")
STOCK_STATUSES = ("in_stock", "low_stock", "out_of_stock", "needs_reorder")


def stock_status(product: Product) -> str:
    stock = product.stock_quantity or 0
    if stock <= 0:
        return "out_of_stock"
    if stock <= (product.min_stock_level or 0):
        return "low_stock"
    if product.reorder_point is not None and stock <= product.reorder_point:
        return "needs_reorder"
    return "in_stock"


def filter_stock_status(query: Query, value: str) -> Query:
    if value == "out_of_stock":
        return query.filter(Product.stock_quantity <= 0)
    if value == "low_stock":
        return query.filter(Product.stock_quantity > 0, Product.stock_quantity <= Product.min_stock_level)
    if value == "needs_reorder":
        return query.filter(
            Product.reorder_point.isnot(None),
            Product.stock_quantity <= Product.reorder_point,
        )
    if value == "in_stock":
        return query.filter(
            Product.stock_quantity > Product.min_stock_level,
            or_(Product.reorder_point.is_(None), Product.stock_quantity > Product.reorder_point),
        )
    return query


def low_stock_clause():
    return Product.stock_quantity <= Product.min_stock_level


def _sync_stock_status(product: Product) -> None:
    if product.stock_quantity <= 0 and product.status == "active":
        product.status = "out_of_stock"
    elif product.stock_quantity > 0 and product.status == "out_of_stock":
        product.status = "active"


def record_movement(
    ctx: RequestContext,
    product: Product,
    movement_type: str,
    change: int,
    *,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    unit_cost: float | None = None,
    warehouse_id: int | None = None,
    shop_id: int | None = None,
) -> InventoryMovement:
    """Apply a signed stock change to ``product`` and append the ledger row."""
    before = product.stock_quantity or 0
    after = before + change
    if after < 0:
        raise BusinessRuleError(f"Insufficient stock for product {product.sku}")

    product.stock_quantity = after
    _sync_stock_status(product)
    movement = InventoryMovement(
        tenant_id=product.tenant_id,
        product_id=product.id,
        movement_type=movement_type,
        quantity=change,
        stock_before=before,
        stock_after=after,
        unit_cost=unit_cost,
        reference_type=reference_type,
        reference_id=reference_id,
        warehouse_id=warehouse_id if warehouse_id is not None else product.warehouse_id,
        shop_id=shop_id if shop_id is not None else product.shop_id,
        reason=reason,
        created_by=ctx.user_id,
    )
    ctx.db.add(movement)
    ctx.db.flush()
    return movement


def adjustment_delta(adjustment_type: str, quantity: int, current: int) -> int:
    if adjustment_type == "increase":
        return quantity
    if adjustment_type == "decrease":
        if quantity > current:
            raise BusinessRuleError("Cannot decrease stock below zero")
        return -quantity
    if adjustment_type == "set":
        return quantity - current
    raise BusinessRuleError(f"Unknown adjustment type: {adjustment_type}")


def adjust_stock(
    ctx: RequestContext,
    product: Product,
    adjustment_type: str,
    quantity: int,
    *,
    reason: str | None = None,
    warehouse_id: int | None = None,
    shop_id: int | None = None,
) -> InventoryMovement:
    change = adjustment_delta(adjustment_type, quantity, product.stock_quantity or 0)
    return record_movement(
        ctx,
        product,
        "adjustment",
        change,
        reason=reason,
        reference_type="manual_adjustment",
        warehouse_id=warehouse_id,
        shop_id=shop_id,
    )


def transfer_stock(
    ctx: RequestContext,
    product: Product,
    source: Warehouse,
    destination: Warehouse,
    quantity: int,
    *,
    notes: str | None = None,
) -> tuple[InventoryMovement, InventoryMovement]:
    """Move ``quantity`` units between warehouses as a paired ledger entry.

    Stock on hand is unchanged. A product whose whole stock leaves the source
    is re-homed to the destination warehouse.
    """
    if product.warehouse_id != source.id:
        raise BusinessRuleError(f"Product {product.sku} not found in source warehouse")
    if quantity > (product.stock_quantity or 0):
        raise BusinessRuleError(f"Insufficient stock for product {product.sku}")

    status_before = product.status
    outgoing = record_movement(
        ctx,
        product,
        "transfer",
        -quantity,
        reason=notes or f"Transfer to {destination.name}",
        reference_type="warehouse_transfer",
        reference_id=destination.id,
        warehouse_id=source.id,
    )
    incoming = record_movement(
        ctx,
        product,
        "transfer",
        quantity,
        reason=notes or f"Transfer from {source.name}",
        reference_type="warehouse_transfer",
        reference_id=source.id,
        warehouse_id=destination.id,
    )
    product.status = status_before
    if outgoing.stock_after == 0:
        product.warehouse_id = destination.id
    ctx.db.flush()
    return outgoing, incoming
