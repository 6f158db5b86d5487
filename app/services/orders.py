from __future__ import annotations

from typing import Any

from sqlalchemy import func

from app.core.database import utcnow
from app.core.errors import BusinessRuleError
from app.fsm.engine import ORDER_MACHINE
from app.models.customer_profile import CustomerProfile
from app.models.order import Order, OrderItem
from app.models.product import Product
from app.models.shop import Shop
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.audit import record_audit
from app.services.inventory import record_movement
from app.services.numbering import next_document_number
from app.services.serializers import snapshot, to_dict, to_dicts
from app.services.tenant_context import RequestContext, ensure_tenant_reference, scoped_query

ORDER_TIMESTAMPS = {
    "confirm": "confirmed_at",
    "ship": "shipped_at",
    "deliver": "delivered_at",
    "cancel": "cancelled_at",
}


def actual_price(product: Product) -> float:
    if product.discount_price is not None:
        return float(product.discount_price)
    return float(product.selling_price or 0)


def order_items(ctx: RequestContext, order: Order) -> list[OrderItem]:
    return (
        scoped_query(ctx, OrderItem)
        .filter(OrderItem.order_id == order.id)
        .order_by(OrderItem.id.asc())
        .all()
    )


def order_detail(ctx: RequestContext, order: Order) -> dict[str, Any]:
    return to_dict(
        order,
        items=to_dicts(order_items(ctx, order)),
        available_actions=ORDER_MACHINE.available_actions(order.status),
    )


def _validate_references(ctx: RequestContext, data: dict[str, Any]) -> None:
    ensure_tenant_reference(ctx, CustomerProfile, data.get("customer_id"), "Customer")
    ensure_tenant_reference(ctx, Shop, data.get("shop_id"), "Shop")
    ensure_tenant_reference(ctx, Warehouse, data.get("warehouse_id"), "Warehouse")


def create_order(ctx: RequestContext, data: dict[str, Any], items: list[dict[str, Any]]) -> Order:
    """Persist an order and its items; the caller owns the transaction.

    A line whose product is missing raises ``LookupError`` after earlier rows
    were flushed, so the surrounding transaction must roll everything back.
    """
    tenant_id = ctx.require_tenant()
    if not items:
        raise BusinessRuleError("Order requires at least one item")
    _validate_references(ctx, data)

    shipping = float(data.get("shipping_amount") or 0)
    order = Order(
        tenant_id=tenant_id,
        order_number=next_document_number(ctx, Order, "order_number", "ORD"),
        customer_id=data.get("customer_id"),
        shop_id=data.get("shop_id"),
        warehouse_id=data.get("warehouse_id"),
        order_date=utcnow(),
        payment_method=data.get("payment_method"),
        shipping_address=data.get("shipping_address"),
        shipping_city=data.get("shipping_city"),
        shipping_postal_code=data.get("shipping_postal_code"),
        shipping_method=data.get("shipping_method"),
        shipping_amount=shipping,
        customer_notes=data.get("customer_notes"),
        internal_notes=data.get("internal_notes"),
        status="pending",
        payment_status="pending",
        created_by=ctx.user_id,
    )
    ctx.db.add(order)
    ctx.db.flush()

    subtotal = 0.0
    total_discount = 0.0
    total_tax = 0.0
    for line in items:
        product = scoped_query(ctx, Product).filter(Product.id == line["product_id"]).first()
        if product is None:
            raise LookupError(f"Product {line['product_id']} not found or does not belong to tenant")

        quantity = int(line["quantity"])
        unit_price = line.get("unit_price")
        unit_price = actual_price(product) if unit_price is None else float(unit_price)
        discount = float(line.get("discount_amount") or 0)
        total_price = round((unit_price - discount) * quantity, 2)
        tax = round(total_price * float(product.tax_rate or 0) / 100, 2)

        ctx.db.add(
            OrderItem(
                tenant_id=tenant_id,
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                unit_price=unit_price,
                discount_amount=discount,
                total_price=total_price,
                tax_amount=tax,
            )
        )
        subtotal += total_price
        total_discount += discount * quantity
        total_tax += tax

    order.subtotal = round(subtotal, 2)
    order.discount_amount = round(total_discount, 2)
    order.tax_amount = round(total_tax, 2)
    order.total_amount = round(subtotal + total_tax + shipping, 2)
    ctx.db.flush()

    record_audit(
        ctx,
        "order_created",
        table_name="orders",
        record_id=order.id,
        new_values={"order_number": order.order_number, "items": len(items), "total_amount": order.total_amount},
    )
    dashboard.invalidate(tenant_id)
    return order


def update_order(ctx: RequestContext, order: Order, changes: dict[str, Any]) -> Order:
    ORDER_MACHINE.ensure(order.status, "modify")
    old_values = snapshot(order)
    for field, value in changes.items():
        setattr(order, field, value)
    if "shipping_amount" in changes:
        order.total_amount = round(
            float(order.subtotal or 0) + float(order.tax_amount or 0) + float(order.shipping_amount or 0), 2
        )
    ctx.db.flush()
    record_audit(
        ctx,
        "order_updated",
        table_name="orders",
        record_id=order.id,
        old_values=old_values,
        new_values=snapshot(order),
    )
    dashboard.invalidate(order.tenant_id)
    return order


def delete_order(ctx: RequestContext, order: Order) -> None:
    ORDER_MACHINE.ensure(order.status, "delete")
    deleted = snapshot(order)
    scoped_query(ctx, OrderItem).filter(OrderItem.order_id == order.id).delete(synchronize_session=False)
    ctx.db.delete(order)
    ctx.db.flush()
    record_audit(ctx, "order_deleted", table_name="orders", record_id=deleted["id"], old_values=deleted)
    dashboard.invalidate(deleted["tenant_id"])


def _deduct_stock(ctx: RequestContext, order: Order) -> None:
    for item in order_items(ctx, order):
        product = scoped_query(ctx, Product).filter(Product.id == item.product_id).first()
        if product is None:
            raise LookupError(f"Product {item.product_id} not found or does not belong to tenant")
        record_movement(
            ctx,
            product,
            "sale",
            -int(item.quantity),
            reason=f"Order {order.order_number}",
            reference_type="order",
            reference_id=order.id,
            warehouse_id=order.warehouse_id,
            shop_id=order.shop_id,
        )


def transition_order(
    ctx: RequestContext,
    order: Order,
    action: str,
    *,
    tracking_number: str | None = None,
    reason: str | None = None,
) -> Order:
    """Run one FSM action; invalid actions raise before anything changes."""
    previous = order.status
    order.status = ORDER_MACHINE.apply(previous, action)

    timestamp_field = ORDER_TIMESTAMPS.get(action)
    if timestamp_field:
        setattr(order, timestamp_field, utcnow())
    if action == "ship":
        if tracking_number:
            order.tracking_number = tracking_number
        _deduct_stock(ctx, order)
    if action == "cancel" and reason:
        note = f"Cancellation reason: {reason}"
        order.internal_notes = f"{order.internal_notes}\n{note}" if order.internal_notes else note

    ctx.db.flush()
    details: dict[str, Any] = {"status": order.status}
    if tracking_number:
        details["tracking_number"] = tracking_number
    if reason:
        details["reason"] = reason
    record_audit(
        ctx,
        f"order_{order.status}",
        table_name="orders",
        record_id=order.id,
        old_values={"status": previous},
        new_values=details,
    )
    dashboard.invalidate(order.tenant_id)
    return order


def record_payment(ctx: RequestContext, order: Order, payment_method: str, amount: float | None = None) -> Order:
    if order.status == "cancelled":
        raise BusinessRuleError("Cannot record payment for a cancelled order")
    if order.payment_status in {"paid", "refunded"}:
        raise BusinessRuleError(f"Order payment is already {order.payment_status}")

    total = float(order.total_amount or 0)
    paid = float(order.paid_amount or 0)
    amount = round(total - paid, 2) if amount is None else float(amount)
    if amount <= 0:
        raise BusinessRuleError("Payment amount must be greater than zero")

    previous = order.payment_status
    order.paid_amount = round(paid + amount, 2)
    order.payment_method = payment_method
    order.payment_status = "paid" if order.paid_amount >= total else "partially_paid"
    ctx.db.flush()
    record_audit(
        ctx,
        "order_payment_received",
        table_name="orders",
        record_id=order.id,
        old_values={"payment_status": previous},
        new_values={"payment_status": order.payment_status, "payment_method": payment_method, "amount": amount},
    )
    dashboard.invalidate(order.tenant_id)
    return order


def refund_order(ctx: RequestContext, order: Order, reason: str | None = None) -> Order:
    if order.payment_status not in {"paid", "partially_paid"}:
        raise BusinessRuleError("Only paid orders can be refunded")
    previous = order.payment_status
    order.payment_status = "refunded"
    ctx.db.flush()
    record_audit(
        ctx,
        "order_refunded",
        table_name="orders",
        record_id=order.id,
        old_values={"payment_status": previous},
        new_values={"payment_status": "refunded", "reason": reason},
    )
    dashboard.invalidate(order.tenant_id)
    return order


def order_stats(query) -> dict[str, Any]:
    """Counts per status and revenue figures over an already scoped query."""
    counts = dict(query.with_entities(Order.status, func.count(Order.id)).group_by(Order.status).all())
    revenue = (
        query.filter(Order.status == "delivered").with_entities(func.coalesce(func.sum(Order.total_amount), 0)).scalar()
    )
    pending_value = (
        query.filter(Order.status.in_(("pending", "confirmed", "processing")))
        .with_entities(func.coalesce(func.sum(Order.total_amount), 0))
        .scalar()
    )
    average = query.filter(Order.total_amount > 0).with_entities(func.avg(Order.total_amount)).scalar()
    by_method = (
        query.filter(Order.payment_method.isnot(None))
        .with_entities(Order.payment_method, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .group_by(Order.payment_method)
        .all()
    )
    return {
        "total_orders": sum(counts.values()),
        "pending_orders": counts.get("pending", 0),
        "confirmed_orders": counts.get("confirmed", 0),
        "processing_orders": counts.get("processing", 0),
        "shipped_orders": counts.get("shipped", 0),
        "delivered_orders": counts.get("delivered", 0),
        "cancelled_orders": counts.get("cancelled", 0),
        "total_revenue": round(float(revenue or 0), 2),
        "pending_value": round(float(pending_value or 0), 2),
        "average_order_value": round(float(average or 0), 2),
        "orders_by_payment_method": [
            {"payment_method": row[0], "count": int(row[1]), "total": round(float(row[2] or 0), 2)} for row in by_method
        ],
    }
