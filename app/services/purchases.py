from __future__ import annotations

from typing import Any

from sqlalchemy import func

from app.core.database import utcnow
from app.core.errors import BusinessRuleError
from app.fsm import states
from app.fsm.engine import PURCHASE_MACHINE
from app.models.product import Product
from app.models.purchase import Purchase, PurchaseItem
from app.models.shop import Shop
from app.models.supplier import Supplier
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.audit import record_audit
from app.services.inventory import record_movement
from app.services.numbering import next_document_number
from app.services.serializers import snapshot, to_dict, to_dicts
from app.services.tenant_context import RequestContext, ensure_tenant_reference, scoped_query


def purchase_items(ctx: RequestContext, purchase: Purchase) -> list[PurchaseItem]:
    return (
        scoped_query(ctx, PurchaseItem)
        .filter(PurchaseItem.purchase_id == purchase.id)
        .order_by(PurchaseItem.id.asc())
        .all()
    )


def purchase_detail(ctx: RequestContext, purchase: Purchase) -> dict[str, Any]:
    return to_dict(
        purchase,
        items=to_dicts(purchase_items(ctx, purchase)),
        available_actions=PURCHASE_MACHINE.available_actions(purchase.status),
    )


def _validate_references(ctx: RequestContext, data: dict[str, Any]) -> None:
    if "supplier_id" in data:
        ensure_tenant_reference(ctx, Supplier, data["supplier_id"], "Supplier")
    if "warehouse_id" in data:
        ensure_tenant_reference(ctx, Warehouse, data["warehouse_id"], "Warehouse")
    ensure_tenant_reference(ctx, Shop, data.get("shop_id"), "Shop")


def _write_items(ctx: RequestContext, purchase: Purchase, items: list[dict[str, Any]]) -> float:
    subtotal = 0.0
    for line in items:
        product = scoped_query(ctx, Product).filter(Product.id == line["product_id"]).first()
        if product is None:
            raise LookupError(f"Product {line['product_id']} not found or does not belong to tenant")
        quantity = int(line["quantity_ordered"])
        unit_cost = float(line["unit_cost"])
        total_cost = round(quantity * unit_cost, 2)
        ctx.db.add(
            PurchaseItem(
                tenant_id=purchase.tenant_id,
                purchase_id=purchase.id,
                product_id=product.id,
                quantity_ordered=quantity,
                quantity_received=0,
                unit_cost=unit_cost,
                total_cost=total_cost,
            )
        )
        subtotal += total_cost
    ctx.db.flush()
    return round(subtotal, 2)


def _recalculate_totals(purchase: Purchase, subtotal: float) -> None:
    purchase.subtotal = subtotal
    purchase.total_amount = round(
        subtotal
        + float(purchase.tax_amount or 0)
        + float(purchase.shipping_amount or 0)
        - float(purchase.discount_amount or 0),
        2,
    )


def create_purchase(ctx: RequestContext, data: dict[str, Any], items: list[dict[str, Any]]) -> Purchase:
    tenant_id = ctx.require_tenant()
    if not items:
        raise BusinessRuleError("Purchase requires at least one item")
    _validate_references(ctx, data)

    purchase = Purchase(
        tenant_id=tenant_id,
        purchase_number=next_document_number(ctx, Purchase, "purchase_number", "PUR"),
        supplier_id=data["supplier_id"],
        warehouse_id=data["warehouse_id"],
        shop_id=data.get("shop_id"),
        order_date=data.get("order_date") or utcnow().date(),
        expected_delivery_date=data.get("expected_delivery_date"),
        tax_amount=float(data.get("tax_amount") or 0),
        discount_amount=float(data.get("discount_amount") or 0),
        shipping_amount=float(data.get("shipping_amount") or 0),
        status=data.get("status") or states.PURCHASE_DRAFT,
        payment_status="pending",
        payment_terms=data.get("payment_terms"),
        notes=data.get("notes"),
        created_by=ctx.user_id,
    )
    ctx.db.add(purchase)
    ctx.db.flush()

    _recalculate_totals(purchase, _write_items(ctx, purchase, items))
    ctx.db.flush()
    record_audit(
        ctx,
        "purchase_created",
        table_name="purchases",
        record_id=purchase.id,
        new_values={
            "purchase_number": purchase.purchase_number,
            "items": len(items),
            "total_amount": purchase.total_amount,
        },
    )
    dashboard.invalidate(tenant_id)
    return purchase


def update_purchase(
    ctx: RequestContext,
    purchase: Purchase,
    changes: dict[str, Any],
    items: list[dict[str, Any]] | None = None,
) -> Purchase:
    PURCHASE_MACHINE.ensure(purchase.status, "modify")
    _validate_references(ctx, changes)
    old_values = snapshot(purchase)
    for field, value in changes.items():
        setattr(purchase, field, value)

    if items is not None:
        if not items:
            raise BusinessRuleError("Purchase requires at least one item")
        scoped_query(ctx, PurchaseItem).filter(PurchaseItem.purchase_id == purchase.id).delete(
            synchronize_session=False
        )
        subtotal = _write_items(ctx, purchase, items)
    else:
        subtotal = float(purchase.subtotal or 0)
    _recalculate_totals(purchase, subtotal)
    ctx.db.flush()

    record_audit(
        ctx,
        "purchase_updated",
        table_name="purchases",
        record_id=purchase.id,
        old_values=old_values,
        new_values=snapshot(purchase),
    )
    dashboard.invalidate(purchase.tenant_id)
    return purchase


def delete_purchase(ctx: RequestContext, purchase: Purchase) -> None:
    PURCHASE_MACHINE.ensure(purchase.status, "delete")
    deleted = snapshot(purchase)
    scoped_query(ctx, PurchaseItem).filter(PurchaseItem.purchase_id == purchase.id).delete(
        synchronize_session=False
    )
    ctx.db.delete(purchase)
    ctx.db.flush()
    record_audit(ctx, "purchase_deleted", table_name="purchases", record_id=deleted["id"], old_values=deleted)
    dashboard.invalidate(deleted["tenant_id"])


def transition_purchase(ctx: RequestContext, purchase: Purchase, action: str, *, reason: str | None = None) -> Purchase:
    previous = purchase.status
    purchase.status = PURCHASE_MACHINE.apply(previous, action)
    if action == "cancel" and reason:
        note = f"Cancellation reason: {reason}"
        purchase.notes = f"{purchase.notes}\n{note}" if purchase.notes else note
    ctx.db.flush()
    record_audit(
        ctx,
        f"purchase_{purchase.status}",
        table_name="purchases",
        record_id=purchase.id,
        old_values={"status": previous},
        new_values={"status": purchase.status, "reason": reason} if reason else {"status": purchase.status},
    )
    dashboard.invalidate(purchase.tenant_id)
    return purchase


def _receive_line(ctx: RequestContext, purchase: Purchase, item: PurchaseItem, quantity: int) -> int:
    remaining = item.quantity_ordered - item.quantity_received
    received = min(quantity, remaining)
    if received <= 0:
        raise BusinessRuleError(f"Purchase item {item.id} has nothing left to receive")

    product = scoped_query(ctx, Product).filter(Product.id == item.product_id).first()
    if product is None:
        raise LookupError(f"Product {item.product_id} not found or does not belong to tenant")

    item.quantity_received += received
    record_movement(
        ctx,
        product,
        "purchase",
        received,
        reason=f"Purchase {purchase.purchase_number}",
        reference_type="purchase",
        reference_id=purchase.id,
        unit_cost=item.unit_cost,
        warehouse_id=purchase.warehouse_id,
        shop_id=purchase.shop_id,
    )
    return received


def receive_items(
    ctx: RequestContext,
    purchase: Purchase,
    receipts: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Receive the given lines (or everything outstanding) and advance the status.

    Quantities are capped at what remains on each line.
    """
    PURCHASE_MACHINE.ensure(purchase.status, "receive")
    items = {item.id: item for item in purchase_items(ctx, purchase)}

    received: list[dict[str, Any]] = []
    if receipts is None:
        for item in items.values():
            if item.quantity_ordered - item.quantity_received > 0:
                quantity = _receive_line(ctx, purchase, item, item.quantity_ordered - item.quantity_received)
                received.append({"purchase_item_id": item.id, "product_id": item.product_id, "quantity": quantity})
    else:
        for receipt in receipts:
            item = items.get(receipt["purchase_item_id"])
            if item is None:
                raise BusinessRuleError(f"Purchase item {receipt['purchase_item_id']} not found")
            quantity = _receive_line(ctx, purchase, item, int(receipt["quantity_received"]))
            received.append({"purchase_item_id": item.id, "product_id": item.product_id, "quantity": quantity})

    if not received:
        raise BusinessRuleError("Nothing left to receive")

    previous = purchase.status
    ordered = sum(item.quantity_ordered for item in items.values())
    total_received = sum(item.quantity_received for item in items.values())
    if total_received >= ordered:
        purchase.status = states.PURCHASE_COMPLETED
        purchase.actual_delivery_date = utcnow().date()
    else:
        purchase.status = states.PURCHASE_PARTIALLY_RECEIVED
    ctx.db.flush()

    record_audit(
        ctx,
        "purchase_items_received",
        table_name="purchases",
        record_id=purchase.id,
        old_values={"status": previous},
        new_values={"status": purchase.status, "received_items": received},
    )
    dashboard.invalidate(purchase.tenant_id)
    return received


def update_payment_status(ctx: RequestContext, purchase: Purchase, payment_status: str) -> Purchase:
    if purchase.status == states.PURCHASE_CANCELLED:
        raise BusinessRuleError("Cannot update payment for a cancelled purchase")
    previous = purchase.payment_status
    purchase.payment_status = payment_status
    ctx.db.flush()
    record_audit(
        ctx,
        "purchase_payment_updated",
        table_name="purchases",
        record_id=purchase.id,
        old_values={"payment_status": previous},
        new_values={"payment_status": payment_status},
    )
    dashboard.invalidate(purchase.tenant_id)
    return purchase


def purchase_stats(query) -> dict[str, Any]:
    """Counts per status and spend figures over an already scoped query."""
    counts = dict(query.with_entities(Purchase.status, func.count(Purchase.id)).group_by(Purchase.status).all())
    payments = dict(
        query.with_entities(Purchase.payment_status, func.count(Purchase.id)).group_by(Purchase.payment_status).all()
    )
    total = query.filter(Purchase.status != states.PURCHASE_CANCELLED).with_entities(
        func.coalesce(func.sum(Purchase.total_amount), 0)
    )
    outstanding = query.filter(
        Purchase.status != states.PURCHASE_CANCELLED,
        Purchase.payment_status != "paid",
    ).with_entities(func.coalesce(func.sum(Purchase.total_amount), 0))
    return {
        "total_purchases": sum(counts.values()),
        "draft_purchases": counts.get(states.PURCHASE_DRAFT, 0),
        "pending_purchases": counts.get(states.PURCHASE_PENDING, 0),
        "confirmed_purchases": counts.get(states.PURCHASE_CONFIRMED, 0),
        "partially_received_purchases": counts.get(states.PURCHASE_PARTIALLY_RECEIVED, 0),
        "completed_purchases": counts.get(states.PURCHASE_COMPLETED, 0),
        "cancelled_purchases": counts.get(states.PURCHASE_CANCELLED, 0),
        "total_amount": round(float(total.scalar() or 0), 2),
        "outstanding_amount": round(float(outstanding.scalar() or 0), 2),
        "payment_status_breakdown": {status: int(count) for status, count in payments.items()},
    }
