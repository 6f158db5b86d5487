from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.order import PAYMENT_METHODS, Order
from app.services import orders as order_service
from app.services.listing import ListParams, apply_date_range, apply_filters, list_params, paginate
from app.services.records import changes_from
from app.services.serializers import to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/orders", tags=["orders"])

PAYMENT_METHOD_PATTERN = "^(" + "|".join(PAYMENT_METHODS) + ")$"


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Optional[float] = Field(None, ge=0)
    discount_amount: float = Field(0, ge=0)


class OrderCreate(BaseModel):
    customer_id: Optional[int] = None
    shop_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    payment_method: Optional[str] = Field(None, pattern=PAYMENT_METHOD_PATTERN)
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = Field(None, max_length=100)
    shipping_postal_code: Optional[str] = Field(None, max_length=20)
    shipping_method: Optional[str] = Field(None, max_length=50)
    shipping_amount: float = Field(0, ge=0)
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderUpdate(BaseModel):
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = Field(None, max_length=100)
    shipping_postal_code: Optional[str] = Field(None, max_length=20)
    shipping_method: Optional[str] = Field(None, max_length=50)
    shipping_amount: Optional[float] = Field(None, ge=0)
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None


class ShipRequest(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PaymentRequest(BaseModel):
    payment_method: str = Field(..., pattern=PAYMENT_METHOD_PATTERN)
    amount: Optional[float] = Field(None, gt=0)


def _scoped_orders(
    ctx: RequestContext,
    customer_id: Optional[int],
    shop_id: Optional[int],
    warehouse_id: Optional[int],
    payment_status: Optional[str],
):
    query = scoped_query(ctx, Order)
    for column, value in (
        (Order.customer_id, customer_id),
        (Order.shop_id, shop_id),
        (Order.warehouse_id, warehouse_id),
        (Order.payment_status, payment_status),
    ):
        if value is not None:
            query = query.filter(column == value)
    return query


@router.get("")
def list_orders(
    params: ListParams = Depends(list_params),
    customer_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_VIEW)),
):
    query = _scoped_orders(ctx, customer_id, shop_id, warehouse_id, payment_status)
    if min_amount is not None:
        query = query.filter(Order.total_amount >= min_amount)
    if max_amount is not None:
        query = query.filter(Order.total_amount <= max_amount)
    query = apply_filters(
        query,
        Order,
        params,
        search_fields=("order_number", "tracking_number", "customer_notes"),
        sortable=("order_number", "order_date", "total_amount", "status"),
        date_field="order_date",
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Orders retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def get_order_stats(
    params: ListParams = Depends(list_params),
    shop_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_VIEW)),
):
    query = _scoped_orders(ctx, None, shop_id, warehouse_id, None)
    if params.date_from or params.date_to:
        query = apply_date_range(query, Order, "order_date", params.date_from, params.date_to)
    return envelope(order_service.order_stats(query), "Order statistics retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_CREATE))):
    data = payload.model_dump(exclude={"items"})
    items = [item.model_dump() for item in payload.items]
    with atomic(ctx.db, "Failed to create order"):
        order = order_service.create_order(ctx, data, items)
    return envelope(order_service.order_detail(ctx, order), "Order created successfully", tenant=ctx.tenant)


@router.get("/{order_id}")
def show_order(order_id: int, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_VIEW))):
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    return envelope(order_service.order_detail(ctx, order), "Order retrieved successfully", tenant=ctx.tenant)


@router.put("/{order_id}")
def update_order(
    order_id: int,
    payload: OrderUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_EDIT)),
):
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    with atomic(ctx.db, "Failed to update order"):
        order_service.update_order(ctx, order, changes_from(payload, Order))
    return envelope(order_service.order_detail(ctx, order), "Order updated successfully", tenant=ctx.tenant)


@router.delete("/{order_id}")
def delete_order(order_id: int, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_DELETE))):
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    with atomic(ctx.db, "Failed to delete order"):
        order_service.delete_order(ctx, order)
    return envelope(None, "Order deleted successfully", tenant=ctx.tenant)


def _transition(ctx: RequestContext, order_id: int, action: str, **kwargs) -> Order:
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    with atomic(ctx.db, f"Failed to {action} order"):
        order_service.transition_order(ctx, order, action, **kwargs)
    return order


@router.post("/{order_id}/confirm")
def confirm_order(order_id: int, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE))):
    order = _transition(ctx, order_id, "confirm")
    return envelope(order_service.order_detail(ctx, order), "Order confirmed successfully", tenant=ctx.tenant)


@router.post("/{order_id}/process")
def process_order(order_id: int, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE))):
    order = _transition(ctx, order_id, "process")
    return envelope(order_service.order_detail(ctx, order), "Order is now being processed", tenant=ctx.tenant)


@router.post("/{order_id}/ship")
def ship_order(
    order_id: int,
    payload: Optional[ShipRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE)),
):
    tracking_number = payload.tracking_number if payload is not None else None
    order = _transition(ctx, order_id, "ship", tracking_number=tracking_number)
    return envelope(order_service.order_detail(ctx, order), "Order shipped successfully", tenant=ctx.tenant)


@router.post("/{order_id}/deliver")
def deliver_order(order_id: int, ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE))):
    order = _transition(ctx, order_id, "deliver")
    return envelope(order_service.order_detail(ctx, order), "Order delivered successfully", tenant=ctx.tenant)


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: int,
    payload: Optional[ReasonRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE)),
):
    reason = payload.reason if payload is not None else None
    order = _transition(ctx, order_id, "cancel", reason=reason)
    return envelope(order_service.order_detail(ctx, order), "Order cancelled successfully", tenant=ctx.tenant)


@router.post("/{order_id}/payment")
def record_order_payment(
    order_id: int,
    payload: PaymentRequest,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE_PAYMENT)),
):
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    with atomic(ctx.db, "Failed to record payment"):
        order_service.record_payment(ctx, order, payload.payment_method, payload.amount)
    return envelope(order_service.order_detail(ctx, order), "Payment recorded successfully", tenant=ctx.tenant)


@router.post("/{order_id}/refund")
def refund_order(
    order_id: int,
    payload: Optional[ReasonRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.ORDERS_MANAGE_PAYMENT)),
):
    order = get_scoped_or_404(ctx, Order, order_id, "Order")
    with atomic(ctx.db, "Failed to refund order"):
        order_service.refund_order(ctx, order, payload.reason if payload is not None else None)
    return envelope(order_service.order_detail(ctx, order), "Order refunded successfully", tenant=ctx.tenant)
