from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.purchase import PURCHASE_PAYMENT_STATUSES, Purchase
from app.services import purchases as purchase_service
from app.services.listing import ListParams, apply_date_range, apply_filters, list_params, paginate
from app.services.records import changes_from
from app.services.serializers import to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/purchases", tags=["purchases"])

PAYMENT_STATUS_PATTERN = "^(" + "|".join(PURCHASE_PAYMENT_STATUSES) + ")$"


class PurchaseItemIn(BaseModel):
    product_id: int
    quantity_ordered: int = Field(..., ge=1)
    unit_cost: float = Field(..., ge=0)


class PurchaseCreate(BaseModel):
    supplier_id: int
    warehouse_id: int
    shop_id: Optional[int] = None
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    tax_amount: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    shipping_amount: float = Field(0, ge=0)
    status: str = Field("draft", pattern="^(draft|pending)$")
    payment_terms: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    items: List[PurchaseItemIn] = Field(..., min_length=1)

    @field_validator("expected_delivery_date")
    @classmethod
    def _after_order_date(cls, value: Optional[date], info: ValidationInfo) -> Optional[date]:
        order_date = info.data.get("order_date")
        if value is not None and order_date is not None and value < order_date:
            raise ValueError("The expected delivery date must be on or after the order date")
        return value


class PurchaseUpdate(BaseModel):
    supplier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    shop_id: Optional[int] = None
    expected_delivery_date: Optional[date] = None
    tax_amount: Optional[float] = Field(None, ge=0)
    discount_amount: Optional[float] = Field(None, ge=0)
    shipping_amount: Optional[float] = Field(None, ge=0)
    payment_terms: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    items: Optional[List[PurchaseItemIn]] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReceiptLine(BaseModel):
    purchase_item_id: int
    quantity_received: int = Field(..., ge=1)


class ReceiveRequest(BaseModel):
    items: Optional[List[ReceiptLine]] = None


class PaymentStatusUpdate(BaseModel):
    payment_status: str = Field(..., pattern=PAYMENT_STATUS_PATTERN)


def _scoped_purchases(ctx: RequestContext, supplier_id: Optional[int], warehouse_id: Optional[int]):
    query = scoped_query(ctx, Purchase)
    if supplier_id is not None:
        query = query.filter(Purchase.supplier_id == supplier_id)
    if warehouse_id is not None:
        query = query.filter(Purchase.warehouse_id == warehouse_id)
    return query


@router.get("")
def list_purchases(
    params: ListParams = Depends(list_params),
    supplier_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    payment_status: Optional[str] = None,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_VIEW)),
):
    query = _scoped_purchases(ctx, supplier_id, warehouse_id)
    if payment_status:
        query = query.filter(Purchase.payment_status == payment_status)
    query = apply_filters(
        query,
        Purchase,
        params,
        search_fields=("purchase_number", "notes"),
        sortable=("purchase_number", "order_date", "total_amount", "status"),
        date_field="order_date",
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Purchases retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def get_purchase_stats(
    params: ListParams = Depends(list_params),
    supplier_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_VIEW)),
):
    query = _scoped_purchases(ctx, supplier_id, warehouse_id)
    if params.date_from or params.date_to:
        query = apply_date_range(query, Purchase, "order_date", params.date_from, params.date_to)
    return envelope(
        purchase_service.purchase_stats(query),
        "Purchase statistics retrieved successfully",
        tenant=ctx.tenant,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_purchase(
    payload: PurchaseCreate,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_CREATE)),
):
    data = payload.model_dump(exclude={"items"})
    items = [item.model_dump() for item in payload.items]
    with atomic(ctx.db, "Failed to create purchase"):
        purchase = purchase_service.create_purchase(ctx, data, items)
    return envelope(purchase_service.purchase_detail(ctx, purchase), "Purchase created successfully", tenant=ctx.tenant)


@router.get("/{purchase_id}")
def show_purchase(purchase_id: int, ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_VIEW))):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    return envelope(
        purchase_service.purchase_detail(ctx, purchase),
        "Purchase retrieved successfully",
        tenant=ctx.tenant,
    )


@router.put("/{purchase_id}")
def update_purchase(
    purchase_id: int,
    payload: PurchaseUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_EDIT)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    changes = changes_from(payload, Purchase, exclude={"items"})
    items = [item.model_dump() for item in payload.items] if payload.items is not None else None
    with atomic(ctx.db, "Failed to update purchase"):
        purchase_service.update_purchase(ctx, purchase, changes, items)
    return envelope(purchase_service.purchase_detail(ctx, purchase), "Purchase updated successfully", tenant=ctx.tenant)


@router.delete("/{purchase_id}")
def delete_purchase(
    purchase_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_DELETE)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    with atomic(ctx.db, "Failed to delete purchase"):
        purchase_service.delete_purchase(ctx, purchase)
    return envelope(None, "Purchase deleted successfully", tenant=ctx.tenant)


@router.post("/{purchase_id}/confirm")
def confirm_purchase(
    purchase_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_MANAGE)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    with atomic(ctx.db, "Failed to confirm purchase"):
        purchase_service.transition_purchase(ctx, purchase, "confirm")
    return envelope(
        purchase_service.purchase_detail(ctx, purchase),
        "Purchase confirmed successfully",
        tenant=ctx.tenant,
    )


@router.post("/{purchase_id}/cancel")
def cancel_purchase(
    purchase_id: int,
    payload: Optional[CancelRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_MANAGE)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    reason = payload.reason if payload is not None else None
    with atomic(ctx.db, "Failed to cancel purchase"):
        purchase_service.transition_purchase(ctx, purchase, "cancel", reason=reason)
    return envelope(
        purchase_service.purchase_detail(ctx, purchase),
        "Purchase cancelled successfully",
        tenant=ctx.tenant,
    )


@router.post("/{purchase_id}/receive")
def receive_purchase(
    purchase_id: int,
    payload: Optional[ReceiveRequest] = None,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_RECEIVE)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    receipts = None
    if payload is not None and payload.items is not None:
        receipts = [line.model_dump() for line in payload.items]
    with atomic(ctx.db, "Failed to receive purchase items"):
        received = purchase_service.receive_items(ctx, purchase, receipts)
    data = purchase_service.purchase_detail(ctx, purchase)
    data["received_items"] = received
    return envelope(data, "Purchase items received successfully", tenant=ctx.tenant)


@router.patch("/{purchase_id}/payment-status")
def update_payment_status(
    purchase_id: int,
    payload: PaymentStatusUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.PURCHASES_MANAGE_PAYMENT)),
):
    purchase = get_scoped_or_404(ctx, Purchase, purchase_id, "Purchase")
    with atomic(ctx.db, "Failed to update payment status"):
        purchase_service.update_payment_status(ctx, purchase, payload.payment_status)
    return envelope(
        purchase_service.purchase_detail(ctx, purchase),
        "Payment status updated successfully",
        tenant=ctx.tenant,
    )
