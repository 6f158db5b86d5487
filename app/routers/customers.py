from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.customer_profile import CustomerProfile
from app.models.order import Order
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
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/customers", tags=["customers"])

GENDER_PATTERN = "^(male|female|other)$"
CONTACT_PATTERN = "^(email|phone|sms)$"


class CustomerCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, pattern=GENDER_PATTERN)
    preferred_contact_method: Optional[str] = Field(None, pattern=CONTACT_PATTERN)
    marketing_consent: bool = False
    is_active: bool = True


class CustomerUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, pattern=GENDER_PATTERN)
    preferred_contact_method: Optional[str] = Field(None, pattern=CONTACT_PATTERN)
    marketing_consent: Optional[bool] = None
    loyalty_points: Optional[int] = Field(None, ge=0)


@router.get("")
def list_customers(
    params: ListParams = Depends(list_params),
    city: Optional[str] = None,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_VIEW)),
):
    query = scoped_query(ctx, CustomerProfile)
    if city:
        query = query.filter(CustomerProfile.city == city)
    query = apply_filters(
        query,
        CustomerProfile,
        params,
        search_fields=("full_name", "email", "phone_number", "customer_code"),
        sortable=("full_name", "email", "loyalty_points"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Customers retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_CREATE)),
):
    data = payload.model_dump()
    data["email"] = data["email"].strip().lower()
    ensure_unique(ctx, CustomerProfile, "email", data["email"], "The email has already been taken")
    with atomic(ctx.db, "Failed to create customer"):
        data["customer_code"] = unique_code(ctx, CustomerProfile, "customer_code", "CUS")
        customer = create_record(ctx, CustomerProfile, data, entity="customer")
    return envelope(to_dict(customer), "Customer created successfully", tenant=ctx.tenant)


@router.get("/{customer_id}")
def show_customer(customer_id: int, ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_VIEW))):
    customer = get_scoped_or_404(ctx, CustomerProfile, customer_id, "Customer")
    orders = scoped_query(ctx, Order).filter(Order.customer_id == customer.id)
    data = to_dict(
        customer,
        orders_count=orders.count(),
        total_spent=round(
            float(
                orders.filter(Order.status != "cancelled")
                .with_entities(func.coalesce(func.sum(Order.total_amount), 0))
                .scalar()
                or 0
            ),
            2,
        ),
    )
    return envelope(data, "Customer retrieved successfully", tenant=ctx.tenant)


@router.put("/{customer_id}")
def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_EDIT)),
):
    customer = get_scoped_or_404(ctx, CustomerProfile, customer_id, "Customer")
    changes = changes_from(payload, CustomerProfile)
    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
        ensure_unique(
            ctx,
            CustomerProfile,
            "email",
            changes["email"],
            "The email has already been taken",
            exclude_id=customer.id,
        )
    with atomic(ctx.db, "Failed to update customer"):
        update_record(ctx, customer, changes, entity="customer")
    return envelope(to_dict(customer), "Customer updated successfully", tenant=ctx.tenant)


@router.delete("/{customer_id}")
def delete_customer(
    customer_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_DELETE)),
):
    customer = get_scoped_or_404(ctx, CustomerProfile, customer_id, "Customer")
    with atomic(ctx.db, "Failed to delete customer"):
        ensure_no_dependents(
            ctx,
            [(Order, Order.customer_id == customer.id, "Cannot delete customer with existing orders")],
        )
        delete_record(ctx, customer, entity="customer")
    return envelope(None, "Customer deleted successfully", tenant=ctx.tenant)


def _set_active(ctx: RequestContext, customer_id: int, active: bool) -> CustomerProfile:
    customer = get_scoped_or_404(ctx, CustomerProfile, customer_id, "Customer")
    if customer.is_active == active:
        state = "active" if active else "inactive"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Customer is already {state}")
    with atomic(ctx.db, "Failed to update customer status"):
        update_record(ctx, customer, {"is_active": active}, entity="customer")
    return customer


@router.post("/{customer_id}/activate")
def activate_customer(
    customer_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_EDIT)),
):
    customer = _set_active(ctx, customer_id, True)
    return envelope(to_dict(customer), "Customer activated successfully", tenant=ctx.tenant)


@router.post("/{customer_id}/deactivate")
def deactivate_customer(
    customer_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.CUSTOMERS_EDIT)),
):
    customer = _set_active(ctx, customer_id, False)
    return envelope(to_dict(customer), "Customer deactivated successfully", tenant=ctx.tenant)
