from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.product import Product
from app.models.purchase import Purchase
from app.models.supplier import Supplier
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.records import changes_from, create_record, delete_record, ensure_no_dependents, update_record
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/suppliers", tags=["suppliers"])


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    contact_person: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    tax_number: Optional[str] = Field(None, max_length=50)
    payment_terms: Optional[str] = Field(None, max_length=100)
    credit_limit: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    is_active: bool = True


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    contact_person: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    tax_number: Optional[str] = Field(None, max_length=50)
    payment_terms: Optional[str] = Field(None, max_length=100)
    credit_limit: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    is_active: Optional[bool] = None


@router.get("")
def list_suppliers(
    params: ListParams = Depends(list_params),
    country: Optional[str] = None,
    min_rating: Optional[float] = None,
    ctx: RequestContext = Depends(require_permission(Permission.SUPPLIERS_VIEW)),
):
    query = scoped_query(ctx, Supplier)
    if country:
        query = query.filter(Supplier.country == country)
    if min_rating is not None:
        query = query.filter(Supplier.rating >= min_rating)
    query = apply_filters(
        query,
        Supplier,
        params,
        search_fields=("name", "contact_person", "email", "phone_number"),
        sortable=("name", "rating", "city"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Suppliers retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_supplier(
    payload: SupplierCreate,
    ctx: RequestContext = Depends(require_permission(Permission.SUPPLIERS_CREATE)),
):
    with atomic(ctx.db, "Failed to create supplier"):
        supplier = create_record(ctx, Supplier, payload.model_dump(), entity="supplier")
    return envelope(to_dict(supplier), "Supplier created successfully", tenant=ctx.tenant)


@router.get("/{supplier_id}")
def show_supplier(supplier_id: int, ctx: RequestContext = Depends(require_permission(Permission.SUPPLIERS_VIEW))):
    supplier = get_scoped_or_404(ctx, Supplier, supplier_id, "Supplier")
    purchases = scoped_query(ctx, Purchase).filter(Purchase.supplier_id == supplier.id)
    data = to_dict(
        supplier,
        products_count=scoped_query(ctx, Product).filter(Product.supplier_id == supplier.id).count(),
        purchases_count=purchases.count(),
        total_purchased=round(
            float(purchases.with_entities(func.coalesce(func.sum(Purchase.total_amount), 0)).scalar() or 0), 2
        ),
    )
    return envelope(data, "Supplier retrieved successfully", tenant=ctx.tenant)


@router.put("/{supplier_id}")
def update_supplier(
    supplier_id: int,
    payload: SupplierUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.SUPPLIERS_EDIT)),
):
    supplier = get_scoped_or_404(ctx, Supplier, supplier_id, "Supplier")
    with atomic(ctx.db, "Failed to update supplier"):
        update_record(ctx, supplier, changes_from(payload, Supplier), entity="supplier")
    return envelope(to_dict(supplier), "Supplier updated successfully", tenant=ctx.tenant)


@router.delete("/{supplier_id}")
def delete_supplier(
    supplier_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.SUPPLIERS_DELETE)),
):
    supplier = get_scoped_or_404(ctx, Supplier, supplier_id, "Supplier")
    with atomic(ctx.db, "Failed to delete supplier"):
        ensure_no_dependents(
            ctx,
            [
                (Product, Product.supplier_id == supplier.id, "Cannot delete supplier with associated products"),
                (Purchase, Purchase.supplier_id == supplier.id, "Cannot delete supplier with purchase history"),
            ],
        )
        delete_record(ctx, supplier, entity="supplier")
    return envelope(None, "Supplier deleted successfully", tenant=ctx.tenant)
