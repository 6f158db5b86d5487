from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field

from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.brand import Brand
from app.models.product import Product
from app.services.listing import ListParams, apply_filters, list_params, paginate
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

router = APIRouter(prefix="/api/brands", tags=["brands"])


class BrandCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    website_url: Optional[str] = Field(None, max_length=500)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, max_length=20)
    is_active: bool = True


class BrandUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    logo_url: Optional[str] = Field(None, max_length=500)
    website_url: Optional[str] = Field(None, max_length=500)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(None, max_length=20)
    is_active: Optional[bool] = None


@router.get("")
def list_brands(
    params: ListParams = Depends(list_params),
    ctx: RequestContext = Depends(require_permission(Permission.BRANDS_VIEW)),
):
    query = apply_filters(
        scoped_query(ctx, Brand),
        Brand,
        params,
        search_fields=("name", "description"),
        sortable=("name",),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Brands retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_brand(payload: BrandCreate, ctx: RequestContext = Depends(require_permission(Permission.BRANDS_CREATE))):
    ensure_unique(ctx, Brand, "name", payload.name, "The brand name has already been taken")
    with atomic(ctx.db, "Failed to create brand"):
        brand = create_record(ctx, Brand, payload.model_dump(), entity="brand")
    return envelope(to_dict(brand), "Brand created successfully", tenant=ctx.tenant)


@router.get("/{brand_id}")
def show_brand(brand_id: int, ctx: RequestContext = Depends(require_permission(Permission.BRANDS_VIEW))):
    brand = get_scoped_or_404(ctx, Brand, brand_id, "Brand")
    products_count = scoped_query(ctx, Product).filter(Product.brand_id == brand.id).count()
    return envelope(to_dict(brand, products_count=products_count), "Brand retrieved successfully", tenant=ctx.tenant)


@router.put("/{brand_id}")
def update_brand(
    brand_id: int,
    payload: BrandUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.BRANDS_EDIT)),
):
    brand = get_scoped_or_404(ctx, Brand, brand_id, "Brand")
    changes = changes_from(payload, Brand)
    ensure_unique(ctx, Brand, "name", changes.get("name"), "The brand name has already been taken", exclude_id=brand.id)
    with atomic(ctx.db, "Failed to update brand"):
        update_record(ctx, brand, changes, entity="brand")
    return envelope(to_dict(brand), "Brand updated successfully", tenant=ctx.tenant)


@router.delete("/{brand_id}")
def delete_brand(brand_id: int, ctx: RequestContext = Depends(require_permission(Permission.BRANDS_DELETE))):
    brand = get_scoped_or_404(ctx, Brand, brand_id, "Brand")
    with atomic(ctx.db, "Failed to delete brand"):
        ensure_no_dependents(
            ctx,
            [(Product, Product.brand_id == brand.id, "Cannot delete brand with associated products")],
        )
        delete_record(ctx, brand, entity="brand")
    return envelope(None, "Brand deleted successfully", tenant=ctx.tenant)
