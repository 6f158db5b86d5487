from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator
from sqlalchemy import func

from app.core.errors import BusinessRuleError, field_error
from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.brand import Brand
from app.models.category import Category
from app.models.order import Order, OrderItem
from app.models.product import PRODUCT_STATUSES, Product
from app.models.purchase import PurchaseItem
from app.models.shop import Shop
from app.models.supplier import Supplier
from app.models.warehouse import Warehouse
from app.services import dashboard
from app.services.audit import record_audit
from app.services.inventory import adjust_stock, filter_stock_status, low_stock_clause, stock_status
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.orders import actual_price
from app.services.records import (
    blocking_dependent,
    changes_from,
    create_record,
    delete_record,
    ensure_unique,
    scoped_batch,
    update_record,
)
from app.services.serializers import to_dict
from app.services.tenant_context import RequestContext, ensure_tenant_reference, get_scoped_or_404, scoped_query
from app.services.tenant_limits import ensure_within_limit
from app.services.transactions import atomic

router = APIRouter(prefix="/api/products", tags=["products"])

STATUS_PATTERN = "^(" + "|".join(PRODUCT_STATUSES) + ")$"
STOCK_OPERATIONS = {"add": "increase", "subtract": "decrease", "set": "set"}
OPEN_ORDER_STATUSES = ("pending", "confirmed", "processing")
BULK_ACTION_PATTERN = "^(activate|deactivate|delete|update_category|update_status|feature|unfeature)$"


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    sku: str = Field(..., min_length=1, max_length=100)
    barcode: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    supplier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    shop_id: Optional[int] = None
    cost_price: float = Field(..., ge=0)
    selling_price: float = Field(..., ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    tax_rate: float = Field(0, ge=0, le=100)
    stock_quantity: int = Field(0, ge=0)
    min_stock_level: int = Field(0, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    status: str = Field("active", pattern=STATUS_PATTERN)
    is_featured: bool = False
    tags: Optional[List[str]] = None
    primary_image_url: Optional[str] = Field(None, max_length=500)

    @field_validator("discount_price")
    @classmethod
    def _below_selling_price(cls, value: Optional[float], info: ValidationInfo) -> Optional[float]:
        selling_price = info.data.get("selling_price")
        if value is not None and selling_price is not None and value >= selling_price:
            raise ValueError("The discount price must be less than the selling price")
        return value


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    barcode: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    supplier_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    shop_id: Optional[int] = None
    cost_price: Optional[float] = Field(None, ge=0)
    selling_price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    tax_rate: Optional[float] = Field(None, ge=0, le=100)
    min_stock_level: Optional[int] = Field(None, ge=0)
    max_stock_level: Optional[int] = Field(None, ge=0)
    reorder_point: Optional[int] = Field(None, ge=0)
    weight: Optional[float] = Field(None, ge=0)
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)
    is_featured: Optional[bool] = None
    tags: Optional[List[str]] = None
    primary_image_url: Optional[str] = Field(None, max_length=500)


class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: str = Field(..., pattern="^(set|add|subtract)$")
    reason: Optional[str] = Field(None, max_length=255)


class ProductBulkAction(BaseModel):
    action: str = Field(..., pattern=BULK_ACTION_PATTERN)
    product_ids: List[int] = Field(..., min_length=1)
    category_id: Optional[int] = None
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)

    @model_validator(mode="after")
    def _action_arguments(self) -> "ProductBulkAction":
        if self.action == "update_category" and self.category_id is None:
            raise ValueError("The category id field is required for update_category")
        if self.action == "update_status" and self.status is None:
            raise ValueError("The status field is required for update_status")
        return self


def _validate_references(ctx: RequestContext, data: dict) -> None:
    ensure_tenant_reference(ctx, Category, data.get("category_id"), "Category")
    ensure_tenant_reference(ctx, Brand, data.get("brand_id"), "Brand")
    ensure_tenant_reference(ctx, Supplier, data.get("supplier_id"), "Supplier")
    ensure_tenant_reference(ctx, Warehouse, data.get("warehouse_id"), "Warehouse")
    ensure_tenant_reference(ctx, Shop, data.get("shop_id"), "Shop")


def _product_payload(product: Product) -> dict:
    return to_dict(product, stock_status=stock_status(product), actual_price=actual_price(product))


def _deletion_blocker(ctx: RequestContext, product: Product) -> str | None:
    open_orders = (
        scoped_query(ctx, OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.product_id == product.id, Order.status.in_(OPEN_ORDER_STATUSES))
    )
    if open_orders.first() is not None:
        return "Cannot delete product with pending orders"
    return blocking_dependent(
        ctx,
        [
            (OrderItem, OrderItem.product_id == product.id, "Cannot delete product with order history"),
            (PurchaseItem, PurchaseItem.product_id == product.id, "Cannot delete product with purchase history"),
        ],
    )


@router.get("")
def list_products(
    params: ListParams = Depends(list_params),
    category_id: Optional[int] = None,
    brand_id: Optional[int] = None,
    supplier_id: Optional[int] = None,
    warehouse_id: Optional[int] = None,
    shop_id: Optional[int] = None,
    stock_status_filter: Optional[str] = Query(None, alias="stock_status"),
    is_featured: Optional[bool] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_VIEW)),
):
    query = scoped_query(ctx, Product)
    for column, value in (
        (Product.category_id, category_id),
        (Product.brand_id, brand_id),
        (Product.supplier_id, supplier_id),
        (Product.warehouse_id, warehouse_id),
        (Product.shop_id, shop_id),
    ):
        if value is not None:
            query = query.filter(column == value)
    if stock_status_filter:
        query = filter_stock_status(query, stock_status_filter)
    if is_featured is not None:
        query = query.filter(Product.is_featured.is_(is_featured))
    if min_price is not None:
        query = query.filter(Product.selling_price >= min_price)
    if max_price is not None:
        query = query.filter(Product.selling_price <= max_price)
    query = apply_filters(
        query,
        Product,
        params,
        search_fields=("name", "sku", "barcode", "description"),
        sortable=("name", "sku", "selling_price", "stock_quantity"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(
        [_product_payload(product) for product in items],
        meta,
        "Products retrieved successfully",
        tenant=ctx.tenant,
    )


@router.get("/low-stock")
def low_stock_products(
    params: ListParams = Depends(list_params),
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_VIEW)),
):
    query = scoped_query(ctx, Product).filter(low_stock_clause(), Product.status != "discontinued")
    query = query.order_by(Product.stock_quantity.asc(), Product.id.asc())
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(
        [_product_payload(product) for product in items],
        meta,
        "Low stock products retrieved successfully",
        tenant=ctx.tenant,
    )


@router.get("/stats")
def product_stats(ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_VIEW))):
    query = scoped_query(ctx, Product)
    counts = dict(query.with_entities(Product.status, func.count(Product.id)).group_by(Product.status).all())
    value = query.with_entities(
        func.coalesce(func.sum(Product.stock_quantity * Product.cost_price), 0),
        func.coalesce(func.sum(Product.stock_quantity * Product.selling_price), 0),
    ).one()
    data = {
        "total_products": sum(counts.values()),
        "active_products": counts.get("active", 0),
        "inactive_products": counts.get("inactive", 0),
        "discontinued_products": counts.get("discontinued", 0),
        "out_of_stock_products": query.filter(Product.stock_quantity <= 0).count(),
        "low_stock_products": query.filter(Product.stock_quantity > 0, low_stock_clause()).count(),
        "featured_products": query.filter(Product.is_featured.is_(True)).count(),
        "total_stock_value": round(float(value[0] or 0), 2),
        "total_retail_value": round(float(value[1] or 0), 2),
    }
    return envelope(data, "Product statistics retrieved successfully", tenant=ctx.tenant)


@router.get("/needs-reorder")
def products_needing_reorder(
    params: ListParams = Depends(list_params),
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_VIEW)),
):
    query = filter_stock_status(scoped_query(ctx, Product), "needs_reorder").filter(Product.status != "discontinued")
    query = query.order_by(Product.stock_quantity.asc(), Product.id.asc())
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(
        [_product_payload(product) for product in items],
        meta,
        "Products needing reorder retrieved successfully",
        tenant=ctx.tenant,
    )


@router.post("/bulk")
def bulk_product_action(
    payload: ProductBulkAction,
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_BULK_ACTIONS)),
):
    with atomic(ctx.db, "Bulk action failed"):
        products = scoped_batch(ctx, Product, payload.product_ids, "products")
        if payload.action == "update_category":
            ensure_tenant_reference(ctx, Category, payload.category_id, "Category")
        results = []
        for product in products:
            if payload.action == "delete":
                blocker = _deletion_blocker(ctx, product)
                if blocker is not None:
                    results.append(f"Product {product.sku} skipped ({blocker})")
                    continue
                ctx.db.delete(product)
                results.append(f"Product {product.sku} deleted")
                continue
            if payload.action == "activate":
                product.status = "active" if (product.stock_quantity or 0) > 0 else "out_of_stock"
            elif payload.action == "deactivate":
                product.status = "inactive"
            elif payload.action == "update_status":
                product.status = payload.status
            elif payload.action == "update_category":
                product.category_id = payload.category_id
            else:
                product.is_featured = payload.action == "feature"
            results.append(f"Product {product.sku} updated")
        ctx.db.flush()
        record_audit(
            ctx,
            "bulk_product_action",
            table_name="products",
            new_values={"action": payload.action, "product_ids": payload.product_ids, "results": results},
        )
    dashboard.invalidate(ctx.require_tenant())
    data = {"action": payload.action, "results": results}
    return envelope(data, "Bulk action completed successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_CREATE)),
):
    data = payload.model_dump()
    ensure_unique(ctx, Product, "sku", data["sku"], "The SKU has already been taken")
    ensure_within_limit(ctx, "products")
    with atomic(ctx.db, "Failed to create product"):
        _validate_references(ctx, data)
        if data["stock_quantity"] <= 0 and data["status"] == "active":
            data["status"] = "out_of_stock"
        product = create_record(ctx, Product, data, entity="product", invalidates_dashboard=True)
    return envelope(_product_payload(product), "Product created successfully", tenant=ctx.tenant)


@router.get("/{product_id}")
def show_product(product_id: int, ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_VIEW))):
    product = get_scoped_or_404(ctx, Product, product_id, "Product")
    return envelope(_product_payload(product), "Product retrieved successfully", tenant=ctx.tenant)


@router.put("/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_EDIT)),
):
    product = get_scoped_or_404(ctx, Product, product_id, "Product")
    changes = changes_from(payload, Product)
    ensure_unique(ctx, Product, "sku", changes.get("sku"), "The SKU has already been taken", exclude_id=product.id)
    selling_price = changes.get("selling_price", product.selling_price)
    discount_price = changes.get("discount_price", product.discount_price)
    if discount_price is not None and selling_price is not None and discount_price >= selling_price:
        raise field_error("discount_price", "The discount price must be less than the selling price")
    with atomic(ctx.db, "Failed to update product"):
        _validate_references(ctx, changes)
        update_record(ctx, product, changes, entity="product", invalidates_dashboard=True)
    return envelope(_product_payload(product), "Product updated successfully", tenant=ctx.tenant)


@router.delete("/{product_id}")
def delete_product(product_id: int, ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_DELETE))):
    product = get_scoped_or_404(ctx, Product, product_id, "Product")
    with atomic(ctx.db, "Failed to delete product"):
        blocker = _deletion_blocker(ctx, product)
        if blocker is not None:
            raise BusinessRuleError(blocker)
        delete_record(ctx, product, entity="product", invalidates_dashboard=True)
    return envelope(None, "Product deleted successfully", tenant=ctx.tenant)


@router.patch("/{product_id}/stock")
def update_stock(
    product_id: int,
    payload: StockUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.PRODUCTS_MANAGE_STOCK)),
):
    product = get_scoped_or_404(ctx, Product, product_id, "Product")
    with atomic(ctx.db, "Failed to update stock"):
        movement = adjust_stock(
            ctx,
            product,
            STOCK_OPERATIONS[payload.operation],
            payload.quantity,
            reason=payload.reason or f"Stock {payload.operation}",
        )
        dashboard.invalidate(product.tenant_id)
    data = {
        "product": _product_payload(product),
        "movement": to_dict(movement),
    }
    return envelope(data, "Stock updated successfully", tenant=ctx.tenant)
