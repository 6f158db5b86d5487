from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import func

from app.core.errors import BusinessRuleError
from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.category import Category
from app.models.product import Product
from app.services.audit import record_audit
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.numbering import unique_code
from app.services.records import (
    blocking_dependent,
    changes_from,
    create_record,
    delete_record,
    ensure_no_dependents,
    ensure_unique,
    scoped_batch,
    update_record,
)
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, ensure_tenant_reference, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category_code: Optional[str] = Field(None, max_length=20)
    parent_id: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: int = Field(0, ge=0)
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category_code: Optional[str] = Field(None, min_length=1, max_length=20)
    parent_id: Optional[int] = None
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    sort_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class CategoryBulkAction(BaseModel):
    action: str = Field(..., pattern="^(activate|deactivate|delete)$")
    category_ids: List[int] = Field(..., min_length=1)


def _dependents(category: Category) -> list[tuple[Any, Any, str]]:
    return [
        (Category, Category.parent_id == category.id, "Cannot delete category with subcategories"),
        (Product, Product.category_id == category.id, "Cannot delete category with products"),
    ]


def _ordered_active(query):
    return query.filter(Category.is_active.is_(True)).order_by(Category.sort_order.asc(), Category.name.asc())


def _set_active(ctx: RequestContext, category_id: int, active: bool) -> Category:
    category = get_scoped_or_404(ctx, Category, category_id, "Category")
    if category.is_active == active:
        raise BusinessRuleError(f"Category is already {'active' if active else 'inactive'}")
    with atomic(ctx.db, "Failed to update category status"):
        update_record(ctx, category, {"is_active": active}, entity="category")
    return category


def _ensure_not_circular(ctx: RequestContext, category: Category, parent_id: int | None) -> None:
    if parent_id is None:
        return
    if parent_id == category.id:
        raise BusinessRuleError("Category cannot be its own parent")
    seen = set()
    current = parent_id
    while current is not None and current not in seen:
        if current == category.id:
            raise BusinessRuleError("Circular reference detected in category hierarchy")
        seen.add(current)
        current = scoped_query(ctx, Category).filter(Category.id == current).with_entities(Category.parent_id).scalar()


def _build_tree(categories: list[Category]) -> list[dict[str, Any]]:
    nodes = {category.id: to_dict(category, children=[]) for category in categories}
    roots = []
    for category in categories:
        node = nodes[category.id]
        parent = nodes.get(category.parent_id)
        if parent is not None:
            parent["children"].append(node)
        else:
            roots.append(node)
    return roots


@router.get("")
def list_categories(
    params: ListParams = Depends(list_params),
    parent_id: Optional[int] = None,
    root_only: bool = False,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW)),
):
    query = scoped_query(ctx, Category)
    if parent_id is not None:
        query = query.filter(Category.parent_id == parent_id)
    elif root_only:
        query = query.filter(Category.parent_id.is_(None))
    query = apply_filters(
        query,
        Category,
        params,
        search_fields=("name", "category_code", "description"),
        sortable=("name", "category_code", "sort_order"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Categories retrieved successfully", tenant=ctx.tenant)


@router.get("/tree")
def category_tree(ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW))):
    categories = (
        scoped_query(ctx, Category)
        .filter(Category.is_active.is_(True))
        .order_by(Category.sort_order.asc(), Category.name.asc())
        .all()
    )
    return envelope(_build_tree(categories), "Category tree retrieved successfully", tenant=ctx.tenant)


@router.get("/roots")
def root_categories(ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW))):
    roots = _ordered_active(scoped_query(ctx, Category).filter(Category.parent_id.is_(None))).all()
    return envelope(to_dicts(roots), "Root categories retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def category_stats(ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW))):
    query = scoped_query(ctx, Category)
    product_counts = dict(
        scoped_query(ctx, Product)
        .filter(Product.category_id.isnot(None))
        .with_entities(Product.category_id, func.count(Product.id))
        .group_by(Product.category_id)
        .all()
    )
    categories = query.all()
    total = len(categories)
    active = sum(1 for category in categories if category.is_active)
    roots = sum(1 for category in categories if category.parent_id is None)
    with_products = sum(1 for category in categories if product_counts.get(category.id))
    most_used = sorted(
        (category for category in categories if product_counts.get(category.id)),
        key=lambda category: (-product_counts[category.id], category.name),
    )[:5]
    data = {
        "total_categories": total,
        "active_categories": active,
        "inactive_categories": total - active,
        "root_categories": roots,
        "child_categories": total - roots,
        "categories_with_products": with_products,
        "empty_categories": total - with_products,
        "most_used_categories": [
            {"id": category.id, "name": category.name, "products_count": product_counts[category.id]}
            for category in most_used
        ],
    }
    return envelope(data, "Category statistics retrieved successfully", tenant=ctx.tenant)


@router.post("/bulk")
def bulk_category_action(
    payload: CategoryBulkAction,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_BULK_ACTIONS)),
):
    with atomic(ctx.db, "Bulk action failed"):
        categories = scoped_batch(ctx, Category, payload.category_ids, "categories")
        results = []
        for category in categories:
            if payload.action == "delete":
                if blocking_dependent(ctx, _dependents(category)) is not None:
                    results.append(f"Category {category.name} skipped (has products or subcategories)")
                    continue
                ctx.db.delete(category)
                ctx.db.flush()
                results.append(f"Category {category.name} deleted")
            else:
                category.is_active = payload.action == "activate"
                results.append(f"Category {category.name} {payload.action}d")
        ctx.db.flush()
        record_audit(
            ctx,
            "bulk_category_action",
            table_name="categories",
            new_values={"action": payload.action, "category_ids": payload.category_ids, "results": results},
        )
    data = {"action": payload.action, "results": results}
    return envelope(data, "Bulk action completed successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_CREATE)),
):
    data = payload.model_dump()
    ensure_unique(ctx, Category, "category_code", data["category_code"], "The category code has already been taken")
    with atomic(ctx.db, "Failed to create category"):
        ensure_tenant_reference(ctx, Category, data["parent_id"], "Parent category")
        if not data["category_code"]:
            data["category_code"] = unique_code(ctx, Category, "category_code", "CAT")
        category = create_record(ctx, Category, data, entity="category")
    return envelope(to_dict(category), "Category created successfully", tenant=ctx.tenant)


@router.get("/{category_id}")
def show_category(category_id: int, ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW))):
    category = get_scoped_or_404(ctx, Category, category_id, "Category")
    children = scoped_query(ctx, Category).filter(Category.parent_id == category.id).order_by(Category.name.asc()).all()
    products_count = scoped_query(ctx, Product).filter(Product.category_id == category.id).count()
    data = to_dict(category, children=to_dicts(children), products_count=products_count)
    return envelope(data, "Category retrieved successfully", tenant=ctx.tenant)


@router.put("/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_EDIT)),
):
    category = get_scoped_or_404(ctx, Category, category_id, "Category")
    changes = changes_from(payload, Category)
    ensure_unique(
        ctx,
        Category,
        "category_code",
        changes.get("category_code"),
        "The category code has already been taken",
        exclude_id=category.id,
    )
    with atomic(ctx.db, "Failed to update category"):
        if "parent_id" in changes:
            ensure_tenant_reference(ctx, Category, changes["parent_id"], "Parent category")
            _ensure_not_circular(ctx, category, changes["parent_id"])
        update_record(ctx, category, changes, entity="category")
    return envelope(to_dict(category), "Category updated successfully", tenant=ctx.tenant)


@router.delete("/{category_id}")
def delete_category(
    category_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_DELETE)),
):
    category = get_scoped_or_404(ctx, Category, category_id, "Category")
    with atomic(ctx.db, "Failed to delete category"):
        ensure_no_dependents(ctx, _dependents(category))
        delete_record(ctx, category, entity="category")
    return envelope(None, "Category deleted successfully", tenant=ctx.tenant)


@router.get("/{category_id}/children")
def category_children(category_id: int, ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_VIEW))):
    category = get_scoped_or_404(ctx, Category, category_id, "Category")
    children = _ordered_active(scoped_query(ctx, Category).filter(Category.parent_id == category.id)).all()
    return envelope(to_dicts(children), "Child categories retrieved successfully", tenant=ctx.tenant)


@router.post("/{category_id}/activate")
def activate_category(category_id: int, ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_EDIT))):
    category = _set_active(ctx, category_id, True)
    return envelope(to_dict(category), "Category activated successfully", tenant=ctx.tenant)


@router.post("/{category_id}/deactivate")
def deactivate_category(
    category_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.CATEGORIES_EDIT)),
):
    category = _set_active(ctx, category_id, False)
    return envelope(to_dict(category), "Category deactivated successfully", tenant=ctx.tenant)
