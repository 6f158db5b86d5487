from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.models.product import Product
from app.models.shop import Shop
from app.models.tenant import Tenant
from app.models.user import User
from app.models.warehouse import Warehouse
from app.services.tenant_context import RequestContext

logger = logging.getLogger(__name__)

# resource -> (tenant column, model, label)
LIMITED_RESOURCES = {
    "users": ("max_users", User, "User"),
    "products": ("max_products", Product, "Product"),
    "warehouses": ("max_warehouses", Warehouse, "Warehouse"),
    "shops": ("max_shops", Shop, "Shop"),
}


def resource_count(db: Session, tenant_id: int, resource: str) -> int:
    _, model, _ = LIMITED_RESOURCES[resource]
    return db.query(model).filter(model.tenant_id == tenant_id).count()


def tenant_usage(db: Session, tenant: Tenant) -> dict[str, dict[str, int | None]]:
    usage = {}
    for resource, (column, _, _) in LIMITED_RESOURCES.items():
        usage[resource] = {
            "used": resource_count(db, tenant.id, resource),
            "limit": getattr(tenant, column) or None,
        }
    return usage


def ensure_within_limit(ctx: RequestContext, resource: str) -> None:
    """Reject creation once the tenant's plan limit for ``resource`` is reached; 0 or NULL is unlimited."""
    tenant = ctx.tenant
    if tenant is None:
        return
    column, _, label = LIMITED_RESOURCES[resource]
    limit = getattr(tenant, column)
    if not limit:
        return
    current = resource_count(ctx.db, tenant.id, resource)
    if current >= limit:
        logger.info(
            "Tenant limit reached: tenant_id=%s resource=%s current=%s limit=%s",
            tenant.id,
            resource,
            current,
            limit,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{label} limit reached for your subscription plan",
        )
