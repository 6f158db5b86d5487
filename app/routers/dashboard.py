from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.core.permissions import Permission
from app.core.responses import envelope
from app.deps import require_permission
from app.services import dashboard
from app.services.tenant_context import RequestContext

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/overview")
def overview(ctx: RequestContext = Depends(require_permission(Permission.DASHBOARD_VIEW))):
    return envelope(dashboard.overview(ctx), "Dashboard overview retrieved successfully", tenant=ctx.tenant)


@router.get("/sales")
def sales(
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(require_permission(Permission.DASHBOARD_VIEW)),
):
    return envelope(dashboard.sales_stats(ctx, days), "Sales statistics retrieved successfully", tenant=ctx.tenant)


@router.get("/inventory")
def inventory(ctx: RequestContext = Depends(require_permission(Permission.DASHBOARD_VIEW))):
    return envelope(dashboard.inventory_stats(ctx), "Inventory statistics retrieved successfully", tenant=ctx.tenant)


@router.get("/financial")
def financial(
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(require_permission(Permission.DASHBOARD_VIEW)),
):
    return envelope(
        dashboard.financial_stats(ctx, days),
        "Financial statistics retrieved successfully",
        tenant=ctx.tenant,
    )
