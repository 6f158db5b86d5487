from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.database import utcnow
from app.core.errors import field_error
from app.core.responses import envelope, paginated
from app.deps import require_super_admin
from app.models import TENANT_SCOPED_MODELS
from app.models.role import Role, RolePermission
from app.models.tenant import Tenant
from app.models.user import User
from app.models.user_session import UserSession
from app.services import dashboard
from app.services.audit import detach_tenant_audit_logs, record_audit
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.records import changes_from
from app.services.serializers import snapshot, to_dict, to_dicts
from app.services.tenant_context import RequestContext
from app.services.tenant_limits import tenant_usage
from app.services.transactions import atomic

router = APIRouter(prefix="/api/tenants", tags=["tenants"])

logger = logging.getLogger(__name__)

PLAN_PATTERN = "^(trial|basic|premium|enterprise)$"
STATUS_PATTERN = "^(active|suspended|cancelled)$"
RECENT_TENANT_WINDOW = timedelta(days=30)


class TenantCreate(BaseModel):
    tenant_code: str = Field(..., min_length=2, max_length=20, pattern="^[a-z0-9-]+$")
    company_name: str = Field(..., min_length=1, max_length=200)
    business_type: Optional[str] = Field(None, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=150)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    currency: str = Field("USD", min_length=3, max_length=10)
    timezone: str = Field("UTC", max_length=50)
    subscription_plan: str = Field("trial", pattern=PLAN_PATTERN)
    max_users: Optional[int] = Field(None, ge=0)
    max_products: Optional[int] = Field(None, ge=0)
    max_warehouses: Optional[int] = Field(None, ge=0)
    max_shops: Optional[int] = Field(None, ge=0)
    trial_days: Optional[int] = Field(None, ge=1, le=365)


class TenantUpdate(BaseModel):
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)
    business_type: Optional[str] = Field(None, max_length=100)
    contact_person: Optional[str] = Field(None, max_length=150)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=10)
    timezone: Optional[str] = Field(None, max_length=50)
    subscription_plan: Optional[str] = Field(None, pattern=PLAN_PATTERN)
    status: Optional[str] = Field(None, pattern=STATUS_PATTERN)
    max_users: Optional[int] = Field(None, ge=0)
    max_products: Optional[int] = Field(None, ge=0)
    max_warehouses: Optional[int] = Field(None, ge=0)
    max_shops: Optional[int] = Field(None, ge=0)


class StatusChange(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


def _get_tenant_or_404(db: Session, tenant_id: int) -> Tenant:
    tenant = db.query(Tenant).filter(Tenant.id == tenant_id).first()
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


def _ensure_unique_email(db: Session, email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    query = db.query(Tenant).filter(Tenant.email == email)
    if exclude_id is not None:
        query = query.filter(Tenant.id != exclude_id)
    if query.first() is not None:
        raise field_error("email", "The email has already been taken")


@router.get("")
def list_tenants(
    params: ListParams = Depends(list_params),
    subscription_plan: Optional[str] = None,
    ctx: RequestContext = Depends(require_super_admin()),
):
    query = ctx.db.query(Tenant)
    if subscription_plan:
        query = query.filter(Tenant.subscription_plan == subscription_plan)
    query = apply_filters(
        query,
        Tenant,
        params,
        search_fields=("company_name", "tenant_code", "email", "contact_person"),
        sortable=("company_name", "tenant_code", "status", "subscription_plan"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Tenants retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def tenant_stats(ctx: RequestContext = Depends(require_super_admin())):
    query = ctx.db.query(Tenant)
    by_status = dict(query.with_entities(Tenant.status, func.count(Tenant.id)).group_by(Tenant.status).all())
    by_plan = dict(
        query.with_entities(Tenant.subscription_plan, func.count(Tenant.id)).group_by(Tenant.subscription_plan).all()
    )
    data = {
        "total_tenants": sum(by_status.values()),
        "active_tenants": by_status.get("active", 0),
        "suspended_tenants": by_status.get("suspended", 0),
        "cancelled_tenants": by_status.get("cancelled", 0),
        "trial_tenants": query.filter(Tenant.is_trial.is_(True)).count(),
        "tenants_by_plan": by_plan,
        "recent_tenants": query.filter(Tenant.created_at >= utcnow() - RECENT_TENANT_WINDOW).count(),
    }
    return envelope(data, "Tenant statistics retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, ctx: RequestContext = Depends(require_super_admin())):
    db = ctx.db
    data = payload.model_dump(exclude={"trial_days"})
    data["tenant_code"] = data["tenant_code"].strip().lower()
    if db.query(Tenant).filter(Tenant.tenant_code == data["tenant_code"]).first() is not None:
        raise field_error("tenant_code", "The tenant code has already been taken")
    _ensure_unique_email(db, data.get("email"))

    with atomic(db, "Failed to create tenant"):
        tenant = Tenant(status="active", **data)
        if payload.trial_days:
            tenant.is_trial = True
            tenant.trial_ends_at = utcnow() + timedelta(days=payload.trial_days)
        db.add(tenant)
        db.flush()
        record_audit(
            ctx,
            "tenant_created",
            table_name="tenants",
            record_id=tenant.id,
            new_values=snapshot(tenant),
            tenant_id=tenant.id,
        )

    logger.info("Tenant created: tenant_id=%s code=%s", tenant.id, tenant.tenant_code)
    return envelope(to_dict(tenant), "Tenant created successfully", tenant=ctx.tenant)


@router.get("/{tenant_id}")
def show_tenant(tenant_id: int, ctx: RequestContext = Depends(require_super_admin())):
    tenant = _get_tenant_or_404(ctx.db, tenant_id)
    data = to_dict(tenant, usage=tenant_usage(ctx.db, tenant))
    return envelope(data, "Tenant retrieved successfully", tenant=ctx.tenant)


@router.put("/{tenant_id}")
def update_tenant(tenant_id: int, payload: TenantUpdate, ctx: RequestContext = Depends(require_super_admin())):
    tenant = _get_tenant_or_404(ctx.db, tenant_id)
    changes = changes_from(payload, Tenant)
    _ensure_unique_email(ctx.db, changes.get("email"), exclude_id=tenant.id)

    with atomic(ctx.db, "Failed to update tenant"):
        old_values = snapshot(tenant)
        for field, value in changes.items():
            setattr(tenant, field, value)
        ctx.db.flush()
        record_audit(
            ctx,
            "tenant_updated",
            table_name="tenants",
            record_id=tenant.id,
            old_values=old_values,
            new_values=snapshot(tenant),
            tenant_id=tenant.id,
        )
    return envelope(to_dict(tenant), "Tenant updated successfully", tenant=ctx.tenant)


@router.delete("/{tenant_id}")
def delete_tenant(tenant_id: int, ctx: RequestContext = Depends(require_super_admin())):
    db = ctx.db
    tenant = _get_tenant_or_404(db, tenant_id)
    deleted = snapshot(tenant)

    with atomic(db, "Failed to delete tenant"):
        detached = detach_tenant_audit_logs(db, tenant.id)
        for model in TENANT_SCOPED_MODELS:
            db.query(model).filter(model.tenant_id == tenant.id).delete(synchronize_session=False)
        db.query(UserSession).filter(UserSession.tenant_id == tenant.id).delete(synchronize_session=False)
        db.query(User).filter(User.tenant_id == tenant.id).delete(synchronize_session=False)
        role_ids = [row[0] for row in db.query(Role.id).filter(Role.tenant_id == tenant.id).all()]
        if role_ids:
            db.query(RolePermission).filter(RolePermission.role_id.in_(role_ids)).delete(synchronize_session=False)
            db.query(Role).filter(Role.id.in_(role_ids)).delete(synchronize_session=False)
        db.delete(tenant)
        db.flush()
        record_audit(
            ctx,
            "tenant_deleted",
            table_name="tenants",
            record_id=deleted["id"],
            old_values=deleted,
            tenant_id=None,
        )

    dashboard.invalidate(deleted["id"])
    logger.warning("Tenant deleted: tenant_id=%s audit_entries_detached=%s", deleted["id"], detached)
    return envelope(None, "Tenant deleted successfully", tenant=ctx.tenant)


def _change_status(ctx: RequestContext, tenant_id: int, new_status: str, reason: str | None) -> Tenant:
    tenant = _get_tenant_or_404(ctx.db, tenant_id)
    if tenant.status == new_status:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Tenant is already {new_status}")

    with atomic(ctx.db, "Failed to update tenant status"):
        previous = tenant.status
        tenant.status = new_status
        ctx.db.flush()
        record_audit(
            ctx,
            "tenant_suspended" if new_status == "suspended" else "tenant_activated",
            table_name="tenants",
            record_id=tenant.id,
            old_values={"status": previous},
            new_values={"status": new_status, "reason": reason},
            tenant_id=tenant.id,
        )
    return tenant


@router.post("/{tenant_id}/suspend")
def suspend_tenant(
    tenant_id: int,
    payload: Optional[StatusChange] = None,
    ctx: RequestContext = Depends(require_super_admin()),
):
    tenant = _change_status(ctx, tenant_id, "suspended", payload.reason if payload else None)
    return envelope(to_dict(tenant), "Tenant suspended successfully", tenant=ctx.tenant)


@router.post("/{tenant_id}/activate")
def activate_tenant(tenant_id: int, ctx: RequestContext = Depends(require_super_admin())):
    tenant = _change_status(ctx, tenant_id, "active", None)
    return envelope(to_dict(tenant), "Tenant activated successfully", tenant=ctx.tenant)
