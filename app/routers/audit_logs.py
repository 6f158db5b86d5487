from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy import func

from app.core.config import (
    AUDIT_EXPORT_LIMIT,
    AUDIT_MAX_RETENTION_DAYS,
    AUDIT_MIN_RETENTION_DAYS,
    DEFAULT_PER_PAGE,
)
from app.core.database import utcnow
from app.core.permissions import Permission
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.audit_log import AuditLog
from app.models.user import User
from app.services.audit import cleanup_audit_logs, record_audit
from app.services.listing import apply_date_range, paginate
from app.services.serializers import to_dict, to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.transactions import atomic

router = APIRouter(prefix="/api/audit-logs", tags=["audit-logs"])

logger = logging.getLogger(__name__)

SECURITY_ACTIONS = (
    "login",
    "logout",
    "password_changed",
    "password_reset",
    "session_terminated",
    "other_sessions_terminated",
    "user_permissions_updated",
    "role_permissions_updated",
    "user_activated",
    "user_deactivated",
)
EXPORT_COLUMNS = (
    "id",
    "tenant_id",
    "user_id",
    "action",
    "table_name",
    "record_id",
    "ip_address",
    "user_agent",
    "created_at",
    "old_values",
    "new_values",
)


class CleanupRequest(BaseModel):
    days: int = Field(..., ge=AUDIT_MIN_RETENTION_DAYS, le=AUDIT_MAX_RETENTION_DAYS)


def _filtered(
    ctx: RequestContext,
    *,
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    table_name: Optional[str] = None,
    record_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
):
    query = scoped_query(ctx, AuditLog)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action.ilike(f"%{action}%"))
    if table_name:
        query = query.filter(AuditLog.table_name == table_name)
    if record_id is not None:
        query = query.filter(AuditLog.record_id == record_id)
    if ip_address:
        query = query.filter(AuditLog.ip_address == ip_address)
    if date_from or date_to:
        query = apply_date_range(query, AuditLog, "created_at", date_from, date_to)
    return query


def _latest_first(query):
    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())


@router.get("")
def list_audit_logs(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1),
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    table_name: Optional[str] = None,
    record_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    query = _filtered(
        ctx,
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        ip_address=ip_address,
        date_from=date_from,
        date_to=date_to,
    )
    items, meta = paginate(_latest_first(query), page, per_page)
    return paginated(to_dicts(items), meta, "Audit logs retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def audit_stats(
    days: int = Query(30, ge=1, le=365),
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    start = datetime.combine(utcnow().date() - timedelta(days=days - 1), time.min)
    query = scoped_query(ctx, AuditLog).filter(AuditLog.created_at >= start)
    by_action = (
        query.with_entities(AuditLog.action, func.count(AuditLog.id))
        .group_by(AuditLog.action)
        .order_by(func.count(AuditLog.id).desc())
        .all()
    )
    by_user = (
        query.filter(AuditLog.user_id.isnot(None))
        .outerjoin(User, User.id == AuditLog.user_id)
        .with_entities(AuditLog.user_id, User.full_name, func.count(AuditLog.id))
        .group_by(AuditLog.user_id, User.full_name)
        .order_by(func.count(AuditLog.id).desc())
        .limit(10)
        .all()
    )
    by_table = (
        query.filter(AuditLog.table_name.isnot(None))
        .with_entities(AuditLog.table_name, func.count(AuditLog.id))
        .group_by(AuditLog.table_name)
        .all()
    )
    daily = (
        query.with_entities(func.date(AuditLog.created_at), func.count(AuditLog.id))
        .group_by(func.date(AuditLog.created_at))
        .order_by(func.date(AuditLog.created_at))
        .all()
    )
    data = {
        "period_days": days,
        "total_entries": query.count(),
        "by_action": [{"action": action, "count": int(count)} for action, count in by_action],
        "by_user": [{"user_id": uid, "user_name": name, "count": int(count)} for uid, name, count in by_user],
        "by_table": [{"table_name": table, "count": int(count)} for table, count in by_table],
        "daily": [{"date": str(day), "count": int(count)} for day, count in daily],
    }
    return envelope(data, "Audit statistics retrieved successfully", tenant=ctx.tenant)


@router.get("/recent")
def recent_activity(
    limit: int = Query(20, ge=1, le=100),
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    items = _latest_first(scoped_query(ctx, AuditLog)).limit(limit).all()
    return envelope(to_dicts(items), "Recent activity retrieved successfully", tenant=ctx.tenant)


@router.get("/security-events")
def security_events(
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    query = _filtered(ctx, date_from=date_from, date_to=date_to).filter(AuditLog.action.in_(SECURITY_ACTIONS))
    items, meta = paginate(_latest_first(query), page, per_page)
    return paginated(to_dicts(items), meta, "Security events retrieved successfully", tenant=ctx.tenant)


@router.get("/trail/{table_name}/{record_id}")
def record_trail(
    table_name: str,
    record_id: int,
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    items = (
        scoped_query(ctx, AuditLog)
        .filter(AuditLog.table_name == table_name, AuditLog.record_id == record_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )
    return envelope(to_dicts(items), "Audit trail retrieved successfully", tenant=ctx.tenant)


@router.get("/users/{user_id}")
def user_activity(
    user_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW)),
):
    user = get_scoped_or_404(ctx, User, user_id, "User")
    query = _filtered(ctx, user_id=user.id, date_from=date_from, date_to=date_to)
    items, meta = paginate(_latest_first(query), page, per_page)
    return paginated(
        to_dicts(items),
        meta,
        "User activity retrieved successfully",
        tenant=ctx.tenant,
        user={"id": user.id, "full_name": user.full_name, "email": user.email},
    )


@router.get("/export")
def export_audit_logs(
    export_format: str = Query("json", alias="format", pattern="^(json|csv)$"),
    limit: int = Query(1000, ge=1, le=AUDIT_EXPORT_LIMIT),
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    table_name: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    ctx: RequestContext = Depends(require_permission(Permission.AUDIT_EXPORT)),
):
    query = _filtered(
        ctx,
        user_id=user_id,
        action=action,
        table_name=table_name,
        date_from=date_from,
        date_to=date_to,
    )
    rows = to_dicts(_latest_first(query).limit(limit).all())
    with atomic(ctx.db, "Failed to export audit logs"):
        record_audit(
            ctx,
            "audit_logs_exported",
            table_name="audit_logs",
            new_values={
                "format": export_format,
                "count": len(rows),
                "filters": {
                    "user_id": user_id,
                    "action": action,
                    "table_name": table_name,
                    "date_from": date_from,
                    "date_to": date_to,
                },
            },
        )

    if export_format == "json":
        return envelope(rows, "Audit logs exported successfully", tenant=ctx.tenant, count=len(rows))

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for row in rows:
        writer.writerow([row.get(column) for column in EXPORT_COLUMNS])
    output.seek(0)
    headers = {"Content-Disposition": "attachment; filename=audit-logs.csv"}
    return StreamingResponse(iter([output.getvalue()]), media_type="text/csv", headers=headers)


@router.post("/cleanup")
def cleanup(payload: CleanupRequest, ctx: RequestContext = Depends(require_permission(Permission.AUDIT_CLEANUP))):
    with atomic(ctx.db, "Failed to clean up audit logs"):
        deleted, cutoff = cleanup_audit_logs(ctx, payload.days)
        record_audit(
            ctx,
            "audit_logs_cleanup",
            table_name="audit_logs",
            new_values={"days": payload.days, "deleted": deleted, "cutoff": cutoff},
        )
    logger.info("Audit cleanup: tenant_id=%s deleted=%s cutoff=%s", ctx.tenant_id, deleted, cutoff.isoformat())
    data = {"deleted_count": deleted, "cutoff_date": cutoff.isoformat(), "days": payload.days}
    return envelope(data, f"Deleted {deleted} audit log entries", tenant=ctx.tenant)


@router.get("/{log_id}")
def show_audit_log(log_id: int, ctx: RequestContext = Depends(require_permission(Permission.AUDIT_VIEW))):
    entry = get_scoped_or_404(ctx, AuditLog, log_id, "Audit log")
    user = ctx.db.query(User).filter(User.id == entry.user_id).first() if entry.user_id else None
    data = to_dict(entry, user={"id": user.id, "full_name": user.full_name, "email": user.email} if user else None)
    return envelope(data, "Audit log retrieved successfully", tenant=ctx.tenant)
