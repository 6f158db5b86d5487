from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import AUDIT_MAX_RETENTION_DAYS, AUDIT_MIN_RETENTION_DAYS
from app.core.database import utcnow
from app.core.errors import BusinessRuleError
from app.models.audit_log import AuditLog
from app.services.tenant_context import RequestContext, scoped_query

logger = logging.getLogger(__name__)

UNSET = object()


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def record_audit(
    ctx: RequestContext,
    action: str,
    *,
    table_name: str | None = None,
    record_id: int | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    tenant_id: int | None | object = UNSET,
) -> AuditLog | None:
    """Append an audit entry inside a savepoint; failures are logged, never raised."""
    entry_tenant_id = ctx.tenant_id if tenant_id is UNSET else tenant_id
    db = ctx.db
    try:
        with db.begin_nested():
            entry = AuditLog(
                tenant_id=entry_tenant_id,
                user_id=ctx.user_id,
                action=action,
                table_name=table_name,
                record_id=record_id,
                old_values=_json_safe(old_values) if old_values is not None else None,
                new_values=_json_safe(new_values) if new_values is not None else None,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                created_at=utcnow(),
            )
            db.add(entry)
            db.flush()
        return entry
    except Exception:
        logger.exception(
            "Audit write failed: action=%s table=%s record_id=%s tenant_id=%s",
            action,
            table_name,
            record_id,
            entry_tenant_id,
        )
        return None


def cleanup_audit_logs(ctx: RequestContext, days: int) -> tuple[int, datetime]:
    if not AUDIT_MIN_RETENTION_DAYS <= days <= AUDIT_MAX_RETENTION_DAYS:
        raise BusinessRuleError(
            f"Retention must be between {AUDIT_MIN_RETENTION_DAYS} and {AUDIT_MAX_RETENTION_DAYS} days"
        )
    cutoff = utcnow() - timedelta(days=days)
    deleted = (
        scoped_query(ctx, AuditLog)
        .filter(AuditLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    return deleted, cutoff


def detach_tenant_audit_logs(db: Session, tenant_id: int) -> int:
    return (
        db.query(AuditLog)
        .filter(AuditLog.tenant_id == tenant_id)
        .update({AuditLog.tenant_id: None}, synchronize_session=False)
    )
