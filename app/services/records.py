"""Create/update/delete for the plain tenant-owned entities.

Each write flushes inside the caller's transaction and appends an audit entry
named ``<entity>_created|updated|deleted``.
"""

from __future__ import annotations

from typing import Any, Iterable

from pydantic import BaseModel

from app.core.errors import BusinessRuleError, field_error, field_errors
from app.services import dashboard
from app.services.audit import record_audit
from app.services.serializers import snapshot
from app.services.tenant_context import RequestContext, scoped_query


def ensure_unique(
    ctx: RequestContext,
    model: Any,
    field: str,
    value: Any,
    message: str,
    *,
    exclude_id: int | None = None,
) -> None:
    if value is None:
        return
    query = scoped_query(ctx, model).filter(getattr(model, field) == value)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first() is not None:
        raise field_error(field, message)


def changes_from(payload: BaseModel, model: Any, *, exclude: set[str] | None = None) -> dict[str, Any]:
    """Fields the client sent. An explicit null on a NOT NULL column is a 422."""
    changes = payload.model_dump(exclude_unset=True, exclude=exclude)
    columns = model.__table__.columns
    nulls = {
        field: f"The {field.replace('_', ' ')} field cannot be null"
        for field, value in changes.items()
        if value is None and field in columns and not columns[field].nullable
    }
    if nulls:
        raise field_errors(nulls)
    return changes


def blocking_dependent(ctx: RequestContext, dependents: Iterable[tuple[Any, Any, str]]) -> str | None:
    """``dependents`` holds (model, criterion, message); returns the message of the first match."""
    for model, criterion, message in dependents:
        if scoped_query(ctx, model).filter(criterion).first() is not None:
            return message
    return None


def ensure_no_dependents(ctx: RequestContext, dependents: Iterable[tuple[Any, Any, str]]) -> None:
    message = blocking_dependent(ctx, dependents)
    if message is not None:
        raise BusinessRuleError(message)


def scoped_batch(ctx: RequestContext, model: Any, ids: Iterable[int], label: str) -> list[Any]:
    """Rows for every id in request order; any missing or foreign id rejects the whole batch."""
    wanted = list(dict.fromkeys(ids))
    rows = {row.id: row for row in scoped_query(ctx, model).filter(model.id.in_(wanted)).all()}
    if len(rows) != len(wanted):
        raise BusinessRuleError(f"Some {label} not found or do not belong to tenant")
    return [rows[record_id] for record_id in wanted]


def create_record(
    ctx: RequestContext,
    model: Any,
    data: dict[str, Any],
    *,
    entity: str,
    invalidates_dashboard: bool = False,
) -> Any:
    tenant_id = ctx.require_tenant()
    record = model(tenant_id=tenant_id, **data)
    ctx.db.add(record)
    ctx.db.flush()
    record_audit(
        ctx,
        f"{entity}_created",
        table_name=model.__tablename__,
        record_id=record.id,
        new_values=snapshot(record),
    )
    if invalidates_dashboard:
        dashboard.invalidate(tenant_id)
    return record


def update_record(
    ctx: RequestContext,
    record: Any,
    changes: dict[str, Any],
    *,
    entity: str,
    invalidates_dashboard: bool = False,
) -> Any:
    old_values = snapshot(record)
    for field, value in changes.items():
        setattr(record, field, value)
    ctx.db.flush()
    record_audit(
        ctx,
        f"{entity}_updated",
        table_name=record.__tablename__,
        record_id=record.id,
        old_values=old_values,
        new_values=snapshot(record),
    )
    if invalidates_dashboard:
        dashboard.invalidate(record.tenant_id)
    return record


def delete_record(ctx: RequestContext, record: Any, *, entity: str, invalidates_dashboard: bool = False) -> None:
    deleted = snapshot(record)
    ctx.db.delete(record)
    ctx.db.flush()
    record_audit(
        ctx,
        f"{entity}_deleted",
        table_name=record.__tablename__,
        record_id=deleted["id"],
        old_values=deleted,
    )
    if invalidates_dashboard:
        dashboard.invalidate(deleted["tenant_id"])
