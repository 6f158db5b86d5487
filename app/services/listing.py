from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional

from fastapi import Query as QueryParam
from sqlalchemy import DateTime, or_
from sqlalchemy.orm import Query

from app.core.config import DEFAULT_PER_PAGE, MAX_PER_PAGE


@dataclass
class ListParams:
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    search: str | None = None
    status: str | None = None
    is_active: bool | None = None
    date_from: date | None = None
    date_to: date | None = None
    sort_by: str | None = None
    sort_direction: str = "desc"


def list_params(
    page: int = QueryParam(1, ge=1),
    per_page: int = QueryParam(DEFAULT_PER_PAGE, ge=1),
    search: Optional[str] = None,
    status: Optional[str] = None,
    is_active: Optional[bool] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: Optional[str] = None,
    sort_direction: str = "desc",
) -> ListParams:
    return ListParams(
        page=page,
        per_page=per_page,
        search=search,
        status=status,
        is_active=is_active,
        date_from=date_from,
        date_to=date_to,
        sort_by=sort_by,
        sort_direction="asc" if sort_direction.lower() == "asc" else "desc",
    )


def clamp_per_page(per_page: int | None) -> int:
    if not per_page or per_page < 1:
        return DEFAULT_PER_PAGE
    return min(per_page, MAX_PER_PAGE)


def apply_filters(
    query: Query,
    model: Any,
    params: ListParams,
    *,
    search_fields: Iterable[str] = (),
    sortable: Iterable[str] = (),
    date_field: str = "created_at",
    status_field: str = "status",
    default_sort: str = "created_at",
) -> Query:
    """Apply the common list filters to an already tenant-scoped query."""
    if params.search:
        term = f"%{params.search.strip()}%"
        clauses = [getattr(model, field).ilike(term) for field in search_fields]
        if clauses:
            query = query.filter(or_(*clauses))

    if params.status and hasattr(model, status_field):
        query = query.filter(getattr(model, status_field) == params.status)

    if params.is_active is not None and hasattr(model, "is_active"):
        query = query.filter(model.is_active.is_(params.is_active))

    if params.date_from or params.date_to:
        query = apply_date_range(query, model, date_field, params.date_from, params.date_to)

    allowed = set(sortable) | {default_sort}
    sort_field = params.sort_by if params.sort_by in allowed else default_sort
    column = getattr(model, sort_field)
    ordering = column.asc() if params.sort_direction == "asc" else column.desc()
    return query.order_by(ordering, model.id.desc())


def apply_date_range(
    query: Query,
    model: Any,
    field: str,
    date_from: date | None,
    date_to: date | None,
) -> Query:
    column = getattr(model, field)
    is_datetime = isinstance(model.__table__.c[field].type, DateTime)
    if date_from is not None:
        lower = datetime.combine(date_from, time.min) if is_datetime else date_from
        query = query.filter(column >= lower)
    if date_to is not None:
        if is_datetime:
            query = query.filter(column < datetime.combine(date_to + timedelta(days=1), time.min))
        else:
            query = query.filter(column <= date_to)
    return query


def paginate(query: Query, page: int, per_page: int) -> tuple[list[Any], dict[str, Any]]:
    per_page = clamp_per_page(per_page)
    page = max(page, 1)
    total = query.order_by(None).count()
    last_page = max(math.ceil(total / per_page), 1)
    items = query.offset((page - 1) * per_page).limit(per_page).all()

    first = (page - 1) * per_page + 1 if items else None
    last = first + len(items) - 1 if items else None
    meta = {
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "last_page": last_page,
        "from": first,
        "to": last,
        "has_more_pages": page < last_page,
    }
    return items, meta
