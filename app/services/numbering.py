from __future__ import annotations

import secrets
from datetime import datetime, time, timedelta
from typing import Any

from app.core.database import utcnow
from app.services.tenant_context import RequestContext, scoped_query


def next_document_number(ctx: RequestContext, model: Any, field: str, prefix: str) -> str:
    """``PREFIX-YYYYMMDD-NNNN`` numbered from the tenant's documents created today."""
    now = utcnow()
    day_start = datetime.combine(now.date(), time.min)
    column = getattr(model, field)
    sequence = (
        scoped_query(ctx, model)
        .filter(model.created_at >= day_start, model.created_at < day_start + timedelta(days=1))
        .count()
        + 1
    )
    while True:
        number = f"{prefix}-{now:%Y%m%d}-{sequence:04d}"
        if not scoped_query(ctx, model).filter(column == number).first():
            return number
        sequence += 1


def unique_code(ctx: RequestContext, model: Any, field: str, prefix: str) -> str:
    column = getattr(model, field)
    while True:
        code = f"{prefix}{secrets.randbelow(9999) + 1:04d}"
        if not scoped_query(ctx, model).filter(column == code).first():
            return code
