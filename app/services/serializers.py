from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable

# Never rendered in API payloads
HIDDEN_COLUMNS = frozenset({"password_hash", "session_token"})


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def to_dict(record: Any, *, exclude: Iterable[str] = (), **extra: Any) -> dict[str, Any]:
    """Column values of an ORM row as JSON-ready primitives."""
    skip = HIDDEN_COLUMNS | set(exclude)
    data = {
        column.name: _plain(getattr(record, column.key, None))
        for column in record.__table__.columns
        if column.name not in skip
    }
    data.update(extra)
    return data


def to_dicts(records: Iterable[Any], **kwargs: Any) -> list[dict[str, Any]]:
    return [to_dict(record, **kwargs) for record in records]


def snapshot(record: Any, fields: Iterable[str] | None = None) -> dict[str, Any]:
    """Audit-friendly copy of selected columns (all visible columns by default)."""
    data = to_dict(record)
    if fields is None:
        return data
    return {field: data.get(field) for field in fields}
