from __future__ import annotations

from typing import Any

from app.models.tenant import Tenant


def tenant_payload(tenant: Tenant | None) -> dict[str, Any] | None:
    if tenant is None:
        return None
    return {"id": tenant.id, "name": tenant.company_name, "code": tenant.tenant_code}


def envelope(
    data: Any = None,
    message: str = "Success",
    *,
    tenant: Tenant | None = None,
    success: bool = True,
    **extra: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": success,
        "message": message,
        "data": data,
        "tenant": tenant_payload(tenant),
    }
    body.update(extra)
    return body


def error_envelope(message: str, *, tenant: Tenant | None = None, errors: Any = None) -> dict[str, Any]:
    body = envelope(None, message, tenant=tenant, success=False)
    if errors is not None:
        body["errors"] = errors
    return body


def paginated(
    items: list[Any],
    meta: dict[str, Any],
    message: str = "Success",
    *,
    tenant: Tenant | None = None,
    **extra: Any,
) -> dict[str, Any]:
    return envelope(items, message, tenant=tenant, meta=meta, **extra)
