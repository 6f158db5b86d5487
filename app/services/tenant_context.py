from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, TypeVar

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Query, Session

from app.core.errors import BusinessRuleError, TenantScopeError
from app.core.permissions import UserRole
from app.models.tenant import Tenant
from app.models.user import User
from app.models.user_session import UserSession
from app.services.auth_service import client_ip

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


@dataclass
class RequestContext:
    """Per-request state handed explicitly from the dependency layer to services."""

    db: Session
    request: Request | None = None
    user: User | None = None
    session: UserSession | None = None
    tenant: Tenant | None = None
    all_tenants: bool = False
    _permissions: frozenset[str] | None = field(default=None, repr=False)

    @property
    def tenant_id(self) -> int | None:
        return self.tenant.id if self.tenant is not None else None

    @property
    def user_id(self) -> int | None:
        return self.user.id if self.user is not None else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def is_super_admin(self) -> bool:
        return self.user is not None and self.user.role == UserRole.SUPER_ADMIN.value

    @property
    def ip_address(self) -> str | None:
        return client_ip(self.request) if self.request is not None else None

    @property
    def user_agent(self) -> str | None:
        return self.request.headers.get("user-agent") if self.request is not None else None

    def require_tenant(self) -> int:
        if self.tenant is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant context required")
        return self.tenant.id


def scoped_query(ctx: RequestContext, model: type[ModelT]) -> Query:
    """Query over a tenant-owned model, constrained to the active tenant.

    Raises ``TenantScopeError`` when there is no tenant; only an explicit
    super-admin all-tenants override yields an unfiltered query.
    """
    query = ctx.db.query(model)
    if ctx.all_tenants and ctx.is_super_admin:
        return query
    if ctx.tenant_id is None:
        logger.error("Unscoped query attempted: model=%s user_id=%s", getattr(model, "__name__", model), ctx.user_id)
        raise TenantScopeError(f"Tenant scope required for {getattr(model, '__name__', model)}")
    return query.filter(model.tenant_id == ctx.tenant_id)


def get_scoped_or_404(ctx: RequestContext, model: type[ModelT], record_id: int, label: str) -> ModelT:
    record = scoped_query(ctx, model).filter(model.id == record_id).first()
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return record


def ensure_tenant_reference(
    ctx: RequestContext,
    model: type[ModelT],
    record_id: Any,
    label: str,
) -> ModelT | None:
    """Validate that an optional foreign key points at a row of the active tenant."""
    if record_id is None:
        return None
    record = scoped_query(ctx, model).filter(model.id == record_id).first()
    if record is None:
        raise BusinessRuleError(f"{label} not found or does not belong to tenant")
    return record
