# app/deps.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.permissions import Permission, ensure_known_permission
from app.core.logging_setup import bind_log_fields
from app.services.auth_service import extract_session_token, resolve_session
from app.services.authorization_service import AuthorizationService
from app.services.tenant_context import RequestContext
from app.services.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)

ALL_TENANTS_HEADER = "x-all-tenants"
_TRUTHY = {"1", "true", "yes", "on"}


def _wants_all_tenants(request: Request) -> bool:
    raw = request.headers.get(ALL_TENANTS_HEADER) or request.query_params.get("all_tenants") or ""
    return raw.strip().lower() in _TRUTHY


def get_request_context(request: Request, db: Session = Depends(get_db)) -> RequestContext:
    """Resolve the optional principal and then the tenant for this request."""
    resolved = resolve_session(db, extract_session_token(request))
    user, session = resolved if resolved is not None else (None, None)

    ctx = RequestContext(db=db, request=request, user=user, session=session)
    request.state.context = ctx
    request.state.user = user

    ctx.tenant = TenantResolver.resolve(db, request, user)

    if _wants_all_tenants(request):
        if not ctx.is_super_admin:
            AuthorizationService.log_access_denied(reason="all_tenants_not_allowed", ctx=ctx)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        if request.method.upper() != "GET":
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="All-tenants override is only allowed on read requests",
            )
        ctx.all_tenants = True
        logger.info("All-tenants override: user_id=%s path=%s", ctx.user_id, request.url.path)

    bind_log_fields(
        tenant_id=str(ctx.tenant_id) if ctx.tenant_id is not None else None,
        user_id=str(ctx.user_id) if ctx.user_id is not None else None,
    )
    return ctx


def get_authenticated_context(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx


def require_permission(permission: str | Permission, *, tenant_required: bool = True):
    """Dependency factory: authenticated principal, active tenant, then the permission."""
    required = ensure_known_permission(permission)

    def dependency(ctx: RequestContext = Depends(get_authenticated_context)) -> RequestContext:
        if tenant_required and ctx.tenant is None and not ctx.all_tenants:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Tenant context required")
        AuthorizationService.ensure_permission(ctx, required)
        return ctx

    return dependency


def require_super_admin():
    def dependency(ctx: RequestContext = Depends(get_authenticated_context)) -> RequestContext:
        AuthorizationService.ensure_super_admin(ctx)
        return ctx

    return dependency
