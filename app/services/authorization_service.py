from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.core.permissions import Permission, UserRole, ensure_known_permission
from app.models.role import Role, RolePermission
from app.models.user import User
from app.services.tenant_context import RequestContext

logger = logging.getLogger(__name__)


class AuthorizationService:
    """Centralize tenant-match and permission checks for every endpoint."""

    @staticmethod
    def effective_permissions(db: Session, user: User) -> frozenset[str]:
        """Role bundles (system role by name plus assigned custom role) and direct grants."""
        role_filters = [and_(Role.is_system_role.is_(True), Role.name == user.role)]
        if user.role_id is not None:
            role_filters.append(Role.id == user.role_id)

        bundle = (
            db.query(RolePermission.permission)
            .join(Role, Role.id == RolePermission.role_id)
            .filter(Role.is_active.is_(True), or_(*role_filters))
            .all()
        )
        granted = {row[0] for row in bundle}
        granted.update(str(value) for value in (user.permissions or []))
        return frozenset(granted)

    @classmethod
    def permissions_for(cls, ctx: RequestContext) -> frozenset[str]:
        if ctx.user is None:
            return frozenset()
        if ctx._permissions is None:
            ctx._permissions = cls.effective_permissions(ctx.db, ctx.user)
        return ctx._permissions

    @staticmethod
    def log_access_denied(*, reason: str, ctx: RequestContext, permission: str | None = None) -> None:
        request = ctx.request
        endpoint = f"{request.method} {request.url.path}" if request is not None else None
        logger.warning(
            "Access denied (%s): user_id=%s user_role=%s user_tenant=%s tenant_id=%s permission=%s endpoint=%s",
            reason,
            ctx.user_id,
            getattr(ctx.user, "role", None),
            getattr(ctx.user, "tenant_id", None),
            ctx.tenant_id,
            permission,
            endpoint,
        )

    @classmethod
    def evaluate(cls, ctx: RequestContext, permission: str | Permission) -> tuple[bool, str]:
        """Return (allowed, reason) for ``permission`` in ``ctx``."""
        required = ensure_known_permission(permission)
        user = ctx.user
        if user is None:
            return False, "unauthenticated"
        if user.role == UserRole.SUPER_ADMIN.value:
            return True, "super_admin"
        if ctx.tenant_id is not None and user.tenant_id != ctx.tenant_id:
            return False, "tenant_mismatch"
        if required not in cls.permissions_for(ctx):
            return False, "permission_missing"
        return True, "granted"

    @classmethod
    def has_permission(cls, ctx: RequestContext, permission: str | Permission) -> bool:
        allowed, _ = cls.evaluate(ctx, permission)
        return allowed

    @classmethod
    def ensure_permission(cls, ctx: RequestContext, permission: str | Permission) -> None:
        allowed, reason = cls.evaluate(ctx, permission)
        if allowed:
            return
        cls.log_access_denied(reason=reason, ctx=ctx, permission=str(getattr(permission, "value", permission)))
        if reason == "unauthenticated":
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    @classmethod
    def ensure_super_admin(cls, ctx: RequestContext) -> None:
        if ctx.is_super_admin:
            return
        cls.log_access_denied(reason="super_admin_required", ctx=ctx)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
