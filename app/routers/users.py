from __future__ import annotations

from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from sqlalchemy import func

from app.core.database import utcnow
from app.core.errors import BusinessRuleError, field_error
from app.core.permissions import Permission, UserRole, unknown_permissions
from app.core.responses import envelope, paginated
from app.deps import require_permission
from app.models.user import User
from app.models.user_session import UserSession
from app.services.audit import record_audit
from app.services.auth_service import terminate_user_sessions
from app.services.listing import ListParams, apply_filters, list_params, paginate
from app.services.passwords import hash_password
from app.services.records import changes_from, scoped_batch
from app.services.roles import get_visible_role
from app.services.serializers import snapshot, to_dict, to_dicts
from app.services.tenant_context import RequestContext, get_scoped_or_404, scoped_query
from app.services.tenant_limits import ensure_within_limit
from app.services.transactions import atomic

router = APIRouter(prefix="/api/users", tags=["users"])

ROLE_PATTERN = "^(" + "|".join(role.value for role in UserRole) + ")$"
ADMIN_ROLES = (UserRole.SUPER_ADMIN.value, UserRole.TENANT_ADMIN.value, UserRole.ADMIN.value)
MANAGER_ROLES = (UserRole.WAREHOUSE_MANAGER.value, UserRole.SHOP_MANAGER.value)
RECENT_LOGIN_WINDOW = timedelta(days=7)


def _check_catalog(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    invalid = unknown_permissions(value)
    if invalid:
        raise ValueError(f"Unknown permissions: {', '.join(invalid)}")
    return sorted(set(value))


class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone_number: Optional[str] = Field(None, max_length=20)
    role: str = Field(UserRole.EMPLOYEE.value, pattern=ROLE_PATTERN)
    role_id: Optional[int] = None
    access_level: Optional[str] = Field(None, max_length=30)
    permissions: List[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator("permissions")
    @classmethod
    def _known(cls, value: List[str]) -> List[str]:
        return _check_catalog(value)


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    phone_number: Optional[str] = Field(None, max_length=20)
    role: Optional[str] = Field(None, pattern=ROLE_PATTERN)
    role_id: Optional[int] = None
    access_level: Optional[str] = Field(None, max_length=30)
    is_active: Optional[bool] = None


class PermissionsUpdate(BaseModel):
    permissions: List[str]

    @field_validator("permissions")
    @classmethod
    def _known(cls, value: List[str]) -> List[str]:
        return _check_catalog(value)


class PasswordReset(BaseModel):
    password: str = Field(..., min_length=8)
    password_confirmation: str

    @model_validator(mode="after")
    def _confirmed(self) -> "PasswordReset":
        if self.password != self.password_confirmation:
            raise ValueError("The password confirmation does not match")
        return self


class UserBulkAction(BaseModel):
    action: str = Field(..., pattern="^(activate|deactivate|delete)$")
    user_ids: List[int] = Field(..., min_length=1)


def _ensure_email_available(ctx: RequestContext, email: str, exclude_id: int | None = None) -> None:
    # Emails identify principals at login, so they are unique across tenants
    query = ctx.db.query(User).filter(User.email == email)
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise field_error("email", "The email has already been taken")


def _ensure_role_assignable(ctx: RequestContext, role: str | None, role_id: int | None) -> None:
    if role == UserRole.SUPER_ADMIN.value and not ctx.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    if role_id is not None and get_visible_role(ctx, role_id) is None:
        raise BusinessRuleError("Role not found or does not belong to tenant")


def _get_user(ctx: RequestContext, user_id: int) -> User:
    return get_scoped_or_404(ctx, User, user_id, "User")


@router.get("")
def list_users(
    params: ListParams = Depends(list_params),
    role: Optional[str] = None,
    ctx: RequestContext = Depends(require_permission(Permission.USERS_VIEW)),
):
    query = scoped_query(ctx, User)
    if role:
        query = query.filter(User.role == role)
    query = apply_filters(
        query,
        User,
        params,
        search_fields=("full_name", "email", "phone_number"),
        sortable=("full_name", "email", "role", "last_login_at"),
    )
    items, meta = paginate(query, params.page, params.per_page)
    return paginated(to_dicts(items), meta, "Users retrieved successfully", tenant=ctx.tenant)


@router.get("/stats")
def user_stats(ctx: RequestContext = Depends(require_permission(Permission.USERS_VIEW))):
    query = scoped_query(ctx, User)
    by_role = dict(query.with_entities(User.role, func.count(User.id)).group_by(User.role).all())
    total = sum(by_role.values())
    active = query.filter(User.is_active.is_(True)).count()
    data = {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "admins": sum(by_role.get(role, 0) for role in ADMIN_ROLES),
        "managers": sum(by_role.get(role, 0) for role in MANAGER_ROLES),
        "employees": by_role.get(UserRole.EMPLOYEE.value, 0),
        "customers": by_role.get(UserRole.CUSTOMER.value, 0),
        "users_by_role": by_role,
        "recent_logins": query.filter(User.last_login_at >= utcnow() - RECENT_LOGIN_WINDOW).count(),
    }
    return envelope(data, "User statistics retrieved successfully", tenant=ctx.tenant)


@router.post("/bulk")
def bulk_user_action(
    payload: UserBulkAction,
    ctx: RequestContext = Depends(require_permission(Permission.USERS_BULK_ACTIONS)),
):
    with atomic(ctx.db, "Bulk action failed"):
        users = scoped_batch(ctx, User, payload.user_ids, "users")
        results = []
        for user in users:
            if user.id == ctx.user_id:
                results.append(f"User {user.email} skipped (own account)")
                continue
            if payload.action == "delete":
                if user.role in ADMIN_ROLES:
                    results.append(f"User {user.email} skipped (admin account)")
                    continue
                ctx.db.query(UserSession).filter(UserSession.user_id == user.id).delete(synchronize_session=False)
                ctx.db.delete(user)
                results.append(f"User {user.email} deleted")
                continue
            user.is_active = payload.action == "activate"
            if not user.is_active:
                terminate_user_sessions(ctx.db, user.id)
            results.append(f"User {user.email} {payload.action}d")
        ctx.db.flush()
        record_audit(
            ctx,
            "bulk_user_action",
            table_name="users",
            new_values={"action": payload.action, "user_ids": payload.user_ids, "results": results},
        )
    data = {"action": payload.action, "results": results}
    return envelope(data, "Bulk action completed successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, ctx: RequestContext = Depends(require_permission(Permission.USERS_CREATE))):
    email = payload.email.strip().lower()
    _ensure_email_available(ctx, email)
    _ensure_role_assignable(ctx, payload.role, payload.role_id)
    if payload.role == UserRole.SUPER_ADMIN.value:
        # Platform principals belong to no tenant
        tenant_id = None
    else:
        tenant_id = ctx.require_tenant()
        ensure_within_limit(ctx, "users")

    with atomic(ctx.db, "Failed to create user"):
        user = User(
            tenant_id=tenant_id,
            full_name=payload.full_name.strip(),
            email=email,
            password_hash=hash_password(payload.password),
            phone_number=payload.phone_number,
            role=payload.role,
            role_id=payload.role_id if tenant_id is not None else None,
            access_level=payload.access_level,
            permissions=payload.permissions,
            is_active=payload.is_active,
        )
        ctx.db.add(user)
        ctx.db.flush()
        record_audit(ctx, "user_created", table_name="users", record_id=user.id, new_values=snapshot(user))
    return envelope(to_dict(user), "User created successfully", tenant=ctx.tenant)


@router.get("/{user_id}")
def show_user(user_id: int, ctx: RequestContext = Depends(require_permission(Permission.USERS_VIEW))):
    user = _get_user(ctx, user_id)
    return envelope(to_dict(user), "User retrieved successfully", tenant=ctx.tenant)


@router.put("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.USERS_EDIT)),
):
    user = _get_user(ctx, user_id)
    changes = changes_from(payload, User)
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        _ensure_email_available(ctx, changes["email"], exclude_id=user.id)
    _ensure_role_assignable(ctx, changes.get("role"), changes.get("role_id"))
    if changes.get("role") == UserRole.SUPER_ADMIN.value:
        changes["tenant_id"] = None
        changes["role_id"] = None
    if user.role == UserRole.SUPER_ADMIN.value and not ctx.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    if user.id == ctx.user_id and changes.get("is_active") is False:
        raise BusinessRuleError("You cannot deactivate your own account")

    password = changes.pop("password", None)
    with atomic(ctx.db, "Failed to update user"):
        old_values = snapshot(user)
        for field, value in changes.items():
            setattr(user, field, value)
        if password:
            user.password_hash = hash_password(password)
        if changes.get("is_active") is False or password:
            terminate_user_sessions(ctx.db, user.id)
        ctx.db.flush()
        new_values = snapshot(user)
        if password:
            new_values["password_changed"] = True
        record_audit(
            ctx,
            "user_updated",
            table_name="users",
            record_id=user.id,
            old_values=old_values,
            new_values=new_values,
        )
    return envelope(to_dict(user), "User updated successfully", tenant=ctx.tenant)


@router.delete("/{user_id}")
def delete_user(user_id: int, ctx: RequestContext = Depends(require_permission(Permission.USERS_DELETE))):
    user = _get_user(ctx, user_id)
    if user.id == ctx.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")
    if user.role == UserRole.SUPER_ADMIN.value and not ctx.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    with atomic(ctx.db, "Failed to delete user"):
        deleted = snapshot(user)
        ctx.db.query(UserSession).filter(UserSession.user_id == user.id).delete(synchronize_session=False)
        ctx.db.delete(user)
        ctx.db.flush()
        record_audit(ctx, "user_deleted", table_name="users", record_id=deleted["id"], old_values=deleted)
    return envelope(None, "User deleted successfully", tenant=ctx.tenant)


def _set_active(ctx: RequestContext, user_id: int, active: bool) -> User:
    user = _get_user(ctx, user_id)
    if user.id == ctx.user_id and not active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    if user.is_active == active:
        state = "active" if active else "inactive"
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"User is already {state}")

    with atomic(ctx.db, "Failed to update user status"):
        user.is_active = active
        if not active:
            terminate_user_sessions(ctx.db, user.id)
        ctx.db.flush()
        record_audit(
            ctx,
            "user_activated" if active else "user_deactivated",
            table_name="users",
            record_id=user.id,
            old_values={"is_active": not active},
            new_values={"is_active": active},
        )
    return user


@router.post("/{user_id}/activate")
def activate_user(user_id: int, ctx: RequestContext = Depends(require_permission(Permission.USERS_EDIT))):
    user = _set_active(ctx, user_id, True)
    return envelope(to_dict(user), "User activated successfully", tenant=ctx.tenant)


@router.post("/{user_id}/deactivate")
def deactivate_user(user_id: int, ctx: RequestContext = Depends(require_permission(Permission.USERS_EDIT))):
    user = _set_active(ctx, user_id, False)
    return envelope(to_dict(user), "User deactivated successfully", tenant=ctx.tenant)


@router.post("/{user_id}/reset-password")
def reset_user_password(
    user_id: int,
    payload: PasswordReset,
    ctx: RequestContext = Depends(require_permission(Permission.USERS_EDIT)),
):
    user = _get_user(ctx, user_id)
    if user.role == UserRole.SUPER_ADMIN.value and not ctx.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    with atomic(ctx.db, "Failed to reset password"):
        user.password_hash = hash_password(payload.password)
        terminated = terminate_user_sessions(ctx.db, user.id)
        ctx.db.flush()
        record_audit(
            ctx,
            "password_reset",
            table_name="users",
            record_id=user.id,
            new_values={"password_changed": True, "sessions_terminated": terminated},
        )
    return envelope(to_dict(user), "Password reset successfully", tenant=ctx.tenant)


@router.put("/{user_id}/permissions")
def update_user_permissions(
    user_id: int,
    payload: PermissionsUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.USERS_MANAGE_PERMISSIONS)),
):
    user = _get_user(ctx, user_id)
    with atomic(ctx.db, "Failed to update user permissions"):
        previous = list(user.permissions or [])
        user.permissions = payload.permissions
        ctx.db.flush()
        record_audit(
            ctx,
            "user_permissions_updated",
            table_name="users",
            record_id=user.id,
            old_values={"permissions": previous},
            new_values={"permissions": payload.permissions},
        )
    return envelope(to_dict(user), "User permissions updated successfully", tenant=ctx.tenant)
