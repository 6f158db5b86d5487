from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from app.core.errors import field_error
from app.core.permissions import Permission, UserRole, grouped_catalog, unknown_permissions
from app.core.responses import envelope
from app.deps import require_permission
from app.models.role import Role, RolePermission
from app.services.audit import record_audit
from app.services.records import changes_from
from app.services.roles import (
    get_visible_role,
    is_protected_role,
    replace_role_permissions,
    role_detail,
    role_permission_names,
    role_user_count,
    visible_roles,
)
from app.services.serializers import snapshot
from app.services.tenant_context import RequestContext
from app.services.transactions import atomic

router = APIRouter(prefix="/api/roles", tags=["roles"])

RESERVED_ROLE_NAMES = {role.value for role in UserRole}


def _known_permissions(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return value
    invalid = unknown_permissions(value)
    if invalid:
        raise ValueError(f"Unknown permissions: {', '.join(invalid)}")
    return sorted(set(value))


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50, pattern="^[a-z0-9_]+$")
    display_name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)

    @field_validator("permissions")
    @classmethod
    def _catalog(cls, value: List[str]) -> List[str]:
        return _known_permissions(value)


class RoleUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    permissions: Optional[List[str]] = None

    @field_validator("permissions")
    @classmethod
    def _catalog(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _known_permissions(value)


class RolePermissionsUpdate(BaseModel):
    permissions: List[str]

    @field_validator("permissions")
    @classmethod
    def _catalog(cls, value: List[str]) -> List[str]:
        return _known_permissions(value)


def _get_role(ctx: RequestContext, role_id: int) -> Role:
    role = get_visible_role(ctx, role_id)
    if role is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")
    return role


def _ensure_editable(ctx: RequestContext, role: Role) -> None:
    """The super_admin role is immutable; other system roles only change through a super-admin."""
    if is_protected_role(role) or (role.is_system_role and not ctx.is_super_admin):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System role cannot be modified")


@router.get("")
def list_roles(ctx: RequestContext = Depends(require_permission(Permission.ROLES_VIEW))):
    roles = visible_roles(ctx).order_by(Role.is_system_role.desc(), Role.name.asc()).all()
    data = [role_detail(ctx.db, role) for role in roles]
    return envelope(data, "Roles retrieved successfully", tenant=ctx.tenant)


@router.get("/permissions")
def permission_catalog(ctx: RequestContext = Depends(require_permission(Permission.ROLES_VIEW))):
    return envelope(grouped_catalog(), "Permissions retrieved successfully", tenant=ctx.tenant)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_role(payload: RoleCreate, ctx: RequestContext = Depends(require_permission(Permission.ROLES_CREATE))):
    tenant_id = ctx.require_tenant()
    if payload.name in RESERVED_ROLE_NAMES:
        raise field_error("name", "The role name is reserved")
    if ctx.db.query(Role).filter(Role.tenant_id == tenant_id, Role.name == payload.name).first() is not None:
        raise field_error("name", "The role name has already been taken")

    with atomic(ctx.db, "Failed to create role"):
        role = Role(
            tenant_id=tenant_id,
            name=payload.name,
            display_name=payload.display_name,
            description=payload.description,
            is_system_role=False,
            is_active=True,
        )
        ctx.db.add(role)
        ctx.db.flush()
        granted = replace_role_permissions(ctx.db, role, payload.permissions)
        record_audit(
            ctx,
            "role_created",
            table_name="roles",
            record_id=role.id,
            new_values={**snapshot(role), "permissions": granted},
        )
    return envelope(role_detail(ctx.db, role), "Role created successfully", tenant=ctx.tenant)


@router.get("/{role_id}")
def show_role(role_id: int, ctx: RequestContext = Depends(require_permission(Permission.ROLES_VIEW))):
    role = _get_role(ctx, role_id)
    return envelope(role_detail(ctx.db, role), "Role retrieved successfully", tenant=ctx.tenant)


@router.put("/{role_id}")
def update_role(
    role_id: int,
    payload: RoleUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.ROLES_EDIT)),
):
    role = _get_role(ctx, role_id)
    _ensure_editable(ctx, role)
    changes = changes_from(payload, Role)
    permissions = changes.pop("permissions", None)

    with atomic(ctx.db, "Failed to update role"):
        old_values = {**snapshot(role), "permissions": role_permission_names(ctx.db, role.id)}
        for field, value in changes.items():
            setattr(role, field, value)
        if permissions is not None:
            replace_role_permissions(ctx.db, role, permissions)
        ctx.db.flush()
        record_audit(
            ctx,
            "role_updated",
            table_name="roles",
            record_id=role.id,
            old_values=old_values,
            new_values={**snapshot(role), "permissions": role_permission_names(ctx.db, role.id)},
        )
    return envelope(role_detail(ctx.db, role), "Role updated successfully", tenant=ctx.tenant)


@router.delete("/{role_id}")
def delete_role(role_id: int, ctx: RequestContext = Depends(require_permission(Permission.ROLES_DELETE))):
    role = _get_role(ctx, role_id)
    if role.is_system_role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="System role cannot be deleted")
    if role_user_count(ctx.db, role):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete role that is assigned to users",
        )

    with atomic(ctx.db, "Failed to delete role"):
        deleted = {**snapshot(role), "permissions": role_permission_names(ctx.db, role.id)}
        ctx.db.query(RolePermission).filter(RolePermission.role_id == role.id).delete(synchronize_session=False)
        ctx.db.delete(role)
        ctx.db.flush()
        record_audit(ctx, "role_deleted", table_name="roles", record_id=deleted["id"], old_values=deleted)
    return envelope(None, "Role deleted successfully", tenant=ctx.tenant)


@router.put("/{role_id}/permissions")
def set_role_permissions(
    role_id: int,
    payload: RolePermissionsUpdate,
    ctx: RequestContext = Depends(require_permission(Permission.ROLES_MANAGE_PERMISSIONS)),
):
    role = _get_role(ctx, role_id)
    _ensure_editable(ctx, role)

    with atomic(ctx.db, "Failed to update role permissions"):
        previous = role_permission_names(ctx.db, role.id)
        granted = replace_role_permissions(ctx.db, role, payload.permissions)
        record_audit(
            ctx,
            "role_permissions_updated",
            table_name="roles",
            record_id=role.id,
            old_values={"permissions": previous},
            new_values={"permissions": granted},
        )
    return envelope(role_detail(ctx.db, role), "Role permissions updated successfully", tenant=ctx.tenant)
