from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.permissions import (
    DEFAULT_ROLE_PERMISSIONS,
    ROLE_DISPLAY_NAMES,
    UserRole,
    unknown_permissions,
    validate_role_bundles,
)
from app.models.role import Role, RolePermission
from app.models.user import User
from app.services.serializers import to_dict
from app.services.tenant_context import RequestContext

logger = logging.getLogger(__name__)
ROLES_PREFIX = "[ROLES]"


def role_permission_names(db: Session, role_id: int) -> list[str]:
    rows = (
        db.query(RolePermission.permission)
        .filter(RolePermission.role_id == role_id)
        .order_by(RolePermission.permission.asc())
        .all()
    )
    return [row[0] for row in rows]


def replace_role_permissions(db: Session, role: Role, permissions: Iterable[str]) -> list[str]:
    wanted = sorted(set(permissions))
    db.query(RolePermission).filter(RolePermission.role_id == role.id).delete(synchronize_session=False)
    for permission in wanted:
        db.add(RolePermission(role_id=role.id, permission=permission))
    db.flush()
    return wanted


def seed_system_roles(db: Session) -> int:
    """Create or refresh the built-in roles so their bundles match the catalog defaults."""
    validate_role_bundles()
    changed = 0
    for role_enum, permissions in DEFAULT_ROLE_PERMISSIONS.items():
        role = (
            db.query(Role)
            .filter(Role.tenant_id.is_(None), Role.name == role_enum.value)
            .first()
        )
        if role is None:
            role = Role(
                tenant_id=None,
                name=role_enum.value,
                display_name=ROLE_DISPLAY_NAMES[role_enum],
                is_system_role=True,
                is_active=True,
            )
            db.add(role)
            db.flush()
            logger.info("%s created system role name=%s", ROLES_PREFIX, role.name)
        wanted = sorted(permission.value for permission in permissions)
        if role_permission_names(db, role.id) != wanted:
            replace_role_permissions(db, role, wanted)
            changed += 1
    db.commit()
    return changed


def validate_stored_permissions(db: Session) -> None:
    """Fail startup when a stored role grant is not part of the catalog."""
    stored = [row[0] for row in db.query(RolePermission.permission).distinct().all()]
    invalid = unknown_permissions(stored)
    if invalid:
        logger.critical("%s stored role permissions outside the catalog: %s", ROLES_PREFIX, ", ".join(invalid))
        raise RuntimeError(f"Unknown stored permissions: {', '.join(invalid)}")


def is_protected_role(role: Role) -> bool:
    return role.is_system_role and role.name == UserRole.SUPER_ADMIN.value


def visible_roles(ctx: RequestContext):
    """System roles plus the active tenant's custom roles."""
    query = ctx.db.query(Role)
    if ctx.all_tenants and ctx.is_super_admin:
        return query
    return query.filter(or_(Role.tenant_id.is_(None), Role.tenant_id == ctx.tenant_id))


def get_visible_role(ctx: RequestContext, role_id: int) -> Role | None:
    return visible_roles(ctx).filter(Role.id == role_id).first()


def role_detail(db: Session, role: Role) -> dict:
    return to_dict(
        role,
        permissions=role_permission_names(db, role.id),
        users_count=role_user_count(db, role),
    )


def role_user_count(db: Session, role: Role) -> int:
    criteria = [User.role_id == role.id]
    if role.is_system_role:
        criteria.append(User.role == role.name)
    return db.query(User).filter(or_(*criteria)).count()
