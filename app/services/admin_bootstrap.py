from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.core.permissions import UserRole
from app.models.user import User
from app.services.passwords import hash_password, password_looks_hashed

logger = logging.getLogger(__name__)

BOOTSTRAP_PREFIX = "[BOOTSTRAP]"


def ensure_users_table(engine: Engine) -> None:
    inspector = inspect(engine)
    if not inspector.has_table("users"):
        raise RuntimeError("Table users not found. Run the migrations first (alembic upgrade head).")


def _resolve_password_hash(password: str) -> str:
    if password_looks_hashed(password):
        logger.info("%s password already hashed; storing as-is", BOOTSTRAP_PREFIX)
        return password
    return hash_password(password)


def upsert_super_admin(
    db: Session,
    *,
    email: str,
    name: str,
    password: str | None,
    reset_password: bool = False,
) -> tuple[User, bool]:
    """Create the platform super admin, or reactivate the existing account.

    An existing password is only replaced when ``reset_password`` is set.
    """
    email = email.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        if existing.role != UserRole.SUPER_ADMIN.value or existing.tenant_id is not None:
            raise ValueError(f"User {email} exists and is not a super admin")
        existing.full_name = name
        existing.is_active = True
        if password and reset_password:
            existing.password_hash = _resolve_password_hash(password)
        db.commit()
        db.refresh(existing)
        return existing, False

    if not password:
        raise ValueError("A password is required to create the super admin")

    admin = User(
        tenant_id=None,
        email=email,
        full_name=name,
        password_hash=_resolve_password_hash(password),
        role=UserRole.SUPER_ADMIN.value,
        permissions=[],
        is_active=True,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin, True
