from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator
from sqlalchemy.orm import Session

from app.core.config import SESSION_LIST_LIMIT
from app.core.database import get_db, utcnow
from app.core.errors import field_error
from app.core.responses import envelope
from app.deps import get_authenticated_context
from app.models.tenant import Tenant
from app.models.user import User
from app.models.user_session import UserSession
from app.services.audit import record_audit
from app.services.auth_service import (
    create_password_reset_token,
    create_session,
    dispatch_password_reset,
    load_password_reset_token,
    session_expires_in,
    terminate_session,
    terminate_user_sessions,
)
from app.services.authorization_service import AuthorizationService
from app.services.passwords import hash_password, verify_password
from app.services.records import changes_from
from app.services.serializers import to_dict
from app.services.tenant_context import RequestContext
from app.services.transactions import atomic

router = APIRouter(prefix="/api/auth", tags=["auth"])

logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If the email exists, a password reset link has been sent"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    tenant_code: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(None, max_length=20)


class PasswordChange(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)
    new_password_confirmation: str

    @field_validator("new_password_confirmation")
    @classmethod
    def _passwords_match(cls, value: str, info: ValidationInfo) -> str:
        if value != info.data.get("new_password"):
            raise ValueError("Password confirmation does not match")
        return value


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class PasswordReset(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    password_confirmation: str

    @field_validator("password_confirmation")
    @classmethod
    def _passwords_match(cls, value: str, info: ValidationInfo) -> str:
        if value != info.data.get("password"):
            raise ValueError("Password confirmation does not match")
        return value


def _user_tenant(db: Session, user: User) -> Tenant | None:
    if user.tenant_id is None:
        return None
    return db.query(Tenant).filter(Tenant.id == user.tenant_id).first()


def _token_payload(ctx: RequestContext, session: UserSession) -> dict:
    return {
        "token": session.session_token,
        "token_type": "Bearer",
        "expires_in": session_expires_in(session),
        "user": to_dict(ctx.user),
        "permissions": sorted(AuthorizationService.permissions_for(ctx)),
    }


@router.post("/login")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    email = payload.email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if payload.tenant_code and user is not None:
        tenant = db.query(Tenant).filter(Tenant.tenant_code == payload.tenant_code.strip().lower()).first()
        if tenant is None or tenant.id != user.tenant_id:
            user = None

    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("Login failed: email=%s", email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    tenant = _user_tenant(db, user)
    if user.tenant_id is not None and (tenant is None or tenant.status != "active"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant account is not active")

    ctx = RequestContext(db=db, request=request, user=user, tenant=tenant)
    with atomic(db, "Login failed"):
        session = create_session(db, user, request)
        ctx.session = session
        user.last_login_at = utcnow()
        record_audit(ctx, "login", table_name="users", record_id=user.id, new_values={"session_id": session.id})

    logger.info("Login succeeded: user_id=%s tenant_id=%s", user.id, user.tenant_id)
    return envelope(_token_payload(ctx, session), "Login successful", tenant=tenant)


@router.post("/logout")
def logout(ctx: RequestContext = Depends(get_authenticated_context)):
    with atomic(ctx.db, "Logout failed"):
        terminate_session(ctx.session)
        record_audit(
            ctx,
            "logout",
            table_name="users",
            record_id=ctx.user_id,
            new_values={"session_id": ctx.session.id},
            tenant_id=ctx.user.tenant_id,
        )
    return envelope(None, "Logged out successfully", tenant=ctx.tenant)


@router.get("/profile")
def get_profile(ctx: RequestContext = Depends(get_authenticated_context)):
    data = to_dict(ctx.user, permissions=sorted(AuthorizationService.permissions_for(ctx)))
    return envelope(data, "Profile retrieved successfully", tenant=ctx.tenant)


@router.put("/profile")
def update_profile(payload: ProfileUpdate, ctx: RequestContext = Depends(get_authenticated_context)):
    changes = changes_from(payload, User)
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        taken = ctx.db.query(User).filter(User.email == changes["email"], User.id != ctx.user_id).first()
        if taken is not None:
            raise field_error("email", "The email has already been taken")

    user = ctx.user
    with atomic(ctx.db, "Failed to update profile"):
        old_values = {field: getattr(user, field) for field in changes}
        for field, value in changes.items():
            setattr(user, field, value)
        record_audit(
            ctx,
            "profile_updated",
            table_name="users",
            record_id=user.id,
            old_values=old_values,
            new_values=changes,
            tenant_id=user.tenant_id,
        )
    return envelope(to_dict(user), "Profile updated successfully", tenant=ctx.tenant)


@router.post("/change-password")
def change_password(payload: PasswordChange, ctx: RequestContext = Depends(get_authenticated_context)):
    user = ctx.user
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    with atomic(ctx.db, "Failed to change password"):
        user.password_hash = hash_password(payload.new_password)
        terminated = terminate_user_sessions(ctx.db, user.id)
        session = create_session(ctx.db, user, ctx.request)
        ctx.session = session
        record_audit(
            ctx,
            "password_changed",
            table_name="users",
            record_id=user.id,
            new_values={"sessions_terminated": terminated},
            tenant_id=user.tenant_id,
        )
    return envelope(_token_payload(ctx, session), "Password changed successfully", tenant=ctx.tenant)


@router.post("/refresh")
def refresh_token(ctx: RequestContext = Depends(get_authenticated_context)):
    with atomic(ctx.db, "Failed to refresh token"):
        terminate_session(ctx.session)
        session = create_session(ctx.db, ctx.user, ctx.request)
        ctx.session = session
    return envelope(_token_payload(ctx, session), "Token refreshed successfully", tenant=ctx.tenant)


@router.get("/verify")
def verify_token(ctx: RequestContext = Depends(get_authenticated_context)):
    data = {
        "valid": True,
        "user": to_dict(ctx.user),
        "expires_in": session_expires_in(ctx.session),
    }
    return envelope(data, "Token is valid", tenant=ctx.tenant)


@router.get("/sessions")
def list_sessions(ctx: RequestContext = Depends(get_authenticated_context)):
    sessions = (
        ctx.db.query(UserSession)
        .filter(UserSession.user_id == ctx.user_id)
        .order_by(UserSession.created_at.desc(), UserSession.id.desc())
        .limit(SESSION_LIST_LIMIT)
        .all()
    )
    data = [to_dict(entry, is_current=entry.id == ctx.session.id) for entry in sessions]
    return envelope(data, "Sessions retrieved successfully", tenant=ctx.tenant)


@router.delete("/sessions/{session_id}")
def terminate_one_session(session_id: int, ctx: RequestContext = Depends(get_authenticated_context)):
    session = (
        ctx.db.query(UserSession)
        .filter(UserSession.id == session_id, UserSession.user_id == ctx.user_id)
        .first()
    )
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    with atomic(ctx.db, "Failed to terminate session"):
        terminate_session(session)
        record_audit(ctx, "session_terminated", table_name="user_sessions", record_id=session.id)
    return envelope(None, "Session terminated successfully", tenant=ctx.tenant)


@router.post("/sessions/terminate-others")
def terminate_other_sessions(ctx: RequestContext = Depends(get_authenticated_context)):
    with atomic(ctx.db, "Failed to terminate sessions"):
        terminated = terminate_user_sessions(ctx.db, ctx.user_id, except_session_id=ctx.session.id)
        record_audit(
            ctx,
            "other_sessions_terminated",
            table_name="user_sessions",
            new_values={"sessions_terminated": terminated},
        )
    return envelope({"terminated": terminated}, "Other sessions terminated successfully", tenant=ctx.tenant)


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email.strip().lower()).first()
    if user is not None and user.is_active:
        dispatch_password_reset(user, create_password_reset_token(user))
    return envelope(None, FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
def reset_password(payload: PasswordReset, request: Request, db: Session = Depends(get_db)):
    token_data = load_password_reset_token(payload.token)
    user = None
    if token_data is not None:
        user = db.query(User).filter(User.id == token_data["user_id"]).first()
    if user is None or user.email != token_data.get("email") or not user.is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

    ctx = RequestContext(db=db, request=request, user=user)
    with atomic(db, "Failed to reset password"):
        user.password_hash = hash_password(payload.password)
        terminated = terminate_user_sessions(db, user.id)
        record_audit(
            ctx,
            "password_reset",
            table_name="users",
            record_id=user.id,
            new_values={"sessions_terminated": terminated},
            tenant_id=user.tenant_id,
        )
    return envelope(None, "Password has been reset successfully")
