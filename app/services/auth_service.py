from __future__ import annotations

import logging
import secrets
import string
from datetime import timedelta

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.core.config import (
    PASSWORD_RESET_MAX_AGE_SECONDS,
    PASSWORD_RESET_SECRET,
    SESSION_TOKEN_LENGTH,
    SESSION_TTL_DAYS,
)
from app.core.database import utcnow
from app.models.user import User
from app.models.user_session import UserSession

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_letters + string.digits
_RESET_SALT = "password-reset"


def generate_session_token(length: int = SESSION_TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def extract_session_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    header_token = request.headers.get("x-session-token", "").strip()
    return header_token or None


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def create_session(db: Session, user: User, request: Request | None = None) -> UserSession:
    now = utcnow()
    session = UserSession(
        session_token=generate_session_token(),
        user_id=user.id,
        tenant_id=user.tenant_id,
        ip_address=client_ip(request) if request is not None else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
        is_active=True,
        created_at=now,
        last_activity_at=now,
        expires_at=now + timedelta(days=SESSION_TTL_DAYS),
    )
    db.add(session)
    db.flush()
    return session


def resolve_session(db: Session, token: str | None) -> tuple[User, UserSession] | None:
    """Return the active, unexpired session for ``token`` and its active user."""
    if not token:
        return None
    session = (
        db.query(UserSession)
        .filter(UserSession.session_token == token, UserSession.is_active.is_(True))
        .first()
    )
    if session is None:
        return None
    if session.expires_at is not None and session.expires_at <= utcnow():
        logger.info("Session expired: session_id=%s user_id=%s", session.id, session.user_id)
        return None
    user = db.query(User).filter(User.id == session.user_id).first()
    if user is None or not user.is_active:
        return None
    return user, session


def terminate_session(session: UserSession) -> None:
    session.is_active = False
    session.logout_at = utcnow()


def terminate_user_sessions(db: Session, user_id: int, *, except_session_id: int | None = None) -> int:
    query = db.query(UserSession).filter(UserSession.user_id == user_id, UserSession.is_active.is_(True))
    if except_session_id is not None:
        query = query.filter(UserSession.id != except_session_id)
    sessions = query.all()
    for session in sessions:
        terminate_session(session)
    return len(sessions)


def session_expires_in(session: UserSession) -> int:
    return max(int((session.expires_at - utcnow()).total_seconds()), 0)


def _reset_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(PASSWORD_RESET_SECRET, salt=_RESET_SALT)


def create_password_reset_token(user: User) -> str:
    return _reset_serializer().dumps({"user_id": user.id, "email": user.email})


def load_password_reset_token(token: str) -> dict | None:
    try:
        payload = _reset_serializer().loads(token, max_age=PASSWORD_RESET_MAX_AGE_SECONDS)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict) or "user_id" not in payload:
        return None
    return payload


def dispatch_password_reset(user: User, token: str) -> None:
    # Outbound email is stubbed; the token never reaches the logs
    logger.info("Password reset dispatched: user_id=%s email=%s token_length=%s", user.id, user.email, len(token))
