from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from app.models.tenant import Tenant
from app.models.user import User

logger = logging.getLogger(__name__)

TENANT_HEADER = "x-tenant-id"
IGNORED_SUBDOMAINS = {"www"}


class TenantResolutionError(Exception):
    pass


@dataclass(frozen=True)
class TenantSignal:
    source: str
    tenant_id: int | None = None
    tenant_code: str | None = None


class TenantResolver:
    """Resolve the active tenant: header, then session principal, then subdomain."""

    @staticmethod
    def normalize_host(host: str) -> str:
        normalized = (host or "").split(",")[0].strip().lower()
        if not normalized:
            return ""

        if "://" in normalized:
            return (urlsplit(normalized).hostname or "").lower()

        normalized = normalized.split("/")[0].strip()
        if ":" in normalized:
            normalized = normalized.split(":")[0].strip()
        return normalized

    @classmethod
    def extract_subdomain(cls, host: str) -> str | None:
        normalized_host = cls.normalize_host(host)
        if not normalized_host:
            return None
        labels = normalized_host.split(".")
        # A bare host ("localhost", "testserver") carries no tenant label
        if len(labels) < 2:
            return None
        first_label = labels[0].strip()
        if not first_label or first_label in IGNORED_SUBDOMAINS:
            return None
        return first_label

    @classmethod
    def extract_subdomain_from_request(cls, request: Request) -> str | None:
        host = request.headers.get("x-forwarded-host") or request.headers.get("host") or ""
        return cls.extract_subdomain(host)

    @staticmethod
    def parse_tenant_header(raw: str) -> int:
        value = (raw or "").strip()
        if not value.isdigit():
            raise TenantResolutionError("Invalid tenant header")
        return int(value)

    @classmethod
    def detect_signal(cls, request: Request, user: User | None) -> TenantSignal | None:
        header_value = request.headers.get(TENANT_HEADER)
        if header_value is not None:
            try:
                return TenantSignal(source="header", tenant_id=cls.parse_tenant_header(header_value))
            except TenantResolutionError:
                # An unusable explicit id must not fall through to weaker signals
                return TenantSignal(source="header")

        if user is not None and user.tenant_id is not None:
            return TenantSignal(source="session", tenant_id=int(user.tenant_id))

        subdomain = cls.extract_subdomain_from_request(request)
        if subdomain:
            return TenantSignal(source="subdomain", tenant_code=subdomain)
        return None

    @staticmethod
    def _lookup(db: Session, signal: TenantSignal) -> Tenant | None:
        if signal.tenant_id is not None:
            return db.query(Tenant).filter(Tenant.id == signal.tenant_id).first()
        if signal.tenant_code:
            return db.query(Tenant).filter(Tenant.tenant_code == signal.tenant_code).first()
        return None

    @classmethod
    def resolve(cls, db: Session, request: Request, user: User | None = None) -> Tenant | None:
        """Return the active tenant, ``None`` when no signal exists, or raise 403."""
        signal = cls.detect_signal(request, user)
        if signal is None:
            return None

        if signal.source == "subdomain":
            tenant = cls._lookup(db, signal)
            if tenant is None:
                # An unknown host label is not a tenant signal
                logger.info("Tenant resolution: no tenant for subdomain=%s", signal.tenant_code)
                return None
        else:
            tenant = cls._lookup(db, signal)

        if tenant is None or tenant.status != "active":
            logger.warning(
                "Tenant resolution rejected: source=%s tenant_id=%s tenant_code=%s status=%s path=%s",
                signal.source,
                signal.tenant_id,
                signal.tenant_code,
                getattr(tenant, "status", None),
                request.url.path,
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant not found or inactive")

        return tenant
