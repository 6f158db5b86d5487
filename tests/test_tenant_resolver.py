from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.services.tenant_resolver import TenantResolutionError, TenantResolver
from tests.fixtures_data import make_tenant


def _build_request(host: str = "testserver", headers: list[tuple[bytes, bytes]] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/products",
        "query_string": b"",
        "headers": [(b"host", host.encode())] + (headers or []),
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
        "scheme": "http",
    }
    return Request(scope)


def test_header_takes_precedence_over_session_and_subdomain(db, tenant_a, tenant_b):
    user = SimpleNamespace(tenant_id=tenant_a.id)
    request = _build_request(host="acme.stockroom.test", headers=[(b"x-tenant-id", str(tenant_b.id).encode())])

    tenant = TenantResolver.resolve(db, request, user)

    assert tenant.id == tenant_b.id


def test_session_tenant_used_when_header_missing(db, tenant_a, tenant_b):
    user = SimpleNamespace(tenant_id=tenant_b.id)

    tenant = TenantResolver.resolve(db, _build_request(host="acme.stockroom.test"), user)

    assert tenant.id == tenant_b.id


def test_subdomain_resolves_tenant_code(db, tenant_a):
    tenant = TenantResolver.resolve(db, _build_request(host="acme.stockroom.test:8000"))

    assert tenant.id == tenant_a.id


def test_unknown_subdomain_is_not_a_tenant_signal(db, tenant_a):
    assert TenantResolver.resolve(db, _build_request(host="unknown.stockroom.test")) is None


def test_no_signal_yields_no_tenant(db):
    assert TenantResolver.resolve(db, _build_request()) is None


def test_inactive_tenant_fails_closed(db):
    suspended = make_tenant(db, "frozen", "Frozen Goods", status="suspended")
    request = _build_request(headers=[(b"x-tenant-id", str(suspended.id).encode())])

    with pytest.raises(HTTPException) as exc:
        TenantResolver.resolve(db, request)

    assert exc.value.status_code == 403
    assert exc.value.detail == "Tenant not found or inactive"


def test_missing_header_tenant_fails_closed(db):
    request = _build_request(headers=[(b"x-tenant-id", b"999")])

    with pytest.raises(HTTPException) as exc:
        TenantResolver.resolve(db, request)

    assert exc.value.status_code == 403


def test_malformed_header_does_not_fall_back_to_session(db, tenant_a):
    user = SimpleNamespace(tenant_id=tenant_a.id)
    request = _build_request(headers=[(b"x-tenant-id", b"abc")])

    with pytest.raises(HTTPException) as exc:
        TenantResolver.resolve(db, request, user)

    assert exc.value.status_code == 403


def test_parse_tenant_header_rejects_non_numeric_values():
    assert TenantResolver.parse_tenant_header(" 42 ") == 42
    with pytest.raises(TenantResolutionError):
        TenantResolver.parse_tenant_header("tenant-1")


@pytest.mark.parametrize(
    "host, expected",
    [
        ("acme.stockroom.test", "acme"),
        ("ACME.stockroom.test:443", "acme"),
        ("https://acme.stockroom.test/path", "acme"),
        ("www.stockroom.test", None),
        ("localhost", None),
        ("", None),
    ],
)
def test_extract_subdomain(host, expected):
    assert TenantResolver.extract_subdomain(host) == expected
