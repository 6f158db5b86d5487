from datetime import timedelta

from app.core.database import utcnow
from app.models.audit_log import AuditLog
from app.models.user_session import UserSession
from app.services.passwords import hash_password, password_looks_hashed, verify_password
from tests.fixtures_data import DEFAULT_PASSWORD, make_user


def _login(client, email, password=DEFAULT_PASSWORD, **extra):
    return client.post("/api/auth/login", json={"email": email, "password": password, **extra})


def test_login_returns_bearer_session_and_permissions(client, db, admin_a, tenant_a):
    response = _login(client, "ADMIN@acme.example.com")

    assert response.status_code == 200
    body = response.json()
    assert body["tenant"]["code"] == "acme"
    assert body["data"]["token_type"] == "Bearer"
    assert "products.create" in body["data"]["permissions"]
    assert db.query(AuditLog).filter(AuditLog.action == "login", AuditLog.tenant_id == tenant_a.id).count() == 1


def test_wrong_password_returns_401(client, admin_a):
    response = _login(client, "admin@acme.example.com", password="wrong-password")

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


def test_tenant_code_must_match_user_tenant(client, admin_a, tenant_b):
    response = _login(client, "admin@acme.example.com", tenant_code="globex")

    assert response.status_code == 401


def test_deactivated_user_cannot_log_in(client, db, tenant_a):
    make_user(db, tenant_a, "gone@acme.example.com", is_active=False)

    assert _login(client, "gone@acme.example.com").status_code == 403


def test_logout_revokes_the_token(client, admin_a):
    token = _login(client, "admin@acme.example.com").json()["data"]["token"]
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get("/api/auth/profile", headers=headers).status_code == 200
    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/profile", headers=headers).status_code == 401


def test_expired_session_is_rejected(client, db, admin_a, headers_a):
    session = db.query(UserSession).filter(UserSession.user_id == admin_a.id).one()
    session.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    assert client.get("/api/auth/profile", headers=headers_a).status_code == 401


def test_change_password_requires_matching_confirmation(client, headers_a):
    response = client.post(
        "/api/auth/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "n3w-secret", "new_password_confirmation": "x"},
        headers=headers_a,
    )

    assert response.status_code == 422
    assert response.json()["errors"] == {"new_password_confirmation": ["Password confirmation does not match"]}


def test_password_hashing_round_trip():
    stored = hash_password("hunter22")

    assert password_looks_hashed(stored)
    assert verify_password("hunter22", stored)
    assert not verify_password("hunter23", stored)
    assert not verify_password("hunter22", "")
