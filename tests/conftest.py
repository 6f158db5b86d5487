import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import cache
from app.core.database import Base, get_db
import app.models  # noqa: F401
from app.services.roles import seed_system_roles
from tests.fixtures_data import make_session_headers, make_tenant, make_user


@pytest.fixture(autouse=True)
def _reset_dashboard_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own; let SQLAlchemy emit it so SAVEPOINTs nest correctly
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    seed_system_roles(session)
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def client(db):
    from app.main import app

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def tenant_a(db):
    return make_tenant(db, "acme", "Acme Supplies")


@pytest.fixture()
def tenant_b(db):
    return make_tenant(db, "globex", "Globex Trading")


@pytest.fixture()
def admin_a(db, tenant_a):
    return make_user(db, tenant_a, "admin@acme.example.com", role="tenant_admin")


@pytest.fixture()
def admin_b(db, tenant_b):
    return make_user(db, tenant_b, "admin@globex.example.com", role="tenant_admin")


@pytest.fixture()
def headers_a(db, admin_a):
    return make_session_headers(db, admin_a)


@pytest.fixture()
def headers_b(db, admin_b):
    return make_session_headers(db, admin_b)


@pytest.fixture()
def super_admin(db):
    return make_user(db, None, "root@stockroom.example.com", role="super_admin", full_name="Platform Root")


@pytest.fixture()
def super_headers(db, super_admin):
    return make_session_headers(db, super_admin)
