import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import (
    CORS_ORIGINS,
    DATABASE_URL,
    DEV_ADMIN_EMAIL,
    DEV_ADMIN_NAME,
    DEV_ADMIN_PASSWORD,
    RESET_ADMIN_PASSWORD,
)
from app.core.database import Base, SessionLocal, engine
from app.core.error_handlers import register_exception_handlers
from app.core.logging_setup import configure_logging
from app.core.startup_checks import apply_migrations, ensure_migrations_applied, validate_database_environment
from app.middleware.observability import ObservabilityMiddleware
import app.models  # registers every table on Base.metadata before create_all

from app.services.admin_bootstrap import BOOTSTRAP_PREFIX, upsert_super_admin
from app.services.roles import ROLES_PREFIX, seed_system_roles, validate_stored_permissions
from app.routers.audit_logs import router as audit_logs_router
from app.routers.auth import router as auth_router
from app.routers.brands import router as brands_router
from app.routers.categories import router as categories_router
from app.routers.customers import router as customers_router
from app.routers.dashboard import router as dashboard_router
from app.routers.expenses import router as expenses_router
from app.routers.inventory import router as inventory_router
from app.routers.notices import router as notices_router
from app.routers.orders import router as orders_router
from app.routers.products import router as products_router
from app.routers.purchases import router as purchases_router
from app.routers.roles import router as roles_router
from app.routers.shops import router as shops_router
from app.routers.suppliers import router as suppliers_router
from app.routers.tenants import router as tenants_router
from app.routers.users import router as users_router
from app.routers.warehouses import router as warehouses_router

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Stockroom API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
register_exception_handlers(app)


def _prepare_schema() -> None:
    if DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        return
    apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)
    ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)


def _seed_roles() -> None:
    db = SessionLocal()
    try:
        changed = seed_system_roles(db)
        validate_stored_permissions(db)
        logger.info("%s system roles ready changed=%s", ROLES_PREFIX, changed)
    finally:
        db.close()


def _bootstrap_super_admin() -> None:
    if not DEV_ADMIN_PASSWORD:
        logger.warning("%s skipped: configure DEV_ADMIN_PASSWORD.", BOOTSTRAP_PREFIX)
        return

    logger.info("%s start email=%s", BOOTSTRAP_PREFIX, DEV_ADMIN_EMAIL)
    db = SessionLocal()
    try:
        admin, created = upsert_super_admin(
            db,
            email=DEV_ADMIN_EMAIL,
            name=DEV_ADMIN_NAME,
            password=DEV_ADMIN_PASSWORD,
            reset_password=RESET_ADMIN_PASSWORD,
        )
        logger.info(
            "%s %s id=%s email=%s",
            BOOTSTRAP_PREFIX,
            "created" if created else "exists",
            admin.id,
            admin.email,
        )
    except Exception:
        logger.exception("%s ERROR bootstrap failed", BOOTSTRAP_PREFIX)
        raise
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        _prepare_schema()
        _seed_roles()
        _bootstrap_super_admin()
    except Exception:
        logger.exception("%s ERROR startup failed", BOOTSTRAP_PREFIX)
        raise


# Routers
app.include_router(auth_router)
app.include_router(tenants_router)
app.include_router(users_router)
app.include_router(roles_router)
app.include_router(categories_router)
app.include_router(brands_router)
app.include_router(suppliers_router)
app.include_router(warehouses_router)
app.include_router(shops_router)
app.include_router(products_router)
app.include_router(customers_router)
app.include_router(orders_router)
app.include_router(purchases_router)
app.include_router(expenses_router)
app.include_router(notices_router)
app.include_router(inventory_router)
app.include_router(audit_logs_router)
app.include_router(dashboard_router)


@app.get("/health")
def health():
    return {"status": "healthy"}
