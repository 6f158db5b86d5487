import os

from dotenv import load_dotenv

# Load .env from the project root
load_dotenv()


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./stockroom.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Sessions
SESSION_TTL_DAYS = int(os.getenv("SESSION_TTL_DAYS", "7"))
SESSION_TOKEN_LENGTH = int(os.getenv("SESSION_TOKEN_LENGTH", "60"))
SESSION_LIST_LIMIT = 20

PASSWORD_RESET_SECRET = os.getenv("PASSWORD_RESET_SECRET", "dev-password-reset-secret")
PASSWORD_RESET_MAX_AGE_SECONDS = int(os.getenv("PASSWORD_RESET_MAX_AGE_SECONDS", "3600"))

# Pagination
DEFAULT_PER_PAGE = int(os.getenv("DEFAULT_PER_PAGE", "15"))
MAX_PER_PAGE = int(os.getenv("MAX_PER_PAGE", "100"))

# Dashboard cache
DASHBOARD_CACHE_TTL_SECONDS = float(os.getenv("DASHBOARD_CACHE_TTL_SECONDS", "300"))

# Audit retention
AUDIT_MIN_RETENTION_DAYS = 30
AUDIT_MAX_RETENTION_DAYS = 365
AUDIT_EXPORT_LIMIT = 10000

# Bootstrap
DEV_ADMIN_EMAIL = os.getenv("DEV_ADMIN_EMAIL", "admin@stockroom.example.com").strip()
DEV_ADMIN_PASSWORD = os.getenv("DEV_ADMIN_PASSWORD", "").strip()
DEV_ADMIN_NAME = os.getenv("DEV_ADMIN_NAME", "Super Admin").strip() or "Super Admin"

AUTO_APPLY_MIGRATIONS = os.getenv("AUTO_APPLY_MIGRATIONS", "").strip().lower()
RESET_ADMIN_PASSWORD = os.getenv("RESET_ADMIN_PASSWORD", "").strip().lower() in {"1", "true", "yes", "on"}
