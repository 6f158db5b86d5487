#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from app.core.config import DEV_ADMIN_EMAIL, DEV_ADMIN_NAME, DEV_ADMIN_PASSWORD  # noqa: E402
from app.core.database import SessionLocal, engine  # noqa: E402
from app.services.admin_bootstrap import ensure_users_table, upsert_super_admin  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or refresh the platform super admin.")
    parser.add_argument("--email", default=DEV_ADMIN_EMAIL, help="Super admin email (default: DEV_ADMIN_EMAIL)")
    parser.add_argument("--name", default=DEV_ADMIN_NAME, help="Display name (default: DEV_ADMIN_NAME)")
    parser.add_argument("--password", default=DEV_ADMIN_PASSWORD or None, help="Password (default: DEV_ADMIN_PASSWORD)")
    parser.add_argument(
        "--reset-password",
        action="store_true",
        help="Replace the password of an existing super admin",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    try:
        ensure_users_table(engine)
    except RuntimeError as exc:
        print(str(exc))
        return 1

    db = SessionLocal()
    try:
        admin, created = upsert_super_admin(
            db,
            email=args.email,
            name=args.name,
            password=args.password,
            reset_password=args.reset_password,
        )
    except ValueError as exc:
        print(str(exc))
        return 1
    finally:
        db.close()

    action = "created" if created else "updated"
    print(f"Super admin {action}: id={admin.id} email={admin.email}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
