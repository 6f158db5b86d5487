from __future__ import annotations

import bcrypt
from passlib.context import CryptContext

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def password_looks_hashed(value: str) -> bool:
    return value.startswith(("$pbkdf2-sha256$",) + BCRYPT_PREFIXES)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False

    if password_hash.startswith(BCRYPT_PREFIXES):
        # bcrypt only considers the first 72 bytes
        try:
            return bcrypt.checkpw(password.encode("utf-8")[:72], password_hash.encode("utf-8"))
        except ValueError:
            return False

    try:
        return _pwd_context.verify(password, password_hash)
    except ValueError:
        return False
