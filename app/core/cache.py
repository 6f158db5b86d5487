"""In-memory TTL cache for per-tenant aggregate queries.

Keys are tuples whose first element is the tenant id so a write can drop every
entry belonging to one tenant.
"""

from __future__ import annotations

import time
from threading import Lock
from typing import Any, Hashable

from app.core.config import DASHBOARD_CACHE_TTL_SECONDS

_cache: dict[tuple[Hashable, ...], tuple[float, Any]] = {}
_lock = Lock()


def get(key: tuple[Hashable, ...], ttl: float = DASHBOARD_CACHE_TTL_SECONDS) -> Any | None:
    """Return cached value if present and not expired, else None."""
    with _lock:
        entry = _cache.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if time.monotonic() - stored_at > ttl:
            _cache.pop(key, None)
            return None
        return value


def put(key: tuple[Hashable, ...], value: Any) -> None:
    with _lock:
        _cache[key] = (time.monotonic(), value)


def invalidate_tenant(tenant_id: int | None) -> None:
    if tenant_id is None:
        return
    with _lock:
        for key in [key for key in _cache if key and key[0] == tenant_id]:
            _cache.pop(key, None)


def clear() -> None:
    with _lock:
        _cache.clear()
