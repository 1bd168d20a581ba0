"""
Store selection.

The adapter is chosen once at process start from configuration; the rest
of the engine only ever sees the StorageAdapter interface.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.config import settings
from app.db.base import StorageAdapter
from app.db.memory import MemoryStore

logger = logging.getLogger(__name__)

_store: Optional[StorageAdapter] = None


def build_store(backend: str, redis_url: str = "") -> StorageAdapter:
    backend = backend.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        from app.db.redis_store import RedisStore
        return RedisStore(redis_url)
    raise ValueError(f"Unknown store backend: {backend!r} (expected 'memory' or 'redis')")


def get_store() -> StorageAdapter:
    """Process-wide store, built lazily from settings."""
    global _store
    if _store is None:
        _store = build_store(settings.store_backend, settings.redis_url)
        logger.info("Storage backend: %s", _store.name)
    return _store


def set_store(store: Optional[StorageAdapter]) -> None:
    """Replace the process-wide store (used by tests and app startup)."""
    global _store
    _store = store


async def check_store_health() -> dict:
    store = get_store()
    try:
        await store.ping()
        return {"healthy": True, "backend": store.name}
    except Exception as e:
        return {"healthy": False, "backend": store.name, "error": str(e)}
