"""
Short-TTL lease on top of the store's conditional set.

acquire = set-if-absent with TTL, release = delete. Callers that fail to
acquire are expected to wait once and re-read shared state rather than spin.
"""
from __future__ import annotations

import logging
import uuid

from app.db.base import StorageAdapter

logger = logging.getLogger(__name__)


class Lease:
    def __init__(self, store: StorageAdapter, key: str, ttl_seconds: int):
        self.store = store
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        self.held = await self.store.put_if_absent(self.key, self.token, self.ttl_seconds)
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        # Only drop the lease if it has not expired and been taken by someone else
        current = await self.store.get(self.key)
        if current == self.token:
            await self.store.delete(self.key)
        else:
            logger.debug(f"Lease {self.key} expired before release")
        self.held = False

    async def __aenter__(self) -> "Lease":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()
