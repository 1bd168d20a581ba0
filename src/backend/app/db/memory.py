"""
In-process storage adapter for local development and tests.

Values are deep-copied through JSON on write so callers never share
mutable state with the store, mirroring what a networked store does.
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Set, Tuple

from app.db.base import StorageAdapter


class MemoryStore(StorageAdapter):
    name = "memory"

    def __init__(self):
        self._kv: Dict[str, Tuple[str, Optional[float]]] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._lists: Dict[str, List[str]] = {}
        self._list_expiry: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _expired(expires_at: Optional[float]) -> bool:
        return expires_at is not None and expires_at <= time.monotonic()

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._kv.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._expired(expires_at):
            del self._kv[key]
            return None
        return raw

    def _live_list(self, key: str) -> List[str]:
        if self._expired(self._list_expiry.get(key)):
            self._lists.pop(key, None)
            self._list_expiry.pop(key, None)
        return self._lists.get(key, [])

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            raw = self._live_value(key)
        return json.loads(raw) if raw is not None else None

    async def set(
        self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False
    ) -> bool:
        encoded = json.dumps(value)
        async with self._lock:
            if nx and self._live_value(key) is not None:
                return False
            expires_at = time.monotonic() + ex if ex else None
            self._kv[key] = (encoded, expires_at)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._kv.pop(key, None)
            self._lists.pop(key, None)
            self._list_expiry.pop(key, None)
            self._sets.pop(key, None)

    async def sadd(self, key: str, member: str) -> None:
        async with self._lock:
            self._sets.setdefault(key, set()).add(member)

    async def srem(self, key: str, member: str) -> None:
        async with self._lock:
            self._sets.get(key, set()).discard(member)

    async def smembers(self, key: str) -> List[str]:
        async with self._lock:
            return sorted(self._sets.get(key, set()))

    async def rpush(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        encoded = json.dumps(value)
        async with self._lock:
            self._live_list(key)
            self._lists.setdefault(key, []).append(encoded)
            if ex:
                self._list_expiry[key] = time.monotonic() + ex

    async def lrange(self, key: str, start: int, stop: int) -> List[Any]:
        async with self._lock:
            items = list(self._live_list(key))
        end = len(items) if stop == -1 else stop + 1
        return [json.loads(raw) for raw in items[start:end]]

    async def ping(self) -> None:
        return None
