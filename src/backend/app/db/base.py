"""
Storage primitive interface.

The whole persistence layer is expressed through this small primitive set
so the backing store (in-process map vs. networked key-value store) can be
swapped without touching the engine.
"""
from __future__ import annotations

import abc
from typing import Any, List, Optional


class StorageAdapter(abc.ABC):
    """Async key-value store with sets, lists, TTLs and conditional set."""

    name: str = "abstract"

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abc.abstractmethod
    async def set(
        self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False
    ) -> bool:
        """
        Store a JSON-compatible value.

        Args:
            ex: expiry in seconds
            nx: only set if the key does not exist

        Returns:
            True if the value was written, False if ``nx`` prevented it.
        """

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abc.abstractmethod
    async def sadd(self, key: str, member: str) -> None:
        ...

    @abc.abstractmethod
    async def srem(self, key: str, member: str) -> None:
        ...

    @abc.abstractmethod
    async def smembers(self, key: str) -> List[str]:
        ...

    @abc.abstractmethod
    async def rpush(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        """Append to a list, optionally (re)setting the list's expiry."""

    @abc.abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> List[Any]:
        """Inclusive range, ``stop = -1`` meaning the end of the list."""

    @abc.abstractmethod
    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""

    # ── Derived helpers ──

    async def put_if_absent(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await self.set(key, value, ex=ttl, nx=True)

    async def set_with_expiry(self, key: str, value: Any, ttl: int) -> None:
        await self.set(key, value, ex=ttl)

    async def append(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.rpush(key, value, ex=ttl)

    async def get_list(self, key: str) -> List[Any]:
        return await self.lrange(key, 0, -1)
