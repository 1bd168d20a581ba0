"""
Redis storage adapter for multi-process deployments.

Same contract as MemoryStore; values are JSON-encoded strings so both
adapters round-trip identical payloads.
"""
from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

import redis.asyncio as aioredis

from app.db.base import StorageAdapter

logger = logging.getLogger(__name__)


class RedisStore(StorageAdapter):
    name = "redis"

    def __init__(self, redis_url: str = "", client: Optional[Any] = None):
        if client is None:
            if not redis_url:
                raise ValueError("redis_url is required for the redis store backend")
            client = aioredis.from_url(redis_url, decode_responses=True)
        self._redis = client

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._redis.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(
        self, key: str, value: Any, ex: Optional[int] = None, nx: bool = False
    ) -> bool:
        result = await self._redis.set(key, json.dumps(value), ex=ex, nx=nx)
        # SET NX answers None when the key already exists
        return bool(result)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def sadd(self, key: str, member: str) -> None:
        await self._redis.sadd(key, member)

    async def srem(self, key: str, member: str) -> None:
        await self._redis.srem(key, member)

    async def smembers(self, key: str) -> List[str]:
        members = await self._redis.smembers(key)
        return sorted(members)

    async def rpush(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.rpush(key, json.dumps(value))
            if ex:
                pipe.expire(key, ex)
            await pipe.execute()

    async def lrange(self, key: str, start: int, stop: int) -> List[Any]:
        items = await self._redis.lrange(key, start, stop)
        return [json.loads(raw) for raw in items]

    async def ping(self) -> None:
        await self._redis.ping()

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except Exception as e:
            logger.warning(f"Redis close failed: {e}")
