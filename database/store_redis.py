"""
RedisKVStore — Redis-backed store for multi-process deployments.

Layout (per namespace):
  {namespace}:{key}    — string value, expiry via SET ... EX
  {namespace}:__index  — sorted set of keys scored by insertion time (ns)

Redis drops expired values on its own; the insertion index is pruned lazily
when keys are listed, so it may briefly hold keys whose values are gone.
"""
from __future__ import annotations

import time
import structlog
from typing import Optional

from database.store_base import BaseKVStore

logger = structlog.get_logger()


class RedisKVStore(BaseKVStore):
    """KV store over redis.asyncio. ``client`` must use decode_responses=True."""

    def __init__(self, client, namespace: str = "default", owns_client: bool = False):
        super().__init__(namespace)
        self._redis = client
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, redis_url: str, namespace: str = "default") -> RedisKVStore:
        import redis.asyncio as aioredis
        client = aioredis.from_url(redis_url, decode_responses=True, max_connections=20)
        return cls(client, namespace, owns_client=True)

    @property
    def _index_key(self) -> str:
        return f"{self.namespace}:__index"

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def init(self) -> None:
        await self._redis.ping()
        logger.info("redis_store_connected", namespace=self.namespace)

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(self._full_key(key))

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        pipe = self._redis.pipeline()
        pipe.set(self._full_key(key), value, ex=ttl_seconds or None)
        pipe.zadd(self._index_key, {key: time.time_ns()})
        await pipe.execute()

    async def delete(self, key: str) -> None:
        pipe = self._redis.pipeline()
        pipe.delete(self._full_key(key))
        pipe.zrem(self._index_key, key)
        await pipe.execute()

    async def list_keys(self, prefix: str = "") -> list[str]:
        indexed = await self._redis.zrange(self._index_key, 0, -1)
        if not indexed:
            return []

        pipe = self._redis.pipeline()
        for key in indexed:
            pipe.exists(self._full_key(key))
        exists = await pipe.execute()

        live, stale = [], []
        for key, present in zip(indexed, exists):
            (live if present else stale).append(key)
        if stale:
            await self._redis.zrem(self._index_key, *stale)
        return [k for k in live if k.startswith(prefix)]

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
