"""
Redis Storage Backend.

Storage backend for multi-process deployments, where several workers share
the paymaster registry and its locks.
"""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

import redis.asyncio as redis
from redis.exceptions import WatchError

from gaspool.core.logging import get_logger
from gaspool.storage.base import StorageBackend, matches, register_storage_backend

logger = get_logger("storage.redis")


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Records are JSON strings under ``{prefix}:{collection}:{key}``; each
    collection keeps a set index of its keys for query() and count().
    """

    # Lua script for safe lock release: only delete if token matches
    _RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "gaspool",
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from GASPOOL_REDIS_URL env)
            prefix: Key prefix for all storage keys
        """
        self._redis_url = redis_url or os.environ.get(
            "GASPOOL_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis:
        """Lazily create the client on first use."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    def _lock_key(self, key: str) -> str:
        return f"{self._prefix}:locks:{key}"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        client = self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(self._make_key(collection, key), json.dumps(data))
            pipe.sadd(self._index_key(collection), key)
            await pipe.execute()

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        client = self._get_client()
        raw = await client.get(self._make_key(collection, key))
        if raw is None:
            return None
        return json.loads(raw)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        client = self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(self._make_key(collection, key))
            pipe.srem(self._index_key(collection), key)
            deleted, _ = await pipe.execute()
        return deleted > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        keys = sorted(await client.smembers(self._index_key(collection)))

        results = []
        for key in keys:
            data = await self.get(collection, key)
            if data is None or not matches(data, filters):
                continue
            data["_key"] = key
            results.append(data)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]
        return results

    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        return await self.update_if(collection, key, data, conditions={})

    async def update_if(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        conditions: dict[str, Any],
    ) -> bool:
        """Optimistic check-and-set with WATCH/MULTI; retried on contention."""
        client = self._get_client()
        redis_key = self._make_key(collection, key)

        async with client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(redis_key)
                    raw = await pipe.get(redis_key)
                    if raw is None:
                        await pipe.unwatch()
                        return False

                    current = json.loads(raw)
                    if not matches(current, conditions):
                        await pipe.unwatch()
                        return False

                    current.update(data)
                    pipe.multi()
                    pipe.set(redis_key, json.dumps(current))
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug(f"Concurrent write on {redis_key}, retrying")
                    continue

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            return len(await self.query(collection, filters))
        client = self._get_client()
        return await client.scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))
        for key in keys:
            await self.delete(collection, key)
        return len(keys)

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """Acquire a distributed lock with SET NX EX."""
        client = self._get_client()
        token = str(uuid.uuid4())
        result = await client.set(self._lock_key(key), token, nx=True, ex=ttl)
        if result:
            return token
        return None

    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """Atomic check-and-delete via Lua, so another owner's lock survives."""
        client = self._get_client()
        result = await client.eval(self._RELEASE_LOCK_SCRIPT, 1, self._lock_key(key), token)
        return int(result) > 0

    async def health_check(self) -> bool:
        try:
            await self._get_client().ping()
        except redis.RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Register backend
register_storage_backend("redis", RedisStorage)
