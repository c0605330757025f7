"""
In-Memory Storage Backend.

Default backend; keeps everything in process dicts. Suitable for
development, tests and single-process deployments.
"""

from __future__ import annotations

import time
import uuid
from copy import deepcopy
from typing import Any

from gaspool.storage.base import StorageBackend, matches, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Every coroutine runs to completion between awaits on one event loop, so
    the check-and-set in update_if() and acquire_lock() is atomic here.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._locks: dict[str, tuple[str, float]] = {}

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(collection, {})

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        self._collection(collection)[key] = deepcopy(data)

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        data = self._collection(collection).get(key)
        return deepcopy(data) if data is not None else None

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        coll = self._collection(collection)
        if key in coll:
            del coll[key]
            return True
        return False

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        results = []
        for key, data in self._collection(collection).items():
            if not matches(data, filters):
                continue
            result = deepcopy(data)
            result["_key"] = key
            results.append(result)

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
        coll = self._collection(collection)
        if key not in coll:
            return False
        coll[key].update(deepcopy(data))
        return True

    async def update_if(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        conditions: dict[str, Any],
    ) -> bool:
        coll = self._collection(collection)
        current = coll.get(key)
        if current is None or not matches(current, conditions):
            return False
        current.update(deepcopy(data))
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            return len(await self.query(collection, filters))
        return len(self._collection(collection))

    async def clear(self, collection: str) -> int:
        coll = self._collection(collection)
        count = len(coll)
        coll.clear()
        return count

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        now = time.monotonic()
        held = self._locks.get(key)
        if held is not None and now < held[1]:
            return None

        token = str(uuid.uuid4())
        self._locks[key] = (token, now + ttl)
        return token

    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        held = self._locks.get(key)
        if held is None or held[0] != token:
            return False
        del self._locks[key]
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
