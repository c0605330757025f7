"""
Record lock service.

Serializes mutation sequences on one paymaster record (and on a category's
shared deployer account) across coroutines and, with Redis storage, across
processes.

Lock order is always record -> deployer.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from gaspool.core.exceptions import RecordLockError
from gaspool.core.logging import get_logger

if TYPE_CHECKING:
    from gaspool.storage.base import StorageBackend

logger = get_logger("registry.lock")


def paymaster_lock_key(project_id: str, category: str) -> str:
    return f"lock:paymaster:{project_id}:{category}"


def deployer_lock_key(category: str) -> str:
    return f"lock:deployer:{category}"


class RecordLockService:
    """
    Token-owned locks on top of the storage backend.

    Usage:
        >>> async with locks.hold(paymaster_lock_key("proj1", "evm")):
        ...     ...
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = 300,
        retry_count: int = 20,
        retry_delay: float = 0.25,
    ) -> None:
        """
        Args:
            storage: Storage backend (Redis/Memory)
            ttl: Lock time-to-live in seconds; bounds a crashed holder
            retry_count: Number of retries if lock is held
            retry_delay: Delay between retries
        """
        self._storage = storage
        self._ttl = ttl
        self._retry_count = retry_count
        self._retry_delay = retry_delay

    async def acquire(self, lock_key: str) -> str | None:
        """
        Acquire a lock, retrying while another holder has it.

        Returns:
            lock token if successful, None if the retry budget ran out
        """
        for i in range(self._retry_count + 1):
            token = await self._storage.acquire_lock(lock_key, self._ttl)
            if token:
                logger.debug(f"Acquired {lock_key} (token: {token[:8]}...)")
                return token

            if i < self._retry_count:
                await asyncio.sleep(self._retry_delay)

        logger.warning(f"Failed to acquire {lock_key} after {self._retry_count} retries")
        return None

    async def release(self, lock_key: str, token: str) -> bool:
        """Release a lock; False if it expired and someone else holds it now."""
        released = await self._storage.release_lock(lock_key, token)
        if not released:
            logger.warning(f"Lock {lock_key} was no longer ours on release")
        return released

    @asynccontextmanager
    async def hold(self, lock_key: str) -> AsyncIterator[str]:
        """
        Hold a lock for the duration of a block.

        Raises:
            RecordLockError: If the lock cannot be acquired
        """
        token = await self.acquire(lock_key)
        if token is None:
            raise RecordLockError(lock_key)
        try:
            yield token
        finally:
            await self.release(lock_key, token)
