"""
Abstract Storage Backend for GasPool.

Pluggable persistence for paymaster records, balance snapshots, circuit
breaker state and record locks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Records are JSON-safe dicts addressed by (collection, key). Implementations
    can use any persistence layer (memory, Redis, ...).
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage, replacing any existing record.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection/table name
            filters: Key-value pairs to filter by (exact match)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of matching records, each with its key under ``_key``
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Merge fields into an existing record.

        Returns:
            True if updated, False if not found
        """
        ...

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
        conditions: dict[str, Any],
    ) -> bool:
        """
        Atomically merge fields only if the current record matches conditions.

        A condition value of None matches a missing field or an explicit None.

        Args:
            collection: Collection/table name
            key: Record key
            data: Fields to update (merged with existing)
            conditions: Field values the stored record must currently have

        Returns:
            True if the update was applied, False if the record is missing
            or a condition did not hold
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all records from a collection.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire a lock with an ownership token.

        Args:
            key: Lock key (e.g. "lock:paymaster:proj1:evm")
            ttl: TTL in seconds; an expired lock may be taken over

        Returns:
            Ownership token if acquired, None if already held
        """
        ...

    @abstractmethod
    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """
        Release a lock only if the token still owns it.

        Returns:
            True if released, False if not held or held by another token
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


def matches(data: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Exact-match filter shared by backends."""
    if not filters:
        return True
    return all(data.get(field) == value for field, value in filters.items())


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
