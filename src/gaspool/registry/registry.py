"""
Paymaster registry.

Persists Paymaster records (one per project and chain category) and their
per-chain PaymasterBalance rows through the StorageBackend.

Every record write is a compare-and-set on ``version``, so concurrent writers
(EVM chains deploying in parallel, a monitor sweep) never lose each other's
updates even on storage without a process-wide lock.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from gaspool.core.chains import ChainCategory, get_chain, get_chain_category
from gaspool.core.exceptions import (
    DuplicateCategoryError,
    GasPoolError,
    PaymasterNotFoundError,
    ValidationError,
)
from gaspool.core.logging import get_logger
from gaspool.core.types import (
    DeploymentResult,
    DeploymentStatus,
    DeployResult,
    Paymaster,
    PaymasterBalance,
    PaymasterStatus,
    record_key,
    utcnow,
)

if TYPE_CHECKING:
    from datetime import datetime

    from gaspool.storage.base import StorageBackend

logger = get_logger("registry")

MAX_WRITE_ATTEMPTS = 16

_CATEGORY_ORDER = {category: i for i, category in enumerate(ChainCategory)}


class PaymasterRegistry:
    """
    Paymaster and balance-row persistence.

    Usage:
        >>> registry = PaymasterRegistry(InMemoryStorage())
        >>> await registry.create(paymaster)
        >>> pm = await registry.find_by_project_and_chain("proj1", "arbitrum")
    """

    COLLECTION = "paymasters"
    BALANCE_COLLECTION = "paymaster_balances"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    # ---- Paymaster records -------------------------------------------------

    async def create(self, paymaster: Paymaster) -> Paymaster:
        """
        Persist a new paymaster.

        Raises:
            DuplicateCategoryError: If the project already has one for the category
        """
        if await self._storage.get(self.COLLECTION, paymaster.key) is not None:
            raise DuplicateCategoryError(paymaster.project_id, paymaster.chain_category.value)
        await self._storage.save(self.COLLECTION, paymaster.key, paymaster.to_dict())
        logger.info(
            f"Created {paymaster.chain_category.value} paymaster for {paymaster.project_id} "
            f"at {paymaster.address}"
        )
        return paymaster

    async def find_by_project_and_category(
        self, project_id: str, category: ChainCategory
    ) -> Paymaster | None:
        data = await self._storage.get(self.COLLECTION, record_key(project_id, category.value))
        return Paymaster.from_dict(data) if data else None

    async def find_by_project(self, project_id: str) -> list[Paymaster]:
        records = await self._storage.query(self.COLLECTION, {"project_id": project_id})
        paymasters = [Paymaster.from_dict(r) for r in records]
        return sorted(paymasters, key=lambda p: _CATEGORY_ORDER[p.chain_category])

    async def find_by_project_and_chain(self, project_id: str, chain: str) -> Paymaster | None:
        """The project's paymaster serving a chain, if the chain was added."""
        chain = chain.lower()
        paymaster = await self.find_by_project_and_category(project_id, get_chain_category(chain))
        if paymaster is None or chain not in paymaster.supported_chains:
            return None
        return paymaster

    async def find_all(
        self,
        status: PaymasterStatus | None = None,
        deployment_status: DeploymentStatus | None = None,
    ) -> list[Paymaster]:
        filters: dict[str, str] = {}
        if status is not None:
            filters["status"] = status.value
        if deployment_status is not None:
            filters["deployment_status"] = deployment_status.value
        records = await self._storage.query(self.COLLECTION, filters or None)
        return [Paymaster.from_dict(r) for r in records]

    async def _mutate(
        self,
        project_id: str,
        category: ChainCategory,
        mutate: Callable[[Paymaster], bool],
        conditions: dict | None = None,
    ) -> tuple[Paymaster, bool]:
        """
        Read-modify-write a record under a version check.

        ``mutate`` edits the paymaster in place and returns False when there
        is nothing to write. Extra ``conditions`` must also hold on the stored
        record; if they don't, the write is skipped.

        Returns:
            Tuple of (current paymaster, whether a write happened)
        """
        key = record_key(project_id, category.value)
        for _ in range(MAX_WRITE_ATTEMPTS):
            data = await self._storage.get(self.COLLECTION, key)
            if data is None:
                raise PaymasterNotFoundError(project_id, details={"category": category.value})

            paymaster = Paymaster.from_dict(data)
            if not mutate(paymaster):
                return paymaster, False

            paymaster.version += 1
            paymaster.updated_at = utcnow()
            expected = {"version": data.get("version", 1), **(conditions or {})}
            if await self._storage.update_if(self.COLLECTION, key, paymaster.to_dict(), expected):
                return paymaster, True

            current = await self._storage.get(self.COLLECTION, key)
            if current is not None and current.get("version") == data.get("version"):
                # Version unchanged, so an extra condition failed
                return Paymaster.from_dict(current), False

        raise GasPoolError(
            f"Too much write contention on paymaster {key}",
            details={"attempts": MAX_WRITE_ATTEMPTS},
        )

    async def update_chains(
        self,
        project_id: str,
        category: ChainCategory,
        add: Iterable[str],
    ) -> tuple[Paymaster, list[str]]:
        """
        Union chains into a paymaster's supported set.

        Idempotent and monotonic: chains are only appended, never removed,
        and a call with nothing new writes nothing.

        Returns:
            Tuple of (paymaster, chains actually added)

        Raises:
            ValidationError: If a chain belongs to another category
        """
        wanted: list[str] = []
        for chain in add:
            spec = get_chain(chain)
            if spec.category != category:
                raise ValidationError(
                    f"Chain {spec.chain} is not a {category.value} chain",
                    details={"chain": spec.chain, "category": spec.category.value},
                )
            if spec.chain not in wanted:
                wanted.append(spec.chain)

        added: list[str] = []

        def _union(paymaster: Paymaster) -> bool:
            added[:] = [c for c in wanted if c not in paymaster.supported_chains]
            paymaster.supported_chains.extend(added)
            return bool(added)

        paymaster, _ = await self._mutate(project_id, category, _union)
        if added:
            logger.info(f"Added {added} to {category.value} paymaster of {project_id}")
        return paymaster, added

    async def update_deployment_outcome(
        self,
        project_id: str,
        category: ChainCategory,
        status: DeploymentStatus,
        *,
        results: dict[str, DeploymentResult] | None = None,
        last_error: str | None = None,
        retry_count: int | None = None,
        next_retry_at: datetime | None = None,
    ) -> Paymaster:
        """Set the lifecycle state and merge per-chain results."""

        def _apply(paymaster: Paymaster) -> bool:
            paymaster.deployment_status = status
            paymaster.deployment_results.update(results or {})
            paymaster.last_error = last_error
            if retry_count is not None:
                paymaster.retry_count = retry_count
            paymaster.next_retry_at = next_retry_at
            return True

        paymaster, _ = await self._mutate(project_id, category, _apply)
        return paymaster

    async def record_chain_result(
        self,
        project_id: str,
        category: ChainCategory,
        chain: str,
        result: DeploymentResult,
    ) -> Paymaster:
        """Record the outcome of one chain's attempt."""

        def _apply(paymaster: Paymaster) -> bool:
            paymaster.deployment_results[chain] = result
            return True

        paymaster, _ = await self._mutate(project_id, category, _apply)
        return paymaster

    async def claim_canonical_deployment(
        self,
        project_id: str,
        category: ChainCategory,
        deployment: DeployResult,
    ) -> bool:
        """
        Set contract_address, deployment_tx and entry_point_address if unset.

        Atomic set-if-unset: of several chains succeeding concurrently,
        exactly one claims the canonical fields.

        Returns:
            True if this call set them
        """

        def _claim(paymaster: Paymaster) -> bool:
            if paymaster.contract_address is not None:
                return False
            paymaster.contract_address = deployment.contract_address
            paymaster.deployment_tx = deployment.tx_hash
            paymaster.entry_point_address = deployment.entry_point_address
            return True

        _, claimed = await self._mutate(
            project_id, category, _claim, conditions={"contract_address": None}
        )
        return claimed

    async def schedule_retry(
        self,
        project_id: str,
        category: ChainCategory,
        retry_count: int,
        next_retry_at: datetime | None,
    ) -> Paymaster:
        """Record an automatic retry and when the next one is due."""

        def _apply(paymaster: Paymaster) -> bool:
            paymaster.retry_count = retry_count
            paymaster.next_retry_at = next_retry_at
            return True

        paymaster, _ = await self._mutate(project_id, category, _apply)
        return paymaster

    async def set_status(
        self, project_id: str, category: ChainCategory, status: PaymasterStatus
    ) -> Paymaster:
        """Suspend or reactivate a paymaster."""

        def _apply(paymaster: Paymaster) -> bool:
            if paymaster.status == status:
                return False
            paymaster.status = status
            return True

        paymaster, _ = await self._mutate(project_id, category, _apply)
        return paymaster

    async def delete(
        self,
        project_id: str,
        categories: Iterable[ChainCategory] | None = None,
    ) -> int:
        """
        Delete a project's paymasters (all, or only the given categories).

        Cleanup only. Balance rows are not touched; see delete_balances().

        Returns:
            Number of paymaster records deleted
        """
        if categories is None:
            records = await self._storage.query(self.COLLECTION, {"project_id": project_id})
            keys = [r["_key"] for r in records]
        else:
            keys = [record_key(project_id, c.value) for c in categories]

        deleted = 0
        for key in keys:
            if await self._storage.delete(self.COLLECTION, key):
                deleted += 1
        return deleted

    # ---- Balance rows ------------------------------------------------------

    async def create_balance(self, balance: PaymasterBalance) -> bool:
        """Create a zeroed balance row; an existing row is left alone."""
        if await self._storage.get(self.BALANCE_COLLECTION, balance.key) is not None:
            return False
        await self._storage.save(self.BALANCE_COLLECTION, balance.key, balance.to_dict())
        return True

    async def update_balance(self, balance: PaymasterBalance) -> bool:
        """
        Overwrite an existing balance row.

        Rows are only created by provisioning, so a refresh racing a cleanup
        cannot bring a deleted row back.

        Returns:
            False if the row no longer exists
        """
        return await self._storage.update_if(
            self.BALANCE_COLLECTION,
            balance.key,
            balance.to_dict(),
            conditions={"project_id": balance.project_id},
        )

    async def get_balances(self, project_id: str) -> list[PaymasterBalance]:
        records = await self._storage.query(self.BALANCE_COLLECTION, {"project_id": project_id})
        return [PaymasterBalance.from_dict(r) for r in records]

    async def get_balance(self, project_id: str, chain: str) -> PaymasterBalance | None:
        data = await self._storage.get(self.BALANCE_COLLECTION, record_key(project_id, chain))
        return PaymasterBalance.from_dict(data) if data else None

    async def delete_balances(
        self,
        project_id: str,
        chains: Iterable[str] | None = None,
    ) -> int:
        """Delete a project's balance rows (all, or only the given chains)."""
        if chains is None:
            records = await self._storage.query(
                self.BALANCE_COLLECTION, {"project_id": project_id}
            )
            keys = [r["_key"] for r in records]
        else:
            keys = [record_key(project_id, c) for c in chains]

        deleted = 0
        for key in keys:
            if await self._storage.delete(self.BALANCE_COLLECTION, key):
                deleted += 1
        return deleted
