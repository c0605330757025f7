"""GasPool - Main entry point for paymaster provisioning."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from gaspool.adapters import build_adapters
from gaspool.adapters.base import ChainAdapter
from gaspool.balances.ledger import BalanceLedger
from gaspool.balances.prices import CoinGeckoPriceSource, PriceCache, PriceSource
from gaspool.core.chains import ChainCategory, get_chain, payment_uri
from gaspool.core.config import Config
from gaspool.core.exceptions import PaymasterNotFoundError, ValidationError
from gaspool.core.logging import configure_logging, get_logger
from gaspool.core.types import (
    BalanceReport,
    DeploymentStatus,
    FundingInstructions,
    Paymaster,
    PaymasterStatus,
    ProjectStats,
    ProvisionSummary,
    RetryOutcome,
)
from gaspool.monitor.alerts import AlertSink, LoggingAlertSink, WebhookAlertSink
from gaspool.monitor.monitor import PaymasterMonitor
from gaspool.provisioning.orchestrator import ProvisioningOrchestrator
from gaspool.registry.lock import RecordLockService
from gaspool.registry.registry import PaymasterRegistry
from gaspool.storage import get_storage
from gaspool.storage.base import StorageBackend


class GasPool:
    """
    Main client for GasPool.

    Multi-tenant design: one shared paymaster per project and chain category,
    provisioned on demand and watched by a background monitor.

    Usage:
        >>> async with GasPool() as pool:
        ...     summaries = await pool.create_paymasters("proj1", ["ethereum", "solana"])
        ...     addresses = await pool.get_addresses("proj1")
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        adapters: dict[ChainCategory, ChainAdapter] | None = None,
        price_source: PriceSource | None = None,
        alert_sinks: list[AlertSink] | None = None,
    ) -> None:
        """
        Initialize GasPool.

        Args:
            config: Engine configuration (default: Config.from_env())
            storage: Storage backend (default: from config.storage_backend)
            adapters: Chain adapters per category (default: built from config)
            price_source: USD price source (default: CoinGecko)
            alert_sinks: Monitor alert destinations (default: log, plus the
                webhook when GASPOOL_ALERT_WEBHOOK_URL is set)
        """
        self._config = config or Config.from_env()

        configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")
        self._logger.info(f"Initializing GasPool (env: {self._config.env})")

        if storage is None:
            storage_kwargs: dict[str, Any] = {}
            if self._config.storage_backend == "redis":
                storage_kwargs["redis_url"] = self._config.redis_url
            storage = get_storage(self._config.storage_backend, **storage_kwargs)
        self._storage = storage

        self._adapters = adapters or build_adapters(self._config, storage=self._storage)
        self._registry = PaymasterRegistry(self._storage)
        self._locks = RecordLockService(
            self._storage,
            ttl=self._config.lock_ttl,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
        )
        self._orchestrator = ProvisioningOrchestrator(
            self._config, self._registry, self._adapters, self._locks
        )

        self._prices = PriceCache(
            self._storage,
            price_source or CoinGeckoPriceSource(base_url=self._config.price_api_url),
            ttl=self._config.price_ttl,
        )
        self._ledger = BalanceLedger(self._config, self._registry, self._adapters, self._prices)

        if alert_sinks is None:
            alert_sinks = [LoggingAlertSink()]
            if self._config.alert_webhook_url:
                alert_sinks.append(WebhookAlertSink(self._config.alert_webhook_url))
        self._alert_sinks = alert_sinks
        self._monitor = PaymasterMonitor(
            self._config, self._registry, self._ledger, self._orchestrator, sinks=alert_sinks
        )

    @property
    def config(self) -> Config:
        """Get engine configuration."""
        return self._config

    @property
    def registry(self) -> PaymasterRegistry:
        """Get the paymaster registry."""
        return self._registry

    @property
    def monitor(self) -> PaymasterMonitor:
        """Get the background monitor."""
        return self._monitor

    @property
    def ledger(self) -> BalanceLedger:
        return self._ledger

    async def __aenter__(self) -> GasPool:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit: stop the monitor and release connections."""
        await self.close()

    # ---- Provisioning ------------------------------------------------------

    async def create_paymasters(
        self, project_id: str, chains: Iterable[str]
    ) -> list[ProvisionSummary]:
        """
        Provision paymasters for a new project.

        Args:
            project_id: Project id
            chains: Chain ids the project needs (e.g. ["ethereum", "solana"])

        Returns:
            One ProvisionSummary per chain category

        Raises:
            ValidationError: If no requested chain is supported
            ProvisioningFailedError: If no category ended deployed or pending
                funding; rows created by this call are removed first
        """
        return await self._orchestrator.provision(project_id, chains, new_project=True)

    async def add_chain_support(
        self, project_id: str, chains: Iterable[str]
    ) -> list[ProvisionSummary]:
        """
        Extend a project to more chains.

        Chains of an existing category join its paymaster; a new category gets
        its own paymaster. Nothing is rolled back on failure.
        """
        return await self._orchestrator.provision(project_id, chains, new_project=False)

    async def retry_failed_deployments(self, project_id: str) -> list[RetryOutcome]:
        """
        Retry every pending-funding or failed category of a project.

        Raises:
            PaymasterNotFoundError: If the project has no paymasters
        """
        return await self._orchestrator.retry_deployment(project_id)

    async def set_paymaster_status(
        self, project_id: str, category: ChainCategory | str, status: PaymasterStatus | str
    ) -> Paymaster:
        """Suspend or reactivate a paymaster. Suspended paymasters are not monitored."""
        if isinstance(category, str):
            category = ChainCategory.from_string(category)
        if isinstance(status, str):
            try:
                status = PaymasterStatus(status.lower())
            except ValueError:
                raise ValidationError(f"Unknown paymaster status: {status}") from None

        if await self._registry.find_by_project_and_category(project_id, category) is None:
            raise PaymasterNotFoundError(project_id, details={"category": category.value})
        return await self._registry.set_status(project_id, category, status)

    # ---- Queries -----------------------------------------------------------

    async def get_paymasters(self, project_id: str) -> list[Paymaster]:
        return await self._registry.find_by_project(project_id)

    async def get_addresses(self, project_id: str) -> dict[str, str]:
        """Paymaster address for every chain the project supports."""
        return {
            chain: paymaster.address
            for paymaster in await self._registry.find_by_project(project_id)
            for chain in paymaster.supported_chains
        }

    async def get_balances(self, project_id: str) -> BalanceReport:
        """Cached balances; call refresh_balances() to re-read the chains."""
        return await self._ledger.get_balances(project_id)

    async def refresh_balances(self, project_id: str) -> BalanceReport:
        """Re-read balances from the chains, then report like get_balances()."""
        await self._ledger.refresh(project_id)
        return await self._ledger.get_balances(project_id)

    async def has_all_paymasters(self, project_id: str, chains: Iterable[str]) -> bool:
        """True when every requested chain is served by one of the project's paymasters."""
        served = {
            chain
            for paymaster in await self._registry.find_by_project(project_id)
            for chain in paymaster.supported_chains
        }
        return all(str(chain).lower() in served for chain in chains)

    async def get_stats(self, project_id: str) -> ProjectStats:
        paymasters = await self._registry.find_by_project(project_id)
        report = await self._ledger.get_balances(project_id)

        def _count(status: DeploymentStatus) -> int:
            return sum(1 for p in paymasters if p.deployment_status == status)

        return ProjectStats(
            total_paymasters=len(paymasters),
            categories=[p.chain_category.value for p in paymasters],
            chains_supported=[chain for p in paymasters for chain in p.supported_chains],
            total_balance_usd=report.total_usd,
            deployed=_count(DeploymentStatus.DEPLOYED),
            pending_funding=_count(DeploymentStatus.PENDING_FUNDING),
            failed=_count(DeploymentStatus.FAILED),
        )

    # ---- Funding -----------------------------------------------------------

    async def fund_paymaster(
        self, project_id: str, chain: str, amount: Decimal | None = None
    ) -> FundingInstructions:
        """
        Instructions for topping up a paymaster by hand.

        Args:
            project_id: Project id
            chain: Chain to fund on
            amount: Native amount (default: the category's funding amount)

        Raises:
            PaymasterNotFoundError: If no paymaster serves the chain
            ValidationError: If amount is not positive
        """
        spec = get_chain(chain)
        paymaster = await self._registry.find_by_project_and_chain(project_id, spec.chain)
        if paymaster is None:
            raise PaymasterNotFoundError(project_id, spec.chain)

        if amount is None:
            amount = self._config.policy_for(spec.category).funding_amount
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Funding amount must be positive", details={"amount": str(amount)})

        return FundingInstructions(
            chain=spec.chain,
            address=paymaster.address,
            amount=amount,
            symbol=spec.symbol,
            payment_uri=payment_uri(paymaster.address, spec.chain),
            instructions=(
                f"Send {amount} {spec.symbol} to {paymaster.address} on "
                f"{spec.display_name}. Deployment resumes on the next retry."
            ),
        )

    # ---- Cleanup -----------------------------------------------------------

    async def cleanup_project(self, project_id: str) -> int:
        """
        Delete every paymaster and balance row of a project.

        On-chain funds are not moved.

        Returns:
            Number of paymaster records deleted
        """
        deleted = await self._registry.delete(project_id)
        await self._registry.delete_balances(project_id)
        self._logger.info(f"Cleaned up project {project_id}: {deleted} paymasters")
        return deleted

    # ---- Monitoring & lifecycle --------------------------------------------

    def start_monitoring(self) -> None:
        self._monitor.start()

    def stop_monitoring(self) -> None:
        self._monitor.stop()

    async def close(self) -> None:
        self._monitor.stop()
        for adapter in self._adapters.values():
            await adapter.close()
        await self._prices.close()
        for sink in self._alert_sinks:
            await sink.close()
        await self._storage.close()
