"""
Provisioning orchestrator.

Drives a paymaster through its deployment lifecycle:

    created -> pending_funding <-> (retry) -> deployed
    created -> failed (retryable)

A category counts as deployed once at least one of its chains succeeded;
chains that failed stay visible in ``deployment_results``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gaspool.adapters.base import bounded
from gaspool.core.chains import (
    CATEGORY_DEFAULTS,
    ChainCategory,
    get_chain,
    group_chains_by_category,
)
from gaspool.core.exceptions import (
    ChainRpcError,
    GasPoolError,
    PaymasterNotFoundError,
    ProvisioningFailedError,
    ValidationError,
)
from gaspool.core.logging import get_logger
from gaspool.core.types import (
    DeploymentResult,
    DeploymentStatus,
    Paymaster,
    PaymasterBalance,
    ProvisionSummary,
    RetryOutcome,
)
from gaspool.provisioning.funding import FundingGate
from gaspool.registry.lock import paymaster_lock_key
from gaspool.wallet.derivation import KeyDeriver
from gaspool.wallet.vault import KeyVault

if TYPE_CHECKING:
    from gaspool.adapters.base import ChainAdapter
    from gaspool.core.config import Config
    from gaspool.registry.lock import RecordLockService
    from gaspool.registry.registry import PaymasterRegistry

logger = get_logger("provisioning")

RETRYABLE = (
    DeploymentStatus.CREATED,
    DeploymentStatus.PENDING_FUNDING,
    DeploymentStatus.FAILED,
)

USABLE = (DeploymentStatus.DEPLOYED, DeploymentStatus.PENDING_FUNDING)


@dataclass
class _CreatedRows:
    """Rows written by one provision() call, for compensation."""

    categories: list[ChainCategory] = field(default_factory=list)
    balance_chains: list[str] = field(default_factory=list)


class ProvisioningOrchestrator:
    """
    Creates paymasters and deploys them.

    Usage:
        >>> orchestrator = ProvisioningOrchestrator(config, registry, adapters, locks)
        >>> summaries = await orchestrator.provision("proj1", ["ethereum", "solana"])
    """

    def __init__(
        self,
        config: Config,
        registry: PaymasterRegistry,
        adapters: dict[ChainCategory, ChainAdapter],
        locks: RecordLockService,
        deriver: KeyDeriver | None = None,
        vault: KeyVault | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._adapters = adapters
        self._locks = locks
        self._deriver = deriver or KeyDeriver(config.master_seed)
        self._vault = vault or KeyVault(config.encryption_key)
        self._funding = FundingGate(config, adapters, locks)

    @property
    def funding(self) -> FundingGate:
        return self._funding

    async def provision(
        self,
        project_id: str,
        chains: Iterable[str],
        *,
        new_project: bool = True,
    ) -> list[ProvisionSummary]:
        """
        Provision paymasters for a project, one per chain category.

        Args:
            project_id: Project id
            chains: Requested chain ids; unsupported ids are dropped with a warning
            new_project: When True, a call leaving no category deployed or
                pending funding rolls back the rows it created

        Returns:
            One ProvisionSummary per category

        Raises:
            ValidationError: If no requested chain is supported
            ProvisioningFailedError: new_project and nothing usable was provisioned
        """
        if not project_id:
            raise ValidationError("project_id is required")

        chains = list(chains)
        grouped, unsupported = group_chains_by_category(chains)
        if unsupported:
            logger.warning(f"Ignoring unsupported chains for {project_id}: {unsupported}")
        if not grouped:
            raise ValidationError(
                "No supported chains requested",
                details={"chains": chains, "unsupported": unsupported},
            )

        created = _CreatedRows()
        summaries: list[ProvisionSummary] = []
        try:
            for category, category_chains in grouped.items():
                summaries.append(
                    await self._provision_category(project_id, category, category_chains, created)
                )
        except Exception:
            if new_project:
                await self._discard(project_id, created)
            raise

        if new_project and not any(s.status in USABLE for s in summaries):
            await self._discard(project_id, created)
            raise ProvisioningFailedError(
                project_id,
                summaries,
                details={"errors": {s.category.value: s.error for s in summaries}},
            )

        return summaries

    async def _provision_category(
        self,
        project_id: str,
        category: ChainCategory,
        chains: list[str],
        created: _CreatedRows,
    ) -> ProvisionSummary:
        async with self._locks.hold(paymaster_lock_key(project_id, category.value)):
            paymaster = await self._registry.find_by_project_and_category(project_id, category)

            if paymaster is None:
                paymaster = await self._create(project_id, category, chains)
                created.categories.append(category)
                created.balance_chains.extend(await self._create_balance_rows(paymaster, chains))
                return await self._deploy(paymaster)

            paymaster, added = await self._registry.update_chains(project_id, category, chains)
            created.balance_chains.extend(await self._create_balance_rows(paymaster, added))

            if added and paymaster.is_deployed and CATEGORY_DEFAULTS[category].deploys_per_chain:
                paymaster = await self._deploy_added_chains(paymaster, added)

            funding = None
            if paymaster.deployment_status == DeploymentStatus.PENDING_FUNDING:
                funding = self._funding.requirement_for(paymaster)
            return ProvisionSummary.from_paymaster(paymaster, funding=funding, added_chains=added)

    async def _create(
        self, project_id: str, category: ChainCategory, chains: list[str]
    ) -> Paymaster:
        wallet = self._deriver.derive(project_id, category)
        paymaster = Paymaster(
            project_id=project_id,
            chain_category=category,
            supported_chains=list(chains),
            primary_deployment_chain=chains[0],
            address=wallet.address,
            encrypted_private_key=await self._vault.seal_async(project_id, wallet.private_key),
        )
        return await self._registry.create(paymaster)

    async def _create_balance_rows(self, paymaster: Paymaster, chains: list[str]) -> list[str]:
        new_rows = []
        for chain in chains:
            row = PaymasterBalance(
                project_id=paymaster.project_id,
                chain=chain,
                address=paymaster.address,
                symbol=get_chain(chain).symbol,
            )
            if await self._registry.create_balance(row):
                new_rows.append(chain)
        return new_rows

    async def _discard(self, project_id: str, created: _CreatedRows) -> None:
        """Delete rows this call created. On-chain effects are not undone."""
        if not created.categories and not created.balance_chains:
            return
        await self._registry.delete(project_id, created.categories)
        await self._registry.delete_balances(project_id, created.balance_chains)
        logger.warning(
            f"Rolled back provisioning for {project_id}: "
            f"categories={[c.value for c in created.categories]}"
        )

    async def _deploy(self, paymaster: Paymaster) -> ProvisionSummary:
        """
        Funding gate, then deployment. Caller holds the record lock.
        """
        project_id = paymaster.project_id
        category = paymaster.chain_category

        try:
            requirement = await self._funding.ensure_funded(paymaster)
        except ChainRpcError as e:
            # Transient; the retry sweep picks the record up again
            logger.warning(f"Funding check failed for {project_id} ({category.value}): {e}")
            paymaster = await self._registry.update_deployment_outcome(
                project_id,
                category,
                DeploymentStatus.PENDING_FUNDING,
                results={paymaster.primary_deployment_chain: DeploymentResult(error=str(e))},
                last_error=str(e),
            )
            return ProvisionSummary.from_paymaster(
                paymaster, funding=self._funding.requirement_for(paymaster)
            )

        if requirement is not None:
            paymaster = await self._registry.update_deployment_outcome(
                project_id,
                category,
                DeploymentStatus.PENDING_FUNDING,
                last_error=None,
            )
            logger.info(
                f"{category.value} paymaster for {project_id} pending funding at "
                f"{requirement.address}"
            )
            return ProvisionSummary.from_paymaster(paymaster, funding=requirement)

        if CATEGORY_DEFAULTS[category].deploys_per_chain:
            targets = list(paymaster.supported_chains)
        else:
            targets = [paymaster.primary_deployment_chain]

        results = await self._deploy_chains(paymaster, targets)
        succeeded = [chain for chain, result in results.items() if result.succeeded]

        if succeeded:
            paymaster = await self._registry.update_deployment_outcome(
                project_id, category, DeploymentStatus.DEPLOYED, results=results, retry_count=0
            )
            if len(succeeded) < len(targets):
                logger.warning(
                    f"{category.value} paymaster for {project_id} partially deployed: "
                    f"{succeeded} of {targets}"
                )
            else:
                logger.info(f"{category.value} paymaster for {project_id} deployed on {succeeded}")
        else:
            last_error = "; ".join(f"{chain}: {r.error}" for chain, r in results.items())
            paymaster = await self._registry.update_deployment_outcome(
                project_id,
                category,
                DeploymentStatus.FAILED,
                results=results,
                last_error=last_error,
            )
            logger.error(f"{category.value} paymaster for {project_id} failed: {last_error}")

        return ProvisionSummary.from_paymaster(paymaster)

    async def _deploy_added_chains(self, paymaster: Paymaster, added: list[str]) -> Paymaster:
        """Deploy newly added chains of an already deployed paymaster."""
        results = await self._deploy_chains(paymaster, added)
        return await self._registry.update_deployment_outcome(
            paymaster.project_id,
            paymaster.chain_category,
            DeploymentStatus.DEPLOYED,
            results=results,
        )

    async def _deploy_chains(
        self, paymaster: Paymaster, chains: list[str]
    ) -> dict[str, DeploymentResult]:
        """Deploy on chains concurrently; failures are captured per chain."""
        adapter = self._adapters[paymaster.chain_category]
        async with self._vault.unsealed_async(
            paymaster.project_id, paymaster.encrypted_private_key
        ) as key:
            outcomes = await asyncio.gather(
                *(self._deploy_one(adapter, paymaster, chain, key) for chain in chains)
            )
        return dict(zip(chains, outcomes))

    async def _deploy_one(
        self,
        adapter: ChainAdapter,
        paymaster: Paymaster,
        chain: str,
        private_key: str,
    ) -> DeploymentResult:
        try:
            deployed = await bounded(
                adapter.deploy(chain, paymaster.project_id, paymaster.address, private_key),
                self._config.adapter_timeout,
                chain,
            )
        except GasPoolError as e:
            logger.warning(f"[{chain}] Deployment failed for {paymaster.project_id}: {e}")
            return DeploymentResult(error=str(e))
        except Exception as e:
            logger.exception(f"[{chain}] Unexpected deployment error for {paymaster.project_id}")
            return DeploymentResult(error=f"{type(e).__name__}: {e}")

        claimed = await self._registry.claim_canonical_deployment(
            paymaster.project_id, paymaster.chain_category, deployed
        )
        if claimed:
            logger.info(
                f"[{chain}] Canonical {paymaster.chain_category.value} deployment for "
                f"{paymaster.project_id}: {deployed.contract_address}"
            )
        return DeploymentResult(contract_address=deployed.contract_address, tx_hash=deployed.tx_hash)

    async def retry_category(self, project_id: str, category: ChainCategory) -> RetryOutcome:
        """
        Re-run funding and deployment for one category.

        Records that are already deployed are reported as-is.
        """
        async with self._locks.hold(paymaster_lock_key(project_id, category.value)):
            paymaster = await self._registry.find_by_project_and_category(project_id, category)
            if paymaster is None:
                raise PaymasterNotFoundError(project_id, details={"category": category.value})
            if paymaster.deployment_status not in RETRYABLE:
                return RetryOutcome(category=category, status=paymaster.deployment_status)

            logger.info(
                f"Retrying {category.value} deployment for {project_id} "
                f"(was {paymaster.deployment_status.value})"
            )
            summary = await self._deploy(paymaster)
            return RetryOutcome(
                category=category,
                status=summary.status,
                error=summary.error,
                funding=summary.funding,
            )

    async def retry_deployment(self, project_id: str) -> list[RetryOutcome]:
        """
        Retry every category of a project that is pending funding or failed.

        Raises:
            PaymasterNotFoundError: If the project has no paymasters
        """
        paymasters = await self._registry.find_by_project(project_id)
        if not paymasters:
            raise PaymasterNotFoundError(project_id)

        outcomes = []
        for paymaster in paymasters:
            if paymaster.deployment_status in RETRYABLE:
                outcomes.append(await self.retry_category(project_id, paymaster.chain_category))
        return outcomes
