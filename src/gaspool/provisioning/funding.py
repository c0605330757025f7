"""
Deployer funding gate.

Before a paymaster deploys, its wallet must hold the category minimum on the
primary chain. If it doesn't, the operator deployer tops it up. When the
deployer is missing or short of funds the paymaster waits in
``pending_funding`` until someone funds it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gaspool.adapters.base import bounded
from gaspool.core.chains import get_chain
from gaspool.core.exceptions import DeployerNotConfiguredError, InsufficientDeployerBalance
from gaspool.core.logging import get_logger
from gaspool.core.types import FundingRequirement, Paymaster
from gaspool.registry.lock import deployer_lock_key

if TYPE_CHECKING:
    from gaspool.adapters.base import ChainAdapter
    from gaspool.core.chains import ChainCategory
    from gaspool.core.config import Config
    from gaspool.registry.lock import RecordLockService

logger = get_logger("provisioning.funding")


class FundingGate:
    """Checks and tops up a paymaster's balance on its primary chain."""

    def __init__(
        self,
        config: Config,
        adapters: dict[ChainCategory, ChainAdapter],
        locks: RecordLockService,
    ) -> None:
        self._config = config
        self._adapters = adapters
        self._locks = locks

    def requirement_for(self, paymaster: Paymaster) -> FundingRequirement:
        """What an operator must send for this paymaster to deploy."""
        spec = get_chain(paymaster.primary_deployment_chain)
        policy = self._config.policy_for(paymaster.chain_category)
        return FundingRequirement(
            address=paymaster.address,
            chain=spec.chain,
            amount=policy.funding_amount,
            symbol=spec.symbol,
        )

    async def ensure_funded(self, paymaster: Paymaster) -> FundingRequirement | None:
        """
        Make sure the paymaster can pay for deployment.

        Must be called while holding the paymaster's record lock; the deployer
        lock is taken inside it.

        Returns:
            None when funded, otherwise the outstanding FundingRequirement

        Raises:
            ChainRpcError: If the balance cannot be read
        """
        category = paymaster.chain_category
        chain = paymaster.primary_deployment_chain
        adapter = self._adapters[category]
        policy = self._config.policy_for(category)
        timeout = self._config.adapter_timeout

        balance = await bounded(
            adapter.get_native_balance(chain, paymaster.address), timeout, chain
        )
        if balance >= policy.min_funding:
            return None

        requirement = self.requirement_for(paymaster)
        logger.info(
            f"[{chain}] Paymaster {paymaster.address} holds {balance}, "
            f"needs {policy.min_funding}; requesting deployer funding"
        )

        try:
            async with self._locks.hold(deployer_lock_key(category.value)):
                await bounded(
                    adapter.fund_from_deployer(chain, paymaster.address, policy.funding_amount),
                    timeout,
                    chain,
                )
        except DeployerNotConfiguredError as e:
            logger.warning(f"[{chain}] {e.message}: {paymaster.address}")
            return requirement
        except InsufficientDeployerBalance as e:
            logger.warning(f"[{chain}] Deployer underfunded: {e}")
            return requirement

        balance = await bounded(
            adapter.get_native_balance(chain, paymaster.address), timeout, chain
        )
        if balance < policy.min_funding:
            logger.warning(f"[{chain}] Funding sent but balance still {balance}")
            return requirement
        return None
