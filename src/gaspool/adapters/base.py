"""
Base chain adapter interface.

One adapter per chain category. The orchestrator and balance ledger only
talk to chains through this interface, so they never branch on chain ids.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from decimal import Decimal
from typing import TypeVar

from gaspool.core.chains import ChainCategory, ChainSpec, get_chain
from gaspool.core.exceptions import ChainRpcError, UnsupportedChainError
from gaspool.core.types import DeployResult

T = TypeVar("T")


class ChainAdapter(ABC):
    """
    Abstract base class for chain adapters.

    - EVMAdapter: factory deployment of a paymaster contract
    - SVMAdapter: account activation of the paymaster wallet
    """

    @property
    @abstractmethod
    def category(self) -> ChainCategory:
        """Return the chain category this adapter handles."""
        ...

    def supports(self, chain: str) -> bool:
        try:
            return get_chain(chain).category == self.category
        except UnsupportedChainError:
            return False

    def _spec(self, chain: str) -> ChainSpec:
        spec = get_chain(chain)
        if spec.category != self.category:
            raise UnsupportedChainError(
                chain, details={"adapter": self.category.value, "chain_category": spec.category.value}
            )
        return spec

    @abstractmethod
    async def deploy(
        self,
        chain: str,
        project_id: str,
        address: str,
        private_key: str,
    ) -> DeployResult:
        """
        Deploy (or activate) the paymaster on a chain.

        Args:
            chain: Chain id
            project_id: Owning project, used for contract naming and salt
            address: Paymaster wallet address
            private_key: Paymaster private key (hex); must not be logged

        Returns:
            DeployResult

        Raises:
            ChainRpcError: Transient RPC failure
            DeploymentFailed: The deployment was rejected or reverted
        """
        ...

    @abstractmethod
    async def fund_from_deployer(
        self,
        chain: str,
        address: str,
        amount: Decimal,
    ) -> str:
        """
        Send native currency from the operator deployer to an address.

        Returns:
            Transaction hash / signature

        Raises:
            DeployerNotConfiguredError: No deployer credential for this category
            InsufficientDeployerBalance: Deployer cannot cover amount plus fees
        """
        ...

    @abstractmethod
    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        """Native balance of an address in whole units (ETH, SOL...)."""
        ...

    def deployer_address(self) -> str | None:
        """Public address of the configured deployer, if any."""
        return None

    async def close(self) -> None:
        """Release network resources."""
        return None


async def bounded(call: Awaitable[T], timeout: float, chain: str) -> T:
    """
    Await an adapter call with a deadline.

    Raises:
        ChainRpcError: On timeout, so callers treat it like any transient RPC failure
    """
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError:
        raise ChainRpcError(f"Adapter call timed out after {timeout}s", chain=chain) from None
