"""
Balance ledger.

Keeps the per-chain PaymasterBalance rows in step with the chains. Rows are
a cache: any of them can be rebuilt from one balance query and one price.
The ledger never touches deployment state.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING

from gaspool.adapters.base import bounded
from gaspool.core.chains import get_chain
from gaspool.core.exceptions import GasPoolError
from gaspool.core.logging import get_logger
from gaspool.core.types import BalanceReport, Paymaster, PaymasterBalance, PaymasterStatus, utcnow

if TYPE_CHECKING:
    from gaspool.adapters.base import ChainAdapter
    from gaspool.balances.prices import PriceCache
    from gaspool.core.chains import ChainCategory
    from gaspool.core.config import Config
    from gaspool.registry.registry import PaymasterRegistry

logger = get_logger("balances")


class BalanceLedger:
    """
    Refreshes and reports paymaster balances.

    Usage:
        >>> ledger = BalanceLedger(config, registry, adapters, price_cache)
        >>> await ledger.refresh("proj1")
        >>> report = await ledger.get_balances("proj1")
        >>> report.total_usd
        Decimal('24.5')
    """

    def __init__(
        self,
        config: Config,
        registry: PaymasterRegistry,
        adapters: dict[ChainCategory, ChainAdapter],
        prices: PriceCache,
        max_concurrency: int = 10,
    ) -> None:
        self._config = config
        self._registry = registry
        self._adapters = adapters
        self._prices = prices
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def refresh(self, project_id: str | None = None) -> list[PaymasterBalance]:
        """
        Re-read balances from the chains.

        Args:
            project_id: Limit to one project; None refreshes every active paymaster

        Returns:
            Rows that were updated. A chain that fails is logged and skipped.
        """
        if project_id is None:
            paymasters = await self._registry.find_all(status=PaymasterStatus.ACTIVE)
        else:
            paymasters = [
                p
                for p in await self._registry.find_by_project(project_id)
                if p.status == PaymasterStatus.ACTIVE
            ]

        targets = [(p, chain) for p in paymasters for chain in p.supported_chains]
        if not targets:
            return []

        prices = await self._prices.get_prices({chain for _, chain in targets})
        rows = await asyncio.gather(
            *(self._refresh_one(p, chain, prices[chain]) for p, chain in targets)
        )
        updated = [row for row in rows if row is not None]
        logger.info(f"Refreshed {len(updated)}/{len(targets)} paymaster balances")
        return updated

    async def _refresh_one(
        self, paymaster: Paymaster, chain: str, price: Decimal
    ) -> PaymasterBalance | None:
        spec = get_chain(chain)
        adapter = self._adapters[paymaster.chain_category]
        async with self._semaphore:
            try:
                native = await bounded(
                    adapter.get_native_balance(chain, paymaster.address),
                    self._config.adapter_timeout,
                    chain,
                )
            except GasPoolError as e:
                logger.warning(
                    f"[{chain}] Balance refresh failed for {paymaster.project_id}: {e}"
                )
                return None

        row = PaymasterBalance(
            project_id=paymaster.project_id,
            chain=chain,
            address=paymaster.address,
            symbol=spec.symbol,
            balance_native=native,
            balance_raw=spec.to_base_units(native),
            price_usd=price,
            balance_usd=native * price,
            last_updated=utcnow(),
        )
        if not await self._registry.update_balance(row):
            logger.debug(f"[{chain}] Balance row for {paymaster.project_id} is gone; skipping")
            return None
        return row

    async def get_balances(self, project_id: str) -> BalanceReport:
        """A project's cached balances and their USD total."""
        balances = await self._registry.get_balances(project_id)
        updated = [b.last_updated for b in balances if b.last_updated is not None]
        return BalanceReport(
            project_id=project_id,
            balances=balances,
            total_usd=sum((b.balance_usd for b in balances), Decimal("0")),
            last_updated=max(updated) if updated else None,
        )

    @staticmethod
    def is_low_balance(balance: PaymasterBalance, threshold_usd: Decimal) -> bool:
        """True when the row's USD value is below the threshold."""
        return balance.balance_usd < threshold_usd
