"""Balance snapshots and USD pricing."""

from gaspool.balances.ledger import BalanceLedger
from gaspool.balances.prices import (
    CoinGeckoPriceSource,
    PriceCache,
    PriceSource,
    StaticPriceSource,
)

__all__ = [
    "BalanceLedger",
    "CoinGeckoPriceSource",
    "PriceCache",
    "PriceSource",
    "StaticPriceSource",
]
