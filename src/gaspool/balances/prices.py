"""
USD prices for native assets.

Quotes are cached in the StorageBackend with a TTL (default 5 minutes).
When the source fails, the last cached quote is used even if stale, and an
asset that was never quoted prices at 0.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

import httpx

from gaspool.core.chains import get_chain
from gaspool.core.exceptions import PriceSourceError
from gaspool.core.logging import get_logger

if TYPE_CHECKING:
    from gaspool.storage.base import StorageBackend

logger = get_logger("balances.prices")

COLLECTION = "price_cache"
DEFAULT_TTL = 300  # 5 minutes

# Fallback quotes keyed by price id, for development and tests
STATIC_PRICES: dict[str, Decimal] = {
    "ethereum": Decimal("2000"),
    "matic-network": Decimal("0.8"),
    "binancecoin": Decimal("300"),
    "solana": Decimal("100"),
}


class PriceSource(ABC):
    """Where USD quotes come from."""

    @abstractmethod
    async def fetch(self, price_ids: list[str]) -> dict[str, Decimal]:
        """
        Fetch USD prices.

        Returns:
            Price per id; ids the source does not know are omitted

        Raises:
            PriceSourceError: If the source is unreachable or answers garbage
        """
        ...

    async def close(self) -> None:
        return None


class StaticPriceSource(PriceSource):
    """Fixed prices."""

    def __init__(self, prices: dict[str, Decimal] | None = None) -> None:
        self._prices = dict(STATIC_PRICES if prices is None else prices)

    async def fetch(self, price_ids: list[str]) -> dict[str, Decimal]:
        return {pid: self._prices[pid] for pid in price_ids if pid in self._prices}


class CoinGeckoPriceSource(PriceSource):
    """
    CoinGecko ``/simple/price`` quotes.

    Usage:
        >>> source = CoinGeckoPriceSource()
        >>> await source.fetch(["ethereum", "solana"])
        {'ethereum': Decimal('2431.5'), 'solana': Decimal('142.7')}
    """

    TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http_client = http_client
        self._owns_client = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.TIMEOUT)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch(self, price_ids: list[str]) -> dict[str, Decimal]:
        if not price_ids:
            return {}

        headers = {"x-cg-demo-api-key": self._api_key} if self._api_key else None
        try:
            response = await self._get_client().get(
                f"{self._base_url}/simple/price",
                params={"ids": ",".join(price_ids), "vs_currencies": "usd"},
                headers=headers,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise PriceSourceError(f"CoinGecko request failed: {e}") from e

        prices: dict[str, Decimal] = {}
        for pid in price_ids:
            quote = (body.get(pid) or {}).get("usd")
            if quote is None:
                continue
            try:
                prices[pid] = Decimal(str(quote))
            except InvalidOperation:
                logger.warning(f"Ignoring malformed CoinGecko quote for {pid}: {quote!r}")
        return prices


class PriceCache:
    """
    TTL cache in front of a PriceSource.

    Key pattern: price:{price_id}
    """

    def __init__(
        self,
        storage: StorageBackend,
        source: PriceSource,
        ttl: float = DEFAULT_TTL,
    ) -> None:
        self._storage = storage
        self._source = source
        self._ttl = ttl

    @staticmethod
    def _key(price_id: str) -> str:
        return f"price:{price_id}"

    async def _cached(self, price_id: str) -> tuple[Decimal, float] | None:
        entry = await self._storage.get(COLLECTION, self._key(price_id))
        if entry is None:
            return None
        return Decimal(entry["price"]), float(entry["fetched_at"])

    async def get_prices(self, chains: Iterable[str]) -> dict[str, Decimal]:
        """
        USD price of each chain's native asset.

        Chains sharing an asset share one quote and one fetch.
        """
        specs = [get_chain(chain) for chain in chains]
        chain_ids = {spec.chain: spec.price_id for spec in specs}
        now = time.time()

        quotes: dict[str, Decimal] = {}
        stale: dict[str, Decimal] = {}
        for price_id in set(chain_ids.values()):
            cached = await self._cached(price_id)
            if cached is not None and now - cached[1] < self._ttl:
                quotes[price_id] = cached[0]
            elif cached is not None:
                stale[price_id] = cached[0]

        missing = sorted(set(chain_ids.values()) - set(quotes))
        if missing:
            try:
                fetched = await self._source.fetch(missing)
            except PriceSourceError as e:
                logger.warning(f"Price fetch failed, using last known prices: {e}")
                fetched = {}

            for price_id in missing:
                if price_id in fetched:
                    quotes[price_id] = fetched[price_id]
                    await self._storage.save(
                        COLLECTION,
                        self._key(price_id),
                        {"price": str(fetched[price_id]), "fetched_at": now},
                    )
                else:
                    quotes[price_id] = stale.get(price_id, Decimal("0"))

        return {chain: quotes[price_id] for chain, price_id in chain_ids.items()}

    async def get_price(self, chain: str) -> Decimal:
        """USD price of a chain's native asset."""
        prices = await self.get_prices([chain])
        return prices[get_chain(chain).chain]

    async def close(self) -> None:
        await self._source.close()
