"""
JSON-RPC transport shared by the chain adapters.

Plain httpx, no web3/solana SDK. Each chain gets a client that walks its
configured endpoints in order (multi-provider fallback), retries transient
failures with tenacity and, when given a storage backend, trips a per-chain
circuit breaker.

Endpoints come from the chain table; override with
``GASPOOL_<CHAIN>_RPC_URL=https://primary,https://fallback``.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING, Any

import httpx

from gaspool.core.chains import ChainSpec
from gaspool.core.exceptions import ChainRpcError, RpcResponseError
from gaspool.core.logging import get_logger
from gaspool.resilience.circuit import CircuitBreaker
from gaspool.resilience.retry import execute_with_retry

if TYPE_CHECKING:
    from gaspool.storage.base import StorageBackend

logger = get_logger("adapters.rpc")


class JsonRpcClient:
    """
    JSON-RPC 2.0 client for one chain.

    Usage:
        >>> rpc = JsonRpcClient(get_chain("ethereum"))
        >>> block = await rpc.call("eth_blockNumber")
    """

    RPC_TIMEOUT = 10.0  # seconds per HTTP request

    def __init__(
        self,
        spec: ChainSpec,
        http_client: httpx.AsyncClient | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        """
        Args:
            spec: Chain table entry
            http_client: Shared httpx client (for connection pooling)
            storage: Enables the circuit breaker when given
        """
        self._spec = spec
        self._urls = spec.rpc_urls()
        self._http_client = http_client
        self._owns_client = False
        self._ids = itertools.count(1)
        self._breaker = (
            CircuitBreaker(f"rpc:{spec.chain}", storage) if storage is not None else None
        )

    @property
    def chain(self) -> str:
        return self._spec.chain

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.RPC_TIMEOUT)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close owned HTTP client."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_client = False

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to each endpoint in turn until one answers."""
        client = self._get_client()
        last_error: Exception | None = None

        for i, url in enumerate(self._urls):
            try:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                logger.warning(
                    f"[{self.chain}] RPC timeout from provider {i + 1}/{len(self._urls)}"
                )
                last_error = e
            except httpx.HTTPStatusError as e:
                logger.warning(
                    f"[{self.chain}] RPC HTTP {e.response.status_code} "
                    f"from provider {i + 1}/{len(self._urls)}"
                )
                last_error = e
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"[{self.chain}] RPC error from provider {i + 1}/{len(self._urls)}: {e}"
                )
                last_error = e

        raise ChainRpcError(
            f"All {len(self._urls)} RPC providers failed for {payload['method']}: {last_error}",
            chain=self.chain,
            url=self._urls[-1] if self._urls else None,
        )

    async def call(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Execute a JSON-RPC method.

        Returns:
            The ``result`` member of the response (may be None)

        Raises:
            ChainRpcError: Transport failure on every endpoint, after retries
            RpcResponseError: The node returned an error object
        """
        if not self._urls:
            raise ChainRpcError("No RPC endpoint configured", chain=self.chain)

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        if self._breaker is None:
            response = await execute_with_retry(self._post, payload)
        else:
            async with self._breaker:
                response = await execute_with_retry(self._post, payload)

        error = response.get("error")
        if error:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise RpcResponseError(
                f"{method} failed: {message}",
                chain=self.chain,
                code=code,
                details={"method": method},
            )
        return response.get("result")


class RpcPool:
    """One JsonRpcClient per chain over a shared httpx client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        storage: StorageBackend | None = None,
    ) -> None:
        self._http_client = http_client
        self._owns_client = http_client is None
        self._storage = storage
        self._clients: dict[str, JsonRpcClient] = {}

    def get(self, spec: ChainSpec) -> JsonRpcClient:
        client = self._clients.get(spec.chain)
        if client is None:
            if self._http_client is None:
                self._http_client = httpx.AsyncClient(timeout=JsonRpcClient.RPC_TIMEOUT)
            client = JsonRpcClient(spec, http_client=self._http_client, storage=self._storage)
            self._clients[spec.chain] = client
        return client

    async def close(self) -> None:
        self._clients.clear()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
