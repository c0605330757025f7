"""
Chain adapters.

Example:
    >>> adapters = build_adapters(config, storage)
    >>> balance = await adapters[ChainCategory.EVM].get_native_balance("ethereum", addr)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from gaspool.adapters.base import ChainAdapter
from gaspool.adapters.evm import EVMAdapter
from gaspool.adapters.rpc import JsonRpcClient, RpcPool
from gaspool.adapters.svm import SVMAdapter
from gaspool.core.chains import ChainCategory

if TYPE_CHECKING:
    from gaspool.core.config import Config
    from gaspool.storage.base import StorageBackend


def build_adapters(
    config: Config,
    storage: StorageBackend | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict[ChainCategory, ChainAdapter]:
    """Create one adapter per category from configuration."""
    rpc = RpcPool(http_client=http_client, storage=storage)
    return {
        ChainCategory.EVM: EVMAdapter(
            deployer_key=config.evm_deployer_key,
            rpc=rpc,
            poll_interval=config.transaction_poll_interval,
            poll_timeout=config.transaction_poll_timeout,
        ),
        ChainCategory.SVM: SVMAdapter(
            deployer_key=config.svm_deployer_key,
            rpc=rpc,
            poll_interval=config.transaction_poll_interval,
            poll_timeout=config.transaction_poll_timeout,
        ),
    }


__all__ = [
    "ChainAdapter",
    "EVMAdapter",
    "JsonRpcClient",
    "RpcPool",
    "SVMAdapter",
    "build_adapters",
]
