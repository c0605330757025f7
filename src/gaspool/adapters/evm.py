"""
EVM chain adapter.

Paymasters are minimal contracts created through a per-chain factory owned
by the operator deployer:

    createPaymaster(string projectId, address owner, bytes32 salt)
    getPaymaster(string projectId) -> address

The deployer sends the factory call and the derived paymaster wallet becomes
the contract owner. Transactions are signed locally with eth-account and sent
as raw transactions over JSON-RPC.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Any

from eth_abi import decode, encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import function_signature_to_4byte_selector, keccak, to_checksum_address

from gaspool.adapters.base import ChainAdapter
from gaspool.adapters.rpc import JsonRpcClient, RpcPool
from gaspool.core.chains import ChainCategory, ChainSpec
from gaspool.core.exceptions import (
    ChainRpcError,
    ConfigurationError,
    DeployerNotConfiguredError,
    DeploymentFailed,
    InsufficientDeployerBalance,
)
from gaspool.core.logging import get_logger
from gaspool.core.types import DeployResult

logger = get_logger("adapters.evm")

CREATE_PAYMASTER = "createPaymaster(string,address,bytes32)"
GET_PAYMASTER = "getPaymaster(string)"

TRANSFER_GAS = 21_000
ZERO_ADDRESS = "0x" + "0" * 40


def paymaster_salt(project_id: str, owner: str) -> bytes:
    """CREATE2 salt for a project's paymaster."""
    return keccak(text=f"{project_id}:{owner.lower()}")


def encode_create_paymaster(project_id: str, owner: str) -> str:
    selector = function_signature_to_4byte_selector(CREATE_PAYMASTER)
    args = encode(
        ["string", "address", "bytes32"],
        [project_id, to_checksum_address(owner), paymaster_salt(project_id, owner)],
    )
    return "0x" + (selector + args).hex()


def encode_get_paymaster(project_id: str) -> str:
    selector = function_signature_to_4byte_selector(GET_PAYMASTER)
    return "0x" + (selector + encode(["string"], [project_id])).hex()


def _quantity(value: str | None) -> int:
    """Decode a JSON-RPC hex quantity."""
    if not value:
        return 0
    return int(value, 16)


class EVMAdapter(ChainAdapter):
    """
    Adapter for account-model chains (ethereum, arbitrum, polygon, bsc).

    Args:
        deployer_key: Operator deployer private key (hex); None disables
            funding and deployment
        rpc: Shared RPC pool
        poll_interval: Seconds between receipt polls
        poll_timeout: Seconds to wait for a receipt
    """

    def __init__(
        self,
        deployer_key: str | None = None,
        rpc: RpcPool | None = None,
        poll_interval: float = 2.0,
        poll_timeout: float = 120.0,
    ) -> None:
        self._deployer: LocalAccount | None = None
        if deployer_key:
            try:
                self._deployer = Account.from_key(deployer_key)
            except (ValueError, TypeError):
                raise ConfigurationError("EVM deployer key is not a valid private key") from None
        self._rpc = rpc or RpcPool()
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        # Deployer nonces are per chain; one sender at a time per chain
        self._send_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def category(self) -> ChainCategory:
        return ChainCategory.EVM

    def deployer_address(self) -> str | None:
        return self._deployer.address if self._deployer else None

    def _require_deployer(self, chain: str) -> LocalAccount:
        if self._deployer is None:
            raise DeployerNotConfiguredError(self.category.value, chain)
        return self._deployer

    async def close(self) -> None:
        await self._rpc.close()

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        spec = self._spec(chain)
        rpc = self._rpc.get(spec)
        raw = await rpc.call("eth_getBalance", [to_checksum_address(address), "latest"])
        return spec.from_base_units(_quantity(raw))

    async def _send_from_deployer(
        self, rpc: JsonRpcClient, spec: ChainSpec, tx: dict[str, Any]
    ) -> str:
        """Fill nonce and chain id, sign with the deployer and broadcast."""
        deployer = self._require_deployer(spec.chain)
        async with self._send_locks[spec.chain]:
            nonce = _quantity(
                await rpc.call("eth_getTransactionCount", [deployer.address, "pending"])
            )
            signed = deployer.sign_transaction(
                {**tx, "nonce": nonce, "chainId": int(spec.network_id)}
            )
            raw = "0x" + bytes(signed.raw_transaction).hex()
            return await rpc.call("eth_sendRawTransaction", [raw])

    async def _wait_for_receipt(self, rpc: JsonRpcClient, tx_hash: str) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._poll_timeout
        while True:
            receipt = await rpc.call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if loop.time() >= deadline:
                raise ChainRpcError(
                    f"Transaction {tx_hash} not confirmed after {self._poll_timeout}s",
                    chain=rpc.chain,
                )
            await asyncio.sleep(self._poll_interval)

    async def _get_paymaster(
        self, rpc: JsonRpcClient, spec: ChainSpec, project_id: str
    ) -> str | None:
        result = await rpc.call(
            "eth_call",
            [{"to": spec.factory, "data": encode_get_paymaster(project_id)}, "latest"],
        )
        if not result or result == "0x":
            return None
        (contract,) = decode(["address"], bytes.fromhex(result[2:]))
        if contract.lower() == ZERO_ADDRESS:
            return None
        return to_checksum_address(contract)

    async def fund_from_deployer(self, chain: str, address: str, amount: Decimal) -> str:
        spec = self._spec(chain)
        deployer = self._require_deployer(chain)

        rpc = self._rpc.get(spec)
        value = spec.to_base_units(amount)
        gas_price = _quantity(await rpc.call("eth_gasPrice"))
        balance = _quantity(await rpc.call("eth_getBalance", [deployer.address, "latest"]))
        required = value + TRANSFER_GAS * gas_price
        if balance < required:
            raise InsufficientDeployerBalance(
                f"Deployer cannot fund paymaster on {chain}",
                chain=chain,
                deployer_address=deployer.address,
                current_balance=spec.from_base_units(balance),
                required_amount=spec.from_base_units(required),
            )

        tx_hash = await self._send_from_deployer(
            rpc,
            spec,
            {
                "to": to_checksum_address(address),
                "value": value,
                "gas": TRANSFER_GAS,
                "gasPrice": gas_price,
            },
        )
        await self._wait_for_receipt(rpc, tx_hash)
        logger.info(f"[{chain}] Funded {address} with {amount} {spec.symbol} (tx {tx_hash})")
        return tx_hash

    async def deploy(
        self,
        chain: str,
        project_id: str,
        address: str,
        private_key: str,
    ) -> DeployResult:
        spec = self._spec(chain)
        if not spec.factory:
            raise DeploymentFailed("No paymaster factory configured", chain=chain)

        owner = Account.from_key(private_key).address
        if owner.lower() != address.lower():
            raise DeploymentFailed("Private key does not match paymaster address", chain=chain)

        deployer = self._require_deployer(chain)
        rpc = self._rpc.get(spec)

        # A previous attempt may have landed without being recorded
        existing = await self._get_paymaster(rpc, spec, project_id)
        if existing:
            logger.info(f"[{chain}] Paymaster for {project_id} already at {existing}")
            return DeployResult(
                contract_address=existing, tx_hash=None, entry_point_address=spec.entry_point
            )

        data = encode_create_paymaster(project_id, owner)
        gas = _quantity(
            await rpc.call(
                "eth_estimateGas",
                [{"from": deployer.address, "to": spec.factory, "data": data}],
            )
        )
        gas_price = _quantity(await rpc.call("eth_gasPrice"))

        tx_hash = await self._send_from_deployer(
            rpc,
            spec,
            {
                "to": to_checksum_address(spec.factory),
                "value": 0,
                "data": data,
                "gas": gas * 12 // 10,
                "gasPrice": gas_price,
            },
        )
        receipt = await self._wait_for_receipt(rpc, tx_hash)
        if _quantity(receipt.get("status")) != 1:
            raise DeploymentFailed(
                "Factory transaction reverted", chain=chain, details={"tx_hash": tx_hash}
            )

        contract = await self._get_paymaster(rpc, spec, project_id)
        if contract is None:
            raise DeploymentFailed(
                "Factory did not register a paymaster", chain=chain, details={"tx_hash": tx_hash}
            )

        logger.info(f"[{chain}] Deployed paymaster {contract} for {project_id} (tx {tx_hash})")
        return DeployResult(
            contract_address=contract,
            tx_hash=tx_hash,
            entry_point_address=spec.entry_point,
        )
