"""
SVM chain adapter.

There is no paymaster contract on ledger-model chains: the paymaster is the
derived wallet itself. "Deployment" activates the account once it holds a
balance, by having the wallet sign a zero-lamport self-transfer. That proves
the stored key controls the address and leaves an on-chain signature.
"""

from __future__ import annotations

import asyncio
import base64
from decimal import Decimal
from typing import Any

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from gaspool.adapters.base import ChainAdapter
from gaspool.adapters.rpc import JsonRpcClient, RpcPool
from gaspool.core.chains import SYSTEM_PROGRAM_ID, ChainCategory
from gaspool.core.exceptions import (
    ChainRpcError,
    ConfigurationError,
    DeployerNotConfiguredError,
    DeploymentFailed,
    InsufficientDeployerBalance,
)
from gaspool.core.logging import get_logger
from gaspool.core.types import DeployResult

logger = get_logger("adapters.svm")

# Flat per-signature fee
SIGNATURE_FEE_LAMPORTS = 5_000

COMMITMENT = "confirmed"


def keypair_from_hex(private_key: str) -> Keypair:
    """Rebuild a keypair from its 64-byte secret key in hex."""
    return Keypair.from_bytes(bytes.fromhex(private_key))


def _parse_deployer(secret: str) -> Keypair:
    """Accept a base58 secret key (wallet export format) or 128-char hex."""
    try:
        if len(secret) == 128:
            return keypair_from_hex(secret)
        return Keypair.from_base58_string(secret)
    except ValueError:
        raise ConfigurationError("SVM deployer key is not a valid secret key") from None


class SVMAdapter(ChainAdapter):
    """Adapter for ledger-model chains (solana, eclipse)."""

    def __init__(
        self,
        deployer_key: str | None = None,
        rpc: RpcPool | None = None,
        poll_interval: float = 2.0,
        poll_timeout: float = 60.0,
    ) -> None:
        self._deployer = _parse_deployer(deployer_key) if deployer_key else None
        self._rpc = rpc or RpcPool()
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout

    @property
    def category(self) -> ChainCategory:
        return ChainCategory.SVM

    def deployer_address(self) -> str | None:
        return str(self._deployer.pubkey()) if self._deployer else None

    async def close(self) -> None:
        await self._rpc.close()

    async def _lamports(self, rpc: JsonRpcClient, address: str) -> int:
        result = await rpc.call("getBalance", [address, {"commitment": COMMITMENT}])
        return int(result["value"])

    async def get_native_balance(self, chain: str, address: str) -> Decimal:
        spec = self._spec(chain)
        lamports = await self._lamports(self._rpc.get(spec), address)
        return spec.from_base_units(lamports)

    async def _latest_blockhash(self, rpc: JsonRpcClient) -> Hash:
        result = await rpc.call("getLatestBlockhash", [{"commitment": COMMITMENT}])
        return Hash.from_string(result["value"]["blockhash"])

    async def _send_transfer(
        self,
        rpc: JsonRpcClient,
        payer: Keypair,
        to: Pubkey,
        lamports: int,
    ) -> str:
        blockhash = await self._latest_blockhash(rpc)
        instruction = transfer(
            TransferParams(from_pubkey=payer.pubkey(), to_pubkey=to, lamports=lamports)
        )
        message = Message.new_with_blockhash([instruction], payer.pubkey(), blockhash)
        tx = Transaction([payer], message, blockhash)
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        signature = await rpc.call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": COMMITMENT}],
        )
        await self._confirm(rpc, signature)
        return signature

    async def _confirm(self, rpc: JsonRpcClient, signature: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._poll_timeout
        while True:
            result = await rpc.call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
            status: dict[str, Any] | None = (result or {}).get("value", [None])[0]
            if status is not None:
                if status.get("err") is not None:
                    raise DeploymentFailed(
                        f"Transaction {signature} failed: {status['err']}", chain=rpc.chain
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return
            if loop.time() >= deadline:
                raise ChainRpcError(
                    f"Transaction {signature} not confirmed after {self._poll_timeout}s",
                    chain=rpc.chain,
                )
            await asyncio.sleep(self._poll_interval)

    async def fund_from_deployer(self, chain: str, address: str, amount: Decimal) -> str:
        spec = self._spec(chain)
        if self._deployer is None:
            raise DeployerNotConfiguredError(self.category.value, chain)

        rpc = self._rpc.get(spec)
        lamports = spec.to_base_units(amount)
        deployer = str(self._deployer.pubkey())
        balance = await self._lamports(rpc, deployer)
        required = lamports + SIGNATURE_FEE_LAMPORTS
        if balance < required:
            raise InsufficientDeployerBalance(
                f"Deployer cannot fund paymaster on {chain}",
                chain=chain,
                deployer_address=deployer,
                current_balance=spec.from_base_units(balance),
                required_amount=spec.from_base_units(required),
            )

        signature = await self._send_transfer(
            rpc, self._deployer, Pubkey.from_string(address), lamports
        )
        logger.info(f"[{chain}] Funded {address} with {amount} {spec.symbol} (sig {signature})")
        return signature

    async def deploy(
        self,
        chain: str,
        project_id: str,
        address: str,
        private_key: str,
    ) -> DeployResult:
        spec = self._spec(chain)
        keypair = keypair_from_hex(private_key)
        if str(keypair.pubkey()) != address:
            raise DeploymentFailed("Private key does not match paymaster address", chain=chain)

        rpc = self._rpc.get(spec)
        balance = await self._lamports(rpc, address)
        if balance < SIGNATURE_FEE_LAMPORTS:
            raise DeploymentFailed(
                "Paymaster account is not funded",
                chain=chain,
                details={"balance_lamports": balance},
            )

        signature = await self._send_transfer(rpc, keypair, keypair.pubkey(), 0)
        logger.info(f"[{chain}] Activated paymaster {address} for {project_id} (sig {signature})")
        return DeployResult(
            contract_address=address,
            tx_hash=signature,
            entry_point_address=SYSTEM_PROGRAM_ID,
        )
