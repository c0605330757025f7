"""
Chain table for GasPool.

Every supported chain id maps to exactly one ChainCategory. New chains are
added here as data; nothing else in the engine branches on chain ids.

RPC endpoints default to public testnet nodes and can be overridden with
``GASPOOL_<CHAIN>_RPC_URL`` (comma-separated for fallback).
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from gaspool.core.exceptions import UnsupportedCategoryError, UnsupportedChainError


class ChainCategory(str, Enum):
    """Chain families sharing one account/signature model."""

    EVM = "evm"  # Account-model chains (secp256k1, 20-byte addresses)
    SVM = "svm"  # Ledger-model chains (Ed25519, base58 addresses)

    @classmethod
    def from_string(cls, value: str) -> ChainCategory:
        value_lower = str(value).lower()
        for member in cls:
            if member.value == value_lower:
                return member
        raise UnsupportedCategoryError(str(value))


@dataclass(frozen=True)
class ChainSpec:
    """Static description of one supported chain."""

    chain: str
    category: ChainCategory
    display_name: str
    symbol: str
    decimals: int
    network_id: int | str
    rpc_url: str
    price_id: str  # CoinGecko id of the native asset
    explorer_url: str
    entry_point: str | None = None
    factory: str | None = None

    def rpc_urls(self) -> list[str]:
        """Configured RPC endpoints, environment first."""
        raw = os.environ.get(f"GASPOOL_{self.chain.upper()}_RPC_URL") or self.rpc_url
        return [u.strip() for u in raw.split(",") if u.strip()]

    def to_base_units(self, amount: Decimal) -> int:
        """Convert native units (ETH, SOL) to wei/lamports."""
        return int(amount * (Decimal(10) ** self.decimals))

    def from_base_units(self, raw: int) -> Decimal:
        """Convert wei/lamports to native units."""
        return Decimal(raw) / (Decimal(10) ** self.decimals)


@dataclass(frozen=True)
class CategoryDefaults:
    """Per-category constants used by the funding gate."""

    min_funding: Decimal  # native balance required before deployment
    funding_amount: Decimal  # amount the deployer sends
    native_symbol: str
    deploys_per_chain: bool  # EVM: one contract per chain; SVM: activate once
    derivation_path: str | None = None


# Standard ERC-4337 EntryPoint v0.6
ENTRY_POINT_V06 = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"

# Solana system program, used as the activation "entry point"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"


SUPPORTED_CHAINS: dict[str, ChainSpec] = {
    # === EVM === #
    "ethereum": ChainSpec(
        chain="ethereum",
        category=ChainCategory.EVM,
        display_name="Ethereum Sepolia",
        symbol="ETH",
        decimals=18,
        network_id=11155111,
        rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        price_id="ethereum",
        explorer_url="https://sepolia.etherscan.io",
        entry_point=ENTRY_POINT_V06,
        factory="0x73c780a09d89b486e2859EA247f54C88C57d3B5C",
    ),
    "arbitrum": ChainSpec(
        chain="arbitrum",
        category=ChainCategory.EVM,
        display_name="Arbitrum Sepolia",
        symbol="ETH",
        decimals=18,
        network_id=421614,
        rpc_url="https://sepolia-rollup.arbitrum.io/rpc",
        price_id="ethereum",
        explorer_url="https://sepolia.arbiscan.io",
        entry_point=ENTRY_POINT_V06,
        factory="0x6Fa4AD73b6cdA386B909689e4F30a94285Cd8c64",
    ),
    "polygon": ChainSpec(
        chain="polygon",
        category=ChainCategory.EVM,
        display_name="Polygon Amoy",
        symbol="MATIC",
        decimals=18,
        network_id=80002,
        rpc_url="https://rpc-amoy.polygon.technology",
        price_id="matic-network",
        explorer_url="https://amoy.polygonscan.com",
        entry_point=ENTRY_POINT_V06,
    ),
    "bsc": ChainSpec(
        chain="bsc",
        category=ChainCategory.EVM,
        display_name="BSC Testnet",
        symbol="BNB",
        decimals=18,
        network_id=97,
        rpc_url="https://data-seed-prebsc-1-s1.binance.org:8545",
        price_id="binancecoin",
        explorer_url="https://testnet.bscscan.com",
        entry_point=ENTRY_POINT_V06,
    ),
    # === SVM === #
    "solana": ChainSpec(
        chain="solana",
        category=ChainCategory.SVM,
        display_name="Solana Devnet",
        symbol="SOL",
        decimals=9,
        network_id="devnet",
        rpc_url="https://api.devnet.solana.com",
        price_id="solana",
        explorer_url="https://explorer.solana.com",
        entry_point=SYSTEM_PROGRAM_ID,
    ),
    "eclipse": ChainSpec(
        chain="eclipse",
        category=ChainCategory.SVM,
        display_name="Eclipse Devnet",
        symbol="ETH",
        decimals=9,
        network_id="devnet",
        rpc_url="https://staging-rpc.dev2.eclipsenetwork.xyz",
        price_id="ethereum",
        explorer_url="https://explorer.dev.eclipsenetwork.xyz",
        entry_point=SYSTEM_PROGRAM_ID,
    ),
}


CATEGORY_DEFAULTS: dict[ChainCategory, CategoryDefaults] = {
    # Enough for one minimal-proxy factory deployment
    ChainCategory.EVM: CategoryDefaults(
        min_funding=Decimal("0.002"),
        funding_amount=Decimal("0.002"),
        native_symbol="ETH",
        deploys_per_chain=True,
    ),
    # Rent-exempt account plus fees
    ChainCategory.SVM: CategoryDefaults(
        min_funding=Decimal("0.001"),
        funding_amount=Decimal("0.01"),
        native_symbol="SOL",
        deploys_per_chain=False,
        derivation_path="m/44'/501'/0'/0'",
    ),
}


def get_chain(chain: str) -> ChainSpec:
    """Look up a chain, raising UnsupportedChainError for unknown ids."""
    spec = SUPPORTED_CHAINS.get(str(chain).lower())
    if spec is None:
        raise UnsupportedChainError(
            str(chain), details={"supported": sorted(SUPPORTED_CHAINS)}
        )
    return spec


def get_chain_category(chain: str) -> ChainCategory:
    """Map a chain id to its category."""
    return get_chain(chain).category


def chains_for_category(category: ChainCategory) -> list[str]:
    """All chain ids belonging to a category, in table order."""
    return [c for c, spec in SUPPORTED_CHAINS.items() if spec.category == category]


def group_chains_by_category(
    chains: Iterable[str],
) -> tuple[dict[ChainCategory, list[str]], list[str]]:
    """
    Group chain ids by category, preserving first-seen order.

    Returns:
        Tuple of (category -> unique chains, unsupported chain ids)
    """
    grouped: dict[ChainCategory, list[str]] = {}
    unsupported: list[str] = []
    for raw in chains:
        chain = str(raw).lower()
        spec = SUPPORTED_CHAINS.get(chain)
        if spec is None:
            unsupported.append(str(raw))
            continue
        bucket = grouped.setdefault(spec.category, [])
        if chain not in bucket:
            bucket.append(chain)
    return grouped, unsupported


def payment_uri(address: str, chain: str) -> str:
    """Wallet-scannable URI for funding an address (QR code payload)."""
    spec = get_chain(chain)
    if spec.category == ChainCategory.EVM:
        return f"ethereum:{address}@{spec.network_id}"
    return f"solana:{address}"
