"""
Type definitions for GasPool.

Enums and dataclasses shared across the registry, orchestrator, ledger and
API facade. Persistent records serialize to JSON-safe dicts with to_dict()
and come back with from_dict().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from gaspool.core.chains import ChainCategory
from gaspool.wallet.vault import EncryptedKey


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DeploymentStatus(str, Enum):
    """Paymaster deployment lifecycle."""

    CREATED = "created"  # Record persisted, nothing attempted yet
    PENDING_FUNDING = "pending_funding"  # Waiting for native balance
    DEPLOYED = "deployed"  # At least one chain succeeded
    FAILED = "failed"  # Every chain failed; retryable


class PaymasterStatus(str, Enum):
    """Operator-facing record status. Only active paymasters are monitored."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


@dataclass
class DeploymentResult:
    """Outcome of one deployment attempt on one chain."""

    contract_address: str | None = None
    tx_hash: str | None = None
    error: str | None = None
    attempted_at: datetime = field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.contract_address is not None and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_address": self.contract_address,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "attempted_at": self.attempted_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentResult:
        return cls(
            contract_address=data.get("contract_address"),
            tx_hash=data.get("tx_hash"),
            error=data.get("error"),
            attempted_at=_dt(data.get("attempted_at")) or utcnow(),
        )


@dataclass
class Paymaster:
    """
    One shared paymaster wallet for a (project, chain category).

    Attributes:
        project_id: Owning tenant
        chain_category: EVM or SVM
        supported_chains: Chains this paymaster serves, ordered, grows only
        primary_deployment_chain: First chain requested; funding gate runs here
        address: Derived wallet address, never changes
        encrypted_private_key: Sealed key; excluded from to_public_dict()
        contract_address: Canonical contract from the first successful chain
        deployment_tx: Transaction of the canonical deployment
        entry_point_address: Entry point of the canonical deployment
        deployment_results: Per-chain outcome of the latest attempt
        deployment_status: Lifecycle state
        status: active / suspended
        retry_count: Automatic retries attempted since the last success
        next_retry_at: Earliest time the monitor may retry again
        last_error: Most recent category-level failure
        version: Incremented on every write
    """

    project_id: str
    chain_category: ChainCategory
    supported_chains: list[str]
    primary_deployment_chain: str
    address: str
    encrypted_private_key: EncryptedKey
    contract_address: str | None = None
    deployment_tx: str | None = None
    entry_point_address: str | None = None
    deployment_results: dict[str, DeploymentResult] = field(default_factory=dict)
    deployment_status: DeploymentStatus = DeploymentStatus.CREATED
    status: PaymasterStatus = PaymasterStatus.ACTIVE
    retry_count: int = 0
    next_retry_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 1

    @property
    def key(self) -> str:
        return record_key(self.project_id, self.chain_category.value)

    @property
    def is_deployed(self) -> bool:
        return self.deployment_status == DeploymentStatus.DEPLOYED

    @property
    def partially_deployed(self) -> bool:
        """Deployed, but at least one attempted chain failed."""
        if not self.is_deployed:
            return False
        return any(not result.succeeded for result in self.deployment_results.values())

    def deployed_chains(self) -> list[str]:
        return [
            chain
            for chain in self.supported_chains
            if (result := self.deployment_results.get(chain)) and result.succeeded
        ]

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize without secret material."""
        return {
            "project_id": self.project_id,
            "chain_category": self.chain_category.value,
            "supported_chains": list(self.supported_chains),
            "primary_deployment_chain": self.primary_deployment_chain,
            "address": self.address,
            "contract_address": self.contract_address,
            "deployment_tx": self.deployment_tx,
            "entry_point_address": self.entry_point_address,
            "deployment_results": {
                chain: result.to_dict() for chain, result in self.deployment_results.items()
            },
            "deployment_status": self.deployment_status.value,
            "status": self.status.value,
            "retry_count": self.retry_count,
            "next_retry_at": _iso(self.next_retry_at),
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "version": self.version,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        data = self.to_public_dict()
        data["encrypted_private_key"] = self.encrypted_private_key.to_storage()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Paymaster:
        return cls(
            project_id=data["project_id"],
            chain_category=ChainCategory(data["chain_category"]),
            supported_chains=list(data.get("supported_chains", [])),
            primary_deployment_chain=data["primary_deployment_chain"],
            address=data["address"],
            encrypted_private_key=EncryptedKey.from_storage(data["encrypted_private_key"]),
            contract_address=data.get("contract_address"),
            deployment_tx=data.get("deployment_tx"),
            entry_point_address=data.get("entry_point_address"),
            deployment_results={
                chain: DeploymentResult.from_dict(result)
                for chain, result in (data.get("deployment_results") or {}).items()
            },
            deployment_status=DeploymentStatus(
                data.get("deployment_status", DeploymentStatus.CREATED.value)
            ),
            status=PaymasterStatus(data.get("status", PaymasterStatus.ACTIVE.value)),
            retry_count=int(data.get("retry_count", 0)),
            next_retry_at=_dt(data.get("next_retry_at")),
            last_error=data.get("last_error"),
            created_at=_dt(data.get("created_at")) or utcnow(),
            updated_at=_dt(data.get("updated_at")) or utcnow(),
            version=int(data.get("version", 1)),
        )


def record_key(project_id: str, suffix: str) -> str:
    """Storage key for per-project records: ``{project_id}:{category|chain}``."""
    return f"{project_id}:{suffix}"


@dataclass
class PaymasterBalance:
    """Cached native balance of a paymaster on one chain."""

    project_id: str
    chain: str
    address: str
    symbol: str
    balance_native: Decimal = Decimal("0")
    balance_raw: int = 0
    price_usd: Decimal = Decimal("0")
    balance_usd: Decimal = Decimal("0")
    last_updated: datetime | None = None

    @property
    def key(self) -> str:
        return record_key(self.project_id, self.chain)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "chain": self.chain,
            "address": self.address,
            "symbol": self.symbol,
            "balance_native": str(self.balance_native),
            "balance_raw": str(self.balance_raw),
            "price_usd": str(self.price_usd),
            "balance_usd": str(self.balance_usd),
            "last_updated": _iso(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PaymasterBalance:
        return cls(
            project_id=data["project_id"],
            chain=data["chain"],
            address=data["address"],
            symbol=data.get("symbol", ""),
            balance_native=Decimal(str(data.get("balance_native", "0"))),
            balance_raw=int(data.get("balance_raw", 0)),
            price_usd=Decimal(str(data.get("price_usd", "0"))),
            balance_usd=Decimal(str(data.get("balance_usd", "0"))),
            last_updated=_dt(data.get("last_updated")),
        )


@dataclass(frozen=True)
class DeployResult:
    """What a chain adapter returns for a successful deployment."""

    contract_address: str
    tx_hash: str | None
    entry_point_address: str | None


@dataclass(frozen=True)
class FundingRequirement:
    """How much native currency a paymaster needs before it can deploy."""

    address: str
    chain: str
    amount: Decimal
    symbol: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "chain": self.chain,
            "amount": str(self.amount),
            "symbol": self.symbol,
        }


@dataclass
class ProvisionSummary:
    """Per-category result of provision() or a retry."""

    category: ChainCategory
    address: str
    status: DeploymentStatus
    supported_chains: list[str]
    contract_address: str | None = None
    deployment_results: dict[str, DeploymentResult] = field(default_factory=dict)
    partially_deployed: bool = False
    funding: FundingRequirement | None = None
    error: str | None = None
    added_chains: list[str] = field(default_factory=list)

    @classmethod
    def from_paymaster(
        cls,
        paymaster: Paymaster,
        funding: FundingRequirement | None = None,
        added_chains: list[str] | None = None,
    ) -> ProvisionSummary:
        return cls(
            category=paymaster.chain_category,
            address=paymaster.address,
            status=paymaster.deployment_status,
            supported_chains=list(paymaster.supported_chains),
            contract_address=paymaster.contract_address,
            deployment_results=dict(paymaster.deployment_results),
            partially_deployed=paymaster.partially_deployed,
            funding=funding,
            error=None if paymaster.is_deployed else paymaster.last_error,
            added_chains=list(added_chains or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "address": self.address,
            "status": self.status.value,
            "supported_chains": list(self.supported_chains),
            "contract_address": self.contract_address,
            "deployment_results": {
                chain: result.to_dict() for chain, result in self.deployment_results.items()
            },
            "partially_deployed": self.partially_deployed,
            "funding": self.funding.to_dict() if self.funding else None,
            "error": self.error,
            "added_chains": list(self.added_chains),
        }


@dataclass(frozen=True)
class RetryOutcome:
    """Result of retrying one category's deployment."""

    category: ChainCategory
    status: DeploymentStatus
    error: str | None = None
    funding: FundingRequirement | None = None


@dataclass(frozen=True)
class FundingInstructions:
    """What an operator needs to top up a paymaster by hand."""

    chain: str
    address: str
    amount: Decimal
    symbol: str
    payment_uri: str
    instructions: str


@dataclass
class BalanceReport:
    """A project's balances with the USD total."""

    project_id: str
    balances: list[PaymasterBalance]
    total_usd: Decimal
    last_updated: datetime | None


@dataclass(frozen=True)
class ProjectStats:
    """Summary counters for one project."""

    total_paymasters: int
    categories: list[str]
    chains_supported: list[str]
    total_balance_usd: Decimal
    deployed: int
    pending_funding: int
    failed: int
