"""
GasPool - Shared paymaster provisioning for multi-tenant projects

One paymaster per project and chain family, derived deterministically,
deployed across chains and kept funded.

Usage:
    >>> from gaspool import GasPool
    >>>
    >>> async with GasPool() as pool:
    ...     summaries = await pool.create_paymasters("proj1", ["ethereum", "arbitrum", "solana"])
    ...     for summary in summaries:
    ...         print(summary.category, summary.status, summary.address)
"""

from gaspool.client import GasPool
from gaspool.core.chains import SUPPORTED_CHAINS, ChainCategory, get_chain, get_chain_category
from gaspool.core.config import CategoryPolicy, Config
from gaspool.core.exceptions import (
    ChainRpcError,
    ConfigurationError,
    DeployerNotConfiguredError,
    DeploymentFailed,
    DuplicateCategoryError,
    GasPoolError,
    InsufficientDeployerBalance,
    PaymasterNotFoundError,
    ProvisioningFailedError,
    RecordLockError,
    UnsupportedCategoryError,
    UnsupportedChainError,
    ValidationError,
    VaultError,
)
from gaspool.core.types import (
    BalanceReport,
    DeploymentResult,
    DeploymentStatus,
    FundingInstructions,
    FundingRequirement,
    Paymaster,
    PaymasterBalance,
    PaymasterStatus,
    ProjectStats,
    ProvisionSummary,
    RetryOutcome,
)
from gaspool.wallet import KeyDeriver, derive, is_valid_address

__version__ = "0.1.0"

__all__ = [
    # Main client
    "GasPool",
    "Config",
    "CategoryPolicy",
    # Chains
    "ChainCategory",
    "SUPPORTED_CHAINS",
    "get_chain",
    "get_chain_category",
    # Wallets
    "KeyDeriver",
    "derive",
    "is_valid_address",
    # Types
    "BalanceReport",
    "DeploymentResult",
    "DeploymentStatus",
    "FundingInstructions",
    "FundingRequirement",
    "Paymaster",
    "PaymasterBalance",
    "PaymasterStatus",
    "ProjectStats",
    "ProvisionSummary",
    "RetryOutcome",
    # Exceptions
    "GasPoolError",
    "ChainRpcError",
    "ConfigurationError",
    "DeployerNotConfiguredError",
    "DeploymentFailed",
    "DuplicateCategoryError",
    "InsufficientDeployerBalance",
    "PaymasterNotFoundError",
    "ProvisioningFailedError",
    "RecordLockError",
    "UnsupportedCategoryError",
    "UnsupportedChainError",
    "ValidationError",
    "VaultError",
]
