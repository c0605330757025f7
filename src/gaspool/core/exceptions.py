"""
Exception hierarchy for GasPool.

All engine-specific exceptions inherit from GasPoolError for easy catching.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class GasPoolError(Exception):
    """
    Base exception for all GasPool errors.

    Catch this to handle any engine-related exception.

    Example:
        >>> try:
        ...     await pool.create_paymasters("proj1", ["ethereum"])
        ... except GasPoolError as e:
        ...     print(f"Provisioning error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(GasPoolError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Required configuration values are not provided
    - A deployer credential cannot be parsed
    """

    pass


class ValidationError(GasPoolError):
    """
    Input validation error.

    Raised when:
    - Required parameters are missing
    - Parameter values are invalid (e.g. negative funding amount)
    """

    pass


class UnsupportedCategoryError(ValidationError):
    """A chain category is not recognized."""

    def __init__(self, category: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Unsupported chain category: {category}", details)
        self.category = category


class UnsupportedChainError(ValidationError):
    """A chain identifier is not in the chain table."""

    def __init__(self, chain: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Unsupported chain: {chain}", details)
        self.chain = chain


class DuplicateCategoryError(GasPoolError):
    """
    A paymaster already exists for (project, category).

    Callers should extend the existing record with update_chains() instead.
    """

    def __init__(
        self,
        project_id: str,
        category: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Paymaster already exists for project {project_id} ({category})", details
        )
        self.project_id = project_id
        self.category = category


class PaymasterNotFoundError(GasPoolError):
    """No paymaster covers the requested project/chain."""

    def __init__(
        self,
        project_id: str,
        chain: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        target = f" on {chain}" if chain else ""
        super().__init__(f"No paymaster found for project {project_id}{target}", details)
        self.project_id = project_id
        self.chain = chain


class ChainRpcError(GasPoolError):
    """
    Chain RPC communication error (transient, retryable).

    Raised when:
    - RPC endpoint times out or refuses the connection
    - RPC returns an error object
    - A transaction is not confirmed within the polling window
    """

    transient = True

    def __init__(
        self,
        message: str,
        chain: str | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.chain = chain
        self.url = url

    def __str__(self) -> str:
        if self.chain:
            return f"[{self.chain}] {self.message}"
        return self.message


class RpcResponseError(ChainRpcError):
    """The node answered with a JSON-RPC error object. Not retried."""

    transient = False

    def __init__(
        self,
        message: str,
        chain: str | None = None,
        url: str | None = None,
        code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, chain=chain, url=url, details=details)
        self.code = code


class CircuitOpenError(ChainRpcError):
    """Calls to a chain are blocked until its circuit recovers."""

    transient = False

    def __init__(self, service: str, recovery_time: float) -> None:
        super().__init__(f"Circuit OPEN for {service}. Retrying after {recovery_time}")
        self.service = service
        self.recovery_time = recovery_time


class InsufficientDeployerBalance(GasPoolError):
    """
    The operator deployer account cannot fund a new paymaster.

    Operational, not fatal: surfaces as the ``pending_funding`` state.
    """

    def __init__(
        self,
        message: str,
        chain: str,
        deployer_address: str | None = None,
        current_balance: Decimal | None = None,
        required_amount: Decimal | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.chain = chain
        self.deployer_address = deployer_address
        self.current_balance = current_balance
        self.required_amount = required_amount

    def __str__(self) -> str:
        if self.current_balance is not None and self.required_amount is not None:
            return (
                f"{self.message} | "
                f"Balance: {self.current_balance}, Required: {self.required_amount}"
            )
        return self.message


class DeployerNotConfiguredError(InsufficientDeployerBalance):
    """No deployer credential is configured for a chain category."""

    def __init__(self, category: str, chain: str) -> None:
        super().__init__(
            f"No {category.upper()} deployer configured; fund the paymaster manually",
            chain=chain,
        )
        self.category = category


class DeploymentFailed(GasPoolError):
    """
    Deployment failed on a chain for a reason other than funding.

    Terminal for a category only when no chain succeeded.
    """

    def __init__(
        self,
        message: str,
        chain: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.chain = chain

    def __str__(self) -> str:
        return f"[{self.chain}] {self.message}"


class ProvisioningFailedError(GasPoolError):
    """
    A new project ended with no deployed or pending-funding category.

    Internal records have already been cleaned up when this is raised.
    """

    def __init__(
        self,
        project_id: str,
        summaries: list[Any],
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Paymaster provisioning failed for project {project_id}", details)
        self.project_id = project_id
        self.summaries = summaries


class RecordLockError(GasPoolError):
    """A record lock could not be acquired within the retry budget."""

    def __init__(self, lock_key: str) -> None:
        super().__init__(f"Could not acquire lock {lock_key}")
        self.lock_key = lock_key


class PriceSourceError(GasPoolError):
    """A price source could not return a quote."""

    pass


class VaultError(GasPoolError):
    """Encrypting or decrypting a private key failed."""

    pass
