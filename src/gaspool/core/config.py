"""
Configuration management for GasPool.

Handles loading configuration from environment variables and validation.
The master seed and deployer credentials are process secrets; they travel
inside this object instead of living in module globals.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from gaspool.core.chains import CATEGORY_DEFAULTS, ChainCategory


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


def _mask(value: str | None) -> str:
    if not value:
        return "<unset>"
    if len(value) <= 8:
        return "****"
    return value[:4] + "..." + value[-4:]


@dataclass(frozen=True)
class CategoryPolicy:
    """Funding and alerting thresholds for one chain category."""

    min_funding: Decimal
    funding_amount: Decimal
    low_threshold_usd: Decimal = Decimal("10")
    critical_threshold_usd: Decimal = Decimal("2")

    def __post_init__(self) -> None:
        if self.critical_threshold_usd > self.low_threshold_usd:
            raise ValueError("critical_threshold_usd must not exceed low_threshold_usd")


def _default_policies() -> dict[ChainCategory, CategoryPolicy]:
    return {
        category: CategoryPolicy(
            min_funding=defaults.min_funding,
            funding_amount=defaults.funding_amount,
        )
        for category, defaults in CATEGORY_DEFAULTS.items()
    }


@dataclass(frozen=True)
class Config:
    """Engine configuration."""

    master_seed: str
    encryption_key: str
    evm_deployer_key: str | None = None
    svm_deployer_key: str | None = None
    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"
    env: str = "development"

    # Per-category funding and alert thresholds
    category_policies: dict[ChainCategory, CategoryPolicy] = field(
        default_factory=_default_policies
    )

    # Chain adapter calls (seconds)
    adapter_timeout: float = 180.0
    transaction_poll_interval: float = 2.0
    transaction_poll_timeout: float = 120.0

    # Price source
    price_api_url: str = "https://api.coingecko.com/api/v3"
    price_ttl: float = 300.0

    # Scheduler intervals (seconds)
    balance_refresh_interval: float = 300.0
    low_balance_scan_interval: float = 600.0
    health_check_interval: float = 3600.0
    funding_retry_interval: float = 900.0

    # Deployment retry backoff
    max_deployment_retries: int = 8
    retry_base_delay: float = 900.0
    retry_max_delay: float = 86400.0

    # Record lock
    lock_ttl: int = 300
    lock_retry_count: int = 20
    lock_retry_delay: float = 0.25

    alert_webhook_url: str | None = None

    def __post_init__(self) -> None:
        if not self.master_seed:
            raise ValueError("master_seed is required")
        if not self.encryption_key:
            raise ValueError("encryption_key is required")
        if self.adapter_timeout <= 0:
            raise ValueError("adapter_timeout must be positive")
        missing = set(ChainCategory) - set(self.category_policies)
        if missing:
            raise ValueError(
                f"category_policies missing: {sorted(c.value for c in missing)}"
            )

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        master_seed = overrides.pop("master_seed", None) or _get_env_var(
            "GASPOOL_MASTER_SEED", required=True
        )
        encryption_key = overrides.pop("encryption_key", None) or _get_env_var(
            "GASPOOL_ENCRYPTION_KEY", required=True
        )

        values: dict[str, Any] = {
            "evm_deployer_key": _get_env_var("GASPOOL_EVM_DEPLOYER_KEY"),
            "svm_deployer_key": _get_env_var("GASPOOL_SVM_DEPLOYER_KEY"),
            "storage_backend": _get_env_var("GASPOOL_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("GASPOOL_REDIS_URL"),
            "log_level": _get_env_var("GASPOOL_LOG_LEVEL", default="INFO"),
            "env": _get_env_var("GASPOOL_ENV", default="development"),
            "alert_webhook_url": _get_env_var("GASPOOL_ALERT_WEBHOOK_URL"),
        }

        timeout = _get_env_var("GASPOOL_ADAPTER_TIMEOUT")
        if timeout:
            values["adapter_timeout"] = float(timeout)

        price_ttl = _get_env_var("GASPOOL_PRICE_TTL")
        if price_ttl:
            values["price_ttl"] = float(price_ttl)

        policies = _default_policies()
        for category in ChainCategory:
            prefix = f"GASPOOL_{category.name}_"
            policy = policies[category]
            updates: dict[str, Decimal] = {}
            for attr in (
                "min_funding",
                "funding_amount",
                "low_threshold_usd",
                "critical_threshold_usd",
            ):
                raw = _get_env_var(prefix + attr.upper())
                if raw:
                    updates[attr] = Decimal(raw)
            if updates:
                policies[category] = replace(policy, **updates)
        values["category_policies"] = policies

        # Explicit overrides win over the environment
        values.update({k: v for k, v in overrides.items() if v is not None})

        return cls(master_seed=master_seed, encryption_key=encryption_key, **values)  # type: ignore[arg-type]

    def with_updates(self, **updates: Any) -> Config:
        """Create a new Config with updated values."""
        return replace(self, **updates)

    def policy_for(self, category: ChainCategory) -> CategoryPolicy:
        """Thresholds for a category."""
        return self.category_policies[category]

    def deployer_key_for(self, category: ChainCategory) -> str | None:
        """Deployer credential for a category, if configured."""
        if category == ChainCategory.EVM:
            return self.evm_deployer_key
        return self.svm_deployer_key

    def masked_secrets(self) -> dict[str, str]:
        """Secrets with most characters masked, for safe logging."""
        return {
            "master_seed": _mask(self.master_seed),
            "encryption_key": _mask(self.encryption_key),
            "evm_deployer_key": _mask(self.evm_deployer_key),
            "svm_deployer_key": _mask(self.svm_deployer_key),
        }

    def __repr__(self) -> str:
        return (
            f"Config(env={self.env!r}, storage_backend={self.storage_backend!r}, "
            f"secrets={self.masked_secrets()})"
        )
