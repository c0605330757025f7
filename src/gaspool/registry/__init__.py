"""Paymaster records, balance rows and record locks."""

from gaspool.registry.lock import RecordLockService, deployer_lock_key, paymaster_lock_key
from gaspool.registry.registry import PaymasterRegistry

__all__ = [
    "PaymasterRegistry",
    "RecordLockService",
    "deployer_lock_key",
    "paymaster_lock_key",
]
