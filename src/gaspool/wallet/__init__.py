"""Paymaster wallet derivation and key sealing."""

from gaspool.wallet.derivation import DerivedWallet, KeyDeriver, derive, is_valid_address
from gaspool.wallet.vault import EncryptedKey, KeyVault

__all__ = [
    "DerivedWallet",
    "EncryptedKey",
    "KeyDeriver",
    "KeyVault",
    "derive",
    "is_valid_address",
]
