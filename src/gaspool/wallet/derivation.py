"""
Deterministic paymaster wallet derivation.

A paymaster wallet is a pure function of (tenant, category, master seed):
the same inputs always give the same keypair, so every wallet can be
recovered from the seed alone, without the key store.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

from bip_utils import Bip32Slip10Ed25519
from eth_account import Account
from eth_utils import is_address
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from gaspool.core.chains import CATEGORY_DEFAULTS, ChainCategory
from gaspool.core.exceptions import UnsupportedCategoryError

_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass(frozen=True)
class DerivedWallet:
    """A derived keypair. The private key stays out of repr()."""

    category: ChainCategory
    address: str
    private_key: str = field(repr=False)


def _coerce_category(category: ChainCategory | str) -> ChainCategory:
    if isinstance(category, ChainCategory):
        return category
    return ChainCategory.from_string(category)


def seed_material(tenant_id: str, category: ChainCategory | str, master_seed: str) -> bytes:
    """SHA-256 over the tenant, category and master seed."""
    category = _coerce_category(category)
    seed_input = f"{tenant_id}-{category.value}-paymaster-{master_seed}"
    return hashlib.sha256(seed_input.encode("utf-8")).digest()


def _derive_evm(seed: bytes) -> DerivedWallet:
    # The digest is the secp256k1 private key
    account = Account.from_key(seed)
    return DerivedWallet(
        category=ChainCategory.EVM,
        address=account.address,
        private_key=seed.hex(),
    )


def _derive_svm(seed: bytes) -> DerivedWallet:
    path = CATEGORY_DEFAULTS[ChainCategory.SVM].derivation_path
    node = Bip32Slip10Ed25519.FromSeed(seed).DerivePath(path)
    keypair = Keypair.from_seed(node.PrivateKey().Raw().ToBytes())
    return DerivedWallet(
        category=ChainCategory.SVM,
        address=str(keypair.pubkey()),
        private_key=bytes(keypair).hex(),
    )


_DERIVERS = {
    ChainCategory.EVM: _derive_evm,
    ChainCategory.SVM: _derive_svm,
}


def derive(tenant_id: str, category: ChainCategory | str, master_seed: str) -> DerivedWallet:
    """
    Derive the paymaster wallet for a tenant and chain category.

    Args:
        tenant_id: Project id
        category: Chain category (``"evm"`` / ``"svm"`` or enum)
        master_seed: Operator master seed

    Returns:
        DerivedWallet with address and private key (hex, no 0x prefix).
        SVM private keys are the 64-byte secret key.

    Raises:
        UnsupportedCategoryError: If the category is unknown
    """
    category = _coerce_category(category)
    deriver = _DERIVERS.get(category)
    if deriver is None:
        raise UnsupportedCategoryError(category.value)
    return deriver(seed_material(tenant_id, category, master_seed))


class KeyDeriver:
    """Binds derivation to a configured master seed."""

    def __init__(self, master_seed: str) -> None:
        if not master_seed:
            raise ValueError("master_seed is required")
        self._master_seed = master_seed

    def derive(self, tenant_id: str, category: ChainCategory | str) -> DerivedWallet:
        return derive(tenant_id, category, self._master_seed)

    def __repr__(self) -> str:
        return "KeyDeriver(<seeded>)"


def is_valid_address(address: str, category: ChainCategory | str) -> bool:
    """
    Check an address against its category's format.

    EVM: 20-byte hex; a mixed-case address must carry a valid EIP-55 checksum.
    SVM: base58, 32-44 characters, decoding to a 32-byte public key.
    """
    try:
        category = _coerce_category(category)
    except UnsupportedCategoryError:
        return False

    if not isinstance(address, str):
        return False

    if category == ChainCategory.EVM:
        return is_address(address)

    if not _BASE58_ADDRESS.match(address):
        return False
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True
