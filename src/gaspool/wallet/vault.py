"""
Private key encryption at rest.

Keys are sealed with AES-256-GCM under a per-project key stretched from the
operator encryption key with scrypt. The plaintext only exists inside a
``KeyVault.unsealed()`` block.

Async callers use ``seal_async`` and ``unsealed_async``, which run scrypt
in a worker thread.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from gaspool.core.exceptions import VaultError
from gaspool.core.logging import get_logger

logger = get_logger("wallet.vault")

NONCE_SIZE = 12
SALT_SIZE = 16


@dataclass(frozen=True, repr=False)
class EncryptedKey:
    """
    A sealed private key.

    Only ciphertext goes in and only KeyVault can get plaintext out. The repr
    never includes the ciphertext, and public serializers skip this field.
    """

    ciphertext: str
    nonce: str
    salt: str

    def __post_init__(self) -> None:
        for name in ("ciphertext", "nonce", "salt"):
            value = getattr(self, name)
            try:
                bytes.fromhex(value)
            except (TypeError, ValueError):
                raise VaultError(f"EncryptedKey.{name} must be hex") from None

    def __repr__(self) -> str:
        return "EncryptedKey(<sealed>)"

    def to_storage(self) -> dict[str, str]:
        """Serialize for the storage backend only."""
        return {"ciphertext": self.ciphertext, "nonce": self.nonce, "salt": self.salt}

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> EncryptedKey:
        """Rebuild from a storage record."""
        try:
            return cls(
                ciphertext=data["ciphertext"],
                nonce=data["nonce"],
                salt=data["salt"],
            )
        except KeyError as e:
            raise VaultError(f"Encrypted key record missing field: {e.args[0]}") from None


class KeyVault:
    """Seals and unseals paymaster private keys."""

    def __init__(self, encryption_key: str) -> None:
        if not encryption_key:
            raise VaultError("encryption_key is required")
        self._secret = encryption_key.encode("utf-8")

    def _derive(self, project_id: str, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)
        return kdf.derive(self._secret + project_id.encode("utf-8"))

    def seal(self, project_id: str, private_key: str) -> EncryptedKey:
        """
        Encrypt a private key for a project.

        The project id is bound as associated data, so a sealed key copied
        onto another project's record will not decrypt.
        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        aead = AESGCM(self._derive(project_id, salt))
        ciphertext = aead.encrypt(nonce, private_key.encode("utf-8"), project_id.encode("utf-8"))
        return EncryptedKey(ciphertext=ciphertext.hex(), nonce=nonce.hex(), salt=salt.hex())

    async def seal_async(self, project_id: str, private_key: str) -> EncryptedKey:
        """seal() without blocking the event loop."""
        return await asyncio.to_thread(self.seal, project_id, private_key)

    def _unseal(self, project_id: str, sealed: EncryptedKey) -> str:
        try:
            aead = AESGCM(self._derive(project_id, bytes.fromhex(sealed.salt)))
            plaintext = aead.decrypt(
                bytes.fromhex(sealed.nonce),
                bytes.fromhex(sealed.ciphertext),
                project_id.encode("utf-8"),
            )
        except InvalidTag:
            logger.error(f"Failed to unseal key for project {project_id}: authentication failed")
            raise VaultError(
                "Private key authentication failed", details={"project_id": project_id}
            ) from None

        return plaintext.decode("utf-8")

    @contextmanager
    def unsealed(self, project_id: str, sealed: EncryptedKey) -> Iterator[str]:
        """Decrypt a key for the duration of a block."""
        key = self._unseal(project_id, sealed)
        try:
            yield key
        finally:
            del key

    @asynccontextmanager
    async def unsealed_async(self, project_id: str, sealed: EncryptedKey) -> AsyncIterator[str]:
        """
        Decrypt a key for the duration of an async block.

        Example:
            >>> async with vault.unsealed_async(pm.project_id, pm.encrypted_private_key) as key:
            ...     await adapter.deploy(chain, pm.project_id, pm.address, key)
        """
        key = await asyncio.to_thread(self._unseal, project_id, sealed)
        try:
            yield key
        finally:
            del key
