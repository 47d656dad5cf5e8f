"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from cryptography.hazmat.primitives.asymmetric.rsa import (
    RSAPrivateKey,
    RSAPublicKey,
)

from sshistorian.common.models import EncryptionRecord


class IMetadataSink(Protocol):
    """Protocol for per-session encryption bookkeeping."""

    def record(
        self,
        session_id: str,
        fingerprint: str,
        timestamp: datetime,
        recipients: Iterable[str] = (),
    ) -> None: ...

    def lookup(self, session_id: str) -> str | None: ...

    def get(self, session_id: str) -> EncryptionRecord | None: ...

    def update_fingerprint(
        self, session_id: str, fingerprint: str, *, keep_previous: bool = False
    ) -> bool: ...

    def delete(self, session_id: str) -> None: ...


class ISymmetricCipher(Protocol):
    """Protocol for the bulk data cipher."""

    key_size: int

    def encrypt(self, key: bytes, plaintext: bytes) -> bytes: ...

    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes: ...


class IKeyWrapper(Protocol):
    """Protocol for wrapping the symmetric key under an asymmetric key."""

    def wrap(self, public_key: RSAPublicKey, key: bytes) -> bytes: ...

    def unwrap(self, private_key: RSAPrivateKey, wrapped: bytes) -> bytes: ...


class IKeyProvider(Protocol):
    """Protocol for minting RSA private keys."""

    def generate_private_key(self, key_size: int, public_exponent: int) -> RSAPrivateKey: ...
