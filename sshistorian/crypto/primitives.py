"""
Cryptographic primitives used by the hybrid cipher.

Ciphertext file layout::

    b"Salted__" | salt (8) | AES-256-CBC/PKCS7 ciphertext | HMAC-SHA256 tag (32)

The cipher key, IV and MAC key are derived from the per-file random key with
HKDF-SHA256 using the file salt, so no two files share an IV even if a random
key were ever reused. The tag covers the header, salt and ciphertext and is
verified before any padding is inspected.
"""

from __future__ import annotations

import os
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

SALT_MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32  # AES-256
IV_SIZE = 16
MAC_KEY_SIZE = 32
TAG_SIZE = 32
HKDF_INFO = b"sshistorian-log-v1"
HEADER_SIZE = len(SALT_MAGIC) + SALT_SIZE


class CipherError(ValueError):
    """Raised when ciphertext is malformed or fails authentication."""


class CbcHmacCipher:
    """AES-256-CBC with an encrypt-then-MAC HMAC-SHA256 tag."""

    key_size = KEY_SIZE

    @staticmethod
    def _derive(key: bytes, salt: bytes) -> tuple[bytes, bytes, bytes]:
        material = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE + IV_SIZE + MAC_KEY_SIZE,
            salt=salt,
            info=HKDF_INFO,
        ).derive(key)
        return (
            material[:KEY_SIZE],
            material[KEY_SIZE : KEY_SIZE + IV_SIZE],
            material[KEY_SIZE + IV_SIZE :],
        )

    @staticmethod
    def _tag(mac_key: bytes, data: bytes) -> hmac.HMAC:
        mac = hmac.HMAC(mac_key, hashes.SHA256())
        mac.update(data)
        return mac

    def encrypt(self, key: bytes, plaintext: bytes) -> bytes:
        if len(key) != KEY_SIZE:
            msg = f"Symmetric key must be {KEY_SIZE} bytes, got {len(key)}"
            raise CipherError(msg)
        salt = os.urandom(SALT_SIZE)
        enc_key, iv, mac_key = self._derive(key, salt)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
        body = SALT_MAGIC + salt + encryptor.update(padded) + encryptor.finalize()
        return body + self._tag(mac_key, body).finalize()

    def decrypt(self, key: bytes, ciphertext: bytes) -> bytes:
        if len(key) != KEY_SIZE:
            msg = f"Symmetric key must be {KEY_SIZE} bytes, got {len(key)}"
            raise CipherError(msg)
        if not ciphertext.startswith(SALT_MAGIC):
            msg = "Missing Salted__ header"
            raise CipherError(msg)
        body, tag = ciphertext[:-TAG_SIZE], ciphertext[-TAG_SIZE:]
        payload = body[HEADER_SIZE:]
        if len(payload) == 0 or len(payload) % IV_SIZE:
            msg = f"Truncated ciphertext ({len(ciphertext)} bytes)"
            raise CipherError(msg)

        salt = body[len(SALT_MAGIC) : HEADER_SIZE]
        enc_key, iv, mac_key = self._derive(key, salt)
        try:
            self._tag(mac_key, body).verify(tag)
        except InvalidSignature as err:
            msg = "Ciphertext authentication failed"
            raise CipherError(msg) from err

        decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(payload) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as err:
            msg = "Invalid padding"
            raise CipherError(msg) from err


class RsaOaepKeyWrapper:
    """Wraps symmetric keys with RSA-OAEP (MGF1-SHA256, SHA-256)."""

    @staticmethod
    def _padding() -> asym_padding.OAEP:
        return asym_padding.OAEP(
            mgf=asym_padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None,
        )

    def wrap(self, public_key: rsa.RSAPublicKey, key: bytes) -> bytes:
        return public_key.encrypt(key, self._padding())

    def unwrap(self, private_key: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
        return private_key.decrypt(wrapped, self._padding())


class RsaKeyProvider:
    """Mints fresh RSA private keys."""

    def generate_private_key(self, key_size: int, public_exponent: int) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(public_exponent=public_exponent, key_size=key_size)


def is_file_encrypted(path: Path | str) -> bool:
    """Check for the ``Salted__`` framing or the ``.enc`` suffix."""
    path = Path(path)
    if not path.is_file():
        msg = f"File not found: {path}"
        raise FileNotFoundError(msg)
    with path.open("rb") as handle:
        if handle.read(len(SALT_MAGIC)) == SALT_MAGIC:
            return True
    return path.name.endswith(".enc")
