"""
Custom exceptions for the log encryption subsystem.
"""

from __future__ import annotations

from pathlib import Path

# Exit codes shared with the rest of SSHistorian
ERR_GENERAL = 1
ERR_ARGS = 2
ERR_NOT_FOUND = 4
ERR_CONFIG = 6
ERR_CRYPT_GENERAL = 30
ERR_CRYPT_KEY = 31
ERR_CRYPT_ENCRYPT = 32
ERR_CRYPT_DECRYPT = 33


class SSHistorianError(Exception):
    """Base exception carrying a process exit code."""

    exit_code: int = ERR_GENERAL

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigurationError(SSHistorianError):
    """Exception for invalid encryption settings."""

    exit_code = ERR_CONFIG


class PathViolation(SSHistorianError):
    """Path is outside the log root or does not match its role's naming."""

    exit_code = ERR_ARGS

    def __init__(self, message: str, path: str | Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class KeyStoreError(SSHistorianError):
    """Exception for key material failures."""

    exit_code = ERR_CRYPT_KEY


class KeyNotFound(KeyStoreError):
    """Key file does not exist."""

    exit_code = ERR_NOT_FOUND


class InvalidKey(KeyStoreError):
    """Key file exists but is not a usable RSA key."""


class KeyGenFailure(KeyStoreError):
    """Key pair generation failed."""


class KeyOverwriteRefused(KeyGenFailure):
    """Existing key pair was not confirmed for overwrite."""


class EncryptFailure(SSHistorianError):
    """Symmetric or asymmetric encryption stage failed."""

    exit_code = ERR_CRYPT_ENCRYPT


class PlaintextRemovalFailure(EncryptFailure):
    """Encryption committed, but the plaintext could not be deleted.

    Unlike other EncryptFailures the ciphertext and wrapped keys exist and
    decrypt; only the plaintext still needs removing.
    """

    def __init__(self, message: str, plaintext: str | Path, ciphertext: str | Path) -> None:
        super().__init__(message)
        self.plaintext = plaintext
        self.ciphertext = ciphertext


class DecryptFailure(SSHistorianError):
    """Decryption failed for a reason other than the key."""

    exit_code = ERR_CRYPT_DECRYPT


class KeyMismatch(DecryptFailure):
    """Private key cannot unwrap the symmetric key."""


class FingerprintMismatch(KeyMismatch):
    """Private key does not match the fingerprint recorded for the session."""

    def __init__(self, message: str, expected: str, actual: str) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class RotationAborted(KeyStoreError):
    """Rotation failed before re-encryption and was rolled back."""


class RotationPartialFailure(SSHistorianError):
    """Some files of a rotation batch are still on the old key."""

    exit_code = ERR_CRYPT_GENERAL

    def __init__(self, message: str, failed: list[str]) -> None:
        super().__init__(message)
        self.failed = failed
