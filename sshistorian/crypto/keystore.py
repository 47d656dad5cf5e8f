"""
RSA key pair management for log encryption.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from sshistorian.common import Config, Configurable
from sshistorian.common.exceptions import (
    InvalidKey,
    KeyGenFailure,
    KeyNotFound,
    KeyOverwriteRefused,
    KeyStoreError,
)
from sshistorian.common.fileops import atomic_write_bytes, copy_private, discard, secure_mkdir
from sshistorian.common.interfaces import IKeyProvider
from sshistorian.common.models import EncryptionSettings, KeyPair
from sshistorian.crypto.primitives import RsaKeyProvider

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "key_backup_"
BACKUP_SUFFIX = ".old"


def fingerprint_of(public_key: RSAPublicKey) -> str:
    """MD5 over the DER SubjectPublicKeyInfo, as colon-separated hex."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashes.Hash(hashes.MD5())
    digest.update(der)
    return ":".join(f"{b:02x}" for b in digest.finalize())


def fingerprint_hex(fingerprint: str) -> str:
    """Fingerprint without separators, for use in file names."""
    return fingerprint.replace(":", "")


class KeyStore(Configurable):
    """Generates, validates, fingerprints and locates RSA key pairs."""

    def __init__(
        self,
        config: Config | None = None,
        settings: EncryptionSettings | None = None,
        key_provider: IKeyProvider | None = None,
        **overrides: Any,
    ) -> None:
        self.config = config or Config()
        self.settings = settings if settings is not None else self.config.encryption_settings()
        self.key_provider = key_provider or RsaKeyProvider()
        self.apply_overrides(
            overrides,
            self.config,
            [
                "keys_dir",
                "rsa_key_size",
                "rsa_public_exponent",
                "private_key_mode",
                "public_key_mode",
                "dir_mode",
            ],
        )
        self.keys_dir = Path(self.keys_dir)

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    def locate_active(self) -> tuple[Path, Path]:
        """Return (private_key_path, public_key_path) without checking they exist."""
        private = self.settings.private_key or self.keys_dir / self.config.PRIVATE_KEY_NAME
        public = self.settings.public_key or self.keys_dir / self.config.PUBLIC_KEY_NAME
        return Path(private), Path(public)

    def _target_paths(self, output_dir: Path | None) -> tuple[Path, Path]:
        if output_dir is None:
            return self.locate_active()
        output_dir = Path(output_dir)
        return output_dir / self.config.PRIVATE_KEY_NAME, output_dir / self.config.PUBLIC_KEY_NAME

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        output_dir: Path | None = None,
        *,
        force: bool = False,
        confirm: Callable[[str], bool] | None = None,
    ) -> KeyPair:
        """Create a new RSA key pair.

        Existing keys are only replaced when ``force`` is set or ``confirm``
        approves, otherwise KeyOverwriteRefused is raised and nothing changes.
        """
        private_path, public_path = self._target_paths(output_dir)
        if private_path.exists() or public_path.exists():
            prompt = f"Encryption keys already exist in {private_path.parent}. Overwrite?"
            if force:
                logger.debug("Overwriting existing keys at %s", private_path.parent)
            elif confirm is not None and confirm(prompt):
                logger.info("Overwrite of existing keys confirmed")
            else:
                msg = f"Refusing to overwrite existing keys at {private_path.parent}"
                raise KeyOverwriteRefused(msg)

        logger.info("Generating %d-bit RSA encryption keys...", self.rsa_key_size)
        try:
            for directory in {private_path.parent, public_path.parent}:
                secure_mkdir(directory, self.dir_mode)
        except OSError as err:
            msg = f"Failed to create keys directory: {err}"
            raise KeyGenFailure(msg) from err

        try:
            private_key = self.key_provider.generate_private_key(
                self.rsa_key_size, self.rsa_public_exponent
            )
            private_pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            atomic_write_bytes(private_path, private_pem, mode=self.private_key_mode)
        except (ValueError, TypeError, UnsupportedAlgorithm, OSError) as err:
            msg = f"Failed to generate private key: {err}"
            raise KeyGenFailure(msg) from err

        try:
            public_key = private_key.public_key()
            public_pem = public_key.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
            atomic_write_bytes(public_path, public_pem, mode=self.public_key_mode)
        except (ValueError, TypeError, UnsupportedAlgorithm, OSError) as err:
            # No private key without its public half
            discard(private_path)
            msg = f"Failed to extract public key: {err}"
            raise KeyGenFailure(msg) from err

        fingerprint = fingerprint_of(public_key)
        logger.info("Keys generated and saved:")
        logger.info("  Private: %s", private_path)
        logger.info("  Public: %s", public_path)
        logger.info("  Fingerprint: %s", fingerprint)
        return KeyPair(
            private_key_path=private_path,
            public_key_path=public_path,
            fingerprint=fingerprint,
            private_mode=self.private_key_mode,
            public_mode=self.public_key_mode,
        )

    # ------------------------------------------------------------------
    # Loading and validation
    # ------------------------------------------------------------------

    def load_public(self, path: Path | str) -> RSAPublicKey:
        path = Path(path)
        if not path.is_file():
            msg = f"Public key not found: {path}"
            raise KeyNotFound(msg)
        try:
            key = serialization.load_pem_public_key(path.read_bytes())
        except (ValueError, UnsupportedAlgorithm) as err:
            msg = f"Invalid public key: {path}"
            raise InvalidKey(msg) from err
        if not isinstance(key, RSAPublicKey):
            msg = f"Public key is not an RSA key: {path}"
            raise InvalidKey(msg)
        return key

    def load_private(self, path: Path | str) -> RSAPrivateKey:
        path = Path(path)
        if not path.is_file():
            msg = f"Private key not found: {path}"
            raise KeyNotFound(msg)
        try:
            key = serialization.load_pem_private_key(path.read_bytes(), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as err:
            msg = f"Invalid private key: {path}"
            raise InvalidKey(msg) from err
        if not isinstance(key, RSAPrivateKey):
            msg = f"Private key is not an RSA key: {path}"
            raise InvalidKey(msg)
        return key

    def validate_public(self, path: Path | str) -> None:
        """Raise KeyNotFound or InvalidKey unless ``path`` holds a PEM RSA public key."""
        self.load_public(path)

    def fingerprint(self, public_key_path: Path | str) -> str:
        return fingerprint_of(self.load_public(public_key_path))

    # ------------------------------------------------------------------
    # Backup and restore
    # ------------------------------------------------------------------

    def backup(self, backup_root: Path | None = None) -> Path:
        """Copy the active key pair into a new timestamped backup directory."""
        private_path, public_path = self.locate_active()
        for path in (private_path, public_path):
            if not path.is_file():
                msg = f"Current encryption key not found, cannot back up: {path}"
                raise KeyNotFound(msg)

        root = Path(backup_root or self.keys_dir)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_dir = root / f"{BACKUP_PREFIX}{stamp}"
        counter = 1
        try:
            secure_mkdir(root, self.dir_mode)
            while True:
                try:
                    backup_dir.mkdir(mode=self.dir_mode)
                    break
                except FileExistsError:
                    backup_dir = root / f"{BACKUP_PREFIX}{stamp}_{counter}"
                    counter += 1
            secure_mkdir(backup_dir, self.dir_mode)
            copy_private(
                private_path,
                self.backup_paths(backup_dir)[0],
                mode=self.private_key_mode,
            )
            copy_private(
                public_path,
                self.backup_paths(backup_dir)[1],
                mode=self.public_key_mode,
            )
        except OSError as err:
            msg = f"Failed to back up keys to {backup_dir}: {err}"
            raise KeyStoreError(msg) from err

        logger.info("Current keys backed up to %s", backup_dir)
        return backup_dir

    def backup_paths(self, backup_dir: Path) -> tuple[Path, Path]:
        return (
            Path(backup_dir) / f"{self.config.PRIVATE_KEY_NAME}{BACKUP_SUFFIX}",
            Path(backup_dir) / f"{self.config.PUBLIC_KEY_NAME}{BACKUP_SUFFIX}",
        )

    def restore(self, backup_dir: Path) -> None:
        """Put a backed-up key pair back in the active location."""
        private_backup, public_backup = self.backup_paths(backup_dir)
        private_path, public_path = self.locate_active()
        try:
            copy_private(private_backup, private_path, mode=self.private_key_mode)
            copy_private(public_backup, public_path, mode=self.public_key_mode)
        except OSError as err:
            msg = f"Failed to restore keys from {backup_dir}: {err}"
            raise KeyStoreError(msg) from err
        logger.info("Keys restored from %s", backup_dir)
