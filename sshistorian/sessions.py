"""
Entry points used by the session recorder and replayer.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sshistorian.common import Config
from sshistorian.common.exceptions import DecryptFailure, EncryptFailure, SSHistorianError
from sshistorian.common.fileops import purge_dir, secure_mkdir
from sshistorian.common.interfaces import IKeyProvider, IMetadataSink
from sshistorian.common.models import EncryptionSettings
from sshistorian.crypto.hybrid import HybridCipher
from sshistorian.crypto.keystore import KeyStore
from sshistorian.crypto.path_guard import PathGuard
from sshistorian.storage.metadata import JsonMetadataSink

logger = logging.getLogger(__name__)

RECORDING_SUFFIXES = (".log", ".timing")


def build_cipher(
    config: Config | None = None,
    settings: EncryptionSettings | None = None,
    metadata: IMetadataSink | None = None,
    key_provider: IKeyProvider | None = None,
) -> HybridCipher:
    """Wire a HybridCipher from configuration."""
    config = config or Config()
    settings = settings if settings is not None else config.encryption_settings()
    keystore = KeyStore(config=config, settings=settings, key_provider=key_provider)
    guard = PathGuard(config.LOG_DIR, scratch_roots=[config.TEMP_DIR])
    if metadata is None:
        metadata = JsonMetadataSink(config.METADATA_FILE)
    return HybridCipher(guard, keystore, metadata=metadata, settings=settings)


class SessionFiles:
    """Protects and unprotects the ``.log``/``.timing`` pair of a session."""

    def __init__(self, cipher: HybridCipher, log_dir: Path, temp_dir: Path) -> None:
        self.cipher = cipher
        self.log_dir = Path(log_dir)
        self.temp_dir = Path(temp_dir)

    @classmethod
    def from_config(cls, config: Config | None = None, **kwargs) -> SessionFiles:
        config = config or Config()
        return cls(build_cipher(config, **kwargs), config.LOG_DIR, config.TEMP_DIR)

    def paths(self, session_id: str) -> list[Path]:
        return [self.log_dir / f"{session_id}{suffix}" for suffix in RECORDING_SUFFIXES]

    def is_encrypted(self, session_id: str) -> bool:
        return all(Path(f"{p}.enc").is_file() for p in self.paths(session_id))

    def protect(self, session_id: str) -> str | None:
        """Encrypt a finished recording; returns the key fingerprint used.

        Does nothing and returns None while encryption is disabled.
        """
        if not self.cipher.settings.enabled:
            logger.debug("Encryption is disabled")
            return None
        logger.info("Encrypting session logs...")
        fingerprint = None
        errors: list[SSHistorianError] = []
        for path in self.paths(session_id):
            try:
                fingerprint = self.cipher.encrypt(path, f"{path}.enc", session_id=session_id)
            except SSHistorianError as err:
                logger.warning("Failed to encrypt %s: %s", path, err)
                errors.append(err)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            msg = f"Failed to encrypt session {session_id}: " + "; ".join(str(e) for e in errors)
            raise EncryptFailure(msg) from errors[0]
        return fingerprint

    @contextmanager
    def decrypted(self, session_id: str, private_key_path: Path | None = None) -> Iterator[list[Path]]:
        """Yield readable (log, timing) paths, decrypting into a private temp dir.

        Unencrypted sessions are yielded in place. The temporary directory is
        removed on exit whether or not replay succeeded.
        """
        plain = self.paths(session_id)
        if all(p.is_file() for p in plain):
            yield plain
            return
        if not self.is_encrypted(session_id):
            msg = f"Session files not found: {plain[0]}"
            raise DecryptFailure(msg)

        secure_mkdir(self.temp_dir)
        temp_dir = Path(tempfile.mkdtemp(prefix=f"{session_id}.", dir=self.temp_dir))
        try:
            logger.info("Decrypting session files...")
            outputs = []
            for path in plain:
                output = temp_dir / path.name
                self.cipher.decrypt(f"{path}.enc", output, private_key_path, session_id=session_id)
                outputs.append(output)
            yield outputs
        finally:
            purge_dir(temp_dir)
