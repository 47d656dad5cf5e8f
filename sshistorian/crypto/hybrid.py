"""
Hybrid (envelope) encryption of session recordings.

A fresh 256-bit key encrypts each file; the key itself is wrapped under the
configured RSA public key (and any additional recipients) and stored beside
the ciphertext as ``<ciphertext>.aes.enc``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from sshistorian.common.exceptions import (
    DecryptFailure,
    EncryptFailure,
    FingerprintMismatch,
    KeyMismatch,
    PlaintextRemovalFailure,
)
from sshistorian.common.fileops import atomic_write_bytes, commit, discard, keep_copy, stage_bytes
from sshistorian.common.interfaces import IKeyWrapper, IMetadataSink, ISymmetricCipher
from sshistorian.common.models import EncryptedArtifactPair, EncryptionSettings
from sshistorian.crypto.keystore import KeyStore, fingerprint_hex, fingerprint_of
from sshistorian.crypto.naming import (
    all_key_files,
    candidate_key_paths,
    current_key_path,
    key_backup_path,
    recipient_key_files,
    recipient_key_path,
)
from sshistorian.crypto.path_guard import PathGuard, PathRole
from sshistorian.crypto.primitives import CbcHmacCipher, RsaOaepKeyWrapper

logger = logging.getLogger(__name__)


class HybridCipher:
    """Per-file envelope encryption confined to the log root."""

    def __init__(
        self,
        path_guard: PathGuard,
        keystore: KeyStore,
        metadata: IMetadataSink | None = None,
        symmetric: ISymmetricCipher | None = None,
        key_wrapper: IKeyWrapper | None = None,
        settings: EncryptionSettings | None = None,
        random_bytes: Callable[[int], bytes] = os.urandom,
    ) -> None:
        self.path_guard = path_guard
        self.keystore = keystore
        self.metadata = metadata
        self.symmetric = symmetric or CbcHmacCipher()
        self.key_wrapper = key_wrapper or RsaOaepKeyWrapper()
        self.settings = settings if settings is not None else keystore.settings
        self.random_bytes = random_bytes
        self.artifact_mode = keystore.config.ARTIFACT_MODE

    def artifacts_for(self, ciphertext_path: Path | str) -> EncryptedArtifactPair:
        ciphertext = Path(ciphertext_path)
        return EncryptedArtifactPair(
            ciphertext_path=ciphertext,
            wrapped_key_path=current_key_path(ciphertext),
            recipient_key_paths=recipient_key_files(ciphertext),
        )

    def _recipients(self, primary: RSAPublicKey) -> list[tuple[str, RSAPublicKey]]:
        primary_fp = fingerprint_of(primary)
        recipients: dict[str, RSAPublicKey] = {}
        for path in self.settings.recipient_keys():
            key = self.keystore.load_public(path)
            fingerprint = fingerprint_of(key)
            if fingerprint != primary_fp:
                recipients[fingerprint] = key
        return list(recipients.items())

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(
        self,
        plaintext_path: Path | str,
        ciphertext_path: Path | str,
        public_key_path: Path | str | None = None,
        *,
        session_id: str | None = None,
    ) -> str:
        """Encrypt a recording and delete the plaintext.

        Returns the fingerprint of the primary public key. On any failure the
        plaintext is untouched and the previous artifacts, if any, are back in
        place. PlaintextRemovalFailure is the one exception: encryption has
        committed and only the plaintext is left to delete.
        """
        plaintext, ciphertext = self.path_guard.validate_pair(
            plaintext_path, PathRole.PLAINTEXT, ciphertext_path, PathRole.CIPHERTEXT
        )
        if not plaintext.is_file():
            msg = f"File not found for encryption: {plaintext}"
            raise EncryptFailure(msg)

        public_path = Path(public_key_path) if public_key_path else self.keystore.locate_active()[1]
        public_key = self.keystore.load_public(public_path)
        fingerprint = fingerprint_of(public_key)
        recipients = self._recipients(public_key)

        logger.debug("Encrypting %s -> %s (key %s)", plaintext, ciphertext, fingerprint)
        try:
            data = plaintext.read_bytes()
        except OSError as err:
            msg = f"Cannot read {plaintext}: {err}"
            raise EncryptFailure(msg) from err

        key = self.random_bytes(self.symmetric.key_size)
        staged: list[tuple[Path, Path]] = []
        kept: dict[Path, Path] = {}
        created: set[Path] = set()
        committed: list[Path] = []
        try:
            try:
                body = self.symmetric.encrypt(key, data)
            except (ValueError, TypeError) as err:
                msg = f"Failed to encrypt file with AES: {plaintext}"
                raise EncryptFailure(msg) from err
            staged.append((self._stage(ciphertext, body), ciphertext))

            targets = [(current_key_path(ciphertext), public_key)]
            targets += [
                (recipient_key_path(ciphertext, fingerprint_hex(fp)), recipient)
                for fp, recipient in recipients
            ]
            for target, recipient in targets:
                try:
                    wrapped = self.key_wrapper.wrap(recipient, key)
                except (ValueError, TypeError) as err:
                    msg = f"Failed to encrypt AES key with RSA: {public_path}"
                    raise EncryptFailure(msg) from err
                staged.append((self._stage(target, wrapped), target))

            # Key files go first; the ciphertext rename is the commit point.
            # Replaced keys stay readable under their .bak name until then.
            try:
                for _, target in staged[1:]:
                    backup = self._keep_previous(target, created)
                    if backup is not None:
                        kept[target] = backup
                for tmp, target in staged[1:] + staged[:1]:
                    commit(tmp, target)
                    committed.append(target)
            except OSError as err:
                msg = f"Failed to commit encrypted files for {ciphertext}: {err}"
                raise EncryptFailure(msg) from err
        except BaseException:
            for tmp, _ in staged:
                discard(tmp)
            self._roll_back(committed, kept, created)
            raise

        for backup in kept.values():
            discard(backup)
        written = {target for _, target in staged}
        for stale in all_key_files(ciphertext):
            if stale not in written:
                logger.debug("Removing stale key file %s", stale)
                discard(stale)

        if session_id and self.metadata is not None:
            try:
                self.metadata.record(
                    session_id,
                    fingerprint,
                    datetime.now(timezone.utc),
                    recipients=[fp for fp, _ in recipients],
                )
            except OSError:
                logger.exception("Failed to store encryption info for session %s", session_id)

        try:
            plaintext.unlink()
        except OSError as err:
            msg = f"Encrypted {plaintext} but could not remove the plaintext: {err}"
            raise PlaintextRemovalFailure(msg, plaintext, ciphertext) from err

        logger.debug("File encrypted successfully: %s -> %s", plaintext, ciphertext)
        return fingerprint

    def _stage(self, target: Path, payload: bytes) -> Path:
        try:
            return stage_bytes(target, payload, mode=self.artifact_mode)
        except OSError as err:
            msg = f"Failed to write {target}: {err}"
            raise EncryptFailure(msg) from err

    def _keep_previous(self, target: Path, created: set[Path]) -> Path | None:
        """Give an existing key file a .bak name before it is replaced.

        A .bak left by an interrupted earlier call already matches the
        ciphertext on disk, so it is kept rather than refreshed.
        """
        backup = key_backup_path(target)
        if backup.is_file():
            return backup
        if not target.is_file():
            return None
        keep_copy(target, backup, mode=self.artifact_mode)
        created.add(backup)
        return backup

    def _roll_back(self, committed: list[Path], kept: dict[Path, Path], created: set[Path]) -> None:
        for target in reversed(committed):
            backup = kept.pop(target, None)
            try:
                if backup is not None:
                    commit(backup, target)
                else:
                    target.unlink()
            except OSError:
                logger.exception("Could not roll back %s; previous key kept as %s", target, backup)
        for backup in kept.values():
            if backup in created:
                discard(backup)

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def decrypt(
        self,
        ciphertext_path: Path | str,
        plaintext_path: Path | str,
        private_key_path: Path | str | None = None,
        *,
        session_id: str | None = None,
    ) -> None:
        """Decrypt a recording without touching the ciphertext.

        Raises KeyMismatch when the private key cannot unwrap the stored key,
        in which case no plaintext is written.
        """
        ciphertext, output = self.path_guard.validate_pair(
            ciphertext_path, PathRole.CIPHERTEXT, plaintext_path, PathRole.DECRYPTED
        )
        if not ciphertext.is_file():
            msg = f"Encrypted file not found: {ciphertext}"
            raise DecryptFailure(msg)

        private_path = Path(private_key_path) if private_key_path else self.keystore.locate_active()[0]
        private_key = self.keystore.load_private(private_path)
        fingerprint = fingerprint_of(private_key.public_key())

        if session_id and self.metadata is not None:
            record = self.metadata.get(session_id)
            if record is not None and not record.accepts(fingerprint):
                msg = (
                    f"Session {session_id} was encrypted with key {record.fingerprint}, "
                    f"but the private key {private_path} has fingerprint {fingerprint}"
                )
                raise FingerprintMismatch(msg, record.fingerprint, fingerprint)

        candidates = candidate_key_paths(ciphertext, fingerprint_hex(fingerprint))
        if not candidates:
            msg = f"Encrypted key not found: {current_key_path(ciphertext)}"
            raise DecryptFailure(msg)
        for candidate in candidates:
            self.path_guard.validate(candidate, PathRole.WRAPPED_KEY)

        try:
            body = ciphertext.read_bytes()
        except OSError as err:
            msg = f"Cannot read {ciphertext}: {err}"
            raise DecryptFailure(msg) from err

        data = None
        unwrapped = False
        last_error: Exception | None = None
        for candidate in candidates:
            try:
                key = self.key_wrapper.unwrap(private_key, candidate.read_bytes())
            except (ValueError, TypeError, OSError) as err:
                logger.debug("Key file %s does not open with %s: %s", candidate, private_path, err)
                continue
            unwrapped = True
            try:
                data = self.symmetric.decrypt(key, body)
                break
            except (ValueError, TypeError) as err:
                last_error = err
                logger.debug("Key from %s does not decrypt %s: %s", candidate, ciphertext, err)

        if not unwrapped:
            msg = f"Failed to decrypt AES key with private key: {private_path}"
            raise KeyMismatch(msg)
        if data is None:
            msg = f"Failed to decrypt file with AES key: {ciphertext} ({last_error})"
            raise DecryptFailure(msg)

        try:
            atomic_write_bytes(output, data, mode=self.artifact_mode)
        except OSError as err:
            msg = f"Failed to write decrypted output {output}: {err}"
            raise DecryptFailure(msg) from err
        logger.debug("File decrypted successfully: %s", output)
