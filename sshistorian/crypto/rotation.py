"""
Key rotation: replace the active key pair and re-encrypt existing recordings.

The coordinator walks ``IDLE -> KEYS_BACKED_UP -> NEW_KEYS_GENERATED ->
REENCRYPTING -> DONE``. A failure before re-encryption starts restores the
original pair and ends in ``ROLLED_BACK``. Per-file failures during
re-encryption do not stop the batch; those files stay readable with the
backed-up old key, which is kept until :meth:`RotationCoordinator.confirm`.
A session left with files on both keys is listed in ``mixed_sessions`` and its
record accepts either fingerprint.
"""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterable
from pathlib import Path

from sshistorian.common.exceptions import (
    KeyStoreError,
    PlaintextRemovalFailure,
    RotationAborted,
    SSHistorianError,
)
from sshistorian.common.fileops import discard, purge_dir
from sshistorian.common.interfaces import IMetadataSink
from sshistorian.common.models import RotationResult, RotationState
from sshistorian.crypto.hybrid import HybridCipher
from sshistorian.crypto.keystore import KeyStore
from sshistorian.crypto.naming import CIPHERTEXT_SUFFIX, session_id_for

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[RotationState, set[RotationState]] = {
    RotationState.IDLE: {RotationState.KEYS_BACKED_UP, RotationState.ROLLED_BACK},
    RotationState.KEYS_BACKED_UP: {RotationState.NEW_KEYS_GENERATED, RotationState.ROLLED_BACK},
    RotationState.NEW_KEYS_GENERATED: {RotationState.REENCRYPTING},
    RotationState.REENCRYPTING: {RotationState.DONE},
    RotationState.DONE: set(),
    RotationState.ROLLED_BACK: set(),
}


def read_manifest(path: Path | str) -> list[Path]:
    """Read a newline-delimited list of ciphertext paths, ignoring blank lines."""
    path = Path(path)
    if not path.is_file():
        msg = f"File list not found: {path}"
        raise FileNotFoundError(msg)
    with path.open(encoding="utf-8") as handle:
        return [Path(line.strip()) for line in handle if line.strip()]


class RotationCoordinator:
    """Drives a single key rotation."""

    def __init__(
        self,
        keystore: KeyStore,
        cipher: HybridCipher,
        metadata: IMetadataSink | None = None,
    ) -> None:
        self.keystore = keystore
        self.cipher = cipher
        self.metadata = metadata if metadata is not None else cipher.metadata
        self.state = RotationState.IDLE

    def _transition(self, new_state: RotationState, result: RotationResult) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            msg = f"Invalid rotation transition {self.state.value} -> {new_state.value}"
            raise RuntimeError(msg)
        logger.debug("Rotation state %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        result.state = new_state

    def rotate(self, manifest: Iterable[Path | str], *, backup_root: Path | None = None) -> RotationResult:
        """Rotate the active key pair and re-encrypt every file in ``manifest``."""
        if self.state is not RotationState.IDLE:
            msg = "A RotationCoordinator can only run once"
            raise RuntimeError(msg)
        files = [Path(p) for p in manifest]
        result = RotationResult()

        try:
            _, old_public = self.keystore.locate_active()
            result.old_fingerprint = self.keystore.fingerprint(old_public)
            backup_dir = self.keystore.backup(backup_root)
        except KeyStoreError as err:
            self._transition(RotationState.ROLLED_BACK, result)
            msg = f"Key backup failed, rotation aborted: {err}"
            raise RotationAborted(msg) from err
        result.backup_dir = backup_dir
        self._transition(RotationState.KEYS_BACKED_UP, result)

        logger.info("Generating new encryption keys...")
        try:
            pair = self.keystore.generate(force=True)
        except KeyStoreError as err:
            logger.error("Failed to generate new keys: %s", err)
            try:
                self.keystore.restore(backup_dir)
            except KeyStoreError:
                logger.exception("Restoring keys failed; originals remain in %s", backup_dir)
            self._transition(RotationState.ROLLED_BACK, result)
            msg = f"Key generation failed, original keys restored: {err}"
            raise RotationAborted(msg) from err
        result.new_fingerprint = pair.fingerprint
        self._transition(RotationState.NEW_KEYS_GENERATED, result)

        old_private = self.keystore.backup_paths(backup_dir)[0]
        self._transition(RotationState.REENCRYPTING, result)
        logger.info("Re-encrypting %d file(s) with new keys...", len(files))

        sessions: dict[str, list[bool]] = {}
        scratch = Path(tempfile.mkdtemp(prefix=".rotation-", dir=self.cipher.path_guard.log_root[1]))
        try:
            for path in files:
                ok = self._reencrypt(path, old_private, pair.public_key_path, scratch, result)
                session_id = session_id_for(path)
                if ok is not None and session_id:
                    sessions.setdefault(session_id, []).append(ok)
        finally:
            purge_dir(scratch)

        for session_id, outcomes in sessions.items():
            if not any(outcomes):
                continue
            mixed = not all(outcomes)
            if mixed:
                # Some files of the session are on each key
                result.mixed_sessions.append(session_id)
            if self.metadata is not None and self.metadata.get(session_id) is not None:
                self.metadata.update_fingerprint(session_id, pair.fingerprint, keep_previous=mixed)

        self._transition(RotationState.DONE, result)
        if result.failed:
            logger.warning(
                "Key rotation had some failures: %d file(s) remain on key %s",
                len(result.failed),
                result.old_fingerprint,
            )
        else:
            logger.info("Key rotation completed successfully (%d file(s))", len(result.rotated))
        return result

    def _reencrypt(
        self,
        path: Path,
        old_private: Path,
        new_public: Path,
        scratch: Path,
        result: RotationResult,
    ) -> bool | None:
        if not path.is_file():
            logger.warning("File not found, skipping: %s", path)
            result.skipped.append(str(path))
            return None

        logger.debug("Re-encrypting file: %s", path)
        transient = scratch / path.name.removesuffix(CIPHERTEXT_SUFFIX)
        try:
            self.cipher.decrypt(path, transient, old_private)
            self.cipher.encrypt(transient, path, new_public)
        except PlaintextRemovalFailure as err:
            # Committed under the new key; the scratch dir purge removes the copy
            logger.warning("Re-encrypted %s but left its transient copy: %s", path, err)
        except (SSHistorianError, OSError) as err:
            logger.error("Failed to re-encrypt %s: %s", path, err)
            result.failed.append(str(path))
            result.errors[str(path)] = str(err)
            return False
        finally:
            discard(transient)
        result.rotated.append(str(path))
        return True

    def confirm(self, result: RotationResult) -> None:
        """Accept a fully successful rotation and purge the old key backup.

        Raises RotationPartialFailure, keeping the backup, if any file is
        still on the old key.
        """
        result.raise_for_failures()
        if result.backup_dir is not None:
            purge_dir(result.backup_dir)
            logger.info("Removed old key backup %s", result.backup_dir)
            result.backup_dir = None
