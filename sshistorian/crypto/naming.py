"""
Naming of the wrapped-key files that sit beside each ciphertext.

Decryption tries the strategies in ``WRAPPED_KEY_STRATEGIES`` in order.
``legacy`` covers files written by releases that derived the key file name
from the plaintext name (``<id>.log.aes.enc``). Rotation rewrites those under
the current name, so the legacy entry can be dropped once no installation
has legacy files left; ``is_legacy`` lets callers count them before then.
"""

from __future__ import annotations

import glob
import re
from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple

WRAPPED_KEY_SUFFIX = ".aes.enc"
CIPHERTEXT_SUFFIX = ".enc"
KEY_BACKUP_SUFFIX = ".bak"

_LEGACY_NAME = re.compile(r"^.+\.(?:log|timing)\.aes\.enc$")


class NamingStrategy(NamedTuple):
    name: str
    path_for: Callable[[Path], Path]
    legacy: bool = False


def current_key_path(ciphertext: Path) -> Path:
    """``<id>.log.enc`` -> ``<id>.log.enc.aes.enc``"""
    ciphertext = Path(ciphertext)
    return ciphertext.with_name(ciphertext.name + WRAPPED_KEY_SUFFIX)


def legacy_key_path(ciphertext: Path) -> Path:
    """``<id>.log.enc`` -> ``<id>.log.aes.enc``"""
    ciphertext = Path(ciphertext)
    stem = ciphertext.name.removesuffix(CIPHERTEXT_SUFFIX)
    return ciphertext.with_name(stem + WRAPPED_KEY_SUFFIX)


def key_backup_path(key_path: Path) -> Path:
    """Previous wrapped key, kept while a re-encryption of its ciphertext commits."""
    key_path = Path(key_path)
    return key_path.with_name(key_path.name + KEY_BACKUP_SUFFIX)


def recipient_key_path(ciphertext: Path, fingerprint_hex: str) -> Path:
    """Key file for an additional recipient: ``<id>.log.enc.<md5hex>.aes.enc``"""
    ciphertext = Path(ciphertext)
    return ciphertext.with_name(f"{ciphertext.name}.{fingerprint_hex}{WRAPPED_KEY_SUFFIX}")


WRAPPED_KEY_STRATEGIES: tuple[NamingStrategy, ...] = (
    NamingStrategy("current", current_key_path),
    NamingStrategy("legacy", legacy_key_path, legacy=True),
)


def candidate_key_paths(ciphertext: Path, fingerprint_hex: str | None = None) -> list[Path]:
    """Existing wrapped-key files for ``ciphertext`` in the order to try them."""
    candidates = []
    if fingerprint_hex:
        candidates.append(recipient_key_path(ciphertext, fingerprint_hex))
    candidates.extend(strategy.path_for(ciphertext) for strategy in WRAPPED_KEY_STRATEGIES)
    # Left behind only if a re-encryption died between its renames
    candidates.extend([key_backup_path(path) for path in candidates])
    seen: set[Path] = set()
    ordered = []
    for path in candidates:
        if path not in seen and path.is_file():
            seen.add(path)
            ordered.append(path)
    return ordered


def recipient_key_files(ciphertext: Path) -> list[Path]:
    ciphertext = Path(ciphertext)
    pattern = glob.escape(str(ciphertext)) + ".*" + WRAPPED_KEY_SUFFIX
    return sorted(Path(p) for p in glob.glob(pattern))


def all_key_files(ciphertext: Path) -> list[Path]:
    """Every wrapped-key file that belongs to ``ciphertext``."""
    paths = [s.path_for(ciphertext) for s in WRAPPED_KEY_STRATEGIES]
    return [p for p in paths if p.is_file()] + recipient_key_files(ciphertext)


def is_legacy(path: Path) -> bool:
    return _LEGACY_NAME.match(Path(path).name) is not None


_SESSION_NAME = re.compile(r"^(?P<session>.+?)\.(?:log|timing)(?:\.enc)?$")


def session_id_for(path: Path) -> str | None:
    """Session identifier encoded in a recording file name, if any."""
    match = _SESSION_NAME.match(Path(path).name)
    return match.group("session") if match else None
