"""
Path validation for every file a cryptographic operation reads or writes.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable
from enum import Enum
from pathlib import Path

from sshistorian.common.exceptions import PathViolation

logger = logging.getLogger(__name__)


class PathRole(str, Enum):
    """What a path is about to be used for."""

    PLAINTEXT = "plaintext"
    DECRYPTED = "decrypted"
    CIPHERTEXT = "ciphertext"
    WRAPPED_KEY = "wrapped_key"


_PLAIN_NAME = re.compile(r"^[^/\x00]+\.(?:log|timing)$")
_CIPHER_NAME = re.compile(r"^[^/\x00]+\.(?:log|timing)\.enc$")
# <name>.log.enc.aes.enc, <name>.log.enc.<md5-hex>.aes.enc, legacy <name>.log.aes.enc,
# each optionally with the .bak suffix kept while a re-encryption commits
_WRAPPED_NAME = re.compile(r"^[^/\x00]+\.(?:log|timing)(?:\.enc(?:\.[0-9a-f]{32})?)?\.aes\.enc(?:\.bak)?$")

NAME_PATTERNS: dict[PathRole, re.Pattern[str]] = {
    PathRole.PLAINTEXT: _PLAIN_NAME,
    PathRole.DECRYPTED: _PLAIN_NAME,
    PathRole.CIPHERTEXT: _CIPHER_NAME,
    PathRole.WRAPPED_KEY: _WRAPPED_NAME,
}

EXPECTED_SUFFIXES: dict[PathRole, str] = {
    PathRole.PLAINTEXT: ".log or .timing",
    PathRole.DECRYPTED: ".log or .timing",
    PathRole.CIPHERTEXT: ".log.enc or .timing.enc",
    PathRole.WRAPPED_KEY: "<ciphertext>.aes.enc",
}


def _inside(path: Path, root: Path) -> bool:
    return path != root and path.is_relative_to(root)


class PathGuard:
    """Confines cryptographic file access to the log root.

    ``DECRYPTED`` outputs may additionally live under one of the scratch
    roots, which is where replay decrypts sessions into temporary
    directories. All other roles are confined to the log root.
    """

    def __init__(self, log_root: Path | str, scratch_roots: Iterable[Path | str] = ()) -> None:
        self.log_root = self._root(log_root)
        self.scratch_roots = [self._root(r) for r in scratch_roots]

    @staticmethod
    def _root(root: Path | str) -> tuple[Path, Path]:
        lexical = Path(os.path.normpath(os.path.abspath(os.fspath(root))))
        return lexical, lexical.resolve()

    def roots_for(self, role: PathRole) -> list[tuple[Path, Path]]:
        if role is PathRole.DECRYPTED:
            return [self.log_root, *self.scratch_roots]
        return [self.log_root]

    def validate(self, path: Path | str, role: PathRole | str) -> Path:
        """Return the canonical form of ``path`` or raise PathViolation."""
        role = PathRole(role)
        raw = os.fspath(path)
        if not raw or "\x00" in raw:
            msg = f"Invalid {role.value} path: {raw!r}"
            raise PathViolation(msg, raw)

        pattern = NAME_PATTERNS[role]
        lexical = Path(os.path.normpath(os.path.abspath(raw)))
        if not pattern.match(lexical.name):
            msg = (
                f"Invalid file extension for {role.value}: {lexical.name} "
                f"(must end with {EXPECTED_SUFFIXES[role]})"
            )
            raise PathViolation(msg, raw)

        roots = self.roots_for(role)
        if not any(_inside(lexical, lex) or _inside(lexical, real) for lex, real in roots):
            logger.debug("Path traversal attempt with path: %s", raw)
            msg = f"Security violation: {role.value} path must be within log directory: {raw}"
            raise PathViolation(msg, raw)

        if not lexical.parent.is_dir():
            msg = f"Parent directory does not exist: {lexical.parent}"
            raise PathViolation(msg, raw)
        if lexical.is_symlink() and not lexical.exists():
            msg = f"Refusing dangling symlink: {raw}"
            raise PathViolation(msg, raw)

        try:
            canonical = lexical.resolve(strict=False)
        except (OSError, RuntimeError) as err:
            msg = f"Cannot canonicalize path {raw}: {err}"
            raise PathViolation(msg, raw) from err

        if not pattern.match(canonical.name):
            msg = f"Path {raw} resolves to a file with an unexpected name: {canonical.name}"
            raise PathViolation(msg, raw)
        if not any(_inside(canonical, real) for _, real in roots):
            logger.debug("Path %s resolves outside the allowed roots: %s", raw, canonical)
            msg = f"Security violation: {raw} resolves outside the log directory"
            raise PathViolation(msg, raw)
        return canonical

    def validate_pair(
        self,
        source: Path | str,
        source_role: PathRole,
        destination: Path | str,
        destination_role: PathRole,
    ) -> tuple[Path, Path]:
        src = self.validate(source, source_role)
        dst = self.validate(destination, destination_role)
        if src == dst:
            msg = f"Source and destination are the same file: {src}"
            raise PathViolation(msg, source)
        return src, dst

    def is_allowed(self, path: Path | str, role: PathRole | str) -> bool:
        try:
            self.validate(path, role)
        except PathViolation:
            return False
        return True
