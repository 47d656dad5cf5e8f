"""
File helpers for owner-only, all-or-nothing writes.

Every file written here is created with its final permission bits already
applied (``mkstemp`` creates ``0600``), written beside its target and only
renamed into place once complete.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def secure_mkdir(path: Path, mode: int = 0o700) -> Path:
    """Create ``path`` (and parents) and force ``mode`` on the leaf directory."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True, mode=mode)
    os.chmod(path, mode)
    return path


def stage_bytes(target: Path, payload: bytes, *, mode: int = 0o600) -> Path:
    """Write ``payload`` to a hidden temp file beside ``target`` and return it.

    The caller either commits the staged file with :func:`commit` or removes
    it with :func:`discard`.
    """
    target = Path(target)
    fd, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    staged = Path(name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        if mode != 0o600:
            os.chmod(staged, mode)
    except BaseException:
        discard(staged)
        raise
    return staged


def commit(staged: Path, target: Path) -> None:
    """Atomically move a staged file over ``target``."""
    os.replace(str(staged), str(target))
    _fsync_dir(Path(target).parent)


def discard(path: Path | None) -> None:
    """Remove ``path`` if it exists."""
    if path is None:
        return
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as err:
        logger.warning("Could not remove %s: %s", path, err)


def atomic_write_bytes(target: Path, payload: bytes, *, mode: int = 0o600) -> None:
    """Stage and commit ``payload`` to ``target`` in one step."""
    staged = stage_bytes(target, payload, mode=mode)
    try:
        commit(staged, target)
    except BaseException:
        discard(staged)
        raise


def keep_copy(src: Path, dst: Path, *, mode: int = 0o600) -> None:
    """Make ``dst`` a second name for ``src``, copying where hard links fail.

    A later :func:`commit` over ``src`` leaves ``dst`` holding the old bytes.
    """
    try:
        os.link(str(src), str(dst))
    except FileExistsError:
        raise
    except OSError as err:
        logger.debug("Hard link %s -> %s failed (%s), copying", src, dst, err)
        copy_private(src, dst, mode=mode)
    _fsync_dir(Path(dst).parent)


def copy_private(src: Path, dst: Path, *, mode: int = 0o600) -> None:
    """Copy ``src`` to ``dst`` without the copy ever being more permissive than ``mode``."""
    with Path(src).open("rb") as handle:
        atomic_write_bytes(dst, handle.read(), mode=mode)


def purge_dir(path: Path) -> None:
    """Remove a scratch directory tree."""
    shutil.rmtree(path, ignore_errors=True)
