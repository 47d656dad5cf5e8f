# SSHistorian session log encryption

from sshistorian.crypto import (
    HybridCipher,
    KeyStore,
    PathGuard,
    PathRole,
    RotationCoordinator,
    is_file_encrypted,
)
from sshistorian.sessions import SessionFiles, build_cipher

__all__ = [
    "HybridCipher",
    "KeyStore",
    "PathGuard",
    "PathRole",
    "RotationCoordinator",
    "SessionFiles",
    "build_cipher",
    "is_file_encrypted",
]
