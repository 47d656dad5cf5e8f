# Encryption and key lifecycle
from sshistorian.crypto.hybrid import HybridCipher
from sshistorian.crypto.keystore import KeyStore, fingerprint_of
from sshistorian.crypto.path_guard import PathGuard, PathRole
from sshistorian.crypto.primitives import is_file_encrypted
from sshistorian.crypto.rotation import RotationCoordinator, read_manifest

__all__ = [
    "HybridCipher",
    "KeyStore",
    "PathGuard",
    "PathRole",
    "RotationCoordinator",
    "fingerprint_of",
    "is_file_encrypted",
    "read_manifest",
]
