from __future__ import annotations

import os
from pathlib import Path

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from sshistorian.common.config import Config
from sshistorian.common.models import EncryptionSettings
from sshistorian.crypto.hybrid import HybridCipher
from sshistorian.crypto.keystore import KeyStore
from sshistorian.crypto.path_guard import PathGuard
from sshistorian.storage.metadata import InMemoryMetadataSink

POOL_SIZE = 6


class PooledKeyProvider:
    """Hands out pre-generated 2048-bit keys so tests do not pay for keygen."""

    def __init__(self, pool: list[RSAPrivateKey]) -> None:
        self.pool = pool
        self.issued = 0

    def generate_private_key(self, key_size: int, public_exponent: int) -> RSAPrivateKey:
        key = self.pool[self.issued % len(self.pool)]
        self.issued += 1
        return key


@pytest.fixture(scope="session")
def rsa_pool() -> list[RSAPrivateKey]:
    return [
        rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(POOL_SIZE)
    ]


@pytest.fixture
def key_provider(rsa_pool: list[RSAPrivateKey]) -> PooledKeyProvider:
    return PooledKeyProvider(rsa_pool)


@pytest.fixture
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    """Config with every directory inside tmp_path."""
    for name in list(os.environ):
        if name.startswith("SSHISTORIAN_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SSHISTORIAN_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("SSHISTORIAN_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SSHISTORIAN_TEMP_DIR", str(tmp_path / "scratch"))
    cfg = Config()
    cfg.LOG_DIR.mkdir(parents=True)
    cfg.TEMP_DIR.mkdir(parents=True)
    return cfg


@pytest.fixture
def settings() -> EncryptionSettings:
    return EncryptionSettings(enabled=True)


@pytest.fixture
def keystore(config: Config, settings: EncryptionSettings, key_provider: PooledKeyProvider) -> KeyStore:
    return KeyStore(config=config, settings=settings, key_provider=key_provider)


@pytest.fixture
def key_pair(keystore: KeyStore):
    return keystore.generate()


@pytest.fixture
def guard(config: Config) -> PathGuard:
    return PathGuard(config.LOG_DIR, scratch_roots=[config.TEMP_DIR])


@pytest.fixture
def metadata() -> InMemoryMetadataSink:
    return InMemoryMetadataSink()


@pytest.fixture
def cipher(guard: PathGuard, keystore: KeyStore, metadata: InMemoryMetadataSink) -> HybridCipher:
    return HybridCipher(guard, keystore, metadata=metadata)


@pytest.fixture
def make_recording(config: Config):
    """Write a plaintext recording file into the log directory."""

    def _make(name: str = "0b7c2a54-1d3e-4f6a-8b9c-0d1e2f3a4b5c.log", data: bytes = b"ssh session\n") -> Path:
        path = config.LOG_DIR / name
        path.write_bytes(data)
        return path

    return _make
