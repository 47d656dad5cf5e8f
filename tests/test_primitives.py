import os

import pytest

from sshistorian.crypto.primitives import (
    SALT_MAGIC,
    TAG_SIZE,
    CbcHmacCipher,
    CipherError,
    RsaOaepKeyWrapper,
    is_file_encrypted,
)


@pytest.fixture
def aes() -> CbcHmacCipher:
    return CbcHmacCipher()


@pytest.mark.parametrize("size", [0, 1, 15, 16, 17, 4096])
def test_round_trip(aes: CbcHmacCipher, size: int) -> None:
    key = os.urandom(32)
    data = os.urandom(size)
    assert aes.decrypt(key, aes.encrypt(key, data)) == data


def test_salted_framing_and_overhead(aes: CbcHmacCipher) -> None:
    data = b"x" * 100
    body = aes.encrypt(os.urandom(32), data)
    assert body.startswith(SALT_MAGIC)
    # header + salt + padded to 112 + tag
    assert len(body) == 16 + 112 + TAG_SIZE


def test_random_salt_per_call(aes: CbcHmacCipher) -> None:
    key = os.urandom(32)
    assert aes.encrypt(key, b"same") != aes.encrypt(key, b"same")


def test_wrong_key_fails_authentication(aes: CbcHmacCipher) -> None:
    body = aes.encrypt(os.urandom(32), b"secret")
    with pytest.raises(CipherError, match="authentication"):
        aes.decrypt(os.urandom(32), body)


def test_tampered_ciphertext(aes: CbcHmacCipher) -> None:
    key = os.urandom(32)
    body = bytearray(aes.encrypt(key, b"secret" * 10))
    body[20] ^= 0x01
    with pytest.raises(CipherError):
        aes.decrypt(key, bytes(body))


def test_malformed_inputs(aes: CbcHmacCipher) -> None:
    key = os.urandom(32)
    with pytest.raises(CipherError, match="Salted__"):
        aes.decrypt(key, b"plain text, not encrypted at all" * 3)
    with pytest.raises(CipherError, match="Truncated"):
        aes.decrypt(key, SALT_MAGIC + b"\x00" * 8 + b"\x00" * TAG_SIZE)
    with pytest.raises(CipherError):
        aes.encrypt(b"short", b"data")


def test_key_wrap_round_trip(rsa_pool) -> None:
    wrapper = RsaOaepKeyWrapper()
    key = os.urandom(32)
    wrapped = wrapper.wrap(rsa_pool[0].public_key(), key)
    assert len(wrapped) == 256  # noqa: PLR2004
    assert wrapper.unwrap(rsa_pool[0], wrapped) == key


def test_key_unwrap_with_wrong_key(rsa_pool) -> None:
    wrapper = RsaOaepKeyWrapper()
    wrapped = wrapper.wrap(rsa_pool[0].public_key(), os.urandom(32))
    with pytest.raises(ValueError):
        wrapper.unwrap(rsa_pool[1], wrapped)


def test_is_file_encrypted(tmp_path, aes: CbcHmacCipher) -> None:
    plain = tmp_path / "a.log"
    plain.write_bytes(b"hello")
    framed = tmp_path / "b.log"
    framed.write_bytes(aes.encrypt(os.urandom(32), b"hello"))
    suffixed = tmp_path / "c.log.enc"
    suffixed.write_bytes(aes.encrypt(os.urandom(32), b"hello"))

    assert not is_file_encrypted(plain)
    assert is_file_encrypted(framed)
    assert is_file_encrypted(suffixed)
    with pytest.raises(FileNotFoundError):
        is_file_encrypted(tmp_path / "missing.log")
