import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from sshistorian.cli import cli
from sshistorian.common.exceptions import ERR_CRYPT_DECRYPT, ERR_CRYPT_GENERAL

SESSION = "0b7c2a54-1d3e-4f6a-8b9c-0d1e2f3a4b5c"


@pytest.fixture
def runner(config, monkeypatch) -> CliRunner:
    # The group writes these into os.environ; register them so they are restored
    monkeypatch.setenv("SSHISTORIAN_LOG_DIR", str(config.LOG_DIR))
    monkeypatch.setenv("SSHISTORIAN_KEYS_DIR", str(config.KEYS_DIR))
    # Keep the group from binding a StreamHandler to one invocation's stderr
    monkeypatch.setattr(logging.getLogger("sshistorian"), "handlers", [logging.NullHandler()])
    return CliRunner()


@pytest.fixture
def cli_keys(runner: CliRunner, config) -> Path:
    result = runner.invoke(cli, ["keygen"])
    assert result.exit_code == 0, result.output
    return config.KEYS_DIR


def test_cli_help(runner: CliRunner) -> None:
    """Test CLI help command."""
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Usage:" in result.output
    for command in ("keygen", "encrypt", "decrypt", "rotate", "status"):
        assert command in result.output


def test_cli_keygen(runner: CliRunner, tmp_path: Path) -> None:
    """Test keygen command."""
    keys_dir = tmp_path / "keys"

    result = runner.invoke(cli, ["--keys-dir", str(keys_dir), "keygen"])

    assert result.exit_code == 0
    assert "Keys generated and saved" in result.output
    assert "Fingerprint:" in result.output
    assert (keys_dir / "private.pem").exists()
    assert (keys_dir / "public.pem").exists()


def test_cli_keygen_declined_overwrite(runner: CliRunner, cli_keys: Path) -> None:
    before = (cli_keys / "public.pem").read_bytes()

    result = runner.invoke(cli, ["keygen"], input="n\n")

    assert result.exit_code == 0
    assert "Overwrite?" in result.output
    assert "Key generation canceled." in result.output
    assert (cli_keys / "public.pem").read_bytes() == before


def test_cli_keygen_force(runner: CliRunner, cli_keys: Path) -> None:
    before = (cli_keys / "public.pem").read_bytes()
    result = runner.invoke(cli, ["keygen", "--force"])
    assert result.exit_code == 0
    assert (cli_keys / "public.pem").read_bytes() != before


def test_cli_fingerprint(runner: CliRunner, cli_keys: Path) -> None:
    result = runner.invoke(cli, ["fingerprint"])
    assert result.exit_code == 0
    assert len(result.output.strip().split(":")) == 16  # noqa: PLR2004

    missing = runner.invoke(cli, ["fingerprint", str(cli_keys / "nope.pem")])
    assert missing.exit_code != 0
    assert "not found" in missing.output


def test_cli_encrypt_decrypt(runner: CliRunner, cli_keys: Path, make_recording, config) -> None:
    plain = make_recording(name=f"{SESSION}.log", data=b"hello from ssh\n")

    result = runner.invoke(cli, ["encrypt", str(plain), "--session-id", SESSION])
    assert result.exit_code == 0, result.output
    assert not plain.exists()
    enc = Path(f"{plain}.enc")
    assert enc.exists()

    checked = runner.invoke(cli, ["check", str(enc)])
    assert checked.output.strip() == "encrypted"

    out = config.TEMP_DIR / plain.name
    result = runner.invoke(cli, ["decrypt", str(enc), str(out), "--session-id", SESSION])
    assert result.exit_code == 0, result.output
    assert out.read_bytes() == b"hello from ssh\n"

    info = runner.invoke(cli, ["info", SESSION])
    assert info.exit_code == 0
    assert "Fingerprint:" in info.output


def test_cli_encrypt_rejects_outside_path(runner: CliRunner, cli_keys: Path, tmp_path: Path) -> None:
    outside = tmp_path / f"{SESSION}.log"
    outside.write_text("x")
    result = runner.invoke(cli, ["encrypt", str(outside)])
    assert result.exit_code != 0
    assert "Security violation" in result.output
    assert outside.exists()


def test_cli_decrypt_wrong_key_exit_code(runner: CliRunner, cli_keys: Path, make_recording, config, tmp_path: Path) -> None:
    plain = make_recording(name=f"{SESSION}.log")
    runner.invoke(cli, ["encrypt", str(plain)])
    other = tmp_path / "other"
    runner.invoke(cli, ["keygen", "--output-dir", str(other)])

    out = config.TEMP_DIR / plain.name
    result = runner.invoke(
        cli, ["decrypt", f"{plain}.enc", str(out), "--private-key", str(other / "private.pem")]
    )
    assert result.exit_code == ERR_CRYPT_DECRYPT
    assert not out.exists()


def test_cli_decrypt_prompts_for_missing_key(runner: CliRunner, cli_keys: Path, make_recording, config) -> None:
    plain = make_recording(name=f"{SESSION}.log", data=b"prompted")
    runner.invoke(cli, ["encrypt", str(plain)])
    moved = cli_keys / "moved.pem"
    (cli_keys / "private.pem").rename(moved)

    out = config.TEMP_DIR / plain.name
    result = runner.invoke(cli, ["decrypt", f"{plain}.enc", str(out)], input=f"{moved}\n")
    assert result.exit_code == 0, result.output
    assert "Enter path to private key" in result.output
    assert out.read_bytes() == b"prompted"


def test_cli_rotate(runner: CliRunner, cli_keys: Path, make_recording, config, tmp_path: Path) -> None:
    plain = make_recording(name=f"{SESSION}.log")
    runner.invoke(cli, ["encrypt", str(plain)])
    manifest = tmp_path / "files.txt"
    manifest.write_text(f"{plain}.enc\n{config.LOG_DIR / 'gone.log.enc'}\n")

    result = runner.invoke(cli, ["rotate", str(manifest), "--purge-backup"])

    assert result.exit_code == 0, result.output
    assert "Re-encrypted: 1, skipped: 1, failed: 0" in result.output
    assert not list(cli_keys.glob("key_backup_*"))


def test_cli_rotate_partial_failure(runner: CliRunner, cli_keys: Path, make_recording, config, tmp_path: Path) -> None:
    plain = make_recording(name=f"{SESSION}.log")
    runner.invoke(cli, ["encrypt", str(plain)])
    Path(f"{plain}.enc.aes.enc").write_bytes(b"\x00" * 256)
    manifest = tmp_path / "files.txt"
    manifest.write_text(f"{plain}.enc\n")

    result = runner.invoke(cli, ["rotate", str(manifest)])

    assert result.exit_code == ERR_CRYPT_GENERAL
    assert "failed: 1" in result.output
    assert list(cli_keys.glob("key_backup_*"))


def test_cli_rotate_missing_manifest(runner: CliRunner, tmp_path: Path) -> None:
    result = runner.invoke(cli, ["rotate", str(tmp_path / "missing.txt")])
    assert result.exit_code != 0
    assert "File list not found" in result.output


def test_cli_status(runner: CliRunner, cli_keys: Path, monkeypatch) -> None:
    monkeypatch.setenv("SSHISTORIAN_ENCRYPTION_ENABLED", "true")
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "Encryption: Enabled (asymmetric)" in result.output
    assert "Fingerprint:" in result.output


def test_cli_info_unknown_session(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["info", "nope"])
    assert result.exit_code != 0
    assert "No encryption info" in result.output


def test_cli_check_plaintext(runner: CliRunner, make_recording) -> None:
    plain = make_recording(name=f"{SESSION}.log")
    result = runner.invoke(cli, ["check", str(plain)])
    assert result.output.strip() == "plaintext"
