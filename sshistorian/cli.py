"""
Command-line interface for SSHistorian log encryption.
"""

from __future__ import annotations

import logging
import os
from functools import wraps
from pathlib import Path
from typing import Any, Callable

import click

from sshistorian.common import Config, setup_logger
from sshistorian.common.exceptions import KeyNotFound, KeyOverwriteRefused, SSHistorianError
from sshistorian.crypto.keystore import KeyStore
from sshistorian.crypto.primitives import is_file_encrypted
from sshistorian.crypto.rotation import RotationCoordinator, read_manifest
from sshistorian.sessions import build_cipher
from sshistorian.storage.metadata import JsonMetadataSink


class CryptoCommandError(click.ClickException):
    """ClickException that keeps the subsystem's exit code."""

    def __init__(self, err: SSHistorianError) -> None:
        super().__init__(str(err))
        self.exit_code = err.exit_code


def reports_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except SSHistorianError as err:
            raise CryptoCommandError(err) from err

    return wrapper


@click.group()
@click.option("--log-dir", default=None, help="Session log directory (default: ~/sshistorian_logs)")
@click.option("--keys-dir", default=None, help="Key directory (default: ~/.config/sshistorian/keys)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, log_dir: str | None, keys_dir: str | None, verbose: bool) -> None:  # noqa: FBT001
    """SSHistorian log encryption"""
    if log_dir:
        os.environ["SSHISTORIAN_LOG_DIR"] = log_dir
    if keys_dir:
        os.environ["SSHISTORIAN_KEYS_DIR"] = keys_dir
    config = Config()
    setup_logger(logging.getLogger("sshistorian"), logging.DEBUG if verbose else config.LOG_LEVEL)
    ctx.obj = config


@cli.command()
@click.option("--output-dir", default=None, help="Write the pair here instead of the active location")
@click.option("--force", is_flag=True, help="Overwrite existing keys without asking")
@click.pass_obj
@reports_errors
def keygen(config: Config, output_dir: str | None, force: bool) -> None:  # noqa: FBT001
    """Generate RSA keys for encryption"""
    keystore = KeyStore(config=config)
    try:
        pair = keystore.generate(
            Path(output_dir) if output_dir else None,
            force=force,
            confirm=lambda prompt: click.confirm(prompt, default=False),
        )
    except KeyOverwriteRefused:
        click.echo("Key generation canceled.")
        return
    click.echo(f"Private key: {pair.private_key_path}")
    click.echo(f"Public key: {pair.public_key_path}")
    click.echo(f"Fingerprint: {pair.fingerprint}")
    click.echo("Keys generated and saved")


@cli.command()
@click.argument("public_key", required=False)
@click.pass_obj
@reports_errors
def fingerprint(config: Config, public_key: str | None) -> None:
    """Print the fingerprint of a public key"""
    keystore = KeyStore(config=config)
    path = Path(public_key) if public_key else keystore.locate_active()[1]
    click.echo(keystore.fingerprint(path))


@cli.command()
@click.argument("plaintext")
@click.argument("ciphertext", required=False)
@click.option("--public-key", default=None, help="Public key to encrypt with")
@click.option("--session-id", default=None, help="Record the key fingerprint for this session")
@click.pass_obj
@reports_errors
def encrypt(
    config: Config,
    plaintext: str,
    ciphertext: str | None,
    public_key: str | None,
    session_id: str | None,
) -> None:
    """Encrypt a .log or .timing file and remove the original"""
    cipher = build_cipher(config)
    target = ciphertext or f"{plaintext}.enc"
    fp = cipher.encrypt(plaintext, target, public_key, session_id=session_id)
    click.echo(f"Encrypted {plaintext} -> {target} (key {fp})")


@cli.command()
@click.argument("ciphertext")
@click.argument("output")
@click.option("--private-key", default=None, help="Private key to decrypt with")
@click.option("--session-id", default=None, help="Check the key against this session's record")
@click.pass_obj
@reports_errors
def decrypt(
    config: Config,
    ciphertext: str,
    output: str,
    private_key: str | None,
    session_id: str | None,
) -> None:
    """Decrypt an encrypted log file"""
    cipher = build_cipher(config)
    key_path = Path(private_key) if private_key else cipher.keystore.locate_active()[0]
    if not key_path.is_file():
        click.echo(f"Private key not found: {key_path}", err=True)
        key_path = Path(click.prompt("Enter path to private key"))
        if not key_path.is_file():
            msg = f"Invalid private key path: {key_path}"
            raise KeyNotFound(msg)
    cipher.decrypt(ciphertext, output, key_path, session_id=session_id)
    click.echo(f"Decrypted {ciphertext} -> {output}")


@cli.command()
@click.argument("manifest")
@click.option("--purge-backup", is_flag=True, help="Delete the old key backup if every file was migrated")
@click.pass_obj
@reports_errors
def rotate(config: Config, manifest: str, purge_backup: bool) -> None:  # noqa: FBT001
    """Rotate keys and re-encrypt the files listed in MANIFEST"""
    try:
        files = read_manifest(manifest)
    except FileNotFoundError as err:
        raise click.ClickException(str(err)) from err

    cipher = build_cipher(config)
    coordinator = RotationCoordinator(cipher.keystore, cipher)
    result = coordinator.rotate(files)
    click.echo(f"Old key: {result.old_fingerprint}")
    click.echo(f"New key: {result.new_fingerprint}")
    click.echo(f"Re-encrypted: {len(result.rotated)}, skipped: {len(result.skipped)}, failed: {len(result.failed)}")
    for path in result.failed:
        click.echo(f"  FAILED {path}: {result.errors.get(path, '')}", err=True)
    for session_id in result.mixed_sessions:
        click.echo(f"  Session {session_id} has files on both keys", err=True)
    if result.failed:
        click.echo(f"Old keys kept in {result.backup_dir}", err=True)
    if purge_backup or result.failed:
        coordinator.confirm(result)
    else:
        click.echo(f"Old keys backed up to {result.backup_dir}")


@cli.command()
@click.pass_obj
@reports_errors
def status(config: Config) -> None:
    """Show encryption settings and the active key"""
    settings = config.encryption_settings()
    keystore = KeyStore(config=config, settings=settings)
    private_path, public_path = keystore.locate_active()
    click.echo(f"Encryption: {'Enabled' if settings.enabled else 'Disabled'} ({settings.method})")
    click.echo(f"Log directory: {config.LOG_DIR}")
    click.echo(f"Public key: {public_path}")
    click.echo(f"Private key: {private_path}{'' if private_path.is_file() else ' (missing)'}")
    if public_path.is_file():
        click.echo(f"Fingerprint: {keystore.fingerprint(public_path)}")
    if settings.multi_recipient:
        for extra in settings.additional_keys:
            click.echo(f"Additional recipient: {extra}")


@cli.command()
@click.argument("session_id")
@click.pass_obj
def info(config: Config, session_id: str) -> None:
    """Show the encryption record of a session"""
    record = JsonMetadataSink(config.METADATA_FILE).get(session_id)
    if record is None:
        msg = f"No encryption info for session {session_id}"
        raise click.ClickException(msg)
    click.echo(f"Session: {record.session_id}")
    click.echo(f"Fingerprint: {record.fingerprint}")
    click.echo(f"Encrypted at: {record.encrypted_at.isoformat()}")
    for recipient in record.recipients:
        click.echo(f"Recipient: {recipient}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def check(path: str) -> None:
    """Tell whether a file is encrypted"""
    click.echo("encrypted" if is_file_encrypted(path) else "plaintext")


if __name__ == "__main__":
    cli()
