"""
Configuration settings for the log encryption subsystem.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from sshistorian.common.exceptions import ConfigurationError
from sshistorian.common.models import EncryptionSettings

ENV_PREFIX = "SSHISTORIAN_ENCRYPTION_"


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Directories
        self.CONFIG_DIR: Path = Path(
            os.getenv("SSHISTORIAN_CONFIG_DIR", str(Path.home() / ".config" / "sshistorian"))
        ).expanduser()
        self.KEYS_DIR: Path = Path(
            os.getenv("SSHISTORIAN_KEYS_DIR", str(self.CONFIG_DIR / "keys"))
        ).expanduser()
        self.LOG_DIR: Path = Path(
            os.getenv("SSHISTORIAN_LOG_DIR", str(Path.home() / "sshistorian_logs"))
        ).expanduser()
        self.TEMP_DIR: Path = Path(
            os.getenv("SSHISTORIAN_TEMP_DIR", str(Path(tempfile.gettempdir()) / "sshistorian"))
        ).expanduser()
        self.METADATA_FILE: Path = Path(
            os.getenv("SSHISTORIAN_METADATA_FILE", str(self.CONFIG_DIR / "encryption_info.json"))
        ).expanduser()

        # Key files
        self.PRIVATE_KEY_NAME: str = "private.pem"
        self.PUBLIC_KEY_NAME: str = "public.pem"
        self.DEFAULT_PRIVATE_KEY_PATH: Path = self.KEYS_DIR / self.PRIVATE_KEY_NAME
        self.DEFAULT_PUBLIC_KEY_PATH: Path = self.KEYS_DIR / self.PUBLIC_KEY_NAME

        # Cryptographic parameters
        self.RSA_KEY_SIZE: int = 2048
        self.RSA_PUBLIC_EXPONENT: int = 65537
        self.SYMMETRIC_KEY_SIZE: int = 32  # AES-256

        # Permissions
        self.PRIVATE_KEY_MODE: int = 0o600
        self.PUBLIC_KEY_MODE: int = 0o644
        self.ARTIFACT_MODE: int = 0o600
        self.DIR_MODE: int = 0o700

        # Logging
        self.LOG_LEVEL: int = logging.getLevelName(
            os.getenv("SSHISTORIAN_LOG_LEVEL", "INFO").upper()
        )
        if not isinstance(self.LOG_LEVEL, int):
            self.LOG_LEVEL = logging.INFO

    def encryption_settings(self) -> EncryptionSettings:
        """Load ``encryption.*`` options from SSHISTORIAN_ENCRYPTION_* env vars."""
        values = {
            f"encryption.{name[len(ENV_PREFIX):].lower()}": value
            for name, value in os.environ.items()
            if name.startswith(ENV_PREFIX)
        }
        try:
            return EncryptionSettings.from_mapping(values)
        except ValidationError as err:
            msg = f"Invalid encryption settings: {err}"
            raise ConfigurationError(msg) from err
