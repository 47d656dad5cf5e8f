"""
Pydantic models for key material, artifacts and encryption bookkeeping.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from sshistorian.common.exceptions import RotationPartialFailure

SUPPORTED_METHODS = ("asymmetric",)
_TRUE_VALUES = {"1", "true", "yes", "on", "y"}


class EncryptionSettings(BaseModel):
    """Recognized ``encryption.*`` configuration options."""

    enabled: bool = False
    method: str = "asymmetric"
    public_key: Path | None = None
    private_key: Path | None = None
    multi_recipient: bool = False
    additional_keys: list[Path] = Field(default_factory=list)

    @field_validator("enabled", "multi_recipient", mode="before")
    @classmethod
    def _parse_bool(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        if value not in SUPPORTED_METHODS:
            msg = f"Unsupported encryption method: {value}"
            raise ValueError(msg)
        return value

    @field_validator("public_key", "private_key", mode="before")
    @classmethod
    def _empty_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            return Path(value).expanduser()
        return value

    @field_validator("additional_keys", mode="before")
    @classmethod
    def _split_keys(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",")]
        return [Path(str(v)).expanduser() for v in value if str(v).strip()]

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> EncryptionSettings:
        """Build settings from dotted config keys (``encryption.enabled`` ...)."""
        prefix = "encryption."
        fields = {
            key[len(prefix) :]: value
            for key, value in values.items()
            if key.startswith(prefix) and key[len(prefix) :] in cls.model_fields
        }
        return cls(**fields)

    def recipient_keys(self) -> list[Path]:
        """Additional public keys that should also receive the wrapped key."""
        return list(self.additional_keys) if self.multi_recipient else []


class KeyPair(BaseModel):
    private_key_path: Path
    public_key_path: Path
    fingerprint: str
    private_mode: int = 0o600
    public_mode: int = 0o644


class EncryptedArtifactPair(BaseModel):
    ciphertext_path: Path
    wrapped_key_path: Path
    recipient_key_paths: list[Path] = Field(default_factory=list)

    def exists(self) -> bool:
        """Both primary artifacts exist and are non-empty."""
        return all(
            p.is_file() and p.stat().st_size > 0
            for p in (self.ciphertext_path, self.wrapped_key_path)
        )


class EncryptionRecord(BaseModel):
    session_id: str
    fingerprint: str
    encrypted_at: datetime
    recipients: list[str] = Field(default_factory=list)

    def accepts(self, fingerprint: str) -> bool:
        """Whether a key with this fingerprint protects the session."""
        return fingerprint == self.fingerprint or fingerprint in self.recipients


class RotationState(str, Enum):
    IDLE = "idle"
    KEYS_BACKED_UP = "keys_backed_up"
    NEW_KEYS_GENERATED = "new_keys_generated"
    REENCRYPTING = "reencrypting"
    DONE = "done"
    ROLLED_BACK = "rolled_back"


class RotationResult(BaseModel):
    state: RotationState = RotationState.IDLE
    backup_dir: Path | None = None
    old_fingerprint: str | None = None
    new_fingerprint: str | None = None
    rotated: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    mixed_sessions: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state is RotationState.DONE and not self.failed

    def raise_for_failures(self) -> None:
        """Raise RotationPartialFailure listing files still on the old key."""
        if self.failed:
            msg = (
                f"{len(self.failed)} file(s) could not be re-encrypted and remain "
                f"on the old key (backup kept in {self.backup_dir})"
            )
            raise RotationPartialFailure(msg, list(self.failed))
