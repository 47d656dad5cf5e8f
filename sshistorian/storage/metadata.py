"""
Stores which public key protected each session.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from sshistorian.common.fileops import atomic_write_bytes, secure_mkdir
from sshistorian.common.models import EncryptionRecord

logger = logging.getLogger(__name__)


class InMemoryMetadataSink:
    """Keeps encryption records in a dict."""

    def __init__(self) -> None:
        self.records: dict[str, EncryptionRecord] = {}

    def record(
        self,
        session_id: str,
        fingerprint: str,
        timestamp: datetime,
        recipients: Iterable[str] = (),
    ) -> None:
        self.records[session_id] = EncryptionRecord(
            session_id=session_id,
            fingerprint=fingerprint,
            encrypted_at=timestamp,
            recipients=list(recipients),
        )
        self._save()

    def lookup(self, session_id: str) -> str | None:
        record = self.records.get(session_id)
        return record.fingerprint if record else None

    def get(self, session_id: str) -> EncryptionRecord | None:
        return self.records.get(session_id)

    def update_fingerprint(
        self, session_id: str, fingerprint: str, *, keep_previous: bool = False
    ) -> bool:
        """Replace the fingerprint after a rotation.

        With ``keep_previous`` the old fingerprint stays accepted as a
        recipient, for sessions only partly moved to the new key.
        """
        record = self.records.get(session_id)
        if record is None:
            return False
        update: dict[str, object] = {"fingerprint": fingerprint}
        if keep_previous and record.fingerprint not in record.recipients:
            update["recipients"] = [*record.recipients, record.fingerprint]
        self.records[session_id] = record.model_copy(update=update)
        self._save()
        return True

    def delete(self, session_id: str) -> None:
        if self.records.pop(session_id, None) is not None:
            self._save()

    def _save(self) -> None:
        """Persist records; nothing to do in memory."""


class JsonMetadataSink(InMemoryMetadataSink):
    """Encryption records persisted to a JSON file keyed by session id."""

    def __init__(self, file_path: Path | str) -> None:
        super().__init__()
        self.file_path = Path(file_path)
        self.records = self._load(self.file_path)

    @staticmethod
    def _load(file_path: Path) -> dict[str, EncryptionRecord]:
        try:
            with file_path.open() as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as err:
            logger.error("Ignoring unreadable encryption info file %s: %s", file_path, err)
            return {}

        records = {}
        for session_id, raw in data.items():
            try:
                records[session_id] = EncryptionRecord.model_validate(raw)
            except ValidationError as err:
                logger.warning("Skipping invalid encryption record %s: %s", session_id, err)
        return records

    def _save(self) -> None:
        secure_mkdir(self.file_path.parent)
        payload = {k: v.model_dump(mode="json") for k, v in self.records.items()}
        atomic_write_bytes(
            self.file_path,
            json.dumps(payload, indent=2, sort_keys=True).encode("utf-8"),
        )
