import json
import stat
from datetime import datetime, timezone
from pathlib import Path

import pytest

from sshistorian.storage.metadata import InMemoryMetadataSink, JsonMetadataSink

FP_A = "aa:" * 15 + "aa"
FP_B = "bb:" * 15 + "bb"
WHEN = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


@pytest.fixture
def json_file(tmp_path: Path) -> Path:
    return tmp_path / "config" / "encryption_info.json"


def test_in_memory_record_and_lookup() -> None:
    sink = InMemoryMetadataSink()
    assert sink.lookup("s1") is None

    sink.record("s1", FP_A, WHEN)
    assert sink.lookup("s1") == FP_A
    record = sink.get("s1")
    assert record.encrypted_at == WHEN
    assert record.recipients == []
    assert record.accepts(FP_A)
    assert not record.accepts(FP_B)


def test_update_fingerprint() -> None:
    sink = InMemoryMetadataSink()
    assert sink.update_fingerprint("s1", FP_B) is False

    sink.record("s1", FP_A, WHEN, recipients=[FP_B])
    assert sink.update_fingerprint("s1", FP_B) is True
    assert sink.lookup("s1") == FP_B
    assert sink.get("s1").encrypted_at == WHEN


def test_delete() -> None:
    sink = InMemoryMetadataSink()
    sink.record("s1", FP_A, WHEN)
    sink.delete("s1")
    sink.delete("s1")
    assert sink.get("s1") is None


def test_json_sink_persists(json_file: Path) -> None:
    sink = JsonMetadataSink(json_file)
    sink.record("s1", FP_A, WHEN, recipients=[FP_B])
    sink.record("s2", FP_B, WHEN)

    assert json_file.is_file()
    assert stat.S_IMODE(json_file.stat().st_mode) == 0o600
    raw = json.loads(json_file.read_text())
    assert raw["s1"]["fingerprint"] == FP_A
    assert raw["s1"]["recipients"] == [FP_B]

    reloaded = JsonMetadataSink(json_file)
    assert reloaded.lookup("s1") == FP_A
    assert reloaded.get("s1").encrypted_at == WHEN
    assert reloaded.get("s2").accepts(FP_B)

    reloaded.update_fingerprint("s2", FP_A)
    reloaded.delete("s1")
    again = JsonMetadataSink(json_file)
    assert again.lookup("s2") == FP_A
    assert again.get("s1") is None


def test_json_sink_missing_file(json_file: Path) -> None:
    sink = JsonMetadataSink(json_file)
    assert sink.records == {}
    assert not json_file.exists()


def test_json_sink_corrupt_file(json_file: Path) -> None:
    json_file.parent.mkdir(parents=True)
    json_file.write_text("{not json")
    sink = JsonMetadataSink(json_file)
    assert sink.records == {}

    sink.record("s1", FP_A, WHEN)
    assert JsonMetadataSink(json_file).lookup("s1") == FP_A


def test_json_sink_skips_invalid_records(json_file: Path) -> None:
    json_file.parent.mkdir(parents=True)
    json_file.write_text(
        json.dumps(
            {
                "good": {"session_id": "good", "fingerprint": FP_A, "encrypted_at": WHEN.isoformat()},
                "bad": {"session_id": "bad"},
            }
        )
    )
    sink = JsonMetadataSink(json_file)
    assert sink.lookup("good") == FP_A
    assert sink.get("bad") is None


def test_update_fingerprint_keeping_previous(json_file: Path) -> None:
    sink = JsonMetadataSink(json_file)
    sink.record("s1", FP_A, WHEN)

    assert sink.update_fingerprint("s1", FP_B, keep_previous=True)
    record = JsonMetadataSink(json_file).get("s1")
    assert record.fingerprint == FP_B
    assert record.recipients == [FP_A]
    assert record.accepts(FP_A)
    assert record.accepts(FP_B)
