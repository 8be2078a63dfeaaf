from __future__ import annotations

import json
from pathlib import Path

import pytest

from pulse_hub.history import DEFAULT_CAPACITY, HistoryEntry, HistoryLog


def _entry(index: int, success: bool = True) -> HistoryEntry:
    return HistoryEntry(
        event_type="ScoreCreatedIntegrationEvent",
        external_id=f"user-{index}",
        payload={"type": "sleep", "score": 0.5},
        header_summary={"X-Signature": "missing"},
        success=success,
    )


def test_ring_keeps_newest_entries(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path / "history.json")
    assert log.capacity == DEFAULT_CAPACITY == 1000
    for index in range(1, 1002):
        assert log.append(_entry(index))

    assert log.total() == 1000
    newest = log.recent(1)
    assert newest[0].external_id == "user-1001"
    oldest = log.chronological()[0]
    assert oldest.external_id == "user-2"


def test_recent_is_newest_first_and_limited(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path / "history.json", capacity=5)
    for index in range(3):
        log.append(_entry(index))
    assert [entry.external_id for entry in log.recent(2)] == ["user-2", "user-1"]
    assert [entry.external_id for entry in log.chronological()] == ["user-0", "user-1", "user-2"]


def test_entries_persist_with_camel_case_keys(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    HistoryLog(path).append(_entry(1, success=False))
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw[0]["eventType"] == "ScoreCreatedIntegrationEvent"
    assert raw[0]["externalId"] == "user-1"
    assert raw[0]["headerSummary"] == {"X-Signature": "missing"}
    assert raw[0]["success"] is False


def test_clear_truncates(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path / "history.json")
    log.append(_entry(1))
    log.clear()
    assert log.total() == 0
    assert log.recent() == []


def test_unreadable_file_starts_a_new_log(tmp_path: Path) -> None:
    path = tmp_path / "history.json"
    path.write_text("[{broken", encoding="utf-8")
    log = HistoryLog(path)
    assert log.recent() == []
    assert log.append(_entry(1))
    assert log.total() == 1


def test_append_failure_is_reported_not_raised(tmp_path: Path) -> None:
    directory = tmp_path / "history.json"
    directory.mkdir()
    assert HistoryLog(directory).append(_entry(1)) is False


def test_capacity_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        HistoryLog(tmp_path / "history.json", capacity=0)


def test_failed_write_keeps_previous_entries(tmp_path: Path, monkeypatch) -> None:
    log = HistoryLog(tmp_path / "history.json")
    assert log.append(_entry(1))

    def fail_replace(*_args, **_kwargs) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("pulse_hub.jsonfile.os.replace", fail_replace)
    assert log.append(_entry(2)) is False
    monkeypatch.undo()

    assert [entry.external_id for entry in log.recent()] == ["user-1"]
    assert not list(tmp_path.glob("*.tmp"))
