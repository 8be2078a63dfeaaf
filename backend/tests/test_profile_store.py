"""Tests for the JSON profile store, its backup rotation and locking."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pulse_hub.events import classify
from pulse_hub.merge import apply_event
from pulse_hub.store import ProfileStore, StoreWriteError


def _store(tmp_path: Path) -> ProfileStore:
    return ProfileStore(tmp_path / "webhook-data.json", tmp_path / "webhook-backup.json")


def test_load_without_files_is_empty(tmp_path: Path) -> None:
    assert _store(tmp_path).load() == {}


def test_save_of_load_is_idempotent(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("ext-1", {"accountId": "acc-1", "scores": {"sleep": 0.5}, "nickname": "sam"})
    before = json.loads(store.path.read_text(encoding="utf-8"))
    store.save(store.load())
    after = json.loads(store.path.read_text(encoding="utf-8"))
    assert before == after
    assert after["ext-1"]["nickname"] == "sam"
    assert after["ext-1"]["scores"]["sleep"]["value"] == 0.5


def test_falls_back_to_backup_when_primary_missing(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("a", {"accountId": "acc-a"})
    store.upsert("b", {"accountId": "acc-b"})
    assert set(store.load()) == {"a", "b"}

    store.path.unlink()
    assert set(store.load()) == {"a"}


def test_falls_back_to_backup_when_primary_corrupt(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("a", {"accountId": "acc-a"})
    store.upsert("b", {"accountId": "acc-b"})
    store.path.write_text("{not json", encoding="utf-8")

    assert set(store.load()) == {"a"}


def test_corrupt_primary_is_not_rotated_into_backup(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("a", {"accountId": "acc-a"})
    store.upsert("b", {"accountId": "acc-b"})
    store.path.write_text("{not json", encoding="utf-8")

    store.upsert("c", {"accountId": "acc-c"})

    backup = json.loads(store.backup_path.read_text(encoding="utf-8"))
    assert set(backup) == {"a"}
    assert set(store.load()) == {"a", "c"}


def test_sequential_scores_keep_latest(tmp_path: Path) -> None:
    store = _store(tmp_path)
    headers = {"X-Event-Type": "ScoreCreatedIntegrationEvent", "X-External-Id": "ext-1"}
    for score in (0.4, 0.6):
        event = classify(headers, {"type": "sleep", "score": score})
        store.mutate(lambda profiles: apply_event(profiles, event))
    record = store.get("ext-1")
    assert record is not None
    assert record.scores["sleep"].value == 0.6


def test_concurrent_mutations_lose_no_updates(tmp_path: Path) -> None:
    store = _store(tmp_path)
    errors = []

    def worker(index: int) -> None:
        try:
            store.upsert(f"user-{index}", {"accountId": f"acc-{index}"})
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    profiles = store.load()
    assert len(profiles) == 20
    assert profiles["user-7"].account_id == "acc-7"


def test_get_matches_profile_id_alias(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("ext-1", {"profileId": "p-1"})
    record = store.get("p-1")
    assert record is not None
    assert record.external_id == "ext-1"
    assert store.get("nobody") is None


def test_upsert_does_not_touch_department(tmp_path: Path) -> None:
    store = _store(tmp_path)
    merged = store.upsert("ext-1", {"department": "sales"})
    assert merged.department == "unassigned"


def test_clear_empties_store(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert("a", {"accountId": "acc-a"})
    store.clear()
    assert store.load() == {}
    assert json.loads(store.path.read_text(encoding="utf-8")) == {}


def test_unwritable_location_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    store = ProfileStore(blocker / "webhook-data.json")
    with pytest.raises(StoreWriteError):
        store.save({})


def test_unreadable_record_survives_later_writes(tmp_path: Path) -> None:
    store = _store(tmp_path)
    legacy = {"externalId": "keep", "scores": "not-a-map", "note": "imported"}
    store.path.write_text(json.dumps({"keep": legacy, "ok": {"externalId": "ok"}}), encoding="utf-8")

    event = classify({"X-External-Id": "new"}, {"type": "sleep", "score": 0.5})
    store.mutate(lambda profiles: apply_event(profiles, event))
    store.upsert("other", {"accountId": "acc-9"})

    assert set(store.load()) == {"ok", "new", "other"}
    assert store.unparsed() == {"keep": legacy}
    primary = json.loads(store.path.read_text(encoding="utf-8"))
    backup = json.loads(store.backup_path.read_text(encoding="utf-8"))
    assert primary["keep"] == legacy
    assert backup["keep"] == legacy


def test_save_of_load_keeps_unreadable_records(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(json.dumps({"bad": {"scores": "nope"}}), encoding="utf-8")
    store.upsert("good", {"accountId": "acc-1"})
    before = json.loads(store.path.read_text(encoding="utf-8"))

    store.save(store.load())

    assert json.loads(store.path.read_text(encoding="utf-8")) == before
    assert before["bad"] == {"scores": "nope"}


def test_clear_removes_unreadable_records(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(json.dumps({"bad": {"scores": "nope"}}), encoding="utf-8")
    store.clear()
    assert store.unparsed() == {}
    assert json.loads(store.path.read_text(encoding="utf-8")) == {}


def test_grouped_data_logs_are_flattened_on_load(tmp_path: Path) -> None:
    store = _store(tmp_path)
    grouped = {
        "heartRate_bpm": [
            {"receivedAt": "2026-01-01T00:00:00Z", "logs": [{"value": 61}, {"value": 64}]},
        ]
    }
    store.path.write_text(json.dumps({"keep": {"externalId": "keep", "dataLogs": grouped}}), encoding="utf-8")

    logs = store.load()["keep"].data_logs
    assert [entry.value for entry in logs] == [61, 64]
    assert {(entry.log_type, entry.data_type, entry.received_at) for entry in logs} == {
        ("heartRate", "bpm", "2026-01-01T00:00:00Z")
    }

    event = classify({}, {"externalId": "keep", "logType": "heartRate", "dataLogs": [{"value": 70}]})
    store.mutate(lambda profiles: apply_event(profiles, event))
    assert len(store.load()["keep"].data_logs) == 3


def test_naive_last_updated_is_read_as_utc(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.write_text(
        json.dumps({"a": {"externalId": "a", "lastUpdated": "2026-01-01T00:00:00"}}),
        encoding="utf-8",
    )
    assert store.load()["a"].last_updated == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_concurrent_scores_on_one_profile(tmp_path: Path) -> None:
    store = _store(tmp_path)
    headers = {"X-Event-Type": "ScoreCreatedIntegrationEvent", "X-External-Id": "P1"}
    submitted = [index / 100 for index in range(1, 31)]
    errors = []

    def worker(score: float) -> None:
        try:
            event = classify(headers, {"type": "sleep", "score": score})
            store.mutate(lambda profiles: apply_event(profiles, event))
        except Exception as exc:  # pragma: no cover - surfaced by the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(score,)) for score in submitted]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    profiles = store.load()
    assert list(profiles) == ["P1"]
    assert profiles["P1"].scores["sleep"].value in submitted


def test_concurrent_data_logs_on_one_profile_all_land(tmp_path: Path) -> None:
    store = _store(tmp_path)

    def worker(index: int) -> None:
        event = classify({"X-External-Id": "P1"}, {"logType": "steps", "dataLogs": [{"value": index}]})
        store.mutate(lambda profiles: apply_event(profiles, event))

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(30)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    values = sorted(entry.value for entry in store.load()["P1"].data_logs)
    assert values == list(range(30))


def test_failed_write_leaves_primary_intact(tmp_path: Path, monkeypatch) -> None:
    store = _store(tmp_path)
    store.upsert("a", {"accountId": "acc-a"})
    before = store.path.read_text(encoding="utf-8")

    def fail_replace(*_args, **_kwargs) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("pulse_hub.jsonfile.os.replace", fail_replace)
    with pytest.raises(StoreWriteError):
        store.upsert("b", {"accountId": "acc-b"})

    assert store.path.read_text(encoding="utf-8") == before
    assert not list(tmp_path.glob("*.tmp"))
