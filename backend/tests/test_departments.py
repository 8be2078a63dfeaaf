from __future__ import annotations

from pathlib import Path

from pulse_hub.departments import DepartmentAssignments, apply_assignments
from pulse_hub.profiles import ProfileRecord


def test_replace_and_read(tmp_path: Path) -> None:
    assignments = DepartmentAssignments(tmp_path / "department-assignments.json")
    assert assignments.read() == {}
    assert assignments.replace({" ext-1 ": " engineering ", "ext-2": ""}) == 1
    assert assignments.read() == {"ext-1": "engineering"}


def test_unreadable_file_reads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "department-assignments.json"
    path.write_text("[1, 2", encoding="utf-8")
    assert DepartmentAssignments(path).read() == {}


def test_apply_assignments_matches_ids_and_keys() -> None:
    profiles = [
        ("ext-1", ProfileRecord(external_id="ext-1")),
        ("key-2", ProfileRecord(profile_id="p-2")),
        ("key-3", ProfileRecord()),
        ("key-4", ProfileRecord(external_id="ext-4")),
    ]
    merged = apply_assignments(profiles, {"ext-1": "sales", "p-2": "ops", "key-3": "hr"})
    assert [record.department for record in merged] == ["sales", "ops", "hr", "unassigned"]
    assert profiles[0][1].department == "unassigned"
