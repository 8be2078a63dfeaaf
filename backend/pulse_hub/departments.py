"""Department assignments owned by profile management, read alongside the store."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Mapping

from .jsonfile import write_json_atomic
from .profiles import ProfileRecord

logger = logging.getLogger(__name__)


class DepartmentAssignments:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Department assignments at %s are unreadable: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(key): str(value) for key, value in raw.items() if isinstance(value, str) and value.strip()}

    def replace(self, assignments: Mapping[str, str]) -> int:
        cleaned = {
            str(key).strip(): str(value).strip()
            for key, value in assignments.items()
            if str(key).strip() and isinstance(value, str) and value.strip()
        }
        with self._lock:
            write_json_atomic(self._path, cleaned, indent=2)
        logger.info("Saved %d department assignments", len(cleaned))
        return len(cleaned)


def apply_assignments(
    profiles: Iterable[tuple[str, ProfileRecord]],
    assignments: Mapping[str, str],
) -> List[ProfileRecord]:
    """Copy each profile with its assigned department, keyed by external id, profile id or store key."""
    merged: List[ProfileRecord] = []
    for key, record in profiles:
        department = None
        for candidate in (record.external_id, record.profile_id, key):
            if candidate and candidate in assignments:
                department = assignments[candidate]
                break
        if department is None:
            merged.append(record)
        else:
            merged.append(record.model_copy(update={"department": department}))
    return merged


__all__ = ["DepartmentAssignments", "apply_assignments"]
