"""JSON-backed profile store with a rotating backup file."""

from __future__ import annotations

import json
import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, TypeVar

from pydantic import ValidationError

from .jsonfile import write_json_atomic
from .merge import FieldWarning, ensure_profile, find_key, shallow_merge
from .profiles import ProfileRecord, profile_from_storage

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProfileMap = Dict[str, ProfileRecord]
RawMap = Dict[str, Any]


class StoreWriteError(RuntimeError):
    """Raised when the primary store file could not be written."""


class ProfileStore:
    """The whole profile map is persisted as one JSON document.

    Read-modify-write cycles (``mutate``, ``upsert``, ``save``, ``clear``) run
    under one process-wide re-entrant lock. ``load`` does not take the lock so
    readers such as the statistics aggregator never wait on writers.

    Stored entries that no longer validate as a ``ProfileRecord`` are left out
    of ``load()`` but carried through every write unchanged; only ``clear``
    removes them.
    """

    def __init__(self, path: Path, backup_path: Optional[Path] = None) -> None:
        self._path = path
        self._backup_path = backup_path or path.with_name(f"{path.stem}-backup{path.suffix}")
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._backup_path

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> ProfileMap:
        profiles, _ = self._snapshot()
        return profiles

    def get(self, identifier: str) -> Optional[ProfileRecord]:
        profiles = self.load()
        key = find_key(profiles, identifier)
        return profiles[key] if key is not None else None

    def unparsed(self) -> RawMap:
        """Stored entries kept verbatim because they fail validation."""
        _, raw = self._snapshot()
        return raw

    def _snapshot(self) -> Tuple[ProfileMap, RawMap]:
        raw = self._read_file(self._path)
        if raw is None:
            raw = self._read_file(self._backup_path)
            if raw is None:
                return {}, {}
            logger.warning("Loaded profiles from backup file %s", self._backup_path)
        profiles: ProfileMap = {}
        unparsed: RawMap = {}
        for key, payload in raw.items():
            try:
                profiles[key] = profile_from_storage(payload)
            except ValidationError as exc:
                logger.warning("Keeping stored profile %s as raw JSON: %s", key, exc.errors()[0]["msg"])
                unparsed[key] = payload
        return profiles, unparsed

    def _read_file(self, path: Path) -> Optional[RawMap]:
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Profile store file %s is unreadable: %s", path, exc)
            return None
        if not isinstance(raw, dict):
            logger.error("Profile store file %s does not hold a JSON object", path)
            return None
        return raw

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, profiles: Mapping[str, ProfileRecord]) -> None:
        with self._lock:
            _, unparsed = self._snapshot()
            self._write_unlocked(profiles, unparsed)

    def mutate(self, apply: Callable[[ProfileMap], T]) -> T:
        """Load, hand the map to ``apply`` and persist it, all inside the store lock."""
        with self._lock:
            profiles, unparsed = self._snapshot()
            result = apply(profiles)
            self._write_unlocked(profiles, unparsed)
            return result

    def upsert(self, identifier: str, partial: Mapping[str, Any]) -> ProfileRecord:
        """Shallow-merge ``partial`` onto the profile, creating it when missing."""
        warnings: list[FieldWarning] = []

        def _apply(profiles: ProfileMap) -> ProfileRecord:
            key, record = ensure_profile(profiles, identifier, partial)
            merged = shallow_merge(record, partial, warnings, key)
            merged.last_updated = datetime.now(timezone.utc)
            profiles[key] = merged
            return merged

        merged = self.mutate(_apply)
        for warning in warnings:
            logger.info("Upsert of %s skipped %s: %s", identifier, warning.field, warning.message)
        return merged.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._write_unlocked({}, {})
        logger.info("Cleared profile store %s", self._path)

    def _write_unlocked(self, profiles: Mapping[str, ProfileRecord], unparsed: Mapping[str, Any]) -> None:
        payload: RawMap = {}
        for key, raw in unparsed.items():
            if key in profiles:
                logger.warning("Stored profile %s was unreadable and is replaced by a new record", key)
                continue
            payload[key] = raw
        payload.update((key, record.to_storage()) for key, record in profiles.items())
        try:
            if self._path.exists():
                if _holds_json_object(self._path):
                    self._backup_path.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copyfile(self._path, self._backup_path)
                else:
                    logger.warning("Not rotating unreadable primary %s into the backup", self._path)
            write_json_atomic(self._path, payload, indent=2)
        except OSError as exc:
            logger.exception("Failed to write profile store %s", self._path)
            raise StoreWriteError(f"Could not persist profile store: {exc}") from exc
        logger.info("Saved %d profiles to %s", len(payload), self._path)


def _holds_json_object(path: Path) -> bool:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return isinstance(json.load(handle), dict)
    except (OSError, json.JSONDecodeError):
        return False


__all__ = ["ProfileMap", "ProfileStore", "StoreWriteError"]
