"""Bounded history of raw webhook envelopes kept for audit and replay."""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .jsonfile import write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class HistoryEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: str = Field(default_factory=_timestamp)
    event_type: str
    external_id: Optional[str] = None
    payload: Any = None
    header_summary: Dict[str, Optional[str]] = Field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None


class HistoryLog:
    """FIFO ring of the last ``capacity`` envelopes, persisted as a JSON list (oldest first)."""

    def __init__(self, path: Path, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("History capacity must be at least 1.")
        self._path = path
        self._capacity = capacity
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, entry: HistoryEntry) -> bool:
        """Record ``entry``; failures are logged and reported as ``False``, never raised."""
        try:
            with self._lock:
                ring = self._read_unlocked()
                ring.append(entry.model_dump(mode="json", by_alias=True))
                self._write_unlocked(list(ring))
            return True
        except Exception:  # noqa: BLE001
            logger.exception("Failed to append %s to webhook history", entry.event_type)
            return False

    def recent(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        """Newest entry first."""
        with self._lock:
            raw = list(self._read_unlocked())
        raw.reverse()
        if limit is not None:
            raw = raw[: max(limit, 0)]
        entries: List[HistoryEntry] = []
        for item in raw:
            try:
                entries.append(HistoryEntry.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed history entry")
        return entries

    def chronological(self) -> List[HistoryEntry]:
        return list(reversed(self.recent()))

    def total(self) -> int:
        with self._lock:
            return len(self._read_unlocked())

    def clear(self) -> None:
        with self._lock:
            self._write_unlocked([])
        logger.info("Truncated webhook history %s", self._path)

    def _read_unlocked(self) -> Deque[Dict[str, Any]]:
        ring: Deque[Dict[str, Any]] = deque(maxlen=self._capacity)
        if not self._path.exists():
            return ring
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("History file %s is unreadable, starting a new log: %s", self._path, exc)
            return ring
        if isinstance(raw, list):
            ring.extend(item for item in raw if isinstance(item, dict))
        return ring

    def _write_unlocked(self, entries: List[Dict[str, Any]]) -> None:
        write_json_atomic(self._path, entries)


__all__ = ["DEFAULT_CAPACITY", "HistoryEntry", "HistoryLog"]
