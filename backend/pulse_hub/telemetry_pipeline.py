"""Telemetry listener that persists per-event-type counters for dashboards."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Set

from .jsonfile import write_json_atomic
from .telemetry import TelemetryEvent, register_listener, unregister_listener

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: Set[str] = {
    "webhook_received",
}


def _empty_counts() -> Dict[str, Any]:
    return {
        "total": 0,
        "eventTypes": {},
        "scoreTypes": {},
        "biomarkerCategories": {},
        "lastUpdated": None,
    }


class EventCounterSink:
    """Accumulates webhook event counters in a small JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def attach(self) -> None:
        register_listener(self)

    def detach(self) -> None:
        unregister_listener(self)

    def __call__(self, event: TelemetryEvent) -> None:
        if event.name not in _MONITORED_EVENTS:
            return
        payload = event.payload
        try:
            with self._lock:
                counts = self._read_unlocked()
                event_type = str(payload.get("event_type") or payload.get("kind") or "unknown")
                counts["total"] = int(counts.get("total", 0)) + 1
                _bump(counts.setdefault("eventTypes", {}), event_type)
                score_type = payload.get("score_type")
                if isinstance(score_type, str) and score_type:
                    _bump(counts.setdefault("scoreTypes", {}), score_type)
                category = payload.get("biomarker_category")
                if isinstance(category, str) and category:
                    _bump(counts.setdefault("biomarkerCategories", {}), category)
                counts["lastUpdated"] = datetime.now(timezone.utc).isoformat()
                write_json_atomic(self._path, counts, indent=2)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist event counters to %s", self._path)

    def read(self) -> Dict[str, Any]:
        with self._lock:
            return self._read_unlocked()

    def reset(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()

    def _read_unlocked(self) -> Dict[str, Any]:
        if not self._path.exists():
            return _empty_counts()
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError):
            logger.warning("Event counter file %s is unreadable; starting fresh", self._path)
            return _empty_counts()
        if not isinstance(raw, dict):
            return _empty_counts()
        return raw


def _bump(bucket: Dict[str, int], key: str) -> None:
    bucket[key] = int(bucket.get(key, 0)) + 1


__all__ = ["EventCounterSink", "_MONITORED_EVENTS"]
