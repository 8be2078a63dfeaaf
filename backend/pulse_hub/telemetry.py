"""In-process telemetry for the webhook pipeline.

``emit_event`` hands a ``TelemetryEvent`` to every registered listener and
writes one ``TELEMETRY {...}`` JSON line to the ``pulse_hub.telemetry``
logger. Listeners run synchronously on the emitting thread; a listener that
raises is logged and skipped.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List

logger = logging.getLogger("pulse_hub.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> None:
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    """Drop every listener; tests use this to isolate state."""
    with _lock:
        _listeners.clear()


@contextmanager
def listening(listener: Listener) -> Iterator[Listener]:
    register_listener(listener)
    try:
        yield listener
    finally:
        unregister_listener(listener)


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    event = TelemetryEvent(name=name, payload={key: _plain(value) for key, value in fields.items()})

    with _lock:
        targets = list(_listeners)
    for listener in targets:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener %r failed on %s", listener, name)

    if logger.isEnabledFor(logging.INFO):
        line = {"event": name, "at": event.emitted_at.isoformat(), **event.payload}
        logger.info("TELEMETRY %s", json.dumps(line, default=str, sort_keys=True))
    return event


def _plain(value: Any) -> Any:
    """Reduce a field to something ``json.dumps`` accepts without a fallback."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(_plain(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return value


__all__ = [
    "Listener",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "listening",
    "register_listener",
    "unregister_listener",
]
