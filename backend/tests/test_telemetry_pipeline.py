from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List

from pulse_hub.telemetry import (
    TelemetryEvent,
    clear_listeners,
    emit_event,
    listening,
    register_listener,
    unregister_listener,
)
from pulse_hub.telemetry_pipeline import _MONITORED_EVENTS, EventCounterSink


def test_listener_receives_plain_payload() -> None:
    seen: List[TelemetryEvent] = []
    with listening(seen.append):
        emit_event(
            "webhook_merged",
            path=Path("/tmp/x"),
            kinds={"b", "a"},
            at=datetime(2026, 3, 1, tzinfo=timezone.utc),
            profiles=2,
        )
    emit_event("webhook_merged", profiles=3)

    assert len(seen) == 1
    assert seen[0].name == "webhook_merged"
    assert seen[0].payload == {
        "path": "/tmp/x",
        "kinds": ["a", "b"],
        "at": "2026-03-01T00:00:00+00:00",
        "profiles": 2,
    }


def test_failing_listener_does_not_break_emit() -> None:
    def boom(_: TelemetryEvent) -> None:
        raise RuntimeError("listener down")

    seen: List[TelemetryEvent] = []
    register_listener(boom)
    try:
        with listening(seen.append):
            emit_event("webhook_received", event_type="ScoreCreatedIntegrationEvent")
    finally:
        unregister_listener(boom)
    assert len(seen) == 1


def test_clear_listeners_drops_everything() -> None:
    seen: List[TelemetryEvent] = []
    register_listener(seen.append)
    clear_listeners()
    emit_event("webhook_received", event_type="ScoreCreatedIntegrationEvent")
    assert seen == []


def test_counter_sink_persists_monitored_events(tmp_path: Path) -> None:
    assert "webhook_received" in _MONITORED_EVENTS
    sink = EventCounterSink(tmp_path / "counts.json")
    sink.attach()
    try:
        emit_event("webhook_received", event_type="ScoreCreatedIntegrationEvent", score_type="sleep")
        emit_event("webhook_received", event_type="ScoreCreatedIntegrationEvent", score_type="activity")
        emit_event("webhook_merged", event_type="ScoreCreatedIntegrationEvent")
    finally:
        sink.detach()

    counts = EventCounterSink(tmp_path / "counts.json").read()
    assert counts["total"] == 2
    assert counts["eventTypes"] == {"ScoreCreatedIntegrationEvent": 2}
    assert counts["scoreTypes"] == {"sleep": 1, "activity": 1}
    assert counts["lastUpdated"] is not None

    sink.reset()
    assert sink.read()["total"] == 0
