"""Process-wide service container handed to request handlers."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .config import Settings
from .departments import DepartmentAssignments
from .history import HistoryLog
from .ingestion import WebhookIngestor
from .stats import StatisticsAggregator
from .store import ProfileStore
from .telemetry_pipeline import EventCounterSink


@dataclass
class HubServices:
    settings: Settings
    store: ProfileStore
    history: HistoryLog
    ingestor: WebhookIngestor
    aggregator: StatisticsAggregator
    departments: DepartmentAssignments
    event_counter: EventCounterSink


def build_services(settings: Settings) -> HubServices:
    store = ProfileStore(settings.store_path, settings.backup_path)
    history = HistoryLog(settings.history_path, capacity=settings.history_capacity)
    return HubServices(
        settings=settings,
        store=store,
        history=history,
        ingestor=WebhookIngestor(
            store,
            history,
            secret=settings.webhook_secret,
            signature_policy=settings.signature_policy,
        ),
        aggregator=StatisticsAggregator(store, settings.stats_path, top_n=settings.top_profiles),
        departments=DepartmentAssignments(settings.departments_path),
        event_counter=EventCounterSink(settings.event_counts_path),
    )


def get_hub(request: Request) -> HubServices:
    return request.app.state.hub


__all__ = ["HubServices", "build_services", "get_hub"]
