"""Population statistics computed from a snapshot of the profile store."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from itertools import combinations
from pathlib import Path
from statistics import StatisticsError, correlation, mean
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .jsonfile import write_json_atomic
from .profiles import SCORE_TYPES, ProfileRecord
from .store import ProfileStore

logger = logging.getLogger(__name__)

ACTIVE_WINDOW = timedelta(hours=24)
TOP_FACTORS_PER_SCORE = 3
BIOMARKER_CATEGORY_BUCKETS = {
    "sleep": "sleep",
    "activity": "activity",
    "vitals": "vitals",
    "heart": "vitals",
}


class _StatsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScoreBands(_StatsModel):
    excellent: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    minimal: int = 0

    def record(self, value: float) -> None:
        if value >= 0.8:
            self.excellent += 1
        elif value >= 0.6:
            self.high += 1
        elif value >= 0.4:
            self.medium += 1
        elif value >= 0.2:
            self.low += 1
        else:
            self.minimal += 1


class SummaryStats(_StatsModel):
    total_profiles: int = 0
    last_updated: str = ""
    data_completeness: float = 0.0
    active_profiles: int = 0


class ScoreStats(_StatsModel):
    coverage: Dict[str, float] = Field(default_factory=dict)
    counts: Dict[str, int] = Field(default_factory=dict)
    averages: Dict[str, Optional[float]] = Field(default_factory=dict)
    distribution: Dict[str, ScoreBands] = Field(default_factory=dict)
    correlations: Dict[str, Optional[float]] = Field(default_factory=dict)


class BiomarkerStats(_StatsModel):
    total_types: int = 0
    total_readings: int = 0
    coverage: Dict[str, int] = Field(default_factory=dict)
    categories: Dict[str, int] = Field(
        default_factory=lambda: {"sleep": 0, "activity": 0, "vitals": 0, "other": 0}
    )


class DataLogStats(_StatsModel):
    total_entries: int = 0
    types: Dict[str, int] = Field(default_factory=dict)
    sources: Dict[str, int] = Field(default_factory=dict)


class FactorStats(_StatsModel):
    coverage: Dict[str, int] = Field(default_factory=dict)
    top_factors: Dict[str, List[str]] = Field(default_factory=dict)


class ArchetypeStats(_StatsModel):
    total_types: int = 0
    distribution: Dict[str, int] = Field(default_factory=dict)
    values: Dict[str, Dict[str, int]] = Field(default_factory=dict)


class TopProfile(_StatsModel):
    external_id: str
    score_count: int
    biomarker_count: int
    last_updated: str

    @property
    def weight(self) -> float:
        return self.score_count + self.biomarker_count / 10


class ProfileStats(_StatsModel):
    with_complete_data: int = 0
    with_partial_data: int = 0
    with_minimal_data: int = 0
    with_no_scores: int = 0
    top_profiles: List[TopProfile] = Field(default_factory=list)


class WebhookStats(_StatsModel):
    summary: SummaryStats = Field(default_factory=SummaryStats)
    scores: ScoreStats = Field(default_factory=ScoreStats)
    biomarkers: BiomarkerStats = Field(default_factory=BiomarkerStats)
    data_logs: DataLogStats = Field(default_factory=DataLogStats)
    factors: FactorStats = Field(default_factory=FactorStats)
    archetypes: ArchetypeStats = Field(default_factory=ArchetypeStats)
    profiles: ProfileStats = Field(default_factory=ProfileStats)

    def as_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _score_values(record: ProfileRecord) -> Dict[str, float]:
    return {name: entry.value for name, entry in record.scores.items() if entry.value is not None}


def _pairwise_correlations(per_profile: List[Dict[str, float]]) -> Dict[str, Optional[float]]:
    result: Dict[str, Optional[float]] = {}
    for left, right in combinations(SCORE_TYPES, 2):
        pairs = [(values[left], values[right]) for values in per_profile if left in values and right in values]
        key = f"{left}:{right}"
        if len(pairs) < 2:
            result[key] = None
            continue
        try:
            result[key] = round(correlation([a for a, _ in pairs], [b for _, b in pairs]), 4)
        except StatisticsError:
            result[key] = None
    return result


def compute_stats(
    profiles: Iterable[ProfileRecord],
    now: Optional[datetime] = None,
    top_n: int = 10,
) -> WebhookStats:
    """Aggregate coverage, averages, bands and completeness over ``profiles``."""
    now = _as_utc(now or datetime.now(timezone.utc))
    records = list(profiles)
    stats = WebhookStats()
    stats.summary.total_profiles = len(records)
    stats.summary.last_updated = now.isoformat()
    for score_type in SCORE_TYPES:
        stats.scores.coverage[score_type] = 0.0
        stats.scores.counts[score_type] = 0
        stats.scores.averages[score_type] = None
        stats.scores.distribution[score_type] = ScoreBands()
    if not records:
        return stats

    collected: Dict[str, List[float]] = {score_type: [] for score_type in SCORE_TYPES}
    per_profile: List[Dict[str, float]] = []
    top_candidates: List[TopProfile] = []

    for record in records:
        if now - _as_utc(record.last_updated) <= ACTIVE_WINDOW:
            stats.summary.active_profiles += 1

        values = _score_values(record)
        per_profile.append(values)
        for score_type, value in values.items():
            collected.setdefault(score_type, []).append(value)
            stats.scores.counts[score_type] = stats.scores.counts.get(score_type, 0) + 1
            stats.scores.distribution.setdefault(score_type, ScoreBands()).record(value)

        present = sum(1 for score_type in SCORE_TYPES if score_type in values)
        if present == len(SCORE_TYPES):
            stats.profiles.with_complete_data += 1
        elif present >= 2:
            stats.profiles.with_partial_data += 1
        elif present == 1:
            stats.profiles.with_minimal_data += 1
        else:
            stats.profiles.with_no_scores += 1

        for key, biomarker in record.biomarkers.items():
            stats.biomarkers.coverage[key] = stats.biomarkers.coverage.get(key, 0) + 1
            bucket = BIOMARKER_CATEGORY_BUCKETS.get(biomarker.category, "other")
            stats.biomarkers.categories[bucket] += 1
        stats.biomarkers.total_readings += len(record.biomarkers)

        for entry in record.data_logs:
            stats.data_logs.total_entries += 1
            log_type = entry.log_type or "unknown"
            stats.data_logs.types[log_type] = stats.data_logs.types.get(log_type, 0) + 1
            if entry.source:
                stats.data_logs.sources[entry.source] = stats.data_logs.sources.get(entry.source, 0) + 1

        for score_type, entry in record.scores.items():
            if not entry.factors:
                continue
            stats.factors.coverage[score_type] = stats.factors.coverage.get(score_type, 0) + 1
            names = stats.factors.top_factors.setdefault(score_type, [])
            for factor in entry.factors:
                name = factor.get("name")
                if isinstance(name, str) and name not in names:
                    names.append(name)

        for name, archetype in record.archetypes.items():
            if archetype.value in (None, ""):
                continue
            stats.archetypes.distribution[name] = stats.archetypes.distribution.get(name, 0) + 1
            bucket = stats.archetypes.values.setdefault(name, {})
            label = str(archetype.value)
            bucket[label] = bucket.get(label, 0) + 1

        biomarker_count = len(record.biomarkers)
        if values or biomarker_count:
            top_candidates.append(
                TopProfile(
                    external_id=record.external_id or record.profile_id or "unknown",
                    score_count=len(values),
                    biomarker_count=biomarker_count,
                    last_updated=_as_utc(record.last_updated).isoformat(),
                )
            )

    total = len(records)
    for score_type, values in collected.items():
        stats.scores.coverage[score_type] = len(values) / total
        if values:
            stats.scores.averages[score_type] = round(mean(values), 2)
    stats.scores.correlations = _pairwise_correlations(per_profile)

    populated = sum(stats.scores.counts[score_type] for score_type in SCORE_TYPES)
    stats.summary.data_completeness = populated / (total * len(SCORE_TYPES))

    top_candidates.sort(key=lambda item: item.weight, reverse=True)
    stats.profiles.top_profiles = top_candidates[:top_n]
    stats.factors.top_factors = {
        score_type: names[:TOP_FACTORS_PER_SCORE] for score_type, names in stats.factors.top_factors.items()
    }
    stats.biomarkers.total_types = len(stats.biomarkers.coverage)
    stats.archetypes.total_types = len(stats.archetypes.distribution)
    return stats


class StatisticsAggregator:
    """Reads one store snapshot per call; never takes the store's write lock."""

    def __init__(self, store: ProfileStore, snapshot_path: Path, top_n: int = 10) -> None:
        self._store = store
        self._snapshot_path = snapshot_path
        self._top_n = top_n

    def generate(self, now: Optional[datetime] = None) -> WebhookStats:
        snapshot = self._store.load()
        return compute_stats(snapshot.values(), now=now, top_n=self._top_n)

    def generate_and_save(self, now: Optional[datetime] = None) -> WebhookStats:
        stats = self.generate(now=now)
        self.save_snapshot(stats)
        return stats

    def save_snapshot(self, stats: WebhookStats) -> None:
        write_json_atomic(self._snapshot_path, stats.as_payload(), indent=2)

    def latest_snapshot(self) -> Optional[Dict[str, Any]]:
        if not self._snapshot_path.exists():
            return None
        try:
            with self._snapshot_path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Stats snapshot %s is unreadable: %s", self._snapshot_path, exc)
            return None
        return raw if isinstance(raw, dict) else None


__all__ = [
    "ScoreBands",
    "StatisticsAggregator",
    "TopProfile",
    "WebhookStats",
    "compute_stats",
]
