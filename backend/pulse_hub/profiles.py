"""Profile record models persisted by the webhook store."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SCORE_TYPES = ("wellbeing", "activity", "sleep", "mental_wellbeing", "readiness")
DEFAULT_DEPARTMENT = "unassigned"

Scalar = Union[int, float, str]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_score_type(name: str) -> str:
    """``mentalWellbeing`` and ``Mental-Wellbeing`` both become ``mental_wellbeing``."""
    snake = _CAMEL_BOUNDARY.sub(r"_\1", name.strip())
    return snake.replace("-", "_").replace(" ", "_").lower()


def normalize_score_value(value: Any) -> Optional[float]:
    """Coerce a score to the 0-1 scale; values in (1, 100] are read as percentages."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    number = float(value)
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return number


class _RecordModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ScoreEntry(_RecordModel):
    value: Optional[float] = None
    state: Optional[str] = None
    factors: Optional[List[Dict[str, Any]]] = None
    score_date_time: Optional[str] = None
    data_sources: Optional[List[str]] = None
    version: Optional[Scalar] = None
    updated_at: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _normalise_scale(cls, value: Any) -> Optional[float]:
        return normalize_score_value(value)


class ArchetypeEntry(_RecordModel):
    value: Optional[Scalar] = None
    data_type: Optional[str] = None
    ordinality: Optional[int] = None
    periodicity: Optional[str] = None
    start_date_time: Optional[str] = None
    end_date_time: Optional[str] = None
    version: Optional[Scalar] = None
    updated_at: Optional[str] = None


class BiomarkerEntry(_RecordModel):
    category: str
    type: str
    value: Optional[Scalar] = None
    unit: Optional[str] = None
    value_type: Optional[str] = None
    periodicity: Optional[str] = None
    aggregation: Optional[str] = None
    start_date_time: Optional[str] = None
    end_date_time: Optional[str] = None
    version: Optional[Scalar] = None
    updated_at: Optional[str] = None

    @staticmethod
    def composite_key(category: str, type_: str) -> str:
        return f"{category}_{type_}"


class DataLogEntry(_RecordModel):
    id: Optional[str] = None
    parent_id: Optional[str] = None
    log_type: Optional[str] = None
    data_type: Optional[str] = None
    value: Optional[Scalar] = None
    unit: Optional[str] = None
    source: Optional[str] = None
    recording_method: Optional[str] = None
    device_type: Optional[str] = None
    start_date_time: Optional[str] = None
    end_date_time: Optional[str] = None
    received_at: Optional[str] = None


class DeviceInfo(_RecordModel):
    type: str = "unknown"
    source: str = "unknown"
    last_seen: Optional[str] = None


class ProfileRecord(_RecordModel):
    profile_id: Optional[str] = None
    external_id: Optional[str] = None
    account_id: Optional[str] = None
    scores: Dict[str, ScoreEntry] = Field(default_factory=dict)
    archetypes: Dict[str, ArchetypeEntry] = Field(default_factory=dict)
    biomarkers: Dict[str, BiomarkerEntry] = Field(default_factory=dict)
    data_logs: List[DataLogEntry] = Field(default_factory=list)
    device: Optional[DeviceInfo] = None
    department: str = DEFAULT_DEPARTMENT
    last_updated: datetime = Field(default_factory=_now)

    @field_validator("scores", mode="before")
    @classmethod
    def _coerce_scores(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        coerced: Dict[str, Any] = {}
        for key, entry in value.items():
            if entry is None:
                continue
            if isinstance(entry, (int, float)) and not isinstance(entry, bool):
                entry = {"value": entry}
            coerced[normalize_score_type(str(key))] = entry
        return coerced

    @field_validator("archetypes", mode="before")
    @classmethod
    def _coerce_archetypes(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        coerced: Dict[str, Any] = {}
        for entry in value:
            if isinstance(entry, str) and entry.strip():
                coerced[entry.strip()] = {"value": entry.strip()}
            elif isinstance(entry, dict) and entry.get("name"):
                body = {key: item for key, item in entry.items() if key != "name"}
                coerced[str(entry["name"])] = body
        return coerced

    @field_validator("data_logs", mode="before")
    @classmethod
    def _flatten_grouped_logs(cls, value: Any) -> Any:
        """Older stores group logs as ``{"<logType>_<dataType>": [{"receivedAt", "logs": [...]}]}``."""
        if not isinstance(value, dict):
            return value
        flattened: List[Any] = []
        for group, batches in value.items():
            log_type, _, data_type = str(group).partition("_")
            defaults = {"logType": log_type or None, "dataType": data_type or None}
            for batch in batches if isinstance(batches, list) else [batches]:
                if isinstance(batch, dict) and isinstance(batch.get("logs"), list):
                    received = {"receivedAt": batch.get("receivedAt")}
                    flattened.extend(
                        {**defaults, **received, **item} for item in batch["logs"] if isinstance(item, dict)
                    )
                elif isinstance(batch, dict):
                    flattened.append({**defaults, **batch})
        return flattened

    @field_validator("last_updated", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    def matches(self, identifier: str) -> bool:
        return identifier in (self.external_id, self.profile_id)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def profile_from_storage(payload: Dict[str, Any]) -> ProfileRecord:
    return ProfileRecord.model_validate(payload)


__all__ = [
    "ArchetypeEntry",
    "BiomarkerEntry",
    "DEFAULT_DEPARTMENT",
    "DataLogEntry",
    "DeviceInfo",
    "ProfileRecord",
    "SCORE_TYPES",
    "ScoreEntry",
    "normalize_score_type",
    "normalize_score_value",
    "profile_from_storage",
]
