"""Merge rules applying classified webhook events to profile records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

from pydantic import ValidationError

from .events import (
    ArchetypeCreated,
    BatchProfileUpdate,
    BiomarkerCreated,
    DataLogReceived,
    ScoreCreated,
    SingleProfileUpsert,
    Unrecognized,
    WebhookEvent,
    resolve_identifier,
)
from .profiles import (
    ArchetypeEntry,
    BiomarkerEntry,
    DataLogEntry,
    DeviceInfo,
    ProfileRecord,
    ScoreEntry,
    normalize_score_type,
    normalize_score_value,
)

logger = logging.getLogger(__name__)

Profiles = MutableMapping[str, ProfileRecord]

# Owned by profile management, never by ingestion.
PROTECTED_FIELDS = frozenset({"department", "lastUpdated"})

_FIELD_ALIASES: Dict[str, str] = {
    name: (info.alias or name) for name, info in ProfileRecord.model_fields.items()
}


@dataclass(frozen=True)
class FieldWarning:
    """A merge rule skipped one field; the rest of the event still applied."""

    field: str
    message: str
    profile_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"profileId": self.profile_id, "field": self.field, "message": self.message}


@dataclass
class MergeOutcome:
    kind: str
    event_type: str
    profile_ids: List[str] = field(default_factory=list)
    warnings: List[FieldWarning] = field(default_factory=list)

    @property
    def profiles_processed(self) -> int:
        return len(self.profile_ids)


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _event_time(body: Mapping[str, Any], now: datetime) -> str:
    for key in ("createdAtUtc", "receivedAtUtc", "timestamp"):
        candidate = _text(body.get(key))
        if candidate:
            return candidate
    return now.isoformat()


def find_key(profiles: Mapping[str, ProfileRecord], identifier: str) -> Optional[str]:
    """Locate a record by store key, then by its ``externalId`` or ``profileId`` alias."""
    if identifier in profiles:
        return identifier
    for key, record in profiles.items():
        if record.matches(identifier):
            return key
    return None


def ensure_profile(
    profiles: Profiles,
    identifier: str,
    body: Mapping[str, Any],
) -> Tuple[str, ProfileRecord]:
    profile_id = _text(body.get("profileId"))
    account_id = _text(body.get("accountId"))
    key = find_key(profiles, identifier)
    if key is None:
        external_id = identifier if identifier != profile_id else _text(body.get("externalId"))
        record = ProfileRecord(external_id=external_id, profile_id=profile_id, account_id=account_id)
        profiles[identifier] = record
        logger.info("Created profile record for %s", identifier)
        return identifier, record
    record = profiles[key]
    if record.profile_id is None and profile_id:
        record.profile_id = profile_id
    if record.account_id is None and account_id:
        record.account_id = account_id
    return key, record


def _apply_score(record: ProfileRecord, event: ScoreCreated, updated_at: str, warnings: List[FieldWarning]) -> None:
    body = event.body
    score_type = _text(body.get("type"))
    raw_value = body.get("score", body.get("value"))
    value = normalize_score_value(raw_value)
    if score_type is None:
        warnings.append(FieldWarning("scores", "Score event has no score type.", event.identifier))
        return
    if value is None:
        warnings.append(FieldWarning(f"scores.{score_type}", "Score event has no numeric value.", event.identifier))
        return
    factors = body.get("factors")
    try:
        entry = ScoreEntry(
            value=value,
            state=_text(body.get("state")),
            factors=[item for item in factors if isinstance(item, dict)] if isinstance(factors, list) else None,
            score_date_time=_text(body.get("scoreDateTime")),
            data_sources=body.get("dataSources") if isinstance(body.get("dataSources"), list) else None,
            version=body.get("version"),
            updated_at=updated_at,
        )
    except ValidationError as exc:
        warnings.append(FieldWarning(f"scores.{score_type}", f"Invalid score payload: {exc.errors()[0]['msg']}", event.identifier))
        return
    record.scores[normalize_score_type(score_type)] = entry


def _apply_archetype(
    record: ProfileRecord,
    event: ArchetypeCreated,
    updated_at: str,
    warnings: List[FieldWarning],
) -> None:
    body = event.body
    name = _text(body.get("name"))
    if name is None:
        warnings.append(FieldWarning("archetypes", "Archetype event has no name.", event.identifier))
        return
    if body.get("value") is None:
        warnings.append(FieldWarning(f"archetypes.{name}", "Archetype event has no value.", event.identifier))
        return
    try:
        entry = ArchetypeEntry(
            value=body.get("value"),
            data_type=_text(body.get("dataType")),
            ordinality=body.get("ordinality"),
            periodicity=_text(body.get("periodicity")),
            start_date_time=_text(body.get("startDateTime")),
            end_date_time=_text(body.get("endDateTime")),
            version=body.get("version"),
            updated_at=updated_at,
        )
    except ValidationError as exc:
        warnings.append(FieldWarning(f"archetypes.{name}", f"Invalid archetype payload: {exc.errors()[0]['msg']}", event.identifier))
        return
    record.archetypes[name] = entry


def _apply_biomarker(
    record: ProfileRecord,
    event: BiomarkerCreated,
    updated_at: str,
    warnings: List[FieldWarning],
) -> None:
    body = event.body
    category = _text(body.get("category"))
    type_ = _text(body.get("type"))
    value = body.get("value")
    if category is None or type_ is None or value is None:
        missing = [name for name, item in (("category", category), ("type", type_), ("value", value)) if item is None]
        warnings.append(
            FieldWarning("biomarkers", f"Biomarker event is missing {', '.join(missing)}.", event.identifier)
        )
        return
    key = BiomarkerEntry.composite_key(category, type_)
    try:
        entry = BiomarkerEntry(
            category=category,
            type=type_,
            value=value,
            unit=_text(body.get("unit")),
            value_type=_text(body.get("valueType")),
            periodicity=_text(body.get("periodicity")),
            aggregation=_text(body.get("aggregation")),
            start_date_time=_text(body.get("startDateTime")),
            end_date_time=_text(body.get("endDateTime")),
            version=body.get("version"),
            updated_at=updated_at,
        )
    except ValidationError as exc:
        warnings.append(FieldWarning(f"biomarkers.{key}", f"Invalid biomarker payload: {exc.errors()[0]['msg']}", event.identifier))
        return
    record.biomarkers[key] = entry


def _apply_data_logs(
    record: ProfileRecord,
    event: DataLogReceived,
    updated_at: str,
    warnings: List[FieldWarning],
) -> None:
    body = event.body
    logs = body.get("dataLogs")
    if not isinstance(logs, list):
        warnings.append(FieldWarning("dataLogs", "Data log event has no dataLogs list.", event.identifier))
        return
    received_at = _text(body.get("receivedAtUtc")) or updated_at
    defaults = {
        "logType": _text(body.get("logType")),
        "dataType": _text(body.get("dataType")),
        "receivedAt": received_at,
    }
    appended: List[DataLogEntry] = []
    for index, item in enumerate(logs):
        if not isinstance(item, dict):
            warnings.append(FieldWarning(f"dataLogs[{index}]", "Data log entry is not an object.", event.identifier))
            continue
        try:
            appended.append(DataLogEntry.model_validate({**defaults, **item}))
        except ValidationError as exc:
            warnings.append(FieldWarning(f"dataLogs[{index}]", f"Invalid data log entry: {exc.errors()[0]['msg']}", event.identifier))
    record.data_logs.extend(appended)
    if appended:
        _refresh_device(record, appended[0], received_at)


def _refresh_device(record: ProfileRecord, first: DataLogEntry, seen_at: str) -> None:
    if not (first.device_type or first.source):
        return
    device = record.device or DeviceInfo()
    if first.device_type:
        device.type = first.device_type
    if first.source:
        device.source = first.source
    device.last_seen = seen_at
    record.device = device


def shallow_merge(
    record: ProfileRecord,
    fields: Mapping[str, Any],
    warnings: List[FieldWarning],
    profile_id: Optional[str] = None,
) -> ProfileRecord:
    """Overwrite top-level fields one at a time; fields that fail validation are skipped.

    ``dataLogs`` is extended rather than replaced and protected fields are never touched.
    """
    current = record.to_storage()
    for raw_key, value in fields.items():
        key = _FIELD_ALIASES.get(raw_key, raw_key)
        if key in PROTECTED_FIELDS:
            warnings.append(FieldWarning(key, "Field is managed outside webhook ingestion.", profile_id))
            continue
        if key == "dataLogs":
            if not isinstance(value, list):
                warnings.append(FieldWarning(key, "dataLogs must be a list.", profile_id))
                continue
            value = list(current.get("dataLogs") or []) + value
        candidate = {**current, key: value}
        try:
            current = ProfileRecord.model_validate(candidate).to_storage()
        except ValidationError as exc:
            warnings.append(FieldWarning(key, f"Rejected field: {exc.errors()[0]['msg']}", profile_id))
    return ProfileRecord.model_validate(current)


def apply_event(profiles: Profiles, event: WebhookEvent, now: Optional[datetime] = None) -> MergeOutcome:
    """Apply ``event`` to ``profiles`` in place and report what changed."""
    now = now or datetime.now(timezone.utc)
    outcome = MergeOutcome(kind=event.kind, event_type=event.event_type)

    if isinstance(event, Unrecognized):
        return outcome

    if isinstance(event, BatchProfileUpdate):
        for index, entry in enumerate(event.profiles):
            identifier = resolve_identifier(None, entry)
            if identifier is None:
                outcome.warnings.append(FieldWarning(f"profiles[{index}]", "Profile has no externalId or profileId."))
                continue
            key, record = ensure_profile(profiles, identifier, entry)
            record = shallow_merge(record, entry, outcome.warnings, key)
            record.last_updated = now
            profiles[key] = record
            outcome.profile_ids.append(key)
        _log_warnings(outcome)
        return outcome

    key, record = ensure_profile(profiles, event.identifier, event.body)
    updated_at = _event_time(event.body, now)
    if isinstance(event, ScoreCreated):
        _apply_score(record, event, updated_at, outcome.warnings)
    elif isinstance(event, ArchetypeCreated):
        _apply_archetype(record, event, updated_at, outcome.warnings)
    elif isinstance(event, BiomarkerCreated):
        _apply_biomarker(record, event, updated_at, outcome.warnings)
    elif isinstance(event, DataLogReceived):
        _apply_data_logs(record, event, updated_at, outcome.warnings)
    elif isinstance(event, SingleProfileUpsert):
        record = shallow_merge(record, event.fields, outcome.warnings, key)
    record.last_updated = now
    profiles[key] = record
    outcome.profile_ids.append(key)
    _log_warnings(outcome)
    return outcome


def _log_warnings(outcome: MergeOutcome) -> None:
    for warning in outcome.warnings:
        logger.info(
            "Skipped %s for %s during %s: %s",
            warning.field,
            warning.profile_id or "batch",
            outcome.event_type,
            warning.message,
        )


__all__ = [
    "FieldWarning",
    "MergeOutcome",
    "PROTECTED_FIELDS",
    "apply_event",
    "ensure_profile",
    "find_key",
    "shallow_merge",
]
