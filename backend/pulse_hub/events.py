"""Classification of inbound webhook payloads into typed event variants."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

EVENT_TYPE_HEADER = "x-event-type"
EXTERNAL_ID_HEADER = "x-external-id"
SIGNATURE_HEADER = "x-signature"

INTEGRATION_EVENT_KINDS: Dict[str, str] = {
    "ScoreCreatedIntegrationEvent": "score_created",
    "ArchetypeCreatedIntegrationEvent": "archetype_created",
    "BiomarkerCreatedIntegrationEvent": "biomarker_created",
    "DataLogReceivedIntegrationEvent": "data_log_received",
}

LEGACY_EVENT_KINDS: Dict[str, str] = {
    "batch.scores": "batch_profile_update",
    "score.updated": "single_profile_upsert",
    "archetype.calculated": "single_profile_upsert",
    "profile.created": "single_profile_upsert",
}

# Envelope keys describe the delivery, not the profile.
ENVELOPE_KEYS = frozenset({"event", "eventType", "timestamp"})


class MissingIdentifierError(ValueError):
    """Raised when an event that targets one profile carries no usable identifier."""


class PayloadUnparsableError(ValueError):
    """Raised when the request body is not valid JSON."""


class _EventBase(BaseModel):
    event_type: str
    body: Dict[str, Any] = Field(default_factory=dict)


class ScoreCreated(_EventBase):
    kind: Literal["score_created"] = "score_created"
    identifier: str


class ArchetypeCreated(_EventBase):
    kind: Literal["archetype_created"] = "archetype_created"
    identifier: str


class BiomarkerCreated(_EventBase):
    kind: Literal["biomarker_created"] = "biomarker_created"
    identifier: str


class DataLogReceived(_EventBase):
    kind: Literal["data_log_received"] = "data_log_received"
    identifier: str


class BatchProfileUpdate(_EventBase):
    kind: Literal["batch_profile_update"] = "batch_profile_update"
    profiles: List[Dict[str, Any]] = Field(default_factory=list)


class SingleProfileUpsert(_EventBase):
    kind: Literal["single_profile_upsert"] = "single_profile_upsert"
    identifier: str

    @property
    def fields(self) -> Dict[str, Any]:
        return {key: value for key, value in self.body.items() if key not in ENVELOPE_KEYS}


class Unrecognized(_EventBase):
    kind: Literal["unrecognized"] = "unrecognized"
    identifier: Optional[str] = None
    reason: str = ""


WebhookEvent = Annotated[
    Union[
        ScoreCreated,
        ArchetypeCreated,
        BiomarkerCreated,
        DataLogReceived,
        BatchProfileUpdate,
        SingleProfileUpsert,
        Unrecognized,
    ],
    Field(discriminator="kind"),
]

_SINGLE_PROFILE_MODELS = {
    "score_created": ScoreCreated,
    "archetype_created": ArchetypeCreated,
    "biomarker_created": BiomarkerCreated,
    "data_log_received": DataLogReceived,
    "single_profile_upsert": SingleProfileUpsert,
}


def parse_payload(raw_body: Union[str, bytes]) -> Any:
    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PayloadUnparsableError(f"Request body is not UTF-8: {exc}") from exc
    if not raw_body.strip():
        raise PayloadUnparsableError("Request body is empty.")
    try:
        return json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise PayloadUnparsableError(f"Request body is not valid JSON: {exc.msg}") from exc


def normalize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def header_summary(headers: Mapping[str, str]) -> Dict[str, Optional[str]]:
    lowered = normalize_headers(headers)
    return {
        "X-Signature": "present" if lowered.get(SIGNATURE_HEADER) else "missing",
        "X-External-Id": lowered.get(EXTERNAL_ID_HEADER),
        "X-Event-Type": lowered.get(EVENT_TYPE_HEADER),
        "Content-Type": lowered.get("content-type"),
    }


def _clean_identifier(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_identifier(header_id: Optional[str], body: Mapping[str, Any]) -> Optional[str]:
    """Header external id first, then payload ``externalId``, then payload ``profileId``."""
    for candidate in (header_id, body.get("externalId"), body.get("profileId")):
        cleaned = _clean_identifier(candidate)
        if cleaned:
            return cleaned
    return None


def _unwrap(payload: Dict[str, Any]) -> Dict[str, Any]:
    nested = payload.get("data")
    if isinstance(nested, dict):
        envelope = {key: value for key, value in payload.items() if key != "data"}
        return {**envelope, **nested}
    return dict(payload)


def _kind_from_hint(hint: str) -> Optional[str]:
    if hint in INTEGRATION_EVENT_KINDS:
        return INTEGRATION_EVENT_KINDS[hint]
    return LEGACY_EVENT_KINDS.get(hint)


def _kind_from_shape(body: Mapping[str, Any]) -> Optional[str]:
    if body.get("type") and body.get("score") is not None:
        return "score_created"
    if body.get("category") and body.get("type") and body.get("value") is not None:
        return "biomarker_created"
    if body.get("name") and body.get("dataType"):
        return "archetype_created"
    if isinstance(body.get("dataLogs"), list):
        return "data_log_received"
    if isinstance(body.get("profiles"), list):
        return "batch_profile_update"
    return None


def classify(headers: Mapping[str, str], payload: Any) -> WebhookEvent:
    """Turn a parsed payload plus request headers into one typed event variant.

    Raises ``MissingIdentifierError`` when the event targets a single profile
    and neither the headers nor the payload name one.
    """
    lowered = normalize_headers(headers)
    header_event = _clean_identifier(lowered.get(EVENT_TYPE_HEADER))
    header_id = _clean_identifier(lowered.get(EXTERNAL_ID_HEADER))

    if isinstance(payload, list):
        profiles = [entry for entry in payload if isinstance(entry, dict)]
        if profiles:
            return BatchProfileUpdate(event_type=header_event or "batch_profile_update", profiles=profiles)
        return Unrecognized(event_type=header_event or "unrecognized", reason="Payload list holds no profile objects.")
    if not isinstance(payload, dict):
        return Unrecognized(event_type=header_event or "unrecognized", reason="Payload is not a JSON object.")

    body = _unwrap(payload)
    hint = header_event
    for key in ("eventType", "event"):
        if hint is None:
            hint = _clean_identifier(body.get(key))

    kind = _kind_from_hint(hint) if hint else None
    if kind is None:
        kind = _kind_from_shape(body)
    identifier = resolve_identifier(header_id, body)
    event_type = hint or kind or "single_profile_upsert"

    if kind is None and hint:
        logger.warning("Unrecognised webhook event type %r", hint)
        return Unrecognized(
            event_type=hint,
            body=body,
            identifier=identifier,
            reason=f"Event type '{hint}' is not recognised.",
        )

    if kind == "batch_profile_update":
        raw_profiles = body.get("profiles")
        profiles = [entry for entry in raw_profiles if isinstance(entry, dict)] if isinstance(raw_profiles, list) else []
        return BatchProfileUpdate(event_type=event_type, body=body, profiles=profiles)

    if identifier is None:
        raise MissingIdentifierError(
            "No profile identifier found in X-External-Id, externalId, or profileId."
        )

    model = _SINGLE_PROFILE_MODELS[kind or "single_profile_upsert"]
    return model(event_type=event_type, body=body, identifier=identifier)


__all__ = [
    "ArchetypeCreated",
    "BatchProfileUpdate",
    "BiomarkerCreated",
    "DataLogReceived",
    "MissingIdentifierError",
    "PayloadUnparsableError",
    "ScoreCreated",
    "SingleProfileUpsert",
    "Unrecognized",
    "WebhookEvent",
    "classify",
    "header_summary",
    "normalize_headers",
    "parse_payload",
    "resolve_identifier",
]
