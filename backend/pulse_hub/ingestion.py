"""Webhook ingestion pipeline: verify, classify, merge, record."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

from .events import (
    EVENT_TYPE_HEADER,
    EXTERNAL_ID_HEADER,
    SIGNATURE_HEADER,
    MissingIdentifierError,
    PayloadUnparsableError,
    Unrecognized,
    WebhookEvent,
    classify,
    header_summary,
    normalize_headers,
    parse_payload,
)
from .history import HistoryEntry, HistoryLog
from .merge import FieldWarning, MergeOutcome, apply_event
from .signature import SignatureCheck, check_signature
from .store import ProfileMap, ProfileStore, StoreWriteError
from .telemetry import emit_event

logger = logging.getLogger(__name__)

RAW_SAMPLE_LIMIT = 500


@dataclass
class IngestionResult:
    status_code: int
    success: bool
    event: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    profiles_processed: int = 0
    warnings: List[FieldWarning] = field(default_factory=list)

    def as_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "event": self.event,
            "profilesProcessed": self.profiles_processed,
        }
        if self.success:
            payload["message"] = self.message
            payload["warnings"] = [warning.as_dict() for warning in self.warnings]
        else:
            payload["error"] = self.error
        return payload


@dataclass
class ReplaySummary:
    applied: int = 0
    skipped: int = 0
    warnings: List[FieldWarning] = field(default_factory=list)


def _identifier_of(event: WebhookEvent) -> Optional[str]:
    return getattr(event, "identifier", None)


def _telemetry_fields(event: WebhookEvent) -> Dict[str, Any]:
    body = event.body
    fields: Dict[str, Any] = {"event_type": event.event_type, "kind": event.kind}
    if event.kind == "score_created" and isinstance(body.get("type"), str):
        fields["score_type"] = body["type"]
    if event.kind == "biomarker_created" and isinstance(body.get("category"), str):
        fields["biomarker_category"] = body["category"]
    return fields


class WebhookIngestor:
    """Runs one webhook request through the pipeline against an explicit store and history log."""

    def __init__(
        self,
        store: ProfileStore,
        history: HistoryLog,
        secret: Optional[str] = None,
        signature_policy: Literal["warn", "reject"] = "warn",
    ) -> None:
        self._store = store
        self._history = history
        self._secret = secret
        self._signature_policy = signature_policy

    def handle(self, raw_body: Union[str, bytes], headers: Mapping[str, str]) -> IngestionResult:
        lowered = normalize_headers(headers)
        summary = header_summary(lowered)
        header_event = lowered.get(EVENT_TYPE_HEADER)
        header_id = lowered.get(EXTERNAL_ID_HEADER)
        logger.info("Webhook received: event=%s externalId=%s", header_event, header_id)

        check = check_signature(raw_body, lowered.get(SIGNATURE_HEADER), self._secret)
        if not check.passed:
            rejected = self._handle_invalid_signature(check, header_event, header_id)
            if rejected is not None:
                self._record_failure(header_event, header_id, raw_body, summary, rejected.error)
                return rejected

        try:
            payload = parse_payload(raw_body)
        except PayloadUnparsableError as exc:
            logger.error("Rejected unparsable webhook payload: %s", exc)
            self._record_failure(header_event, header_id, raw_body, summary, str(exc))
            return IngestionResult(
                status_code=500,
                success=False,
                event=header_event,
                error=f"Failed to process webhook: {exc}",
            )

        try:
            event = classify(lowered, payload)
        except MissingIdentifierError as exc:
            logger.warning("Rejected webhook without profile identifier (event=%s)", header_event)
            self._record_failure(header_event, header_id, payload, summary, str(exc))
            return IngestionResult(status_code=400, success=False, event=header_event, error=str(exc))

        emit_event("webhook_received", **_telemetry_fields(event))

        try:
            if isinstance(event, Unrecognized):
                outcome = MergeOutcome(kind=event.kind, event_type=event.event_type)
            else:
                outcome = self._store.mutate(lambda profiles: apply_event(profiles, event))
        except StoreWriteError as exc:
            self._record_failure(event.event_type, _identifier_of(event), payload, summary, str(exc))
            return IngestionResult(status_code=500, success=False, event=event.event_type, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Webhook processing error for %s", event.event_type)
            self._record_failure(event.event_type, _identifier_of(event), payload, summary, str(exc))
            return IngestionResult(
                status_code=500,
                success=False,
                event=event.event_type,
                error=f"Failed to process webhook: {exc}",
            )

        self._history.append(
            HistoryEntry(
                event_type=event.event_type,
                external_id=_identifier_of(event),
                payload=payload,
                header_summary=summary,
            )
        )

        if isinstance(event, Unrecognized):
            message = f"Webhook acknowledged; {event.reason or 'event not recognised'} Nothing was stored."
        else:
            message = "Webhook processed successfully"
        emit_event(
            "webhook_merged",
            event_type=event.event_type,
            profiles=outcome.profiles_processed,
            warnings=len(outcome.warnings),
        )
        return IngestionResult(
            status_code=200,
            success=True,
            event=event.event_type,
            message=message,
            profiles_processed=outcome.profiles_processed,
            warnings=list(outcome.warnings),
        )

    def replay(self, entries: Iterable[HistoryEntry]) -> ReplaySummary:
        return replay_entries(self._store, entries)

    def _handle_invalid_signature(
        self,
        check: SignatureCheck,
        event_type: Optional[str],
        external_id: Optional[str],
    ) -> Optional[IngestionResult]:
        emit_event(
            "webhook_signature_invalid",
            event_type=event_type,
            external_id=external_id,
            reason=check.reason,
            policy=self._signature_policy,
        )
        if self._signature_policy == "reject":
            return IngestionResult(status_code=401, success=False, event=event_type, error="Invalid signature")
        logger.warning("Accepting webhook with invalid signature (%s) under warn policy", check.reason)
        return None

    def _record_failure(
        self,
        event_type: Optional[str],
        external_id: Optional[str],
        payload: Any,
        summary: Dict[str, Optional[str]],
        error: Optional[str],
    ) -> None:
        if isinstance(payload, (bytes, str)):
            text = payload.decode("utf-8", "replace") if isinstance(payload, bytes) else payload
            payload = text[:RAW_SAMPLE_LIMIT]
        self._history.append(
            HistoryEntry(
                event_type=event_type or "error",
                external_id=external_id,
                payload=payload,
                header_summary=summary,
                success=False,
                error=error,
            )
        )


def replay_entries(store: ProfileStore, entries: Iterable[HistoryEntry]) -> ReplaySummary:
    """Re-apply recorded envelopes, oldest first, inside a single store critical section."""
    summary = ReplaySummary()
    ordered = [entry for entry in entries if entry.success]

    def _apply(profiles: ProfileMap) -> None:
        for entry in ordered:
            headers = {
                key: value
                for key, value in (
                    ("X-Event-Type", entry.header_summary.get("X-Event-Type")),
                    ("X-External-Id", entry.header_summary.get("X-External-Id")),
                )
                if value
            }
            try:
                event = classify(headers, entry.payload)
            except MissingIdentifierError:
                summary.skipped += 1
                continue
            if isinstance(event, Unrecognized):
                summary.skipped += 1
                continue
            outcome = apply_event(profiles, event)
            summary.warnings.extend(outcome.warnings)
            summary.applied += 1

    store.mutate(_apply)
    logger.info("Replayed %d history entries (%d skipped)", summary.applied, summary.skipped)
    return summary


__all__ = ["IngestionResult", "ReplaySummary", "WebhookIngestor", "replay_entries"]
