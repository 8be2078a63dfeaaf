"""Webhook ingestion, read and clear endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from .departments import apply_assignments
from .formatting import format_archetype, format_score, format_time_value
from .merge import find_key
from .profiles import BiomarkerEntry, ProfileRecord
from .services import HubServices, get_hub
from .store import StoreWriteError

router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = logging.getLogger(__name__)


@router.post("")
async def receive_webhook(request: Request, hub: HubServices = Depends(get_hub)) -> JSONResponse:
    raw_body = await request.body()
    headers = dict(request.headers)
    result = await run_in_threadpool(hub.ingestor.handle, raw_body, headers)
    return JSONResponse(status_code=result.status_code, content=result.as_payload())


def _biomarker_display(entry: BiomarkerEntry) -> str:
    value = entry.value
    if isinstance(value, (int, float)) and entry.unit:
        return format_time_value(value, entry.unit)
    return "" if value is None else str(value)


def _profile_summary(record: ProfileRecord) -> Dict[str, Any]:
    scores = {name: entry.value for name, entry in record.scores.items()}
    return {
        "externalId": record.external_id,
        "profileId": record.profile_id,
        "department": record.department,
        "lastUpdated": record.last_updated.isoformat(),
        "scores": scores,
        "scoreDisplay": {name: format_score(value) for name, value in scores.items()},
        "archetypes": {
            name: format_archetype(name, str(entry.value) if entry.value is not None else None)
            for name, entry in record.archetypes.items()
        },
        "biomarkers": {key: _biomarker_display(entry) for key, entry in record.biomarkers.items()},
        "dataLogCount": len(record.data_logs),
        "device": record.device.model_dump(mode="json", by_alias=True) if record.device else None,
    }


@router.get("")
def read_webhook_data(
    external_id: Optional[str] = Query(default=None, alias="externalId"),
    history: bool = Query(default=False),
    mode: Literal["full", "summary", "history"] = Query(default="full"),
    hub: HubServices = Depends(get_hub),
) -> Dict[str, Any]:
    if history or mode == "history":
        entries = hub.history.recent(hub.settings.history_page_size)
        return {
            "success": True,
            "count": len(entries),
            "total": hub.history.total(),
            "capacity": hub.history.capacity,
            "entries": [entry.model_dump(mode="json", by_alias=True) for entry in entries],
        }

    profiles = hub.store.load()
    assignments = hub.departments.read()

    if external_id:
        key = find_key(profiles, external_id)
        if key is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Profile '{external_id}' was not found.",
            )
        (record,) = apply_assignments([(key, profiles[key])], assignments)
        return {"success": True, "data": record.to_storage()}

    records = apply_assignments(profiles.items(), assignments)
    last_updated = max((record.last_updated for record in records), default=None)
    payload: List[Dict[str, Any]]
    if mode == "summary":
        payload = [_profile_summary(record) for record in records]
    else:
        payload = [record.to_storage() for record in records]
    return {
        "success": True,
        "count": len(payload),
        "profiles": payload,
        "lastUpdated": last_updated.isoformat() if last_updated else None,
    }


@router.delete("")
def clear_webhook_data(
    confirm: bool = Query(default=False),
    hub: HubServices = Depends(get_hub),
) -> Dict[str, Any]:
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Must confirm deletion with ?confirm=true",
        )
    try:
        hub.store.clear()
    except StoreWriteError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    hub.history.clear()
    logger.warning("Webhook store and history cleared on request")
    return {"success": True, "message": "Webhook data cleared"}
