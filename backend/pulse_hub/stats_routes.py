"""Read-only statistics endpoints and the department assignment map."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, status

from .services import HubServices, get_hub

router = APIRouter(tags=["stats"])
logger = logging.getLogger(__name__)


@router.get("/stats")
def webhook_stats(hub: HubServices = Depends(get_hub)) -> Dict[str, Any]:
    try:
        stats = hub.aggregator.generate_and_save()
    except OSError as exc:
        logger.exception("Failed to persist statistics snapshot")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return {
        "success": True,
        "stats": stats.as_payload(),
        "generated": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/stats/snapshot")
def webhook_stats_snapshot(hub: HubServices = Depends(get_hub)) -> Dict[str, Any]:
    snapshot = hub.aggregator.latest_snapshot()
    return {"success": True, "stats": snapshot or {}}


@router.get("/stats/events")
def webhook_event_counts(hub: HubServices = Depends(get_hub)) -> Dict[str, Any]:
    return {"success": True, "counts": hub.event_counter.read()}


@router.get("/departments")
def department_assignments(hub: HubServices = Depends(get_hub)) -> Dict[str, str]:
    return hub.departments.read()


@router.post("/departments")
def save_department_assignments(
    assignments: Dict[str, str] = Body(...),
    hub: HubServices = Depends(get_hub),
) -> Dict[str, Any]:
    try:
        count = hub.departments.replace(assignments)
    except OSError as exc:
        logger.exception("Failed to save department assignments")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return {"success": True, "message": "Department assignments saved", "count": count}
