"""
Automation Routes
Outbox for the external automation service: pending workflow events
(assets.uploaded, deposit.paid, launch.approved, final.paid) and their
acknowledgement once delivered.

Authenticated with X-Automation-Key (AUTOMATION_API_KEY) or an admin token.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import List
from middleware import automation_route_guard
from services.onboarding_service import onboarding_service
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/automation", tags=["automation"])


class AcknowledgeRequest(BaseModel):
    project_id: str
    event_ids: List[str] = Field(default_factory=list)


@router.get("/events")
async def list_pending_events(limit: int = 200, caller: dict = Depends(automation_route_guard)):
    events = await onboarding_service.list_pending_events(limit=limit)
    return {"events": events, "count": len(events)}


@router.post("/events/ack")
async def acknowledge_events(body: AcknowledgeRequest, caller: dict = Depends(automation_route_guard)):
    removed = await onboarding_service.acknowledge_events(
        body.project_id, body.event_ids, actor_id=caller.get("user_id")
    )
    logger.info(f"Outbox ack for {body.project_id}: {removed} event(s) removed")
    return {"ok": True, "acknowledged": removed}
