"""
Admin Onboarding Routes
Staff view of every onboarding project: delivery status updates with internal
notes, and the workflow operations staff may run on a client's behalf.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from middleware import admin_route_guard
from models import Actor, BusinessInfo, DesignSpecs, UploadAsset
from services.onboarding_service import onboarding_service, project_view
from services.onboarding_status import status_options
from utils.audit import get_audit_logs_for_resource
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/onboarding", tags=["admin-onboarding"])


# ============================================
# MODELS
# ============================================

class StatusUpdateRequest(BaseModel):
    status: str
    note: Optional[str] = None


class ServiceSelectionRequest(BaseModel):
    services: List[str] = Field(default_factory=list)


class UploadsRequest(BaseModel):
    assets: List[UploadAsset] = Field(default_factory=list)


class VoiceAgentRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)


# ============================================
# LIST & STATUS
# ============================================

@router.get("/status-options")
async def get_status_options(current_user: dict = Depends(admin_route_guard)):
    return {"options": status_options()}


@router.get("/projects")
async def list_projects(
    status: Optional[str] = None,
    limit: int = 200,
    current_user: dict = Depends(admin_route_guard),
):
    """All onboarding projects, most recently updated first."""
    projects = await onboarding_service.list_all_projects(status=status, limit=limit)
    return {"projects": [project_view(p) for p in projects], "total": len(projects)}


@router.get("/projects/{project_id}")
async def get_project(project_id: str, current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.get_project(project_id)
    return {"project": project_view(project)}


@router.get("/projects/{project_id}/audit")
async def get_project_audit(project_id: str, limit: int = 50, current_user: dict = Depends(admin_route_guard)):
    """Audit trail for one project, newest first."""
    await onboarding_service.get_project(project_id)
    entries = await get_audit_logs_for_resource("onboarding_project", project_id, limit=min(limit, 200))
    return {"entries": entries, "count": len(entries)}


@router.put("/projects/{project_id}/status")
async def update_status(project_id: str, body: StatusUpdateRequest,
                        current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.update_status(
        project_id,
        body.status,
        note=body.note,
        actor=Actor.STAFF,
        actor_id=current_user.get("user_id"),
    )
    return {"ok": True, "message": "Onboarding status updated.", "project": project_view(project)}


# ============================================
# WORKFLOW OPERATIONS (staff on behalf of the client)
# ============================================

@router.put("/projects/{project_id}/services")
async def select_services(project_id: str, body: ServiceSelectionRequest,
                          current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.select_services(
        project_id, body.services, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/business")
async def set_business_info(project_id: str, body: BusinessInfo,
                            current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.set_business_info(
        project_id, body, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/design")
async def set_design_specs(project_id: str, body: DesignSpecs,
                           current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.set_design_specs(
        project_id, body, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/uploads")
async def record_uploads(project_id: str, body: UploadsRequest,
                         current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.record_uploads(
        project_id, body.assets, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/voice-agent")
async def update_voice_agent(project_id: str, body: VoiceAgentRequest,
                             current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.update_voice_agent(
        project_id, body.config, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/deposit-paid")
async def mark_deposit_paid(project_id: str, current_user: dict = Depends(admin_route_guard)):
    """Record a deposit taken outside Stripe checkout."""
    project = await onboarding_service.mark_deposit_paid(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/advance")
async def advance_to_launch_approval(project_id: str, current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.advance_to_launch_approval(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/approve-launch")
async def approve_launch(project_id: str, current_user: dict = Depends(admin_route_guard)):
    project = await onboarding_service.approve_launch(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/final-paid")
async def mark_final_invoice_paid(project_id: str, current_user: dict = Depends(admin_route_guard)):
    """Record a final balance taken outside Stripe checkout."""
    project = await onboarding_service.mark_final_invoice_paid(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/checkout/deposit")
async def start_deposit_checkout(project_id: str, current_user: dict = Depends(admin_route_guard)):
    result = await onboarding_service.start_deposit_checkout(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return result.model_dump(mode="json")


@router.post("/projects/{project_id}/checkout/final")
async def start_final_invoice_checkout(project_id: str, current_user: dict = Depends(admin_route_guard)):
    result = await onboarding_service.start_final_invoice_checkout(
        project_id, actor=Actor.STAFF, actor_id=current_user.get("user_id")
    )
    return result.model_dump(mode="json")
