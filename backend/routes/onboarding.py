"""
Client Onboarding Routes
The dashboard wizard: service selection, intake answers, uploads, voice agent
settings, launch approval and the two checkouts.

Every project lookup is scoped to the signed-in user, so a client can never
read or move somebody else's project.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from middleware import require_auth
from models import Actor, BusinessInfo, DesignSpecs, UploadAsset
from services.billing_reconciliation import get_billing_history
from services.onboarding_service import onboarding_service, project_view
from services.onboarding_status import CLIENT_NEXT_STEP
from services.service_catalog import DEFAULT_CATALOG, describe_selection, validate_service_keys
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


# ============================================
# MODELS
# ============================================

class StartProjectRequest(BaseModel):
    label: Optional[str] = None


class IntakeSaveRequest(BaseModel):
    form: Dict[str, Any] = Field(default_factory=dict)
    project_id: Optional[str] = None
    label: Optional[str] = None
    create_new: bool = False


class ServiceSelectionRequest(BaseModel):
    services: List[str] = Field(default_factory=list)


class UploadsRequest(BaseModel):
    assets: List[UploadAsset] = Field(default_factory=list)


class VoiceAgentRequest(BaseModel):
    config: Dict[str, Any] = Field(default_factory=dict)


# ============================================
# CATALOG
# ============================================

@router.get("/catalog")
async def get_catalog():
    """Sellable services, the kickoff deposit and the bundle discount."""
    catalog = DEFAULT_CATALOG
    return {
        "services": [
            {
                "key": s.key,
                "name": s.name,
                "short_label": s.short_label,
                "tagline": s.tagline,
                "description": s.description,
                "bullets": list(s.bullets),
                "due_at_approval_cents": s.due_at_approval_cents,
                "total_cents": s.total_cents,
                "ongoing_note": s.ongoing_note,
            }
            for s in catalog.services
        ],
        "kickoff_deposit_cents": catalog.kickoff_deposit_cents,
        "bundle_discount_percent": catalog.bundle_discount_percent,
        "bundle_label": catalog.bundle_label,
    }


@router.post("/catalog/describe")
async def describe_services(body: ServiceSelectionRequest):
    """Price a selection before it is saved (live preview in the wizard)."""
    keys = validate_service_keys(body.services)
    return describe_selection({k: True for k in keys}).model_dump()


# ============================================
# PROJECTS
# ============================================

@router.get("/projects")
async def list_my_projects(current_user: dict = Depends(require_auth)):
    projects = await onboarding_service.list_projects(current_user["user_id"])
    return {"projects": [project_view(p) for p in projects]}


@router.post("/projects")
async def start_project(body: StartProjectRequest, current_user: dict = Depends(require_auth)):
    project = await onboarding_service.start_project(current_user["user_id"], body.label)
    return {"ok": True, "project": project_view(project)}


@router.get("/projects/{project_id}")
async def get_my_project(project_id: str, current_user: dict = Depends(require_auth)):
    project = await onboarding_service.get_project(project_id, user_id=current_user["user_id"])
    return {"project": project_view(project), "next_step": CLIENT_NEXT_STEP[project.status]}


@router.post("/intake")
async def save_intake(body: IntakeSaveRequest, current_user: dict = Depends(require_auth)):
    """Routine save of the intake form. Creates the project on first submit."""
    project = await onboarding_service.save_intake(
        current_user["user_id"],
        body.form,
        project_id=body.project_id,
        label=body.label,
        create_new=body.create_new,
    )
    return {"ok": True, "message": "Onboarding details saved.", "project": project_view(project)}


# ============================================
# WORKFLOW STEPS
# ============================================

@router.put("/projects/{project_id}/services")
async def select_services(project_id: str, body: ServiceSelectionRequest,
                          current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.select_services(
        project_id, body.services, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/business")
async def set_business_info(project_id: str, body: BusinessInfo, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.set_business_info(
        project_id, body, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/design")
async def set_design_specs(project_id: str, body: DesignSpecs, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.set_design_specs(
        project_id, body, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/uploads")
async def record_uploads(project_id: str, body: UploadsRequest, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.record_uploads(
        project_id, body.assets, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.put("/projects/{project_id}/voice-agent")
async def update_voice_agent(project_id: str, body: VoiceAgentRequest,
                             current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.update_voice_agent(
        project_id, body.config, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/advance")
async def advance_to_launch_approval(project_id: str, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.advance_to_launch_approval(
        project_id, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "project": project_view(project)}


@router.post("/projects/{project_id}/approve-launch")
async def approve_launch(project_id: str, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    project = await onboarding_service.approve_launch(
        project_id, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return {"ok": True, "message": "Launch approved.", "project": project_view(project)}


# ============================================
# CHECKOUT & BILLING
# ============================================

@router.post("/projects/{project_id}/checkout/deposit")
async def start_deposit_checkout(project_id: str, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    result = await onboarding_service.start_deposit_checkout(
        project_id, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return result.model_dump(mode="json")


@router.post("/projects/{project_id}/checkout/final")
async def start_final_invoice_checkout(project_id: str, current_user: dict = Depends(require_auth)):
    user_id = current_user["user_id"]
    result = await onboarding_service.start_final_invoice_checkout(
        project_id, actor=Actor.CLIENT, user_id=user_id, actor_id=user_id
    )
    return result.model_dump(mode="json")


@router.get("/billing")
async def get_my_billing(current_user: dict = Depends(require_auth)):
    """Payment requests, processor payments and the deposit summary for the signed-in client."""
    return await get_billing_history(current_user["user_id"])
