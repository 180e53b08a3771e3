"""
Onboarding Service - Business Logic Layer
Loads projects, checks who is acting, runs the pure workflow, and persists the
result.

Every workflow write is a single update_one guarded by the state the
transition was computed from (state + payment_phase). Changed fields go in
with $set, new outbox events and uploads with $push. If another writer got
there first (a retried webhook, a double click) the guard misses, the project
is reloaded and the operation re-run, where it usually turns into a no-op.
"""
import re
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from database import database
from models import (
    Actor,
    AuditAction,
    BusinessInfo,
    DeliveryStatus,
    DesignSpecs,
    OnboardingProject,
    PaymentPhase,
    PaymentType,
    UploadAsset,
)
from services.errors import InvalidTransitionError, NotFoundError, OnboardingBillingError
from services.legacy_plans import is_legacy_plan_key, selection_from_legacy_plan
from services.onboarding_authority import (
    WorkflowOperation,
    require_operation,
    require_status_move,
)
from services.onboarding_status import (
    PROTECTED_STATUSES,
    coerce_status,
    resolve_client_save_status,
)
from services.onboarding_workflow import (
    OnboardingWorkflow,
    TransitionResult,
)
from services.payment_requests import PaymentRequestResult, payment_request_service
from services.service_catalog import (
    DEFAULT_CATALOG,
    ServiceCatalog,
    normalise_selection,
    selected_keys,
)
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

# Free-text answers collected by the dashboard intake form
INTAKE_FIELDS = (
    "billing_contact_name",
    "billing_contact_email",
    "billing_notes",
    "company_name",
    "website",
    "primary_metric",
    "monthly_ad_budget",
    "sales_cycle",
    "team_size",
    "crm_tools",
    "voice_coverage",
    "cal_link",
    "goals",
    "challenges",
    "launch_timeline",
    "notes",
    "target_audience",
    "unique_value_prop",
    "offer_details",
    "brand_voice",
    "ad_channels",
    "follow_up_process",
    "receptionist_instructions",
    "integrations",
)

# Older clients sent the selection under any of these keys
SERVICE_INPUT_KEYS = ("services", "selected_services", "service_selection", "plan", "plan_key")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_intake_form(
    form: Mapping[str, Any],
    catalog: ServiceCatalog = DEFAULT_CATALOG,
) -> Tuple[Dict[str, str], Optional[Dict[str, bool]]]:
    """Split an intake payload into free-text answers and a service selection.

    Accepts snake_case or camelCase keys. The selection is None when the form
    carries no service input at all; legacy plan strings are translated.
    """
    data = {_snake(k): v for k, v in (form or {}).items()}

    intake = {}
    for key in INTAKE_FIELDS:
        value = data.get(key)
        if value is not None:
            intake[key] = value if isinstance(value, str) else str(value)

    raw = next((data[k] for k in SERVICE_INPUT_KEYS if data.get(k) is not None), None)
    if raw is None:
        return intake, None
    if isinstance(raw, str):
        if is_legacy_plan_key(raw):
            return intake, selection_from_legacy_plan(raw, catalog)
        return intake, normalise_selection([raw], catalog)
    return intake, normalise_selection(raw, catalog)


def project_view(project: OnboardingProject, catalog: ServiceCatalog = DEFAULT_CATALOG) -> Dict[str, Any]:
    """JSON-ready project with the rendered step prompt."""
    return OnboardingWorkflow(project, catalog).snapshot()


class OnboardingService:
    def __init__(self, catalog: ServiceCatalog = DEFAULT_CATALOG, payment_requests=None):
        self.catalog = catalog
        self.payment_requests = payment_requests or payment_request_service

    # =========================================================================
    # Reads
    # =========================================================================

    async def _find(self, project_id: str, user_id: Optional[str] = None) -> Optional[OnboardingProject]:
        db = database.get_db()
        query = {"project_id": project_id}
        if user_id:
            query["user_id"] = user_id
        doc = await db.onboarding_projects.find_one(query, {"_id": 0})
        return OnboardingProject(**doc) if doc else None

    async def get_project(self, project_id: str, user_id: Optional[str] = None) -> OnboardingProject:
        """Load a project. Passing user_id scopes the lookup to that owner."""
        project = await self._find(project_id, user_id)
        if not project:
            raise NotFoundError("Onboarding project not found.")
        return project

    async def list_projects(self, user_id: str) -> List[OnboardingProject]:
        db = database.get_db()
        cursor = db.onboarding_projects.find({"user_id": user_id}, {"_id": 0}).sort("updated_at", -1)
        return [OnboardingProject(**doc) for doc in await cursor.to_list(length=100)]

    async def list_all_projects(self, status: Optional[str] = None, limit: int = 200) -> List[OnboardingProject]:
        query = {}
        if status:
            try:
                query["status"] = coerce_status(status).value
            except ValueError:
                raise OnboardingBillingError(f"Unknown onboarding status: {status}")
        db = database.get_db()
        cursor = db.onboarding_projects.find(query, {"_id": 0}).sort("updated_at", -1).limit(limit)
        return [OnboardingProject(**doc) for doc in await cursor.to_list(length=limit)]

    # =========================================================================
    # Creation & routine client saves
    # =========================================================================

    async def start_project(self, user_id: str, label: Optional[str] = None) -> OnboardingProject:
        db = database.get_db()
        project = OnboardingProject(user_id=user_id, label=(label or "").strip() or "Project")
        await db.onboarding_projects.insert_one(project.model_dump(mode="json"))

        await create_audit_log(
            action=AuditAction.ONBOARDING_PROJECT_CREATED,
            actor_role=Actor.CLIENT,
            actor_id=user_id,
            user_id=user_id,
            resource_type="onboarding_project",
            resource_id=project.project_id,
        )
        logger.info(f"Onboarding project created: {project.project_id} for user {user_id}")
        return project

    async def save_intake(
        self,
        user_id: str,
        form: Mapping[str, Any],
        project_id: Optional[str] = None,
        label: Optional[str] = None,
        create_new: bool = False,
    ) -> OnboardingProject:
        """
        Routine client save of the intake form.

        Creates the project on first submission (status submitted). On later
        saves the status becomes submitted unless staff already moved it to a
        protected status, which is left untouched by a conditional update.
        """
        db = database.get_db()
        intake, selection = parse_intake_form(form, self.catalog)
        label = (label or "").strip() or None
        now = _now()

        existing = None
        if project_id and not create_new:
            existing = await self._find(project_id, user_id)

        if existing is None:
            project = OnboardingProject(
                user_id=user_id,
                label=label or "Project",
                intake=intake,
                status=DeliveryStatus.SUBMITTED,
                status_updated_at=now,
                submitted_at=now,
            )
            if selection is not None and any(selection.values()):
                OnboardingWorkflow(project, self.catalog).select_services(selected_keys(selection, self.catalog))
            await db.onboarding_projects.insert_one(project.model_dump(mode="json"))
            if selection is not None:
                await self._sync_user_services(user_id, project.services)
            logger.info(f"Onboarding submitted: new project {project.project_id} for user {user_id}")
            await create_audit_log(
                action=AuditAction.ONBOARDING_INTAKE_SAVED,
                actor_role=Actor.CLIENT,
                actor_id=user_id,
                user_id=user_id,
                resource_type="onboarding_project",
                resource_id=project.project_id,
                metadata={"created": True},
            )
            return project

        target = resolve_client_save_status(existing.status)
        if target != existing.status:
            require_status_move(Actor.CLIENT, existing.status, target)

        if selection is not None and selection != normalise_selection(existing.services, self.catalog):
            await self.select_services(
                existing.project_id,
                selected_keys(selection, self.catalog),
                actor=Actor.CLIENT,
                user_id=user_id,
                actor_id=user_id,
            )

        fields = {
            "intake": intake,
            "submitted_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        if label:
            fields["label"] = label
        await db.onboarding_projects.update_one(
            {"project_id": existing.project_id, "user_id": user_id},
            {"$set": fields},
        )

        # Only not-started (or missing) moves; submitted stays with its note, protected is never touched
        await db.onboarding_projects.update_one(
            {
                "project_id": existing.project_id,
                "status": {"$nin": [DeliveryStatus.SUBMITTED.value] + [s.value for s in PROTECTED_STATUSES]},
            },
            {"$set": {
                "status": DeliveryStatus.SUBMITTED.value,
                "status_note": None,
                "status_updated_at": now.isoformat(),
            }},
        )

        await create_audit_log(
            action=AuditAction.ONBOARDING_INTAKE_SAVED,
            actor_role=Actor.CLIENT,
            actor_id=user_id,
            user_id=user_id,
            resource_type="onboarding_project",
            resource_id=existing.project_id,
            metadata={"created": False, "status": target.value},
        )
        return await self.get_project(existing.project_id)

    async def _sync_user_services(self, user_id: str, selection: Mapping[str, bool]) -> None:
        """Mirror the latest selection onto the user record for account views."""
        db = database.get_db()
        now = _now().isoformat()
        services = [
            {
                "service_key": definition.key,
                "active": bool(selection.get(definition.key)),
                "price_cents": definition.due_at_approval_cents,
                "ongoing_note": definition.ongoing_note,
                "updated_at": now,
            }
            for definition in self.catalog.services
        ]
        await db.users.update_one({"user_id": user_id}, {"$set": {"services": services}})

    # =========================================================================
    # Delivery status (staff)
    # =========================================================================

    async def update_status(
        self,
        project_id: str,
        status: Any,
        note: Optional[str] = None,
        actor: Actor = Actor.STAFF,
        actor_id: Optional[str] = None,
    ) -> OnboardingProject:
        """Set the delivery status and internal note. Staff may set any status."""
        try:
            new_status = coerce_status(status)
        except ValueError:
            raise OnboardingBillingError(f"Unknown onboarding status: {status}")

        project = await self.get_project(project_id)
        require_status_move(actor, project.status, new_status)

        now = _now()
        clean_note = (note or "").strip() or None
        db = database.get_db()
        await db.onboarding_projects.update_one(
            {"project_id": project_id},
            {"$set": {
                "status": new_status.value,
                "status_note": clean_note,
                "status_updated_at": now.isoformat(),
                "updated_at": now.isoformat(),
            }},
        )

        await create_audit_log(
            action=AuditAction.ONBOARDING_STATUS_UPDATED,
            actor_role=actor,
            actor_id=actor_id,
            user_id=project.user_id,
            resource_type="onboarding_project",
            resource_id=project_id,
            before_state={"status": project.status.value, "status_note": project.status_note},
            after_state={"status": new_status.value, "status_note": clean_note},
        )
        logger.info(f"Onboarding {project_id} status: {project.status.value} → {new_status.value}")

        project.status = new_status
        project.status_note = clean_note
        project.status_updated_at = now
        project.updated_at = now
        return project

    # =========================================================================
    # Workflow track
    # =========================================================================

    async def _apply(
        self,
        project_id: str,
        operation: WorkflowOperation,
        transition: Callable[[OnboardingWorkflow], TransitionResult],
        actor: Actor,
        user_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> OnboardingProject:
        require_operation(actor, operation)
        db = database.get_db()

        for attempt in range(MAX_WRITE_ATTEMPTS):
            project = await self.get_project(project_id, user_id)
            workflow = OnboardingWorkflow(project, self.catalog)
            result = transition(workflow)
            if not result.changed:
                return workflow.project

            update: Dict[str, Any] = {"$set": result.changes}
            push = {}
            if result.events:
                push["webhook_queue"] = {"$each": [e.model_dump(mode="json") for e in result.events]}
            if result.new_uploads:
                push["uploads"] = {"$each": [a.model_dump(mode="json") for a in result.new_uploads]}
            if push:
                update["$push"] = push

            outcome = await db.onboarding_projects.update_one(
                {
                    "project_id": project_id,
                    "state": result.previous_state.value,
                    "payment_phase": result.previous_phase.value,
                },
                update,
            )
            if outcome.matched_count:
                await self._after_write(workflow.project, operation, result, actor, actor_id)
                return workflow.project

            logger.info(f"Onboarding {project_id} changed during {operation.value}, retrying ({attempt + 1})")

        raise InvalidTransitionError("The project was updated by someone else. Please try again.")

    async def _after_write(
        self,
        project: OnboardingProject,
        operation: WorkflowOperation,
        result: TransitionResult,
        actor: Actor,
        actor_id: Optional[str],
    ) -> None:
        if "services" in result.changes:
            await self._sync_user_services(project.user_id, project.services)

        if project.state != result.previous_state or project.payment_phase != result.previous_phase:
            await create_audit_log(
                action=AuditAction.ONBOARDING_STEP_CHANGED,
                actor_role=actor,
                actor_id=actor_id,
                user_id=project.user_id,
                resource_type="onboarding_project",
                resource_id=project.project_id,
                before_state={"state": result.previous_state.value, "payment_phase": result.previous_phase.value},
                after_state={"state": project.state.value, "payment_phase": project.payment_phase.value},
                metadata={
                    "operation": operation.value,
                    "events": [e.tag.value for e in result.events],
                },
            )

    async def select_services(self, project_id: str, keys: Iterable[str], actor: Actor = Actor.CLIENT,
                              user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        keys = list(keys or [])
        return await self._apply(project_id, WorkflowOperation.SELECT_SERVICES,
                                 lambda wf: wf.select_services(keys), actor, user_id, actor_id)

    async def set_business_info(self, project_id: str, info: BusinessInfo, actor: Actor = Actor.CLIENT,
                                user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.SET_BUSINESS_INFO,
                                 lambda wf: wf.set_business_info(info), actor, user_id, actor_id)

    async def set_design_specs(self, project_id: str, specs: DesignSpecs, actor: Actor = Actor.CLIENT,
                               user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.SET_DESIGN_SPECS,
                                 lambda wf: wf.set_design_specs(specs), actor, user_id, actor_id)

    async def record_uploads(self, project_id: str, assets: Iterable[UploadAsset], actor: Actor = Actor.CLIENT,
                             user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        assets = list(assets or [])
        return await self._apply(project_id, WorkflowOperation.RECORD_UPLOADS,
                                 lambda wf: wf.record_uploads(assets), actor, user_id, actor_id)

    async def update_voice_agent(self, project_id: str, config: Mapping[str, Any], actor: Actor = Actor.CLIENT,
                                 user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.UPDATE_VOICE_AGENT,
                                 lambda wf: wf.update_voice_agent(config), actor, user_id, actor_id)

    async def mark_deposit_paid(self, project_id: str, actor: Actor = Actor.SYSTEM,
                                actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.MARK_DEPOSIT_PAID,
                                 lambda wf: wf.mark_deposit_paid(), actor, None, actor_id)

    async def advance_to_launch_approval(self, project_id: str, actor: Actor = Actor.STAFF,
                                         user_id: Optional[str] = None,
                                         actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.ADVANCE_TO_LAUNCH_APPROVAL,
                                 lambda wf: wf.advance_to_launch_approval(), actor, user_id, actor_id)

    async def approve_launch(self, project_id: str, actor: Actor = Actor.CLIENT,
                             user_id: Optional[str] = None, actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.APPROVE_LAUNCH,
                                 lambda wf: wf.approve_launch(), actor, user_id, actor_id)

    async def mark_final_invoice_paid(self, project_id: str, actor: Actor = Actor.SYSTEM,
                                      actor_id: Optional[str] = None) -> OnboardingProject:
        return await self._apply(project_id, WorkflowOperation.MARK_FINAL_INVOICE_PAID,
                                 lambda wf: wf.mark_final_invoice_paid(), actor, None, actor_id)

    # =========================================================================
    # Checkout
    # =========================================================================

    async def start_deposit_checkout(self, project_id: str, actor: Actor = Actor.CLIENT,
                                     user_id: Optional[str] = None,
                                     actor_id: Optional[str] = None) -> PaymentRequestResult:
        """One kickoff-deposit request per project, refreshed on every call until paid."""
        require_operation(actor, WorkflowOperation.START_CHECKOUT)
        project = await self.get_project(project_id, user_id)
        if project.payment_phase != PaymentPhase.DRAFT:
            raise InvalidTransitionError("The kickoff deposit is already paid.")
        if project.financials.deposit_cents <= 0:
            raise InvalidTransitionError("Select at least one service before paying the deposit.")

        labels = ", ".join(line.label for line in project.financials.line_items)
        return await self.payment_requests.create(
            user_id=project.user_id,
            amount_cents=project.financials.deposit_cents,
            description=f"Kickoff deposit: {labels}",
            project_id=project.project_id,
            generate_checkout=True,
            payment_type=PaymentType.KICKOFF_DEPOSIT,
            request_id=f"deposit-{project.project_id}",
            actor=actor,
            actor_id=actor_id,
        )

    async def start_final_invoice_checkout(self, project_id: str, actor: Actor = Actor.CLIENT,
                                           user_id: Optional[str] = None,
                                           actor_id: Optional[str] = None) -> PaymentRequestResult:
        require_operation(actor, WorkflowOperation.START_CHECKOUT)
        project = await self.get_project(project_id, user_id)
        if project.payment_phase == PaymentPhase.COMPLETE:
            raise InvalidTransitionError("The final invoice is already paid.")
        if project.payment_phase != PaymentPhase.AWAITING_FINAL_INVOICE:
            raise InvalidTransitionError("The final invoice is issued only after launch approval.")

        return await self.payment_requests.create(
            user_id=project.user_id,
            amount_cents=project.financials.due_at_approval_cents,
            description=f"Final balance: {project.label}",
            project_id=project.project_id,
            generate_checkout=True,
            payment_type=PaymentType.FINAL_BALANCE,
            request_id=f"final-{project.project_id}",
            actor=actor,
            actor_id=actor_id,
        )

    # =========================================================================
    # Outbox
    # =========================================================================

    async def list_pending_events(self, limit: int = 200) -> List[Dict[str, Any]]:
        """Unacknowledged workflow events across projects, oldest project update first."""
        db = database.get_db()
        cursor = db.onboarding_projects.find(
            {"webhook_queue.0": {"$exists": True}},
            {"_id": 0, "project_id": 1, "user_id": 1, "webhook_queue": 1},
        ).sort("updated_at", 1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [
            {"project_id": doc["project_id"], "user_id": doc.get("user_id"), **event}
            for doc in docs
            for event in doc.get("webhook_queue", [])
        ]

    async def acknowledge_events(self, project_id: str, event_ids: Iterable[str],
                                 actor_id: Optional[str] = None) -> int:
        """Remove delivered events from a project's queue. Returns how many were removed."""
        event_ids = [e for e in (event_ids or []) if e]
        if not event_ids:
            return 0
        db = database.get_db()
        project = await self.get_project(project_id)
        present = [e.event_id for e in project.webhook_queue if e.event_id in set(event_ids)]
        if not present:
            return 0

        await db.onboarding_projects.update_one(
            {"project_id": project_id},
            {"$pull": {"webhook_queue": {"event_id": {"$in": present}}}},
        )
        await create_audit_log(
            action=AuditAction.ONBOARDING_OUTBOX_ACKNOWLEDGED,
            actor_role=Actor.SYSTEM,
            actor_id=actor_id,
            user_id=project.user_id,
            resource_type="onboarding_project",
            resource_id=project_id,
            metadata={"event_ids": present},
        )
        return len(present)


onboarding_service = OnboardingService()
