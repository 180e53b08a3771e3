"""
Onboarding Workflow State Machine
The nine-step launch onboarding flow: pick services, tell us about the
business, upload media, pay the kickoff deposit, approve the build, settle the
final invoice.

OnboardingWorkflow is pure. It works on an OnboardingProject in memory and
reports what changed; services.onboarding_service persists the result.

Rules:
- The step pointer never moves backwards. Intake steps can be filled in any
  order up to REVIEW_AND_PAY_DEPOSIT; each one only ever moves the pointer to
  max(current, target).
- Services, business info and design specs are frozen once the deposit is paid.
- Payment and approval operations are idempotent: repeating one is a no-op that
  enqueues nothing.
- A refused operation raises before anything is mutated.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from models import (
    BusinessInfo,
    DesignSpecs,
    FinancialSnapshot,
    OnboardingProject,
    OnboardingStep,
    OutboxEvent,
    PaymentPhase,
    SelectedServiceLine,
    UploadAsset,
    VoiceAgentConfig,
    WorkflowEvent,
)
from services.errors import InvalidTransitionError
from services.service_catalog import (
    DEFAULT_CATALOG,
    ServiceCatalog,
    describe_selection,
    format_cents,
    normalise_selection,
    validate_service_keys,
)

logger = logging.getLogger(__name__)

VOICE_SERVICE_KEY = "voice"


@dataclass(frozen=True)
class StepDefinition:
    step: OnboardingStep
    index: int
    title: str
    prompt: str


ONBOARDING_STEPS: List[StepDefinition] = [
    StepDefinition(
        OnboardingStep.WELCOME, 1, "Welcome",
        "Kick off your launch for a small deposit now. The rest is only due when you approve the launch.\n"
        "Choose the services you'd like to start with, and we'll build your funnel.\n"
        "*Progress: Step 1 of 9*",
    ),
    StepDefinition(
        OnboardingStep.SELECT_SERVICES, 2, "Select services",
        "Select the services you want: a conversion website, Google & Meta ads, an AI voice receptionist, "
        "or all three for the Full Funnel discount.\n"
        "One kickoff deposit reserves your slot. The balance is paid after you approve launch.\n"
        "*Progress: Step 2 of 9*",
    ),
    StepDefinition(
        OnboardingStep.BUSINESS_INFO, 3, "Business information",
        "Now tell us about your business. This helps us craft copy, design, and automation that feels like you.\n"
        "Required: business name, contact name, email, phone, service areas, core services, "
        "a short description and your success goal.\n"
        "Optional: website, competitors, social links.\n"
        "*Progress: Step 3 of 9*",
    ),
    StepDefinition(
        OnboardingStep.DESIGN_SPECS, 4, "Design specs",
        "What should your brand look and feel like?\n"
        "Share brand colours, preferred fonts, the style or mood you want and any reference sites.\n"
        "If unsure, just tell us your vibe.\n"
        "*Progress: Step 4 of 9*",
    ),
    StepDefinition(
        OnboardingStep.MEDIA_UPLOAD, 5, "Media upload",
        "Upload your media so we can build quickly: logos, brand or product photos, team photos, "
        "before/after shots, testimonials and brochures.\n"
        "Optional: a voice sample if AI Voice is selected.\n"
        "*Progress: Step 5 of 9*",
    ),
    StepDefinition(
        OnboardingStep.REVIEW_AND_PAY_DEPOSIT, 6, "Review & pay deposit",
        "Here's your summary:\n"
        "- Services selected: [list]\n"
        "- Kickoff deposit due now: **$[depositNow]**\n"
        "- Balance due after your approval: **$[balanceLater]**\n"
        "Pay the deposit to reserve your slot and we'll start immediately.\n"
        "*Progress: Step 6 of 9*",
    ),
    StepDefinition(
        OnboardingStep.POSTPAY_SUCCESS, 7, "Deposit confirmed",
        "You're all set!\n"
        "- Your strategist will contact you within 24h\n"
        "- Copy outline in 1-2 days, design mockups in 3-4 days\n"
        "- Launch review call before we go live\n"
        "*Progress: Step 7 of 9*",
    ),
    StepDefinition(
        OnboardingStep.LAUNCH_APPROVAL, 8, "Launch approval",
        "Time to review your build: [list].\n"
        "Once you approve, we'll send the final invoice and launch.\n"
        "*Progress: Step 8 of 9*",
    ),
    StepDefinition(
        OnboardingStep.FINAL_INVOICE, 9, "Final invoice",
        "Please settle your remaining balance of **$[balanceLater]**.\n"
        "After payment we mark the project complete, launch live, and hand off your dashboard.\n"
        "*Progress: Step 9 of 9*",
    ),
]

STEP_BY_ID: Dict[OnboardingStep, StepDefinition] = {s.step: s for s in ONBOARDING_STEPS}
TOTAL_STEPS = len(ONBOARDING_STEPS)

# Last step at which intake data may still be edited
LAST_INTAKE_STEP = OnboardingStep.REVIEW_AND_PAY_DEPOSIT


def step_index(step: OnboardingStep) -> int:
    return STEP_BY_ID[step].index


def furthest_step(current: OnboardingStep, target: OnboardingStep) -> OnboardingStep:
    return target if step_index(target) > step_index(current) else current


def build_voice_agent_config(existing: Optional[Mapping[str, Any]] = None) -> VoiceAgentConfig:
    """Defaults overlaid with any provided fields."""
    base = VoiceAgentConfig().model_dump()
    for key, value in (existing or {}).items():
        if value is not None and key in base:
            base[key] = value
    return VoiceAgentConfig(**base)


def compute_financials(selection: Mapping[str, bool], catalog: ServiceCatalog = DEFAULT_CATALOG) -> FinancialSnapshot:
    summary = describe_selection(selection, catalog)
    return FinancialSnapshot(
        deposit_cents=summary.deposit_cents,
        due_at_approval_cents=summary.due_at_approval_cents,
        discount_cents=summary.discount_cents,
        total_launch_cents=summary.total_launch_cents,
        ongoing_notes=summary.ongoing_notes,
        line_items=[
            SelectedServiceLine(
                key=key,
                label=catalog.get(key).name,
                due_at_approval_cents=catalog.get(key).due_at_approval_cents,
                ongoing_note=catalog.get(key).ongoing_note,
            )
            for key in summary.selected_keys
        ],
    )


def render_step_prompt(
    step: OnboardingStep,
    financials: FinancialSnapshot,
    service_labels: Iterable[str],
) -> str:
    """Fill [list], [depositNow] and [balanceLater] in a step prompt."""
    labels = list(service_labels)
    return (
        STEP_BY_ID[step].prompt
        .replace("[list]", ", ".join(labels) if labels else "None yet")
        .replace("[depositNow]", format_cents(financials.deposit_cents, currency_symbol=""))
        .replace("[balanceLater]", format_cents(financials.due_at_approval_cents, currency_symbol=""))
    )


@dataclass
class TransitionResult:
    """Outcome of one workflow operation.

    `changes` maps top-level project fields to their new (JSON-ready) values.
    `events` and `new_uploads` are appended to the stored arrays, never replaced.
    """
    changed: bool
    previous_state: OnboardingStep
    previous_phase: PaymentPhase
    events: List[OutboxEvent] = field(default_factory=list)
    changes: Dict[str, Any] = field(default_factory=dict)
    new_uploads: List[UploadAsset] = field(default_factory=list)


class OnboardingWorkflow:
    def __init__(self, project: OnboardingProject, catalog: ServiceCatalog = DEFAULT_CATALOG):
        self.project = project
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def deposit_paid(self) -> bool:
        return self.project.payment_phase != PaymentPhase.DRAFT

    def _begin(self) -> TransitionResult:
        return TransitionResult(
            changed=False,
            previous_state=self.project.state,
            previous_phase=self.project.payment_phase,
        )

    def _set(self, result: TransitionResult, name: str, value: Any) -> None:
        if getattr(self.project, name) == value:
            return
        setattr(self.project, name, value)
        result.changes[name] = self.project.model_dump(mode="json", include={name})[name]
        result.changed = True

    def _advance(self, result: TransitionResult, target: OnboardingStep) -> None:
        step = furthest_step(self.project.state, target)
        self._set(result, "state", step)
        self._set(result, "step_index", step_index(step))

    def _enqueue(self, result: TransitionResult, tag: WorkflowEvent) -> None:
        event = OutboxEvent(tag=tag)
        self.project.webhook_queue.append(event)
        result.events.append(event)
        result.changed = True

    def _finish(self, result: TransitionResult) -> TransitionResult:
        if result.changed:
            now = datetime.now(timezone.utc)
            self.project.updated_at = now
            result.changes["updated_at"] = now.isoformat()
            if self.project.state != result.previous_state:
                logger.info(
                    f"Onboarding {self.project.project_id} moved: "
                    f"{result.previous_state.value} → {self.project.state.value}"
                )
        return result

    def _require_intake_open(self, what: str) -> None:
        if self.deposit_paid:
            raise InvalidTransitionError(f"{what} cannot be changed after the kickoff deposit is paid")

    def selected_labels(self) -> List[str]:
        return [line.label for line in self.project.financials.line_items]

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def select_services(self, keys: Iterable[str]) -> TransitionResult:
        """Replace the selection, reprice, and move on to business info."""
        keys = validate_service_keys(keys, self.catalog)
        self._require_intake_open("Services")

        result = self._begin()
        selection = normalise_selection(keys, self.catalog)
        self._set(result, "services", selection)
        self._set(result, "financials", compute_financials(selection, self.catalog))

        if selection.get(VOICE_SERVICE_KEY):
            existing = self.project.voice_agent.model_dump() if self.project.voice_agent else None
            self._set(result, "voice_agent", build_voice_agent_config(existing))
        else:
            self._set(result, "voice_agent", None)

        self._advance(result, OnboardingStep.BUSINESS_INFO)
        return self._finish(result)

    def set_business_info(self, info: BusinessInfo) -> TransitionResult:
        self._require_intake_open("Business information")
        result = self._begin()
        self._set(result, "business", info)
        self._advance(result, OnboardingStep.DESIGN_SPECS)
        return self._finish(result)

    def set_design_specs(self, specs: DesignSpecs) -> TransitionResult:
        self._require_intake_open("Design specs")
        result = self._begin()
        self._set(result, "design_specs", specs)
        self._advance(result, OnboardingStep.MEDIA_UPLOAD)
        return self._finish(result)

    def record_uploads(self, assets: Iterable[UploadAsset]) -> TransitionResult:
        """Append assets. Uploads stay open after the deposit; the pointer just doesn't move back."""
        assets = list(assets)
        result = self._begin()
        if assets:
            self.project.uploads.extend(assets)
            result.new_uploads = assets
            result.changed = True
            self._enqueue(result, WorkflowEvent.ASSETS_UPLOADED)
        self._advance(result, OnboardingStep.REVIEW_AND_PAY_DEPOSIT)
        return self._finish(result)

    def update_voice_agent(self, config: Mapping[str, Any]) -> TransitionResult:
        if not self.project.services.get(VOICE_SERVICE_KEY):
            raise InvalidTransitionError("Voice agent settings need the AI Voice service selected")
        result = self._begin()
        current = self.project.voice_agent.model_dump() if self.project.voice_agent else {}
        current.update({k: v for k, v in dict(config).items() if v is not None})
        self._set(result, "voice_agent", build_voice_agent_config(current))
        return self._finish(result)

    # ------------------------------------------------------------------
    # Payment & approval
    # ------------------------------------------------------------------

    def mark_deposit_paid(self) -> TransitionResult:
        result = self._begin()
        if self.deposit_paid:
            return result
        if not any(self.project.services.values()):
            raise InvalidTransitionError("Select at least one service before the kickoff deposit")
        self._set(result, "payment_phase", PaymentPhase.DEPOSIT_PAID)
        self._enqueue(result, WorkflowEvent.DEPOSIT_PAID)
        self._advance(result, OnboardingStep.POSTPAY_SUCCESS)
        return self._finish(result)

    def advance_to_launch_approval(self) -> TransitionResult:
        if not self.deposit_paid:
            raise InvalidTransitionError("Launch review opens after the kickoff deposit is paid")
        result = self._begin()
        self._advance(result, OnboardingStep.LAUNCH_APPROVAL)
        return self._finish(result)

    def approve_launch(self) -> TransitionResult:
        if step_index(self.project.state) < step_index(OnboardingStep.LAUNCH_APPROVAL):
            raise InvalidTransitionError("The build has not been sent for launch review yet")
        result = self._begin()
        if self.project.payment_phase in (PaymentPhase.AWAITING_FINAL_INVOICE, PaymentPhase.COMPLETE):
            return result
        self._set(result, "payment_phase", PaymentPhase.AWAITING_FINAL_INVOICE)
        self._enqueue(result, WorkflowEvent.LAUNCH_APPROVED)
        self._advance(result, OnboardingStep.FINAL_INVOICE)
        return self._finish(result)

    def mark_final_invoice_paid(self) -> TransitionResult:
        result = self._begin()
        if self.project.payment_phase == PaymentPhase.COMPLETE:
            return result
        if self.project.payment_phase != PaymentPhase.AWAITING_FINAL_INVOICE:
            raise InvalidTransitionError("The final invoice is issued only after launch approval")
        self._set(result, "payment_phase", PaymentPhase.COMPLETE)
        self._enqueue(result, WorkflowEvent.FINAL_PAID)
        self._set(result, "completed_at", datetime.now(timezone.utc))
        return self._finish(result)

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def prompt(self) -> str:
        return render_step_prompt(self.project.state, self.project.financials, self.selected_labels())

    def snapshot(self) -> Dict[str, Any]:
        data = self.project.model_dump(mode="json")
        data["prompt"] = self.prompt()
        data["step_title"] = STEP_BY_ID[self.project.state].title
        return data
