from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"

class Actor(str, Enum):
    """Who is driving a change. Staff covers admin users; system covers webhooks."""
    CLIENT = "client"
    STAFF = "staff"
    SYSTEM = "system"

class OnboardingStep(str, Enum):
    WELCOME = "WELCOME"
    SELECT_SERVICES = "SELECT_SERVICES"
    BUSINESS_INFO = "BUSINESS_INFO"
    DESIGN_SPECS = "DESIGN_SPECS"
    MEDIA_UPLOAD = "MEDIA_UPLOAD"
    REVIEW_AND_PAY_DEPOSIT = "REVIEW_AND_PAY_DEPOSIT"
    POSTPAY_SUCCESS = "POSTPAY_SUCCESS"
    LAUNCH_APPROVAL = "LAUNCH_APPROVAL"
    FINAL_INVOICE = "FINAL_INVOICE"

class PaymentPhase(str, Enum):
    DRAFT = "draft"
    DEPOSIT_PAID = "deposit_paid"
    AWAITING_FINAL_INVOICE = "awaiting_final_invoice"
    COMPLETE = "complete"

class DeliveryStatus(str, Enum):
    NOT_STARTED = "not-started"
    SUBMITTED = "submitted"
    IN_PROGRESS = "in-progress"
    LAUNCH_READY = "launch-ready"

class WorkflowEvent(str, Enum):
    ASSETS_UPLOADED = "assets.uploaded"
    DEPOSIT_PAID = "deposit.paid"
    LAUNCH_APPROVED = "launch.approved"
    FINAL_PAID = "final.paid"

class UploadCategory(str, Enum):
    LOGO = "logo"
    BRAND_PHOTO = "brand_photo"
    TEAM_PHOTO = "team_photo"
    BEFORE_AFTER = "before_after"
    TESTIMONIAL = "testimonial"
    BROCHURE = "brochure"
    VOICE_SAMPLE = "voice_sample"
    OTHER = "other"

class PaymentRequestStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"

class PaymentType(str, Enum):
    KICKOFF_DEPOSIT = "kickoff-deposit"
    FINAL_BALANCE = "final-balance"
    OTHER = "other"

class AuditAction(str, Enum):
    # Onboarding
    ONBOARDING_PROJECT_CREATED = "ONBOARDING_PROJECT_CREATED"
    ONBOARDING_INTAKE_SAVED = "ONBOARDING_INTAKE_SAVED"
    ONBOARDING_STEP_CHANGED = "ONBOARDING_STEP_CHANGED"
    ONBOARDING_STATUS_UPDATED = "ONBOARDING_STATUS_UPDATED"
    ONBOARDING_OUTBOX_ACKNOWLEDGED = "ONBOARDING_OUTBOX_ACKNOWLEDGED"

    # Payment requests
    PAYMENT_REQUEST_CREATED = "PAYMENT_REQUEST_CREATED"
    PAYMENT_REQUEST_UPDATED = "PAYMENT_REQUEST_UPDATED"
    PAYMENT_REQUEST_DELETED = "PAYMENT_REQUEST_DELETED"
    PAYMENT_REQUEST_EMAILED = "PAYMENT_REQUEST_EMAILED"
    PAYMENT_REQUEST_PAID = "PAYMENT_REQUEST_PAID"

    # Webhooks
    STRIPE_EVENT_PROCESSED = "STRIPE_EVENT_PROCESSED"

# ============================================================================
# ONBOARDING MODELS
# ============================================================================

class BusinessInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    business_name: str
    contact_name: str
    email: EmailStr
    phone: str
    website: Optional[str] = None
    service_areas: str = ""
    core_services: str = ""
    description: str = ""
    success_goal: str = ""
    competitors: Optional[str] = None
    social_links: List[str] = Field(default_factory=list)

class DesignSpecs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    brand_colours: Optional[str] = None
    preferred_fonts: Optional[str] = None
    style_mood: Optional[str] = None
    references: Optional[str] = None
    notes: Optional[str] = None

class UploadAsset(BaseModel):
    model_config = ConfigDict(extra="ignore")

    asset_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    url: str
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    size_kb: Optional[int] = Field(default=None, ge=0)
    category: UploadCategory = UploadCategory.OTHER

class BusinessHours(BaseModel):
    dow: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    start: str = "09:00"
    end: str = "17:00"

class VoiceAgentConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timezone: str = "America/Los_Angeles"
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    warm_transfer_number: Optional[str] = None
    positive_intent_keywords: List[str] = Field(
        default_factory=lambda: ["ready", "start", "quote", "hire", "book"]
    )
    min_confidence_for_transfer: float = Field(default=0.65, ge=0, le=1)

class SelectedServiceLine(BaseModel):
    key: str
    label: str
    due_at_approval_cents: int
    ongoing_note: Optional[str] = None

class FinancialSnapshot(BaseModel):
    """Money fields shown to admins and clients. All integers in cents."""
    deposit_cents: int = 0
    due_at_approval_cents: int = 0
    discount_cents: int = 0
    total_launch_cents: int = 0
    ongoing_notes: List[str] = Field(default_factory=list)
    line_items: List[SelectedServiceLine] = Field(default_factory=list)

class OutboxEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tag: WorkflowEvent
    created_at: datetime = Field(default_factory=utcnow)

class OnboardingProject(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    project_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    label: str = "Project"

    # Workflow track
    state: OnboardingStep = OnboardingStep.WELCOME
    step_index: int = 1
    total_steps: int = 9
    payment_phase: PaymentPhase = PaymentPhase.DRAFT

    # Delivery track
    status: DeliveryStatus = DeliveryStatus.NOT_STARTED
    status_note: Optional[str] = None
    status_updated_at: Optional[datetime] = None

    services: Dict[str, bool] = Field(default_factory=dict)
    financials: FinancialSnapshot = Field(default_factory=FinancialSnapshot)
    business: Optional[BusinessInfo] = None
    design_specs: Optional[DesignSpecs] = None
    uploads: List[UploadAsset] = Field(default_factory=list)
    voice_agent: Optional[VoiceAgentConfig] = None
    intake: Dict[str, str] = Field(default_factory=dict)
    webhook_queue: List[OutboxEvent] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

# ============================================================================
# BILLING MODELS
# ============================================================================

class PaymentRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    project_id: Optional[str] = None
    amount_cents: int
    currency: str = "usd"
    description: Optional[str] = None
    payment_type: PaymentType = PaymentType.OTHER
    status: PaymentRequestStatus = PaymentRequestStatus.DRAFT
    checkout_url: Optional[str] = None
    checkout_session_id: Optional[str] = None
    checkout_sample: bool = False
    email_subject: Optional[str] = None
    email_message: Optional[str] = None
    email_sent: bool = False
    last_emailed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class PaymentCharge(BaseModel):
    charge_id: str
    status: str
    receipt_url: Optional[str] = None
    email: Optional[str] = None
    paid_at: Optional[datetime] = None

class PaymentRecord(BaseModel):
    """Read-only view of a processor payment intent. Never stored locally."""
    payment_id: str
    type: PaymentType
    amount_cents: int
    currency: str
    status: str
    created_at: datetime
    description: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    charge: Optional[PaymentCharge] = None

class DepositSummary(BaseModel):
    paid: bool
    status: str
    amount_cents: int
    currency: str
    last_payment_at: Optional[datetime] = None
    receipt_url: Optional[str] = None

class ActionResult(BaseModel):
    """Uniform shape returned by every mutating operation."""
    ok: bool = True
    message: str = ""
    sample: bool = False

# ============================================================================
# LOG MODELS
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[Actor] = None
    actor_id: Optional[str] = None
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

class MessageLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    postmark_message_id: Optional[str] = None
    user_id: Optional[str] = None
    recipient: str
    subject: str
    status: str = "queued"
    sample: bool = False
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
