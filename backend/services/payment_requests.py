"""
Payment Request Service
Manual and workflow-driven requests for money from a client, each optionally
backed by a Stripe checkout link and sent by email.

A request is written once, complete: the checkout link (real or sample) is
resolved before the upsert, so no caller ever sees a half-built record.
Passing an existing request_id updates that request instead of creating a
second one, which is how the deposit and final-invoice checkouts stay
one-per-project.
"""
import math
import uuid
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from database import database
from models import (
    ActionResult,
    Actor,
    AuditAction,
    PaymentRequest,
    PaymentRequestStatus,
    PaymentType,
)
from services.email_service import email_service as default_email_service
from services.errors import (
    InvalidAmountError,
    NotFoundError,
    OnboardingBillingError,
    ProcessorUnavailableError,
)
from services.stripe_service import stripe_service as default_stripe_service
from utils.audit import create_audit_log
from utils.public_app_url import sample_checkout_url

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "amount_cents",
    "currency",
    "description",
    "status",
    "checkout_url",
    "email_subject",
    "email_message",
    "email_sent",
    "project_id",
})

# Statuses a fresh checkout link may move to scheduled
PRE_SEND_STATUSES = frozenset({PaymentRequestStatus.DRAFT, PaymentRequestStatus.SCHEDULED})


class PaymentRequestResult(ActionResult):
    request: Optional[PaymentRequest] = None
    delivered: Optional[bool] = None


def parse_amount_cents(value: Any) -> int:
    """Positive, finite integer cents. Fractional cents round half up."""
    if value is None or isinstance(value, bool):
        raise InvalidAmountError()
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmountError()
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError()
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmountError()
    cents = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise InvalidAmountError()
    return cents


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRequestService:
    def __init__(self, stripe_service=None, email_service=None):
        self.stripe = stripe_service or default_stripe_service
        self.email = email_service or default_email_service

    async def _get_user(self, user_id: str) -> Dict[str, Any]:
        db = database.get_db()
        user = await db.users.find_one({"user_id": user_id}, {"_id": 0})
        if not user:
            raise NotFoundError("User not found.")
        return user

    async def _load(self, request_id: str) -> Optional[PaymentRequest]:
        db = database.get_db()
        doc = await db.payment_requests.find_one({"request_id": request_id}, {"_id": 0})
        return PaymentRequest(**doc) if doc else None

    async def _save(self, record: PaymentRequest) -> None:
        db = database.get_db()
        record.updated_at = _now()
        await db.payment_requests.update_one(
            {"request_id": record.request_id},
            {"$set": record.model_dump(mode="json")},
            upsert=True,
        )

    async def get(self, request_id: str) -> PaymentRequest:
        record = await self._load(request_id)
        if not record:
            raise NotFoundError("Payment request not found.")
        return record

    async def list(self, user_id: Optional[str] = None, limit: int = 500) -> List[PaymentRequest]:
        db = database.get_db()
        query = {"user_id": user_id} if user_id else {}
        cursor = db.payment_requests.find(query, {"_id": 0}).sort("created_at", -1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [PaymentRequest(**doc) for doc in docs]

    async def create(
        self,
        user_id: str,
        amount_cents: Any,
        currency: str = "usd",
        description: Optional[str] = None,
        project_id: Optional[str] = None,
        generate_checkout: bool = False,
        payment_type: PaymentType = PaymentType.OTHER,
        request_id: Optional[str] = None,
        actor: Actor = Actor.STAFF,
        actor_id: Optional[str] = None,
    ) -> PaymentRequestResult:
        """
        Create (or refresh, when request_id already exists) a payment request.

        Raises InvalidAmountError before anything is written, and NotFoundError
        for an unknown user. An unavailable processor downgrades to a sample
        checkout link with sample=True.
        """
        amount = parse_amount_cents(amount_cents)
        user = await self._get_user(user_id)
        currency = (currency or "usd").strip().lower()
        description = description.strip() if isinstance(description, str) and description.strip() else None

        record = await self._load(request_id) if request_id else None
        is_new = record is None
        if record is not None and record.status == PaymentRequestStatus.PAID:
            return PaymentRequestResult(ok=True, message="Payment request already paid.", request=record)

        if is_new:
            record = PaymentRequest(
                request_id=request_id or str(uuid.uuid4()),
                user_id=user_id,
                project_id=project_id,
                amount_cents=amount,
                currency=currency,
                description=description,
                payment_type=payment_type,
            )
        else:
            record.amount_cents = amount
            record.currency = currency
            record.description = description or record.description
            record.project_id = project_id or record.project_id
            record.payment_type = payment_type

        sample = False
        if generate_checkout:
            metadata = {
                "userId": user_id,
                "projectId": record.project_id or "",
                "type": record.payment_type.value,
                "paymentRequestId": record.request_id,
                "clientEmail": user.get("email"),
                "clientName": user.get("name") or "",
            }
            try:
                session = self.stripe.create_checkout_session(
                    amount_cents=amount,
                    currency=currency,
                    description=record.description or "Custom payment",
                    metadata=metadata,
                    customer_email=user.get("email"),
                    idempotency_key=f"{record.request_id}:{amount}:{currency}",
                )
                record.checkout_url = session.url
                record.checkout_session_id = session.id
                record.checkout_sample = False
            except ProcessorUnavailableError as e:
                logger.warning(f"Processor unavailable for payment request {record.request_id}, using sample link: {e}")
                sample = True
                record.checkout_url = sample_checkout_url(record.request_id)
                record.checkout_session_id = None
                record.checkout_sample = True
            if record.status in PRE_SEND_STATUSES:
                record.status = PaymentRequestStatus.SCHEDULED

        await self._save(record)

        await create_audit_log(
            action=AuditAction.PAYMENT_REQUEST_CREATED if is_new else AuditAction.PAYMENT_REQUEST_UPDATED,
            actor_role=actor,
            actor_id=actor_id,
            user_id=user_id,
            resource_type="payment_request",
            resource_id=record.request_id,
            metadata={
                "amount_cents": amount,
                "currency": currency,
                "payment_type": record.payment_type.value,
                "checkout": generate_checkout,
                "sample": sample,
            },
        )
        logger.info(f"Payment request {'created' if is_new else 'refreshed'}: {record.request_id} ({amount} {currency})")

        if sample:
            message = "Stripe is not configured. A sample checkout link was generated."
        elif generate_checkout:
            message = "Payment request created with checkout link."
        else:
            message = "Payment request created."
        return PaymentRequestResult(ok=True, message=message, sample=sample, request=record)

    async def update(
        self,
        request_id: str,
        actor: Actor = Actor.STAFF,
        actor_id: Optional[str] = None,
        **fields: Any,
    ) -> PaymentRequestResult:
        """Edit a request in place. Never creates a checkout session."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise OnboardingBillingError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        record = await self.get(request_id)
        before = record.model_dump(mode="json", include=set(fields))

        if "amount_cents" in fields:
            fields["amount_cents"] = parse_amount_cents(fields["amount_cents"])
        if "status" in fields:
            try:
                fields["status"] = PaymentRequestStatus(fields["status"])
            except ValueError:
                raise OnboardingBillingError(f"Unknown payment request status: {fields['status']}")
        if "currency" in fields:
            fields["currency"] = (fields["currency"] or "usd").strip().lower()
        if "email_sent" in fields:
            fields["email_sent"] = bool(fields["email_sent"])

        for name, value in fields.items():
            setattr(record, name, value)
        await self._save(record)

        await create_audit_log(
            action=AuditAction.PAYMENT_REQUEST_UPDATED,
            actor_role=actor,
            actor_id=actor_id,
            user_id=record.user_id,
            resource_type="payment_request",
            resource_id=request_id,
            before_state=before,
            after_state=record.model_dump(mode="json", include=set(fields)),
        )
        return PaymentRequestResult(ok=True, message="Payment request updated.", request=record)

    async def delete(self, request_id: str, actor_id: Optional[str] = None) -> PaymentRequestResult:
        db = database.get_db()
        result = await db.payment_requests.delete_one({"request_id": request_id})
        if result.deleted_count == 0:
            raise NotFoundError("Payment request not found.")

        await create_audit_log(
            action=AuditAction.PAYMENT_REQUEST_DELETED,
            actor_role=Actor.STAFF,
            actor_id=actor_id,
            resource_type="payment_request",
            resource_id=request_id,
        )
        return PaymentRequestResult(ok=True, message="Payment request deleted.")

    async def send_email(
        self,
        request_id: str,
        subject: str,
        message: str,
        include_link: bool = True,
        checkout_url: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PaymentRequestResult:
        """
        Email the client about a request.

        The checkout link (override first, then the stored one) is appended when
        requested and available. A missing link is not an error: the email goes
        out without one and the status stays where it was.
        """
        subject = (subject or "").strip()
        message = (message or "").strip()
        if not subject or not message:
            raise OnboardingBillingError("Subject and message are required.")

        record = await self.get(request_id)
        user = await self._get_user(record.user_id)

        override = (checkout_url or "").strip() or None
        link = (override or record.checkout_url) if include_link else None
        full_message = f"{message}\n\nSecure payment link:\n{link}" if link else message

        result = await self.email.send(
            to=user["email"],
            subject=subject,
            message=full_message,
            link=link,
            user_id=record.user_id,
        )

        record.email_subject = subject
        record.email_message = full_message
        record.email_sent = result.delivered
        record.last_emailed_at = _now()
        if override:
            record.checkout_url = override
        if link and record.status in PRE_SEND_STATUSES:
            record.status = PaymentRequestStatus.SENT
        await self._save(record)

        await create_audit_log(
            action=AuditAction.PAYMENT_REQUEST_EMAILED,
            actor_role=Actor.STAFF,
            actor_id=actor_id,
            user_id=record.user_id,
            resource_type="payment_request",
            resource_id=request_id,
            metadata={"delivered": result.delivered, "sample": result.sample, "link_included": bool(link)},
        )

        note = result.message
        if include_link and not link:
            note = f"{note} No checkout link was available, so the email was sent without one."
        return PaymentRequestResult(
            ok=True,
            message=note,
            sample=result.sample,
            delivered=result.delivered,
            request=record,
        )

    async def mark_paid(self, request_id: str, checkout_session_id: Optional[str] = None) -> Optional[PaymentRequest]:
        """Record a processor-confirmed payment. Unknown ids are logged and ignored."""
        record = await self._load(request_id)
        if not record:
            logger.warning(f"Paid checkout references unknown payment request {request_id}")
            return None
        if record.status == PaymentRequestStatus.PAID:
            return record

        record.status = PaymentRequestStatus.PAID
        if checkout_session_id:
            record.checkout_session_id = checkout_session_id
        await self._save(record)

        await create_audit_log(
            action=AuditAction.PAYMENT_REQUEST_PAID,
            actor_role=Actor.SYSTEM,
            user_id=record.user_id,
            resource_type="payment_request",
            resource_id=request_id,
            metadata={"checkout_session_id": checkout_session_id},
        )
        logger.info(f"Payment request {request_id} marked paid")
        return record


payment_request_service = PaymentRequestService()
