"""Stripe Webhook Service - payment confirmations with idempotency.

Key Principles:
1. Idempotency: every event id is processed at most once (stripe_events collection)
2. Signature verification: events are verified with STRIPE_WEBHOOK_SECRET when set
3. Metadata routing: the checkout metadata says what was paid for
4. Payment confirmations drive the workflow as the system actor

Events Handled:
- checkout.session.completed
  - type=kickoff-deposit -> project deposit paid
  - type=final-balance   -> project final invoice paid
  - paymentRequestId     -> that payment request marked paid
"""
import json
import stripe
import os
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple

from database import database
from models import Actor, AuditAction, PaymentType
from services.errors import OnboardingBillingError
from services.onboarding_service import onboarding_service
from services.payment_requests import payment_request_service
from services.stripe_service import stripe_service, resolve_payment_type, _as_dict
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


def _get_webhook_secret() -> str:
    return (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()


class StripeWebhookService:
    """Stripe webhook handler for onboarding payments."""

    async def process_webhook(
        self,
        payload: bytes,
        signature: str
    ) -> Tuple[bool, str, Optional[Dict]]:
        """
        Main webhook entry point.

        Returns:
            (success, message, details)
        """
        webhook_secret = _get_webhook_secret()
        try:
            if webhook_secret:
                event = stripe_service.construct_webhook_event(payload, signature, webhook_secret)
            else:
                # Development mode - parse without verification
                event = json.loads(payload)
                logger.warning("STRIPE_WEBHOOK_SECRET not set - skipping signature verification")
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            return False, "Invalid signature", {"error": str(e)}
        except ValueError as e:
            logger.error(f"Webhook parse error: {e}")
            return False, "Invalid payload", {"error": str(e)}

        event_id = event.get("id")
        event_type = event.get("type")
        logger.info(f"WEBHOOK_RECEIVED event_id={event_id} event_type={event_type}")

        db = database.get_db()
        existing = await db.stripe_events.find_one({"event_id": event_id})
        if existing and existing.get("status") == "PROCESSED":
            logger.info(f"Event {event_id} already processed - skipping")
            return True, "Already processed", {"event_id": event_id}

        event_record = {
            "event_id": event_id,
            "type": event_type,
            "created": datetime.now(timezone.utc).isoformat(),
            "processed_at": None,
            "status": "PROCESSING",
            "error": None,
        }
        await db.stripe_events.update_one({"event_id": event_id}, {"$set": event_record}, upsert=True)

        try:
            result = await self._handle_event(event)
        except Exception as e:
            logger.error(f"WEBHOOK_PROCESSING_FAILED event_id={event_id} event_type={event_type} error={e}")
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {
                    "status": "FAILED",
                    "processed_at": datetime.now(timezone.utc).isoformat(),
                    "error": str(e),
                }},
            )
            # 200 with the error recorded; the event can be replayed from the dashboard
            return True, "Event logged with error", {"error": str(e), "event_id": event_id}

        await db.stripe_events.update_one(
            {"event_id": event_id},
            {"$set": {"status": "PROCESSED", "processed_at": datetime.now(timezone.utc).isoformat()}},
        )
        await create_audit_log(
            action=AuditAction.STRIPE_EVENT_PROCESSED,
            actor_role=Actor.SYSTEM,
            resource_type="stripe_event",
            resource_id=event_id,
            metadata={"event_type": event_type, **{k: v for k, v in result.items() if k != "event_type"}},
        )
        logger.info(f"WEBHOOK_PROCESSED_OK event_id={event_id} event_type={event_type}")
        return True, "Processed", result

    async def _handle_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Route event to appropriate handler."""
        event_type = event.get("type")
        data = _as_dict((event.get("data") or {}).get("object"))

        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
        }
        handler = handlers.get(event_type)
        if handler:
            return await handler(data)

        logger.info(f"Ignoring unhandled event type: {event_type}")
        return {"handled": False, "event_type": event_type}

    async def _handle_checkout_completed(self, session: Dict[str, Any]) -> Dict[str, Any]:
        metadata = session.get("metadata") or {}
        if session.get("payment_status") not in (None, "paid", "no_payment_required"):
            logger.info(f"Checkout {session.get('id')} completed without payment ({session.get('payment_status')})")
            return {"handled": False, "reason": "unpaid"}

        payment_type = resolve_payment_type(metadata)
        project_id = metadata.get("projectId") or None
        request_id = metadata.get("paymentRequestId") or None
        result: Dict[str, Any] = {"handled": True, "type": payment_type.value, "project_id": project_id}

        if request_id:
            await payment_request_service.mark_paid(request_id, checkout_session_id=session.get("id"))
            result["payment_request_id"] = request_id

        if project_id and payment_type in (PaymentType.KICKOFF_DEPOSIT, PaymentType.FINAL_BALANCE):
            try:
                if payment_type == PaymentType.KICKOFF_DEPOSIT:
                    project = await onboarding_service.mark_deposit_paid(project_id, actor=Actor.SYSTEM)
                else:
                    project = await onboarding_service.mark_final_invoice_paid(project_id, actor=Actor.SYSTEM)
                result["state"] = project.state.value
                result["payment_phase"] = project.payment_phase.value
            except OnboardingBillingError as e:
                # Money was taken; surface for staff instead of failing the event
                logger.error(f"Paid checkout {session.get('id')} could not advance project {project_id}: {e.message}")
                result["workflow_error"] = e.message

        return result


stripe_webhook_service = StripeWebhookService()
