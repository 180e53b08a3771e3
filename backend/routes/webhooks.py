"""Stripe webhook for launch-package payments.

Completed checkouts mark the kickoff deposit or the final balance paid on the
onboarding project and settle the matching payment request. Stripe is pointed
at /api/webhook/stripe; /api/webhooks/stripe stays for endpoints registered
under the older path.
"""
from fastapi import APIRouter, Request, Header
from services.stripe_webhook_service import stripe_webhook_service
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


async def _handle_stripe_webhook(request: Request, stripe_signature: str = None):
    """Hand the raw body to the webhook service. Always answers 200."""
    try:
        payload = await request.body()

        success, message, details = await stripe_webhook_service.process_webhook(
            payload=payload,
            signature=stripe_signature or ""
        )

        if success:
            return {"status": "received", "message": message, "details": details}
        else:
            # Still return 200 to prevent Stripe retries
            logger.error(f"Webhook processing failed: {message}")
            return {"status": "error", "message": message}

    except Exception as e:
        logger.exception(f"Stripe webhook error: {e}")
        return {"status": "error", "message": str(e)}


@router.post("/api/webhook/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature")
):
    return await _handle_stripe_webhook(request, stripe_signature)


@router.post("/api/webhooks/stripe")
async def stripe_webhook_alias(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature")
):
    return await _handle_stripe_webhook(request, stripe_signature)
