"""Stripe Service - one-off checkout sessions and payment history.

This service handles:
- Creating payment-mode checkout sessions (kickoff deposit, final balance, manual requests)
- Listing payment intents for billing history and the deposit summary

Key Principles:
- Amounts are integer cents end to end
- Metadata carries userId/projectId/type/paymentRequestId so webhooks and
  reconciliation can trace a payment back without a local payments table
- An unconfigured or failing processor never breaks a caller: checkout raises
  ProcessorUnavailableError, listing returns flagged sample data
"""
import stripe
import os
import logging
import re
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone

from models import PaymentRecord, PaymentCharge, PaymentType
from services.errors import ProcessorUnavailableError
from utils.public_app_url import checkout_success_url, checkout_cancel_url

logger = logging.getLogger(__name__)

# Max pages of payment intents fetched per listing
LIST_PAGE_SIZE = 100
LIST_MAX_PAGES = 3

SAMPLE_PAYMENT_ID = "pi_sample_deposit"


def _get_api_key() -> str:
    return (os.getenv("STRIPE_SECRET_KEY") or os.getenv("STRIPE_API_KEY") or "").strip()


def is_stripe_configured() -> bool:
    return bool(_get_api_key())


def _as_dict(obj: Any) -> Dict[str, Any]:
    """StripeObject -> plain dict across SDK versions."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    for attr in ("to_dict", "to_dict_recursive"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


def _from_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def resolve_payment_type(metadata: Optional[Dict[str, Any]]) -> PaymentType:
    """Map processor metadata to a payment type. Untagged payments count as the kickoff deposit."""
    if not metadata:
        return PaymentType.KICKOFF_DEPOSIT
    raw = metadata.get("type") or metadata.get("paymentType")
    if raw in (t.value for t in PaymentType):
        return PaymentType(raw)
    if raw and re.search("final", str(raw), re.IGNORECASE):
        return PaymentType.FINAL_BALANCE
    return PaymentType.KICKOFF_DEPOSIT


def _map_charge(charge: Any) -> Optional[PaymentCharge]:
    charge = _as_dict(charge) if charge and not isinstance(charge, str) else None
    if not charge:
        return None
    return PaymentCharge(
        charge_id=charge.get("id"),
        status=charge.get("status") or "unknown",
        receipt_url=charge.get("receipt_url"),
        email=(charge.get("billing_details") or {}).get("email"),
        paid_at=_from_timestamp(charge.get("created")),
    )


def map_payment_intent(intent: Any) -> PaymentRecord:
    data = _as_dict(intent)
    metadata = {k: str(v) for k, v in (data.get("metadata") or {}).items()}
    charges = (data.get("charges") or {}).get("data") or []
    latest = charges[0] if charges else data.get("latest_charge")
    return PaymentRecord(
        payment_id=data["id"],
        type=resolve_payment_type(metadata),
        amount_cents=int(data.get("amount") or 0),
        currency=(data.get("currency") or "usd").lower(),
        status=data.get("status") or "unknown",
        created_at=_from_timestamp(data.get("created")) or datetime.now(timezone.utc),
        description=data.get("description"),
        metadata=metadata,
        charge=_map_charge(latest),
    )


def sample_payments() -> List[PaymentRecord]:
    now = datetime.now(timezone.utc)
    return [
        PaymentRecord(
            payment_id=SAMPLE_PAYMENT_ID,
            type=PaymentType.KICKOFF_DEPOSIT,
            amount_cents=9900,
            currency="usd",
            status="succeeded",
            created_at=now,
            description="Kickoff deposit",
            metadata={"userId": "sample-user", "type": PaymentType.KICKOFF_DEPOSIT.value},
            charge=PaymentCharge(
                charge_id="ch_sample",
                status="succeeded",
                email="client@example.com",
                paid_at=now,
            ),
        )
    ]


@dataclass
class CheckoutSession:
    id: str
    url: str


class StripeService:
    """Stripe payment operations service."""

    def create_checkout_session(
        self,
        amount_cents: int,
        currency: str,
        description: Optional[str],
        metadata: Dict[str, Optional[str]],
        customer_email: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Create a one-off payment checkout session.

        Raises ProcessorUnavailableError when Stripe is not configured, the call
        fails for any reason, or the session comes back without a URL.
        """
        api_key = _get_api_key()
        if not api_key:
            raise ProcessorUnavailableError("STRIPE_SECRET_KEY or STRIPE_API_KEY is not set")
        stripe.api_key = api_key

        clean_metadata = {k: str(v) for k, v in metadata.items() if v is not None}
        session_params = {
            "mode": "payment",
            "line_items": [
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": (currency or "usd").lower(),
                        "unit_amount": int(amount_cents),
                        "product_data": {"name": description or "Kickoff deposit"},
                    },
                }
            ],
            "success_url": success_url or checkout_success_url(),
            "cancel_url": cancel_url or checkout_cancel_url(),
            "metadata": clean_metadata,
            # Copied onto the payment intent so listings can be reconciled
            "payment_intent_data": {"metadata": clean_metadata},
        }
        if customer_email:
            session_params["customer_email"] = customer_email
        if clean_metadata.get("userId"):
            session_params["client_reference_id"] = clean_metadata["userId"]

        try:
            if idempotency_key:
                session = stripe.checkout.Session.create(idempotency_key=idempotency_key, **session_params)
            else:
                session = stripe.checkout.Session.create(**session_params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error ({clean_metadata.get('type')}): {e}")
            raise ProcessorUnavailableError(f"Failed to create checkout session: {e}") from e

        if not getattr(session, "url", None):
            raise ProcessorUnavailableError("Stripe returned a checkout session without a URL")

        logger.info(f"Checkout session created: {session.id} type={clean_metadata.get('type')}")
        return CheckoutSession(id=session.id, url=session.url)

    def list_payment_intents(self, user_id: Optional[str] = None) -> Tuple[List[PaymentRecord], bool]:
        """
        Newest-first payment records, optionally only those tagged with userId.

        Returns (records, sample). Unconfigured Stripe yields sample data with
        sample=True; Stripe errors propagate as ProcessorUnavailableError.
        """
        api_key = _get_api_key()
        if not api_key:
            return sample_payments(), True
        stripe.api_key = api_key

        records: List[PaymentRecord] = []
        starting_after = None
        try:
            for _ in range(LIST_MAX_PAGES):
                params = {"limit": LIST_PAGE_SIZE, "expand": ["data.latest_charge"]}
                if starting_after:
                    params["starting_after"] = starting_after
                page = stripe.PaymentIntent.list(**params)
                items = list(page.data)
                records.extend(map_payment_intent(item) for item in items)
                if not page.has_more or not items:
                    break
                starting_after = items[-1].id
        except stripe.StripeError as e:
            logger.error(f"Stripe payment listing failed: {e}")
            raise ProcessorUnavailableError(f"Failed to list payments: {e}") from e

        if user_id:
            records = [r for r in records if r.metadata.get("userId") == user_id]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records, False

    def construct_webhook_event(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """Verify a webhook signature. Raises stripe.SignatureVerificationError or ValueError."""
        event = stripe.Webhook.construct_event(payload, signature, secret)
        return _as_dict(event)


stripe_service = StripeService()
