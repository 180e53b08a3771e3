"""
Billing history for one client.

Local payment requests and processor payments are two separate sources of
truth. This module only joins them for display: requests are annotated with
the processor payment ids that reference them through
metadata.paymentRequestId. Nothing is written back.
"""
import logging
from typing import Any, Dict, List

from models import DepositSummary, PaymentRecord, PaymentType
from services.errors import ProcessorUnavailableError
from services.payment_requests import payment_request_service
from services.service_catalog import DEFAULT_CATALOG
from services.stripe_service import stripe_service

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"succeeded"})


def summarise_deposit(
    payments: List[PaymentRecord],
    deposit_cents: int = DEFAULT_CATALOG.kickoff_deposit_cents,
    currency: str = "usd",
) -> DepositSummary:
    """Latest kickoff-deposit payment wins. No payment at all reads as unpaid."""
    deposits = [p for p in payments if p.type == PaymentType.KICKOFF_DEPOSIT]
    if not deposits:
        return DepositSummary(
            paid=False,
            status="requires_payment_method",
            amount_cents=deposit_cents,
            currency=currency,
        )

    latest = max(deposits, key=lambda p: p.created_at)
    charge = latest.charge
    paid = latest.status in PAID_STATUSES or bool(charge and charge.status in PAID_STATUSES)
    return DepositSummary(
        paid=paid,
        status=latest.status,
        amount_cents=latest.amount_cents,
        currency=latest.currency,
        last_payment_at=(charge.paid_at if charge and charge.paid_at else latest.created_at),
        receipt_url=charge.receipt_url if charge else None,
    )


def annotate_requests(requests, payments: List[PaymentRecord]) -> List[Dict[str, Any]]:
    by_request: Dict[str, List[str]] = {}
    for payment in payments:
        request_id = payment.metadata.get("paymentRequestId")
        if request_id:
            by_request.setdefault(request_id, []).append(payment.payment_id)

    annotated = []
    for request in requests:
        view = request.model_dump(mode="json")
        view["processor_payment_ids"] = by_request.get(request.request_id, [])
        annotated.append(view)
    return annotated


async def get_billing_history(user_id: str, stripe=None, requests_service=None) -> Dict[str, Any]:
    """
    Payment requests, processor payments and the kickoff-deposit summary for a user.

    A processor outage leaves the local half intact: payments come back empty
    with processor_available=False.
    """
    stripe = stripe or stripe_service
    requests_service = requests_service or payment_request_service

    requests = await requests_service.list(user_id=user_id)

    processor_available = True
    try:
        payments, sample = stripe.list_payment_intents(user_id=user_id)
    except ProcessorUnavailableError as e:
        logger.warning(f"Billing history for {user_id} without processor data: {e}")
        payments, sample, processor_available = [], False, False

    deposit = summarise_deposit(payments)
    if sample:
        # Sample listings are not this user's payments
        deposit = DepositSummary(
            paid=False,
            status="pending",
            amount_cents=DEFAULT_CATALOG.kickoff_deposit_cents,
            currency="usd",
        )

    return {
        "ok": True,
        "sample": sample,
        "processor_available": processor_available,
        "requests": annotate_requests(requests, payments),
        "payments": [p.model_dump(mode="json") for p in payments],
        "deposit": deposit.model_dump(mode="json"),
    }


async def list_processor_payments(stripe=None) -> Dict[str, Any]:
    """All recent processor payments, newest first (admin payments view)."""
    stripe = stripe or stripe_service
    try:
        payments, sample = stripe.list_payment_intents()
    except ProcessorUnavailableError as e:
        return {"ok": False, "message": str(e), "sample": False, "payments": []}
    return {"ok": True, "sample": sample, "payments": [p.model_dump(mode="json") for p in payments]}

