"""
Stripe webhook: signature handling, idempotency via stripe_events, and
checkout.session.completed routing to the deposit, final invoice and payment
request updates.
"""
import json
import os
import pytest
import stripe
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_db
from models import Actor, OnboardingProject, PaymentPhase
from services.errors import InvalidTransitionError
from services.stripe_webhook_service import StripeWebhookService

EVENT_ID = "evt_test_deposit_001"


def _checkout_event(metadata, payment_status="paid", event_id=EVENT_ID):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_1", "payment_status": payment_status, "metadata": metadata}},
    }


def _no_secret():
    env = {k: v for k, v in os.environ.items() if k != "STRIPE_WEBHOOK_SECRET"}
    return patch.dict(os.environ, env, clear=True)


def _paid_project(phase=PaymentPhase.DEPOSIT_PAID):
    return OnboardingProject(project_id="proj-1", user_id="user-1", payment_phase=phase)


@pytest.mark.asyncio
async def test_deposit_checkout_marks_project_and_request_paid():
    db = make_db()
    onboarding = MagicMock()
    onboarding.mark_deposit_paid = AsyncMock(return_value=_paid_project())
    requests = MagicMock()
    requests.mark_paid = AsyncMock()
    payload = json.dumps(_checkout_event({
        "userId": "user-1",
        "projectId": "proj-1",
        "type": "kickoff-deposit",
        "paymentRequestId": "deposit-proj-1",
    })).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.onboarding_service", onboarding), \
         patch("services.stripe_webhook_service.payment_request_service", requests):
        success, message, details = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert message == "Processed"
    assert details["payment_phase"] == "deposit_paid"
    onboarding.mark_deposit_paid.assert_awaited_once_with("proj-1", actor=Actor.SYSTEM)
    requests.mark_paid.assert_awaited_once_with("deposit-proj-1", checkout_session_id="cs_test_1")

    final_update = db.stripe_events.update_one.call_args_list[-1][0][1]
    assert final_update["$set"]["status"] == "PROCESSED"


@pytest.mark.asyncio
async def test_final_balance_checkout_completes_project():
    db = make_db()
    onboarding = MagicMock()
    onboarding.mark_final_invoice_paid = AsyncMock(return_value=_paid_project(PaymentPhase.COMPLETE))
    payload = json.dumps(_checkout_event({"projectId": "proj-1", "type": "final-balance"})).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.onboarding_service", onboarding), \
         patch("services.stripe_webhook_service.payment_request_service", MagicMock()):
        success, _, details = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert details["payment_phase"] == "complete"
    onboarding.mark_final_invoice_paid.assert_awaited_once_with("proj-1", actor=Actor.SYSTEM)


@pytest.mark.asyncio
async def test_already_processed_event_is_skipped():
    db = make_db()
    db.stripe_events.find_one = AsyncMock(return_value={"event_id": EVENT_ID, "status": "PROCESSED"})
    onboarding = MagicMock()
    onboarding.mark_deposit_paid = AsyncMock()
    payload = json.dumps(_checkout_event({"projectId": "proj-1", "type": "kickoff-deposit"})).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.onboarding_service", onboarding):
        success, message, _ = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert message == "Already processed"
    onboarding.mark_deposit_paid.assert_not_called()
    db.stripe_events.update_one.assert_not_called()


@pytest.mark.asyncio
async def test_workflow_refusal_is_recorded_not_raised():
    db = make_db()
    onboarding = MagicMock()
    onboarding.mark_final_invoice_paid = AsyncMock(
        side_effect=InvalidTransitionError("The final invoice is issued only after launch approval")
    )
    payload = json.dumps(_checkout_event({"projectId": "proj-1", "type": "final-balance"})).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.onboarding_service", onboarding), \
         patch("services.stripe_webhook_service.payment_request_service", MagicMock()):
        success, _, details = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert "launch approval" in details["workflow_error"]


@pytest.mark.asyncio
async def test_unexpected_error_marks_event_failed():
    db = make_db()
    requests = MagicMock()
    requests.mark_paid = AsyncMock(side_effect=RuntimeError("mongo hiccup"))
    payload = json.dumps(_checkout_event({"paymentRequestId": "req-1", "type": "other"})).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.payment_request_service", requests):
        success, message, details = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert message == "Event logged with error"
    failed = db.stripe_events.update_one.call_args_list[-1][0][1]["$set"]
    assert failed["status"] == "FAILED"
    assert failed["error"] == "mongo hiccup"


@pytest.mark.asyncio
async def test_unpaid_session_is_ignored():
    db = make_db()
    onboarding = MagicMock()
    onboarding.mark_deposit_paid = AsyncMock()
    payload = json.dumps(
        _checkout_event({"projectId": "proj-1", "type": "kickoff-deposit"}, payment_status="unpaid")
    ).encode()

    with _no_secret(), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("services.stripe_webhook_service.onboarding_service", onboarding):
        success, _, details = await StripeWebhookService().process_webhook(payload, "")

    assert success is True
    assert details["handled"] is False
    onboarding.mark_deposit_paid.assert_not_called()


@pytest.mark.asyncio
async def test_bad_signature_rejected_when_secret_set():
    db = make_db()
    with patch.dict(os.environ, {"STRIPE_WEBHOOK_SECRET": "whsec_test"}), \
         patch("services.stripe_webhook_service.database.get_db", return_value=db), \
         patch("stripe.Webhook.construct_event",
               side_effect=stripe.SignatureVerificationError("bad sig", "t=1,v1=x")):
        success, message, _ = await StripeWebhookService().process_webhook(b"{}", "t=1,v1=x")

    assert success is False
    assert message == "Invalid signature"
    db.stripe_events.find_one.assert_not_called()


def test_webhook_routes_always_return_200(client):
    with patch("routes.webhooks.stripe_webhook_service.process_webhook",
               AsyncMock(return_value=(False, "Invalid signature", {}))):
        primary = client.post("/api/webhook/stripe", content=b"{}", headers={"Stripe-Signature": "t=1,v1=x"})
        alias = client.post("/api/webhooks/stripe", content=b"{}")

    assert primary.status_code == 200
    assert primary.json() == {"status": "error", "message": "Invalid signature"}
    assert alias.status_code == 200
