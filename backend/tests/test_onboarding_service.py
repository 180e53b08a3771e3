"""
Onboarding service against a mocked database: intake saves, guarded workflow
writes (retry on conflict), authority checks, checkouts and the outbox.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_cursor, make_db, project_doc
from models import Actor, OnboardingProject, OnboardingStep, PaymentPhase, PaymentType
from services.errors import (
    ForbiddenTransitionError,
    InvalidTransitionError,
    NotFoundError,
    OnboardingBillingError,
)
from services.onboarding_service import OnboardingService, parse_intake_form
from services.onboarding_workflow import OnboardingWorkflow
from services.payment_requests import PaymentRequestResult


def _selected_doc(keys=("website",), **overrides):
    project = OnboardingProject(project_id="proj-1", user_id="user-1")
    OnboardingWorkflow(project).select_services(list(keys))
    doc = project.model_dump(mode="json")
    doc.update(overrides)
    return doc


def _service(payment_requests=None):
    return OnboardingService(payment_requests=payment_requests or MagicMock())


class TestParseIntakeForm:
    def test_camel_case_keys_and_service_list(self):
        intake, selection = parse_intake_form({
            "companyName": "Acme",
            "targetAudience": "Homeowners",
            "teamSize": 4,
            "services": ["website", "voice"],
            "unrelated": "dropped",
        })
        assert intake == {"company_name": "Acme", "target_audience": "Homeowners", "team_size": "4"}
        assert selection == {"website": True, "ads": False, "voice": True}

    def test_legacy_plan_string(self):
        _, selection = parse_intake_form({"plan": "launch-traffic"})
        assert selection == {"website": True, "ads": True, "voice": False}

    def test_no_service_input_means_none(self):
        intake, selection = parse_intake_form({"goals": "More calls"})
        assert intake == {"goals": "More calls"}
        assert selection is None


class TestSaveIntake:
    @pytest.mark.asyncio
    async def test_first_save_creates_submitted_project_with_selection(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().save_intake(
                "user-1", {"companyName": "Acme", "services": {"website": True}}, label="Acme site"
            )

        assert project.status.value == "submitted"
        assert project.submitted_at is not None
        assert project.label == "Acme site"
        assert project.services["website"] is True
        assert project.state == OnboardingStep.BUSINESS_INFO

        stored = db.onboarding_projects.insert_one.call_args[0][0]
        assert stored["status"] == "submitted"
        assert stored["intake"] == {"company_name": "Acme"}
        assert stored["financials"]["due_at_approval_cents"] == 40000

        user_filter, user_update = db.users.update_one.call_args[0]
        assert user_filter == {"user_id": "user-1"}
        services = {s["service_key"]: s["active"] for s in user_update["$set"]["services"]}
        assert services == {"website": True, "ads": False, "voice": False}

    @pytest.mark.asyncio
    async def test_resave_never_overwrites_protected_status(self):
        db = make_db()
        doc = project_doc(status="in-progress", status_note="Design underway")
        db.onboarding_projects.find_one = AsyncMock(return_value=doc)

        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().save_intake("user-1", {"notes": "New logo attached"}, project_id="proj-1")

        assert project.status.value == "in-progress"
        assert project.status_note == "Design underway"

        calls = db.onboarding_projects.update_one.call_args_list
        assert calls[0][0][1]["$set"]["intake"] == {"notes": "New logo attached"}
        conditional_filter = calls[1][0][0]
        assert set(conditional_filter["status"]["$nin"]) == {"submitted", "in-progress", "launch-ready"}

    @pytest.mark.asyncio
    async def test_resave_with_new_selection_runs_select_services(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=_selected_doc(("website",)))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            await _service().save_intake("user-1", {"services": ["website", "ads"]}, project_id="proj-1")

        guarded = db.onboarding_projects.update_one.call_args_list[0][0]
        assert guarded[0]["state"] == "BUSINESS_INFO"
        assert guarded[1]["$set"]["services"] == {"website": True, "ads": True, "voice": False}


class TestGuardedWrites:
    @pytest.mark.asyncio
    async def test_deposit_paid_writes_guarded_update_with_event(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=_selected_doc())

        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().mark_deposit_paid("proj-1")

        assert project.payment_phase == PaymentPhase.DEPOSIT_PAID
        query, update = db.onboarding_projects.update_one.call_args[0]
        assert query == {"project_id": "proj-1", "state": "BUSINESS_INFO", "payment_phase": "draft"}
        assert update["$set"]["payment_phase"] == "deposit_paid"
        events = update["$push"]["webhook_queue"]["$each"]
        assert [e["tag"] for e in events] == ["deposit.paid"]

        audit = db.audit_logs.insert_one.call_args[0][0]
        assert audit["action"] == "ONBOARDING_STEP_CHANGED"
        assert audit["actor_role"] == "system"

    @pytest.mark.asyncio
    async def test_conflict_reloads_and_becomes_no_op(self):
        db = make_db()
        paid = _selected_doc(payment_phase="deposit_paid", state="POSTPAY_SUCCESS", step_index=7)
        db.onboarding_projects.find_one = AsyncMock(side_effect=[_selected_doc(), paid])
        db.onboarding_projects.update_one = AsyncMock(return_value=MagicMock(matched_count=0))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().mark_deposit_paid("proj-1")

        assert project.payment_phase == PaymentPhase.DEPOSIT_PAID
        assert db.onboarding_projects.update_one.call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(side_effect=lambda *a, **kw: _selected_doc())
        db.onboarding_projects.update_one = AsyncMock(return_value=MagicMock(matched_count=0))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(InvalidTransitionError):
                await _service().mark_deposit_paid("proj-1")

        assert db.onboarding_projects.update_one.call_count == 3

    @pytest.mark.asyncio
    async def test_client_cannot_mark_deposit_paid(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(ForbiddenTransitionError):
                await _service().mark_deposit_paid("proj-1", actor=Actor.CLIENT)
        db.onboarding_projects.find_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_project_is_not_found(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(NotFoundError):
                await _service().select_services("nope", ["website"], user_id="user-1")


class TestStatusUpdates:
    @pytest.mark.asyncio
    async def test_staff_sets_status_and_note(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=project_doc(status="submitted"))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().update_status("proj-1", "in-progress", note="  Kickoff booked ", actor_id="admin-1")

        assert project.status.value == "in-progress"
        assert project.status_note == "Kickoff booked"
        update = db.onboarding_projects.update_one.call_args[0][1]["$set"]
        assert update["status"] == "in-progress"

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(OnboardingBillingError):
                await _service().update_status("proj-1", "archived")

    @pytest.mark.asyncio
    async def test_client_cannot_set_in_progress(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=project_doc(status="submitted"))
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(ForbiddenTransitionError):
                await _service().update_status("proj-1", "in-progress", actor=Actor.CLIENT)

    @pytest.mark.asyncio
    async def test_staff_can_move_launch_ready_back_to_submitted(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=project_doc(status="launch-ready"))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            project = await _service().update_status("proj-1", "submitted", actor_id="admin-1")

        assert project.status.value == "submitted"
        update = db.onboarding_projects.update_one.call_args[0][1]["$set"]
        assert update["status"] == "submitted"

    @pytest.mark.asyncio
    async def test_unknown_status_filter_rejected(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(OnboardingBillingError):
                await _service().list_all_projects(status="bogus")
        db.onboarding_projects.find.assert_not_called()


class TestCheckout:
    @pytest.mark.asyncio
    async def test_deposit_checkout_uses_deterministic_request(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=_selected_doc(("website", "ads")))
        requests = MagicMock()
        requests.create = AsyncMock(return_value=PaymentRequestResult(ok=True, message="ok"))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            await _service(requests).start_deposit_checkout("proj-1", user_id="user-1", actor_id="user-1")

        kwargs = requests.create.call_args.kwargs
        assert kwargs["request_id"] == "deposit-proj-1"
        assert kwargs["amount_cents"] == 9900
        assert kwargs["payment_type"] == PaymentType.KICKOFF_DEPOSIT
        assert kwargs["generate_checkout"] is True
        assert kwargs["description"] == "Kickoff deposit: Conversion Website, Google & Meta Ads"

    @pytest.mark.asyncio
    async def test_deposit_checkout_needs_selection(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(return_value=project_doc())
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(InvalidTransitionError):
                await _service().start_deposit_checkout("proj-1")

    @pytest.mark.asyncio
    async def test_final_checkout_only_after_approval(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(
            return_value=_selected_doc(payment_phase="deposit_paid", state="POSTPAY_SUCCESS", step_index=7)
        )
        with patch("services.onboarding_service.database.get_db", return_value=db):
            with pytest.raises(InvalidTransitionError):
                await _service().start_final_invoice_checkout("proj-1")

    @pytest.mark.asyncio
    async def test_final_checkout_charges_balance(self):
        db = make_db()
        db.onboarding_projects.find_one = AsyncMock(
            return_value=_selected_doc(payment_phase="awaiting_final_invoice", state="FINAL_INVOICE", step_index=9)
        )
        requests = MagicMock()
        requests.create = AsyncMock(return_value=PaymentRequestResult(ok=True, message="ok"))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            await _service(requests).start_final_invoice_checkout("proj-1", actor=Actor.STAFF)

        kwargs = requests.create.call_args.kwargs
        assert kwargs["request_id"] == "final-proj-1"
        assert kwargs["amount_cents"] == 40000
        assert kwargs["payment_type"] == PaymentType.FINAL_BALANCE


class TestOutbox:
    @pytest.mark.asyncio
    async def test_list_pending_events_flattens_queues(self):
        db = make_db()
        docs = [{
            "project_id": "proj-1",
            "user_id": "user-1",
            "webhook_queue": [
                {"event_id": "e1", "tag": "deposit.paid", "created_at": "2026-01-01T00:00:00+00:00"},
                {"event_id": "e2", "tag": "assets.uploaded", "created_at": "2026-01-02T00:00:00+00:00"},
            ],
        }]
        db.onboarding_projects.find = MagicMock(return_value=make_cursor(docs))

        with patch("services.onboarding_service.database.get_db", return_value=db):
            events = await _service().list_pending_events()

        assert [(e["project_id"], e["event_id"], e["tag"]) for e in events] == [
            ("proj-1", "e1", "deposit.paid"),
            ("proj-1", "e2", "assets.uploaded"),
        ]

    @pytest.mark.asyncio
    async def test_acknowledge_pulls_only_known_events(self):
        db = make_db()
        doc = project_doc(webhook_queue=[
            {"event_id": "e1", "tag": "deposit.paid", "created_at": "2026-01-01T00:00:00+00:00"},
        ])
        db.onboarding_projects.find_one = AsyncMock(return_value=doc)

        with patch("services.onboarding_service.database.get_db", return_value=db):
            removed = await _service().acknowledge_events("proj-1", ["e1", "ghost"])

        assert removed == 1
        update = db.onboarding_projects.update_one.call_args[0][1]
        assert update == {"$pull": {"webhook_queue": {"event_id": {"$in": ["e1"]}}}}

    @pytest.mark.asyncio
    async def test_acknowledge_nothing_is_no_op(self):
        db = make_db()
        with patch("services.onboarding_service.database.get_db", return_value=db):
            assert await _service().acknowledge_events("proj-1", []) == 0
        db.onboarding_projects.update_one.assert_not_called()
