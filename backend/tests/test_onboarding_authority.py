"""Who may run which workflow operation, and delivery status protection."""
import pytest

from models import Actor, DeliveryStatus
from services.errors import ForbiddenTransitionError
from services.onboarding_authority import (
    WorkflowOperation,
    can_invoke,
    can_move_status,
    require_operation,
    require_status_move,
)
from services.onboarding_status import (
    coerce_status,
    is_protected,
    resolve_client_save_status,
    status_options,
)


class TestWorkflowAuthority:
    def test_client_cannot_confirm_payments(self):
        assert not can_invoke(Actor.CLIENT, WorkflowOperation.MARK_DEPOSIT_PAID)
        assert not can_invoke(Actor.CLIENT, WorkflowOperation.MARK_FINAL_INVOICE_PAID)

    def test_client_runs_intake_and_approval(self):
        for op in (
            WorkflowOperation.SELECT_SERVICES,
            WorkflowOperation.RECORD_UPLOADS,
            WorkflowOperation.START_CHECKOUT,
            WorkflowOperation.APPROVE_LAUNCH,
        ):
            assert can_invoke(Actor.CLIENT, op)

    def test_staff_may_do_everything(self):
        assert all(can_invoke(Actor.STAFF, op) for op in WorkflowOperation)

    def test_system_only_confirms_payments(self):
        allowed = {op for op in WorkflowOperation if can_invoke(Actor.SYSTEM, op)}
        assert allowed == {WorkflowOperation.MARK_DEPOSIT_PAID, WorkflowOperation.MARK_FINAL_INVOICE_PAID}

    def test_require_operation_raises_403(self):
        with pytest.raises(ForbiddenTransitionError) as exc_info:
            require_operation(Actor.SYSTEM, WorkflowOperation.SELECT_SERVICES)
        assert exc_info.value.status_code == 403


class TestDeliveryStatus:
    def test_client_may_only_submit(self):
        assert can_move_status(Actor.CLIENT, None, DeliveryStatus.SUBMITTED)
        assert can_move_status(Actor.CLIENT, DeliveryStatus.SUBMITTED, DeliveryStatus.SUBMITTED)
        assert not can_move_status(Actor.CLIENT, DeliveryStatus.IN_PROGRESS, DeliveryStatus.SUBMITTED)
        assert not can_move_status(Actor.CLIENT, DeliveryStatus.SUBMITTED, DeliveryStatus.LAUNCH_READY)

    def test_staff_may_set_any_status(self):
        assert can_move_status(Actor.STAFF, DeliveryStatus.LAUNCH_READY, DeliveryStatus.NOT_STARTED)

    def test_system_never_moves_status(self):
        with pytest.raises(ForbiddenTransitionError):
            require_status_move(Actor.SYSTEM, DeliveryStatus.SUBMITTED, DeliveryStatus.IN_PROGRESS)

    def test_routine_save_keeps_protected_status(self):
        assert resolve_client_save_status(DeliveryStatus.IN_PROGRESS) == DeliveryStatus.IN_PROGRESS
        assert resolve_client_save_status("launch-ready") == DeliveryStatus.LAUNCH_READY
        assert resolve_client_save_status(None) == DeliveryStatus.SUBMITTED
        assert resolve_client_save_status(DeliveryStatus.NOT_STARTED) == DeliveryStatus.SUBMITTED

    def test_coerce_status(self):
        assert coerce_status(None) == DeliveryStatus.NOT_STARTED
        assert coerce_status("") == DeliveryStatus.NOT_STARTED
        assert coerce_status("in-progress") == DeliveryStatus.IN_PROGRESS
        with pytest.raises(ValueError):
            coerce_status("archived")

    def test_is_protected_tolerates_garbage(self):
        assert is_protected("in-progress")
        assert not is_protected("archived")
        assert not is_protected(None)

    def test_status_options_in_display_order(self):
        options = status_options()
        assert [o["value"] for o in options] == ["not-started", "submitted", "in-progress", "launch-ready"]
        assert options[3]["label"] == "Launch-ready"
