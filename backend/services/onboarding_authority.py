"""
Onboarding Authority Table
Who may drive which change on an onboarding project.

A project moves along two independent tracks:
- WORKFLOW: the 9-step intake/payment pointer (services.onboarding_workflow)
- DELIVERY: the staff-facing delivery status (services.onboarding_status)

AUTHORITY_RULES[track][actor] is a whitelist. Anything not listed is refused
with ForbiddenTransitionError before any write happens.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union

from models import Actor, DeliveryStatus
from services.errors import ForbiddenTransitionError


class Track(str, Enum):
    WORKFLOW = "workflow"
    DELIVERY = "delivery"


class WorkflowOperation(str, Enum):
    SELECT_SERVICES = "select_services"
    SET_BUSINESS_INFO = "set_business_info"
    SET_DESIGN_SPECS = "set_design_specs"
    RECORD_UPLOADS = "record_uploads"
    UPDATE_VOICE_AGENT = "update_voice_agent"
    START_CHECKOUT = "start_checkout"
    MARK_DEPOSIT_PAID = "mark_deposit_paid"
    ADVANCE_TO_LAUNCH_APPROVAL = "advance_to_launch_approval"
    APPROVE_LAUNCH = "approve_launch"
    MARK_FINAL_INVOICE_PAID = "mark_final_invoice_paid"


ANY_STATUS = "*"

StatusMove = Tuple[str, str]

_INTAKE_OPERATIONS = frozenset({
    WorkflowOperation.SELECT_SERVICES,
    WorkflowOperation.SET_BUSINESS_INFO,
    WorkflowOperation.SET_DESIGN_SPECS,
    WorkflowOperation.RECORD_UPLOADS,
    WorkflowOperation.UPDATE_VOICE_AGENT,
    WorkflowOperation.START_CHECKOUT,
})

AUTHORITY_RULES: Dict[Track, Dict[Actor, FrozenSet[Union[WorkflowOperation, StatusMove]]]] = {
    Track.WORKFLOW: {
        Actor.CLIENT: _INTAKE_OPERATIONS | {
            WorkflowOperation.ADVANCE_TO_LAUNCH_APPROVAL,
            WorkflowOperation.APPROVE_LAUNCH,
        },
        Actor.STAFF: frozenset(WorkflowOperation),
        # Payment confirmations only arrive from the processor webhook
        Actor.SYSTEM: frozenset({
            WorkflowOperation.MARK_DEPOSIT_PAID,
            WorkflowOperation.MARK_FINAL_INVOICE_PAID,
        }),
    },
    Track.DELIVERY: {
        Actor.CLIENT: frozenset({
            (DeliveryStatus.NOT_STARTED.value, DeliveryStatus.SUBMITTED.value),
            (DeliveryStatus.SUBMITTED.value, DeliveryStatus.SUBMITTED.value),
        }),
        Actor.STAFF: frozenset({(ANY_STATUS, ANY_STATUS)}),
        Actor.SYSTEM: frozenset(),
    },
}


def _status_value(status: Optional[Union[DeliveryStatus, str]]) -> str:
    if status is None:
        return DeliveryStatus.NOT_STARTED.value
    return status.value if isinstance(status, DeliveryStatus) else str(status)


def can_invoke(actor: Actor, operation: WorkflowOperation) -> bool:
    """Check if an actor may run a workflow operation"""
    return operation in AUTHORITY_RULES[Track.WORKFLOW].get(actor, frozenset())


def can_move_status(
    actor: Actor,
    from_status: Optional[Union[DeliveryStatus, str]],
    to_status: Union[DeliveryStatus, str],
) -> bool:
    """Check if an actor may move the delivery status. A missing status counts as not-started."""
    allowed = AUTHORITY_RULES[Track.DELIVERY].get(actor, frozenset())
    source, target = _status_value(from_status), _status_value(to_status)
    return (
        (source, target) in allowed
        or (ANY_STATUS, target) in allowed
        or (source, ANY_STATUS) in allowed
        or (ANY_STATUS, ANY_STATUS) in allowed
    )


def require_operation(actor: Actor, operation: WorkflowOperation) -> None:
    if not can_invoke(actor, operation):
        raise ForbiddenTransitionError(
            f"{actor.value} may not perform {operation.value}"
        )


def require_status_move(
    actor: Actor,
    from_status: Optional[Union[DeliveryStatus, str]],
    to_status: Union[DeliveryStatus, str],
) -> None:
    if not can_move_status(actor, from_status, to_status):
        raise ForbiddenTransitionError(
            f"{actor.value} may not change status {_status_value(from_status)} → {_status_value(to_status)}"
        )
