"""
Onboarding delivery status.

The delivery status tells the client where staff are with their build. Clients
re-save their intake all the time; a routine save must never knock a project
that staff have already picked up back to "submitted".
"""
from typing import Dict, List, Optional, Union

from models import DeliveryStatus

PROTECTED_STATUSES = frozenset({
    DeliveryStatus.IN_PROGRESS,
    DeliveryStatus.LAUNCH_READY,
})

STATUS_LABELS: Dict[DeliveryStatus, str] = {
    DeliveryStatus.NOT_STARTED: "Not started",
    DeliveryStatus.SUBMITTED: "Submitted for review",
    DeliveryStatus.IN_PROGRESS: "In progress",
    DeliveryStatus.LAUNCH_READY: "Launch-ready",
}

STATUS_DESCRIPTIONS: Dict[DeliveryStatus, str] = {
    DeliveryStatus.NOT_STARTED: "Waiting for onboarding submission.",
    DeliveryStatus.SUBMITTED: "Client has delivered onboarding details.",
    DeliveryStatus.IN_PROGRESS: "Strategy, creative, or AI training underway.",
    DeliveryStatus.LAUNCH_READY: "Green-lit for go-live and automation handoff.",
}

CLIENT_NEXT_STEP: Dict[DeliveryStatus, str] = {
    DeliveryStatus.NOT_STARTED: "Complete the onboarding prompts to unlock your kickoff roadmap.",
    DeliveryStatus.SUBMITTED: "We're reviewing your answers and will follow up with launch timing.",
    DeliveryStatus.IN_PROGRESS: "We're building assets, keep an eye out for review notes.",
    DeliveryStatus.LAUNCH_READY: "We're queued for launch, expect scheduling confirmation shortly.",
}


def coerce_status(value: Optional[Union[DeliveryStatus, str]]) -> DeliveryStatus:
    """Parse a stored status. Missing values read as not-started; unknown values raise ValueError."""
    if value is None or value == "":
        return DeliveryStatus.NOT_STARTED
    return DeliveryStatus(value)


def is_protected(status: Optional[Union[DeliveryStatus, str]]) -> bool:
    if status is None:
        return False
    try:
        return DeliveryStatus(status) in PROTECTED_STATUSES
    except ValueError:
        return False


def resolve_client_save_status(existing: Optional[Union[DeliveryStatus, str]]) -> DeliveryStatus:
    """Status a routine client save persists: the existing one if protected, else submitted."""
    if is_protected(existing):
        return DeliveryStatus(existing)
    return DeliveryStatus.SUBMITTED


def status_options() -> List[dict]:
    """Staff picker options in display order."""
    return [
        {"value": s.value, "label": STATUS_LABELS[s], "description": STATUS_DESCRIPTIONS[s]}
        for s in DeliveryStatus
    ]
