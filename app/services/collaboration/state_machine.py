"""
Collaboration lifecycle state machine.

All status changes go through ``transition()``; a (status, action) pair that
is not in TRANSITIONS is rejected with StateConflictError.

    pending_review    --accept_pitch------------------------> pending_payment
    pending_review    --decline_pitch-----------------------> declined
    pending_agreement --counter_offer-----------------------> pending_agreement
    pending_agreement --accept_terms------------------------> pending_payment
    pending_agreement --accept_terms_free-------------------> scheduling
    pending_agreement --decline_terms-----------------------> declined
    pending_payment   --capture_payment---------------------> in_progress
    pending_payment   --capture_payment_for_scheduling------> scheduling
    scheduling        --confirm_schedule--------------------> scheduled
    scheduled         --accept_reschedule-------------------> scheduled
    scheduled         --complete_recording------------------> in_progress
    in_progress       --release_payout----------------------> completed
"""

from enum import Enum

from app.models.domain.collaboration_domain import (
    TERMINAL_STATUSES,
    CollaborationStatus,
    CollaborationType,
)
from app.services.errors import StateConflictError

S = CollaborationStatus


class Action(str, Enum):
    ACCEPT_PITCH = "accept_pitch"
    DECLINE_PITCH = "decline_pitch"
    COUNTER_OFFER = "counter_offer"
    ACCEPT_TERMS = "accept_terms"
    ACCEPT_TERMS_FREE = "accept_terms_free"
    DECLINE_TERMS = "decline_terms"
    CAPTURE_PAYMENT = "capture_payment"
    CAPTURE_PAYMENT_FOR_SCHEDULING = "capture_payment_for_scheduling"
    CONFIRM_SCHEDULE = "confirm_schedule"
    ACCEPT_RESCHEDULE = "accept_reschedule"
    COMPLETE_RECORDING = "complete_recording"
    RELEASE_PAYOUT = "release_payout"


TRANSITIONS: dict[tuple[CollaborationStatus, Action], CollaborationStatus] = {
    (S.PENDING_REVIEW, Action.ACCEPT_PITCH): S.PENDING_PAYMENT,
    (S.PENDING_REVIEW, Action.DECLINE_PITCH): S.DECLINED,
    (S.PENDING_AGREEMENT, Action.COUNTER_OFFER): S.PENDING_AGREEMENT,
    (S.PENDING_AGREEMENT, Action.ACCEPT_TERMS): S.PENDING_PAYMENT,
    (S.PENDING_AGREEMENT, Action.ACCEPT_TERMS_FREE): S.SCHEDULING,
    (S.PENDING_AGREEMENT, Action.DECLINE_TERMS): S.DECLINED,
    (S.PENDING_PAYMENT, Action.CAPTURE_PAYMENT): S.IN_PROGRESS,
    (S.PENDING_PAYMENT, Action.CAPTURE_PAYMENT_FOR_SCHEDULING): S.SCHEDULING,
    (S.SCHEDULING, Action.CONFIRM_SCHEDULE): S.SCHEDULED,
    (S.SCHEDULED, Action.ACCEPT_RESCHEDULE): S.SCHEDULED,
    (S.SCHEDULED, Action.COMPLETE_RECORDING): S.IN_PROGRESS,
    (S.IN_PROGRESS, Action.RELEASE_PAYOUT): S.COMPLETED,
}

# Human-readable guard failures, keyed by action
_REJECTION_MESSAGES = {
    Action.ACCEPT_PITCH: "Collaboration is not awaiting review",
    Action.DECLINE_PITCH: "Collaboration is not awaiting review",
    Action.COUNTER_OFFER: "Collaboration is not in negotiation",
    Action.ACCEPT_TERMS: "Collaboration is not in negotiation",
    Action.ACCEPT_TERMS_FREE: "Collaboration is not in negotiation",
    Action.DECLINE_TERMS: "Collaboration is not in negotiation",
    Action.CAPTURE_PAYMENT: "Collaboration is not awaiting payment",
    Action.CAPTURE_PAYMENT_FOR_SCHEDULING: "Collaboration is not awaiting payment",
    Action.CONFIRM_SCHEDULE: "Collaboration is not in scheduling phase",
    Action.ACCEPT_RESCHEDULE: "Can only reschedule confirmed recordings",
    Action.COMPLETE_RECORDING: "Recording must be scheduled before it can be completed",
    Action.RELEASE_PAYOUT: "Collaboration must be in progress to trigger payout",
}


def can_transition(status: CollaborationStatus, action: Action) -> bool:
    return (status, action) in TRANSITIONS


def transition(status: CollaborationStatus, action: Action) -> CollaborationStatus:
    """Return the next status, or raise StateConflictError."""
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        if status in TERMINAL_STATUSES:
            message = f"Collaboration is already {status.value}"
        else:
            message = _REJECTION_MESSAGES.get(action, "Operation not allowed in current state")
        raise StateConflictError(f"{message} (status: {status.value})") from None


def payment_capture_action(collaboration_type: CollaborationType) -> Action:
    """Guest appearances schedule after payment; other deals start work."""
    if collaboration_type == CollaborationType.GUEST_APPEARANCE:
        return Action.CAPTURE_PAYMENT_FOR_SCHEDULING
    return Action.CAPTURE_PAYMENT


def terms_acceptance_action(price: float) -> Action:
    return Action.ACCEPT_TERMS if price > 0 else Action.ACCEPT_TERMS_FREE
