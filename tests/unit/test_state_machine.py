import pytest

from app.models.domain.collaboration_domain import CollaborationStatus, CollaborationType
from app.services.collaboration.state_machine import (
    TRANSITIONS,
    Action,
    can_transition,
    payment_capture_action,
    terms_acceptance_action,
    transition,
)
from app.services.errors import StateConflictError

S = CollaborationStatus


def test_transition_table_covers_every_action():
    assert {action for _, action in TRANSITIONS} == set(Action)


@pytest.mark.parametrize(
    "status,action,expected",
    [
        (S.PENDING_REVIEW, Action.ACCEPT_PITCH, S.PENDING_PAYMENT),
        (S.PENDING_AGREEMENT, Action.ACCEPT_TERMS_FREE, S.SCHEDULING),
        (S.PENDING_PAYMENT, Action.CAPTURE_PAYMENT_FOR_SCHEDULING, S.SCHEDULING),
        (S.SCHEDULED, Action.ACCEPT_RESCHEDULE, S.SCHEDULED),
        (S.IN_PROGRESS, Action.RELEASE_PAYOUT, S.COMPLETED),
    ],
)
def test_allowed_transitions(status, action, expected):
    assert transition(status, action) == expected


def test_rejected_transition_names_current_status():
    with pytest.raises(StateConflictError) as exc:
        transition(S.SCHEDULING, Action.RELEASE_PAYOUT)

    assert exc.value.status_code == 400
    assert "in progress" in exc.value.message
    assert "scheduling" in exc.value.message


def test_terminal_states_reject_everything():
    for action in Action:
        assert not can_transition(S.COMPLETED, action)
        assert not can_transition(S.DECLINED, action)

    with pytest.raises(StateConflictError, match="already completed"):
        transition(S.COMPLETED, Action.RELEASE_PAYOUT)


def test_action_selection_helpers():
    assert payment_capture_action(CollaborationType.LEGEND) == Action.CAPTURE_PAYMENT
    assert (
        payment_capture_action(CollaborationType.GUEST_APPEARANCE)
        == Action.CAPTURE_PAYMENT_FOR_SCHEDULING
    )
    assert terms_acceptance_action(0) == Action.ACCEPT_TERMS_FREE
    assert terms_acceptance_action(10) == Action.ACCEPT_TERMS
