"""Engagement Transitions: tests for the pure state machine rules.

Tests cover:
    - Every legal (status, action, role) move and its target
    - Wrong role and wrong source state are both illegal
    - Stale expected_status yields StateConflictError
    - RATE and SETTLE gate side operations without a target
"""

import pytest

from karmafarm.core.domain_types import (
    ActorRole,
    EngagementAction,
    EngagementStatus,
)
from karmafarm.core.engagement_transitions import (
    check_expected_status,
    check_transition,
    counterparty,
    is_active,
    resolve_role,
    target_status,
)
from karmafarm.core.errors import IllegalTransitionError, StateConflictError

S = EngagementStatus
A = EngagementAction
R = ActorRole


# ─── Legal moves ─────────────────────────────────────────────────

@pytest.mark.parametrize("status, action, role", [
    (S.IN_PROGRESS, A.MARK_COMPLETED, R.FULFILLER),
    (S.AWAITING_CONFIRMATION, A.CONFIRM, R.OWNER),
    (S.IN_PROGRESS, A.DISPUTE, R.OWNER),
    (S.IN_PROGRESS, A.DISPUTE, R.FULFILLER),
    (S.AWAITING_CONFIRMATION, A.DISPUTE, R.OWNER),
    (S.AWAITING_CONFIRMATION, A.DISPUTE, R.FULFILLER),
    (S.CONFIRMED, A.RATE, R.OWNER),
    (S.CONFIRMED, A.RATE, R.FULFILLER),
    (S.CONFIRMED, A.SETTLE, R.OWNER),
])
def test_legal_moves_pass(status, action, role):
    assert check_transition(status, action, role) is None


def test_targets_of_state_moving_actions():
    assert target_status(A.MARK_COMPLETED) == S.AWAITING_CONFIRMATION
    assert target_status(A.CONFIRM) == S.CONFIRMED
    assert target_status(A.DISPUTE) == S.DISPUTED


@pytest.mark.parametrize("action", [A.RATE, A.SETTLE])
def test_side_actions_have_no_target(action):
    with pytest.raises(ValueError):
        target_status(action)


# ─── Illegal moves ───────────────────────────────────────────────

def test_owner_cannot_mark_completed():
    error = check_transition(S.IN_PROGRESS, A.MARK_COMPLETED, R.OWNER)
    assert isinstance(error, IllegalTransitionError)
    assert error.http_status == 409


def test_fulfiller_cannot_confirm():
    error = check_transition(S.AWAITING_CONFIRMATION, A.CONFIRM, R.FULFILLER)
    assert isinstance(error, IllegalTransitionError)
    assert error.role == "fulfiller"


def test_confirm_before_completion_is_illegal():
    error = check_transition(S.IN_PROGRESS, A.CONFIRM, R.OWNER)
    assert isinstance(error, IllegalTransitionError)
    assert error.current_status == "in_progress"


def test_pending_is_never_a_legal_source():
    for action in A:
        for role in R:
            assert check_transition(S.PENDING, action, role) is not None


@pytest.mark.parametrize("status", [S.CONFIRMED, S.DISPUTED])
def test_terminal_states_cannot_be_disputed(status):
    assert check_transition(status, A.DISPUTE, R.OWNER) is not None


def test_outsider_can_do_nothing():
    for status in S:
        for action in A:
            assert check_transition(status, action, R.OUTSIDER) is not None


def test_rating_requires_confirmation():
    assert check_transition(S.AWAITING_CONFIRMATION, A.RATE, R.OWNER) is not None
    assert check_transition(S.DISPUTED, A.RATE, R.FULFILLER) is not None


# ─── Expected status ─────────────────────────────────────────────

def test_matching_expected_status_passes():
    assert check_expected_status(S.IN_PROGRESS, S.IN_PROGRESS) is None


def test_missing_expected_status_passes():
    assert check_expected_status(S.DISPUTED, None) is None


def test_stale_expected_status_conflicts():
    error = check_expected_status(S.DISPUTED, S.AWAITING_CONFIRMATION)
    assert isinstance(error, StateConflictError)
    assert error.expected == "awaiting_confirmation"
    assert error.actual == "disputed"


# ─── Roles ───────────────────────────────────────────────────────

def test_resolve_role():
    assert resolve_role("alice", "bob", "alice") == R.OWNER
    assert resolve_role("alice", "bob", "bob") == R.FULFILLER
    assert resolve_role("alice", "bob", "eve") == R.OUTSIDER


def test_counterparty():
    assert counterparty("alice", "bob", "alice") == "bob"
    assert counterparty("alice", "bob", "bob") == "alice"
    assert counterparty("alice", "bob", "eve") is None


def test_is_active():
    assert is_active(S.IN_PROGRESS)
    assert is_active(S.AWAITING_CONFIRMATION)
    assert not is_active(S.CONFIRMED)
    assert not is_active(S.DISPUTED)
