"""Engagement Transition Rules: role- and state-checked moves of the engagement state machine.

Invariants:
    - Every action has exactly one rule: allowed source states, allowed roles, target state
    - check_* functions are PURE: they return an error instance (or None) and never raise;
      the shell decides to raise, keeping the rules testable without pytest.raises
    - A move is legal only when BOTH the source state and the actor's role match
    - Only in_progress and awaiting_confirmation count as active (they occupy the post slot)

Design Decisions:
    - Table-driven (TRANSITION_RULES) rather than if/elif chains per action
    - RATE and SETTLE are rules without a target: they gate side operations on a
      confirmed engagement without moving it
"""

from dataclasses import dataclass

from karmafarm.core.domain_types import (
    ACTIVE_ENGAGEMENT_STATUSES,
    ActorRole,
    EngagementAction,
    EngagementStatus,
    UserId,
)
from karmafarm.core.errors import (
    ErrorContext,
    IllegalTransitionError,
    StateConflictError,
)


@dataclass(frozen=True)
class TransitionRule:
    sources: frozenset[EngagementStatus]
    roles: frozenset[ActorRole]
    target: EngagementStatus | None


_PARTIES = frozenset({ActorRole.OWNER, ActorRole.FULFILLER})

TRANSITION_RULES: dict[EngagementAction, TransitionRule] = {
    EngagementAction.MARK_COMPLETED: TransitionRule(
        sources=frozenset({EngagementStatus.IN_PROGRESS}),
        roles=frozenset({ActorRole.FULFILLER}),
        target=EngagementStatus.AWAITING_CONFIRMATION,
    ),
    EngagementAction.CONFIRM: TransitionRule(
        sources=frozenset({EngagementStatus.AWAITING_CONFIRMATION}),
        roles=frozenset({ActorRole.OWNER}),
        target=EngagementStatus.CONFIRMED,
    ),
    EngagementAction.DISPUTE: TransitionRule(
        sources=frozenset({
            EngagementStatus.IN_PROGRESS,
            EngagementStatus.AWAITING_CONFIRMATION,
        }),
        roles=_PARTIES,
        target=EngagementStatus.DISPUTED,
    ),
    EngagementAction.RATE: TransitionRule(
        sources=frozenset({EngagementStatus.CONFIRMED}),
        roles=_PARTIES,
        target=None,
    ),
    EngagementAction.SETTLE: TransitionRule(
        sources=frozenset({EngagementStatus.CONFIRMED}),
        roles=_PARTIES,
        target=None,
    ),
}


def resolve_role(owner_id: UserId, fulfiller_id: UserId, actor_id: UserId) -> ActorRole:
    if actor_id == owner_id:
        return ActorRole.OWNER
    if actor_id == fulfiller_id:
        return ActorRole.FULFILLER
    return ActorRole.OUTSIDER


def counterparty(owner_id: UserId, fulfiller_id: UserId, actor_id: UserId) -> UserId | None:
    """The other party of the engagement, or None for outsiders."""
    if actor_id == owner_id:
        return fulfiller_id
    if actor_id == fulfiller_id:
        return owner_id
    return None


def is_active(status: EngagementStatus) -> bool:
    return status in ACTIVE_ENGAGEMENT_STATUSES


def check_transition(
    status: EngagementStatus,
    action: EngagementAction,
    role: ActorRole,
    context: ErrorContext | None = None,
) -> IllegalTransitionError | None:
    """Return IllegalTransitionError if action is not allowed, else None."""
    rule = TRANSITION_RULES[action]
    if status not in rule.sources or role not in rule.roles:
        return IllegalTransitionError(
            action.value, status.value, role.value, context,
        )
    return None


def check_expected_status(
    current: EngagementStatus,
    expected: EngagementStatus | None,
    context: ErrorContext | None = None,
) -> StateConflictError | None:
    """Stale caller intent: expected status given and different from stored."""
    if expected is not None and expected != current:
        return StateConflictError(expected.value, current.value, context)
    return None


def target_status(action: EngagementAction) -> EngagementStatus:
    """Target of a state-moving action. RATE/SETTLE have none."""
    target = TRANSITION_RULES[action].target
    if target is None:
        raise ValueError(f"{action.value} does not move the engagement")
    return target
