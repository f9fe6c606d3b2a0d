from __future__ import annotations

from enum import Enum


class ApprovalState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


ALLOWED_TRANSITIONS: dict[ApprovalState, set[ApprovalState]] = {
    ApprovalState.PENDING: {
        ApprovalState.APPROVED,
        ApprovalState.REJECTED,
        ApprovalState.EXPIRED,
    },
    ApprovalState.APPROVED: set(),
    ApprovalState.REJECTED: set(),
    ApprovalState.EXPIRED: set(),
}

TERMINAL_STATES: frozenset[ApprovalState] = frozenset(
    state for state, targets in ALLOWED_TRANSITIONS.items() if not targets
)


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: ApprovalState, to: ApprovalState) -> ApprovalState:
    """Validate a state change. Only pending requests can move, and only once."""

    if to not in ALLOWED_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to


def decision_state(approve: bool) -> ApprovalState:
    return ApprovalState.APPROVED if approve else ApprovalState.REJECTED
