"""Human-in-the-loop approval requests.

A request moves from ``pending`` to exactly one terminal state (approved,
rejected or expired) and is removed from the pending set when it does.
"""

from expert_runtime.approvals.state_machine import (
    ApprovalState,
    IllegalTransitionError,
    decision_state,
    transition,
)
from expert_runtime.approvals.store import ApprovalRequest, ApprovalStore

__all__ = [
    "ApprovalRequest",
    "ApprovalState",
    "ApprovalStore",
    "IllegalTransitionError",
    "decision_state",
    "transition",
]
