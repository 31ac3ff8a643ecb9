"""Recommendation lifecycle transitions"""

from typing import Dict, FrozenSet

from ..core.base import RecommendationStatus

PENDING = RecommendationStatus.PENDING
APPROVED = RecommendationStatus.APPROVED
REJECTED = RecommendationStatus.REJECTED
EXECUTING = RecommendationStatus.EXECUTING
EXECUTED = RecommendationStatus.EXECUTED
FAILED = RecommendationStatus.FAILED

ALLOWED_TRANSITIONS: Dict[RecommendationStatus, FrozenSet[RecommendationStatus]] = {
    PENDING: frozenset({APPROVED, REJECTED, EXECUTING}),
    APPROVED: frozenset({EXECUTING}),
    EXECUTING: frozenset({EXECUTED, FAILED}),
    REJECTED: frozenset(),
    EXECUTED: frozenset(),
    # a failed resource comes back as a new recommendation on re-detection
    FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

CLAIMABLE_STATUSES = frozenset({PENDING, APPROVED})


def can_transition(current: RecommendationStatus, target: RecommendationStatus) -> bool:
    return RecommendationStatus(target) in ALLOWED_TRANSITIONS[RecommendationStatus(current)]


def is_terminal(status: RecommendationStatus) -> bool:
    return RecommendationStatus(status) in TERMINAL_STATUSES
