"""Human sign-off for recommendations that may not run on their own"""

from typing import Optional
import logging

from ..core.base import ExecutionMode, Recommendation, utcnow
from ..core.exceptions import AuthorizationError, ConflictError
from ..core.logging import get_audit_logger
from ..core.security import Authorizer, Role, RoleAuthorizer, User
from ..storage.base import RecommendationStore
from .executor import ExecutionEngine
from .state_machine import APPROVED, PENDING, REJECTED

logger = logging.getLogger(__name__)


class ApprovalWorkflow:
    """approve/reject for HITL recommendations.

    Both calls check the acting user's role before touching the store, so an
    unauthorized call never changes state.
    """

    def __init__(self, store: RecommendationStore, engine: ExecutionEngine,
                 authorizer: Optional[Authorizer] = None,
                 minimum_role: Role = Role.USER):
        self.store = store
        self.engine = engine
        self.authorizer = authorizer or RoleAuthorizer()
        self.minimum_role = minimum_role

    def approve(self, recommendation_id: str, acting_user: Optional[User]) -> Recommendation:
        """Approve, claim and execute. Returns the final record."""
        self._authorize("approve", recommendation_id, acting_user)
        self._check_decidable(recommendation_id)

        self.store.update_status(
            recommendation_id, PENDING, APPROVED,
            decided_by=acting_user.username, decided_at=utcnow(),
        )
        get_audit_logger().log_event("approve", user=acting_user.username,
                                     recommendation_id=recommendation_id)
        logger.info(f"Recommendation {recommendation_id} approved by {acting_user.username}",
                    extra={'recommendation_id': recommendation_id, 'user': acting_user.username})

        try:
            outcome = self.engine.claim_and_execute(recommendation_id, APPROVED)
        except ConflictError:
            # the scheduler picked up the approved record first
            logger.info(f"Recommendation {recommendation_id} was claimed by another worker")
            return self.store.get_recommendation(recommendation_id)
        return outcome.recommendation

    def reject(self, recommendation_id: str, acting_user: Optional[User]) -> Recommendation:
        """Move a pending recommendation to the terminal ``rejected`` state"""
        self._authorize("reject", recommendation_id, acting_user)
        self._check_decidable(recommendation_id)

        rejected = self.store.update_status(
            recommendation_id, PENDING, REJECTED,
            decided_by=acting_user.username, decided_at=utcnow(),
        )
        get_audit_logger().log_event("reject", user=acting_user.username,
                                     recommendation_id=recommendation_id)
        logger.info(f"Recommendation {recommendation_id} rejected by {acting_user.username}",
                    extra={'recommendation_id': recommendation_id, 'user': acting_user.username})
        return rejected

    def _authorize(self, action: str, recommendation_id: str, user: Optional[User]) -> None:
        try:
            self.authorizer.require_role(user, self.minimum_role)
        except AuthorizationError:
            get_audit_logger().log_event(
                action, user=user.username if user else "anonymous",
                recommendation_id=recommendation_id, result="denied",
            )
            raise

    def _check_decidable(self, recommendation_id: str) -> Recommendation:
        rec = self.store.get_recommendation(recommendation_id)
        if rec.execution_mode != ExecutionMode.HITL:
            raise ConflictError(f"Recommendation {recommendation_id} runs autonomously and takes no approval")
        if rec.status != PENDING:
            raise ConflictError(
                f"Recommendation {recommendation_id} is {rec.status.value}, only pending ones can be decided"
            )
        return rec
