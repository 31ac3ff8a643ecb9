"""Recommendation store interface"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..core.base import (
    ExecutionAttempt, ExecutionMode, Recommendation, RecommendationStatus
)


class RecommendationStore(ABC):
    """Durable home of recommendations and execution attempts.

    The store is the only shared mutable state. Every status change goes
    through ``update_status``, a compare-and-swap on the current status, and
    ``insert_recommendation`` enforces the one-active-per-resource rule
    atomically. Reads return detached copies.
    """

    @abstractmethod
    def get_recommendation(self, recommendation_id: str) -> Recommendation:
        """Raises ``RecommendationNotFoundError`` for unknown ids"""
        pass

    @abstractmethod
    def get_active_recommendation(self, resource_id: str,
                                  resource_type: str) -> Optional[Recommendation]:
        """The pending/approved/executing recommendation for a resource, if any"""
        pass

    @abstractmethod
    def insert_recommendation(self, recommendation: Recommendation) -> Recommendation:
        """Persist a new recommendation.

        Raises ``DuplicateRecommendationError`` when an active recommendation
        already exists for the same (resource_id, resource_type).
        """
        pass

    @abstractmethod
    def update_status(self, recommendation_id: str,
                      expected: RecommendationStatus,
                      new: RecommendationStatus,
                      **fields) -> Recommendation:
        """Move ``expected`` -> ``new`` only if the record is still ``expected``.

        Raises ``InvalidTransitionError`` when the current status differs or
        the lifecycle forbids the edge, ``RecommendationNotFoundError`` for
        unknown ids. Extra ``fields`` are written in the same step.
        """
        pass

    @abstractmethod
    def list_recommendations(self, status: Optional[RecommendationStatus] = None,
                             resource_type: Optional[str] = None,
                             execution_mode: Optional[ExecutionMode] = None) -> List[Recommendation]:
        """Recommendations ordered by creation time"""
        pass

    @abstractmethod
    def record_attempt(self, attempt: ExecutionAttempt) -> None:
        pass

    @abstractmethod
    def list_attempts(self, recommendation_id: str) -> List[ExecutionAttempt]:
        pass

    def list_stale_executing(self, older_than: datetime) -> List[Recommendation]:
        """Executing recommendations whose last update predates ``older_than``"""
        return [
            rec for rec in self.list_recommendations(status=RecommendationStatus.EXECUTING)
            if rec.updated_at < older_than
        ]

    def ping(self) -> bool:
        """Readiness probe"""
        self.list_recommendations(status=RecommendationStatus.EXECUTING)
        return True
