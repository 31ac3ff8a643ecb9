"""In-memory and JSON-file recommendation stores"""

import json
import os
import tempfile
import threading
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging

from ..core.base import (
    ExecutionAttempt, ExecutionMode, Recommendation, RecommendationStatus, utcnow
)
from ..core.exceptions import (
    DataCollectionError, DuplicateRecommendationError, InvalidTransitionError,
    RecommendationNotFoundError
)
from ..remediation.state_machine import can_transition
from .base import RecommendationStore

logger = logging.getLogger(__name__)

# Fields update_status may write besides status/updated_at
UPDATABLE_FIELDS = frozenset({
    "executed_at", "decided_at", "decided_by", "last_error",
    "realized_monthly_savings", "attempts",
})


class InMemoryRecommendationStore(RecommendationStore):
    """Thread-safe store backed by dictionaries"""

    def __init__(self):
        self._lock = threading.RLock()
        self._recommendations: Dict[str, Recommendation] = {}
        self._active: Dict[Tuple[str, str], str] = {}
        self._attempts: Dict[str, List[ExecutionAttempt]] = defaultdict(list)

    def get_recommendation(self, recommendation_id: str) -> Recommendation:
        with self._lock:
            rec = self._recommendations.get(recommendation_id)
            if rec is None:
                raise RecommendationNotFoundError(recommendation_id)
            return rec.copy()

    def get_active_recommendation(self, resource_id: str,
                                  resource_type: str) -> Optional[Recommendation]:
        with self._lock:
            rec_id = self._active.get((resource_id, resource_type))
            return self._recommendations[rec_id].copy() if rec_id else None

    def insert_recommendation(self, recommendation: Recommendation) -> Recommendation:
        with self._lock:
            if recommendation.id in self._recommendations:
                raise DuplicateRecommendationError(
                    recommendation.resource_id, recommendation.resource_type, recommendation.id
                )
            if recommendation.is_active:
                existing = self._active.get(recommendation.key)
                if existing:
                    raise DuplicateRecommendationError(
                        recommendation.resource_id, recommendation.resource_type, existing
                    )
                self._active[recommendation.key] = recommendation.id

            stored = recommendation.copy()
            self._recommendations[stored.id] = stored
            self._persist()
            logger.debug(
                f"Inserted recommendation {stored.id} for {stored.resource_type}/{stored.resource_id}",
                extra={'recommendation_id': stored.id, 'resource_id': stored.resource_id}
            )
            return stored.copy()

    def update_status(self, recommendation_id: str,
                      expected: RecommendationStatus,
                      new: RecommendationStatus,
                      **fields) -> Recommendation:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

        expected = RecommendationStatus(expected)
        new = RecommendationStatus(new)

        with self._lock:
            current = self._recommendations.get(recommendation_id)
            if current is None:
                raise RecommendationNotFoundError(recommendation_id)
            if current.status != expected or not can_transition(expected, new):
                raise InvalidTransitionError(
                    recommendation_id, current.status.value, expected.value, new.value
                )

            updated = current.copy(status=new, updated_at=utcnow(), **fields)
            self._recommendations[recommendation_id] = updated
            if not updated.is_active and self._active.get(updated.key) == recommendation_id:
                del self._active[updated.key]
            self._persist()
            return updated.copy()

    def list_recommendations(self, status: Optional[RecommendationStatus] = None,
                             resource_type: Optional[str] = None,
                             execution_mode: Optional[ExecutionMode] = None) -> List[Recommendation]:
        with self._lock:
            records = [
                rec.copy() for rec in self._recommendations.values()
                if (status is None or rec.status == status)
                and (resource_type is None or rec.resource_type == resource_type)
                and (execution_mode is None or rec.execution_mode == execution_mode)
            ]
        return sorted(records, key=lambda rec: rec.created_at)

    def record_attempt(self, attempt: ExecutionAttempt) -> None:
        with self._lock:
            self._attempts[attempt.recommendation_id].append(attempt)
            self._persist()

    def list_attempts(self, recommendation_id: str) -> List[ExecutionAttempt]:
        with self._lock:
            return list(self._attempts.get(recommendation_id, []))

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held"""
        pass


class JsonFileRecommendationStore(InMemoryRecommendationStore):
    """Recommendations and attempts kept in one JSON document, keyed by id.

    Every mutation rewrites the file through a temporary file and an atomic
    rename, so a crash leaves either the old or the new document.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"State file {self.path} not found, starting empty")
            return

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DataCollectionError(f"Cannot read state file {self.path}: {e}")

        for raw in data.get("recommendations", {}).values():
            rec = Recommendation.from_dict(raw)
            self._recommendations[rec.id] = rec
            if rec.is_active:
                self._active[rec.key] = rec.id
        for rec_id, attempts in data.get("attempts", {}).items():
            self._attempts[rec_id] = [ExecutionAttempt.from_dict(a) for a in attempts]

        logger.info(f"Loaded {len(self._recommendations)} recommendations from {self.path}")

    def _persist(self) -> None:
        document = {
            "recommendations": {rec_id: rec.to_dict() for rec_id, rec in self._recommendations.items()},
            "attempts": {
                rec_id: [a.to_dict() for a in attempts]
                for rec_id, attempts in self._attempts.items()
            },
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".costpilot-", suffix=".json")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


def create_store(storage_config) -> RecommendationStore:
    """Build the store named by a ``StorageConfig`` section"""
    if storage_config.backend == "json":
        return JsonFileRecommendationStore(storage_config.path)
    return InMemoryRecommendationStore()
