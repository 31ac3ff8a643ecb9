from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from enum import Enum
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExecutionMode(str, Enum):
    AUTONOMOUS = "autonomous"
    HITL = "hitl"


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({
    RecommendationStatus.PENDING,
    RecommendationStatus.APPROVED,
    RecommendationStatus.EXECUTING,
})


class WasteKind(str, Enum):
    """Family of optimization action implied by a detection"""
    RIGHTSIZING = "rightsizing"
    DELETE_UNATTACHED = "delete-unattached"
    VOLUME_MIGRATION = "volume-migration"
    DELETE_ORPHANED = "delete-orphaned"
    SNAPSHOT_CLEANUP = "snapshot-cleanup"
    RELEASE_EIP = "release-eip"
    DELETE_UNUSED = "delete-unused"
    NAT_CONSOLIDATION = "nat-consolidation"
    LB_CONSOLIDATION = "lb-consolidation"
    STORAGE_TIERING = "storage-tiering"
    LAMBDA_RIGHTSIZING = "lambda-rightsizing"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


_DATETIME_FIELDS = ("created_at", "updated_at", "executed_at", "decided_at")


@dataclass
class Recommendation:
    """A single optimization finding and its lifecycle state"""

    resource_id: str
    resource_type: str
    waste_kind: WasteKind
    title: str
    description: str
    risk_level: RiskLevel
    execution_mode: ExecutionMode
    projected_monthly_savings: float
    projected_annual_savings: float
    status: RecommendationStatus = RecommendationStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    executed_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    decided_by: Optional[str] = None
    last_error: Optional[str] = None
    realized_monthly_savings: float = 0.0
    attempts: int = 0
    recommended_action: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def key(self) -> tuple:
        return (self.resource_id, self.resource_type)

    def copy(self, **changes) -> "Recommendation":
        """Detached copy so callers never hold the store's instance"""
        changes.setdefault("recommended_action", dict(self.recommended_action))
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary"""
        data = asdict(self)
        for name in ("waste_kind", "risk_level", "execution_mode", "status"):
            data[name] = getattr(self, name).value
        for name in _DATETIME_FIELDS:
            value = getattr(self, name)
            data[name] = value.isoformat() if value else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        values = dict(data)
        values["waste_kind"] = WasteKind(values["waste_kind"])
        values["risk_level"] = RiskLevel(values["risk_level"])
        values["execution_mode"] = ExecutionMode(values["execution_mode"])
        values["status"] = RecommendationStatus(values["status"])
        for name in _DATETIME_FIELDS:
            if values.get(name):
                values[name] = datetime.fromisoformat(values[name])
        return cls(**values)

    def to_payload(self) -> Dict[str, Any]:
        """camelCase view used on the real-time channel and the HTTP surface"""
        data = self.to_dict()
        return {
            "id": data["id"],
            "resourceId": data["resource_id"],
            "resourceType": data["resource_type"],
            "type": data["waste_kind"],
            "title": data["title"],
            "description": data["description"],
            "riskLevel": data["risk_level"],
            "executionMode": data["execution_mode"],
            "projectedMonthlySavings": data["projected_monthly_savings"],
            "projectedAnnualSavings": data["projected_annual_savings"],
            "status": data["status"],
            "createdAt": data["created_at"],
            "updatedAt": data["updated_at"],
            "executedAt": data["executed_at"],
            "decidedAt": data["decided_at"],
            "decidedBy": data["decided_by"],
            "lastError": data["last_error"],
            "realizedMonthlySavings": data["realized_monthly_savings"],
            "attempts": data["attempts"],
        }


@dataclass
class ExecutionAttempt:
    """One call to the action adapter. Append-only."""

    recommendation_id: str
    attempt_number: int
    outcome: AttemptOutcome
    timestamp: datetime = field(default_factory=utcnow)
    error_detail: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "attempt_number": self.attempt_number,
            "outcome": self.outcome.value,
            "timestamp": self.timestamp.isoformat(),
            "error_detail": self.error_detail,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionAttempt":
        return cls(
            recommendation_id=data["recommendation_id"],
            attempt_number=data["attempt_number"],
            outcome=AttemptOutcome(data["outcome"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            error_detail=data.get("error_detail"),
            duration_seconds=data.get("duration_seconds", 0.0),
        )
