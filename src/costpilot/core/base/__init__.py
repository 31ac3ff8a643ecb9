from .resource import Resource, ResourceType
from .recommendation import (
    Recommendation, ExecutionAttempt, RecommendationStatus, RiskLevel, ExecutionMode,
    WasteKind, AttemptOutcome, ACTIVE_STATUSES, utcnow
)
from .provider import TelemetryProvider, ActionAdapter, ActionOutcome

__all__ = [
    'Resource', 'ResourceType',
    'Recommendation', 'ExecutionAttempt', 'RecommendationStatus', 'RiskLevel', 'ExecutionMode',
    'WasteKind', 'AttemptOutcome', 'ACTIVE_STATUSES', 'utcnow',
    'TelemetryProvider', 'ActionAdapter', 'ActionOutcome'
]
