"""Summary KPIs recomputed from recommendation and resource state"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

import pandas as pd

from ..core.base import Recommendation, RecommendationStatus, Resource
from ..storage.base import RecommendationStore

logger = logging.getLogger(__name__)

COLUMNS = [
    "id", "resource_id", "resource_type", "status", "execution_mode",
    "projected_monthly_savings", "realized_monthly_savings", "executed_at", "decided_at",
]


@dataclass
class MetricsSummary:
    """Read-side projection; never a source of truth"""
    total_recommendations: int = 0
    pending_count: int = 0
    awaiting_approval_count: int = 0
    identified_monthly_savings: float = 0.0
    identified_annual_savings: float = 0.0
    realized_monthly_savings: float = 0.0
    realized_annual_savings: float = 0.0
    monthly_spend: float = 0.0
    waste_percentage: float = 0.0
    resources_analyzed: int = 0
    last_action_at: Optional[datetime] = None
    status_counts: Dict[str, int] = field(default_factory=dict)
    optimization_mix: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_recommendations": self.total_recommendations,
            "pending_count": self.pending_count,
            "awaiting_approval_count": self.awaiting_approval_count,
            "identified_monthly_savings": self.identified_monthly_savings,
            "identified_annual_savings": self.identified_annual_savings,
            "realized_monthly_savings": self.realized_monthly_savings,
            "realized_annual_savings": self.realized_annual_savings,
            "monthly_spend": self.monthly_spend,
            "waste_percentage": self.waste_percentage,
            "resources_analyzed": self.resources_analyzed,
            "last_action_at": self.last_action_at.isoformat() if self.last_action_at else None,
            "status_counts": dict(self.status_counts),
            "optimization_mix": dict(self.optimization_mix),
        }


class MetricsAggregator:
    """Builds a MetricsSummary from the store and the latest resource inventory"""

    def __init__(self, store: RecommendationStore):
        self.store = store

    def summary(self, resources: Optional[Iterable[Resource]] = None) -> MetricsSummary:
        recommendations = self.store.list_recommendations()
        frame = self.to_frame(recommendations)
        resources = list(resources or [])
        monthly_spend = round(float(sum(r.monthly_cost for r in resources)), 2)

        if frame.empty:
            return MetricsSummary(
                monthly_spend=monthly_spend,
                resources_analyzed=len(resources),
                status_counts={s.value: 0 for s in RecommendationStatus},
                optimization_mix=self._mix(0, 0),
            )

        status = frame["status"]
        pending = frame[status == RecommendationStatus.PENDING.value]
        awaiting = pending[pending["execution_mode"] == "hitl"]
        identified = frame[status.isin([RecommendationStatus.PENDING.value,
                                        RecommendationStatus.APPROVED.value])]
        identified_monthly = round(float(identified["projected_monthly_savings"].sum()), 2)

        # only the latest successful execution per resource counts
        executed = frame[status == RecommendationStatus.EXECUTED.value].sort_values("executed_at")
        latest = executed.drop_duplicates(subset=["resource_id", "resource_type"], keep="last")
        realized_monthly = round(float(latest["realized_monthly_savings"].sum()), 2)

        waste_percentage = round(realized_monthly / monthly_spend * 100, 1) if monthly_spend > 0 else 0.0

        counts = status.value_counts()
        status_counts = {s.value: int(counts.get(s.value, 0)) for s in RecommendationStatus}

        modes = frame["execution_mode"].value_counts()
        mix = self._mix(int(modes.get("autonomous", 0)), int(modes.get("hitl", 0)))

        return MetricsSummary(
            total_recommendations=len(frame),
            pending_count=len(pending),
            awaiting_approval_count=len(awaiting),
            identified_monthly_savings=identified_monthly,
            identified_annual_savings=round(identified_monthly * 12, 2),
            realized_monthly_savings=realized_monthly,
            realized_annual_savings=round(realized_monthly * 12, 2),
            monthly_spend=monthly_spend,
            waste_percentage=waste_percentage,
            resources_analyzed=len(resources),
            last_action_at=self._last_action(frame),
            status_counts=status_counts,
            optimization_mix=mix,
        )

    @staticmethod
    def to_frame(recommendations: List[Recommendation]) -> pd.DataFrame:
        """One row per recommendation with the columns the summary reads"""
        rows = [{name: rec.to_dict()[name] for name in COLUMNS} for rec in recommendations]
        frame = pd.DataFrame(rows, columns=COLUMNS)
        for column in ("executed_at", "decided_at"):
            frame[column] = pd.to_datetime(frame[column], utc=True, format="ISO8601")
        return frame

    @staticmethod
    def _last_action(frame: pd.DataFrame) -> Optional[datetime]:
        stamps = pd.concat([frame["executed_at"], frame["decided_at"]]).dropna()
        if stamps.empty:
            return None
        return stamps.max().to_pydatetime()

    @staticmethod
    def _mix(autonomous: int, hitl: int) -> Dict[str, Any]:
        total = autonomous + hitl
        return {
            "autonomous": autonomous,
            "hitl": hitl,
            "autonomous_percentage": round(autonomous / total * 100) if total else 0,
            "hitl_percentage": round(hitl / total * 100) if total else 0,
        }
