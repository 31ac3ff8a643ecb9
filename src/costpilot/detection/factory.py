"""Turn a positive detection into a Recommendation record"""

import math
from typing import Any, Dict, Optional
import logging

from ..core.base import Recommendation, Resource, WasteKind
from ..core.exceptions import RecommendationBuildError
from .risk import RiskAssessment
from .signals import extract_signals

logger = logging.getLogger(__name__)

ELASTIC_IP_MONTHLY_COST = 3.65
GP2_PRICE_PER_GB = 0.10
GP3_PRICE_PER_GB = 0.08

# Share of the resource's monthly cost an action gives back
SAVINGS_FRACTIONS: Dict[WasteKind, float] = {
    WasteKind.DELETE_UNATTACHED: 1.0,
    WasteKind.DELETE_ORPHANED: 1.0,
    WasteKind.DELETE_UNUSED: 1.0,
    WasteKind.SNAPSHOT_CLEANUP: 1.0,
    WasteKind.VOLUME_MIGRATION: 1 - GP3_PRICE_PER_GB / GP2_PRICE_PER_GB,
    WasteKind.RIGHTSIZING: 0.45,
    WasteKind.LAMBDA_RIGHTSIZING: 0.40,
    WasteKind.STORAGE_TIERING: 0.70,
    WasteKind.NAT_CONSOLIDATION: 0.50,
    WasteKind.LB_CONSOLIDATION: 0.50,
}


INSTANCE_SIZES = (
    "nano", "micro", "small", "medium", "large", "xlarge",
    "2xlarge", "4xlarge", "8xlarge", "12xlarge", "16xlarge", "24xlarge",
)


def downsize_instance_type(instance_type: Optional[str]) -> Optional[str]:
    """One size down within the same family: m5.xlarge -> m5.large, db.r5.large -> db.r5.medium"""
    if not instance_type or "." not in instance_type:
        return None
    family, _, size = instance_type.rpartition(".")
    if size not in INSTANCE_SIZES:
        return None
    index = INSTANCE_SIZES.index(size)
    if index == 0:
        return None
    return f"{family}.{INSTANCE_SIZES[index - 1]}"


def format_savings(amount: float) -> str:
    if amount < 1000:
        return f"${amount:,.2f}"
    return f"${amount / 1000:,.1f}K"


class RecommendationFactory:
    """Builds titles, descriptions, savings estimates and the action payload"""

    def estimate_monthly_savings(self, resource: Resource, waste_kind: WasteKind) -> float:
        if waste_kind == WasteKind.RELEASE_EIP:
            return ELASTIC_IP_MONTHLY_COST
        fraction = SAVINGS_FRACTIONS.get(waste_kind, 0.0)
        return round(resource.monthly_cost * fraction, 2)

    def build(self, resource: Resource, waste_kind: WasteKind,
              assessment: RiskAssessment) -> Recommendation:
        """Create a pending recommendation.

        Raises:
            RecommendationBuildError: estimate is not a positive finite amount,
                or the title/description came out empty
        """
        try:
            monthly = float(self.estimate_monthly_savings(resource, waste_kind))
        except (TypeError, ValueError) as e:
            raise RecommendationBuildError(resource.resource_id, f"Savings estimate failed: {e}")

        if not math.isfinite(monthly) or monthly <= 0:
            raise RecommendationBuildError(
                resource.resource_id,
                f"Savings estimate must be positive, got {monthly} for {waste_kind.value}"
            )

        signals = extract_signals(resource)
        title = self._title(resource, waste_kind).strip()
        description = self._description(resource, waste_kind, signals, monthly).strip()
        if not title or not description:
            raise RecommendationBuildError(resource.resource_id, "Empty title or description")

        return Recommendation(
            resource_id=resource.resource_id,
            resource_type=resource.resource_type,
            waste_kind=waste_kind,
            title=title,
            description=description,
            risk_level=assessment.risk_level,
            execution_mode=assessment.execution_mode,
            projected_monthly_savings=monthly,
            projected_annual_savings=round(monthly * 12, 2),
            recommended_action=self._action(resource, waste_kind, signals),
        )

    def _title(self, resource: Resource, waste_kind: WasteKind) -> str:
        resource_type = resource.resource_type or "Resource"
        titles = {
            WasteKind.RIGHTSIZING: f"Downsize Underutilized {resource_type} Instance",
            WasteKind.DELETE_UNATTACHED: "Delete Unattached EBS Volume",
            WasteKind.VOLUME_MIGRATION: "Migrate EBS Volume to gp3",
            WasteKind.DELETE_ORPHANED: "Delete Orphaned EBS Snapshot",
            WasteKind.SNAPSHOT_CLEANUP: "Clean Up Aged EBS Snapshot",
            WasteKind.RELEASE_EIP: "Release Unassociated Elastic IP",
            WasteKind.DELETE_UNUSED: f"Delete Unused {resource_type}",
            WasteKind.NAT_CONSOLIDATION: "Consolidate NAT Gateway Traffic",
            WasteKind.LB_CONSOLIDATION: "Consolidate Load Balancer Resources",
            WasteKind.STORAGE_TIERING: f"Move {resource_type} Data to Cold Storage",
            WasteKind.LAMBDA_RIGHTSIZING: "Right-Size Lambda Memory Allocation",
        }
        title = titles.get(waste_kind, f"Optimize {resource_type} Configuration")
        name = resource.name or resource.resource_id
        return f"{title} ({name})" if name else title

    def _description(self, resource: Resource, waste_kind: WasteKind,
                     signals: Any, monthly: float) -> str:
        savings = format_savings(monthly)

        def get(name, default=0.0):
            value = getattr(signals, name, None)
            return default if value is None else value

        if waste_kind == WasteKind.RIGHTSIZING:
            cpu = get("cpu_utilization")
            memory = getattr(signals, "memory_utilization", None)
            usage = f"{cpu:.1f}% CPU"
            if memory is not None:
                usage += f" and {memory:.1f}% memory"
            return (f"Resource running at {usage} utilization. Recommend downsizing "
                    f"to reduce costs by approximately {savings}/month.")
        if waste_kind == WasteKind.DELETE_UNATTACHED:
            return f"EBS volume is unattached and incurring storage costs. Delete this volume to save {savings}/month."
        if waste_kind == WasteKind.VOLUME_MIGRATION:
            volume_type = get("volume_type", "legacy")
            return (f"EBS volume uses the {volume_type} class. Migrating to gp3 keeps performance "
                    f"at a lower per-GB price and saves {savings}/month.")
        if waste_kind == WasteKind.DELETE_ORPHANED:
            return (f"EBS snapshot is {get('age_days'):.0f} days old and its source volume no longer "
                    f"exists. Delete this orphaned snapshot to save {savings}/month.")
        if waste_kind == WasteKind.SNAPSHOT_CLEANUP:
            return (f"EBS snapshot is {get('age_days'):.0f} days old. Implement a lifecycle policy "
                    f"or delete to save {savings}/month.")
        if waste_kind == WasteKind.RELEASE_EIP:
            return (f"Elastic IP has been unassociated for {get('idle_days'):.0f} days and is billed "
                    f"while idle. Release to save {savings}/month.")
        if waste_kind == WasteKind.DELETE_UNUSED:
            return (f"{resource.resource_type} shows no meaningful use over the observation window. "
                    f"Delete to save {savings}/month.")
        if waste_kind == WasteKind.NAT_CONSOLIDATION:
            return (f"NAT Gateway processed little traffic. Consider routing through fewer gateways "
                    f"to save {savings}/month.")
        if waste_kind == WasteKind.LB_CONSOLIDATION:
            return (f"Load Balancer received no requests. Consider consolidating with other load "
                    f"balancers to save {savings}/month.")
        if waste_kind == WasteKind.STORAGE_TIERING:
            return (f"Bucket has no lifecycle policy. Transitioning cold objects to archival storage "
                    f"could save {savings}/month.")
        if waste_kind == WasteKind.LAMBDA_RIGHTSIZING:
            return (f"Function uses {get('memory_utilization'):.1f}% of its allocated memory. "
                    f"Reduce memory allocation to save {savings}/month.")
        return f"Resource analysis indicates an optimization opportunity. Estimated savings: {savings}/month."

    def _action(self, resource: Resource, waste_kind: WasteKind, signals: Any) -> Dict[str, Any]:
        action: Dict[str, Any] = {
            "action": waste_kind.value,
            "resourceId": resource.resource_id,
            "resourceType": resource.resource_type,
        }
        if resource.region:
            action["region"] = resource.region
        if waste_kind == WasteKind.VOLUME_MIGRATION:
            action["targetVolumeType"] = "gp3"
        elif waste_kind == WasteKind.STORAGE_TIERING:
            action["targetStorageClass"] = "GLACIER"
            action["transitionAfterDays"] = 30
        elif waste_kind == WasteKind.SNAPSHOT_CLEANUP:
            action["createArchive"] = True
        elif waste_kind == WasteKind.RIGHTSIZING:
            current = getattr(signals, "instance_type", None) or getattr(signals, "instance_class", None)
            target = downsize_instance_type(current)
            if target:
                action["currentInstanceType"] = current
                action["targetInstanceType"] = target
        elif waste_kind == WasteKind.LAMBDA_RIGHTSIZING:
            memory_size = getattr(signals, "memory_size_mb", None)
            if memory_size:
                action["currentMemorySizeMb"] = int(memory_size)
                action["targetMemorySizeMb"] = max(128, int(memory_size // 2 // 64 * 64))
        return action

