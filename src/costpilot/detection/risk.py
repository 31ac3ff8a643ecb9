"""Risk classification: which findings may run without a human"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union
import logging

from ..core.base import ExecutionMode, ResourceType, RiskLevel, WasteKind
from ..core.config import RiskRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    execution_mode: ExecutionMode
    source: str = "default"


# Reversible actions with no availability impact
AUTONOMOUS_KINDS = frozenset({
    WasteKind.DELETE_UNATTACHED,
    WasteKind.DELETE_ORPHANED,
    WasteKind.SNAPSHOT_CLEANUP,
    WasteKind.RELEASE_EIP,
    WasteKind.VOLUME_MIGRATION,
    WasteKind.STORAGE_TIERING,
})

# Risk of everything else, by resource type
TYPE_RISK: Dict[ResourceType, RiskLevel] = {
    ResourceType.COMPUTE_INSTANCE: RiskLevel.MEDIUM,
    ResourceType.SERVERLESS_FUNCTION: RiskLevel.MEDIUM,
    ResourceType.RELATIONAL_DATABASE: RiskLevel.HIGH,
    ResourceType.WAREHOUSE: RiskLevel.HIGH,
    ResourceType.NAT_GATEWAY: RiskLevel.HIGH,
    ResourceType.LOAD_BALANCER: RiskLevel.HIGH,
}

DEFAULT_ASSESSMENT = RiskAssessment(RiskLevel.MEDIUM, ExecutionMode.HITL)


class RiskClassifier:
    """Static risk table with optional policy overrides.

    Override keys are ``"<resource type>"`` or ``"<resource type>:<waste kind>"``;
    the more specific key wins, and any override beats the built-in table.
    """

    def __init__(self, policy: Optional[Mapping[str, Union[RiskRule, Mapping[str, str]]]] = None):
        self.policy: Dict[str, RiskRule] = {}
        for key, rule in (policy or {}).items():
            self.policy[key] = rule if isinstance(rule, RiskRule) else RiskRule(**rule)

    def classify(self, resource_type: str,
                 waste_kind: Optional[WasteKind] = None) -> RiskAssessment:
        type_name = resource_type.value if isinstance(resource_type, ResourceType) else str(resource_type)
        kind = self._parse_kind(waste_kind)

        keys = ([f"{type_name}:{kind.value}"] if kind is not None else []) + [type_name]
        for key in keys:
            rule = self.policy.get(key)
            if rule is not None:
                return RiskAssessment(
                    RiskLevel(rule.risk_level),
                    ExecutionMode(rule.execution_mode),
                    source=f"policy:{key}",
                )

        return self._builtin(ResourceType.parse(type_name), kind)

    @staticmethod
    def _parse_kind(waste_kind) -> Optional[WasteKind]:
        if waste_kind is None:
            return None
        try:
            return WasteKind(waste_kind)
        except ValueError:
            logger.warning(f"Unknown waste kind {waste_kind!r}, using the resource type rule")
            return None

    def _builtin(self, resource_type: Optional[ResourceType],
                 kind: Optional[WasteKind]) -> RiskAssessment:
        if kind in AUTONOMOUS_KINDS:
            return RiskAssessment(RiskLevel.LOW, ExecutionMode.AUTONOMOUS)
        risk = TYPE_RISK.get(resource_type)
        if risk is None:
            return DEFAULT_ASSESSMENT
        return RiskAssessment(risk, ExecutionMode.HITL)
