from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from enum import Enum


class ResourceType(str, Enum):
    """Resource types with a dedicated waste rule.

    Values are the wire names telemetry providers report.
    """
    COMPUTE_INSTANCE = "EC2"
    RELATIONAL_DATABASE = "RDS"
    WAREHOUSE = "Redshift"
    BLOCK_VOLUME = "EBS"
    VOLUME_SNAPSHOT = "EBS_Snapshot"
    STATIC_IP = "ElasticIP"
    NAT_GATEWAY = "NATGateway"
    LOAD_BALANCER = "LoadBalancer"
    OBJECT_BUCKET = "S3"
    SERVERLESS_FUNCTION = "Lambda"

    @classmethod
    def parse(cls, value: Any) -> Optional["ResourceType"]:
        """Return the matching type, or None for unrecognized values"""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class Resource:
    """A cloud resource as reported by the telemetry provider.

    ``utilization_metrics`` and ``current_config`` are type-specific and may be
    partial, absent or malformed. The core only reads known top-level keys.
    """

    resource_id: str
    resource_type: str
    utilization_metrics: Optional[Mapping[str, Any]] = None
    current_config: Optional[Mapping[str, Any]] = None
    monthly_cost: float = 0.0
    name: Optional[str] = None
    region: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def known_type(self) -> Optional[ResourceType]:
        return ResourceType.parse(self.resource_type)

    @property
    def key(self) -> tuple:
        """Dedup key"""
        return (self.resource_id, self.resource_type)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Resource":
        """Build a resource from a telemetry record (camelCase or snake_case keys)"""
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        cost = pick("monthly_cost", "monthlyCost", default=0.0)
        try:
            cost = float(cost)
        except (TypeError, ValueError):
            cost = 0.0

        metrics = pick("utilization_metrics", "utilizationMetrics")
        config = pick("current_config", "currentConfig")
        tags = pick("tags", default={})

        return cls(
            resource_id=str(pick("resource_id", "resourceId", "id", default="")),
            resource_type=str(pick("resource_type", "resourceType", "type", default="")),
            utilization_metrics=metrics if isinstance(metrics, Mapping) else None,
            current_config=config if isinstance(config, Mapping) else None,
            monthly_cost=cost,
            name=pick("name"),
            region=pick("region"),
            tags=dict(tags) if isinstance(tags, Mapping) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert resource to dictionary (identity and cost only)"""
        return {
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "name": self.name,
            "region": self.region,
            "monthly_cost": self.monthly_cost,
            "tags": self.tags,
        }
