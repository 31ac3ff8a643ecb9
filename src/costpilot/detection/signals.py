"""Typed per-resource-type views over loosely shaped telemetry.

Each resource type gets its own signal class holding exactly the fields its
waste rule needs. Extraction only does top-level lookups on the metrics and
config mappings; payloads are never walked or serialized, so nested or cyclic
values are harmless. A field that is missing or has the wrong type takes a
default on the non-wasteful side.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from ..core.base import Resource, ResourceType, WasteKind
from ..core.config import DetectionConfig

_EMPTY: Mapping[str, Any] = {}
_MISSING = object()


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else _EMPTY


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    try:
        return mapping.get(key, _MISSING)
    except Exception:
        return _MISSING


def _number(mapping: Mapping[str, Any], *keys: str) -> Optional[float]:
    """First finite number found under ``keys``. Booleans do not count."""
    for key in keys:
        value = _lookup(mapping, key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value):
            return float(value)
    return None


def _flag(mapping: Mapping[str, Any], *keys: str) -> Optional[bool]:
    for key in keys:
        value = _lookup(mapping, key)
        if isinstance(value, bool):
            return value
    return None


def _text(mapping: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = _lookup(mapping, key)
        if isinstance(value, str):
            return value
    return None


def _present_and_empty(mapping: Mapping[str, Any], *keys: str) -> bool:
    """True when one of ``keys`` exists and holds a falsy value (None, "", [])"""
    for key in keys:
        value = _lookup(mapping, key)
        if value is _MISSING:
            continue
        try:
            return not value
        except Exception:
            return False
    return False


CPU_KEYS = ("avgCpuUtilization", "cpuUtilization", "avg_cpu_utilization", "cpu_utilization")
MEMORY_KEYS = ("avgMemoryUtilization", "memoryUtilization", "avg_memory_utilization", "memory_utilization")


@dataclass(frozen=True)
class ComputeSignals:
    """Compute instances, and any resource type without a dedicated rule"""
    cpu_utilization: float = 100.0
    memory_utilization: float = 100.0
    instance_type: Optional[str] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return (self.cpu_utilization < config.cpu_threshold
                and self.memory_utilization < config.memory_threshold)

    def waste_kind(self) -> WasteKind:
        return WasteKind.RIGHTSIZING

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "ComputeSignals":
        cpu = _number(metrics, *CPU_KEYS)
        memory = _number(metrics, *MEMORY_KEYS)
        return cls(
            cpu_utilization=100.0 if cpu is None else cpu,
            memory_utilization=100.0 if memory is None else memory,
            instance_type=_text(config, "instanceType", "instance_type", "nodeType", "node_type"),
        )


@dataclass(frozen=True)
class DatabaseSignals:
    """Managed relational databases and warehouses: CPU only"""
    cpu_utilization: float = 100.0
    instance_class: Optional[str] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return self.cpu_utilization < config.cpu_threshold

    def waste_kind(self) -> WasteKind:
        return WasteKind.RIGHTSIZING

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "DatabaseSignals":
        cpu = _number(metrics, *CPU_KEYS)
        return cls(
            cpu_utilization=100.0 if cpu is None else cpu,
            instance_class=_text(config, "instanceClass", "instance_class", "nodeType", "node_type"),
        )


@dataclass(frozen=True)
class VolumeSignals:
    unattached: bool = False
    volume_type: Optional[str] = None
    iops_utilization: Optional[float] = None

    def is_legacy(self, config: DetectionConfig) -> bool:
        if self.volume_type is None:
            return False
        return self.volume_type.lower() in {c.lower() for c in config.legacy_volume_classes}

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return self.unattached or self.is_legacy(config)

    def waste_kind(self) -> WasteKind:
        return WasteKind.DELETE_UNATTACHED if self.unattached else WasteKind.VOLUME_MIGRATION

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "VolumeSignals":
        unattached = (_text(config, "state") == "available"
                      or _present_and_empty(config, "attachedTo", "attached_to"))
        return cls(
            unattached=unattached,
            volume_type=_text(config, "volumeType", "volume_type"),
            iops_utilization=_number(metrics, "iopsUtilization", "iops_utilization"),
        )


@dataclass(frozen=True)
class SnapshotSignals:
    source_volume_exists: bool = True
    age_days: float = 0.0

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return not self.source_volume_exists or self.age_days > config.snapshot_max_age_days

    def waste_kind(self) -> WasteKind:
        return WasteKind.SNAPSHOT_CLEANUP if self.source_volume_exists else WasteKind.DELETE_ORPHANED

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "SnapshotSignals":
        exists = _flag(metrics, "sourceVolumeExists", "source_volume_exists")
        age = _number(metrics, "ageInDays", "age_in_days")
        return cls(
            source_volume_exists=True if exists is None else exists,
            age_days=0.0 if age is None else age,
        )


@dataclass(frozen=True)
class StaticIpSignals:
    associated: bool = True
    idle_days: Optional[float] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return not self.associated

    def waste_kind(self) -> WasteKind:
        return WasteKind.RELEASE_EIP

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "StaticIpSignals":
        flagged_free = _flag(metrics, "isAssociated", "is_associated") is False
        no_association = _present_and_empty(config, "associationId", "association_id")
        return cls(
            associated=not (flagged_free or no_association),
            idle_days=_number(metrics, "idleDays", "idle_days"),
        )


@dataclass(frozen=True)
class NatGatewaySignals:
    bytes_processed: Optional[float] = None
    idle_time_percent: Optional[float] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return self.bytes_processed is not None and self.bytes_processed < config.nat_min_bytes_processed

    def waste_kind(self) -> WasteKind:
        if self.idle_time_percent is not None and self.idle_time_percent > 90:
            return WasteKind.DELETE_UNUSED
        return WasteKind.NAT_CONSOLIDATION

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "NatGatewaySignals":
        return cls(
            bytes_processed=_number(metrics, "bytesProcessed", "bytes_processed"),
            idle_time_percent=_number(metrics, "idleTimePercent", "idle_time_percent"),
        )


@dataclass(frozen=True)
class LoadBalancerSignals:
    request_count: Optional[float] = None
    healthy_host_count: Optional[float] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return self.request_count is not None and self.request_count == 0

    def waste_kind(self) -> WasteKind:
        if self.healthy_host_count is not None and self.healthy_host_count == 0:
            return WasteKind.DELETE_UNUSED
        return WasteKind.LB_CONSOLIDATION

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "LoadBalancerSignals":
        return cls(
            request_count=_number(metrics, "requestCount", "request_count"),
            healthy_host_count=_number(metrics, "healthyHostCount", "healthy_host_count"),
        )


@dataclass(frozen=True)
class BucketSignals:
    has_lifecycle_policy: bool = True
    avg_object_age_days: Optional[float] = None
    access_frequency: Optional[str] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        return not self.has_lifecycle_policy

    def waste_kind(self) -> WasteKind:
        return WasteKind.STORAGE_TIERING

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "BucketSignals":
        policy = _flag(config, "hasLifecyclePolicy", "has_lifecycle_policy")
        if policy is None:
            policy = _flag(metrics, "hasLifecyclePolicy", "has_lifecycle_policy")
        return cls(
            has_lifecycle_policy=True if policy is None else policy,
            avg_object_age_days=_number(metrics, "avgObjectAgeDays", "avg_object_age_days"),
            access_frequency=_text(metrics, "accessFrequency", "access_frequency"),
        )


@dataclass(frozen=True)
class FunctionSignals:
    memory_utilization: float = 100.0
    invocations: Optional[float] = None
    memory_size_mb: Optional[float] = None
    max_memory_used_mb: Optional[float] = None

    def is_wasteful(self, config: DetectionConfig) -> bool:
        idle = self.invocations is not None and self.invocations == 0
        return self.memory_utilization < config.function_memory_threshold or idle

    def waste_kind(self) -> WasteKind:
        if self.invocations is not None and self.invocations < 100:
            return WasteKind.DELETE_UNUSED
        return WasteKind.LAMBDA_RIGHTSIZING

    @classmethod
    def extract(cls, metrics: Mapping[str, Any], config: Mapping[str, Any]) -> "FunctionSignals":
        memory = _number(metrics, "memoryUtilization", "memory_utilization")
        return cls(
            memory_utilization=100.0 if memory is None else memory,
            invocations=_number(metrics, "invocations"),
            memory_size_mb=_number(config, "memorySize", "memory_size"),
            max_memory_used_mb=_number(metrics, "maxMemoryUsedMB", "max_memory_used_mb"),
        )


SIGNAL_TYPES = {
    ResourceType.COMPUTE_INSTANCE: ComputeSignals,
    ResourceType.RELATIONAL_DATABASE: DatabaseSignals,
    ResourceType.WAREHOUSE: DatabaseSignals,
    ResourceType.BLOCK_VOLUME: VolumeSignals,
    ResourceType.VOLUME_SNAPSHOT: SnapshotSignals,
    ResourceType.STATIC_IP: StaticIpSignals,
    ResourceType.NAT_GATEWAY: NatGatewaySignals,
    ResourceType.LOAD_BALANCER: LoadBalancerSignals,
    ResourceType.OBJECT_BUCKET: BucketSignals,
    ResourceType.SERVERLESS_FUNCTION: FunctionSignals,
}


def unpack_resource(resource: Any) -> Optional[Tuple[Any, Mapping[str, Any], Mapping[str, Any]]]:
    """(resource_type, metrics, config) from a ``Resource`` or a raw telemetry mapping"""
    if isinstance(resource, Resource):
        return (resource.resource_type,
                _as_mapping(resource.utilization_metrics),
                _as_mapping(resource.current_config))
    if isinstance(resource, Mapping):
        resource_type = _MISSING
        for key in ("resourceType", "resource_type", "type"):
            resource_type = _lookup(resource, key)
            if resource_type is not _MISSING:
                break
        metrics = _lookup(resource, "utilizationMetrics")
        if metrics is _MISSING:
            metrics = _lookup(resource, "utilization_metrics")
        config = _lookup(resource, "currentConfig")
        if config is _MISSING:
            config = _lookup(resource, "current_config")
        return (None if resource_type is _MISSING else resource_type,
                _as_mapping(metrics),
                _as_mapping(config))
    return None


def extract_signals(resource: Any):
    """Build the typed signals for a resource, or None when there is nothing to read.

    Unrecognized resource types are read with the compute-instance rule.
    """
    unpacked = unpack_resource(resource)
    if unpacked is None:
        return None
    resource_type, metrics, config = unpacked
    signal_type = SIGNAL_TYPES.get(ResourceType.parse(resource_type), ComputeSignals)
    return signal_type.extract(metrics, config)
