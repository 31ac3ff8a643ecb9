"""Telemetry from a fixed inventory (a list or a YAML/JSON file)"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging

import yaml

from ..core.base import Resource, TelemetryProvider
from ..core.exceptions import DataCollectionError

logger = logging.getLogger(__name__)


class StaticTelemetryProvider(TelemetryProvider):
    """Serves the same inventory on every tick until replaced"""

    def __init__(self, resources: Optional[Iterable[Union[Resource, Mapping[str, Any]]]] = None):
        self._resources: List[Resource] = []
        self.replace(resources or [])

    @classmethod
    def from_file(cls, path: Path) -> "StaticTelemetryProvider":
        """Load ``resources:`` (or a top-level list) from YAML or JSON"""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise DataCollectionError(f"Cannot read inventory {path}: {e}")

        if isinstance(data, Mapping):
            data = data.get("resources", [])
        if not isinstance(data, list):
            raise DataCollectionError(f"Inventory {path} must hold a list of resources")

        logger.info(f"Loaded {len(data)} resources from {path}")
        return cls(data)

    def replace(self, resources: Iterable[Union[Resource, Mapping[str, Any]]]) -> None:
        loaded = []
        for item in resources:
            if isinstance(item, Resource):
                loaded.append(item)
            elif isinstance(item, Mapping):
                loaded.append(Resource.from_dict(item))
            else:
                logger.warning(f"Skipping inventory entry of type {type(item).__name__}")
        self._resources = loaded

    def list_resources(self, type_filter: Optional[Iterable[str]] = None) -> List[Resource]:
        if not type_filter:
            return list(self._resources)
        wanted = set(type_filter)
        return [r for r in self._resources if r.resource_type in wanted]

    def get_provider_info(self) -> Dict[str, Any]:
        return {"provider": "static", "resources": len(self._resources)}
