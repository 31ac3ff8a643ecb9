from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional
from dataclasses import dataclass, field

from .resource import Resource
from .recommendation import Recommendation


@dataclass
class ActionOutcome:
    """What the action adapter reports after applying a recommendation"""
    success: bool
    message: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryProvider(ABC):
    """Supplies the current resource inventory with metrics and config snapshots"""

    @abstractmethod
    def list_resources(self, type_filter: Optional[Iterable[str]] = None) -> List[Resource]:
        """Return current resources, optionally restricted to some resource types"""
        pass

    def get_provider_info(self) -> Dict[str, Any]:
        """Get provider information"""
        return {"provider": self.__class__.__name__}


class ActionAdapter(ABC):
    """Applies an optimization action against the outside world.

    Implementations raise ``TransientExecutionError``/``FatalExecutionError``
    (or library errors the retry classifier understands) on failure.
    """

    @abstractmethod
    def apply(self, recommendation: Recommendation) -> ActionOutcome:
        """Apply the recommended action"""
        pass
