"""Waste detection"""

from typing import Any, Optional
import logging

from ..core.base import WasteKind
from ..core.config import DetectionConfig
from .signals import extract_signals

logger = logging.getLogger(__name__)


class WasteDetector:
    """Per-resource-type waste predicates.

    ``detect`` is total: it accepts ``Resource`` objects, raw telemetry
    mappings, None or garbage, and always answers with a bool.
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def detect(self, resource: Any) -> bool:
        """True when the resource matches its type's waste rule"""
        try:
            signals = extract_signals(resource)
            if signals is None:
                return False
            return bool(signals.is_wasteful(self.config))
        except Exception as e:
            logger.debug(f"Detection fell back to not-wasteful: {type(e).__name__}: {e}")
            return False

    def classify(self, resource: Any) -> Optional[WasteKind]:
        """Waste kind for a wasteful resource, None otherwise"""
        try:
            signals = extract_signals(resource)
            if signals is None or not signals.is_wasteful(self.config):
                return None
            return signals.waste_kind()
        except Exception as e:
            logger.debug(f"Classification fell back to none: {type(e).__name__}: {e}")
            return None
