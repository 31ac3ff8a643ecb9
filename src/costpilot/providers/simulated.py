"""Action adapter that only records what it was asked to do"""

import threading
import time
from typing import Dict, List, Optional
import logging

from ..core.base import ActionAdapter, ActionOutcome, Recommendation

logger = logging.getLogger(__name__)


class SimulatedActionAdapter(ActionAdapter):
    """Pretends to apply actions.

    ``failures`` maps a resource id to errors raised on successive calls, one
    per call, before the adapter starts succeeding for that resource.
    """

    def __init__(self, latency: float = 0.0,
                 failures: Optional[Dict[str, List[Exception]]] = None):
        self.latency = latency
        self.failures = {key: list(errors) for key, errors in (failures or {}).items()}
        self.applied: List[Recommendation] = []
        self.calls = 0
        self._lock = threading.Lock()

    def apply(self, recommendation: Recommendation) -> ActionOutcome:
        with self._lock:
            self.calls += 1
            pending_errors = self.failures.get(recommendation.resource_id)
            error = pending_errors.pop(0) if pending_errors else None

        if self.latency:
            time.sleep(self.latency)
        if error is not None:
            raise error

        with self._lock:
            self.applied.append(recommendation)
        logger.info(f"[simulated] {recommendation.waste_kind.value} on {recommendation.resource_id}")
        return ActionOutcome(True, f"Simulated {recommendation.waste_kind.value}",
                             {"simulated": True})
