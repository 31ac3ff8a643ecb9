"""Operational metrics and health checks"""

import threading
import concurrent.futures
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from datetime import datetime
from collections import defaultdict, deque
from dataclasses import dataclass, field
import logging

from .base.recommendation import utcnow

logger = logging.getLogger(__name__)

# Metric names
TICKS = "costpilot_ticks"
TICKS_SKIPPED = "costpilot_ticks_skipped"
TICK_DURATION = "costpilot_tick_duration_seconds"
RECOMMENDATIONS_CREATED = "costpilot_recommendations_created"
BUILD_FAILURES = "costpilot_recommendation_build_failures"
EXECUTIONS = "costpilot_executions"
EXECUTION_RETRIES = "costpilot_execution_retries"
EXECUTION_DURATION = "costpilot_execution_duration_seconds"
EVENTS_DROPPED = "costpilot_events_dropped"
API_REQUEST_DURATION = "costpilot_api_request_duration_seconds"


@dataclass
class HealthStatus:
    """Health check status"""
    healthy: bool
    checks: Dict[str, bool]
    message: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "checks": dict(self.checks),
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }


MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def metric_key(name: str, tags: Optional[Dict[str, str]] = None) -> MetricKey:
    return name, tuple(sorted((str(k), str(v)) for k, v in (tags or {}).items()))


def prometheus_labels(labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in labels) + "}"


def summarize(values: List[float]) -> Dict[str, float]:
    """count/sum/min/max/mean/p50/p95 of a sample, empty for no samples"""
    if not values:
        return {}
    ordered = sorted(values)
    n = len(ordered)
    return {
        'count': n,
        'sum': sum(ordered),
        'min': ordered[0],
        'max': ordered[-1],
        'mean': sum(ordered) / n,
        'p50': ordered[n // 2],
        'p95': ordered[min(int(n * 0.95), n - 1)],
    }


class MetricsCollector:
    """In-process counters, gauges and histograms, keyed by name and tag set"""

    def __init__(self, histogram_size: int = 1000):
        self.histogram_size = histogram_size
        self._counters: Dict[MetricKey, float] = defaultdict(float)
        self._gauges: Dict[MetricKey, float] = {}
        self._histograms: Dict[MetricKey, Deque[float]] = {}
        self._lock = threading.Lock()

    def increment_counter(self, name: str, value: float = 1, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self._counters[metric_key(name, tags)] += value

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        with self._lock:
            self._gauges[metric_key(name, tags)] = value

    def record_histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        key = metric_key(name, tags)
        with self._lock:
            samples = self._histograms.get(key)
            if samples is None:
                samples = self._histograms[key] = deque(maxlen=self.histogram_size)
            samples.append(value)

    def get_counter(self, name: str, tags: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._counters.get(metric_key(name, tags), 0)

    def get_gauge(self, name: str, tags: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._gauges.get(metric_key(name, tags), 0)

    def get_histogram_stats(self, name: str, tags: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        with self._lock:
            values = list(self._histograms.get(metric_key(name, tags), ()))
        return summarize(values)

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format"""
        with self._lock:
            counters = sorted(self._counters.items())
            gauges = sorted(self._gauges.items())
            histograms = sorted((key, list(values)) for key, values in self._histograms.items())

        lines = [f"{name}_total{prometheus_labels(labels)} {value}" for (name, labels), value in counters]
        lines += [f"{name}{prometheus_labels(labels)} {value}" for (name, labels), value in gauges]
        for (name, labels), values in histograms:
            for stat, value in summarize(values).items():
                lines.append(f"{name}_{stat}{prometheus_labels(labels)} {value}")

        return '\n'.join(lines) + '\n'


class HealthChecker:
    """Readiness checks, each bounded by a timeout"""

    def __init__(self, check_timeout: float = 5.0):
        self.checks: Dict[str, Callable[[], bool]] = {}
        self._last_check_results: Dict[str, bool] = {}
        self._check_timeout = check_timeout

    def register_check(self, name: str, check_func: Callable[[], bool]):
        """Register a health check"""
        self.checks[name] = check_func

    def unregister_check(self, name: str):
        self.checks.pop(name, None)

    def check_health(self) -> HealthStatus:
        """Run all health checks"""
        results = {}

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=max(len(self.checks), 1))
        try:
            futures = {name: executor.submit(func) for name, func in self.checks.items()}
            for name, future in futures.items():
                try:
                    results[name] = bool(future.result(timeout=self._check_timeout))
                except Exception as e:
                    logger.error(f"Health check '{name}' failed: {e}")
                    results[name] = False
        finally:
            # a hung check must not block the caller
            executor.shutdown(wait=False)

        all_healthy = all(results.values())
        self._last_check_results = results

        return HealthStatus(
            healthy=all_healthy,
            checks=results,
            message="All checks passed" if all_healthy else "Some checks failed",
            details={
                'total_checks': len(self.checks),
                'passed': sum(1 for v in results.values() if v),
                'failed': sum(1 for v in results.values() if not v)
            }
        )

    def get_last_results(self) -> Dict[str, bool]:
        return self._last_check_results.copy()
