"""The control loop: scan, detect, deduplicate, persist, dispatch"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from ..base import (
    ExecutionMode, Recommendation, RecommendationStatus, Resource, TelemetryProvider, utcnow
)
from ..config import ExecutionConfig, SchedulerConfig
from ..exceptions import (
    ConflictError, DataCollectionError, DuplicateRecommendationError, RecommendationBuildError
)
from ..monitoring import (
    BUILD_FAILURES, RECOMMENDATIONS_CREATED, TICK_DURATION, TICKS, TICKS_SKIPPED, MetricsCollector
)
from ...detection.detector import WasteDetector
from ...detection.factory import RecommendationFactory
from ...detection.risk import RiskClassifier
from ...events.publisher import EventPublisher
from ...remediation.executor import ExecutionEngine
from ...storage.base import RecommendationStore

logger = logging.getLogger(__name__)

# per-resource outcomes of a tick
CLEAN = "clean"
DUPLICATE = "duplicate"
HELD = "held"
BUILD_FAILED = "build_failed"
CREATED = "created"
ERROR = "error"


@dataclass
class TickReport:
    """What one tick did"""
    started_at: datetime = field(default_factory=utcnow)
    duration_seconds: float = 0.0
    scanned: int = 0
    wasteful: int = 0
    created: int = 0
    duplicates: int = 0
    held: int = 0
    build_failures: int = 0
    errors: int = 0
    dispatched: int = 0
    skipped: bool = False
    created_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data


class RecommendationScheduler:
    """Fixed-period loop on a background thread.

    Detection runs on a bounded pool; autonomous executions are dispatched to
    a second bounded pool so a slow action never holds up the tick. A tick
    that starts while the previous one is still running is skipped.
    """

    def __init__(self, provider: TelemetryProvider, store: RecommendationStore,
                 engine: ExecutionEngine,
                 detector: Optional[WasteDetector] = None,
                 classifier: Optional[RiskClassifier] = None,
                 factory: Optional[RecommendationFactory] = None,
                 publisher: Optional[EventPublisher] = None,
                 config: Optional[SchedulerConfig] = None,
                 execution_config: Optional[ExecutionConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.provider = provider
        self.store = store
        self.engine = engine
        self.detector = detector or WasteDetector()
        self.classifier = classifier or RiskClassifier()
        self.factory = factory or RecommendationFactory()
        self.publisher = publisher
        self.config = config or SchedulerConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self.metrics = metrics

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._detect_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="costpilot-detect"
        )
        self._execution_pool = ThreadPoolExecutor(
            max_workers=self.config.execution_workers, thread_name_prefix="costpilot-exec"
        )
        self._in_flight: Dict[str, Future] = {}
        self._in_flight_lock = threading.RLock()
        self._stopping = False
        self._closed = False
        self.last_report: Optional[TickReport] = None
        self.last_resources: List[Resource] = []

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Reconcile stale executions, then tick every ``tick_interval_seconds``"""
        if self.running:
            return
        if self._closed:
            raise RuntimeError("Scheduler was stopped and cannot be restarted")
        self.engine.reconcile_stale_executions(self.execution_config.claim_timeout_seconds)
        self._stop_event.clear()
        self._stopping = False
        self._thread = threading.Thread(target=self._loop, name="costpilot-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started, ticking every {self.config.tick_interval_seconds:g}s")

    def stop(self, timeout: Optional[float] = None) -> List[str]:
        """Stop ticking and let in-flight executions finish.

        Executions still running after ``timeout`` are marked failed; queued
        ones that never started are cancelled and stay claimable. Returns the
        ids that were marked failed.
        """
        timeout = self.config.shutdown_timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + timeout
        self._stop_event.set()
        with self._in_flight_lock:
            self._stopping = True

        if self._thread is not None:
            self._thread.join(timeout=timeout)

        # one deadline covers the loop thread and the executions
        with self._in_flight_lock:
            in_flight = dict(self._in_flight)
        for future in in_flight.values():
            future.cancel()
        _, not_done = wait(in_flight.values(), timeout=max(deadline - time.monotonic(), 0))

        failed = []
        for rec_id, future in in_flight.items():
            if future in not_done:
                reason = f"ExecutionTimeoutError: still executing after shutdown timeout of {timeout:g}s"
                if self.engine.mark_failed(rec_id, reason):
                    failed.append(rec_id)

        self._closed = True
        self._detect_pool.shutdown(wait=False, cancel_futures=True)
        self._execution_pool.shutdown(wait=False, cancel_futures=True)
        self.engine.shutdown()
        logger.info(f"Scheduler stopped ({len(failed)} execution(s) marked failed)")
        return failed

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until dispatched executions finish; False on timeout"""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._in_flight_lock:
                pending = list(self._in_flight.values())
            if not pending:
                return True
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0)
            _, not_done = wait(pending, timeout=remaining)
            if not_done and deadline is not None and time.monotonic() >= deadline:
                return False

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_tick()
            except Exception as e:
                logger.exception(f"Tick failed: {e}")
            if self._stop_event.wait(self.config.tick_interval_seconds):
                break

    def run_tick(self) -> TickReport:
        """One scan cycle. Safe to call directly."""
        report = TickReport()
        if not self._tick_lock.acquire(blocking=False):
            report.skipped = True
            logger.warning("Previous tick still running, skipping this one")
            if self.metrics:
                self.metrics.increment_counter(TICKS_SKIPPED)
            return report

        started = time.monotonic()
        try:
            try:
                resources = self._list_resources()
            except DataCollectionError as e:
                logger.error(f"Telemetry unavailable: {e}")
                report.errors += 1
                return report

            self.last_resources = resources
            report.scanned = len(resources)
            futures = {self._detect_pool.submit(self._process_resource, r): r for r in resources}
            for future in as_completed(futures):
                outcome, recommendation = future.result()
                self._count(report, outcome, recommendation)

            report.dispatched += self._redispatch_stranded(exclude=set(report.created_ids))
            return report
        finally:
            report.duration_seconds = round(time.monotonic() - started, 3)
            self.last_report = report
            self._tick_lock.release()
            if self.metrics and not report.skipped:
                self.metrics.increment_counter(TICKS)
                self.metrics.record_histogram(TICK_DURATION, report.duration_seconds)
            logger.info(
                f"Tick: scanned {report.scanned}, wasteful {report.wasteful}, created {report.created}, "
                f"duplicates {report.duplicates}, dispatched {report.dispatched}, errors {report.errors}"
            )

    def _list_resources(self) -> List[Resource]:
        type_filter = self.config.resource_types or None
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="costpilot-telemetry")
        try:
            future = pool.submit(self.provider.list_resources, type_filter)
            try:
                resources = future.result(timeout=self.config.telemetry_timeout_seconds)
            except FutureTimeoutError:
                raise DataCollectionError(
                    f"Telemetry fetch exceeded {self.config.telemetry_timeout_seconds:g}s"
                )
            except DataCollectionError:
                raise
            except Exception as e:
                raise DataCollectionError(f"Telemetry fetch failed: {type(e).__name__}: {e}")
        finally:
            pool.shutdown(wait=False)
        return list(resources or [])

    def _count(self, report: TickReport, outcome: str,
               recommendation: Optional[Recommendation]) -> None:
        if outcome != CLEAN and outcome != ERROR:
            report.wasteful += 1
        if outcome == CREATED:
            report.created += 1
            report.created_ids.append(recommendation.id)
            if recommendation.execution_mode == ExecutionMode.AUTONOMOUS:
                if self._dispatch(recommendation.id, RecommendationStatus.PENDING):
                    report.dispatched += 1
        elif outcome == DUPLICATE:
            report.duplicates += 1
        elif outcome == HELD:
            report.held += 1
        elif outcome == BUILD_FAILED:
            report.build_failures += 1
        elif outcome == ERROR:
            report.errors += 1

    def _process_resource(self, resource: Resource):
        """detect -> dedup -> build -> insert -> publish; never raises"""
        try:
            if not self.detector.detect(resource):
                return CLEAN, None

            if self.store.get_active_recommendation(resource.resource_id, resource.resource_type):
                return DUPLICATE, None
            if not self.config.requeue_failed and self._has_failed(resource):
                return HELD, None

            kind = self.detector.classify(resource)
            if kind is None:
                return CLEAN, None
            assessment = self.classifier.classify(resource.resource_type, kind)

            try:
                recommendation = self.factory.build(resource, kind, assessment)
            except RecommendationBuildError as e:
                logger.warning(f"Skipping recommendation: {e}",
                               extra={'resource_id': resource.resource_id,
                                      'resource_type': resource.resource_type})
                if self.metrics:
                    self.metrics.increment_counter(BUILD_FAILURES)
                return BUILD_FAILED, None

            try:
                stored = self.store.insert_recommendation(recommendation)
            except DuplicateRecommendationError:
                return DUPLICATE, None

            logger.info(
                f"New {stored.execution_mode.value} recommendation {stored.id}: {stored.title} "
                f"(${stored.projected_monthly_savings:,.2f}/month)",
                extra={'recommendation_id': stored.id, 'resource_id': stored.resource_id,
                       'resource_type': stored.resource_type}
            )
            if self.metrics:
                self.metrics.increment_counter(RECOMMENDATIONS_CREATED,
                                               tags={'execution_mode': stored.execution_mode.value})
            if self.publisher:
                self.publisher.publish_new_recommendation(stored)
            return CREATED, stored
        except Exception as e:
            logger.error(f"Processing {getattr(resource, 'resource_id', '?')} failed: {type(e).__name__}: {e}")
            return ERROR, None

    def _has_failed(self, resource: Resource) -> bool:
        return any(
            rec.resource_id == resource.resource_id
            for rec in self.store.list_recommendations(status=RecommendationStatus.FAILED,
                                                       resource_type=resource.resource_type)
        )

    def _redispatch_stranded(self, exclude: set) -> int:
        """Pick up approved recommendations whose execution never started, and
        autonomous ones left pending (e.g. created before a restart)"""
        dispatched = 0
        for rec in self.store.list_recommendations(status=RecommendationStatus.APPROVED):
            if rec.id not in exclude and self._dispatch(rec.id, RecommendationStatus.APPROVED):
                dispatched += 1
        for rec in self.store.list_recommendations(status=RecommendationStatus.PENDING,
                                                   execution_mode=ExecutionMode.AUTONOMOUS):
            if rec.id not in exclude and self._dispatch(rec.id, RecommendationStatus.PENDING):
                dispatched += 1
        return dispatched

    def _dispatch(self, recommendation_id: str, expected: RecommendationStatus) -> bool:
        with self._in_flight_lock:
            if self._stopping or recommendation_id in self._in_flight:
                return False
            try:
                future = self._execution_pool.submit(self._claim_and_execute, recommendation_id, expected)
            except RuntimeError:
                # pool already shut down
                return False
            self._in_flight[recommendation_id] = future
            future.add_done_callback(lambda _: self._forget(recommendation_id))
            return True

    def _forget(self, recommendation_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.pop(recommendation_id, None)

    def _claim_and_execute(self, recommendation_id: str, expected: RecommendationStatus) -> None:
        try:
            self.engine.claim_and_execute(recommendation_id, expected)
        except ConflictError as e:
            logger.debug(f"Skipped {recommendation_id}: {e}")
        except Exception as e:
            logger.exception(f"Execution of {recommendation_id} crashed: {e}")
