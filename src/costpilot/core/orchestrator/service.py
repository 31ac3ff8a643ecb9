"""Application facade: wires the engine together and exposes query, command
and real-time surfaces to the API and CLI"""

import time
from typing import Callable, List, Optional, Union
import logging

from ..base import (
    ActionAdapter, ExecutionAttempt, ExecutionMode, Recommendation, RecommendationStatus,
    Resource, TelemetryProvider
)
from ..config import Settings, validate_settings
from ..exceptions import ConfigurationError, ValidationError
from ..monitoring import HealthChecker, HealthStatus, MetricsCollector
from ..retry import RetryPolicy
from ..security import Authorizer, Role, User
from .scheduler import RecommendationScheduler, TickReport
from ...detection.detector import WasteDetector
from ...detection.factory import RecommendationFactory
from ...detection.risk import RiskClassifier
from ...events.publisher import EventPublisher, Subscription
from ...providers.simulated import SimulatedActionAdapter
from ...remediation.approval import ApprovalWorkflow
from ...remediation.executor import ExecutionEngine
from ...reporting.summary import MetricsAggregator, MetricsSummary
from ...storage.base import RecommendationStore
from ...storage.memory import create_store

logger = logging.getLogger(__name__)


def _parse_enum(enum_type, value, field_name: str):
    if value is None or isinstance(value, enum_type):
        return value
    try:
        return enum_type(str(value).lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field_name} '{value}', expected one of: {allowed}")


class AutopilotService:
    """Everything a running costpilot process needs, built from ``Settings``.

    Settings are validated here, before anything starts; an invalid
    configuration raises ``ConfigurationError``.
    """

    def __init__(self, settings: Settings, provider: TelemetryProvider,
                 adapter: Optional[ActionAdapter] = None,
                 store: Optional[RecommendationStore] = None,
                 authorizer: Optional[Authorizer] = None,
                 sleep: Callable[[float], None] = time.sleep):
        result = validate_settings(settings)
        for warning in result.warnings:
            logger.warning(f"Configuration: {warning}")
        if not result.ok:
            raise ConfigurationError("Invalid configuration: " + "; ".join(result.errors))

        self.settings = settings
        self.provider = provider
        self.store = store or create_store(settings.storage)
        self.metrics = MetricsCollector()
        self.publisher = EventPublisher(queue_size=settings.api.subscriber_queue_size,
                                        metrics=self.metrics)

        if settings.execution.dry_run:
            logger.info("Dry run: actions are simulated")
            adapter = SimulatedActionAdapter()
        elif adapter is None:
            logger.warning("No action adapter configured, actions are simulated")
            adapter = SimulatedActionAdapter()
        self.adapter = adapter

        self.engine = ExecutionEngine(
            self.store, adapter,
            publisher=self.publisher,
            policy=RetryPolicy.from_config(settings.execution),
            action_timeout=settings.execution.action_timeout_seconds,
            metrics=self.metrics,
            sleep=sleep,
        )
        self.workflow = ApprovalWorkflow(
            self.store, self.engine,
            authorizer=authorizer,
            minimum_role=Role.parse(settings.security.approver_min_role),
        )
        self.scheduler = RecommendationScheduler(
            provider, self.store, self.engine,
            detector=WasteDetector(settings.detection),
            classifier=RiskClassifier(settings.risk_policy),
            factory=RecommendationFactory(),
            publisher=self.publisher,
            config=settings.scheduler,
            execution_config=settings.execution,
            metrics=self.metrics,
        )
        self.aggregator = MetricsAggregator(self.store)

        self.health = HealthChecker()
        self.health.register_check("store", self.store.ping)
        self.health.register_check("scheduler", lambda: self.scheduler.running
                                   or not settings.scheduler.enabled)

    # lifecycle

    def start(self) -> None:
        if self.settings.scheduler.enabled:
            self.scheduler.start()
        else:
            logger.info("Scheduler disabled by configuration")

    def stop(self, timeout: Optional[float] = None) -> List[str]:
        return self.scheduler.stop(timeout)

    def run_tick(self) -> TickReport:
        return self.scheduler.run_tick()

    def __enter__(self) -> "AutopilotService":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # query surface

    def list_recommendations(self, status: Union[str, RecommendationStatus, None] = None,
                             resource_type: Optional[str] = None,
                             execution_mode: Union[str, ExecutionMode, None] = None) -> List[Recommendation]:
        return self.store.list_recommendations(
            status=_parse_enum(RecommendationStatus, status, "status"),
            resource_type=resource_type,
            execution_mode=_parse_enum(ExecutionMode, execution_mode, "execution mode"),
        )

    def get_recommendation(self, recommendation_id: str) -> Recommendation:
        return self.store.get_recommendation(recommendation_id)

    def list_attempts(self, recommendation_id: str) -> List[ExecutionAttempt]:
        self.store.get_recommendation(recommendation_id)
        return self.store.list_attempts(recommendation_id)

    def get_summary(self, resources: Optional[List[Resource]] = None) -> MetricsSummary:
        """KPIs over the store; spend comes from the last scanned inventory unless given"""
        if resources is None:
            resources = self.scheduler.last_resources
        return self.aggregator.summary(resources)

    def check_health(self) -> HealthStatus:
        return self.health.check_health()

    # command surface

    def approve(self, recommendation_id: str, acting_user: Optional[User]) -> Recommendation:
        return self.workflow.approve(recommendation_id, acting_user)

    def reject(self, recommendation_id: str, acting_user: Optional[User]) -> Recommendation:
        return self.workflow.reject(recommendation_id, acting_user)

    # real-time channel

    def subscribe(self) -> Subscription:
        return self.publisher.subscribe()
