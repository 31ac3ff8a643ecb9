"""Pytest configuration and fixtures"""

import pytest
from unittest.mock import MagicMock

from costpilot.core.base import Resource
from costpilot.core.config import ExecutionConfig, SchedulerConfig, Settings
from costpilot.core.monitoring import MetricsCollector
from costpilot.core.retry import RetryPolicy
from costpilot.core.security import Role, TokenManager, User
from costpilot.detection.detector import WasteDetector
from costpilot.detection.factory import RecommendationFactory
from costpilot.detection.risk import RiskClassifier
from costpilot.events.publisher import EventPublisher
from costpilot.providers.simulated import SimulatedActionAdapter
from costpilot.providers.static import StaticTelemetryProvider
from costpilot.remediation.approval import ApprovalWorkflow
from costpilot.remediation.executor import ExecutionEngine
from costpilot.storage.memory import InMemoryRecommendationStore

JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


def make_resource(resource_type="EC2", resource_id=None, metrics=None, config=None,
                  monthly_cost=100.0, **kwargs):
    return Resource(
        resource_id=resource_id or f"{resource_type.lower()}-1",
        resource_type=resource_type,
        utilization_metrics=metrics,
        current_config=config,
        monthly_cost=monthly_cost,
        **kwargs
    )


@pytest.fixture
def idle_instance():
    """HITL: a compute instance at 12% CPU / 8% memory"""
    return make_resource(
        "EC2", "i-idle", metrics={"avgCpuUtilization": 12, "avgMemoryUtilization": 8},
        config={"instanceType": "m5.xlarge"}, monthly_cost=140.0, region="us-east-1",
    )


@pytest.fixture
def busy_instance():
    return make_resource(
        "EC2", "i-busy", metrics={"avgCpuUtilization": 45, "avgMemoryUtilization": 55},
        config={"instanceType": "m5.xlarge"}, monthly_cost=140.0,
    )


@pytest.fixture
def unattached_volume():
    """Autonomous: an unattached block volume"""
    return make_resource(
        "EBS", "vol-unattached", config={"state": "available", "volumeType": "gp3"},
        monthly_cost=40.0, region="us-east-1",
    )


@pytest.fixture
def idle_eip():
    return make_resource("ElasticIP", "eipalloc-1", metrics={"isAssociated": False}, monthly_cost=0.0)


@pytest.fixture
def test_settings():
    """Settings tuned for fast tests"""
    return Settings(
        scheduler=SchedulerConfig(tick_interval_seconds=0.05, max_workers=4, execution_workers=2,
                                  telemetry_timeout_seconds=5, shutdown_timeout_seconds=5),
        execution=ExecutionConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0,
                                  jitter_ratio=0.0, action_timeout_seconds=5),
        logging={"level": "DEBUG", "console": False},
        security={"jwt_secret": JWT_SECRET},
    )


@pytest.fixture
def store():
    return InMemoryRecommendationStore()


@pytest.fixture
def metrics_collector():
    """Create metrics collector"""
    return MetricsCollector()


@pytest.fixture
def publisher(metrics_collector):
    return EventPublisher(queue_size=10, metrics=metrics_collector)


@pytest.fixture
def adapter():
    return SimulatedActionAdapter()


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter_ratio=0.0)


@pytest.fixture
def engine(store, adapter, publisher, fast_policy, metrics_collector):
    engine = ExecutionEngine(store, adapter, publisher=publisher, policy=fast_policy,
                             action_timeout=5, metrics=metrics_collector,
                             sleep=lambda _: None)
    yield engine
    engine.shutdown()


@pytest.fixture
def workflow(store, engine):
    return ApprovalWorkflow(store, engine, minimum_role=Role.USER)


@pytest.fixture
def factory():
    return RecommendationFactory()


@pytest.fixture
def classifier():
    return RiskClassifier()


@pytest.fixture
def detector():
    return WasteDetector()


@pytest.fixture
def build_recommendation(factory, classifier, detector):
    """Build (not store) the recommendation a resource would produce"""
    def build(resource):
        kind = detector.classify(resource)
        return factory.build(resource, kind, classifier.classify(resource.resource_type, kind))
    return build


@pytest.fixture
def provider():
    return StaticTelemetryProvider()


@pytest.fixture
def admin():
    return User("alice", Role.ADMIN)


@pytest.fixture
def standard_user():
    return User("bob", Role.USER)


@pytest.fixture
def viewer():
    return User("carol", Role.READ_ONLY)


@pytest.fixture
def token_manager():
    """Create token manager"""
    return TokenManager(secret_key=JWT_SECRET)


@pytest.fixture
def mock_boto_session():
    """boto3 session whose clients are MagicMocks, one per (service, region)"""
    session = MagicMock()
    clients = {}

    def client(service, region_name=None):
        return clients.setdefault((service, region_name), MagicMock(name=f"{service}-client"))

    session.client.side_effect = client
    session.clients = clients
    return session
