"""Tests for the telemetry providers and the action adapters"""

import json
from pathlib import Path

import httpx
import pytest

from costpilot.core.base import Resource
from costpilot.core.exceptions import DataCollectionError, TransientExecutionError
from costpilot.core.retry import is_transient_error
from costpilot.providers import HttpActionAdapter, SimulatedActionAdapter, StaticTelemetryProvider

SAMPLES = Path(__file__).resolve().parent.parent / "samples" / "resources.yaml"


class TestStaticTelemetryProvider:
    """Test the fixed inventory"""

    def test_sample_inventory(self):
        """Test the bundled demo inventory loads"""
        provider = StaticTelemetryProvider.from_file(SAMPLES)
        resources = provider.list_resources()
        assert len(resources) == 10
        assert all(isinstance(r, Resource) for r in resources)
        assert provider.get_provider_info() == {"provider": "static", "resources": 10}

    def test_type_filter(self, idle_instance, unattached_volume):
        """Test filtering by resource type"""
        provider = StaticTelemetryProvider([idle_instance, unattached_volume])
        assert [r.resource_id for r in provider.list_resources(["EBS"])] == ["vol-unattached"]
        assert len(provider.list_resources([])) == 2

    def test_mixed_entries(self, idle_instance):
        """Test dicts are parsed and junk is skipped"""
        provider = StaticTelemetryProvider([
            idle_instance,
            {"resourceId": "vol-9", "resourceType": "EBS", "monthlyCost": "12.5"},
            42,
        ])
        resources = provider.list_resources()
        assert [r.resource_id for r in resources] == ["i-idle", "vol-9"]
        assert resources[1].monthly_cost == 12.5

    def test_json_list(self, tmp_path):
        """Test a top-level JSON list"""
        path = tmp_path / "inventory.json"
        path.write_text(json.dumps([{"resource_id": "eipalloc-7", "resource_type": "ElasticIP"}]))
        assert StaticTelemetryProvider.from_file(path).list_resources()[0].resource_type == "ElasticIP"

    def test_replace(self, idle_instance, unattached_volume):
        """Test the inventory can be swapped between ticks"""
        provider = StaticTelemetryProvider([idle_instance])
        provider.replace([unattached_volume])
        assert [r.resource_id for r in provider.list_resources()] == ["vol-unattached"]

    @pytest.mark.parametrize("content", ["resources: {a: 1}", "just a string", "[unclosed"])
    def test_bad_files(self, tmp_path, content):
        """Test unusable inventories raise DataCollectionError"""
        path = tmp_path / "inventory.yaml"
        path.write_text(content)
        with pytest.raises(DataCollectionError):
            StaticTelemetryProvider.from_file(path)

    def test_missing_file(self, tmp_path):
        """Test a missing inventory raises DataCollectionError"""
        with pytest.raises(DataCollectionError):
            StaticTelemetryProvider.from_file(tmp_path / "absent.yaml")


class TestSimulatedActionAdapter:
    """Test the recording adapter"""

    def test_records(self, build_recommendation, unattached_volume):
        """Test successful calls are recorded"""
        adapter = SimulatedActionAdapter()
        rec = build_recommendation(unattached_volume)
        outcome = adapter.apply(rec)
        assert outcome.success is True
        assert outcome.metadata == {"simulated": True}
        assert adapter.applied == [rec]
        assert adapter.calls == 1

    def test_scripted_failures(self, build_recommendation, unattached_volume):
        """Test queued errors are raised once each"""
        adapter = SimulatedActionAdapter(failures={"vol-unattached": [TransientExecutionError("slow")]})
        rec = build_recommendation(unattached_volume)
        with pytest.raises(TransientExecutionError):
            adapter.apply(rec)
        assert adapter.apply(rec).success is True
        assert adapter.calls == 2
        assert len(adapter.applied) == 1


class TestHttpActionAdapter:
    """Test the remote executor adapter"""

    def make_adapter(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpActionAdapter("https://executor.example/", client=client)

    def test_posts_action(self, build_recommendation, idle_instance):
        """Test the request body and a successful reply"""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "message": "queued", "jobId": "j-1"})

        rec = build_recommendation(idle_instance)
        outcome = self.make_adapter(handler).apply(rec)

        assert seen["url"] == "https://executor.example/actions"
        assert seen["body"]["recommendationId"] == rec.id
        assert seen["body"]["type"] == "rightsizing"
        assert seen["body"]["action"]["targetInstanceType"] == "m5.large"
        assert outcome.success is True
        assert outcome.message == "queued"
        assert outcome.metadata == {"jobId": "j-1"}

    def test_reported_failure(self, build_recommendation, idle_instance):
        """Test a 200 reply with success=false"""
        adapter = self.make_adapter(lambda r: httpx.Response(200, json={"success": False, "message": "locked"}))
        outcome = adapter.apply(build_recommendation(idle_instance))
        assert outcome.success is False
        assert outcome.message == "locked"

    def test_empty_body(self, build_recommendation, idle_instance):
        """Test a non-JSON 204 counts as success"""
        outcome = self.make_adapter(lambda r: httpx.Response(204)).apply(build_recommendation(idle_instance))
        assert outcome.success is True
        assert outcome.message == "HTTP 204"

    @pytest.mark.parametrize("status,transient", [(503, True), (502, True), (400, False), (404, False)])
    def test_http_errors(self, build_recommendation, idle_instance, status, transient):
        """Test 5xx replies are retryable and 4xx are not"""
        adapter = self.make_adapter(lambda r: httpx.Response(status))
        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            adapter.apply(build_recommendation(idle_instance))
        assert is_transient_error(exc_info.value) is transient

    def test_connection_error(self, build_recommendation, idle_instance):
        """Test an unreachable executor is retryable"""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(httpx.ConnectError) as exc_info:
            self.make_adapter(handler).apply(build_recommendation(idle_instance))
        assert is_transient_error(exc_info.value)
