"""Tests for summary KPIs and exports"""

import json
from datetime import timedelta

import pandas as pd
import pytest

from costpilot.core.base import RecommendationStatus, utcnow
from costpilot.core.exceptions import ValidationError
from costpilot.reporting.export import export_recommendations, recommendations_frame
from costpilot.reporting.summary import MetricsAggregator

S = RecommendationStatus


def execute(store, rec_id, realized, executed_at):
    store.update_status(rec_id, S.PENDING, S.EXECUTING)
    return store.update_status(rec_id, S.EXECUTING, S.EXECUTED, executed_at=executed_at,
                               realized_monthly_savings=realized, attempts=1)


@pytest.fixture
def populated_store(store, build_recommendation, idle_instance, unattached_volume, idle_eip):
    store.insert_recommendation(build_recommendation(idle_instance))

    first = store.insert_recommendation(build_recommendation(unattached_volume))
    execute(store, first.id, 40.0, utcnow() - timedelta(hours=2))
    second = store.insert_recommendation(build_recommendation(unattached_volume))
    execute(store, second.id, 30.0, utcnow() - timedelta(hours=1))

    eip = store.insert_recommendation(build_recommendation(idle_eip))
    store.update_status(eip.id, S.PENDING, S.REJECTED, decided_by="alice", decided_at=utcnow())
    return store


class TestMetricsAggregator:
    """Test the read-side projection"""

    def test_summary(self, populated_store, idle_instance, unattached_volume):
        """Test every KPI against a known store"""
        summary = MetricsAggregator(populated_store).summary([idle_instance, unattached_volume])

        assert summary.total_recommendations == 4
        assert summary.pending_count == 1
        assert summary.awaiting_approval_count == 1
        assert summary.identified_monthly_savings == 63.0
        assert summary.identified_annual_savings == 756.0
        assert summary.monthly_spend == 180.0
        assert summary.resources_analyzed == 2
        assert summary.status_counts == {
            "pending": 1, "approved": 0, "rejected": 1, "executing": 0, "executed": 2, "failed": 0,
        }

    def test_realized_counts_latest_execution_per_resource(self, populated_store, idle_instance,
                                                           unattached_volume):
        """Test repeat fixes of one resource are not added up"""
        summary = MetricsAggregator(populated_store).summary([idle_instance, unattached_volume])

        assert summary.realized_monthly_savings == 30.0
        assert summary.realized_annual_savings == 360.0
        assert summary.waste_percentage == 16.7

    def test_mix(self, populated_store):
        """Test autonomous vs hitl share"""
        mix = MetricsAggregator(populated_store).summary().optimization_mix
        assert mix == {"autonomous": 3, "hitl": 1, "autonomous_percentage": 75, "hitl_percentage": 25}

    def test_last_action(self, populated_store):
        """Test the most recent decision or execution is reported"""
        summary = MetricsAggregator(populated_store).summary()
        eip = populated_store.list_recommendations(status=S.REJECTED)[0]
        assert summary.last_action_at == eip.decided_at

    def test_no_spend(self, populated_store):
        """Test waste percentage is zero without an inventory"""
        summary = MetricsAggregator(populated_store).summary([])
        assert summary.monthly_spend == 0.0
        assert summary.waste_percentage == 0.0

    def test_empty_store(self, store, idle_instance):
        """Test an empty store still reports spend"""
        summary = MetricsAggregator(store).summary([idle_instance])
        assert summary.total_recommendations == 0
        assert summary.monthly_spend == 140.0
        assert summary.last_action_at is None
        assert summary.optimization_mix["autonomous_percentage"] == 0
        assert summary.to_dict()["status_counts"]["pending"] == 0

    def test_to_dict(self, populated_store):
        """Test the summary serializes to JSON"""
        data = MetricsAggregator(populated_store).summary().to_dict()
        assert isinstance(data["last_action_at"], str)
        json.dumps(data)


class TestExport:
    """Test CSV and JSON exports"""

    def test_frame_columns(self, populated_store):
        """Test one row per recommendation without the action payload"""
        frame = recommendations_frame(populated_store.list_recommendations())
        assert len(frame) == 4
        assert "recommended_action" not in frame.columns
        assert {"id", "resource_id", "status", "projected_monthly_savings"} <= set(frame.columns)

    def test_csv(self, populated_store, tmp_path):
        """Test CSV export"""
        path = export_recommendations(populated_store.list_recommendations(), tmp_path / "out" / "recs.csv")
        frame = pd.read_csv(path)
        assert len(frame) == 4
        assert sorted(frame["status"].unique()) == ["executed", "pending", "rejected"]

    def test_json(self, populated_store, tmp_path):
        """Test JSON records export"""
        path = export_recommendations(populated_store.list_recommendations(status=S.EXECUTED),
                                      tmp_path / "recs.json", format="json")
        records = json.loads(path.read_text())
        assert [r["realized_monthly_savings"] for r in records] == [40.0, 30.0]

    def test_invalid_format(self, tmp_path):
        """Test unknown formats are refused"""
        with pytest.raises(ValidationError):
            export_recommendations([], tmp_path / "x.xml", format="xml")
