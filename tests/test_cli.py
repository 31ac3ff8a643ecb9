"""Tests for the command line interface"""

import json
from pathlib import Path

import pandas as pd
import pytest
from click.testing import CliRunner

from costpilot import __version__
from costpilot.cli.main import cli

SAMPLES = Path(__file__).resolve().parent.parent / "samples" / "resources.yaml"
IDLE_INSTANCE = "i-0a1b2c3d4e5f60001"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path):
    config = tmp_path / "costpilot.yaml"
    config.write_text("logging:\n  level: ERROR\n")
    return {"config": str(config), "state": str(tmp_path / "state.json"), "tmp": tmp_path}


def invoke(runner, workspace, *args, inventory=True):
    base = ["--config", workspace["config"], "--state", workspace["state"]]
    if inventory:
        base += ["-i", str(SAMPLES)]
    return runner.invoke(cli, base + list(args), catch_exceptions=False)


def scan(runner, workspace):
    result = invoke(runner, workspace, "scan", "--dry-run", "-f", "json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def pending_ids(runner, workspace):
    result = invoke(runner, workspace, "recommendations", "-s", "pending", "-f", "json")
    return {item["resourceId"]: item["id"] for item in json.loads(result.stdout)}


class TestCLI:
    """Test the costpilot command group"""

    def test_version(self, runner):
        """Test --version"""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        """Test every command is registered"""
        result = runner.invoke(cli, ["--help"])
        for command in ("scan", "run", "recommendations", "approve", "reject", "summary", "export"):
            assert command in result.output

    def test_scan_requires_inventory(self, runner, workspace):
        """Test scan refuses to run without an inventory"""
        result = runner.invoke(cli, ["--config", workspace["config"], "scan"])
        assert result.exit_code == 2
        assert "--inventory" in result.output

    def test_http_adapter_requires_endpoint(self, runner, workspace):
        """Test --adapter http without --endpoint is a usage error"""
        result = runner.invoke(cli, ["--config", workspace["config"], "-i", str(SAMPLES),
                                     "--adapter", "http", "scan"])
        assert result.exit_code == 2
        assert "--endpoint" in result.output

    def test_bad_config(self, runner, tmp_path):
        """Test a malformed configuration file is reported"""
        config = tmp_path / "bad.yaml"
        config.write_text("scheduler: [unclosed\n")
        result = runner.invoke(cli, ["--config", str(config), "recommendations"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestScan:
    """Test one-shot scans"""

    def test_json_output(self, runner, workspace):
        """Test the report and the created recommendations"""
        data = scan(runner, workspace)

        assert data["report"]["scanned"] == 10
        assert data["report"]["created"] == data["report"]["wasteful"]
        assert data["report"]["created"] == len(data["recommendations"])
        by_resource = {item["resourceId"]: item for item in data["recommendations"]}
        assert by_resource[IDLE_INSTANCE]["executionMode"] == "hitl"
        assert "i-0a1b2c3d4e5f60002" not in by_resource

    def test_second_scan_deduplicates(self, runner, workspace):
        """Test state persists and open recommendations are not duplicated"""
        first = scan(runner, workspace)
        second = scan(runner, workspace)

        hitl = sum(1 for item in first["recommendations"] if item["executionMode"] == "hitl")
        assert second["report"]["duplicates"] == hitl

    def test_table_output_and_report_file(self, runner, workspace):
        """Test the human-readable output and --output"""
        report_path = workspace["tmp"] / "tick.json"
        result = invoke(runner, workspace, "scan", "--dry-run", "-o", str(report_path))
        assert result.exit_code == 0
        assert "Scanned" in result.stdout
        assert "Savings identified" in result.stdout
        assert json.loads(report_path.read_text())["scanned"] == 10


class TestDecisions:
    """Test approve and reject"""

    def test_approve_by_prefix(self, runner, workspace):
        """Test approval with the short id shown in tables"""
        scan(runner, workspace)
        rec_id = pending_ids(runner, workspace)[IDLE_INSTANCE]

        result = invoke(runner, workspace, "approve", rec_id[:8], "-u", "alice", "-r", "admin")
        assert result.exit_code == 0, result.output
        assert "Approved" in result.stdout

        listing = json.loads(invoke(runner, workspace, "recommendations", "-f", "json").stdout)
        approved = next(item for item in listing if item["id"] == rec_id)
        assert approved["status"] == "executed"
        assert approved["decidedBy"] == "alice"

    def test_readonly_cannot_reject(self, runner, workspace):
        """Test authorization failures exit non-zero and change nothing"""
        scan(runner, workspace)
        rec_id = pending_ids(runner, workspace)[IDLE_INSTANCE]

        result = invoke(runner, workspace, "reject", rec_id, "-u", "carol", "-r", "readonly")
        assert result.exit_code == 1
        assert "requires role" in result.output
        assert IDLE_INSTANCE in pending_ids(runner, workspace)

    def test_reject(self, runner, workspace):
        """Test rejection"""
        scan(runner, workspace)
        rec_id = pending_ids(runner, workspace)[IDLE_INSTANCE]

        result = invoke(runner, workspace, "reject", rec_id, "-u", "bob")
        assert result.exit_code == 0
        assert IDLE_INSTANCE not in pending_ids(runner, workspace)

    def test_unknown_id(self, runner, workspace):
        """Test an unknown id is reported"""
        result = invoke(runner, workspace, "approve", "does-not-exist", "-u", "alice")
        assert result.exit_code == 1
        assert "not found" in result.output.lower()


class TestReports:
    """Test summary and export"""

    def test_summary_json(self, runner, workspace):
        """Test KPIs with spend from the inventory"""
        scan(runner, workspace)
        result = invoke(runner, workspace, "summary", "-f", "json")
        assert result.exit_code == 0
        kpis = json.loads(result.stdout)
        assert kpis["monthly_spend"] == 998.88
        assert kpis["resources_analyzed"] == 10
        assert kpis["realized_monthly_savings"] > 0
        assert kpis["awaiting_approval_count"] >= 1

    def test_summary_table(self, runner, workspace):
        """Test the KPI table"""
        scan(runner, workspace)
        result = invoke(runner, workspace, "summary")
        assert "Optimization Summary" in result.stdout

    def test_export_csv(self, runner, workspace):
        """Test CSV export of pending recommendations"""
        scan(runner, workspace)
        path = workspace["tmp"] / "pending.csv"
        result = invoke(runner, workspace, "export", "-o", str(path), "-s", "pending")
        assert result.exit_code == 0
        frame = pd.read_csv(path)
        assert "resource_id" in frame.columns
        assert set(frame["status"]) == {"pending"}
        assert len(frame) == len(pending_ids(runner, workspace))

    def test_export_bad_status(self, runner, workspace):
        """Test an unknown status filter is reported"""
        result = invoke(runner, workspace, "export", "-o", str(workspace["tmp"] / "x.csv"), "-s", "done")
        assert result.exit_code == 1
