"""Tests for the lifecycle rules and the recommendation stores"""

import json
import threading
from datetime import timedelta

import pytest

from costpilot.core.base import (
    AttemptOutcome, ExecutionAttempt, ExecutionMode, RecommendationStatus, utcnow
)
from costpilot.core.config import StorageConfig
from costpilot.core.exceptions import (
    ConflictError, DataCollectionError, DuplicateRecommendationError, InvalidTransitionError,
    RecommendationNotFoundError
)
from costpilot.remediation.state_machine import (
    ALLOWED_TRANSITIONS, TERMINAL_STATUSES, can_transition, is_terminal
)
from costpilot.storage.memory import (
    InMemoryRecommendationStore, JsonFileRecommendationStore, create_store
)

S = RecommendationStatus


class TestStateMachine:
    """Test allowed transitions"""

    def test_edges(self):
        """Test the documented transition table"""
        assert can_transition(S.PENDING, S.APPROVED)
        assert can_transition(S.PENDING, S.REJECTED)
        assert can_transition(S.PENDING, S.EXECUTING)
        assert can_transition(S.APPROVED, S.EXECUTING)
        assert can_transition(S.EXECUTING, S.EXECUTED)
        assert can_transition(S.EXECUTING, S.FAILED)

        assert not can_transition(S.PENDING, S.EXECUTED)
        assert not can_transition(S.APPROVED, S.REJECTED)
        assert not can_transition(S.EXECUTING, S.PENDING)

    @pytest.mark.parametrize("status", [S.REJECTED, S.EXECUTED, S.FAILED])
    def test_terminal_states_have_no_exits(self, status):
        """Test rejected, executed and failed never move again"""
        assert is_terminal(status)
        for target in S:
            assert not can_transition(status, target)

    def test_every_status_is_covered(self):
        """Test the table names every status"""
        assert set(ALLOWED_TRANSITIONS) == set(S)
        assert TERMINAL_STATUSES == {S.REJECTED, S.EXECUTED, S.FAILED}

    def test_accepts_string_values(self):
        """Test raw status strings are understood"""
        assert can_transition("pending", "approved")
        assert is_terminal("executed")


class TestInMemoryStore:
    """Test the dictionary-backed store"""

    def test_insert_and_get(self, store, build_recommendation, idle_instance):
        """Test stored records come back as copies"""
        rec = build_recommendation(idle_instance)
        stored = store.insert_recommendation(rec)
        fetched = store.get_recommendation(rec.id)

        assert fetched == stored
        fetched.title = "changed"
        assert store.get_recommendation(rec.id).title != "changed"

    def test_missing(self, store):
        """Test unknown ids raise"""
        with pytest.raises(RecommendationNotFoundError):
            store.get_recommendation("nope")

    def test_active_lookup(self, store, build_recommendation, idle_instance):
        """Test lookup by (resource id, resource type)"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        assert store.get_active_recommendation("i-idle", "EC2").id == rec.id
        assert store.get_active_recommendation("i-idle", "RDS") is None

    def test_dedup(self, store, build_recommendation, idle_instance):
        """Test a second active record for the same resource is refused"""
        first = store.insert_recommendation(build_recommendation(idle_instance))
        with pytest.raises(DuplicateRecommendationError) as exc_info:
            store.insert_recommendation(build_recommendation(idle_instance))
        assert exc_info.value.existing_id == first.id
        assert len(store.list_recommendations()) == 1

    def test_slot_frees_after_terminal_state(self, store, build_recommendation, idle_instance):
        """Test a rejected record no longer blocks a new one"""
        first = store.insert_recommendation(build_recommendation(idle_instance))
        store.update_status(first.id, S.PENDING, S.REJECTED)
        second = store.insert_recommendation(build_recommendation(idle_instance))
        assert store.get_active_recommendation("i-idle", "EC2").id == second.id

    def test_compare_and_swap(self, store, build_recommendation, idle_instance):
        """Test update_status checks the expected status"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        claimed = store.update_status(rec.id, S.PENDING, S.EXECUTING)
        assert claimed.status == S.EXECUTING

        with pytest.raises(InvalidTransitionError) as exc_info:
            store.update_status(rec.id, S.PENDING, S.EXECUTING)
        assert exc_info.value.current == "executing"
        assert isinstance(exc_info.value, ConflictError)

    def test_illegal_transition(self, store, build_recommendation, idle_instance):
        """Test edges outside the table are refused even when the status matches"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        with pytest.raises(InvalidTransitionError):
            store.update_status(rec.id, S.PENDING, S.EXECUTED)
        assert store.get_recommendation(rec.id).status == S.PENDING

    def test_terminal_records_do_not_move(self, store, build_recommendation, idle_instance):
        """Test executed records refuse every transition"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        store.update_status(rec.id, S.PENDING, S.EXECUTING)
        store.update_status(rec.id, S.EXECUTING, S.EXECUTED)
        for target in S:
            with pytest.raises(InvalidTransitionError):
                store.update_status(rec.id, S.EXECUTED, target)

    def test_unknown_field(self, store, build_recommendation, idle_instance):
        """Test only lifecycle fields can be written"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        with pytest.raises(ValueError):
            store.update_status(rec.id, S.PENDING, S.EXECUTING, title="hacked")

    def test_concurrent_claims(self, store, build_recommendation, idle_instance):
        """Test exactly one of many racing claims wins"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        wins, losses = [], []
        barrier = threading.Barrier(8)

        def claim():
            barrier.wait()
            try:
                store.update_status(rec.id, S.PENDING, S.EXECUTING)
                wins.append(1)
            except ConflictError:
                losses.append(1)

        threads = [threading.Thread(target=claim) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
        assert len(losses) == 7

    def test_filters(self, store, build_recommendation, idle_instance, unattached_volume):
        """Test list filters"""
        hitl = store.insert_recommendation(build_recommendation(idle_instance))
        auto = store.insert_recommendation(build_recommendation(unattached_volume))

        assert [r.id for r in store.list_recommendations()] == [hitl.id, auto.id]
        assert [r.id for r in store.list_recommendations(resource_type="EBS")] == [auto.id]
        assert [r.id for r in store.list_recommendations(execution_mode=ExecutionMode.HITL)] == [hitl.id]
        assert store.list_recommendations(status=S.EXECUTED) == []

    def test_attempts(self, store):
        """Test attempts are kept per recommendation"""
        store.record_attempt(ExecutionAttempt("r1", 1, AttemptOutcome.RETRYABLE_FAILURE, error_detail="boom"))
        store.record_attempt(ExecutionAttempt("r1", 2, AttemptOutcome.SUCCESS))
        assert [a.attempt_number for a in store.list_attempts("r1")] == [1, 2]
        assert store.list_attempts("r2") == []

    def test_stale_executing(self, store, build_recommendation, idle_instance):
        """Test stale claims are found by age"""
        rec = store.insert_recommendation(build_recommendation(idle_instance))
        store.update_status(rec.id, S.PENDING, S.EXECUTING)

        assert store.list_stale_executing(utcnow() - timedelta(minutes=5)) == []
        stale = store.list_stale_executing(utcnow() + timedelta(seconds=1))
        assert [r.id for r in stale] == [rec.id]
        assert store.ping() is True


class TestJsonFileStore:
    """Test the durable store"""

    def test_survives_reload(self, tmp_path, build_recommendation, idle_instance, unattached_volume):
        """Test records, statuses and attempts persist"""
        path = tmp_path / "state.json"
        store = JsonFileRecommendationStore(path)
        hitl = store.insert_recommendation(build_recommendation(idle_instance))
        auto = store.insert_recommendation(build_recommendation(unattached_volume))
        store.update_status(auto.id, S.PENDING, S.EXECUTING)
        store.update_status(auto.id, S.EXECUTING, S.EXECUTED, executed_at=utcnow(),
                            realized_monthly_savings=40.0, attempts=1)
        store.record_attempt(ExecutionAttempt(auto.id, 1, AttemptOutcome.SUCCESS))

        reloaded = JsonFileRecommendationStore(path)
        assert reloaded.get_recommendation(hitl.id) == store.get_recommendation(hitl.id)
        executed = reloaded.get_recommendation(auto.id)
        assert executed.status == S.EXECUTED
        assert executed.realized_monthly_savings == 40.0
        assert executed.executed_at is not None
        assert len(reloaded.list_attempts(auto.id)) == 1

        # the dedup index is rebuilt from active records only
        assert reloaded.get_active_recommendation("i-idle", "EC2").id == hitl.id
        assert reloaded.get_active_recommendation("vol-unattached", "EBS") is None

    def test_document_keyed_by_id(self, tmp_path, build_recommendation, idle_instance):
        """Test the on-disk layout"""
        path = tmp_path / "state.json"
        store = JsonFileRecommendationStore(path)
        rec = store.insert_recommendation(build_recommendation(idle_instance))

        document = json.loads(path.read_text())
        assert list(document["recommendations"]) == [rec.id]
        assert document["recommendations"][rec.id]["status"] == "pending"

    def test_corrupt_file(self, tmp_path):
        """Test an unreadable state file raises"""
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(DataCollectionError):
            JsonFileRecommendationStore(path)

    def test_create_store(self, tmp_path):
        """Test the backend is picked from configuration"""
        assert isinstance(create_store(StorageConfig()), InMemoryRecommendationStore)
        store = create_store(StorageConfig(backend="json", path=tmp_path / "s.json"))
        assert isinstance(store, JsonFileRecommendationStore)
