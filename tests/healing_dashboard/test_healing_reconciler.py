"""
Tests for healing notification reconciliation.

Covers correlation, merge rules, terminal freezing and ActiveSet bookkeeping,
including duplicated and out-of-order deliveries.
"""

import itertools
import pytest

from src.healing_dashboard.core.models import HealingEvent, HealingRecord, HealingStatus
from src.healing_dashboard.services.healing_reconciler import HealingEventReconciler, correlate
from src.healing_dashboard.services.dashboard_aggregator import aggregate_counters


def make_event(status, locator_key="A", old_locator="#old", session_id=None, **fields):
    return HealingEvent(
        locator_key=locator_key,
        old_locator=old_locator,
        status=HealingStatus(status),
        healing_session_id=session_id,
        **fields
    )


def assert_active_consistent(reconciler):
    """ActiveSet holds exactly the non-terminal records."""
    expected = {r.execution_id for r in reconciler.records if not r.is_terminal}
    assert reconciler.active == expected


@pytest.fixture
def reconciler():
    return HealingEventReconciler()


class TestCorrelate:
    """Tests for the pure correlation function."""

    def test_no_records_means_no_match(self):
        assert correlate([], make_event("detected")) is None

    def test_matches_same_locator_pair_without_session(self):
        record = HealingRecord("fix-1", "A", "#old", HealingStatus.DETECTED, 0, healing_session_id="s1")
        assert correlate([record], make_event("fixed")) == "fix-1"

    def test_session_id_must_match_when_present(self):
        record = HealingRecord("fix-1", "A", "#old", HealingStatus.DETECTED, 0, healing_session_id="s1")
        assert correlate([record], make_event("fixed", session_id="s2")) is None
        assert correlate([record], make_event("fixed", session_id="s1")) == "fix-1"

    def test_different_old_locator_does_not_match(self):
        record = HealingRecord("fix-1", "A", "#old", HealingStatus.DETECTED, 0)
        assert correlate([record], make_event("fixed", old_locator="#other")) is None

    def test_newest_matching_record_wins(self):
        older = HealingRecord("fix-1", "A", "#old", HealingStatus.FIXED, 0)
        newer = HealingRecord("fix-2", "A", "#old", HealingStatus.DETECTED, 1)
        assert correlate([older, newer], make_event("healing")) == "fix-2"


class TestReconcileScenarios:
    """End-to-end notification sequences."""

    def test_in_order_pipeline_ends_fixed(self, reconciler):
        for status in ("detected", "analyzing", "healing"):
            reconciler.reconcile(make_event(status))
        record, changed = reconciler.reconcile(make_event("fixed", new_locator="#new"))

        assert changed is True
        assert len(reconciler.records) == 1
        assert record.status == HealingStatus.FIXED
        assert record.new_locator == "#new"
        assert record.execution_id not in reconciler.active
        assert record.execution_id.startswith("fix-")
        counters = aggregate_counters(reconciler.records, reconciler.active)
        assert counters.successful_fixes == 1
        assert counters.total_runs == 1
        assert counters.currently_executing == 0

    def test_lone_fixed_never_enters_active_set(self, reconciler):
        record, _ = reconciler.reconcile(make_event("fixed", locator_key="B", new_locator="#b2"))

        assert record.status == HealingStatus.FIXED
        assert reconciler.active == set()
        assert aggregate_counters(reconciler.records, reconciler.active).successful_fixes == 1

    def test_duplicate_fixed_keeps_single_record(self, reconciler):
        first, _ = reconciler.reconcile(make_event("fixed", new_locator="#new"))
        second, changed = reconciler.reconcile(make_event("fixed", new_locator="#new"))

        assert first.execution_id == second.execution_id
        assert changed is False
        assert len(reconciler.records) == 1
        assert aggregate_counters(reconciler.records, reconciler.active).successful_fixes == 1

    def test_in_flight_record_is_active(self, reconciler):
        record, _ = reconciler.reconcile(make_event("analyzing"))
        assert reconciler.active == {record.execution_id}
        assert aggregate_counters(reconciler.records, reconciler.active).currently_executing == 1

    def test_failed_and_error_are_terminal(self, reconciler):
        failed, _ = reconciler.reconcile(make_event("detected", locator_key="F"))
        reconciler.reconcile(make_event("failed", locator_key="F", error="no candidate"))
        errored, _ = reconciler.reconcile(make_event("healing", locator_key="E"))
        reconciler.reconcile(make_event("error", locator_key="E", error="boom"))

        assert reconciler.active == set()
        assert failed.error == "no candidate"
        assert errored.status == HealingStatus.ERROR


class TestMergeRules:
    """Tests for field merging and terminal freezing."""

    def test_execution_start_time_is_set_once(self, reconciler):
        record, _ = reconciler.reconcile(make_event("detected"))
        start = record.execution_start_time
        reconciler.reconcile(make_event("analyzing", time=start + 5000))
        assert record.execution_start_time == start
        assert record.last_update_time == start + 5000

    def test_absent_fields_do_not_erase_known_values(self, reconciler):
        reconciler.reconcile(make_event("healing", session_id="s1", reason="class changed"))
        record, _ = reconciler.reconcile(make_event("fixed", new_locator="#new"))
        assert record.healing_session_id == "s1"
        assert record.reason == "class changed"
        assert record.new_locator == "#new"

    def test_terminal_status_is_never_overwritten(self, reconciler):
        record, _ = reconciler.reconcile(make_event("fixed", new_locator="#new"))
        _, changed = reconciler.reconcile(make_event("healing"))
        _, changed_again = reconciler.reconcile(make_event("failed", error="late"))

        assert changed is False
        assert changed_again is False
        assert record.status == HealingStatus.FIXED
        assert record.error is None
        assert_active_consistent(reconciler)

    def test_non_terminal_regression_is_applied_and_flagged(self, reconciler):
        reconciler.reconcile(make_event("healing"))
        record, changed = reconciler.reconcile(make_event("detected"))
        assert changed is True
        assert record.status == HealingStatus.DETECTED
        assert record.regressed is True
        assert record.execution_id in reconciler.active

    def test_distinct_sessions_for_same_locator_are_separate_attempts(self, reconciler):
        first, _ = reconciler.reconcile(make_event("detected", session_id="s1"))
        second, _ = reconciler.reconcile(make_event("detected", session_id="s2"))
        assert first.execution_id != second.execution_id
        assert len(reconciler.active) == 2


class TestOrderingProperties:
    """Every permutation and duplication of a pipeline converges."""

    PIPELINE = ("detected", "analyzing", "healing", "fixed")

    @pytest.mark.parametrize("order", list(itertools.permutations(PIPELINE)))
    def test_any_order_yields_one_fixed_record(self, order):
        reconciler = HealingEventReconciler()
        for status in order:
            fields = {"new_locator": "#new"} if status == "fixed" else {}
            reconciler.reconcile(make_event(status, session_id="s1", **fields))
            assert_active_consistent(reconciler)

        assert len(reconciler.records) == 1
        record = reconciler.records[0]
        assert record.status == HealingStatus.FIXED
        assert record.new_locator == "#new"
        assert reconciler.active == set()

    def test_duplicates_after_every_stage_are_idempotent(self, reconciler):
        for status in self.PIPELINE:
            reconciler.reconcile(make_event(status))
            reconciler.reconcile(make_event(status))
            assert_active_consistent(reconciler)

        assert len(reconciler.records) == 1
        assert aggregate_counters(reconciler.records, reconciler.active).successful_fixes == 1

    def test_interleaved_attempts_stay_separate(self, reconciler):
        reconciler.reconcile(make_event("detected", locator_key="A"))
        reconciler.reconcile(make_event("detected", locator_key="B", old_locator="#b"))
        reconciler.reconcile(make_event("fixed", locator_key="A", new_locator="#a2"))

        assert len(reconciler.records) == 2
        active = [reconciler.get(i) for i in reconciler.active]
        assert [r.locator_key for r in active] == ["B"]
