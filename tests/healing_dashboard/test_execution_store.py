"""
Tests for execution records and the execution store.
"""

import pytest

from src.healing_dashboard.core.models import events
from src.healing_dashboard.core.models.execution_models import ExecutionStatus
from src.healing_dashboard.services.execution_store import ExecutionNotFoundError, ExecutionStore


@pytest.fixture
def store():
    return ExecutionStore()


class TestExecutionStore:
    """Tests for record creation and lookup."""

    def test_create_assigns_unique_ids(self, store, login_request):
        first = store.create(login_request)
        second = store.create(login_request)

        assert first.execution_id != second.execution_id
        assert first.test_key == second.test_key
        assert first.status == ExecutionStatus.STARTING
        assert [r.execution_id for r in store.list()] == [first.execution_id, second.execution_id]

    def test_require_unknown_raises(self, store):
        assert store.get("missing") is None
        with pytest.raises(ExecutionNotFoundError):
            store.require("missing")

    def test_clear(self, store, login_request):
        store.create(login_request)
        store.clear()
        assert store.list() == []


class TestRecordFolding:
    """Events folded into an execution record."""

    def test_progress_then_finish(self, store, login_request):
        record = store.create(login_request)
        rid = record.execution_id

        store.apply(rid, events.Connected())
        assert record.status == ExecutionStatus.CONNECTED
        store.apply(rid, events.TestRunning())
        store.apply(rid, events.LogEvent(message="hello", level="info"))
        store.apply(rid, events.StepCompleted(step_number=1, title="Open", duration=5, screenshot="/s.png"))
        store.apply(rid, events.TestCompleted(status="passed"))
        assert record.status == ExecutionStatus.RUNNING

        store.apply(rid, events.TestFinished(success=True, exit_code=0, report_url="/report"))

        assert record.status == ExecutionStatus.FINISHED
        assert record.success is True
        assert record.test_status == "passed"
        assert [l.message for l in record.logs] == ["hello"]
        assert record.step_screenshots == {1: "/s.png"}
        assert record.report_url == "/report"
        assert record.completed_at is not None

    def test_events_after_terminal_are_ignored(self, store, login_request):
        record = store.create(login_request)
        rid = record.execution_id

        assert store.apply(rid, events.ErrorEvent(message="boom", exit_code=3)) is True
        assert store.apply(rid, events.LogEvent(message="late")) is False
        assert store.apply(rid, events.TestFinished(success=True)) is False

        assert record.status == ExecutionStatus.ERROR
        assert record.message == "boom"
        assert record.logs == []

    def test_stop_is_terminal_and_only_once(self, store, login_request):
        record = store.create(login_request)

        assert store.stop(record.execution_id) is True
        assert store.stop(record.execution_id) is False
        assert record.status == ExecutionStatus.STOPPED
        assert store.apply(record.execution_id, events.TestFinished(success=True)) is False

    def test_to_dict_uses_wire_names(self, store, login_request):
        record = store.create(login_request)
        store.apply(record.execution_id, events.StepCompleted(step_number=2, title="Fill", screenshot="/2.png"))

        data = record.to_dict()
        assert data["testKey"] == "shop-LoginTests-TC-001"
        assert data["status"] == "running"
        assert data["steps"][0]["stepNumber"] == 2
        assert data["stepScreenshots"] == {"2": "/2.png"}
