"""
Tests for the runner output normalizer.
"""

import json
import pytest

from src.healing_dashboard.core.models import events
from src.healing_dashboard.core.models.events import EventParseError, event_from_dict
from src.healing_dashboard.core.models.healing_models import HealingRecord, HealingStatus
from src.healing_dashboard.services.event_normalizer import EventNormalizer, RunArtifacts


@pytest.fixture
def normalizer():
    return EventNormalizer("exec-1", screenshot_base_url="/test-classes")


def types_of(produced):
    return [e.type for e in produced]


class TestLineClassification:
    """Tests for individual line handling."""

    def test_step_line_yields_step_completed_and_log(self, normalizer):
        produced = normalizer.feed_line("📸 Step 2 completed: Fill password (passed) - 340ms")

        assert types_of(produced) == ["step_completed", "log"]
        step = produced[0]
        assert step.step_number == 2
        assert step.title == "Fill password"
        assert step.status == "passed"
        assert step.duration == 340
        assert step.execution_id == "exec-1"

    def test_screenshot_line_attaches_url_to_later_step(self, normalizer):
        normalizer.feed_line("Screenshot captured for step 1: shots/step-1.png")
        produced = normalizer.feed_line("📸 Step 1 completed: Open page (passed) - 10ms")
        assert produced[0].screenshot == "/test-classes/shots/step-1.png"

    def test_log_levels(self, normalizer):
        ok = normalizer.feed_line("  ✓  1 [chromium] › login works")
        bad = normalizer.feed_line("  ✘  2 [chromium] › checkout works")
        plain = normalizer.feed_line("some output")
        err = normalizer.feed_line("warning on stderr", stream="stderr")

        assert ok[0].level == "success"
        assert bad[0].level == "error"
        assert plain[0].level == "info"
        assert err[0].level == "error"

    def test_running_is_emitted_once(self, normalizer):
        first = normalizer.feed_line("Running 2 tests using 1 worker")
        second = normalizer.feed_line("Running teardown")
        assert types_of(first) == ["log", "test_running"]
        assert types_of(second) == ["log"]

    def test_summary_line_yields_test_completed(self, normalizer):
        produced = normalizer.feed_line("  1 failed (3.2s)")
        assert types_of(produced) == ["log", "test_completed"]
        assert produced[1].status == "failed"

    def test_blank_lines_are_ignored(self, normalizer):
        assert normalizer.feed_line("   ") == []

    def test_structured_line_becomes_typed_event(self, normalizer):
        line = json.dumps({"type": "step_completed", "stepNumber": 4, "stepTitle": "Submit", "duration": 12,
                           "screenshotUrl": "/shots/4.png"})
        produced = normalizer.feed_line(line)
        assert len(produced) == 1
        assert produced[0].type == "step_completed"
        assert produced[0].step_number == 4
        assert produced[0].title == "Submit"
        assert produced[0].screenshot == "/shots/4.png"
        assert produced[0].execution_id == "exec-1"

    @pytest.mark.parametrize("line", [
        "{not json",
        json.dumps({"type": "no_such_event"}),
        json.dumps({"message": "missing type"}),
        json.dumps({"type": "log", "unexpected": True, "message": "ok"})[:-5],
    ])
    def test_malformed_structured_lines_are_dropped(self, normalizer, line):
        assert normalizer.feed_line(line) == []


class TestChunking:
    """Tests for partial-line buffering."""

    def test_lines_split_across_chunks(self, normalizer):
        assert normalizer.feed(b"Running 1 te") == []
        produced = normalizer.feed(b"st using 1 worker\nnext")
        assert produced[0].message == "Running 1 test using 1 worker"
        tail = normalizer.flush()
        assert [e.message for e in tail] == ["next"]

    def test_multibyte_character_split_across_chunks(self, normalizer):
        data = "📸 Step 1 completed: Go (passed) - 5ms\n".encode("utf-8")
        produced = normalizer.feed(data[:2]) + normalizer.feed(data[2:])
        assert types_of(produced) == ["step_completed", "log"]

    def test_streams_are_buffered_separately(self, normalizer):
        normalizer.feed(b"out-", "stdout")
        normalizer.feed(b"err-", "stderr")
        out = normalizer.feed(b"line\n", "stdout")
        err = normalizer.feed(b"line\n", "stderr")
        assert out[0].message == "out-line"
        assert err[0].message == "err-line"
        assert err[0].level == "error"

    @pytest.mark.asyncio
    async def test_iter_events_is_lazy_and_ordered(self, normalizer):
        async def chunks():
            yield b"first\nsec"
            yield b"ond\n"
            yield b"third"

        messages = [e.message async for e in normalizer.iter_events(chunks())]
        assert messages == ["first", "second", "third"]


class TestTermination:
    """Exactly one terminal event per execution."""

    def test_exit_zero_finishes_successfully(self, normalizer):
        artifacts = RunArtifacts(report_url="/test-classes/playwright-report/index.html", screenshots=["/a.png"])
        final = normalizer.finish(0, artifacts)

        assert isinstance(final, events.TestFinished)
        assert final.success is True
        assert final.exit_code == 0
        assert final.report_url == "/test-classes/playwright-report/index.html"
        assert final.screenshots == ["/a.png"]
        assert "completed successfully" in final.message

    def test_expected_failure_exit_finishes_unsuccessfully(self, normalizer):
        final = normalizer.finish(1)
        assert isinstance(final, events.TestFinished)
        assert final.success is False
        assert final.message == "Test case execution failed with exit code: 1"

    @pytest.mark.parametrize("exit_code", [2, 137, -9, None])
    def test_unexpected_exit_is_an_error(self, normalizer, exit_code):
        final = normalizer.finish(exit_code)
        assert isinstance(final, events.ErrorEvent)
        assert final.exit_code == exit_code

    def test_finish_twice_returns_nothing(self, normalizer):
        assert normalizer.finish(0) is not None
        assert normalizer.finish(0) is None

    def test_structured_terminal_suppresses_later_output_and_finish(self, normalizer):
        produced = normalizer.feed_line(json.dumps({"type": "test_finished", "success": True, "exitCode": 0}))
        assert produced[0].is_terminal
        assert normalizer.feed_line("late line") == []
        assert normalizer.finish(0) is None


class TestEventFromDict:
    """Tests for the wire parser."""

    def test_camel_case_fields_are_mapped(self):
        event = event_from_dict({"type": "test_finished", "exitCode": 1, "reportUrl": "/r", "success": False})
        assert event.exit_code == 1
        assert event.report_url == "/r"

    def test_non_object_is_rejected(self):
        with pytest.raises(EventParseError):
            event_from_dict(["log"])

    def test_to_dict_round_trip_keeps_type_tag(self):
        event = events.LogEvent(execution_id="e", message="hi", level="info")
        data = event.to_dict()
        assert data["type"] == "log"
        assert data["executionId"] == "e"
        assert event_from_dict(data).message == "hi"


COMMON_KEYS = {"type", "timestamp", "executionId"}


class TestWireShape:
    """Exact key sets the dashboard reads for every event kind."""

    @pytest.mark.parametrize("event,keys", [
        (events.Connected(), {"message"}),
        (events.TestStarted(test_title="login"), {"message", "testTitle"}),
        (events.HeadlessMode(), {"message"}),
        (events.BrowserOpened(), {"message"}),
        (events.TestRunning(), {"message"}),
        (events.LogEvent(message="hi"), {"message", "level"}),
        (events.StepCompleted(step_number=1, title="Open", screenshot="/s.png"),
         {"stepNumber", "stepTitle", "status", "duration", "screenshotUrl"}),
        (events.TestCompleted(status="passed"), {"status", "message"}),
        (events.TestFinished(success=True, exit_code=0),
         {"success", "exitCode", "message", "reportUrl", "screenshots", "videos", "testSteps"}),
        (events.ErrorEvent(message="boom"), {"message", "exitCode", "reportUrl"}),
    ])
    def test_execution_event_keys(self, event, keys):
        event.execution_id = "exec-1"
        assert set(event.to_dict()) == COMMON_KEYS | keys

    def test_step_completed_values(self):
        data = events.StepCompleted(step_number=2, title="Click", status="passed",
                                    duration=40, screenshot="/s.png").to_dict()
        assert data["stepTitle"] == "Click"
        assert data["screenshotUrl"] == "/s.png"
        assert "title" not in data
        assert "screenshot" not in data

    def test_step_completed_parsed_from_wire_names(self):
        event = event_from_dict({"type": "step_completed", "stepNumber": 2,
                                 "stepTitle": "Click", "screenshotUrl": "/s.png"})
        assert event.step_number == 2
        assert event.title == "Click"
        assert event.screenshot == "/s.png"

    def test_locator_fix_keys(self):
        record = HealingRecord(
            execution_id="loginButton-#old-1000",
            locator_key="loginButton",
            old_locator="#old",
            status=HealingStatus.DETECTED,
            execution_start_time=1000,
        )
        data = events.HealingUpdate(record=record, counters={"totalRuns": 1}).to_dict()
        assert set(data) == COMMON_KEYS | {
            "locatorKey", "oldLocator", "newLocator", "status", "error", "healingSessionId",
            "currentStep", "reason", "executionStartTime", "time", "updateCount", "regressed", "counters",
        }
        assert data["type"] == "locatorFix"
