"""Typed progress events published on execution and healing push channels.

Every event is a small dataclass tagged by a ``type`` class attribute. The
``to_dict`` form is the JSON payload subscribers receive; SSE and WebSocket
framing is applied by the API layer, never here.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Type

from .healing_models import HealingRecord, now_ms


class EventParseError(Exception):
    """Raised when a structured runner message cannot be turned into an event."""
    pass


@dataclass
class ProgressEvent:
    """Base class for everything published on a push channel."""
    type: ClassVar[str] = ""
    execution_id: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)

    @property
    def is_terminal(self) -> bool:
        return False

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "timestamp": self.timestamp}
        if self.execution_id is not None:
            data["executionId"] = self.execution_id
        data.update(self.payload())
        return data


@dataclass
class Connected(ProgressEvent):
    type: ClassVar[str] = "connected"
    message: str = "Connected to test execution stream"

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass
class TestStarted(ProgressEvent):
    __test__ = False
    type: ClassVar[str] = "test_started"
    message: str = ""
    test_title: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message, "testTitle": self.test_title}


@dataclass
class HeadlessMode(ProgressEvent):
    type: ClassVar[str] = "headless_mode"
    message: str = "Running in headless mode - logs will be streamed below"

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass
class BrowserOpened(ProgressEvent):
    type: ClassVar[str] = "browser_opened"
    message: str = "Browser window opened - you can watch the test execution"

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass
class TestRunning(ProgressEvent):
    __test__ = False
    type: ClassVar[str] = "test_running"
    message: str = "Test execution in progress..."

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message}


@dataclass
class LogEvent(ProgressEvent):
    type: ClassVar[str] = "log"
    message: str = ""
    level: str = "info"

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message, "level": self.level}


@dataclass
class StepCompleted(ProgressEvent):
    type: ClassVar[str] = "step_completed"
    step_number: int = 0
    title: str = ""
    status: str = "passed"
    duration: int = 0
    screenshot: Optional[str] = None

    def payload(self) -> Dict[str, Any]:
        return {
            "stepNumber": self.step_number,
            "stepTitle": self.title,
            "status": self.status,
            "duration": self.duration,
            "screenshotUrl": self.screenshot,
        }


@dataclass
class TestCompleted(ProgressEvent):
    __test__ = False
    type: ClassVar[str] = "test_completed"
    status: str = "passed"
    message: str = ""

    def payload(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message}


@dataclass
class TestFinished(ProgressEvent):
    __test__ = False
    type: ClassVar[str] = "test_finished"
    success: Optional[bool] = None
    exit_code: Optional[int] = None
    message: str = ""
    report_url: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    test_steps: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return True

    def payload(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "exitCode": self.exit_code,
            "message": self.message,
            "reportUrl": self.report_url,
            "screenshots": self.screenshots,
            "videos": self.videos,
            "testSteps": self.test_steps,
        }


@dataclass
class ErrorEvent(ProgressEvent):
    type: ClassVar[str] = "error"
    message: str = ""
    exit_code: Optional[int] = None
    report_url: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return True

    def payload(self) -> Dict[str, Any]:
        return {"message": self.message, "exitCode": self.exit_code, "reportUrl": self.report_url}


@dataclass
class HealingUpdate(ProgressEvent):
    """A reconciled healing record, optionally with fresh dashboard counters."""
    type: ClassVar[str] = "locatorFix"
    record: Optional[HealingRecord] = None
    counters: Optional[Dict[str, int]] = None

    @property
    def is_terminal(self) -> bool:
        return self.record is not None and self.record.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict() if self.record else {"type": self.type}
        data["timestamp"] = self.timestamp
        if self.counters is not None:
            data["counters"] = self.counters
        return data


# Events a runner may emit directly as structured JSON lines.
RUNNER_EVENT_TYPES: Dict[str, Type[ProgressEvent]] = {
    cls.type: cls
    for cls in (
        Connected, TestStarted, HeadlessMode, BrowserOpened, TestRunning,
        LogEvent, StepCompleted, TestCompleted, TestFinished, ErrorEvent,
    )
}

_WIRE_FIELDS = {
    "executionId": "execution_id",
    "testTitle": "test_title",
    "stepNumber": "step_number",
    "stepTitle": "title",
    "screenshotUrl": "screenshot",
    "exitCode": "exit_code",
    "reportUrl": "report_url",
    "testSteps": "test_steps",
}


def event_from_dict(data: Dict[str, Any]) -> ProgressEvent:
    """Rebuild a runner event from its wire form.

    Unknown keys are ignored so newer runners do not break older dashboards.

    Raises:
        EventParseError: If the payload is not an object or names an unknown type
    """
    if not isinstance(data, dict):
        raise EventParseError(f"Expected a JSON object, got {type(data).__name__}")
    event_type = data.get("type")
    event_cls = RUNNER_EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if event_cls is None:
        raise EventParseError(f"Unknown event type: {data.get('type')!r}")

    known = set(event_cls.__dataclass_fields__)
    kwargs = {}
    for key, value in data.items():
        name = _WIRE_FIELDS.get(key, key)
        if name in known and name != "type":
            kwargs[name] = value
    try:
        return event_cls(**kwargs)
    except TypeError as e:
        raise EventParseError(f"Invalid {event_cls.type} payload: {e}") from e
