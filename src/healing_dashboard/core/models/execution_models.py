"""Data models for test-case executions."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NewType, Optional

from .events import (
    BrowserOpened,
    Connected,
    ErrorEvent,
    HeadlessMode,
    LogEvent,
    ProgressEvent,
    StepCompleted,
    TestCompleted,
    TestFinished,
    TestRunning,
    TestStarted,
)
from .healing_models import now_ms


ExecutionId = NewType("ExecutionId", str)


def new_execution_id() -> ExecutionId:
    return ExecutionId(str(uuid.uuid4()))


class ExecutionStatus(Enum):
    """Lifecycle of one execution."""
    STARTING = "starting"
    CONNECTED = "connected"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.FINISHED, ExecutionStatus.ERROR, ExecutionStatus.STOPPED)


class ExecutionMode(Enum):
    HEADLESS = "headless"
    HEADED = "headed"


@dataclass(frozen=True)
class TestKey:
    """Identifies a test case. Not unique across concurrent runs."""
    __test__ = False

    product: str
    test_class: str
    test_id: str

    def __str__(self) -> str:
        return f"{self.product}-{self.test_class}-{self.test_id}"


@dataclass
class LogEntry:
    message: str
    level: str
    timestamp: int


@dataclass
class StepRecord:
    step_number: int
    title: str
    status: str
    duration: int


@dataclass
class ExecutionRecord:
    """Tracked state of one requested run, folded from its event stream."""
    execution_id: ExecutionId
    test_key: TestKey
    mode: ExecutionMode = ExecutionMode.HEADLESS
    browser: str = "chromium"
    status: ExecutionStatus = ExecutionStatus.STARTING
    message: str = ""
    logs: List[LogEntry] = field(default_factory=list)
    steps: List[StepRecord] = field(default_factory=list)
    step_screenshots: Dict[int, str] = field(default_factory=dict)
    test_status: Optional[str] = None
    report_url: Optional[str] = None
    exit_code: Optional[int] = None
    success: Optional[bool] = None
    screenshots: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    test_steps: List[Dict[str, Any]] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    completed_at: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def apply(self, event: ProgressEvent) -> bool:
        """Fold one event into the record.

        Returns:
            False if the record is already terminal and the event was ignored
        """
        if self.is_terminal:
            return False

        if isinstance(event, Connected):
            self.status = ExecutionStatus.CONNECTED
            self.message = event.message
        elif isinstance(event, (TestStarted, HeadlessMode, BrowserOpened)):
            self.message = event.message
        elif isinstance(event, TestRunning):
            self.status = ExecutionStatus.RUNNING
            self.message = event.message
        elif isinstance(event, LogEvent):
            self.logs.append(LogEntry(event.message, event.level, event.timestamp))
        elif isinstance(event, StepCompleted):
            self.status = ExecutionStatus.RUNNING
            self.steps.append(StepRecord(event.step_number, event.title, event.status, event.duration))
            if event.screenshot:
                self.step_screenshots[event.step_number] = event.screenshot
        elif isinstance(event, TestCompleted):
            self.test_status = event.status
            self.message = event.message
        elif isinstance(event, TestFinished):
            self.status = ExecutionStatus.FINISHED
            self.success = event.success
            self.exit_code = event.exit_code
            self.message = event.message
            self.report_url = event.report_url or self.report_url
            self.screenshots = list(event.screenshots)
            self.videos = list(event.videos)
            self.test_steps = list(event.test_steps)
            self.completed_at = event.timestamp
        elif isinstance(event, ErrorEvent):
            self.status = ExecutionStatus.ERROR
            self.message = event.message
            self.exit_code = event.exit_code
            self.report_url = event.report_url or self.report_url
            self.completed_at = event.timestamp
        else:
            raise TypeError(f"Unhandled execution event type: {event.type}")
        return True

    def mark_stopped(self, message: str = "Execution stopped by user") -> bool:
        if self.is_terminal:
            return False
        self.status = ExecutionStatus.STOPPED
        self.message = message
        self.completed_at = now_ms()
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary for API responses."""
        return {
            "executionId": self.execution_id,
            "testKey": str(self.test_key),
            "product": self.test_key.product,
            "testClass": self.test_key.test_class,
            "testId": self.test_key.test_id,
            "mode": self.mode.value,
            "browser": self.browser,
            "status": self.status.value,
            "message": self.message,
            "logs": [
                {"message": l.message, "level": l.level, "timestamp": l.timestamp}
                for l in self.logs
            ],
            "steps": [
                {"stepNumber": s.step_number, "title": s.title, "status": s.status, "duration": s.duration}
                for s in self.steps
            ],
            "stepScreenshots": {str(k): v for k, v in self.step_screenshots.items()},
            "testStatus": self.test_status,
            "reportUrl": self.report_url,
            "exitCode": self.exit_code,
            "success": self.success,
            "screenshots": self.screenshots,
            "videos": self.videos,
            "testSteps": self.test_steps,
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }


@dataclass
class ExecutionRequest:
    """A request to run one test case."""
    test_key: TestKey
    mode: ExecutionMode = ExecutionMode.HEADLESS
    browser: str = "chromium"
    test_title: Optional[str] = None

    @property
    def title(self) -> str:
        """Title the runner filters on; falls back to the test id."""
        return self.test_title or self.test_key.test_id


@dataclass
class TrackingConfiguration:
    """Runtime-tunable timing for execution tracking."""
    watchdog_timeout: float = 30.0
    execution_timeout: int = 300
    stop_grace_period: float = 5.0
    expected_exit_codes: List[int] = field(default_factory=lambda: [0, 1])
    stop_mode: str = "kill_process_group"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "watchdog_timeout": self.watchdog_timeout,
            "execution_timeout": self.execution_timeout,
            "stop_grace_period": self.stop_grace_period,
            "expected_exit_codes": list(self.expected_exit_codes),
            "stop_mode": self.stop_mode,
        }
