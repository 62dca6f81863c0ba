"""
Turns raw test-runner output into typed progress events.

The runner writes human-oriented lines (list reporter output, step markers
printed by the generated tests) and may also write structured JSON lines.
The normalizer buffers partial lines across chunks, classifies each line and
guarantees that at most one terminal event is ever produced per execution.
"""

import codecs
import json
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional

from src.healing_dashboard.core.models.events import (
    ErrorEvent,
    EventParseError,
    LogEvent,
    ProgressEvent,
    StepCompleted,
    TestCompleted,
    TestFinished,
    TestRunning,
    event_from_dict,
)

logger = logging.getLogger(__name__)

STEP_PATTERN = re.compile(r"📸 Step (\d+) completed: (.+?) \((.+?)\) - (\d+)ms")
SCREENSHOT_PATTERN = re.compile(r"Screenshot captured for step (\d+): (\S+)")
SUMMARY_PATTERN = re.compile(r"^\s*(\d+)\s+(passed|failed)\b")


@dataclass
class RunArtifacts:
    """What the runner left on disk after it exited."""
    report_url: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    videos: List[str] = field(default_factory=list)
    test_steps: List[dict] = field(default_factory=list)


class EventNormalizer:
    """Per-execution line parser. Not shared between executions."""

    def __init__(self, execution_id: Optional[str] = None, screenshot_base_url: str = ""):
        self.execution_id = execution_id
        self.screenshot_base_url = screenshot_base_url.rstrip("/")
        self._buffers = {"stdout": "", "stderr": ""}
        self._decoders = {}
        self._running_sent = False
        self._step_screenshots = {}
        self.terminated = False

    def feed(self, chunk, stream: str = "stdout") -> List[ProgressEvent]:
        """Consume one output chunk and return the events it completes."""
        if isinstance(chunk, bytes):
            # multi-byte characters may straddle chunk boundaries
            decoder = self._decoders.setdefault(stream, codecs.getincrementaldecoder("utf-8")(errors="replace"))
            chunk = decoder.decode(chunk)
        data = self._buffers.get(stream, "") + chunk
        *lines, rest = data.split("\n")
        self._buffers[stream] = rest

        events = []
        for line in lines:
            events.extend(self.feed_line(line, stream))
        return events

    def flush(self) -> List[ProgressEvent]:
        """Emit whatever is left in the partial-line buffers."""
        events = []
        for stream, rest in self._buffers.items():
            if rest:
                events.extend(self.feed_line(rest, stream))
        self._buffers = {"stdout": "", "stderr": ""}
        return events

    def feed_line(self, line: str, stream: str = "stdout") -> List[ProgressEvent]:
        """Classify a single complete line."""
        if self.terminated:
            return []
        line = line.rstrip("\r")
        text = line.strip()
        if not text:
            return []

        if text.startswith("{"):
            return self._structured(text)

        if stream == "stderr":
            return [self._event(LogEvent(message=text, level="error"))]

        events: List[ProgressEvent] = []

        screenshot = SCREENSHOT_PATTERN.search(text)
        if screenshot:
            self._step_screenshots[int(screenshot.group(1))] = self._screenshot_url(screenshot.group(2))

        step = STEP_PATTERN.search(text)
        if step:
            number = int(step.group(1))
            events.append(self._event(StepCompleted(
                step_number=number,
                title=step.group(2),
                status=step.group(3),
                duration=int(step.group(4)),
                screenshot=self._step_screenshots.get(number),
            )))

        events.append(self._event(LogEvent(message=text, level=self._level_for(text))))

        if not self._running_sent and "Running" in text:
            self._running_sent = True
            events.append(self._event(TestRunning()))

        summary = SUMMARY_PATTERN.match(text)
        if summary:
            status = summary.group(2)
            events.append(self._event(TestCompleted(
                status=status,
                message=f"Test {status}: {summary.group(1)} test(s) {status}",
            )))

        return events

    def finish(self, exit_code: Optional[int], artifacts: Optional[RunArtifacts] = None,
               expected_exit_codes: Iterable[int] = (0, 1)) -> Optional[ProgressEvent]:
        """Synthesize the terminal event for a process that has exited.

        Returns None if a terminal event was already emitted.
        """
        if self.terminated:
            return None
        artifacts = artifacts or RunArtifacts()
        self.terminated = True

        if exit_code is None or exit_code not in set(expected_exit_codes):
            if exit_code is not None and exit_code < 0:
                detail = f"terminated by signal {-exit_code}"
            else:
                detail = f"exit code {exit_code}"
            return self._event(ErrorEvent(
                message=f"Test runner exited unexpectedly ({detail})",
                exit_code=exit_code,
                report_url=artifacts.report_url,
            ))

        success = exit_code == 0
        if success:
            message = f"Test case execution completed successfully! Exit code: {exit_code}"
        else:
            message = f"Test case execution failed with exit code: {exit_code}"
        return self._event(TestFinished(
            success=success,
            exit_code=exit_code,
            message=message,
            report_url=artifacts.report_url,
            screenshots=artifacts.screenshots,
            videos=artifacts.videos,
            test_steps=artifacts.test_steps,
        ))

    async def iter_events(self, chunks: AsyncIterator) -> AsyncIterator[ProgressEvent]:
        """Lazily normalize an async stream of stdout chunks."""
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
        for event in self.flush():
            yield event

    def _structured(self, text: str) -> List[ProgressEvent]:
        try:
            event = event_from_dict(json.loads(text))
        except (json.JSONDecodeError, EventParseError) as e:
            logger.debug(f"Dropping malformed runner line: {e}")
            return []
        return [self._event(event)]

    def _event(self, event: ProgressEvent) -> ProgressEvent:
        event.execution_id = self.execution_id
        if event.is_terminal:
            self.terminated = True
        return event

    def _screenshot_url(self, filename: str) -> str:
        if filename.startswith(("http://", "https://", "/")):
            return filename
        return f"{self.screenshot_base_url}/{filename}"

    @staticmethod
    def _level_for(text: str) -> str:
        if "✗" in text or "✘" in text:
            return "error"
        if "✓" in text:
            return "success"
        return "info"
