"""
Execution supervisor: one test-runner subprocess per accepted execution.

The supervisor owns the runner's lifetime (spawn, timeout, stop) and feeds its
output through an EventNormalizer. It never touches records directly; every
event goes out through the ``on_event`` callback, which is the tracking
service's single mutation entry point.
"""

import asyncio
import logging
import os
import re
import shlex
import signal
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from src.healing_dashboard.config.status_messages import ERROR_TIPS
from src.healing_dashboard.core.config import settings
from src.healing_dashboard.core.config_loader import get_tracking_config
from src.healing_dashboard.core.logging_config import get_tracking_logger
from src.healing_dashboard.core.models.events import (
    BrowserOpened,
    ErrorEvent,
    HeadlessMode,
    ProgressEvent,
    TestFinished,
    TestStarted,
)
from src.healing_dashboard.core.models.execution_models import (
    ExecutionMode,
    ExecutionRequest,
    TrackingConfiguration,
)
from src.healing_dashboard.services.event_normalizer import EventNormalizer, RunArtifacts

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
SCREENSHOT_SUFFIXES = (".png",)
VIDEO_SUFFIXES = (".webm", ".mp4")


def sanitize_title(title: str) -> str:
    """Mirror of how the runner names per-test result directories."""
    return re.sub(r"[^a-zA-Z0-9]", "_", title)


def build_runner_command(runner_command: str, spec_file: Path, request: ExecutionRequest) -> List[str]:
    cmd = shlex.split(runner_command) + [
        str(spec_file),
        f"--project={request.browser}",
        "--reporter=list,html",
        f"--grep={request.title}",
    ]
    if request.mode == ExecutionMode.HEADED:
        cmd.append("--headed")
    return cmd


def collect_artifacts(test_classes_dir: Path, title: str, base_url: str = "") -> RunArtifacts:
    """Find the HTML report and the screenshots/videos of one test after exit."""
    prefix = f"{base_url.rstrip('/')}/test-classes"
    artifacts = RunArtifacts()

    report = test_classes_dir / "playwright-report" / "index.html"
    if report.exists():
        artifacts.report_url = f"{prefix}/playwright-report/index.html"

    results_dir = test_classes_dir / "test-results"
    if not results_dir.is_dir():
        return artifacts

    marker = sanitize_title(title)
    try:
        for result_dir in sorted(results_dir.iterdir()):
            if not result_dir.is_dir() or marker not in result_dir.name:
                continue
            for artifact in sorted(result_dir.iterdir()):
                url = f"{prefix}/{artifact.relative_to(test_classes_dir).as_posix()}"
                if artifact.suffix in SCREENSHOT_SUFFIXES:
                    artifacts.screenshots.append(url)
                elif artifact.suffix in VIDEO_SUFFIXES:
                    artifacts.videos.append(url)
    except OSError as e:
        logger.error(f"❌ SUPERVISOR: Error reading test result files: {e}")

    artifacts.test_steps = [
        {"title": f"Step {index + 1}", "status": "passed", "screenshot": screenshot}
        for index, screenshot in enumerate(artifacts.screenshots)
    ]
    return artifacts


class ExecutionSupervisor:
    """Starts and stops runner subprocesses."""

    def __init__(self, on_event: Callable[[str, ProgressEvent], None],
                 test_classes_dir: Optional[str] = None,
                 runner_command: Optional[str] = None,
                 public_base_url: Optional[str] = None,
                 config_provider: Callable[[], TrackingConfiguration] = get_tracking_config):
        self._on_event = on_event
        self.test_classes_dir = Path(test_classes_dir or settings.TEST_CLASSES_DIR)
        self.runner_command = runner_command or settings.RUNNER_COMMAND
        self.public_base_url = settings.PUBLIC_BASE_URL if public_base_url is None else public_base_url
        self._config_provider = config_provider
        self._tasks: Dict[str, asyncio.Task] = {}
        self._processes: Dict[str, asyncio.subprocess.Process] = {}
        self._stopping: Set[str] = set()

    def launch(self, execution_id: str, request: ExecutionRequest) -> asyncio.Task:
        """Start the background run for an accepted execution."""
        task = asyncio.create_task(self._guarded_run(execution_id, request))
        self._tasks[execution_id] = task
        task.add_done_callback(lambda _: self._forget(execution_id))
        return task

    def _forget(self, execution_id: str):
        self._tasks.pop(execution_id, None)
        self._stopping.discard(execution_id)

    def is_running(self, execution_id: str) -> bool:
        return execution_id in self._tasks

    async def wait(self, execution_id: str):
        """Wait for the background run of an execution to end."""
        task = self._tasks.get(execution_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def stop(self, execution_id: str) -> bool:
        """Forcefully stop a run.

        Returns:
            True if a live runner process was signalled
        """
        if execution_id in self._tasks:
            self._stopping.add(execution_id)
        process = self._processes.get(execution_id)
        if process is None or process.returncode is not None:
            return False
        get_tracking_logger("executions", execution_id).info(
            f"🛑 SUPERVISOR: Stopping runner pid {process.pid}")
        await self._terminate(process, self._config_provider())
        return True

    async def shutdown(self):
        for execution_id in list(self._processes):
            await self.stop(execution_id)

    def _emit(self, execution_id: str, event: ProgressEvent):
        event.execution_id = execution_id
        self._on_event(execution_id, event)

    async def _guarded_run(self, execution_id: str, request: ExecutionRequest):
        try:
            await self._run(execution_id, request)
        except Exception as e:
            logger.error(f"❌ SUPERVISOR: Execution {execution_id} crashed: {e}", exc_info=True)
            self._emit(execution_id, ErrorEvent(message=f"Test execution error: {e}"))

    async def _run(self, execution_id: str, request: ExecutionRequest):
        exec_logger = get_tracking_logger("executions", execution_id, str(request.test_key))
        key = request.test_key
        spec_file = self.test_classes_dir / key.product / f"{key.test_class}.spec.js"

        if not spec_file.exists():
            exec_logger.error(f"❌ SUPERVISOR: Test file not found: {spec_file}")
            for tip in ERROR_TIPS['missing_file']:
                exec_logger.info(f"💡 Tip: {tip}")
            self._emit(execution_id, ErrorEvent(message=f"Test file not found: {key.test_class}.spec.js"))
            return

        self._emit(execution_id, TestStarted(
            message=f"Starting individual test case: {request.title}",
            test_title=request.title,
        ))
        if request.mode == ExecutionMode.HEADED:
            self._emit(execution_id, BrowserOpened())
        else:
            self._emit(execution_id, HeadlessMode())

        if execution_id in self._stopping:
            return

        config = self._config_provider()
        cmd = build_runner_command(self.runner_command, spec_file.resolve(), request)
        env = {
            **os.environ,
            "PLAYWRIGHT_HEADLESS": "false" if request.mode == ExecutionMode.HEADED else "true",
            "PLAYWRIGHT_HTML_REPORT_OPEN": "never",
        }

        exec_logger.log_operation_start("test_execution", command=" ".join(cmd), mode=request.mode.value)
        started = asyncio.get_running_loop().time()
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.test_classes_dir),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            exec_logger.log_operation_failure(
                "test_execution", asyncio.get_running_loop().time() - started, str(e), error_code="spawn")
            for tip in ERROR_TIPS['spawn']:
                exec_logger.info(f"💡 Tip: {tip}")
            self._emit(execution_id, ErrorEvent(message=f"Failed to start test execution: {e}"))
            return

        self._processes[execution_id] = process
        normalizer = EventNormalizer(execution_id, screenshot_base_url=f"{self.public_base_url.rstrip('/')}/test-classes")
        try:
            if execution_id in self._stopping:
                await self._terminate(process, config)
            try:
                await asyncio.wait_for(self._pump(execution_id, process, normalizer), timeout=config.execution_timeout)
            except asyncio.TimeoutError:
                exec_logger.warning(f"⏰ SUPERVISOR: Runner exceeded {config.execution_timeout}s, terminating")
                await self._terminate(process, config)
                if not normalizer.terminated:
                    normalizer.terminated = True
                    self._emit(execution_id, TestFinished(
                        success=False,
                        exit_code=-1,
                        message=f"Test execution timed out after {config.execution_timeout} seconds",
                    ))
                return
        finally:
            self._processes.pop(execution_id, None)

        duration = asyncio.get_running_loop().time() - started
        if execution_id in self._stopping:
            exec_logger.info(f"🛑 SUPERVISOR: Runner stopped with exit code {process.returncode}")
            return

        artifacts = collect_artifacts(self.test_classes_dir, request.title, self.public_base_url)
        final = normalizer.finish(process.returncode, artifacts, config.expected_exit_codes)
        if final is not None:
            self._emit(execution_id, final)
        if process.returncode == 0:
            exec_logger.log_operation_success("test_execution", duration, exit_code=process.returncode)
        else:
            exec_logger.log_operation_failure(
                "test_execution", duration, f"exit code {process.returncode}", error_code="exit")

    async def _pump(self, execution_id: str, process: asyncio.subprocess.Process, normalizer: EventNormalizer):
        """Read both pipes into one queue and normalize from a single consumer."""
        queue: asyncio.Queue = asyncio.Queue()

        async def read(stream: asyncio.StreamReader, name: str):
            try:
                while True:
                    chunk = await stream.read(READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    await queue.put((name, chunk))
            finally:
                await queue.put((name, None))

        readers = [
            asyncio.create_task(read(process.stdout, "stdout")),
            asyncio.create_task(read(process.stderr, "stderr")),
        ]
        try:
            open_streams = len(readers)
            while open_streams:
                name, chunk = await queue.get()
                if chunk is None:
                    open_streams -= 1
                    continue
                for event in normalizer.feed(chunk, name):
                    self._emit(execution_id, event)
            for event in normalizer.flush():
                self._emit(execution_id, event)
            await process.wait()
        finally:
            for reader in readers:
                reader.cancel()

    async def _terminate(self, process: asyncio.subprocess.Process, config: TrackingConfiguration):
        """SIGTERM, then SIGKILL once the grace period is over."""
        if process.returncode is not None:
            return
        use_group = config.stop_mode == "kill_process_group" and hasattr(os, "killpg")
        try:
            if use_group:
                os.killpg(process.pid, signal.SIGTERM)
            else:
                process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=config.stop_grace_period)
        except asyncio.TimeoutError:
            logger.warning(f"⚠️ SUPERVISOR: pid {process.pid} ignored SIGTERM, killing")
            try:
                if use_group:
                    os.killpg(process.pid, signal.SIGKILL)
                else:
                    process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
