"""
Pytest configuration and shared fixtures for the test suite.
"""

import pytest
import shlex
import sys
import textwrap
from pathlib import Path

# Add the repository root to Python path so `src.healing_dashboard` imports resolve
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from src.healing_dashboard.core.models.execution_models import (
    ExecutionMode,
    ExecutionRequest,
    TestKey,
    TrackingConfiguration,
)


@pytest.fixture
def test_classes_dir(tmp_path):
    """Create a temporary test-classes directory with one spec file."""
    test_classes = tmp_path / "test-classes"
    (test_classes / "shop").mkdir(parents=True)
    (test_classes / "shop" / "LoginTests.spec.js").write_text("// generated\n", encoding="utf-8")
    return test_classes


@pytest.fixture
def make_runner(tmp_path):
    """Write a fake test-runner script and return a RUNNER_COMMAND that starts it.

    The script body receives `sys` and `pathlib.Path`, and an `emit(line)` helper
    that writes UTF-8 lines to stdout.
    """
    counter = {"n": 0}

    def _make(body: str) -> str:
        counter["n"] += 1
        script = tmp_path / f"fake_runner_{counter['n']}.py"
        script.write_text(
            "import sys, time\n"
            "from pathlib import Path\n"
            "def emit(line, stream=None):\n"
            "    out = stream or sys.stdout\n"
            "    out.buffer.write((line + '\\n').encode('utf-8'))\n"
            "    out.flush()\n"
            + textwrap.dedent(body),
            encoding="utf-8",
        )
        return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))}"

    return _make


@pytest.fixture
def passing_runner_body():
    """Runner output for one passing test with a step screenshot and artifacts."""
    return """
    emit("Running 1 test using 1 worker")
    emit("Screenshot captured for step 1: step-1.png")
    emit("📸 Step 1 completed: Open login page (passed) - 120ms")
    emit("  ✓  1 [chromium] › LoginTests.spec.js:3:1 › Login works (1.2s)")
    report = Path("playwright-report")
    report.mkdir(exist_ok=True)
    (report / "index.html").write_text("<html></html>")
    results = Path("test-results") / "LoginTests-Login_works-chromium"
    results.mkdir(parents=True, exist_ok=True)
    (results / "test-finished-1.png").write_bytes(b"png")
    (results / "video.webm").write_bytes(b"webm")
    emit("  1 passed (1.5s)")
    sys.exit(0)
    """


@pytest.fixture
def tracking_config():
    """Fast timings for tests."""
    return TrackingConfiguration(
        watchdog_timeout=30.0,
        execution_timeout=30,
        stop_grace_period=1.0,
        expected_exit_codes=[0, 1],
        stop_mode="kill_process_group",
    )


@pytest.fixture
def login_request():
    return ExecutionRequest(
        test_key=TestKey("shop", "LoginTests", "TC-001"),
        mode=ExecutionMode.HEADLESS,
        browser="chromium",
        test_title="Login works",
    )


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    import logging
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
