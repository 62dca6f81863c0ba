"""
Tracking service: the owned store and single mutation entry point.

Every execution event (from the supervisor or a fallback) and every healing
notification goes through this service. It updates the records, publishes to
the push channels and keeps the watchdog in step, always in that order.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from src.healing_dashboard.core.config_loader import get_tracking_config
from src.healing_dashboard.core.logging_config import get_tracking_logger
from src.healing_dashboard.core.models.events import (
    Connected,
    HealingUpdate,
    LogEvent,
    ProgressEvent,
    TestFinished,
)
from src.healing_dashboard.core.models.execution_models import (
    ExecutionRecord,
    ExecutionRequest,
    TrackingConfiguration,
)
from src.healing_dashboard.core.models.healing_models import HealingEvent, HealingRecord
from src.healing_dashboard.services.completion_watchdog import CompletionWatchdog
from src.healing_dashboard.services.dashboard_aggregator import aggregate_counters, build_snapshot
from src.healing_dashboard.services.execution_store import ExecutionNotFoundError, ExecutionStore
from src.healing_dashboard.services.execution_supervisor import ExecutionSupervisor
from src.healing_dashboard.services.healing_reconciler import HealingEventReconciler
from src.healing_dashboard.services.stream_multiplexer import DASHBOARD_CHANNEL, StreamMultiplexer

logger = logging.getLogger(__name__)

TIMEOUT_FALLBACK_MESSAGE = "Test execution completed! (timeout fallback)"
MANUAL_FALLBACK_MESSAGE = "Test execution completed! (manual refresh)"


class TrackingService:
    """Composes store, reconciler, multiplexer, watchdog and supervisor."""

    def __init__(self, config: Optional[TrackingConfiguration] = None,
                 supervisor: Optional[ExecutionSupervisor] = None, **supervisor_options):
        self.config = config or get_tracking_config()
        self.store = ExecutionStore()
        self.reconciler = HealingEventReconciler()
        self.multiplexer = StreamMultiplexer()
        self.multiplexer.register(DASHBOARD_CHANNEL, auto_close=False)
        self.watchdog = CompletionWatchdog(
            timeout=self.config.watchdog_timeout,
            delivered_count=self.multiplexer.delivered_count,
            on_timeout=self._watchdog_fallback,
            subscriber_count=self.multiplexer.subscriber_count,
        )
        self.supervisor = supervisor or ExecutionSupervisor(
            on_event=self.record_execution_event,
            config_provider=lambda: self.config,
            **supervisor_options
        )
        self._requests: Dict[str, ExecutionRequest] = {}
        # last known response metadata per execution, used by the fallbacks
        self._metadata: Dict[str, Dict[str, Any]] = {}

    # --- executions ---

    def accept(self, request: ExecutionRequest) -> ExecutionRecord:
        """Create the record and its channel, arm the watchdog. Nothing runs yet."""
        record = self.store.create(request)
        execution_id = record.execution_id
        self.multiplexer.register(execution_id)
        self._requests[execution_id] = request
        report_url = f"{self.supervisor.public_base_url.rstrip('/')}/test-classes/playwright-report/index.html"
        self._metadata[execution_id] = {"reportUrl": report_url}
        self.watchdog.arm(execution_id, self._metadata[execution_id], timeout=self.config.watchdog_timeout)
        get_tracking_logger("executions", execution_id, str(request.test_key)).info(
            f"🎬 TRACKING: Accepted {request.test_key} ({request.mode.value}, {request.browser})")
        return record

    def launch(self, execution_id: str):
        """Announce the connection and hand the execution to the supervisor."""
        request = self._requests.pop(execution_id, None)
        if request is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} is not awaiting launch")
        self.record_execution_event(execution_id, Connected())
        return self.supervisor.launch(execution_id, request)

    def start(self, request: ExecutionRequest) -> str:
        """Accept and launch. Returns the execution id."""
        record = self.accept(request)
        self.launch(record.execution_id)
        return record.execution_id

    def start_bulk(self, requests: List[ExecutionRequest]) -> List[str]:
        return [self.start(request) for request in requests]

    def record_execution_event(self, execution_id: str, event: ProgressEvent) -> bool:
        """Apply an execution event, then publish it. Ignored events are not published."""
        event.execution_id = execution_id
        if not self.store.apply(execution_id, event):
            return False
        if getattr(event, "report_url", None):
            self._metadata.setdefault(execution_id, {})["reportUrl"] = event.report_url
        self.multiplexer.publish(execution_id, event)
        if event.is_terminal:
            self.watchdog.cancel(execution_id)
            self.multiplexer.close(execution_id)
            self._metadata.pop(execution_id, None)
            get_tracking_logger("executions", execution_id).info(
                f"🏁 TRACKING: {execution_id} reached {event.type}")
        return True

    async def stop(self, execution_id: str) -> ExecutionRecord:
        """Stop a run: mark it stopped, close its channel and kill the runner."""
        record = self.store.require(execution_id)
        if record.is_terminal:
            return record
        self.record_execution_event(execution_id, LogEvent(message="Execution stopped by user", level="warning"))
        self.store.stop(execution_id)
        self._requests.pop(execution_id, None)
        self._metadata.pop(execution_id, None)
        self.watchdog.cancel(execution_id)
        self.multiplexer.close(execution_id)
        await self.supervisor.stop(execution_id)
        return record

    def force_complete(self, execution_id: str, message: str = MANUAL_FALLBACK_MESSAGE) -> ExecutionRecord:
        """Synthesize a terminal ``finished`` from the last known metadata."""
        record = self.store.require(execution_id)
        metadata = self._metadata.get(execution_id, {})
        self.record_execution_event(execution_id, TestFinished(
            message=message,
            report_url=record.report_url or metadata.get("reportUrl"),
        ))
        return record

    def _watchdog_fallback(self, execution_id: str, metadata: Dict[str, Any]):
        record = self.store.get(execution_id)
        if record is None or record.is_terminal:
            return
        self.force_complete(execution_id, TIMEOUT_FALLBACK_MESSAGE)

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        return self.store.require(execution_id)

    def list_executions(self) -> List[ExecutionRecord]:
        return self.store.list()

    # --- healing ---

    def ingest_healing_event(self, event: HealingEvent) -> Tuple[HealingRecord, bool]:
        """Reconcile a healing notification and push the result."""
        record, changed = self.reconciler.reconcile(event)
        if not changed:
            return record, False
        attempt_channel = record.execution_id
        self.multiplexer.register(attempt_channel)
        # snapshot, so queued updates do not change under slow subscribers
        update = HealingUpdate(record=replace(record), counters=self.counters())
        self.multiplexer.publish(attempt_channel, update)
        self.multiplexer.publish(DASHBOARD_CHANNEL, update)
        return record, True

    def get_healing_record(self, execution_id: str) -> Optional[HealingRecord]:
        return self.reconciler.get(execution_id)

    def counters(self) -> Dict[str, int]:
        return aggregate_counters(self.reconciler.records, self.reconciler.active).to_dict()

    def dashboard_snapshot(self) -> Dict[str, Any]:
        return build_snapshot(self.reconciler.records, self.reconciler.active, self.store.list())

    def update_config(self, config: TrackingConfiguration):
        self.config = config
        self.watchdog.timeout = config.watchdog_timeout

    async def shutdown(self):
        self.watchdog.cancel_all()
        await self.supervisor.shutdown()


_tracking_service: Optional[TrackingService] = None


def get_tracking_service() -> TrackingService:
    """Get or create the global tracking service instance."""
    global _tracking_service

    if _tracking_service is None:
        _tracking_service = TrackingService()
        logger.info("🚀 Tracking service initialized")

    return _tracking_service


def reset_tracking_service(service: Optional[TrackingService] = None):
    """Replace the global instance (tests, config reloads)."""
    global _tracking_service
    _tracking_service = service
