"""In-memory store of execution records for the lifetime of the process."""

import logging
from typing import Dict, List, Optional

from src.healing_dashboard.core.models.events import ProgressEvent
from src.healing_dashboard.core.models.execution_models import (
    ExecutionId,
    ExecutionRecord,
    ExecutionRequest,
    new_execution_id,
)

logger = logging.getLogger(__name__)


class ExecutionNotFoundError(Exception):
    """Raised when an execution id is unknown."""
    pass


class ExecutionStore:
    """Execution records keyed by id, in acceptance order."""

    def __init__(self):
        self._records: Dict[ExecutionId, ExecutionRecord] = {}

    def create(self, request: ExecutionRequest) -> ExecutionRecord:
        record = ExecutionRecord(
            execution_id=new_execution_id(),
            test_key=request.test_key,
            mode=request.mode,
            browser=request.browser,
        )
        self._records[record.execution_id] = record
        return record

    def get(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self._records.get(execution_id)

    def require(self, execution_id: str) -> ExecutionRecord:
        record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFoundError(f"Execution {execution_id} not found")
        return record

    def list(self) -> List[ExecutionRecord]:
        return list(self._records.values())

    def apply(self, execution_id: str, event: ProgressEvent) -> bool:
        """Fold an event into its record. False if ignored."""
        record = self.require(execution_id)
        applied = record.apply(event)
        if not applied:
            logger.debug(f"Ignoring {event.type} for {execution_id}: already {record.status.value}")
        return applied

    def stop(self, execution_id: str, message: str = "Execution stopped by user") -> bool:
        return self.require(execution_id).mark_stopped(message)

    def clear(self):
        self._records.clear()
