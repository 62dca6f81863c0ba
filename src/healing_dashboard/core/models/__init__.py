"""Core data models for execution tracking and healing reconciliation."""

from .healing_models import (
    HealingAttemptId,
    HealingStatus,
    HealingEvent,
    HealingRecord,
    CorrelationKey,
    new_healing_attempt_id,
    now_ms
)
from .execution_models import (
    ExecutionId,
    ExecutionStatus,
    ExecutionMode,
    ExecutionRecord,
    ExecutionRequest,
    LogEntry,
    StepRecord,
    TestKey,
    TrackingConfiguration,
    new_execution_id
)
from .events import EventParseError, ProgressEvent, HealingUpdate, event_from_dict

__all__ = [
    "HealingAttemptId",
    "HealingStatus",
    "HealingEvent",
    "HealingRecord",
    "CorrelationKey",
    "new_healing_attempt_id",
    "now_ms",
    "ExecutionId",
    "ExecutionStatus",
    "ExecutionMode",
    "ExecutionRecord",
    "ExecutionRequest",
    "LogEntry",
    "StepRecord",
    "TestKey",
    "TrackingConfiguration",
    "new_execution_id",
    "EventParseError",
    "ProgressEvent",
    "HealingUpdate",
    "event_from_dict"
]
