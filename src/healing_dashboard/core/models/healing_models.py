"""Data models for healing notifications and reconciled repair attempts."""

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, NewType, Optional


# Healing attempts live in their own id namespace ("fix-..."), distinct from
# execution ids even though both surface as "executionId" on the wire.
HealingAttemptId = NewType("HealingAttemptId", str)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_healing_attempt_id() -> HealingAttemptId:
    """Generate a fresh healing attempt id."""
    return HealingAttemptId(f"fix-{now_ms()}-{uuid.uuid4().hex[:9]}")


class HealingStatus(Enum):
    """Stages a repair attempt moves through."""
    DETECTED = "detected"
    ANALYZING = "analyzing"
    HEALING = "healing"
    FIXED = "fixed"
    FAILED = "failed"
    ERROR = "error"

    @property
    def stage(self) -> int:
        """Ordinal of the stage; all terminal statuses share the last slot."""
        return _STAGE_INDEX[self]

    @property
    def is_terminal(self) -> bool:
        return self in (HealingStatus.FIXED, HealingStatus.FAILED, HealingStatus.ERROR)


_STAGE_INDEX = {
    HealingStatus.DETECTED: 0,
    HealingStatus.ANALYZING: 1,
    HealingStatus.HEALING: 2,
    HealingStatus.FIXED: 3,
    HealingStatus.FAILED: 3,
    HealingStatus.ERROR: 3,
}


@dataclass
class HealingEvent:
    """One inbound healing notification, as published by a healing producer."""
    locator_key: str
    old_locator: str
    status: HealingStatus
    new_locator: Optional[str] = None
    healing_session_id: Optional[str] = None
    error: Optional[str] = None
    time: Optional[int] = None
    current_step: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealingEvent":
        """Build an event from its camelCase wire form.

        Raises:
            ValueError: If required fields are missing or the status is unknown
        """
        missing = [k for k in ("locatorKey", "oldLocator", "status") if data.get(k) is None]
        if missing:
            raise ValueError(f"Healing event is missing fields: {', '.join(missing)}")
        return cls(
            locator_key=data["locatorKey"],
            old_locator=data["oldLocator"],
            status=HealingStatus(data["status"]),
            new_locator=data.get("newLocator"),
            healing_session_id=data.get("healingSessionId") or None,
            error=data.get("error"),
            time=data.get("time"),
            current_step=data.get("currentStep"),
            reason=data.get("reason"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire form, omitting absent optional fields."""
        data = {
            "type": "locatorFix",
            "locatorKey": self.locator_key,
            "oldLocator": self.old_locator,
            "status": self.status.value,
            "time": self.time if self.time is not None else now_ms(),
        }
        optional = {
            "newLocator": self.new_locator,
            "healingSessionId": self.healing_session_id,
            "error": self.error,
            "currentStep": self.current_step,
            "reason": self.reason,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


@dataclass(frozen=True)
class CorrelationKey:
    """Identity of a repair attempt across its notifications."""
    locator_key: str
    old_locator: str
    healing_session_id: Optional[str] = None

    @classmethod
    def of(cls, event: HealingEvent) -> "CorrelationKey":
        return cls(event.locator_key, event.old_locator, event.healing_session_id)

    def matches(self, record: "HealingRecord") -> bool:
        """True if the record belongs to this key.

        A key without a session id matches any record for the same locator pair.
        """
        if record.locator_key != self.locator_key or record.old_locator != self.old_locator:
            return False
        return self.healing_session_id is None or record.healing_session_id == self.healing_session_id


@dataclass
class HealingRecord:
    """Reconciled state of one repair attempt."""
    execution_id: HealingAttemptId
    locator_key: str
    old_locator: str
    status: HealingStatus
    execution_start_time: int
    new_locator: Optional[str] = None
    error: Optional[str] = None
    healing_session_id: Optional[str] = None
    current_step: Optional[int] = None
    reason: Optional[str] = None
    last_update_time: Optional[int] = None
    update_count: int = 1
    regressed: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to the dashboard wire form."""
        return {
            "type": "locatorFix",
            "executionId": self.execution_id,
            "locatorKey": self.locator_key,
            "oldLocator": self.old_locator,
            "newLocator": self.new_locator,
            "status": self.status.value,
            "error": self.error,
            "healingSessionId": self.healing_session_id,
            "currentStep": self.current_step if self.current_step is not None else self.status.stage,
            "reason": self.reason,
            "executionStartTime": self.execution_start_time,
            "time": self.last_update_time,
            "updateCount": self.update_count,
            "regressed": self.regressed,
        }
