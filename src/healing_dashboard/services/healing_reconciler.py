"""
Reconciliation of healing notifications into one record per repair attempt.

Healing producers publish a notification per stage (detected, analyzing,
healing, fixed/failed). Notifications may be duplicated, may arrive out of
order and may omit the producer's session id. The reconciler folds them into
``HealingRecord`` objects and keeps the set of in-flight attempts in step.
"""

import logging
from typing import Dict, List, Optional, Set, Tuple

from src.healing_dashboard.core.logging_config import get_tracking_logger
from src.healing_dashboard.core.models.healing_models import (
    CorrelationKey,
    HealingAttemptId,
    HealingEvent,
    HealingRecord,
    new_healing_attempt_id,
    now_ms,
)

logger = logging.getLogger(__name__)

# Fields a notification may carry; absent (None) values never erase known ones.
_MERGE_FIELDS = ("new_locator", "error", "healing_session_id", "current_step", "reason")


def correlate(records: List[HealingRecord], event: HealingEvent) -> Optional[HealingAttemptId]:
    """Find the record an event belongs to.

    ``records`` is ordered oldest first; the newest matching record wins so a
    locator that breaks again after an earlier attempt finished is matched to
    the latest attempt.
    """
    key = CorrelationKey.of(event)
    for record in reversed(records):
        if key.matches(record):
            return record.execution_id
    return None


class HealingEventReconciler:
    """Owns the healing records and the ActiveSet."""

    def __init__(self):
        self._records: Dict[HealingAttemptId, HealingRecord] = {}
        self._order: List[HealingAttemptId] = []
        self.active: Set[HealingAttemptId] = set()

    @property
    def records(self) -> List[HealingRecord]:
        """All records, oldest first."""
        return [self._records[i] for i in self._order]

    def get(self, execution_id: str) -> Optional[HealingRecord]:
        return self._records.get(execution_id)

    def reconcile(self, event: HealingEvent) -> Tuple[HealingRecord, bool]:
        """Fold one notification into the record set.

        Returns:
            The affected record and whether it changed
        """
        now = now_ms()
        existing_id = correlate(self.records, event)

        if existing_id is None:
            record = HealingRecord(
                execution_id=new_healing_attempt_id(),
                locator_key=event.locator_key,
                old_locator=event.old_locator,
                status=event.status,
                execution_start_time=now,
                new_locator=event.new_locator,
                error=event.error,
                healing_session_id=event.healing_session_id,
                current_step=event.current_step,
                reason=event.reason,
                last_update_time=event.time or now,
            )
            self._records[record.execution_id] = record
            self._order.append(record.execution_id)
            self._refresh_active(record)
            get_tracking_logger("healing", record.execution_id).info(
                f"🩹 HEALING: New attempt for {event.locator_key} ({event.status.value})")
            return record, True

        record = self._records[existing_id]
        healing_logger = get_tracking_logger("healing", record.execution_id)

        if record.is_terminal:
            healing_logger.debug(
                f"🩹 HEALING: Ignoring {event.status.value} for {record.locator_key}, "
                f"attempt already {record.status.value}")
            return record, False

        if event.status.stage < record.status.stage:
            record.regressed = True
            healing_logger.warning(
                f"⚠️ HEALING: Stage regression for {record.locator_key}: "
                f"{record.status.value} -> {event.status.value}")

        record.status = event.status
        for name in _MERGE_FIELDS:
            value = getattr(event, name)
            if value is not None:
                setattr(record, name, value)
        record.last_update_time = event.time or now
        record.update_count += 1
        self._refresh_active(record)
        return record, True

    def _refresh_active(self, record: HealingRecord):
        if record.is_terminal:
            self.active.discard(record.execution_id)
        else:
            self.active.add(record.execution_id)

    def clear(self):
        self._records.clear()
        self._order.clear()
        self.active.clear()
