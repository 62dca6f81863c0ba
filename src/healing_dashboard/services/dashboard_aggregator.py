"""Dashboard counters derived from the current record sets."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Set

from src.healing_dashboard.config.status_messages import describe_execution, describe_healing
from src.healing_dashboard.core.models.execution_models import ExecutionRecord, ExecutionStatus
from src.healing_dashboard.core.models.healing_models import HealingRecord, HealingStatus


@dataclass
class DashboardCounters:
    total_runs: int = 0
    successful_fixes: int = 0
    currently_executing: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalRuns": self.total_runs,
            "successfulFixes": self.successful_fixes,
            "currentlyExecuting": self.currently_executing,
        }


def aggregate_counters(records: Iterable[HealingRecord], active: Set[str]) -> DashboardCounters:
    """Recompute the healing counters from scratch."""
    records = list(records)
    return DashboardCounters(
        total_runs=len(records),
        successful_fixes=sum(1 for r in records if r.status == HealingStatus.FIXED),
        currently_executing=len(active),
    )


def aggregate_executions(records: Iterable[ExecutionRecord]) -> Dict[str, int]:
    records = list(records)
    return {
        "totalExecutions": len(records),
        "runningExecutions": sum(1 for r in records if not r.is_terminal),
        "passedExecutions": sum(1 for r in records if r.status == ExecutionStatus.FINISHED and r.success),
        "failedExecutions": sum(
            1 for r in records
            if r.status == ExecutionStatus.ERROR
            or (r.status == ExecutionStatus.FINISHED and r.success is False)
        ),
    }


def build_snapshot(healing_records: List[HealingRecord], active: Set[str],
                   executions: List[ExecutionRecord]) -> Dict[str, Any]:
    """Full dashboard view: counters plus newest-first record lists."""
    snapshot = aggregate_counters(healing_records, active).to_dict()
    snapshot.update(aggregate_executions(executions))
    snapshot["healingRecords"] = [
        {**r.to_dict(), "statusText": describe_healing(r), "active": r.execution_id in active}
        for r in reversed(healing_records)
    ]
    snapshot["executions"] = [
        {**r.to_dict(), "statusText": describe_execution(r)}
        for r in reversed(executions)
    ]
    return snapshot
