"""
Completion watchdog for execution streams.

A push channel can stall before anything reaches the dashboard (proxy
buffering, a runner that never flushes). The watchdog is armed when an
execution is accepted; if a subscriber is attached and nothing was delivered
to it by the time the timer expires, it hands the execution to a fallback that
synthesizes a terminal state. With nobody watching there is no stall to
recover from, so the run is left to finish on its own.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CompletionWatchdog:
    """One timer per execution id, each firing at most once."""

    def __init__(self, timeout: float, delivered_count: Callable[[str], int],
                 on_timeout: Callable[[str, Dict[str, Any]], Optional[Awaitable[None]]],
                 subscriber_count: Optional[Callable[[str], int]] = None):
        self.timeout = timeout
        self._delivered_count = delivered_count
        self._subscriber_count = subscriber_count
        self._on_timeout = on_timeout
        self._timers: Dict[str, asyncio.Task] = {}

    def arm(self, execution_id: str, metadata: Optional[Dict[str, Any]] = None,
            timeout: Optional[float] = None):
        """Start the timer for an execution. Re-arming an armed id is a no-op."""
        if execution_id in self._timers:
            return
        self._timers[execution_id] = asyncio.create_task(
            self._watch(execution_id, metadata or {}, timeout if timeout is not None else self.timeout)
        )

    def cancel(self, execution_id: str) -> bool:
        """Disarm the timer. Returns True if one was pending."""
        task = self._timers.pop(execution_id, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def is_armed(self, execution_id: str) -> bool:
        return execution_id in self._timers

    def cancel_all(self):
        for execution_id in list(self._timers):
            self.cancel(execution_id)

    async def _watch(self, execution_id: str, metadata: Dict[str, Any], timeout: float):
        await asyncio.sleep(timeout)
        # popped before firing so cancel() and a second expiry cannot both act
        if self._timers.pop(execution_id, None) is None:
            return
        delivered = self._delivered_count(execution_id)
        if delivered > 0:
            logger.info(f"⏰ WATCHDOG: {execution_id} delivered {delivered} event(s), no fallback needed")
            return
        if self._subscriber_count is not None and self._subscriber_count(execution_id) == 0:
            logger.info(f"⏰ WATCHDOG: {execution_id} has no subscribers, leaving it to the runner")
            return

        logger.warning(f"⏰ WATCHDOG: No events delivered for {execution_id} after {timeout}s, forcing completion")
        try:
            result = self._on_timeout(execution_id, metadata)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"❌ WATCHDOG: Fallback failed for {execution_id}: {e}")
