"""
Fan-out of per-channel event streams to push-channel subscribers.

Each channel id (an execution id, a healing attempt id or the shared dashboard
channel) owns a set of subscriber queues. Publishing is synchronous and never
blocks, so it is safe to call from the single-writer tracking pipeline.
"""

import asyncio
import logging
from typing import Dict, Optional, Set

from src.healing_dashboard.core.models.events import ProgressEvent

logger = logging.getLogger(__name__)

DASHBOARD_CHANNEL = "dashboard"

_CLOSED = object()


class ChannelNotFoundError(Exception):
    """Raised when subscribing to a channel that was never registered."""
    pass


class Subscription:
    """Async iterator over the events delivered to one subscriber."""

    def __init__(self, channel_id: str, multiplexer: "StreamMultiplexer"):
        self.channel_id = channel_id
        self._multiplexer = multiplexer
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, event: ProgressEvent):
        self._queue.put_nowait(event)

    def _close(self):
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    async def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Wait for the next event.

        Returns None once the channel is closed. Raises asyncio.TimeoutError if
        nothing arrives within ``timeout`` seconds.
        """
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            # keep the sentinel for any later get() calls
            self._queue.put_nowait(_CLOSED)
            return None
        self._multiplexer._count_delivery(self.channel_id)
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def unsubscribe(self):
        self._multiplexer.unsubscribe(self)


class StreamMultiplexer:
    """Registry of push channels and their subscribers."""

    def __init__(self):
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._auto_close: Dict[str, bool] = {}
        self._closed: Set[str] = set()
        self._delivered: Dict[str, int] = {}

    def register(self, channel_id: str, auto_close: bool = True):
        """Create a channel. Re-registering an open channel is a no-op."""
        if channel_id in self._subscribers or channel_id in self._closed:
            return
        self._subscribers[channel_id] = set()
        self._auto_close[channel_id] = auto_close
        self._delivered[channel_id] = 0
        logger.debug(f"📡 MULTIPLEXER: Registered channel {channel_id}")

    def is_open(self, channel_id: str) -> bool:
        return channel_id in self._subscribers

    def subscribe(self, channel_id: str) -> Subscription:
        """Attach a new subscriber. Only events published from now on are seen.

        Raises:
            ChannelNotFoundError: If the channel was never registered
        """
        subscription = Subscription(channel_id, self)
        if channel_id in self._closed:
            subscription._close()
            return subscription
        if channel_id not in self._subscribers:
            raise ChannelNotFoundError(f"Channel {channel_id} not found")
        self._subscribers[channel_id].add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscribers = self._subscribers.get(subscription.channel_id)
        if subscribers is not None:
            subscribers.discard(subscription)

    def publish(self, channel_id: str, event: ProgressEvent) -> int:
        """Deliver an event to every current subscriber of the channel.

        Returns:
            Number of subscribers the event was queued for
        """
        subscribers = self._subscribers.get(channel_id)
        if subscribers is None:
            logger.debug(f"📡 MULTIPLEXER: Dropping {event.type} for closed/unknown channel {channel_id}")
            return 0
        for subscription in list(subscribers):
            subscription._deliver(event)
        if event.is_terminal and self._auto_close.get(channel_id, True):
            self.close(channel_id)
        return len(subscribers)

    def close(self, channel_id: str):
        """Close a channel and finish every subscription. Idempotent."""
        subscribers = self._subscribers.pop(channel_id, None)
        if subscribers is None:
            return
        self._closed.add(channel_id)
        self._auto_close.pop(channel_id, None)
        self._delivered.pop(channel_id, None)
        for subscription in subscribers:
            subscription._close()
        logger.debug(f"📡 MULTIPLEXER: Closed channel {channel_id}")

    def subscriber_count(self, channel_id: str) -> int:
        return len(self._subscribers.get(channel_id, ()))

    def delivered_count(self, channel_id: str) -> int:
        """Events actually handed to a subscriber on this channel so far."""
        return self._delivered.get(channel_id, 0)

    def _count_delivery(self, channel_id: str):
        if channel_id in self._delivered:
            self._delivered[channel_id] += 1
