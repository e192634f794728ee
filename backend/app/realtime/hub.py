"""Real-time sync hub - per-itinerary publish/subscribe fan-out.

Delivery is best-effort and at-most-once. Each subscriber owns a bounded
queue; when it is full the oldest event is dropped for that subscriber only,
so a slow connection never blocks the publisher or other subscribers.
"""

import asyncio
import logging
from collections import deque
from datetime import UTC, datetime
from typing import Any

from backend.app.models.events import EventType, SyncEvent
from backend.app.utils.metrics import PrometheusChatMetrics

logger = logging.getLogger(__name__)


class Subscription:
    """One connection's view of an itinerary's event stream."""

    def __init__(self, itinerary_id: str, maxsize: int) -> None:
        self.itinerary_id = itinerary_id
        self._queue: deque[SyncEvent] = deque(maxlen=maxsize)
        self._ready = asyncio.Event()
        self.dropped = 0
        self.closed = False

    def push(self, event: SyncEvent) -> bool:
        """Enqueue without blocking. Returns False if the oldest event was dropped."""
        dropped = len(self._queue) == self._queue.maxlen
        if dropped:
            self.dropped += 1
        self._queue.append(event)
        self._ready.set()
        return not dropped

    def get_nowait(self) -> SyncEvent | None:
        if not self._queue:
            return None
        event = self._queue.popleft()
        if not self._queue:
            self._ready.clear()
        return event

    async def get(self) -> SyncEvent:
        """Wait for the next event."""
        while True:
            event = self.get_nowait()
            if event is not None:
                return event
            await self._ready.wait()

    def pending(self) -> int:
        return len(self._queue)


class VersionGate:
    """Receiver-side filter for stale or out-of-order deliveries.

    Holds the last applied itinerary version; `itinerary_updated` events with
    a version at or below it are discarded. Events without a version, or of
    other types, always pass.
    """

    def __init__(self, version: int = 0) -> None:
        self.version = version

    def accept(self, event: SyncEvent) -> bool:
        if event.type != "itinerary_updated" or event.version is None:
            return True
        if event.version <= self.version:
            return False
        self.version = event.version
        return True


class SyncHub:
    """Maintains subscribers per itinerary id and fans events out to them."""

    def __init__(
        self, queue_size: int = 100, metrics: PrometheusChatMetrics | None = None
    ) -> None:
        self.queue_size = queue_size
        self.metrics = metrics or PrometheusChatMetrics()
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, itinerary_id: str) -> Subscription:
        subscription = Subscription(itinerary_id, self.queue_size)
        self._subscribers.setdefault(itinerary_id, set()).add(subscription)
        logger.debug(f"Subscriber added for {itinerary_id}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.itinerary_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.itinerary_id]

    def subscriber_count(self, itinerary_id: str) -> int:
        return len(self._subscribers.get(itinerary_id, ()))

    def publish(self, event: SyncEvent) -> int:
        """Deliver to every current subscriber of the event's itinerary.

        Returns the number of subscribers the event was queued for.
        """
        subscribers = list(self._subscribers.get(event.itinerary_id, ()))
        self.metrics.inc_published(event.type)
        for subscription in subscribers:
            if not subscription.push(event):
                self.metrics.inc_dropped(event.type)
                logger.warning(
                    f"Subscriber queue full for {event.itinerary_id}; dropped oldest event"
                )
        return len(subscribers)

    def emit(
        self,
        event_type: EventType,
        itinerary_id: str,
        version: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> SyncEvent:
        """Build and publish an event stamped with the current time."""
        event = SyncEvent(
            type=event_type,
            itinerary_id=itinerary_id,
            version=version,
            timestamp=datetime.now(UTC),
            payload=payload or {},
        )
        self.publish(event)
        return event
