"""In-process change feed: typed events pushed onto per-subscriber queues."""
import asyncio
import logging
from typing import List, Optional

from callsignal.services.store.events import ChangeEvent, ChangeFilter

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """A queue of change events matching one filter."""

    def __init__(self, feed: "ChangeFeed", change_filter: ChangeFilter):
        self._feed = feed
        self.filter = change_filter
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed_event = asyncio.Event()
        self.closed = False

    def deliver(self, event: ChangeEvent) -> None:
        """Queue an event unless the subscription is closed."""
        if self.closed:
            return
        self._queue.put_nowait(event)

    async def get(self) -> Optional[ChangeEvent]:
        """Wait for the next event; ``None`` once closed."""
        if self.closed:
            return None
        item = await self._queue.get()
        if item is _CLOSED or self.closed:
            return None
        return item

    def task_done(self) -> None:
        """Mark the last event returned by ``get`` as handled."""
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every delivered event has been handled, or until closed."""
        if self.closed:
            return
        joined = asyncio.ensure_future(self._queue.join())
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait({joined, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            joined.cancel()
            closed.cancel()

    def close(self) -> None:
        """Stop delivery and wake any pending ``get``. Safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True
        self._feed._remove(self)
        # Undelivered events will never be handled; settle them so the queue can join.
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._queue.put_nowait(_CLOSED)
        self._closed_event.set()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    """Fans committed row changes out to matching subscriptions."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, change_filter: ChangeFilter) -> Subscription:
        """Open a subscription for events matching ``change_filter``."""
        subscription = Subscription(self, change_filter)
        self._subscriptions.append(subscription)
        logger.debug(
            f"[CHANGE FEED] Subscribed - table: {change_filter.table}, "
            f"receiver: {change_filter.receiver_id}"
        )
        return subscription

    def publish(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription; returns the fan-out."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.filter.matches(event):
                subscription.deliver(event)
                delivered += 1
        logger.debug(
            f"[CHANGE FEED] {event.kind} on {event.table} "
            f"id={event.record.get('id')} delivered to {delivered} subscriber(s)"
        )
        return delivered

    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
