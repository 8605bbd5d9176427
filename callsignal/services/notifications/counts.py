"""Unread-message and pending-call counters."""
import asyncio
import logging
from typing import Callable, List, Optional
from pydantic import BaseModel

from callsignal.services.calls.models import CallStatus
from callsignal.services.store.calls import CALLS_TABLE, CallRecordStore
from callsignal.services.store.feed import ChangeFeed, Subscription
from callsignal.services.store.events import ChangeFilter
from callsignal.services.store.messages import MESSAGES_TABLE, MessageStore

logger = logging.getLogger(__name__)


class NotificationCounts(BaseModel):
    """Badge counters for one party."""

    unread_messages: int = 0
    pending_calls: int = 0


CountsListener = Callable[[NotificationCounts], None]


class NotificationCountAggregator:
    """Recomputes counters whenever the party's messages or calls change."""

    def __init__(
        self,
        party_id: Optional[str],
        calls: CallRecordStore,
        messages: MessageStore,
        feed: ChangeFeed,
    ):
        self.party_id = party_id
        self.calls = calls
        self.messages = messages
        self.feed = feed
        self.counts = NotificationCounts()
        self._listeners: List[CountsListener] = []
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []
        # Refreshes run one at a time so the last to finish is the last to query.
        self._refresh_lock = asyncio.Lock()
        self._closed = False

    def add_listener(self, listener: CountsListener) -> None:
        self._listeners.append(listener)

    async def refresh(self) -> NotificationCounts:
        """Query both counters; zeros when no party is signed in."""
        async with self._refresh_lock:
            return await self._refresh()

    async def _refresh(self) -> NotificationCounts:
        if self.party_id is None:
            counts = NotificationCounts()
        else:
            unread = await self.messages.count_unread(self.party_id)
            pending = await self.calls.count_calls(self.party_id, CallStatus.PENDING)
            counts = NotificationCounts(unread_messages=unread, pending_calls=pending)

        if self._closed:
            return self.counts
        if counts != self.counts:
            logger.debug(f"[COUNTS] Party {self.party_id}: {counts.model_dump()}")
        self.counts = counts
        for listener in list(self._listeners):
            listener(counts)
        return counts

    async def start(self) -> NotificationCounts:
        """Load counters and follow changes to messages and calls."""
        counts = await self.refresh()
        if self.party_id is None or self._subscriptions or self._closed:
            return counts

        for table in (MESSAGES_TABLE, CALLS_TABLE):
            subscription = self.feed.subscribe(ChangeFilter(table=table, receiver_id=self.party_id))
            self._subscriptions.append(subscription)
            self._tasks.append(
                asyncio.create_task(self._follow(subscription), name=f"counts-{table}-{self.party_id}")
            )
        return counts

    async def _follow(self, subscription: Subscription) -> None:
        async for _event in subscription:
            try:
                await self.refresh()
            except Exception as e:
                logger.error(f"[COUNTS] Refresh failed for party {self.party_id}: {type(e).__name__}: {e}")
            finally:
                subscription.task_done()

    async def drain(self) -> None:
        """Wait until every delivered change has triggered its refresh."""
        for subscription in self._subscriptions:
            await subscription.join()

    def close(self) -> None:
        """Stop following changes. Safe to call repeatedly."""
        self._closed = True
        for task in self._tasks:
            task.cancel()
        for subscription in self._subscriptions:
            subscription.close()
        self._tasks.clear()
        self._subscriptions.clear()
        self._listeners.clear()
