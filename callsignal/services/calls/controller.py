"""Incoming call controller: intake, accept/reject and the held-call slot."""
import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from callsignal.core.config import settings
from callsignal.core.errors import NoActiveCallError, WriteConflictError, WriteFailureError
from callsignal.services.cache import BoundedCache
from callsignal.services.calls.models import CallRecord, CallStatus, IncomingCall
from callsignal.services.store.calls import CALLS_TABLE, CallRecordStore
from callsignal.services.store.events import ChangeEvent, ChangeFilter, ChangeKind
from callsignal.services.store.feed import ChangeFeed, Subscription
from callsignal.services.store.profiles import ProfileRepository

logger = logging.getLogger(__name__)

IncomingCallListener = Callable[[Optional[IncomingCall]], None]


class IncomingCallController:
    """
    Holds at most one incoming call for a party.

    A qualifying insert replaces the held call unconditionally; an update
    moving the held call out of ``pending`` clears it. ``accept`` and
    ``reject`` are the only writers of call state, and each is a single
    conditional update guarded by ``status == pending``.

    Events are consumed by one task per instance, so handlers never
    interleave with each other; they only interleave with ``accept``,
    ``reject`` and ``clear_current`` at await points, which is why every
    mutation after an await re-checks that it is still relevant.
    """

    def __init__(
        self,
        party_id: str,
        store: CallRecordStore,
        profiles: ProfileRepository,
        feed: ChangeFeed,
        settled_memory: int = settings.settled_call_memory,
    ):
        self.party_id = party_id
        self.store = store
        self.profiles = profiles
        self.feed = feed
        self.is_loading = False
        self.last_error: Optional[Exception] = None
        self._current: Optional[IncomingCall] = None
        self._listeners: List[IncomingCallListener] = []
        # Ids already seen leaving pending; a late insert for one of them is ignored.
        self._settled: BoundedCache[str] = BoundedCache(max_size=settled_memory, ttl=float("inf"))
        self._subscription: Optional[Subscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._disposed = False

    @property
    def current_incoming_call(self) -> Optional[IncomingCall]:
        return self._current

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_listener(self, listener: IncomingCallListener) -> Callable[[], None]:
        """Register a callback for held-call changes; returns an unregister function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self) -> None:
        """Open the change subscription and start consuming it."""
        if self._disposed:
            raise RuntimeError("Controller has been disposed")
        if self._subscription is not None:
            return

        change_filter = ChangeFilter(
            table=CALLS_TABLE,
            receiver_id=self.party_id,
            status_by_kind={ChangeKind.INSERT: CallStatus.PENDING.value},
        )
        self._subscription = self.feed.subscribe(change_filter)
        self._consumer = asyncio.create_task(
            self._consume(self._subscription),
            name=f"incoming-calls-{self.party_id}",
        )
        logger.info(f"[INCOMING CALL] Subscribed for party {self.party_id}")

    async def _consume(self, subscription: Subscription) -> None:
        async for event in subscription:
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(
                    f"[INCOMING CALL] Failed to handle {event.kind} for party "
                    f"{self.party_id}: {type(e).__name__}: {e}",
                    exc_info=True,
                )
            finally:
                subscription.task_done()

    async def drain(self) -> None:
        """Wait until every delivered change event has been handled."""
        if self._subscription is not None:
            await self._subscription.join()

    async def handle_event(self, event: ChangeEvent) -> None:
        """Apply one change event to the held-call slot."""
        if self._disposed:
            return
        record = CallRecord.from_change(event.record)
        if record.receiver_id != self.party_id:
            return
        if event.kind == ChangeKind.INSERT:
            await self._on_insert(record)
        else:
            self._on_update(record)

    async def _on_insert(self, record: CallRecord) -> None:
        if record.status != CallStatus.PENDING:
            return
        if record.id in self._settled:
            logger.info(f"[INCOMING CALL] Ignoring insert for already settled call {record.id}")
            return

        caller = None
        try:
            caller = await self.profiles.get_profile(record.caller_id)
        except Exception as e:
            # Profile is decoration; the call still rings without it.
            logger.warning(
                f"[INCOMING CALL] Caller profile lookup failed for {record.caller_id}: "
                f"{type(e).__name__}: {e}"
            )

        if self._disposed or record.id in self._settled:
            return

        logger.info(
            f"[INCOMING CALL] Holding call {record.id} from {record.caller_id} "
            f"for party {self.party_id}"
        )
        self._set_current(IncomingCall(**record.model_dump(), caller=caller))

    def _on_update(self, record: CallRecord) -> None:
        if record.status == CallStatus.PENDING:
            return
        self._settled.set(record.id, record.status.value)
        if self._current is not None and self._current.id == record.id:
            logger.info(
                f"[INCOMING CALL] Held call {record.id} moved to {record.status}, clearing"
            )
            self._set_current(None)

    async def accept(self) -> Optional[CallRecord]:
        """
        Accept the held call.

        Returns the updated record, or ``None`` when another writer settled
        the call first (the held call is cleared in that case).

        Raises:
            NoActiveCallError: nothing is held.
            WriteFailureError: the write failed; the call stays held so the
                caller can retry.
        """
        return await self._settle(
            CallStatus.ACCEPTED,
            {"status": CallStatus.ACCEPTED, "started_at": datetime.utcnow()},
        )

    async def reject(self) -> Optional[CallRecord]:
        """Reject the held call. Same contract as ``accept``, without ``started_at``."""
        return await self._settle(CallStatus.REJECTED, {"status": CallStatus.REJECTED})

    async def _settle(self, status: CallStatus, fields: Dict[str, Any]) -> Optional[CallRecord]:
        call = self._current
        verb = "accept" if status == CallStatus.ACCEPTED else "reject"
        if call is None:
            raise NoActiveCallError(f"No incoming call to {verb}")

        self.is_loading = True
        self.last_error = None
        try:
            record = await self.store.update_call(
                call.id, fields, expected_status=CallStatus.PENDING
            )
        except WriteConflictError as e:
            logger.info(
                f"[INCOMING CALL] Call {call.id} already handled elsewhere "
                f"({e.actual_status or 'deleted'}), clearing"
            )
            if not self._disposed:
                self._settled.set(call.id, e.actual_status or "deleted")
                self._clear_if_current(call.id)
            return None
        except WriteFailureError as e:
            logger.error(f"[INCOMING CALL] Failed to {verb} call {call.id}: {e}")
            if not self._disposed:
                self.last_error = e
            raise
        finally:
            if not self._disposed:
                self.is_loading = False

        logger.info(f"[INCOMING CALL] Call {call.id} {status}")
        if self._disposed:
            return record
        self._settled.set(call.id, status.value)
        self._clear_if_current(call.id)
        return record

    def clear_current(self) -> None:
        """Drop the held call locally, without writing anything."""
        if self._current is not None:
            self._set_current(None)

    def _clear_if_current(self, call_id: str) -> None:
        if self._current is not None and self._current.id == call_id:
            self._set_current(None)

    def _set_current(self, call: Optional[IncomingCall]) -> None:
        if self._disposed:
            return
        self._current = call
        for listener in list(self._listeners):
            try:
                listener(call)
            except Exception as e:
                logger.error(f"[INCOMING CALL] Listener raised: {type(e).__name__}: {e}", exc_info=True)

    def dispose(self) -> None:
        """Cancel consumption and release the subscription. Safe to call repeatedly."""
        if self._disposed:
            return
        self._disposed = True
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None
        if self._subscription is not None:
            self._subscription.close()
        self._current = None
        self._listeners.clear()
        logger.info(f"[INCOMING CALL] Disposed controller for party {self.party_id}")
