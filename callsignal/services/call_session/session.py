"""Per-party call session wiring the controller, ringback, quality and counters."""
import asyncio
import logging
from typing import Optional

from callsignal.core.config import settings
from callsignal.services.calls.controller import IncomingCallController
from callsignal.services.calls.models import CallRecord, IncomingCall
from callsignal.services.notifications.counts import NotificationCountAggregator
from callsignal.services.quality.monitor import ConnectionQualityMonitor
from callsignal.services.quality.transport import Transport
from callsignal.services.ringback.audio import AudioBackend
from callsignal.services.ringback.scheduler import RingbackScheduler
from callsignal.services.store.calls import CallRecordStore
from callsignal.services.store.feed import ChangeFeed
from callsignal.services.store.messages import MessageStore
from callsignal.services.store.profiles import ProfileRepository

logger = logging.getLogger(__name__)


class CallSession:
    """Everything one connected party owns while signed in."""

    def __init__(
        self,
        party_id: str,
        store: CallRecordStore,
        profiles: ProfileRepository,
        messages: MessageStore,
        feed: ChangeFeed,
        audio_backend: AudioBackend,
        quality_interval: float = settings.quality_poll_interval,
    ):
        self.party_id = party_id
        self.controller = IncomingCallController(party_id, store, profiles, feed)
        self.ringback = RingbackScheduler(audio_backend)
        self.quality = ConnectionQualityMonitor(interval=quality_interval)
        self.counts = NotificationCountAggregator(party_id, store, messages, feed)
        self.active_call: Optional[CallRecord] = None
        self._ringback_start: Optional[asyncio.Task] = None
        self._closed = False
        self.controller.add_listener(self._on_incoming_call)

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Start listening for incoming calls and counter changes."""
        self.controller.subscribe()
        await self.counts.start()
        logger.info(f"[SESSION] Opened session for party {self.party_id}")

    async def settle(self) -> None:
        """Wait until every delivered change has been applied."""
        await self.controller.drain()
        await self.counts.drain()

    def _on_incoming_call(self, call: Optional[IncomingCall]) -> None:
        if self._closed:
            return
        if call is not None:
            self._ringback_start = asyncio.create_task(
                self.ringback.start(), name=f"ringback-start-{self.party_id}"
            )
        else:
            self._cancel_ringback_start()
            self.ringback.stop()

    def _cancel_ringback_start(self) -> None:
        task, self._ringback_start = self._ringback_start, None
        if task is not None and not task.done():
            task.cancel()

    async def accept(self) -> Optional[CallRecord]:
        """Accept the held call and start watching connection quality."""
        record = await self.controller.accept()
        if record is not None and not self._closed:
            self.active_call = record
            self.quality.enable()
        return record

    async def reject(self) -> Optional[CallRecord]:
        return await self.controller.reject()

    def clear(self) -> None:
        self.controller.clear_current()

    def attach_transport(self, transport: Optional[Transport]) -> None:
        """Hand the media transport of the active call to the quality monitor."""
        self.quality.set_transport(transport)

    def detach_transport(self) -> None:
        self.quality.set_transport(None)
        self.quality.disable()
        self.active_call = None

    def close(self) -> None:
        """Tear everything down; no timer fires after this returns."""
        if self._closed:
            return
        self._closed = True
        self.controller.dispose()
        self._cancel_ringback_start()
        self.ringback.stop()
        self.quality.close()
        self.counts.close()
        logger.info(f"[SESSION] Closed session for party {self.party_id}")
