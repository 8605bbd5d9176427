"""Periodic connection quality monitor."""
import asyncio
import logging
import time
from typing import Callable, List, Optional

from callsignal.core.config import settings
from callsignal.core.errors import TransportError
from callsignal.services.quality.classifier import classify, extract_metrics, packet_loss_percent
from callsignal.services.quality.models import DISCONNECTED_SNAPSHOT, QualitySnapshot
from callsignal.services.quality.transport import Transport

logger = logging.getLogger(__name__)

QualityListener = Callable[[QualitySnapshot], None]


class ConnectionQualityMonitor:
    """
    Samples transport statistics on a fixed interval and republishes a
    quality snapshot.

    Polling runs only while the monitor is enabled and holds a transport.
    A failed sample keeps the previous snapshot.
    """

    def __init__(
        self,
        interval: float = settings.quality_poll_interval,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self._clock = clock
        self._transport: Optional[Transport] = None
        self._enabled = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._snapshot = DISCONNECTED_SNAPSHOT
        self._listeners: List[QualityListener] = []
        self._last_bytes_received = 0
        self._last_sample_at: Optional[float] = None
        self.bitrate_kbps = 0.0

    @property
    def snapshot(self) -> QualitySnapshot:
        return self._snapshot

    @property
    def is_polling(self) -> bool:
        return self._task is not None

    def add_listener(self, listener: QualityListener) -> None:
        self._listeners.append(listener)

    def set_transport(self, transport: Optional[Transport]) -> None:
        """Point the monitor at a new transport handle, or detach with ``None``."""
        if transport is self._transport:
            return
        self._stop_polling()
        self._transport = transport
        self._last_bytes_received = 0
        self._last_sample_at = None
        self.bitrate_kbps = 0.0
        self._reconcile()

    def enable(self) -> None:
        self._enabled = True
        self._reconcile()

    def disable(self) -> None:
        self._enabled = False
        self._reconcile()

    def close(self) -> None:
        """Stop polling for good. Safe to call repeatedly."""
        self._closed = True
        self._enabled = False
        self._stop_polling()
        self._transport = None
        self._listeners.clear()

    def _reconcile(self) -> None:
        if self._closed:
            return
        if self._enabled and self._transport is not None:
            if self._task is None:
                self._task = asyncio.create_task(self._run(self._transport), name="quality-monitor")
                logger.debug(f"[QUALITY] Polling every {self.interval}s")
        else:
            self._stop_polling()

    def _stop_polling(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("[QUALITY] Polling stopped")

    async def _run(self, transport: Transport) -> None:
        while True:
            try:
                await self.sample(transport)
            except Exception as e:
                logger.error(f"[QUALITY] Sample failed: {type(e).__name__}: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def sample(self, transport: Optional[Transport] = None) -> QualitySnapshot:
        """Take one sample and publish the result; returns the current snapshot."""
        transport = transport or self._transport
        if transport is None or self._closed:
            return self._snapshot

        try:
            reports = await transport.get_stats()
        except Exception as e:
            error = TransportError(f"Stats query failed: {type(e).__name__}: {e}")
            logger.warning(f"[QUALITY] {error}; keeping last snapshot ({self._snapshot.level})")
            return self._snapshot

        # The handle may have been swapped or the monitor closed while waiting.
        if self._closed or transport is not self._transport:
            return self._snapshot

        metrics = extract_metrics(reports)
        loss = packet_loss_percent(metrics.packets_received, metrics.packets_lost)

        now = self._clock()
        if self._last_sample_at is not None and now > self._last_sample_at:
            elapsed_ms = (now - self._last_sample_at) * 1000
            self.bitrate_kbps = (metrics.bytes_received - self._last_bytes_received) * 8 / elapsed_ms
        self._last_bytes_received = metrics.bytes_received
        self._last_sample_at = now

        snapshot = classify(metrics.rtt, loss, metrics.jitter, transport.connection_state)
        self._publish(snapshot)
        return snapshot

    def _publish(self, snapshot: QualitySnapshot) -> None:
        if snapshot.level != self._snapshot.level:
            logger.info(f"[QUALITY] {self._snapshot.level} -> {snapshot.level}")
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"[QUALITY] Listener raised: {type(e).__name__}: {e}", exc_info=True)
