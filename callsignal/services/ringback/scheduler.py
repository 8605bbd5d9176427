"""Ringback scheduler: loops a synthesized ringtone while a call rings."""
import asyncio
import logging
from typing import Callable, Optional, Sequence

from callsignal.core.config import settings
from callsignal.services.ringback.audio import (
    AudioBackend,
    AudioBuffer,
    AudioContext,
    OutputNode,
    Playback,
)
from callsignal.services.ringback.synth import burst_pattern_duration, synthesize_ringtone

logger = logging.getLogger(__name__)


class RingbackScheduler:
    """
    Owns the audio context and output node for one ringing session.

    ``start`` opens a context, renders the ringtone once and replays it
    every ``retrigger_interval`` seconds. ``stop`` may be called at any
    time, any number of times; it cancels the retrigger task before
    touching audio resources and never raises.
    """

    def __init__(
        self,
        backend: AudioBackend,
        settle_delay: float = settings.ringback_settle_delay,
        gain: float = settings.ringback_gain,
        tones: Sequence[float] = tuple(settings.ringback_tones),
        tone_on: float = settings.ringback_tone_on,
        tone_off: float = settings.ringback_tone_off,
        bursts: int = settings.ringback_bursts,
        retrigger_margin: float = settings.ringback_retrigger_margin,
    ):
        self.backend = backend
        self.settle_delay = settle_delay
        self.gain = gain
        self.tones = tuple(tones)
        self.tone_on = tone_on
        self.tone_off = tone_off
        self.bursts = bursts
        self.retrigger_margin = retrigger_margin
        self._context: Optional[AudioContext] = None
        self._buffer: Optional[AudioBuffer] = None
        self._output: Optional[OutputNode] = None
        self._playback: Optional[Playback] = None
        self._task: Optional[asyncio.Task] = None
        self._playing = False
        # Bumped by every start and stop; a start that resumes under a newer generation gives up.
        self._generation = 0

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def has_pending_retrigger(self) -> bool:
        return self._task is not None

    @property
    def retrigger_interval(self) -> float:
        """Seconds between retriggers: one rendered buffer plus a margin."""
        return burst_pattern_duration(self.tone_on, self.tone_off, self.bursts) + self.retrigger_margin

    async def start(self) -> None:
        """Start ringing, restarting cleanly if already playing."""
        self._generation += 1
        generation = self._generation

        if self._playing:
            self._release()
            await asyncio.sleep(self.settle_delay)
            if generation != self._generation:
                logger.debug("[RINGBACK] Start superseded while settling")
                return

        try:
            context = self.backend.open_context()
        except Exception as e:
            logger.error(f"[RINGBACK] Could not open audio context: {type(e).__name__}: {e}")
            return

        self._context = context
        if self._buffer is None:
            samples = synthesize_ringtone(
                context.sample_rate,
                tones=self.tones,
                tone_on=self.tone_on,
                tone_off=self.tone_off,
                bursts=self.bursts,
            )
            self._buffer = context.create_buffer(samples)
            logger.debug(f"[RINGBACK] Rendered {self._buffer.duration:.2f}s ringtone")

        self._playing = True
        self._play_once()
        if self._playing:
            self._task = asyncio.create_task(self._retrigger(generation), name="ringback-retrigger")
            logger.info(f"[RINGBACK] Started, retrigger every {self.retrigger_interval:.2f}s")

    def stop(self) -> None:
        """Silence and release everything. Idempotent and never raises."""
        self._generation += 1
        was_playing = self._playing
        self._release()
        if was_playing:
            logger.info("[RINGBACK] Stopped")

    async def _retrigger(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.retrigger_interval)
            if generation != self._generation or not self._playing:
                return
            self._play_once()

    def _play_once(self) -> None:
        context = self._context
        if not self._playing or context is None or self._buffer is None:
            return
        self._release_output()
        try:
            output = context.create_output(self.gain)
            self._output = output
            self._playback = context.play(self._buffer, output)
        except Exception as e:
            logger.error(f"[RINGBACK] Playback failed: {type(e).__name__}: {e}")
            self.stop()

    def _release(self) -> None:
        self._playing = False

        # Cancel the schedule first so it cannot replay into released resources.
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

        self._release_output()

        context, self._context = self._context, None
        if context is not None:
            _quietly("close audio context", context.close)

        self._buffer = None

    def _release_output(self) -> None:
        playback, self._playback = self._playback, None
        if playback is not None:
            _quietly("stop playback", playback.stop)

        output, self._output = self._output, None
        if output is not None:
            _quietly("mute output", output.set_gain, 0.0)
            _quietly("disconnect output", output.disconnect)


def _quietly(step: str, action: Callable, *args) -> None:
    try:
        action(*args)
    except Exception as e:
        logger.debug(f"[RINGBACK] Ignoring failure to {step}: {type(e).__name__}: {e}")
