"""Audio output interface and the headless in-memory backend."""
import logging
from abc import ABC, abstractmethod
from typing import List

import numpy as np

from callsignal.core.errors import ResourceReleaseError

logger = logging.getLogger(__name__)


class AudioBuffer:
    """Mono float32 samples bound to a sample rate."""

    def __init__(self, samples: np.ndarray, sample_rate: int):
        self.samples = np.asarray(samples, dtype=np.float32)
        self.sample_rate = sample_rate

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return len(self.samples) / self.sample_rate


class OutputNode(ABC):
    """Gain stage between a playback and the output device."""

    @abstractmethod
    def set_gain(self, gain: float) -> None:
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass


class Playback(ABC):
    """One in-flight rendering of a buffer."""

    @abstractmethod
    def stop(self) -> None:
        pass


class AudioContext(ABC):
    """An audio-processing context owning the output device."""

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        pass

    def create_buffer(self, samples: np.ndarray) -> AudioBuffer:
        """Wrap samples for playback in this context."""
        return AudioBuffer(samples, self.sample_rate)

    @abstractmethod
    def create_output(self, gain: float) -> OutputNode:
        pass

    @abstractmethod
    def play(self, buffer: AudioBuffer, output: OutputNode) -> Playback:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class AudioBackend(ABC):
    """Opens audio contexts on some output device."""

    @abstractmethod
    def open_context(self) -> AudioContext:
        pass


class InMemoryOutputNode(OutputNode):
    def __init__(self, gain: float):
        self.gain = gain
        self.connected = True

    def set_gain(self, gain: float) -> None:
        if not self.connected:
            raise ResourceReleaseError("Output node is disconnected")
        self.gain = gain

    def disconnect(self) -> None:
        if not self.connected:
            raise ResourceReleaseError("Output node already disconnected")
        self.connected = False


class InMemoryPlayback(Playback):
    def __init__(self, buffer: AudioBuffer, output: InMemoryOutputNode):
        self.buffer = buffer
        self.output = output
        self.stopped = False

    @property
    def audible(self) -> bool:
        return not self.stopped and self.output.connected and self.output.gain > 0

    def stop(self) -> None:
        if self.stopped:
            raise ResourceReleaseError("Playback already stopped")
        self.stopped = True


class InMemoryAudioContext(AudioContext):
    """Records every playback instead of driving a device."""

    def __init__(self, sample_rate: int):
        self._sample_rate = sample_rate
        self.closed = False
        self.playbacks: List[InMemoryPlayback] = []

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def create_output(self, gain: float) -> InMemoryOutputNode:
        if self.closed:
            raise RuntimeError("Audio context is closed")
        return InMemoryOutputNode(gain)

    def play(self, buffer: AudioBuffer, output: OutputNode) -> InMemoryPlayback:
        if self.closed:
            raise RuntimeError("Audio context is closed")
        playback = InMemoryPlayback(buffer, output)
        self.playbacks.append(playback)
        return playback

    def close(self) -> None:
        if self.closed:
            raise ResourceReleaseError("Audio context already closed")
        self.closed = True

    @property
    def audible(self) -> bool:
        return not self.closed and any(p.audible for p in self.playbacks)


class InMemoryAudioBackend(AudioBackend):
    """Headless backend; keeps every context it opened for inspection."""

    def __init__(self, sample_rate: int = 8000):
        self.sample_rate = sample_rate
        self.contexts: List[InMemoryAudioContext] = []

    def open_context(self) -> InMemoryAudioContext:
        context = InMemoryAudioContext(self.sample_rate)
        self.contexts.append(context)
        logger.debug(f"[AUDIO] Opened in-memory context #{len(self.contexts)}")
        return context

    @property
    def audible(self) -> bool:
        return any(context.audible for context in self.contexts)

    @property
    def play_count(self) -> int:
        return sum(len(context.playbacks) for context in self.contexts)
