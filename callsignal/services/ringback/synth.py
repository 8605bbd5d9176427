"""Ringtone waveform synthesis."""
from typing import Sequence

import numpy as np

RAMP_SECONDS = 0.01


def burst_pattern_duration(tone_on: float, tone_off: float, bursts: int) -> float:
    """Seconds covered by ``bursts`` on/off cycles."""
    return (tone_on + tone_off) * bursts


def synthesize_ringtone(
    sample_rate: int,
    tones: Sequence[float] = (440.0, 480.0),
    tone_on: float = 0.4,
    tone_off: float = 0.2,
    bursts: int = 3,
) -> np.ndarray:
    """
    Render a ringback pattern as mono float32 samples in [-1, 1].

    The superposed ``tones`` are gated into ``bursts`` cycles of
    ``tone_on`` seconds of sound followed by ``tone_off`` seconds of
    silence. Each burst gets a short linear attack and release so the
    gate does not click.
    """
    if sample_rate <= 0:
        raise ValueError("sample_rate must be positive")
    if not tones:
        raise ValueError("at least one tone is required")
    if tone_on <= 0 or tone_off < 0 or bursts < 1:
        raise ValueError("invalid burst pattern")

    period = tone_on + tone_off
    n_samples = int(round(burst_pattern_duration(tone_on, tone_off, bursts) * sample_rate))
    t = np.arange(n_samples, dtype=np.float64) / sample_rate

    wave = np.zeros(n_samples, dtype=np.float64)
    for frequency in tones:
        wave += np.sin(2 * np.pi * frequency * t)
    wave /= len(tones)

    ramp = min(RAMP_SECONDS, tone_on / 4)
    phase = np.mod(t, period)
    # Negative inside the silent part of each cycle, clipped to 0.
    envelope = np.clip(np.minimum(phase, tone_on - phase) / ramp, 0.0, 1.0)

    return (wave * envelope).astype(np.float32)
