"""
Shared fixtures for the test suite.

Synthetic tones and small configurations so the tests run without any audio
hardware.
"""

import numpy as np
import pytest

from analyzer_config import AnalyzerConfig


SAMPLE_RATE = 44100
BUFFER_SIZE = 4096


def make_tone_frame(
    freqs,
    amplitudes=None,
    sample_rate: int = SAMPLE_RATE,
    buffer_size: int = BUFFER_SIZE,
) -> np.ndarray:
    """One analysis frame holding a sum of sinusoids."""
    if amplitudes is None:
        amplitudes = [0.5] * len(freqs)
    t = np.arange(buffer_size) / sample_rate
    frame = np.zeros(buffer_size)
    for freq, amp in zip(freqs, amplitudes):
        frame += amp * np.sin(2 * np.pi * freq * t)
    return frame.astype(np.float32)


def make_noise_frame(amplitude: float = 0.01, buffer_size: int = BUFFER_SIZE, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(buffer_size) * amplitude).astype(np.float32)


@pytest.fixture
def config():
    """Small lookback so warm-up is quick."""
    return AnalyzerConfig(sample_rate=SAMPLE_RATE, buffer_size=BUFFER_SIZE, lookback=5)


@pytest.fixture
def doppler_config():
    return AnalyzerConfig(
        sample_rate=SAMPLE_RATE, buffer_size=BUFFER_SIZE, lookback=5, emitted_freq=18500.0
    )
