#!/usr/bin/env python3
"""
Test Tone Generator
===================
Synthesizes the tones used by the analyzer: the continuous emitted tone for
Doppler mode (played live through ``SineToneGenerator``) and multi-tone WAV
files for exercising the peak lock.

Usage:
    python generate_audio.py --freq 18500
    python generate_audio.py --freq 440 --freq 880 --amplitude 0.6 --amplitude 0.3
"""

import argparse
import math
import threading
from typing import Optional, Sequence

import numpy as np
from scipy.io import wavfile

from analyzer_config import DEFAULT_EMITTED_FREQ, DEFAULT_SAMPLE_RATE, DEFAULT_VOLUME

# Default parameters
DEFAULT_DURATION = 30  # seconds

TWO_PI = 2 * math.pi


def generate_single_tone(
    frequency: float = DEFAULT_EMITTED_FREQ,
    duration: float = DEFAULT_DURATION,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    amplitude: float = 0.8
) -> np.ndarray:
    """
    Fixed-length sine for offline WAV test files.

    Live emission goes through ``SineToneGenerator``; this renders the same
    tone in one go, e.g. to play an 18.5 kHz reference from another device.
    """
    t = np.arange(int(sample_rate * duration)) / sample_rate
    return amplitude * np.sin(TWO_PI * frequency * t)


def generate_multi_tone(
    frequencies: Sequence[float],
    amplitudes: Optional[Sequence[float]] = None,
    duration: float = DEFAULT_DURATION,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    num_samples: Optional[int] = None,
) -> np.ndarray:
    """
    Sum of sinusoids, one per frequency.

    Args:
        frequencies: Tone frequencies in Hz
        amplitudes: Per-tone amplitude, defaults to an equal share of 0.9
        duration: Signal duration in seconds (ignored if num_samples is given)
        sample_rate: Sample rate in Hz
        num_samples: Exact output length

    Returns:
        numpy array of audio samples
    """
    if amplitudes is None:
        amplitudes = [0.9 / max(len(frequencies), 1)] * len(frequencies)
    if len(amplitudes) != len(frequencies):
        raise ValueError("need one amplitude per frequency")
    n = int(sample_rate * duration) if num_samples is None else num_samples
    t = np.arange(n) / sample_rate
    signal = np.zeros(n)
    for freq, amp in zip(frequencies, amplitudes):
        signal += amp * np.sin(TWO_PI * freq * t)
    return signal


def save_wav(signal: np.ndarray, filename: str, sample_rate: int = DEFAULT_SAMPLE_RATE):
    """Save signal to WAV file as normalized 16-bit PCM."""
    peak = np.max(np.abs(signal)) if signal.size else 0.0
    signal_normalized = signal / (peak + 1e-10) * 0.9
    signal_16bit = (signal_normalized * 32767).astype(np.int16)
    wavfile.write(filename, sample_rate, signal_16bit)


class SineToneGenerator:
    """Phase-continuous sine source for an audio output callback.

    Frequency and volume may be changed from another thread while the
    callback runs; the phase carries over between blocks so changing the
    frequency never clicks.
    """

    def __init__(
        self,
        frequency: float = DEFAULT_EMITTED_FREQ,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        volume: float = DEFAULT_VOLUME,
    ):
        self.sample_rate = sample_rate
        self._lock = threading.Lock()
        self._phase = 0.0
        self._frequency = float(frequency)
        self._volume = float(volume)

    @property
    def frequency(self) -> float:
        return self._frequency

    @frequency.setter
    def frequency(self, value: float) -> None:
        with self._lock:
            self._frequency = float(value)

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        with self._lock:
            self._volume = min(max(float(value), 0.0), 1.0)

    @property
    def phase_increment(self) -> float:
        return TWO_PI * self._frequency / self.sample_rate

    def next_block(self, num_frames: int) -> np.ndarray:
        """Next ``num_frames`` mono samples, volume applied."""
        with self._lock:
            increment = self.phase_increment
            phases = self._phase + increment * np.arange(num_frames)
            self._phase = (self._phase + increment * num_frames) % TWO_PI
            volume = self._volume
        return (volume * np.sin(phases)).astype(np.float32)

    def fill(self, outdata: np.ndarray) -> None:
        """Fill a (frames, channels) output buffer, same sample on every channel."""
        block = self.next_block(outdata.shape[0])
        if outdata.ndim == 1:
            outdata[:] = block
        else:
            outdata[:] = block[:, np.newaxis]


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Generate analyzer test tones as WAV files")
    parser.add_argument("--freq", type=float, action="append",
                        help=f"tone frequency in Hz, repeat for multiple tones [{DEFAULT_EMITTED_FREQ}]")
    parser.add_argument("--amplitude", type=float, action="append",
                        help="per-tone amplitude, one per --freq")
    parser.add_argument("--duration", type=float, default=DEFAULT_DURATION)
    parser.add_argument("--sample-rate", type=int, default=DEFAULT_SAMPLE_RATE)
    parser.add_argument("--output", help="output WAV path")
    args = parser.parse_args(argv)

    freqs = args.freq or [DEFAULT_EMITTED_FREQ]
    if len(freqs) == 1 and not args.amplitude:
        signal = generate_single_tone(freqs[0], args.duration, args.sample_rate)
    else:
        signal = generate_multi_tone(freqs, args.amplitude, args.duration, args.sample_rate)

    filename = args.output or "tone_" + "_".join(f"{int(f)}Hz" for f in freqs) + ".wav"
    save_wav(signal, filename, args.sample_rate)
    print(f"Saved: {filename} ({args.duration:.1f} seconds)")


if __name__ == "__main__":
    main()
