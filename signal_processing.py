#!/usr/bin/env python3
"""
Signal Processing Functions for Tone Lock-In
============================================

This file contains the spectral analysis stages shared by the peak-lock and
Doppler paths of the pipeline.

Classes:
    - SpectralAnalyzer: time-domain frame -> one-sided dB magnitude spectrum
    - LoudnessGate: decides whether a frame is loud enough to freeze
    - PeakLocator: locks the two strongest, well-separated tones of a frozen
      spectrum with sub-bin accuracy
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Tuple

import numpy as np
from scipy.fft import rfft

from analyzer_config import ConfigurationError


_LOG = logging.getLogger(__name__)

# Added to magnitudes before taking the log so silence maps to a finite floor
DB_FLOOR_EPS = 1e-10


def bin_to_frequency(bin_index: float, resolution: float) -> float:
    return bin_index * resolution


def frequency_to_bin(freq: float, resolution: float) -> int:
    """Nearest spectrum bin for a frequency in Hz."""
    return int(round(freq / resolution))


def _read_only_copy(data: np.ndarray) -> np.ndarray:
    out = np.array(data, copy=True)
    out.flags.writeable = False
    return out


# ============== Spectral Analysis ==============

class SpectralAnalyzer:
    """Forward FFT of a fixed-size frame, reported as dB magnitude.

    A Hanning window is applied before the transform to reduce spectral
    leakage. The output holds ``buffer_size // 2`` bins; bin ``i`` sits at
    ``i * sample_rate / buffer_size`` Hz.
    """

    def __init__(self, buffer_size: int, sample_rate: int):
        self.buffer_size = buffer_size
        self.sample_rate = sample_rate
        self._window: Optional[np.ndarray] = None
        self.open()

    @property
    def frequency_resolution(self) -> float:
        return self.sample_rate / self.buffer_size

    @property
    def closed(self) -> bool:
        return self._window is None

    def open(self) -> None:
        if self._window is None:
            self._window = np.hanning(self.buffer_size)

    def close(self) -> None:
        """Release the transform window; ``open()`` makes the analyzer usable again."""
        self._window = None

    def frequencies(self) -> np.ndarray:
        """Center frequency of every output bin."""
        return np.arange(self.buffer_size // 2) * self.frequency_resolution

    def analyze(self, frame: np.ndarray) -> np.ndarray:
        """
        Compute the magnitude spectrum of one frame.

        Args:
            frame: 1D array of exactly ``buffer_size`` time-domain samples

        Returns:
            Array of ``buffer_size // 2`` magnitudes in dB

        Raises:
            ConfigurationError: if the frame length differs from the buffer size
        """
        frame = np.asarray(frame, dtype=np.float64)
        if frame.ndim != 1 or frame.size != self.buffer_size:
            raise ConfigurationError(
                f"frame of shape {frame.shape} does not match buffer size {self.buffer_size}"
            )
        if self._window is None:
            raise RuntimeError("SpectralAnalyzer is closed")

        magnitude = np.abs(rfft(frame * self._window))[: self.buffer_size // 2]
        return 20 * np.log10(magnitude + DB_FLOOR_EPS)


def zoom_spectrum(spectrum: np.ndarray, center_bin: int, zoom: int) -> Tuple[int, np.ndarray]:
    """
    Slice ``zoom`` bins centred on ``center_bin``, clamped to the spectrum.

    Returns:
        Tuple of (index of the first returned bin, bins)
    """
    half = zoom // 2
    start = max(0, center_bin - half)
    end = min(len(spectrum), center_bin + half + 1)
    return start, np.array(spectrum[start:end], copy=True)


# ============== Loudness Gate ==============

@dataclass(frozen=True)
class FrozenSnapshot:
    """Frame/spectrum pair captured the instant the loudness gate fired."""
    frame: np.ndarray
    spectrum: np.ndarray
    max_amplitude: float
    excursion: float  # relative rise above the weighted baseline
    timestamp: float

    @classmethod
    def capture(
        cls,
        frame: np.ndarray,
        spectrum: np.ndarray,
        max_amplitude: float,
        excursion: float,
    ) -> "FrozenSnapshot":
        return cls(
            frame=_read_only_copy(frame),
            spectrum=_read_only_copy(spectrum),
            max_amplitude=max_amplitude,
            excursion=excursion,
            timestamp=time.monotonic(),
        )


class LoudnessGate:
    """Adaptive loudness detector over a weighted history of frame peaks.

    The history holds the peak absolute amplitude of the last ``lookback``
    frames, newest first. Entry ``i`` (1 = newest) carries the weight
    ``(lookback + 1 - i) / (lookback + 1)``. A frame is loud when its own
    peak exceeds the weighted baseline by more than ``cutoff`` (relative).

    The gate never fires before the history is full, and never fires over a
    zero baseline.
    """

    def __init__(self, lookback: int, cutoff: float = 1.0):
        if lookback < 1:
            raise ConfigurationError("lookback must be at least 1")
        self.lookback = lookback
        self.cutoff = cutoff
        self._history: Deque[float] = deque(maxlen=lookback)
        positions = np.arange(1, lookback + 1)
        self._weights = (lookback + 1 - positions) / (lookback + 1)
        self._snapshot: Optional[FrozenSnapshot] = None

    @property
    def history(self) -> List[float]:
        """Peak amplitudes, newest first."""
        return list(self._history)

    @property
    def warmed_up(self) -> bool:
        return len(self._history) >= self.lookback

    @property
    def snapshot(self) -> Optional[FrozenSnapshot]:
        """Last frozen frame/spectrum, or None before the first loud frame."""
        return self._snapshot

    def weighted_baseline(self) -> Optional[float]:
        """Weighted average of the history; None until the history is full."""
        if not self.warmed_up:
            return None
        values = np.fromiter(self._history, dtype=np.float64, count=self.lookback)
        return float(np.dot(self._weights, values) / self._weights.sum())

    def update(
        self,
        frame: np.ndarray,
        spectrum: np.ndarray,
        cutoff: Optional[float] = None,
    ) -> bool:
        """
        Feed one frame and its spectrum through the gate.

        Args:
            frame: Time-domain samples of the current frame
            spectrum: Spectrum computed from ``frame``
            cutoff: Override of the configured relative threshold

        Returns:
            True if the frame was loud and has been frozen into ``snapshot``
        """
        cutoff = self.cutoff if cutoff is None else cutoff
        frame = np.asarray(frame)
        max_time_val = float(np.max(np.abs(frame))) if frame.size else 0.0

        loud = False
        baseline = self.weighted_baseline()
        if baseline is not None and baseline > 0.0:
            pct_diff = (max_time_val - baseline) / baseline
            if pct_diff > cutoff:
                self._snapshot = FrozenSnapshot.capture(frame, spectrum, max_time_val, pct_diff)
                loud = True
                _LOG.debug("Loud frame: peak %.4f, %.0f%% above baseline", max_time_val, 100 * pct_diff)

        self._history.appendleft(max_time_val)
        return loud

    def reset(self) -> None:
        self._history.clear()
        self._snapshot = None


# ============== Peak Locator ==============

@dataclass(frozen=True)
class PeakCandidate:
    """Local maximum of a spectrum."""
    bin_index: int
    frequency: float  # raw bin frequency, Hz
    magnitude: float  # dB


@dataclass(frozen=True)
class TrackedPeak:
    frequency: float  # refined, Hz
    magnitude: float  # dB at the interpolated vertex
    bin_index: int


@dataclass(frozen=True)
class TrackedPeakPair:
    """The two locked tones; a slot is None until something was found for it."""
    primary: Optional[TrackedPeak] = None
    secondary: Optional[TrackedPeak] = None
    locked_at: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.primary is not None and self.secondary is not None

    @property
    def frequencies(self) -> Tuple[Optional[float], Optional[float]]:
        return (
            self.primary.frequency if self.primary else None,
            self.secondary.frequency if self.secondary else None,
        )


def quadratic_peak_offset(left: float, center: float, right: float) -> float:
    """
    Sub-bin offset of a parabola's vertex fitted through three bins.

    Returns:
        Offset in bins relative to the center bin, 0.0 for a flat region
    """
    denom = left - 2 * center + right
    if denom == 0:
        return 0.0
    return 0.5 * (left - right) / denom


def find_local_maxima(spectrum: np.ndarray, window: int, resolution: float) -> List[PeakCandidate]:
    """Bins equal to the maximum of the ``window`` bins centred on them."""
    spectrum = np.asarray(spectrum, dtype=np.float64)
    half = window // 2
    if spectrum.size < window:
        return []
    window_max = np.lib.stride_tricks.sliding_window_view(spectrum, window).max(axis=1)
    centers = np.arange(half, spectrum.size - half)
    peak_bins = centers[spectrum[centers] == window_max]
    return [
        PeakCandidate(int(k), bin_to_frequency(int(k), resolution), float(spectrum[k]))
        for k in peak_bins
    ]


class PeakLocator:
    """Locks the two loudest separated tones of a frozen spectrum.

    Candidates are taken strongest first; a candidate is accepted only if its
    refined frequency is at least ``min_separation`` Hz away from every peak
    already accepted. The locked pair only changes when ``locate`` is called,
    i.e. right after the loudness gate fired.
    """

    def __init__(
        self,
        sample_rate: int,
        buffer_size: int,
        window: int = 3,
        min_separation: float = 50.0,
    ):
        if window < 3 or window % 2 == 0:
            raise ConfigurationError(f"peak window must be odd and >= 3, got {window}")
        self.resolution = sample_rate / buffer_size
        self.window = window
        self.min_separation = min_separation
        self._pair = TrackedPeakPair()

    @property
    def peaks(self) -> TrackedPeakPair:
        return self._pair

    def candidates(self, spectrum: np.ndarray) -> List[PeakCandidate]:
        """Local maxima sorted by descending magnitude."""
        found = find_local_maxima(spectrum, self.window, self.resolution)
        return sorted(found, key=lambda c: c.magnitude, reverse=True)

    def refine(self, spectrum: np.ndarray, k: int) -> Tuple[float, float]:
        """Quadratic interpolation around bin ``k``; returns (frequency, magnitude)."""
        left, center, right = (float(v) for v in spectrum[k - 1:k + 2])
        p = quadratic_peak_offset(left, center, right)
        freq = bin_to_frequency(k, self.resolution) + p * self.resolution
        magnitude = center - 0.25 * (left - right) * p
        return freq, magnitude

    def select(self, spectrum: np.ndarray, count: int = 2) -> List[TrackedPeak]:
        """Strongest ``count`` peaks honouring the minimum separation."""
        accepted: List[TrackedPeak] = []
        for cand in self.candidates(spectrum):
            freq, magnitude = self.refine(spectrum, cand.bin_index)
            if all(abs(freq - p.frequency) >= self.min_separation for p in accepted):
                accepted.append(TrackedPeak(freq, magnitude, cand.bin_index))
                if len(accepted) == count:
                    break
        return accepted

    def locate(self, snapshot: FrozenSnapshot) -> TrackedPeakPair:
        """
        Re-lock the peak pair from a freshly frozen snapshot.

        A slot with nothing new keeps its previous value, as long as that
        value still respects the minimum separation from the new primary.
        """
        found = self.select(snapshot.spectrum)
        primary = found[0] if found else self._pair.primary
        if len(found) > 1:
            secondary = found[1]
        else:
            secondary = self._pair.secondary
            if (
                secondary is not None
                and primary is not None
                and abs(secondary.frequency - primary.frequency) < self.min_separation
            ):
                secondary = None

        self._pair = TrackedPeakPair(primary, secondary, locked_at=snapshot.timestamp)
        _LOG.info("Locked peaks: %s", ", ".join(
            f"{f:.1f} Hz" for f in self._pair.frequencies if f is not None
        ) or "none")
        return self._pair

    def reset(self) -> None:
        self._pair = TrackedPeakPair()
