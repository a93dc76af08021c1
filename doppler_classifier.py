#!/usr/bin/env python3
"""
Doppler Direction Classifier
============================

Classifies relative motion from the asymmetry of spectral energy around a
known emitted tone. Motion toward the microphone pushes energy above the
tone, motion away pushes it below.

Each cycle measures how many consecutive bins on either side of the emitted
bin stay above ``ratio`` times the emitted bin's level, turns the left/right
counts into a vote, and reports the majority of the last few votes.
"""

import logging
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Optional

import numpy as np

from signal_processing import frequency_to_bin


_LOG = logging.getLogger(__name__)


class DopplerDirection(Enum):
    APPROACHING = "approaching"
    RECEDING = "receding"
    STATIONARY = "stationary"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    DopplerDirection.APPROACHING: "Moving Toward",
    DopplerDirection.RECEDING: "Moving Away",
    DopplerDirection.STATIONARY: "No Movement",
}


@dataclass(frozen=True)
class LobeWidth:
    """Bins on each side of the emitted tone that kept most of its level."""
    center_bin: int
    left: int
    right: int

    @property
    def asymmetry(self) -> int:
        return self.right - self.left


class DopplerClassifier:
    """Left/right energy-walk classifier with majority-vote smoothing."""

    def __init__(
        self,
        sample_rate: int,
        buffer_size: int,
        ratio: float = 0.85,
        window: int = 10,
        small_diff: int = 2,
        history: int = 5,
    ):
        self.resolution = sample_rate / buffer_size
        self.ratio = ratio
        self.window = window
        self.small_diff = small_diff
        self.history = history
        self._votes: Deque[DopplerDirection] = deque(maxlen=history)
        self._direction = DopplerDirection.STATIONARY
        self._last_lobe: Optional[LobeWidth] = None

    @property
    def direction(self) -> DopplerDirection:
        """Smoothed classification."""
        return self._direction

    @property
    def votes(self) -> List[DopplerDirection]:
        """Vote history, oldest first."""
        return list(self._votes)

    @property
    def last_lobe(self) -> Optional[LobeWidth]:
        return self._last_lobe

    def measure_lobe(self, spectrum: np.ndarray, emitted_freq: float) -> LobeWidth:
        """
        Walk outward from the emitted bin on both sides.

        Levels are compared as linear amplitudes recovered from the dB
        spectrum. Each walk stops at the first bin below the threshold, after
        ``window`` bins, or at the spectrum edge.
        """
        spectrum = np.asarray(spectrum, dtype=np.float64)
        last = len(spectrum) - 1
        center = min(max(frequency_to_bin(emitted_freq, self.resolution), 0), last)
        lo = max(0, center - self.window)
        hi = min(last, center + self.window)
        level = 10.0 ** (spectrum[lo:hi + 1] / 20.0)
        threshold = self.ratio * level[center - lo]

        left = 0
        for idx in range(center - 1, lo - 1, -1):
            if level[idx - lo] <= threshold:
                break
            left += 1

        right = 0
        for idx in range(center + 1, hi + 1):
            if level[idx - lo] <= threshold:
                break
            right += 1

        return LobeWidth(center, left, right)

    def vote(self, lobe: LobeWidth) -> DopplerDirection:
        """Single-cycle classification of a lobe measurement."""
        if abs(lobe.left - lobe.right) <= self.small_diff:
            return DopplerDirection.STATIONARY
        if lobe.right > lobe.left:
            return DopplerDirection.APPROACHING
        return DopplerDirection.RECEDING

    def push(self, vote: DopplerDirection) -> DopplerDirection:
        """Record a vote and return the updated smoothed direction."""
        self._votes.append(vote)
        direction = self.majority()
        if direction is not self._direction:
            _LOG.info("Doppler direction: %s", direction.value)
        self._direction = direction
        return direction

    def majority(self) -> DopplerDirection:
        """Category holding more than half of the history slots, else stationary."""
        counts = Counter(self._votes)
        for direction in (DopplerDirection.APPROACHING, DopplerDirection.RECEDING):
            if 2 * counts[direction] > self.history:
                return direction
        return DopplerDirection.STATIONARY

    def classify(self, spectrum: np.ndarray, emitted_freq: float) -> DopplerDirection:
        lobe = self.measure_lobe(spectrum, emitted_freq)
        self._last_lobe = lobe
        vote = self.vote(lobe)
        _LOG.debug("Lobe left=%d right=%d -> %s", lobe.left, lobe.right, vote.value)
        return self.push(vote)

    def reset(self) -> None:
        self._votes.clear()
        self._direction = DopplerDirection.STATIONARY
        self._last_lobe = None
