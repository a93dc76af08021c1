#!/usr/bin/env python3
"""
Circular Sample Buffer
======================

Fixed-capacity FIFO ring between the audio capture callback (writer) and the
analysis tick (reader). Only whole frames are ever drained; when the writer
outruns the reader the oldest samples are overwritten.
"""

import logging
import threading
from typing import Optional

import numpy as np


_LOG = logging.getLogger(__name__)


class CircularBuffer:
    """Thread-safe single-writer / single-reader sample ring."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._data = np.zeros(capacity, dtype=np.float32)
        self._lock = threading.Lock()
        self._read = 0  # index of oldest unread sample
        self._count = 0  # unread samples
        self.dropped = 0  # samples overwritten before being read

    def __len__(self) -> int:
        with self._lock:
            return self._count

    def append(self, samples: np.ndarray) -> None:
        """Write samples; overwrite the oldest unread ones if full."""
        samples = np.asarray(samples, dtype=np.float32).ravel()
        n = samples.size
        if n == 0:
            return
        if n > self.capacity:
            overflow = n - self.capacity
            samples = samples[overflow:]
            n = self.capacity
        else:
            overflow = 0

        with self._lock:
            write = (self._read + self._count) % self.capacity
            first = min(n, self.capacity - write)
            self._data[write:write + first] = samples[:first]
            if first < n:
                self._data[:n - first] = samples[first:]

            overflow += max(0, self._count + n - self.capacity)
            if self._count + n > self.capacity:
                # Writer lapped the reader
                self._read = (write + n) % self.capacity
                self._count = self.capacity
            else:
                self._count += n
            self.dropped += overflow

        if overflow:
            _LOG.warning("Ring buffer overrun: %d samples dropped", overflow)

    def drain(self, num_samples: int) -> Optional[np.ndarray]:
        """Remove and return the oldest ``num_samples`` samples.

        Returns None, leaving the buffer untouched, until that many fresh
        samples are available.
        """
        if num_samples > self.capacity:
            raise ValueError(
                f"cannot drain {num_samples} samples from a {self.capacity}-sample ring"
            )
        with self._lock:
            if self._count < num_samples:
                return None
            start = self._read
            end = start + num_samples
            if end <= self.capacity:
                out = self._data[start:end].copy()
            else:
                out = np.concatenate((self._data[start:], self._data[:end - self.capacity]))
            self._read = end % self.capacity
            self._count -= num_samples
        return out

    def clear(self) -> None:
        with self._lock:
            self._data.fill(0.0)
            self._read = 0
            self._count = 0
