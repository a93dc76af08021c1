#!/usr/bin/env python3
"""
Analyzer Configuration
======================

Default parameters and the configuration object shared by every stage of the
tone-lock / Doppler analysis pipeline.

All validation happens here, once, at setup time. A pipeline built from an
invalid configuration is never started.
"""

from dataclasses import dataclass
from typing import Optional


# ============== Default Parameters ==============
DEFAULT_SAMPLE_RATE = 44100
DEFAULT_BUFFER_SIZE = 4096
DEFAULT_CHANNELS = 1
DEFAULT_RING_FRAMES = 4  # ring buffer depth, in frames

# Loudness gate
DEFAULT_LOOKBACK = 45
DEFAULT_LOUDNESS_CUTOFF = 1.0  # 100% above the weighted baseline

# Peak locator
DEFAULT_PEAK_WINDOW = 3
DEFAULT_MIN_PEAK_SEPARATION = 50.0  # Hz

# Doppler classifier
DEFAULT_DOPPLER_RATIO = 0.85
DEFAULT_DOPPLER_WINDOW = 10  # bins walked on each side of the emitted tone
DEFAULT_SMALL_DIFF = 2
DEFAULT_VOTE_HISTORY = 5

# Tone emission
DEFAULT_EMITTED_FREQ = 18500.0  # Hz
LOWEST_EMITTED_FREQ = 17000.0
HIGHEST_EMITTED_FREQ = 20000.0
DEFAULT_VOLUME = 0.1

# Display
DEFAULT_FRAME_RATE = 20.0  # Hz
DEFAULT_ZOOM_WINDOW = 100  # bins


class ConfigurationError(ValueError):
    """Raised when the pipeline is set up with parameters it cannot honour."""


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


@dataclass
class AnalyzerConfig:
    """Every tunable of the analysis pipeline."""
    sample_rate: int = DEFAULT_SAMPLE_RATE
    buffer_size: int = DEFAULT_BUFFER_SIZE
    channels: int = DEFAULT_CHANNELS
    analysis_channel: int = 0
    ring_frames: int = DEFAULT_RING_FRAMES

    lookback: int = DEFAULT_LOOKBACK
    loudness_cutoff: float = DEFAULT_LOUDNESS_CUTOFF

    peak_window: int = DEFAULT_PEAK_WINDOW
    min_peak_separation: float = DEFAULT_MIN_PEAK_SEPARATION

    doppler_ratio: float = DEFAULT_DOPPLER_RATIO
    doppler_window: int = DEFAULT_DOPPLER_WINDOW
    small_diff: int = DEFAULT_SMALL_DIFF
    vote_history: int = DEFAULT_VOTE_HISTORY

    # None disables tone emission and Doppler classification
    emitted_freq: Optional[float] = None
    volume: float = DEFAULT_VOLUME

    frame_rate: float = DEFAULT_FRAME_RATE
    zoom_window: int = DEFAULT_ZOOM_WINDOW

    @property
    def frequency_resolution(self) -> float:
        """Width of one spectrum bin in Hz."""
        return self.sample_rate / self.buffer_size

    @property
    def spectrum_size(self) -> int:
        return self.buffer_size // 2

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.frame_rate

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    @property
    def doppler_enabled(self) -> bool:
        return self.emitted_freq is not None

    def check_emitted_freq(self, freq: float) -> float:
        """Return ``freq`` as a float if it lies strictly inside (0, Nyquist)."""
        freq = float(freq)
        if not 0.0 < freq < self.nyquist:
            raise ConfigurationError(
                f"emitted frequency {freq} Hz outside (0, {self.nyquist}) Hz"
            )
        return freq

    def check_tone_range(self, freq: float) -> float:
        """Like ``check_emitted_freq``, also bounded to the speaker tone range."""
        freq = self.check_emitted_freq(freq)
        if not LOWEST_EMITTED_FREQ <= freq <= HIGHEST_EMITTED_FREQ:
            raise ConfigurationError(
                f"emitted frequency {freq} Hz outside "
                f"[{LOWEST_EMITTED_FREQ}, {HIGHEST_EMITTED_FREQ}] Hz"
            )
        return freq

    def validate(self) -> "AnalyzerConfig":
        """Check every field; raise ConfigurationError on the first violation."""
        if self.sample_rate <= 0:
            raise ConfigurationError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.buffer_size < 8 or not is_power_of_two(self.buffer_size):
            raise ConfigurationError(
                f"buffer_size must be a power of two >= 8, got {self.buffer_size}"
            )
        if self.channels not in (1, 2):
            raise ConfigurationError("only mono or stereo capture is supported")
        if not 0 <= self.analysis_channel < self.channels:
            raise ConfigurationError(
                f"analysis_channel {self.analysis_channel} not in a {self.channels}-channel stream"
            )
        if self.ring_frames < 1:
            raise ConfigurationError("ring_frames must be at least 1")
        if self.lookback < 1:
            raise ConfigurationError("lookback must be at least 1")
        if self.loudness_cutoff <= 0:
            raise ConfigurationError("loudness_cutoff must be positive")
        if self.peak_window < 3 or self.peak_window % 2 == 0:
            raise ConfigurationError(
                f"peak_window must be odd and >= 3, got {self.peak_window}"
            )
        if self.min_peak_separation < 0:
            raise ConfigurationError("min_peak_separation cannot be negative")
        if not 0.0 < self.doppler_ratio <= 1.0:
            raise ConfigurationError("doppler_ratio must be in (0, 1]")
        if self.doppler_window < 1:
            raise ConfigurationError("doppler_window must be at least 1")
        if self.small_diff < 0:
            raise ConfigurationError("small_diff cannot be negative")
        if self.vote_history < 1:
            raise ConfigurationError("vote_history must be at least 1")
        if self.frame_rate <= 0:
            raise ConfigurationError("frame_rate must be positive")
        if self.zoom_window < 1:
            raise ConfigurationError("zoom_window must be at least 1")
        if not 0.0 <= self.volume <= 1.0:
            raise ConfigurationError("volume must be in [0, 1]")
        if self.emitted_freq is not None:
            self.emitted_freq = self.check_emitted_freq(self.emitted_freq)
        return self
