#!/usr/bin/env python3
"""
Analysis Pipeline
=================
Real-time tone lock-in and Doppler direction analysis of microphone input.

The capture callback only appends samples to a ring buffer. A separate
analysis thread wakes at the configured frame rate, drains one full frame and
runs it through the spectral analyzer, then through the loudness gate / peak
locator and, when a tone is being emitted, the Doppler classifier.

Results are published as immutable objects replaced wholesale, so readers
such as the dashboard never see a half-updated value.
"""

import logging
import threading
import time
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import List, Optional

import numpy as np

from analyzer_config import AnalyzerConfig, ConfigurationError
from circular_buffer import CircularBuffer
from doppler_classifier import DopplerClassifier, DopplerDirection, LobeWidth
from generate_audio import SineToneGenerator, save_wav
from signal_processing import (
    FrozenSnapshot,
    LoudnessGate,
    PeakLocator,
    SpectralAnalyzer,
    TrackedPeakPair,
)

# Audio processing
try:
    import sounddevice as sd
except (ImportError, OSError):
    # PortAudio missing; analysis still works on frames fed by hand
    sd = None


_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one analysis tick."""
    loud: bool
    peaks: TrackedPeakPair
    direction: Optional[DopplerDirection]
    lobe: Optional[LobeWidth]


@dataclass(frozen=True)
class PipelineSnapshot:
    """Everything the presentation layer reads, captured together."""
    running: bool
    frame: Optional[np.ndarray]
    spectrum: Optional[np.ndarray]
    frozen: Optional[FrozenSnapshot]
    peaks: TrackedPeakPair
    direction: Optional[DopplerDirection]
    emitted_freq: Optional[float]
    frames_processed: int


class AnalysisPipeline:
    """Explicitly owned analysis context: buffer, analyzers, streams, thread."""

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = (config or AnalyzerConfig()).validate()
        cfg = self.config

        self.buffer = CircularBuffer(cfg.buffer_size * cfg.ring_frames)
        self.analyzer = SpectralAnalyzer(cfg.buffer_size, cfg.sample_rate)
        self.gate = LoudnessGate(cfg.lookback, cfg.loudness_cutoff)
        self.locator = PeakLocator(
            cfg.sample_rate, cfg.buffer_size, cfg.peak_window, cfg.min_peak_separation
        )
        self.classifier = DopplerClassifier(
            cfg.sample_rate,
            cfg.buffer_size,
            ratio=cfg.doppler_ratio,
            window=cfg.doppler_window,
            small_diff=cfg.small_diff,
            history=cfg.vote_history,
        )
        self.tone = SineToneGenerator(
            frequency=cfg.emitted_freq or 0.0,
            sample_rate=cfg.sample_rate,
            volume=cfg.volume,
        )
        self._emitted_freq = cfg.emitted_freq

        # Stage state is touched by the analysis thread and by controls
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._spectrum: Optional[np.ndarray] = None
        self.frames_processed = 0

        # Processing state
        self.running = False
        self._published = self._build_snapshot()
        self._input_stream = None
        self._output_stream = None
        self._stop_event = threading.Event()
        self.process_thread: Optional[threading.Thread] = None

        # Recording buffer (stores raw analysis-channel audio for saving)
        self.recording_buffer: List[np.ndarray] = []
        self.is_recording = False

    # ---------- Observable outputs ----------
    # Readers only ever see the last published snapshot; it is replaced by a
    # single assignment once a cycle or a control change has completed.

    @property
    def emitted_freq(self) -> Optional[float]:
        return self._published.emitted_freq

    @property
    def doppler_enabled(self) -> bool:
        return self._published.emitted_freq is not None

    @property
    def peaks(self) -> TrackedPeakPair:
        return self._published.peaks

    @property
    def frozen(self) -> Optional[FrozenSnapshot]:
        return self._published.frozen

    @property
    def direction(self) -> Optional[DopplerDirection]:
        """Smoothed Doppler direction; None when no tone is being emitted."""
        return self._published.direction

    @property
    def spectrum(self) -> Optional[np.ndarray]:
        return self._published.spectrum

    @property
    def frame(self) -> Optional[np.ndarray]:
        return self._published.frame

    def snapshot(self) -> PipelineSnapshot:
        published = self._published
        if published.running == self.running:
            return published
        return replace(published, running=self.running)

    def _build_snapshot(self) -> PipelineSnapshot:
        emitted = self._emitted_freq
        return PipelineSnapshot(
            running=self.running,
            frame=self._frame,
            spectrum=self._spectrum,
            frozen=self.gate.snapshot,
            peaks=self.locator.peaks,
            direction=None if emitted is None else self.classifier.direction,
            emitted_freq=emitted,
            frames_processed=self.frames_processed,
        )

    # ---------- Controls ----------

    def set_emitted_frequency(self, freq: Optional[float]) -> None:
        """Change the emitted tone; None turns Doppler mode off.

        Waits for any cycle in progress, so the classifier is never reset
        while it is voting.
        """
        if freq is not None:
            freq = self.config.check_tone_range(freq)
        with self._lock:
            if freq != self._emitted_freq:
                self.classifier.reset()
            if freq is not None:
                self.tone.frequency = freq
            self._emitted_freq = freq
            self._published = self._build_snapshot()

    def set_volume(self, volume: float) -> None:
        self.tone.volume = volume

    # ---------- Analysis ----------

    def process_frame(self, frame: np.ndarray) -> CycleResult:
        """Run one full frame through every analysis stage."""
        frame = np.array(frame, dtype=np.float32, copy=True)
        with self._lock:
            spectrum = self.analyzer.analyze(frame)
            spectrum.flags.writeable = False

            loud = self.gate.update(frame, spectrum)
            if loud:
                self.locator.locate(self.gate.snapshot)

            direction = None
            lobe = None
            emitted = self._emitted_freq
            if emitted is not None:
                direction = self.classifier.classify(spectrum, emitted)
                lobe = self.classifier.last_lobe

            frame.flags.writeable = False
            self._frame = frame
            self._spectrum = spectrum
            self.frames_processed += 1
            published = self._build_snapshot()
            self._published = published
        return CycleResult(loud=loud, peaks=published.peaks, direction=direction, lobe=lobe)

    def tick(self) -> Optional[CycleResult]:
        """Drain one frame from the ring buffer and analyze it, if one is ready."""
        frame = self.buffer.drain(self.config.buffer_size)
        if frame is None:
            return None
        return self.process_frame(frame)

    def reset(self) -> None:
        """Forget all history and locked results."""
        with self._lock:
            self.buffer.clear()
            self.gate.reset()
            self.locator.reset()
            self.classifier.reset()
            self._frame = None
            self._spectrum = None
            self.frames_processed = 0
            self._published = self._build_snapshot()

    # ---------- Audio callbacks ----------

    def on_capture(self, indata, frames, time_info, status):
        """Input stream callback: route the analysis channel into the ring."""
        if status:
            _LOG.warning("Audio input status: %s", status)
        data = np.asarray(indata, dtype=np.float32)
        if data.ndim == 2:
            data = data[:, self.config.analysis_channel]
        self.buffer.append(data)
        if self.is_recording:
            self.recording_buffer.append(data.copy())

    def on_playback(self, outdata, frames, time_info, status):
        """Output stream callback: emitted tone, silence when Doppler mode is off."""
        if status:
            _LOG.warning("Audio output status: %s", status)
        if self.doppler_enabled:
            self.tone.fill(outdata)
        else:
            outdata.fill(0)

    # ---------- Lifecycle ----------

    def start(self) -> None:
        """Open the audio streams and start the analysis thread."""
        if sd is None:
            raise RuntimeError("sounddevice is not available in this environment.")
        if self.running:
            return

        cfg = self.config
        self.analyzer.open()
        self.buffer.clear()
        self._stop_event.clear()

        self._input_stream = sd.InputStream(
            samplerate=cfg.sample_rate,
            channels=cfg.channels,
            dtype="float32",
            callback=self.on_capture,
        )
        self._output_stream = sd.OutputStream(
            samplerate=cfg.sample_rate,
            channels=cfg.channels,
            dtype="float32",
            callback=self.on_playback,
        )
        self._input_stream.start()
        self._output_stream.start()
        self.running = True

        self.process_thread = threading.Thread(
            target=self._process_loop, name="AnalysisPipeline", daemon=True
        )
        self.process_thread.start()
        _LOG.info(
            "Started analysis: %d Hz, %d-sample frames at %.0f fps%s",
            cfg.sample_rate,
            cfg.buffer_size,
            cfg.frame_rate,
            f", emitting {self._emitted_freq:.0f} Hz" if self.doppler_enabled else "",
        )

    def stop(self) -> None:
        """Detach capture, stop the analysis thread, release the transform."""
        was_running = self.running
        self.running = False
        self._stop_event.set()

        for stream in (self._input_stream, self._output_stream):
            if stream is not None:
                stream.stop()
                stream.close()
        self._input_stream = None
        self._output_stream = None

        if self.process_thread is not None:
            self.process_thread.join(timeout=2.0)
            self.process_thread = None

        self.buffer.clear()
        self.analyzer.close()
        if was_running:
            _LOG.info("Stopped analysis after %d frames", self.frames_processed)

    def _process_loop(self):
        """Fixed-rate analysis loop running in its own thread."""
        interval = self.config.frame_interval
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                _LOG.exception("Analysis tick failed")
            next_tick += interval
            delay = next_tick - time.monotonic()
            if delay < 0:
                # Fell behind; resynchronise instead of bursting
                next_tick = time.monotonic()
                delay = 0
            self._stop_event.wait(delay)

    # ---------- Recording ----------

    def start_recording(self):
        """Start recording the analysis channel to memory."""
        self.recording_buffer = []
        self.is_recording = True
        _LOG.info("Recording started")

    def stop_recording(self, filename: Optional[str] = None) -> Optional[str]:
        """Stop recording and save to WAV file."""
        self.is_recording = False

        if not self.recording_buffer:
            _LOG.warning("No audio recorded")
            return None

        audio_data = np.concatenate(self.recording_buffer)

        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"recorded_audio_{timestamp}.wav"

        save_wav(audio_data, filename, self.config.sample_rate)
        duration = len(audio_data) / self.config.sample_rate
        _LOG.info("Saved recording: %s (%.1f seconds)", filename, duration)

        self.recording_buffer = []
        return filename


def build_pipeline(config: Optional[AnalyzerConfig] = None, **overrides) -> AnalysisPipeline:
    """Construct a pipeline from a config with field overrides applied."""
    config = config or AnalyzerConfig()
    unknown = set(overrides) - {f.name for f in fields(config)}
    if unknown:
        raise ConfigurationError(f"unknown configuration fields: {sorted(unknown)}")
    return AnalysisPipeline(replace(config, **overrides))
