"""Tests for the spectral analyzer and spectrum helpers."""

import numpy as np
import pytest

from analyzer_config import ConfigurationError
from signal_processing import SpectralAnalyzer, frequency_to_bin, zoom_spectrum

from conftest import BUFFER_SIZE, SAMPLE_RATE, make_noise_frame, make_tone_frame


class TestSpectralAnalyzer:

    @pytest.fixture
    def analyzer(self):
        return SpectralAnalyzer(BUFFER_SIZE, SAMPLE_RATE)

    @pytest.mark.parametrize("buffer_size", [8, 1024, 4096, 32768])
    def test_output_is_half_the_input(self, buffer_size):
        analyzer = SpectralAnalyzer(buffer_size, SAMPLE_RATE)
        spectrum = analyzer.analyze(np.zeros(buffer_size, dtype=np.float32))
        assert len(spectrum) == buffer_size // 2

    def test_same_frame_gives_identical_spectrum(self, analyzer):
        frame = make_noise_frame(0.2)
        first = analyzer.analyze(frame)
        second = analyzer.analyze(frame.copy())
        assert np.array_equal(first, second)

    def test_silence_is_finite(self, analyzer):
        spectrum = analyzer.analyze(np.zeros(BUFFER_SIZE))
        assert np.all(np.isfinite(spectrum))

    def test_tone_peaks_at_its_bin(self, analyzer):
        spectrum = analyzer.analyze(make_tone_frame([1000.0]))
        expected = frequency_to_bin(1000.0, analyzer.frequency_resolution)
        assert abs(int(np.argmax(spectrum)) - expected) <= 1

    def test_frequencies_match_bins(self, analyzer):
        freqs = analyzer.frequencies()
        assert len(freqs) == BUFFER_SIZE // 2
        assert freqs[1] == pytest.approx(SAMPLE_RATE / BUFFER_SIZE)

    @pytest.mark.parametrize("shape", [(BUFFER_SIZE // 2,), (BUFFER_SIZE * 2,), (BUFFER_SIZE, 2)])
    def test_wrong_frame_shape_is_configuration_error(self, analyzer, shape):
        with pytest.raises(ConfigurationError):
            analyzer.analyze(np.zeros(shape))

    def test_closed_analyzer_refuses_work(self, analyzer):
        analyzer.close()
        assert analyzer.closed
        with pytest.raises(RuntimeError):
            analyzer.analyze(np.zeros(BUFFER_SIZE))
        analyzer.open()
        assert len(analyzer.analyze(np.zeros(BUFFER_SIZE))) == BUFFER_SIZE // 2


class TestZoomSpectrum:

    def test_centered_slice(self):
        spectrum = np.arange(100.0)
        start, zoomed = zoom_spectrum(spectrum, 50, 10)
        assert start == 45
        assert zoomed[0] == 45 and zoomed[-1] == 55

    def test_clamped_at_edges(self):
        spectrum = np.arange(100.0)
        start, zoomed = zoom_spectrum(spectrum, 2, 10)
        assert start == 0
        assert zoomed[0] == 0 and zoomed[-1] == 7

        start, zoomed = zoom_spectrum(spectrum, 98, 10)
        assert zoomed[-1] == 99

    def test_returns_copy(self):
        spectrum = np.arange(100.0)
        _, zoomed = zoom_spectrum(spectrum, 50, 10)
        zoomed[:] = -1
        assert spectrum[50] == 50
