"""Tests for the dashboard's read-only rendering."""

import numpy as np
import pytest

from analysis_pipeline import AnalysisPipeline
from audio_lab import apply_control, build_spectrum_figure, build_time_figure, create_app, render

from conftest import make_noise_frame, make_tone_frame


class TestRender:

    def test_fresh_pipeline_shows_placeholders(self, config):
        peak1, peak2, direction, *figures = render(AnalysisPipeline(config))
        assert (peak1, peak2) == ("--", "--")
        assert direction == "Doppler Off"
        assert len(figures) == 4
        assert all(len(fig.data) == 0 for fig in figures)

    def test_locked_peaks_shown(self, config):
        pipeline = AnalysisPipeline(config)
        for i in range(config.lookback):
            pipeline.process_frame(make_noise_frame(0.01, seed=i))
        pipeline.process_frame(make_tone_frame([440.0, 880.0], [0.5, 0.3]))

        peak1, peak2, _, frozen_fig, _, frozen_time_fig, live_fig = render(pipeline)
        assert peak1.endswith(" Hz") and peak2.endswith(" Hz")
        assert float(peak1.split()[0]) == pytest.approx(440.0, abs=3.0)
        assert len(frozen_fig.data) == 1
        assert len(frozen_time_fig.data) == 1
        assert len(live_fig.data) == 1

    def test_doppler_direction_label(self, doppler_config):
        pipeline = AnalysisPipeline(doppler_config)
        _, _, direction, *_ = render(pipeline)
        assert direction == "Waiting For Input"

        pipeline.process_frame(make_tone_frame([18500.0]))
        _, _, direction, _, zoom_fig, _, _ = render(pipeline)
        assert direction == "No Movement"
        assert len(zoom_fig.data) == 1
        assert len(zoom_fig.data[0].x) <= doppler_config.zoom_window + 1


class TestFigures:

    def test_spectrum_axis_in_hz(self):
        fig = build_spectrum_figure(np.zeros(10), 2.0, start_bin=5, markers=[12.0])
        assert list(fig.data[0].x) == [10.0 + 2.0 * i for i in range(10)]

    def test_time_axis_in_ms(self):
        fig = build_time_figure(np.zeros(8), 8000, "Frame")
        assert fig.data[0].x[1] == pytest.approx(0.125)


def test_create_app_builds_layout(config):
    app = create_app(AnalysisPipeline(config))
    assert app.title == "Audio Lab"
    assert app.layout is not None


class TestControls:

    def test_start_while_running_keeps_results(self, config):
        pipeline = AnalysisPipeline(config)
        for i in range(config.lookback):
            pipeline.process_frame(make_noise_frame(0.01, seed=i))
        pipeline.process_frame(make_tone_frame([440.0, 880.0], [0.5, 0.3]))
        locked = pipeline.peaks
        pipeline.running = True

        status = apply_control(pipeline, 'start-btn')

        assert status == "Status: Running"
        assert pipeline.peaks is locked
        assert pipeline.frames_processed == config.lookback + 1

    def test_out_of_band_frequency_reported(self, doppler_config):
        pipeline = AnalysisPipeline(doppler_config)
        status = apply_control(pipeline, 'emitted-freq', emitted_freq=1)
        assert status.startswith("Error:")
        assert pipeline.emitted_freq == 18500.0

    def test_cleared_frequency_turns_doppler_off(self, doppler_config):
        pipeline = AnalysisPipeline(doppler_config)
        assert apply_control(pipeline, 'emitted-freq', emitted_freq=None) == "Status: Stopped"
        assert pipeline.direction is None
