#!/usr/bin/env python3
"""
Audio Lab Dashboard
===================
Real-time two-tone lock-in and Doppler direction display.

Usage:
    python audio_lab.py
    python audio_lab.py --doppler --emitted-freq 18500

This will launch a web-based UI at http://localhost:8050

Note: Analysis lives in analysis_pipeline.py; this module only reads the
      pipeline's published results and draws them.
"""

import argparse
import logging
from typing import Optional, Sequence

import numpy as np
from dash import Dash, html, dcc, callback_context, Output, Input
import plotly.graph_objs as go

from analyzer_config import (
    AnalyzerConfig,
    ConfigurationError,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_EMITTED_FREQ,
    DEFAULT_SAMPLE_RATE,
    HIGHEST_EMITTED_FREQ,
    LOWEST_EMITTED_FREQ,
)
from analysis_pipeline import AnalysisPipeline, PipelineSnapshot
from signal_processing import frequency_to_bin, zoom_spectrum


_LOG = logging.getLogger(__name__)

PANEL_STYLE = {'backgroundColor': 'white', 'borderRadius': '10px',
               'boxShadow': '0 2px 5px rgba(0,0,0,0.1)', 'padding': '20px'}
BUTTON_STYLE = {'color': 'white', 'border': 'none', 'padding': '15px 30px',
                'fontSize': '16px', 'cursor': 'pointer', 'borderRadius': '5px', 'width': '45%'}
GRAPH_MARGIN = dict(l=50, r=20, t=40, b=40)


# ============== Figures ==============

def _empty_figure(title: str, xaxis_title: str, yaxis_title: str) -> go.Figure:
    fig = go.Figure()
    fig.update_layout(
        title=title,
        xaxis_title=xaxis_title,
        yaxis_title=yaxis_title,
        margin=GRAPH_MARGIN,
        paper_bgcolor='white',
        plot_bgcolor='#f8f9fa'
    )
    return fig


def build_spectrum_figure(
    spectrum: Optional[np.ndarray],
    resolution: float,
    title: str = "Frozen Spectrum",
    start_bin: int = 0,
    markers: Sequence[float] = (),
) -> go.Figure:
    """Magnitude spectrum with optional vertical frequency markers."""
    fig = _empty_figure(title, "Frequency (Hz)", "Magnitude (dB)")
    if spectrum is None:
        return fig
    freqs = (start_bin + np.arange(len(spectrum))) * resolution
    fig.add_trace(go.Scatter(
        x=freqs,
        y=spectrum,
        mode='lines',
        name='Spectrum',
        line=dict(color='#e74c3c', width=1),
        fill='tozeroy',
        fillcolor='rgba(231, 76, 60, 0.3)'
    ))
    for freq in markers:
        fig.add_vline(x=freq, line_dash="dash", line_color="green")
    return fig


def build_time_figure(frame: Optional[np.ndarray], sample_rate: int, title: str) -> go.Figure:
    fig = _empty_figure(title, "Time (ms)", "Amplitude")
    if frame is None:
        return fig
    t_ms = np.arange(len(frame)) * 1000.0 / sample_rate
    fig.add_trace(go.Scatter(x=t_ms, y=frame, mode='lines', name='Signal',
                             line=dict(color='#3498db', width=1)))
    return fig


def format_peaks(state: PipelineSnapshot) -> tuple:
    """Label text for the two locked tones."""
    first, second = state.peaks.frequencies
    return (
        f"{first:.1f} Hz" if first is not None else "--",
        f"{second:.1f} Hz" if second is not None else "--",
    )


def format_direction(state: PipelineSnapshot) -> str:
    if state.emitted_freq is None or state.direction is None:
        return "Doppler Off"
    if state.frames_processed == 0:
        return "Waiting For Input"
    return state.direction.label


# ============== Web UI ==============

def _readout(label: str, element_id: str, color: str) -> html.Div:
    return html.Div([
        html.H2(label, style={'color': '#7f8c8d', 'marginBottom': '5px', 'fontSize': '16px'}),
        html.Div(id=element_id, children='--',
                 style={'fontSize': '48px', 'fontWeight': 'bold', 'color': color}),
    ], style={'textAlign': 'center', 'padding': '20px', 'flex': '1'})


def apply_control(pipeline: AnalysisPipeline, triggered: Optional[str],
                  emitted_freq=None, volume=None) -> str:
    """Apply one control change from the page; returns the status text."""
    try:
        if triggered == 'emitted-freq':
            pipeline.set_emitted_frequency(emitted_freq)
        elif triggered == 'volume' and volume is not None:
            pipeline.set_volume(volume)
        elif triggered == 'start-btn' and not pipeline.running:
            pipeline.reset()
            pipeline.start()
        elif triggered == 'stop-btn':
            pipeline.stop()
    except (ConfigurationError, RuntimeError) as e:
        _LOG.error("Control failed: %s", e)
        return f"Error: {e}"

    return "Status: Running" if pipeline.running else "Status: Stopped"


def create_app(pipeline: AnalysisPipeline) -> Dash:
    """Dash app bound to one explicitly owned pipeline."""
    cfg = pipeline.config
    app = Dash(__name__)
    app.title = "Audio Lab"

    app.layout = html.Div([
        html.Div([
            html.H1("Audio Lab", style={'textAlign': 'center', 'color': '#2c3e50', 'marginBottom': '10px'}),
            html.P("Two-tone lock-in and Doppler direction from the microphone",
                   style={'textAlign': 'center', 'color': '#7f8c8d', 'marginTop': '0'})
        ], style={'backgroundColor': '#ecf0f1', 'padding': '20px', 'borderRadius': '10px', 'marginBottom': '20px'}),

        html.Div([
            # Control Panel
            html.Div([
                html.H3("Emitted Tone", style={'color': '#2c3e50', 'marginTop': '0'}),
                html.Label("Frequency (Hz, blank for off):"),
                dcc.Input(id='emitted-freq', type='number', value=pipeline.emitted_freq,
                          min=LOWEST_EMITTED_FREQ, max=HIGHEST_EMITTED_FREQ, step=100,
                          style={'width': '100%', 'marginBottom': '10px', 'padding': '8px'}),
                html.Label("Volume:"),
                dcc.Slider(id='volume', min=0.0, max=1.0, step=0.05, value=pipeline.tone.volume),
                html.Hr(),
                html.Button('Start', id='start-btn', n_clicks=0,
                            style={**BUTTON_STYLE, 'backgroundColor': '#27ae60', 'marginRight': '10px'}),
                html.Button('Stop', id='stop-btn', n_clicks=0,
                            style={**BUTTON_STYLE, 'backgroundColor': '#e74c3c'}),
                html.Div(id='status', children='Status: Stopped',
                         style={'marginTop': '15px', 'padding': '10px', 'backgroundColor': '#f8f9fa',
                                'borderRadius': '5px', 'textAlign': 'center'}),
            ], style={**PANEL_STYLE, 'width': '25%'}),

            # Main display
            html.Div([
                html.Div([
                    _readout("First Loudest", 'peak1-display', '#2c3e50'),
                    _readout("Second Loudest", 'peak2-display', '#2c3e50'),
                    _readout("Direction", 'direction-display', '#3498db'),
                ], style={**PANEL_STYLE, 'display': 'flex', 'marginBottom': '20px', 'padding': '0'}),
                dcc.Graph(id='frozen-spectrum-graph', style={'height': '250px'}),
                dcc.Graph(id='zoom-spectrum-graph', style={'height': '250px'}),
                dcc.Graph(id='frozen-time-graph', style={'height': '200px'}),
                dcc.Graph(id='live-time-graph', style={'height': '200px'}),
            ], style={'width': '72%', 'marginLeft': '3%'})
        ], style={'display': 'flex'}),

        dcc.Interval(id='update-interval', interval=int(1000 * cfg.frame_interval), n_intervals=0),
    ], style={'padding': '20px', 'backgroundColor': '#f5f6fa', 'minHeight': '100vh', 'fontFamily': 'Arial, sans-serif'})

    @app.callback(
        Output('status', 'children'),
        [Input('start-btn', 'n_clicks'),
         Input('stop-btn', 'n_clicks'),
         Input('emitted-freq', 'value'),
         Input('volume', 'value')],
    )
    def control_pipeline(start_clicks, stop_clicks, emitted_freq, volume):
        triggered = callback_context.triggered[0]['prop_id'].split('.')[0] \
            if callback_context.triggered else None
        return apply_control(pipeline, triggered, emitted_freq, volume)

    @app.callback(
        [Output('peak1-display', 'children'),
         Output('peak2-display', 'children'),
         Output('direction-display', 'children'),
         Output('frozen-spectrum-graph', 'figure'),
         Output('zoom-spectrum-graph', 'figure'),
         Output('frozen-time-graph', 'figure'),
         Output('live-time-graph', 'figure')],
        Input('update-interval', 'n_intervals')
    )
    def update_display(n):
        return render(pipeline)

    return app


def render(pipeline: AnalysisPipeline) -> tuple:
    """All dashboard outputs for the pipeline's current state."""
    cfg = pipeline.config
    state = pipeline.snapshot()
    peak1_text, peak2_text = format_peaks(state)

    frozen = state.frozen
    locked = [f for f in state.peaks.frequencies if f is not None]
    frozen_fig = build_spectrum_figure(
        frozen.spectrum if frozen else None, cfg.frequency_resolution, "Frozen Spectrum", markers=locked
    )

    if state.spectrum is not None and state.emitted_freq is not None:
        center = frequency_to_bin(state.emitted_freq, cfg.frequency_resolution)
        start, zoomed = zoom_spectrum(state.spectrum, center, cfg.zoom_window)
        zoom_fig = build_spectrum_figure(
            zoomed, cfg.frequency_resolution, "Around Emitted Tone", start_bin=start,
            markers=[state.emitted_freq]
        )
    else:
        zoom_fig = build_spectrum_figure(None, cfg.frequency_resolution, "Around Emitted Tone")

    frozen_time_fig = build_time_figure(frozen.frame if frozen else None, cfg.sample_rate, "Frozen Frame")
    live_time_fig = build_time_figure(state.frame, cfg.sample_rate, "Live Frame")

    return (peak1_text, peak2_text, format_direction(state),
            frozen_fig, zoom_fig, frozen_time_fig, live_time_fig)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Audio Lab dashboard")
    parser.add_argument("--sample-rate", type=int, default=DEFAULT_SAMPLE_RATE)
    parser.add_argument("--buffer-size", type=int, default=DEFAULT_BUFFER_SIZE)
    parser.add_argument("--channels", type=int, default=1)
    parser.add_argument("--lookback", type=int, default=45)
    parser.add_argument("--cutoff", type=float, default=1.0, help="loudness cutoff ratio")
    parser.add_argument("--doppler", action="store_true", help="emit a tone and classify motion")
    parser.add_argument("--emitted-freq", type=float, default=DEFAULT_EMITTED_FREQ)
    parser.add_argument("--port", type=int, default=8050)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AnalyzerConfig(
        sample_rate=args.sample_rate,
        buffer_size=args.buffer_size,
        channels=args.channels,
        lookback=args.lookback,
        loudness_cutoff=args.cutoff,
        emitted_freq=args.emitted_freq if args.doppler else None,
    )
    try:
        pipeline = AnalysisPipeline(config)
    except ConfigurationError as e:
        parser.error(str(e))

    app = create_app(pipeline)

    print("=" * 50)
    print("Audio Lab")
    print("=" * 50)
    print(f"Open http://localhost:{args.port} in your browser")
    try:
        app.run(debug=False, port=args.port)
    finally:
        pipeline.stop()


if __name__ == "__main__":
    main()
