import queue

import numpy as np
import pytest

from ribble.visualizer import (
    AnalysisType,
    VisualizerEngine,
    VisualizerSample,
    amplitude_envelope,
    compute_welch_frames,
    compute_welch_step,
    hann_window,
    interpolate_buckets,
    inverse_welch_frames,
    log_spectrum,
    log_spectrum_normalized,
    power_spectral_density,
    run_analysis,
    waveform,
)

SAMPLE_RATE = 16000.0


def _sine(freq, n=4096, amplitude=0.8):
    t = np.arange(n) / SAMPLE_RATE
    return amplitude * np.sin(2 * np.pi * freq * t)


def test_welch_step_for_fft_constants():
    assert compute_welch_step(512, 0.5) == 256


def test_welch_step_rounds_half_away_from_zero():
    assert compute_welch_step(5, 0.5) == 3


@pytest.mark.parametrize("length,out,overlap", [(1000, 20, 0.25), (4850, 32, 0.25), (1000, 32, 0.0)])
def test_welch_frames_round_trip(length, out, overlap):
    frame, step = compute_welch_frames(length, out, overlap)
    assert frame > 0 and 0 < step <= frame
    assert abs(inverse_welch_frames(frame, out, overlap) - length) <= out


def test_hann_window_shape_and_symmetry():
    ones = np.ones(64)
    w = hann_window(ones)
    assert len(w) == 64
    assert w[0] == pytest.approx(0.0)
    assert w[32] == pytest.approx(1.0)
    assert np.allclose(w[1:], w[1:][::-1])
    assert np.all(w >= 0) and np.all(w <= 1.0 + 1e-12)


def test_waveform_of_constant_signal():
    result = waveform(np.full(1000, -0.5), 32)
    assert len(result) == 32
    assert np.allclose(result, 0.5)


def test_waveform_step_signal_is_monotone():
    signal = np.concatenate([np.zeros(500), np.ones(500)])
    result = waveform(signal, 32)
    assert result[0] == 0.0
    assert result[-1] == 1.0
    assert np.all(np.diff(result) >= 0)


def test_waveform_rejects_too_few_samples():
    with pytest.raises(ValueError):
        waveform(np.ones(3), 32)


def test_amplitude_envelope_of_constant_signal():
    result = amplitude_envelope(np.full(4850, 0.3), 32)
    assert len(result) == 32
    assert np.allclose(result, 0.3)


def test_amplitude_envelope_of_sine_is_its_rms():
    result = amplitude_envelope(_sine(440, n=4850), 32)
    assert len(result) == 32
    assert np.allclose(result, 0.8 / np.sqrt(2), atol=0.05)
    assert np.all(result <= 0.8 + 1e-9)


def test_amplitude_envelope_rejects_empty():
    with pytest.raises(ValueError):
        amplitude_envelope([], 32)


@pytest.mark.parametrize("k", [0, 1, 5])
def test_log_spectrum_frame_count(k):
    _, n_frames = log_spectrum(np.ones(512 + 256 * k), SAMPLE_RATE, 32)
    assert n_frames == k + 1


def test_log_spectrum_short_signal_is_silent():
    spectrum, n_frames = log_spectrum(np.ones(100), SAMPLE_RATE, 16)
    assert n_frames == 0
    assert np.all(spectrum == 0)
    assert len(spectrum) == 16


def test_power_spectral_density_needs_a_full_frame():
    with pytest.raises(ValueError):
        power_spectral_density(np.ones(100), SAMPLE_RATE, 16)


def test_invalid_sample_rate_raises():
    with pytest.raises(ValueError):
        log_spectrum(np.ones(1024), 0.0, 16)


def test_spectrum_peak_follows_frequency():
    low = log_spectrum_normalized(_sine(200), SAMPLE_RATE, 32)
    high = log_spectrum_normalized(_sine(4000), SAMPLE_RATE, 32)
    assert int(np.argmax(low)) < int(np.argmax(high))


def test_normalized_outputs_within_unit_range():
    signal = _sine(1000)
    psd = power_spectral_density(signal, SAMPLE_RATE, 32)
    norm = log_spectrum_normalized(signal, SAMPLE_RATE, 32)
    for result in (psd, norm):
        assert len(result) == 32
        assert np.all(result >= 0) and np.all(result <= 1.0 + 1e-12)
    assert psd.max() == pytest.approx(1.0)
    assert norm.max() == pytest.approx(1.0)


def test_silence_normalizes_to_zero():
    assert np.all(log_spectrum_normalized(np.zeros(2048), SAMPLE_RATE, 16) == 0)


def test_interpolate_preserves_endpoints_and_identity():
    src = np.array([0.0, 2.0, 1.0, 4.0])
    assert np.allclose(interpolate_buckets(src, 4), src)
    wide = interpolate_buckets(src, 10)
    assert len(wide) == 10
    assert wide[0] == 0.0 and wide[-1] == 4.0
    assert wide.min() >= src.min() and wide.max() <= src.max()


def test_interpolate_empty_source_raises():
    with pytest.raises(ValueError):
        interpolate_buckets([], 4)


@pytest.mark.parametrize(
    "kind,func",
    [
        (AnalysisType.WAVEFORM, lambda s: waveform(s, 32)),
        (AnalysisType.AMPLITUDE_ENVELOPE, lambda s: amplitude_envelope(s, 32)),
        (AnalysisType.POWER_SPECTRAL_DENSITY, lambda s: power_spectral_density(s, SAMPLE_RATE, 32)),
        (AnalysisType.LOG_SPECTRUM, lambda s: log_spectrum_normalized(s, SAMPLE_RATE, 32)),
    ],
)
def test_run_analysis_dispatches(kind, func):
    signal = _sine(300, n=4850)
    assert np.allclose(run_analysis(kind, signal, SAMPLE_RATE, 32), func(signal))


def test_engine_skips_when_hidden():
    q = queue.Queue()
    engine = VisualizerEngine(q, AnalysisType.WAVEFORM, 32)
    q.put(VisualizerSample(np.ones(1000), SAMPLE_RATE))
    engine.close()
    assert np.all(engine.read_buffer() == 0)


def test_engine_fills_buffer_when_visible():
    q = queue.Queue()
    signal = _sine(500, n=1000)
    with VisualizerEngine(q, AnalysisType.WAVEFORM, 32) as engine:
        engine.set_visibility(True)
        q.put(VisualizerSample(signal, SAMPLE_RATE))
    assert np.allclose(engine.read_buffer(), waveform(signal, 32))


def test_engine_uses_updated_analysis_type():
    q = queue.Queue()
    signal = np.full(4850, 0.3)
    with VisualizerEngine(q, AnalysisType.WAVEFORM, 32) as engine:
        engine.analysis_type = AnalysisType.AMPLITUDE_ENVELOPE
        engine.set_visibility(True)
        q.put(VisualizerSample(signal, SAMPLE_RATE))
    assert np.allclose(engine.read_buffer(), amplitude_envelope(signal, 32))


def test_engine_keeps_buffer_on_failed_analysis():
    q = queue.Queue()
    with VisualizerEngine(q, AnalysisType.WAVEFORM, 32) as engine:
        engine.set_visibility(True)
        q.put(VisualizerSample(np.ones(3), SAMPLE_RATE))
        q.put(VisualizerSample([], SAMPLE_RATE))
    buffer = engine.read_buffer()
    assert len(buffer) == 32
    assert np.all(buffer == 0)