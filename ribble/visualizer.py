"""Audio analysis for the visualizer: waveform, amplitude and spectral views."""

from __future__ import annotations

import logging
import math
import queue
import threading
from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

logger = logging.getLogger(__name__)

FFT_RESOLUTION = 512
FFT_OVERLAP = 0.5
AMPLITUDE_OVERLAP = 0.25
AMPLITUDE_GAMMA = 0.6
WAVEFORM_REF = 0.25
WAVEFORM_KNEE = 2.0


class AnalysisType(Enum):
    """The kinds of analysis the visualizer can display."""

    AMPLITUDE_ENVELOPE = "Amplitude Envelope"
    WAVEFORM = "Waveform"
    POWER_SPECTRAL_DENSITY = "Power Spectral Density"
    LOG_SPECTRUM = "Log Spectrum"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class VisualizerSample:
    """A chunk of audio handed to the visualizer engine."""

    sample: Sequence[float]
    sample_rate: float


def _f32(value) -> np.float32:
    return np.float32(value)


def _round_usize(value) -> int:
    """Round half away from zero, saturating to a non-negative integer."""
    v = float(value)
    if math.isnan(v) or v <= 0.0:
        return 0
    return int(math.floor(v + 0.5))


def _as_array(samples) -> np.ndarray:
    return np.asarray(samples, dtype=np.float64).ravel()


def _check_buckets(buckets: int) -> None:
    if buckets < 1:
        raise ValueError("The number of buckets must be at least 1.")


def hann_window(samples) -> np.ndarray:
    """Apply a Hann window across the whole sample slice."""
    data = _as_array(samples)
    n = len(data)
    if n == 0:
        return data.copy()
    t = np.arange(n, dtype=np.float64) / n
    return data * (0.5 * (1.0 - np.cos(2.0 * np.pi * t)))


def compute_welch_frames(sample_len, output_len, overlap_ratio) -> Tuple[int, int]:
    """Return the (frame size, step size) that splits a signal into output_len frames."""
    one = _f32(1.0)
    overlap = _f32(overlap_ratio)
    frame_size = _f32(sample_len) / (one + (_f32(output_len) - one) * (one - overlap))
    step_size = frame_size * (one - overlap)
    return _round_usize(frame_size), _round_usize(step_size)


def inverse_welch_frames(frame_size, output_len, overlap_ratio) -> int:
    """Return the signal length that yields output_len frames of the given size."""
    one = _f32(1.0)
    return _round_usize(
        _f32(frame_size) * (one + (_f32(output_len) - one) * (one - _f32(overlap_ratio)))
    )


def compute_welch_step(frame_size, overlap_ratio) -> int:
    """Return the hop between overlapping frames."""
    return _round_usize(_f32(frame_size) * (_f32(1.0) - _f32(overlap_ratio)))


def interpolate_buckets(src, dst_len: int) -> np.ndarray:
    """Linearly resample src onto dst_len evenly spaced points."""
    data = _as_array(src)
    if len(data) == 0:
        raise ValueError("Cannot interpolate from an empty source.")
    if dst_len <= 0:
        return np.zeros(0, dtype=np.float64)
    positions = np.linspace(0.0, len(data) - 1, dst_len)
    return np.interp(positions, np.arange(len(data), dtype=np.float64), data)


def _fit_frames(
    window: np.ndarray, frame_size: int, welch_target: int, overlap_ratio: float
) -> np.ndarray:
    """Pad by duplicating the tail of the signal so the frames fill every bucket."""
    padded_size = inverse_welch_frames(frame_size, welch_target, overlap_ratio)
    diff = int(abs(float(_f32(padded_size) - _f32(len(window)))))
    start = max(len(window) - diff - 1, 0)
    return np.concatenate([window, window[start:]])


def _frames(window: np.ndarray, frame_size: int, step_size: int) -> np.ndarray:
    if frame_size <= 0 or len(window) < frame_size:
        return np.empty((0, max(frame_size, 0)), dtype=np.float64)
    return sliding_window_view(window, frame_size)[:: max(step_size, 1)]


def _fill_buckets(values: np.ndarray, buckets: int, kind: str) -> np.ndarray:
    if len(values) < buckets:
        raise ValueError(f"Failed to fit {kind} into {buckets} buckets.")
    return np.array(values[:buckets], dtype=np.float64)


def _time_domain_frames(samples, buckets: int, overlap: float, kind: str) -> np.ndarray:
    _check_buckets(buckets)
    data = _as_array(samples)
    frame_size, step_size = compute_welch_frames(len(data), buckets, overlap)
    if frame_size == 0:
        raise ValueError(f"Empty samples sent for {kind} analysis")
    window = _fit_frames(data, frame_size, buckets, overlap)
    return _frames(window, frame_size, step_size)


def waveform(samples, buckets: int) -> np.ndarray:
    """Peak absolute amplitude of each of `buckets` consecutive frames."""
    frames = _time_domain_frames(samples, buckets, 0.0, "waveform")
    peaks = np.abs(frames).max(axis=1) if len(frames) else np.zeros(0)
    return _fill_buckets(peaks, buckets, "waveform")


def amplitude_envelope(samples, buckets: int) -> np.ndarray:
    """Time-domain RMS of each of `buckets` overlapping frames."""
    frames = _time_domain_frames(samples, buckets, AMPLITUDE_OVERLAP, "amplitude")
    rms = np.sqrt(np.mean(frames**2, axis=1)) if len(frames) else np.zeros(0)
    return _fill_buckets(rms, buckets, "amplitude envelope")


def log_spectrum(samples, sample_rate: float, buckets: int) -> Tuple[np.ndarray, int]:
    """Sum FFT power into log-spaced frequency buckets.

    Returns the bucket totals and the number of frames analysed.
    """
    _check_buckets(buckets)
    if not sample_rate > 0:
        raise ValueError("Sample rate must be positive.")
    window = hann_window(samples)
    step_size = compute_welch_step(FFT_RESOLUTION, FFT_OVERLAP)
    frames = _frames(window, FFT_RESOLUTION, step_size)
    n_frames = len(frames)

    num_bins = FFT_RESOLUTION // 2 + 1
    min_freq = sample_rate / num_bins
    max_freq = sample_rate / 2.0
    log_min = math.log10(min_freq)
    log_range = math.log10(max_freq) - log_min
    edges = [10.0 ** (log_min + log_range * k / buckets) for k in range(buckets + 1)]

    spectrum = np.zeros(buckets, dtype=np.float64)
    if n_frames == 0:
        return spectrum, 0

    power = (np.abs(np.fft.rfft(frames, axis=1)) ** 2).sum(axis=0)
    for i, value in enumerate(power):
        freq = i * sample_rate / num_bins
        if freq < min_freq or freq > max_freq:
            continue
        bucket = min(max(bisect_left(edges, freq) - 1, 0), buckets - 1)
        spectrum[bucket] += value
    return spectrum, n_frames


def power_spectral_density(samples, sample_rate: float, buckets: int) -> np.ndarray:
    """Welch-averaged power spectrum normalised into [0, 1]."""
    spectrum, n_frames = log_spectrum(samples, sample_rate, buckets)
    if n_frames == 0:
        raise ValueError(
            f"At least {FFT_RESOLUTION} samples are needed for power analysis."
        )
    peak = max(float(n_frames), float(spectrum.max())) / n_frames
    return (spectrum / n_frames) / peak


def log_spectrum_normalized(samples, sample_rate: float, buckets: int) -> np.ndarray:
    """Log-spaced spectrum scaled by its peak (never by less than 1)."""
    spectrum, _ = log_spectrum(samples, sample_rate, buckets)
    peak = max(1.0, float(spectrum.max()))
    return spectrum / peak


def run_analysis(
    analysis_type: AnalysisType, samples, sample_rate: float, buckets: int
) -> np.ndarray:
    """Run the analysis selected by analysis_type."""
    if analysis_type is AnalysisType.AMPLITUDE_ENVELOPE:
        return amplitude_envelope(samples, buckets)
    if analysis_type is AnalysisType.WAVEFORM:
        return waveform(samples, buckets)
    if analysis_type is AnalysisType.POWER_SPECTRAL_DENSITY:
        return power_spectral_density(samples, sample_rate, buckets)
    if analysis_type is AnalysisType.LOG_SPECTRUM:
        return log_spectrum_normalized(samples, sample_rate, buckets)
    raise ValueError(f"Unknown analysis type: {analysis_type!r}")


class VisualizerEngine:
    """Background thread that turns incoming audio into visualizer buckets.

    Packets are VisualizerSample objects read from a queue; None stops the engine.
    """

    def __init__(
        self,
        incoming_samples: "queue.Queue[Optional[VisualizerSample]]",
        starting_analysis_type: AnalysisType,
        buckets: int,
    ) -> None:
        _check_buckets(buckets)
        self.analysis_type = starting_analysis_type
        self._incoming = incoming_samples
        self._buckets = buckets
        self._buffer = np.zeros(buckets, dtype=np.float64)
        self._lock = threading.Lock()
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._work, name="visualizer", daemon=True
        )
        self._thread.start()

    def _work(self) -> None:
        while True:
            packet = self._incoming.get()
            if packet is None:
                break
            if not self._running.is_set():
                continue
            if len(packet.sample) == 0:
                logger.warning("Visualizer sent empty sample packet!")
                continue
            analysis = self.analysis_type
            try:
                result = run_analysis(
                    analysis, packet.sample, packet.sample_rate, self._buckets
                )
            except (ValueError, ArithmeticError) as exc:
                logger.warning(
                    "Failed to run visual analysis. Type: %s, Error: %s", analysis, exc
                )
                continue
            with self._lock:
                self._buffer = result

    def set_visibility(self, is_visible: bool) -> None:
        """Enable or disable analysis; hidden visualizers skip incoming audio."""
        if is_visible:
            self._running.set()
        else:
            self._running.clear()

    def read_buffer(self) -> np.ndarray:
        """Return a copy of the latest analysis buckets."""
        with self._lock:
            return self._buffer.copy()

    def close(self) -> None:
        """Stop the worker thread after it drains queued packets."""
        if self._thread is None:
            return
        self._incoming.put(None)
        self._thread.join()
        self._thread = None

    def __enter__(self) -> "VisualizerEngine":
        return self

    def __exit__(self, *args) -> None:
        self.close()