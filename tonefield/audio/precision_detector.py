"""Narrow-band precision pitch detection for a known target.

The search is limited to an explicit Hz window around the target, so a louder
partial elsewhere in the spectrum cannot capture the measurement. The phase
variant refines the parabolic estimate with the phase advance of the peak bin
between two consecutive frames (phase-vocoder frequency reassignment).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..logger import get_logger
from ..note_types import PreviousPhase
from .spectrum import (
    bin_range,
    check_fft_size,
    check_sample_rate,
    compute_rms,
    compute_spectrum_with_phase,
    parabolic_offset,
)

logger = get_logger(__name__)

FFT_SIZE = 4096
NOISE_FLOOR_RMS = 0.005
NOISE_FLOOR_DB = -65.0

TWO_PI = 2.0 * np.pi


@dataclass
class PhaseDetection:
    """Result of a phase-refined window detection.

    ``phase`` is the current frame's phase spectrum. Keep it as the next
    frame's previous phase only when ``frequency`` is not None.
    """

    frequency: Optional[float]
    phase: Optional[PreviousPhase] = None


def wrap_phase(phase):
    """Wrap radians into (-pi, pi]."""
    return np.pi - np.mod(np.pi - phase, TWO_PI)


def _window_peak(
    spectrum_db: np.ndarray,
    sample_rate: float,
    fft_size: int,
    lo_hz: float,
    hi_hz: float,
    noise_floor_db: float,
) -> Optional[Tuple[int, float]]:
    """Peak bin and its parabolic frequency within [lo_hz, hi_hz]."""
    low_bin, high_bin = bin_range(lo_hz, hi_hz, sample_rate, fft_size)
    if low_bin >= high_bin:
        return None

    peak_bin = low_bin + int(np.argmax(spectrum_db[low_bin : high_bin + 1]))
    peak_db = float(spectrum_db[peak_bin])
    if not peak_db >= noise_floor_db:
        return None

    delta = parabolic_offset(
        float(spectrum_db[peak_bin - 1]), peak_db, float(spectrum_db[peak_bin + 1])
    )
    return peak_bin, (peak_bin + delta) * sample_rate / fft_size


def _check_window(sample_rate: float, fft_size: int, lo_hz: float, hi_hz: float) -> None:
    check_sample_rate(sample_rate)
    check_fft_size(fft_size)
    if lo_hz <= 0 or hi_hz <= 0:
        raise ValueError(f"Search window must be positive, got [{lo_hz}, {hi_hz}]")


def detect_pitch_in_window(
    buffer: np.ndarray,
    sample_rate: float,
    lo_hz: float,
    hi_hz: float,
    fft_size: int = FFT_SIZE,
    noise_floor_rms: float = NOISE_FLOOR_RMS,
    noise_floor_db: float = NOISE_FLOOR_DB,
) -> Optional[float]:
    """Dominant frequency inside [lo_hz, hi_hz].

    Args:
        buffer: Time-domain samples in [-1, 1]
        sample_rate: Sample rate in Hz
        lo_hz: Lower bound of the search window
        hi_hz: Upper bound of the search window
        fft_size: FFT size; the buffer is truncated or zero-padded to it
        noise_floor_rms: Frames quieter than this return None
        noise_floor_db: Peaks below this level return None

    Returns:
        Frequency in Hz, or None for silence or an empty window
    """
    _check_window(sample_rate, fft_size, lo_hz, hi_hz)
    if compute_rms(buffer) < noise_floor_rms:
        return None

    spectrum_db, _ = compute_spectrum_with_phase(buffer, fft_size)
    peak = _window_peak(spectrum_db, sample_rate, fft_size, lo_hz, hi_hz, noise_floor_db)
    return peak[1] if peak is not None else None


def phase_refined_frequency(
    peak_bin: int,
    phase: np.ndarray,
    previous_phase: np.ndarray,
    hop_size: int,
    sample_rate: float,
    fft_size: int,
) -> float:
    """Instantaneous frequency of a bin from its phase advance over hop_size samples."""
    expected = TWO_PI * peak_bin * hop_size / fft_size
    deviation = wrap_phase(phase[peak_bin] - previous_phase[peak_bin] - expected)
    bin_offset = deviation * fft_size / (TWO_PI * hop_size)
    return float((peak_bin + bin_offset) * sample_rate / fft_size)


def detect_pitch_in_window_phase_diff(
    buffer: np.ndarray,
    sample_rate: float,
    lo_hz: float,
    hi_hz: float,
    previous_phase: Optional[PreviousPhase],
    hop_size: int,
    fft_size: int = FFT_SIZE,
    noise_floor_rms: float = NOISE_FLOOR_RMS,
    noise_floor_db: float = NOISE_FLOOR_DB,
) -> PhaseDetection:
    """Window detection refined with the phase difference to the previous frame.

    Falls back to parabolic interpolation when there is no previous phase, the
    previous phase came from a different FFT size, or the phase estimate lands
    more than one bin from the parabolic one. It also falls back when hop_size
    is not positive or exceeds fft_size, since the phase advance then only
    resolves offsets within fft_size / (2 * hop_size) bins of the peak bin
    and the true offset can alias.

    Args:
        buffer: Time-domain samples in [-1, 1]
        sample_rate: Sample rate in Hz
        lo_hz: Lower bound of the search window
        hi_hz: Upper bound of the search window
        previous_phase: Phase spectrum of the previous frame, or None
        hop_size: Samples elapsed between the previous frame and this one
        fft_size: FFT size; the buffer is truncated or zero-padded to it

    Returns:
        PhaseDetection with the frequency (or None) and this frame's phase
    """
    _check_window(sample_rate, fft_size, lo_hz, hi_hz)
    if compute_rms(buffer) < noise_floor_rms:
        return PhaseDetection(frequency=None, phase=None)

    spectrum_db, phase = compute_spectrum_with_phase(buffer, fft_size)
    current = PreviousPhase(phase=phase, fft_size=fft_size)

    peak = _window_peak(spectrum_db, sample_rate, fft_size, lo_hz, hi_hz, noise_floor_db)
    if peak is None:
        return PhaseDetection(frequency=None, phase=current)

    peak_bin, parabolic_freq = peak
    if (
        previous_phase is None
        or previous_phase.fft_size != fft_size
        or hop_size <= 0
        or hop_size > fft_size
    ):
        return PhaseDetection(frequency=parabolic_freq, phase=current)

    refined = phase_refined_frequency(
        peak_bin, phase, previous_phase.phase, hop_size, sample_rate, fft_size
    )
    bin_hz = sample_rate / fft_size
    if refined <= 0 or abs(refined - parabolic_freq) > bin_hz:
        logger.debug(
            f"Phase estimate {refined:.3f} Hz too far from {parabolic_freq:.3f} Hz, "
            "using parabolic"
        )
        return PhaseDetection(frequency=parabolic_freq, phase=current)

    return PhaseDetection(frequency=refined, phase=current)
