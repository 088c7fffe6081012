"""Spectrum helpers shared by the frequency-domain detectors."""

from typing import Optional, Tuple

import numpy as np

from ..note_types import is_power_of_two

# Magnitudes below this are reported as silent bins
MIN_MAGNITUDE = 1e-12


def compute_rms(buffer: np.ndarray) -> float:
    """Root-mean-square level of a buffer (0 for an empty buffer)."""
    if len(buffer) == 0:
        return 0.0
    samples = np.asarray(buffer, dtype=np.float64)
    return float(np.sqrt(np.mean(samples**2)))


def check_sample_rate(sample_rate: float) -> None:
    if not sample_rate or sample_rate <= 0:
        raise ValueError(f"Sample rate must be positive, got {sample_rate}")


def check_fft_size(fft_size: int) -> None:
    if not is_power_of_two(int(fft_size)):
        raise ValueError(f"FFT size must be a power of two, got {fft_size}")


def check_spectrum(spectrum_db: np.ndarray, fft_size: int) -> None:
    check_fft_size(fft_size)
    if len(spectrum_db) != fft_size // 2:
        raise ValueError(
            f"Spectrum must have fft_size / 2 = {fft_size // 2} bins, got {len(spectrum_db)}"
        )


def hann_window(size: int) -> np.ndarray:
    """Symmetric Hann window, w[i] = 0.5 * (1 - cos(2*pi*i / (size - 1)))."""
    return np.hanning(size)


def windowed_fft(buffer: np.ndarray, fft_size: Optional[int] = None) -> np.ndarray:
    """Hann-window the buffer and return the first fft_size / 2 complex bins.

    Buffers shorter than fft_size are windowed over their own length and
    zero-padded; longer buffers are truncated to fft_size.
    """
    if fft_size is None:
        fft_size = len(buffer)
    check_fft_size(fft_size)

    length = min(len(buffer), fft_size)
    windowed = np.zeros(fft_size, dtype=np.float64)
    # The window spans fft_size so a zero-padded buffer keeps the same taper
    window = hann_window(fft_size)[:length]
    windowed[:length] = np.asarray(buffer[:length], dtype=np.float64) * window

    return np.fft.rfft(windowed)[: fft_size // 2]


def magnitude_db(bins: np.ndarray, fft_size: int) -> np.ndarray:
    """Convert complex bins to dB, normalised by fft_size; silent bins become -inf."""
    magnitude = np.abs(bins) / fft_size
    with np.errstate(divide="ignore"):
        db = 20.0 * np.log10(magnitude)
    db[magnitude <= MIN_MAGNITUDE] = -np.inf
    return db


def compute_spectrum_db(buffer: np.ndarray, fft_size: Optional[int] = None) -> np.ndarray:
    """Hann-windowed log-magnitude spectrum, length fft_size / 2.

    This is the format the capture layer is expected to hand over as
    ``AudioFrame.spectrum_db``.
    """
    if fft_size is None:
        fft_size = len(buffer)
    return magnitude_db(windowed_fft(buffer, fft_size), fft_size)


def compute_spectrum_with_phase(
    buffer: np.ndarray, fft_size: Optional[int] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """dB magnitude and phase (radians) of the Hann-windowed buffer."""
    if fft_size is None:
        fft_size = len(buffer)
    bins = windowed_fft(buffer, fft_size)
    return magnitude_db(bins, fft_size), np.angle(bins)


def parabolic_offset(prev_val: float, peak_val: float, next_val: float) -> float:
    """Vertex offset of the parabola through three neighbouring bins, clamped to +/-0.5."""
    denom = 2.0 * peak_val - prev_val - next_val
    if not np.isfinite(denom) or abs(denom) <= 1e-6:
        return 0.0
    delta = 0.5 * (next_val - prev_val) / denom
    if not np.isfinite(delta):
        return 0.0
    return float(max(-0.5, min(0.5, delta)))


def bin_range(
    lo_hz: float, hi_hz: float, sample_rate: float, fft_size: int
) -> Tuple[int, int]:
    """Inclusive bin range covering [lo_hz, hi_hz], leaving room for both neighbours."""
    bin_hz = sample_rate / fft_size
    num_bins = fft_size // 2
    low_bin = max(1, int(np.floor(lo_hz / bin_hz)))
    high_bin = min(num_bins - 2, int(np.ceil(hi_hz / bin_hz)))
    return low_bin, high_bin
