"""YIN fundamental frequency estimation.

Based on de Cheveigné, A. & Kawahara, H. (2002). YIN, a fundamental frequency
estimator for speech and music. JASA 111(4), 1917-1930.

The difference function is computed with an FFT cross-correlation, the
cumulative mean normalized difference function (CMNDF) is scanned for the
first dip under the threshold, the scan keeps walking while the CMNDF still
falls, and the lag is refined with parabolic interpolation on the raw
difference function. The CMNDF's running-mean normalisation skews a parabola
fit at the short lags of high notes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Optional

import numpy as np

from ..core.interfaces import IPitchEstimator
from ..logger import get_logger
from ..note_types import PitchEstimate
from .spectrum import check_sample_rate, compute_rms

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.06
MIN_FREQUENCY = 55.0  # Hz
MAX_FREQUENCY = 4200.0  # Hz
# Refined estimates this close outside the range still count as inside
RANGE_TOLERANCE_CENTS = 3.0


@dataclass
class YinResult:
    """Outcome of a successful YIN search."""

    frequency: float  # Hz
    tau: float  # Refined lag in samples
    cmndf_value: float  # d'(tau) at the integer minimum


def difference_function(buffer: np.ndarray) -> np.ndarray:
    """Squared difference d(tau) for tau = 0 .. N/2 - 1 over an N/2 window.

    d(tau) = sum_{j < W} (x[j] - x[j + tau])^2 with W = N/2, expanded as
    energy(x[0:W]) + energy(x[tau:tau+W]) - 2 * r(tau).
    """
    x = np.asarray(buffer, dtype=np.float64)
    half = len(x) // 2

    energy = np.concatenate(([0.0], np.cumsum(x**2)))
    taus = np.arange(half)
    lead_energy = energy[half]
    lagged_energy = energy[taus + half] - energy[taus]

    size = 1
    while size < len(x) + half:
        size *= 2
    # Convolving with the reversed window gives r(tau) at index half - 1 + tau
    spectrum = np.fft.rfft(x, size) * np.fft.rfft(x[:half][::-1], size)
    correlation = np.fft.irfft(spectrum, size)[half - 1 : 2 * half - 1]

    diff = lead_energy + lagged_energy - 2.0 * correlation
    diff[0] = 0.0
    # FFT round-off can leave tiny negatives where the true value is zero
    return np.maximum(diff, 0.0)


def cumulative_mean_normalized_difference(diff: np.ndarray) -> np.ndarray:
    """d'(tau) = d(tau) * tau / sum_{j=1..tau} d(j), with d'(0) = 1.

    Lags whose running sum is still zero (digital silence) are set to 1 so they
    can never pass the threshold.
    """
    cmndf = np.ones(len(diff), dtype=np.float64)
    if len(diff) < 2:
        return cmndf

    running_sum = np.cumsum(diff[1:])
    taus = np.arange(1, len(diff))
    with np.errstate(divide="ignore", invalid="ignore"):
        values = diff[1:] * taus / running_sum
    values[running_sum <= 0] = 1.0
    cmndf[1:] = values
    return cmndf


def yin_cmndf(buffer: np.ndarray) -> np.ndarray:
    """CMNDF of a time-domain buffer for tau = 0 .. N/2 - 1."""
    return cumulative_mean_normalized_difference(difference_function(buffer))


def find_yin_lag(cmndf: np.ndarray, threshold: float) -> Optional[int]:
    """First lag whose CMNDF dips under threshold, walked down to its local minimum."""
    size = len(cmndf)
    below = np.nonzero(cmndf[2:] < threshold)[0]
    if len(below) == 0:
        return None

    tau = int(below[0]) + 2
    while tau + 1 < size and cmndf[tau + 1] < cmndf[tau]:
        tau += 1
    return tau


def parabolic_minimum(values: np.ndarray, pos: int) -> float:
    """Refine an integer minimum position with the vertex of a parabola."""
    size = len(values)
    x0 = pos - 1 if pos > 0 else pos
    x2 = pos + 1 if pos + 1 < size else pos

    if x0 == pos:
        return float(pos if values[pos] <= values[x2] else x2)
    if x2 == pos:
        return float(pos if values[pos] <= values[x0] else x0)

    s0, s1, s2 = values[x0], values[pos], values[x2]
    denom = 2.0 * (2.0 * s1 - s2 - s0)
    if denom == 0:
        return float(pos)
    return pos + (s2 - s0) / denom


def refine_lag(diff: np.ndarray, tau: int) -> float:
    """Sub-sample lag from the raw difference function around tau.

    The fit is centred on whichever neighbour of tau has the lowest d(tau).
    """
    pos = tau
    if pos > 1 and diff[pos - 1] < diff[pos]:
        pos -= 1
    elif pos + 1 < len(diff) and diff[pos + 1] < diff[pos]:
        pos += 1
    return parabolic_minimum(diff, pos)


def in_range(frequency: float, min_frequency: float, max_frequency: float) -> bool:
    slack = 2.0 ** (RANGE_TOLERANCE_CENTS / 1200.0)
    return min_frequency / slack <= frequency <= max_frequency * slack


def yin_search(
    buffer: np.ndarray,
    sample_rate: float,
    threshold: float = DEFAULT_THRESHOLD,
    min_frequency: float = MIN_FREQUENCY,
    max_frequency: float = MAX_FREQUENCY,
) -> Optional[YinResult]:
    """Run the full YIN search and keep the intermediate lag information.

    Returns:
        YinResult, or None if no sub-threshold minimum exists or the
        frequency falls outside [min_frequency, max_frequency]
    """
    check_sample_rate(sample_rate)
    if len(buffer) < 8:
        raise ValueError(f"Buffer too short for YIN: {len(buffer)} samples")

    diff = difference_function(buffer)
    cmndf = cumulative_mean_normalized_difference(diff)
    tau = find_yin_lag(cmndf, threshold)
    if tau is None:
        return None

    better_tau = refine_lag(diff, tau)
    if better_tau <= 0:
        return None

    frequency = sample_rate / better_tau
    if not in_range(frequency, min_frequency, max_frequency):
        logger.debug(f"YIN estimate {frequency:.2f} Hz outside plausible range")
        return None

    return YinResult(frequency=frequency, tau=better_tau, cmndf_value=float(cmndf[tau]))


def detect_pitch(
    buffer: np.ndarray,
    sample_rate: float,
    threshold: float = DEFAULT_THRESHOLD,
    min_frequency: float = MIN_FREQUENCY,
    max_frequency: float = MAX_FREQUENCY,
) -> Optional[float]:
    """Detect the fundamental frequency of a buffer with YIN.

    Args:
        buffer: Time-domain samples in [-1, 1]
        sample_rate: Sample rate in Hz
        threshold: CMNDF threshold; lower is stricter

    Returns:
        Frequency in Hz, or None if no periodic signal was found
    """
    result = yin_search(buffer, sample_rate, threshold, min_frequency, max_frequency)
    return result.frequency if result is not None else None


class YinPitchEstimator(IPitchEstimator):
    """RMS-gated YIN estimator producing PitchEstimate values."""

    DEFAULT_THRESHOLD: ClassVar[float] = DEFAULT_THRESHOLD
    DEFAULT_MIN_RMS: ClassVar[float] = 0.005  # Below this the frame is silent
    RMS_FULL_CONFIDENCE: ClassVar[float] = 0.1  # RMS at which confidence saturates
    NO_PITCH_CONFIDENCE_SCALE: ClassVar[float] = 0.3

    def __init__(
        self,
        yin_threshold: Optional[float] = None,
        min_rms: Optional[float] = None,
        min_frequency: float = MIN_FREQUENCY,
        max_frequency: float = MAX_FREQUENCY,
    ) -> None:
        """Initialize the estimator.

        Args:
            yin_threshold: CMNDF threshold (default 0.06)
            min_rms: RMS floor below which a frame is treated as silent (default 0.005)
            min_frequency: Lowest plausible fundamental in Hz
            max_frequency: Highest plausible fundamental in Hz
        """
        self._threshold = float(
            yin_threshold if yin_threshold is not None else self.DEFAULT_THRESHOLD
        )
        self._min_rms = float(min_rms if min_rms is not None else self.DEFAULT_MIN_RMS)
        self._min_frequency = float(min_frequency)
        self._max_frequency = float(max_frequency)

        logger.debug(
            f"Initialized YinPitchEstimator with threshold={self._threshold}, "
            f"min_rms={self._min_rms}"
        )

    @property
    def threshold(self) -> float:
        """Get the YIN threshold.

        Returns:
            float: Current CMNDF threshold (default 0.06)
        """
        return self._threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        """Tighten or relax the threshold, e.g. as the strike decays."""
        if value <= 0:
            raise ValueError(f"YIN threshold must be positive, got {value}")
        self._threshold = float(value)

    @property
    def min_rms(self) -> float:
        return self._min_rms

    @min_rms.setter
    def min_rms(self, value: float) -> None:
        self._min_rms = max(0.0, float(value))

    def estimate(
        self,
        samples: np.ndarray,
        sample_rate: float,
        min_rms: Optional[float] = None,
    ) -> PitchEstimate:
        """Estimate the fundamental of one frame.

        Args:
            samples: Time-domain samples in [-1, 1]
            sample_rate: Sample rate in Hz
            min_rms: Optional RMS floor overriding the configured one

        Returns:
            PitchEstimate; frequency is None for silent or aperiodic frames
        """
        check_sample_rate(sample_rate)
        floor = self._min_rms if min_rms is None else min_rms

        rms = compute_rms(samples)
        if rms < floor:
            return PitchEstimate(frequency=None, confidence=0.0)

        level_confidence = min(1.0, rms / self.RMS_FULL_CONFIDENCE)

        result = yin_search(
            samples,
            sample_rate,
            self._threshold,
            self._min_frequency,
            self._max_frequency,
        )
        if result is None:
            return PitchEstimate(
                frequency=None,
                confidence=level_confidence * self.NO_PITCH_CONFIDENCE_SCALE,
            )

        periodicity = min(1.0, max(0.0, 1.0 - result.cmndf_value))
        logger.debug(
            f"YIN: {result.frequency:.2f} Hz, d'={result.cmndf_value:.4f}, rms={rms:.4f}"
        )
        return PitchEstimate(
            frequency=result.frequency, confidence=level_confidence * periodicity
        )
