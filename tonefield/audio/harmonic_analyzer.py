"""Frequency-domain harmonic peak finder and fundamental validation.

Partials are measured independently in the spectrum rather than derived by
multiplying the fundamental, since struck metal is inharmonic.

Fundamental validation corrects YIN octave errors. The lower candidates
(detected / 3, then detected / 2) are tried in order; the first whose spectral
peak is within its dB window of the detected peak wins. The sub-third is tried
first so a real low fundamental is not masked by a louder sub-octave note.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, List, Optional

import numpy as np
from scipy.signal import find_peaks

from ..logger import get_logger
from ..note_types import PartialReading, PartialReadings
from ..note_utils import calc_cents, frequency_to_note, window_hi, window_lo
from .spectrum import bin_range, check_sample_rate, check_spectrum, parabolic_offset

logger = get_logger(__name__)

SEARCH_CENTS = 80.0  # Half-width of the search window around a target
NOISE_FLOOR_DB = -65.0

# Redirect a detection to a lower candidate when the candidate's peak is no
# more than this many dB below the detected peak
SUB_OCTAVE_WINDOW_DB = 6.0
SUB_THIRD_WINDOW_DB = 6.0
# A forward-confirmed fundamental needs a 2x or 3x partial within this many dB
CONFIRM_WINDOW_DB = 24.0

MIN_FUNDAMENTAL_HZ = 55.0
RESCAN_MIN_HZ = 55.0
RESCAN_MAX_HZ = 1200.0


@dataclass
class SpectralPeak:
    """A peak located in a dB spectrum."""

    bin: int  # Integer bin of the maximum
    magnitude_db: float  # dB at that bin
    frequency: float  # Hz, after parabolic refinement


@dataclass
class ValidationConfig:
    """Thresholds used by validate_fundamental."""

    search_cents: float = SEARCH_CENTS
    noise_floor_db: float = NOISE_FLOOR_DB
    sub_octave_window_db: float = SUB_OCTAVE_WINDOW_DB
    sub_third_window_db: float = SUB_THIRD_WINDOW_DB
    confirm_window_db: float = CONFIRM_WINDOW_DB
    forward_confirmation: bool = False
    min_frequency: float = MIN_FUNDAMENTAL_HZ
    rescan_min_hz: float = RESCAN_MIN_HZ
    rescan_max_hz: float = RESCAN_MAX_HZ


@dataclass
class FundamentalCandidate:
    """A lower frequency that may be the true fundamental of a detection."""

    label: str
    divisor: int
    window_db: float

    def frequency(self, detected: float) -> float:
        return detected / self.divisor


def find_peak(
    spectrum_db: np.ndarray,
    target_freq: float,
    sample_rate: float,
    fft_size: int,
    search_cents: float = SEARCH_CENTS,
    noise_floor_db: float = NOISE_FLOOR_DB,
) -> Optional[SpectralPeak]:
    """Find the strongest peak within +/- search_cents of target_freq.

    Args:
        spectrum_db: Log-magnitude spectrum, length fft_size / 2
        target_freq: Expected frequency in Hz
        sample_rate: Sample rate in Hz
        fft_size: FFT size the spectrum was computed with
        search_cents: Half-width of the search window in cents
        noise_floor_db: Peaks below this level are rejected

    Returns:
        SpectralPeak, or None if the window is empty or the peak is below the
        noise floor

    Raises:
        ValueError: If the sample rate, FFT size or spectrum length is invalid
    """
    check_sample_rate(sample_rate)
    check_spectrum(spectrum_db, fft_size)
    if target_freq is None or target_freq <= 0:
        return None

    low_bin, high_bin = bin_range(
        window_lo(target_freq, search_cents),
        window_hi(target_freq, search_cents),
        sample_rate,
        fft_size,
    )
    if low_bin >= high_bin:
        return None

    segment = np.asarray(spectrum_db[low_bin : high_bin + 1], dtype=np.float64)
    peak_bin = low_bin + int(np.argmax(segment))
    peak_db = float(spectrum_db[peak_bin])
    if not peak_db >= noise_floor_db:
        return None

    delta = parabolic_offset(
        float(spectrum_db[peak_bin - 1]), peak_db, float(spectrum_db[peak_bin + 1])
    )
    bin_hz = sample_rate / fft_size
    return SpectralPeak(
        bin=peak_bin, magnitude_db=peak_db, frequency=(peak_bin + delta) * bin_hz
    )


def find_harmonic_frequency(
    spectrum_db: np.ndarray,
    target_freq: float,
    sample_rate: float,
    fft_size: int,
    search_cents: float = SEARCH_CENTS,
    noise_floor_db: float = NOISE_FLOOR_DB,
) -> Optional[float]:
    """Sub-bin frequency of the strongest peak near target_freq, or None."""
    peak = find_peak(
        spectrum_db, target_freq, sample_rate, fft_size, search_cents, noise_floor_db
    )
    return peak.frequency if peak is not None else None


def fundamental_candidates(config: ValidationConfig) -> List[FundamentalCandidate]:
    """Lower candidates in the order they are tried."""
    return [
        FundamentalCandidate("sub-third", 3, config.sub_third_window_db),
        FundamentalCandidate("sub-octave", 2, config.sub_octave_window_db),
    ]


def confirm_candidate(
    candidate_peak: Optional[SpectralPeak],
    reference_db: float,
    window_db: float,
) -> bool:
    """True if the candidate peak is comparable to or louder than the reference."""
    if candidate_peak is None:
        return False
    return candidate_peak.magnitude_db >= reference_db - window_db


def has_confirming_partial(
    spectrum_db: np.ndarray,
    fundamental: float,
    sample_rate: float,
    fft_size: int,
    config: ValidationConfig,
    multiples=(2, 3),
) -> bool:
    """True if one of the fundamental's own upper partials is present.

    The partial must lie within config.confirm_window_db of the fundamental's
    own peak.
    """
    own_peak = find_peak(
        spectrum_db,
        fundamental,
        sample_rate,
        fft_size,
        config.search_cents,
        config.noise_floor_db,
    )
    if own_peak is None:
        return False

    nyquist = sample_rate / 2.0
    for multiple in multiples:
        target = fundamental * multiple
        if target >= nyquist:
            continue
        partial = find_peak(
            spectrum_db,
            target,
            sample_rate,
            fft_size,
            config.search_cents,
            config.noise_floor_db,
        )
        if confirm_candidate(partial, own_peak.magnitude_db, config.confirm_window_db):
            return True
    return False


def rescan_fundamental(
    spectrum_db: np.ndarray,
    sample_rate: float,
    fft_size: int,
    config: Optional[ValidationConfig] = None,
) -> Optional[float]:
    """Strongest local maximum in the rescan range whose octave is confirmed.

    Returns:
        Refined frequency in Hz, or None if no local maximum qualifies
    """
    config = config or ValidationConfig()
    check_sample_rate(sample_rate)
    check_spectrum(spectrum_db, fft_size)

    low_bin, high_bin = bin_range(
        config.rescan_min_hz, config.rescan_max_hz, sample_rate, fft_size
    )
    if low_bin >= high_bin:
        return None

    spectrum = np.asarray(spectrum_db, dtype=np.float64)
    # One bin of margin each side so maxima at the range edges still count
    offset = low_bin - 1
    peaks, properties = find_peaks(
        spectrum[offset : high_bin + 2], height=config.noise_floor_db
    )
    # Loudest first
    order = np.argsort(-properties["peak_heights"], kind="stable")
    maxima = peaks[order] + offset

    bin_hz = sample_rate / fft_size
    for peak_bin in maxima:
        peak_db = float(spectrum[peak_bin])
        delta = parabolic_offset(
            float(spectrum[peak_bin - 1]), peak_db, float(spectrum[peak_bin + 1])
        )
        frequency = (peak_bin + delta) * bin_hz
        octave = find_peak(
            spectrum,
            frequency * 2,
            sample_rate,
            fft_size,
            config.search_cents,
            config.noise_floor_db,
        )
        if confirm_candidate(octave, peak_db, config.confirm_window_db):
            logger.debug(f"Rescan found confirmed fundamental at {frequency:.2f} Hz")
            return frequency

    return None


def validate_fundamental(
    detected: float,
    spectrum_db: np.ndarray,
    sample_rate: float,
    fft_size: int,
    config: Optional[ValidationConfig] = None,
) -> Optional[float]:
    """Correct octave errors in a YIN estimate using the spectrum.

    Args:
        detected: Frequency reported by the time-domain estimator, in Hz
        spectrum_db: Log-magnitude spectrum, length fft_size / 2
        sample_rate: Sample rate in Hz
        fft_size: FFT size the spectrum was computed with
        config: Redirect and confirmation thresholds

    Returns:
        The validated fundamental in Hz, or None if forward confirmation is
        enabled and neither the candidate nor the rescan produced a confirmed
        fundamental
    """
    config = config or ValidationConfig()
    check_sample_rate(sample_rate)
    check_spectrum(spectrum_db, fft_size)
    if detected is None or detected <= 0:
        return None

    def peak_at(freq: float) -> Optional[SpectralPeak]:
        return find_peak(
            spectrum_db,
            freq,
            sample_rate,
            fft_size,
            config.search_cents,
            config.noise_floor_db,
        )

    detected_peak = peak_at(detected)
    # Without a peak of its own, any lower candidate above the noise floor wins
    reference_db = (
        detected_peak.magnitude_db if detected_peak is not None else -np.inf
    )

    chosen = detected
    for candidate in fundamental_candidates(config):
        candidate_freq = candidate.frequency(detected)
        if candidate_freq < config.min_frequency:
            continue
        if confirm_candidate(peak_at(candidate_freq), reference_db, candidate.window_db):
            logger.debug(
                f"Redirected {detected:.2f} Hz to {candidate.label} "
                f"{candidate_freq:.2f} Hz"
            )
            chosen = candidate_freq
            break

    # Re-search the winner so every path gets the same sub-bin refinement
    refined = peak_at(chosen)
    if refined is not None:
        chosen = refined.frequency

    if config.forward_confirmation and not has_confirming_partial(
        spectrum_db, chosen, sample_rate, fft_size, config
    ):
        logger.debug(f"Orphaned detection at {chosen:.2f} Hz, rescanning spectrum")
        return rescan_fundamental(spectrum_db, sample_rate, fft_size, config)

    return chosen


class HarmonicAnalyzer:
    """Measures the fundamental, octave and compound fifth of a tonefield."""

    OCTAVE_RATIO: ClassVar[float] = 2.0
    COMPOUND_FIFTH_RATIO: ClassVar[float] = 3.0

    def __init__(
        self,
        search_cents: float = SEARCH_CENTS,
        noise_floor_db: float = NOISE_FLOOR_DB,
        sub_octave_window_db: float = SUB_OCTAVE_WINDOW_DB,
        sub_third_window_db: float = SUB_THIRD_WINDOW_DB,
        confirm_window_db: float = CONFIRM_WINDOW_DB,
        forward_confirmation: bool = False,
        rescan_min_hz: float = RESCAN_MIN_HZ,
        rescan_max_hz: float = RESCAN_MAX_HZ,
    ) -> None:
        self.validation = ValidationConfig(
            search_cents=search_cents,
            noise_floor_db=noise_floor_db,
            sub_octave_window_db=sub_octave_window_db,
            sub_third_window_db=sub_third_window_db,
            confirm_window_db=confirm_window_db,
            forward_confirmation=forward_confirmation,
            rescan_min_hz=rescan_min_hz,
            rescan_max_hz=rescan_max_hz,
        )
        logger.debug(f"Initialized HarmonicAnalyzer with {self.validation}")

    @property
    def search_cents(self) -> float:
        return self.validation.search_cents

    @property
    def noise_floor_db(self) -> float:
        return self.validation.noise_floor_db

    def find_partial(
        self,
        spectrum_db: np.ndarray,
        target_freq: float,
        sample_rate: float,
        fft_size: int,
    ) -> Optional[float]:
        return find_harmonic_frequency(
            spectrum_db,
            target_freq,
            sample_rate,
            fft_size,
            self.search_cents,
            self.noise_floor_db,
        )

    def validate(
        self,
        detected: float,
        spectrum_db: np.ndarray,
        sample_rate: float,
        fft_size: int,
    ) -> Optional[float]:
        return validate_fundamental(
            detected, spectrum_db, sample_rate, fft_size, self.validation
        )

    def measure_partials(
        self,
        spectrum_db: np.ndarray,
        fundamental: Optional[float],
        sample_rate: float,
        fft_size: int,
        fundamental_target: Optional[float] = None,
        octave_target: Optional[float] = None,
        compound_fifth_target: Optional[float] = None,
    ) -> PartialReadings:
        """Measure the octave and compound fifth of a validated fundamental.

        Args:
            spectrum_db: Log-magnitude spectrum, length fft_size / 2
            fundamental: Validated fundamental in Hz, or None
            sample_rate: Sample rate in Hz
            fft_size: FFT size the spectrum was computed with
            fundamental_target: Reference for the fundamental's cents; the
                nearest equal-tempered note when omitted
            octave_target: Reference for the octave; 2x the fundamental when omitted
            compound_fifth_target: Reference for the compound fifth; 3x the
                fundamental when omitted

        Returns:
            PartialReadings; undetected partials have null frequency and cents
        """
        if fundamental is None or fundamental <= 0:
            return PartialReadings()

        if fundamental_target is not None:
            fundamental_cents = calc_cents(fundamental, fundamental_target)
        else:
            fundamental_cents = frequency_to_note(fundamental).cents

        octave_ref = octave_target or fundamental * self.OCTAVE_RATIO
        fifth_ref = compound_fifth_target or fundamental * self.COMPOUND_FIFTH_RATIO

        readings = PartialReadings(
            fundamental=PartialReading(frequency=fundamental, cents=fundamental_cents),
            octave=self._reading(spectrum_db, octave_ref, sample_rate, fft_size),
            compound_fifth=self._reading(spectrum_db, fifth_ref, sample_rate, fft_size),
        )
        logger.debug(
            f"Partials: f={fundamental:.2f} Hz, "
            f"oct={readings.octave.frequency}, c5={readings.compound_fifth.frequency}"
        )
        return readings

    def _reading(
        self,
        spectrum_db: np.ndarray,
        target: float,
        sample_rate: float,
        fft_size: int,
    ) -> PartialReading:
        if target >= sample_rate / 2.0:
            return PartialReading()
        frequency = self.find_partial(spectrum_db, target, sample_rate, fft_size)
        if frequency is None or frequency <= 0:
            return PartialReading()
        return PartialReading(frequency=frequency, cents=calc_cents(frequency, target))
