"""Spectral template matching for note identification without a target.

Every candidate note in the instrument range is scored against the whole
spectrum using its expected partial set, so a note is still identified when
its octave or compound fifth is louder than the fundamental.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from ..logger import get_logger
from ..note_types import TemplateMatch
from ..note_utils import cents_deviation, midi_to_frequency
from .harmonic_analyzer import find_harmonic_frequency
from .spectrum import check_sample_rate, check_spectrum

logger = get_logger(__name__)

MIN_MIDI = 50  # D3
MAX_MIDI = 84  # C6
SEARCH_CENTS = 50.0
NOISE_FLOOR_DB = -65.0
# A peak at NOISE_FLOOR_DB + PROMINENCE_RANGE_DB (-20 dB) or louder scores 1
PROMINENCE_RANGE_DB = 45.0
MIN_MATCH_SCORE = 0.3

PARTIAL_MULTIPLES = (1, 2, 3, 4)
PARTIAL_WEIGHTS = (1.0, 0.8, 0.6, 0.3)


@dataclass
class MatcherConfig:
    """Scoring parameters for the template matcher."""

    min_midi: int = MIN_MIDI
    max_midi: int = MAX_MIDI
    search_cents: float = SEARCH_CENTS
    noise_floor_db: float = NOISE_FLOOR_DB
    prominence_range_db: float = PROMINENCE_RANGE_DB
    min_score: float = MIN_MATCH_SCORE
    multiples: Tuple[int, ...] = field(default=PARTIAL_MULTIPLES)
    weights: Tuple[float, ...] = field(default=PARTIAL_WEIGHTS)

    def __post_init__(self):
        if len(self.multiples) != len(self.weights):
            raise ValueError("Partial multiples and weights must have the same length")
        if self.min_midi > self.max_midi:
            raise ValueError(f"Empty MIDI range {self.min_midi}..{self.max_midi}")


def score_candidate(
    spectrum_db: np.ndarray,
    midi_note: int,
    sample_rate: float,
    fft_size: int,
    config: Optional[MatcherConfig] = None,
) -> float:
    """Template score of one MIDI note against the spectrum, in [0, 1].

    Each partial found contributes weight * prominence * accuracy. The sum is
    divided by the weights of the partials that lie below Nyquist.
    """
    config = config or MatcherConfig()
    bin_hz = sample_rate / fft_size
    nyquist = sample_rate / 2.0
    nominal = midi_to_frequency(midi_note)

    weighted_sum = 0.0
    evaluated_weight = 0.0
    for multiple, weight in zip(config.multiples, config.weights):
        target = nominal * multiple
        if target > nyquist:
            continue
        evaluated_weight += weight

        peak_freq = find_harmonic_frequency(
            spectrum_db,
            target,
            sample_rate,
            fft_size,
            config.search_cents,
            config.noise_floor_db,
        )
        if peak_freq is None:
            continue

        peak_bin = min(len(spectrum_db) - 1, max(0, int(round(peak_freq / bin_hz))))
        peak_db = float(spectrum_db[peak_bin])
        prominence = min(
            1.0, max(0.0, (peak_db - config.noise_floor_db) / config.prominence_range_db)
        )

        cent_error = abs(cents_deviation(peak_freq, target))
        accuracy = max(0.0, 1.0 - cent_error / config.search_cents)

        weighted_sum += weight * prominence * accuracy

    if evaluated_weight <= 0:
        return 0.0
    return weighted_sum / evaluated_weight


def score_all(
    spectrum_db: np.ndarray,
    sample_rate: float,
    fft_size: int,
    config: Optional[MatcherConfig] = None,
) -> List[Tuple[int, float]]:
    """(midi_note, score) for every candidate in the configured range."""
    config = config or MatcherConfig()
    check_sample_rate(sample_rate)
    check_spectrum(spectrum_db, fft_size)
    return [
        (midi, score_candidate(spectrum_db, midi, sample_rate, fft_size, config))
        for midi in range(config.min_midi, config.max_midi + 1)
    ]


def match_note(
    spectrum_db: np.ndarray,
    sample_rate: float,
    fft_size: int,
    config: Optional[MatcherConfig] = None,
) -> Optional[TemplateMatch]:
    """Best-matching note for the spectrum.

    Args:
        spectrum_db: Log-magnitude spectrum, length fft_size / 2
        sample_rate: Sample rate in Hz
        fft_size: FFT size the spectrum was computed with
        config: Scoring parameters

    Returns:
        TemplateMatch of the highest-scoring candidate, or None if no candidate
        scores above the minimum

    Raises:
        ValueError: If the sample rate, FFT size or spectrum length is invalid
    """
    config = config or MatcherConfig()

    best: Optional[TemplateMatch] = None
    best_score = config.min_score
    for midi, score in score_all(spectrum_db, sample_rate, fft_size, config):
        if score > best_score:
            best_score = score
            best = TemplateMatch(
                midi_note=midi, nominal_frequency=midi_to_frequency(midi), score=score
            )

    if best is not None:
        logger.debug(f"Template match: MIDI {best.midi_note} score={best.score:.3f}")
    return best


class SpectralMatcher:
    """Configured template matcher."""

    def __init__(
        self,
        min_midi: int = MIN_MIDI,
        max_midi: int = MAX_MIDI,
        search_cents: float = SEARCH_CENTS,
        noise_floor_db: float = NOISE_FLOOR_DB,
        prominence_range_db: float = PROMINENCE_RANGE_DB,
        min_score: float = MIN_MATCH_SCORE,
    ) -> None:
        self.config = MatcherConfig(
            min_midi=int(min_midi),
            max_midi=int(max_midi),
            search_cents=search_cents,
            noise_floor_db=noise_floor_db,
            prominence_range_db=prominence_range_db,
            min_score=min_score,
        )

    def match(
        self, spectrum_db: np.ndarray, sample_rate: float, fft_size: int
    ) -> Optional[TemplateMatch]:
        return match_note(spectrum_db, sample_rate, fft_size, self.config)
