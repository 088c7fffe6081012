import numpy as np
import pytest

from tonefield.audio.spectral_matcher import (
    MatcherConfig,
    SpectralMatcher,
    match_note,
    score_all,
    score_candidate,
)
from tonefield.audio.spectrum import compute_spectrum_db

from audio_signals import SAMPLE_RATE, harmonic_signal

FFT_SIZE = 4096


def spectrum_of(freq, **kwargs):
    return compute_spectrum_db(harmonic_signal(freq, **kwargs), FFT_SIZE)


@pytest.mark.parametrize(
    "freq, midi",
    [(146.83, 50), (293.66, 62), (440.0, 69), (587.33, 74)],
    ids=["D3", "D4", "A4", "D5"],
)
def test_matches_played_note(freq, midi):
    match = match_note(spectrum_of(freq), SAMPLE_RATE, FFT_SIZE)
    assert match is not None
    assert match.midi_note == midi
    assert 0.3 < match.score <= 1.0


def test_fundamental_outscores_sub_octave():
    spectrum = spectrum_of(293.66)
    config = MatcherConfig()
    assert score_candidate(spectrum, 62, SAMPLE_RATE, FFT_SIZE, config) > score_candidate(
        spectrum, 50, SAMPLE_RATE, FFT_SIZE, config
    )


def test_scores_are_bounded():
    scores = score_all(spectrum_of(440.0), SAMPLE_RATE, FFT_SIZE)
    assert len(scores) == 84 - 50 + 1
    assert all(0.0 <= score <= 1.0 for _, score in scores)


def test_silence_has_no_match():
    spectrum = compute_spectrum_db(np.zeros(FFT_SIZE), FFT_SIZE)
    assert match_note(spectrum, SAMPLE_RATE, FFT_SIZE) is None


def test_rejects_bad_spectrum():
    with pytest.raises(ValueError):
        match_note(np.zeros(100), SAMPLE_RATE, FFT_SIZE)


def test_config_validation():
    with pytest.raises(ValueError):
        MatcherConfig(multiples=(1, 2), weights=(1.0,))
    with pytest.raises(ValueError):
        MatcherConfig(min_midi=80, max_midi=60)


def test_matcher_respects_range():
    matcher = SpectralMatcher(min_midi=60, max_midi=72)
    match = matcher.match(spectrum_of(146.83), SAMPLE_RATE, FFT_SIZE)
    assert match is None or 60 <= match.midi_note <= 72


def test_louder_upper_partials():
    spectrum = spectrum_of(293.66, amplitudes=(0.4, 1.0, 0.8))
    match = match_note(spectrum, SAMPLE_RATE, FFT_SIZE)
    assert match is not None
    assert abs(match.midi_note - 62) <= 1
