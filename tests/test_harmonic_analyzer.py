import numpy as np
import pytest

from tonefield.audio.harmonic_analyzer import (
    HarmonicAnalyzer,
    ValidationConfig,
    find_harmonic_frequency,
    find_peak,
    rescan_fundamental,
    validate_fundamental,
)
from tonefield.audio.spectrum import compute_spectrum_db

from audio_signals import SAMPLE_RATE, cents, harmonic_signal, sine

FFT_SIZE = 16384
D3 = 146.832
D4 = 293.665


def spectrum_of(signal):
    return compute_spectrum_db(signal, FFT_SIZE)


@pytest.fixture
def d3_spectrum():
    return spectrum_of(harmonic_signal(D3, amplitudes=(1.0, 0.6, 0.4), n=FFT_SIZE))


def test_find_harmonic_frequency(d3_spectrum):
    for multiple in (1, 2, 3):
        found = find_harmonic_frequency(d3_spectrum, D3 * multiple, SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(found, D3 * multiple)) < 2.0


def test_find_peak_in_silence():
    spectrum = spectrum_of(np.zeros(FFT_SIZE))
    assert find_peak(spectrum, 440.0, SAMPLE_RATE, FFT_SIZE) is None


def test_find_peak_rejects_mismatched_spectrum(d3_spectrum):
    with pytest.raises(ValueError):
        find_peak(d3_spectrum[:-1], 440.0, SAMPLE_RATE, FFT_SIZE)
    with pytest.raises(ValueError):
        find_peak(d3_spectrum, 440.0, 0, FFT_SIZE)


def test_find_peak_non_positive_target(d3_spectrum):
    assert find_peak(d3_spectrum, 0.0, SAMPLE_RATE, FFT_SIZE) is None


class TestValidateFundamental:
    def test_correct_detection_kept(self, d3_spectrum):
        result = validate_fundamental(D3, d3_spectrum, SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(result, D3)) < 2.0

    def test_octave_error_redirected(self, d3_spectrum):
        result = validate_fundamental(D4, d3_spectrum, SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(result, D3)) < 2.0

    def test_third_harmonic_redirected(self, d3_spectrum):
        result = validate_fundamental(3 * D3, d3_spectrum, SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(result, D3)) < 2.0

    def test_sub_third_checked_before_sub_octave(self):
        # 3f detected while both f and a louder 1.5f are present
        f = 110.0
        signal = (
            sine(f, n=FFT_SIZE, amplitude=0.3)
            + sine(1.5 * f, n=FFT_SIZE, amplitude=0.5)
            + sine(3 * f, n=FFT_SIZE, amplitude=0.3)
        )
        result = validate_fundamental(3 * f, spectrum_of(signal), SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(result, f)) < 2.0

    def test_weak_sub_octave_ignored(self):
        signal = sine(D4, n=FFT_SIZE, amplitude=0.5) + sine(D3, n=FFT_SIZE, amplitude=0.005)
        result = validate_fundamental(D4, spectrum_of(signal), SAMPLE_RATE, FFT_SIZE)
        assert abs(cents(result, D4)) < 2.0

    def test_forward_confirmation_accepts_real_note(self, d3_spectrum):
        config = ValidationConfig(forward_confirmation=True)
        result = validate_fundamental(D3, d3_spectrum, SAMPLE_RATE, FFT_SIZE, config)
        assert abs(cents(result, D3)) < 2.0

    def test_forward_confirmation_rejects_orphan(self):
        spectrum = spectrum_of(sine(D4, n=FFT_SIZE))
        config = ValidationConfig(forward_confirmation=True)
        assert validate_fundamental(D4, spectrum, SAMPLE_RATE, FFT_SIZE, config) is None

    def test_invalid_detection(self, d3_spectrum):
        assert validate_fundamental(0.0, d3_spectrum, SAMPLE_RATE, FFT_SIZE) is None


def test_rescan_finds_confirmed_fundamental(d3_spectrum):
    result = rescan_fundamental(d3_spectrum, SAMPLE_RATE, FFT_SIZE)
    assert abs(cents(result, D3)) < 2.0


def test_rescan_skips_louder_orphan_peak():
    signal = sine(700.0, n=FFT_SIZE, amplitude=0.8) + harmonic_signal(
        D3, amplitudes=(1.0, 0.6, 0.4), n=FFT_SIZE, peak=0.4
    )
    result = rescan_fundamental(spectrum_of(signal), SAMPLE_RATE, FFT_SIZE)
    assert abs(cents(result, D3)) < 2.0


def test_rescan_of_silence():
    assert rescan_fundamental(spectrum_of(np.zeros(FFT_SIZE)), SAMPLE_RATE, FFT_SIZE) is None


class TestHarmonicAnalyzer:
    def test_measure_partials(self, d3_spectrum):
        analyzer = HarmonicAnalyzer()
        readings = analyzer.measure_partials(d3_spectrum, D3, SAMPLE_RATE, FFT_SIZE)
        assert readings.fundamental.frequency == D3
        assert abs(readings.fundamental.cents) < 0.1
        assert abs(readings.octave.cents) < 2.0
        assert abs(readings.compound_fifth.cents) < 2.0

    def test_measure_against_target(self, d3_spectrum):
        target = D3 * 2 ** (10 / 1200)
        readings = HarmonicAnalyzer().measure_partials(
            d3_spectrum, D3, SAMPLE_RATE, FFT_SIZE, fundamental_target=target
        )
        assert readings.fundamental.cents == pytest.approx(-10.0, abs=0.01)

    def test_missing_partial(self):
        spectrum = spectrum_of(sine(D3, n=FFT_SIZE))
        readings = HarmonicAnalyzer().measure_partials(spectrum, D3, SAMPLE_RATE, FFT_SIZE)
        assert readings.fundamental.detected
        assert not readings.octave.detected
        assert readings.octave.cents is None

    def test_no_fundamental(self, d3_spectrum):
        readings = HarmonicAnalyzer().measure_partials(
            d3_spectrum, None, SAMPLE_RATE, FFT_SIZE
        )
        assert not readings.fundamental.detected
        assert not readings.compound_fifth.detected

    def test_partials_above_nyquist(self):
        sample_rate = 8000
        spectrum = compute_spectrum_db(sine(3000.0, n=4096, sample_rate=sample_rate), 4096)
        readings = HarmonicAnalyzer().measure_partials(spectrum, 3000.0, sample_rate, 4096)
        assert readings.fundamental.detected
        assert not readings.octave.detected
        assert not readings.compound_fifth.detected
