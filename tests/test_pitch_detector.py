import numpy as np
import pytest

from tonefield.audio.pitch_detector import (
    YinPitchEstimator,
    cumulative_mean_normalized_difference,
    detect_pitch,
    difference_function,
    find_yin_lag,
    refine_lag,
    yin_cmndf,
    yin_search,
)

from audio_signals import SAMPLE_RATE, cents, harmonic_signal, sine


@pytest.mark.parametrize(
    "freq",
    [146.83, 293.66, 440.0, 523.25],
    ids=["D3", "D4", "A4", "C5"],
)
def test_detects_harmonic_fundamental(freq):
    detected = detect_pitch(harmonic_signal(freq), SAMPLE_RATE)
    assert detected is not None
    assert abs(cents(detected, freq)) < 3.0


@pytest.mark.parametrize("amplitude", [0.8, 0.4, 0.15, 0.05])
def test_accuracy_independent_of_level(amplitude):
    detected = detect_pitch(sine(440.0, amplitude=amplitude), SAMPLE_RATE)
    assert detected is not None
    assert abs(cents(detected, 440.0)) < 3.0


@pytest.mark.parametrize("phase", [0.0, np.pi / 3, np.pi])
def test_accuracy_independent_of_phase(phase):
    detected = detect_pitch(sine(293.66, phase=phase), SAMPLE_RATE)
    assert abs(cents(detected, 293.66)) < 3.0


SWEEP = [round(f, 2) for f in np.geomspace(55.0, 4200.0, 24)]


@pytest.mark.parametrize("freq", SWEEP)
@pytest.mark.parametrize("amplitude", [0.05, 0.5])
@pytest.mark.parametrize("phase", [0.0, 2.0])
def test_accuracy_across_range(freq, amplitude, phase):
    detected = detect_pitch(sine(freq, amplitude=amplitude, phase=phase), SAMPLE_RATE)
    assert detected is not None
    assert abs(cents(detected, freq)) < 3.0


@pytest.mark.parametrize("freq", [3343.0, 3646.0, 3951.0, 4200.0])
@pytest.mark.parametrize("n", [2048, 4096])
def test_high_notes_at_both_frame_sizes(freq, n):
    detected = detect_pitch(sine(freq, n=n), SAMPLE_RATE)
    assert detected is not None
    assert abs(cents(detected, freq)) < 3.0


def test_refine_lag_uses_lowest_neighbour():
    diff = np.array([0.0, 4.0, 1.0, 0.0, 1.0, 4.0])
    assert refine_lag(diff, 2) == pytest.approx(3.0)
    assert refine_lag(diff, 3) == pytest.approx(3.0)


def test_difference_function_matches_direct_sum():
    x = harmonic_signal(220.0, n=512)
    half = len(x) // 2
    expected = np.array(
        [np.sum((x[:half] - x[tau : tau + half]) ** 2) for tau in range(half)]
    )
    np.testing.assert_allclose(difference_function(x), expected, atol=1e-9)


def test_cmndf_starts_at_one_and_handles_silence():
    cmndf = cumulative_mean_normalized_difference(np.zeros(64))
    assert np.all(cmndf == 1.0)
    assert np.all(yin_cmndf(np.zeros(128)) == 1.0)
    assert find_yin_lag(cmndf, 0.06) is None


def test_silence_has_no_pitch():
    assert detect_pitch(np.zeros(4096), SAMPLE_RATE) is None


def test_out_of_range_frequency_rejected():
    assert detect_pitch(sine(5000.0), SAMPLE_RATE) is None


def test_short_buffer_rejected():
    with pytest.raises(ValueError):
        yin_search(np.zeros(4), SAMPLE_RATE)


def test_invalid_sample_rate_rejected():
    with pytest.raises(ValueError):
        yin_search(sine(440.0), 0)


class TestYinPitchEstimator:
    def test_estimate_of_clean_tone(self):
        estimate = YinPitchEstimator().estimate(sine(440.0), SAMPLE_RATE)
        assert abs(cents(estimate.frequency, 440.0)) < 3.0
        assert estimate.confidence > 0.9

    def test_quiet_frame_is_gated(self):
        estimator = YinPitchEstimator()
        estimate = estimator.estimate(sine(440.0, amplitude=0.001), SAMPLE_RATE)
        assert estimate.frequency is None
        assert estimate.confidence == 0.0

    def test_min_rms_override(self):
        estimate = YinPitchEstimator().estimate(
            sine(440.0, amplitude=0.001), SAMPLE_RATE, min_rms=0.0
        )
        assert estimate.frequency is not None

    def test_noise_reports_reduced_confidence(self):
        rng = np.random.default_rng(7)
        noise = rng.uniform(-0.5, 0.5, 4096)
        estimate = YinPitchEstimator().estimate(noise, SAMPLE_RATE)
        assert estimate.frequency is None
        assert estimate.confidence == pytest.approx(0.3)

    def test_threshold_setter(self):
        estimator = YinPitchEstimator(yin_threshold=0.1)
        assert estimator.threshold == 0.1
        estimator.threshold = 0.15
        assert estimator.threshold == 0.15
        with pytest.raises(ValueError):
            estimator.threshold = 0.0
