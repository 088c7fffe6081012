import numpy as np
import pytest

from tonefield.core.events import StabilityEvents, ThrottledEmitter
from tonefield.detection.stability_analyzer import (
    MeasurementSession,
    PartialTargets,
    PartialTracker,
    StabilityTracker,
    all_partials_stable,
)
from tonefield.note_types import PartialReading, PartialReadings

from audio_signals import SAMPLE_RATE, harmonic_frames

HOP = 1024


def readings(fundamental=0.5, octave=None, compound_fifth=None):
    def reading(cents, freq):
        if cents is None:
            return PartialReading()
        return PartialReading(frequency=freq, cents=cents)

    return PartialReadings(
        fundamental=reading(fundamental, 220.0),
        octave=reading(octave, 440.0),
        compound_fifth=reading(compound_fifth, 660.0),
    )


@pytest.mark.parametrize(
    "fundamental, octave, compound_fifth, expected",
    [
        (1.0, None, None, True),
        (1.0, -1.9, 4.5, True),
        (None, 0.0, 0.0, False),
        (2.5, None, None, False),
        (1.0, 2.1, None, False),
        (1.0, 1.0, -5.5, False),
    ],
)
def test_all_partials_stable(fundamental, octave, compound_fifth, expected):
    assert all_partials_stable(fundamental, octave, compound_fifth) is expected


class TestPartialTracker:
    def test_first_reading_initialises(self):
        tracker = PartialTracker()
        smoothed = tracker.update(PartialReading(frequency=440.0, cents=1.0))
        assert smoothed.frequency == 440.0
        assert smoothed.cents == 1.0

    def test_exponential_smoothing(self):
        tracker = PartialTracker(alpha=0.7)
        tracker.update(PartialReading(frequency=440.0, cents=1.0))
        smoothed = tracker.update(PartialReading(frequency=450.0, cents=2.0))
        assert smoothed.frequency == pytest.approx(443.0)
        assert smoothed.cents == pytest.approx(1.3)

    def test_null_grace(self):
        tracker = PartialTracker(null_grace_frames=3)
        tracker.update(PartialReading(frequency=440.0, cents=1.0))
        assert tracker.update(PartialReading()).frequency == 440.0
        assert tracker.update(PartialReading()).frequency == 440.0
        assert tracker.update(PartialReading()).frequency is None
        # Smoothing restarts from the next detection
        assert tracker.update(PartialReading(frequency=450.0, cents=3.0)).frequency == 450.0

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            PartialTracker(alpha=1.0)
        with pytest.raises(ValueError):
            PartialTracker(null_grace_frames=0)


class TestStabilityTracker:
    def test_locks_at_threshold(self):
        tracker = StabilityTracker(stable_frame_threshold=30)
        for _ in range(29):
            update = tracker.update(readings())
            assert not update.is_stable
        update = tracker.update(readings())
        assert update.is_stable
        assert update.crossed
        assert update.stability_frames == 30

    def test_glitch_costs_two_frames(self):
        tracker = StabilityTracker(stable_frame_threshold=30)
        for _ in range(30):
            tracker.update(readings())
        update = tracker.update(readings(fundamental=10.0))
        assert update.stability_frames == 28
        assert not update.is_stable
        assert update.crossed

    def test_counter_never_negative(self):
        tracker = StabilityTracker()
        tracker.update(readings())
        update = tracker.update(readings(fundamental=10.0))
        assert update.stability_frames == 0

    def test_states_share_counter(self):
        tracker = StabilityTracker()
        for _ in range(3):
            tracker.update(readings(octave=0.5))
        assert all(state.stability_frames == 3 for state in tracker.states.values())

    def test_reset(self):
        tracker = StabilityTracker(stable_frame_threshold=5)
        for _ in range(5):
            tracker.update(readings())
        tracker.reset()
        assert tracker.stability_frames == 0
        assert not tracker.is_stable
        assert tracker.partials["fundamental"].reading.frequency is None

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            StabilityTracker(stable_frame_threshold=0)


def test_targets_default_to_ideal_ratios():
    targets = PartialTargets.for_fundamental(220.0)
    assert targets.octave == 440.0
    assert targets.compound_fifth == 660.0
    assert PartialTargets.for_fundamental(220.0, octave=441.0).octave == 441.0
    with pytest.raises(ValueError):
        PartialTargets.for_fundamental(0.0)


class TestMeasurementSession:
    def test_in_tune_note_locks(self):
        session = MeasurementSession(PartialTargets.for_fundamental(220.0))
        updates = [
            session.process(frame, SAMPLE_RATE, hop_size=HOP)
            for frame in harmonic_frames(220.0, 35, hop=HOP)
        ]
        last = updates[-1]
        assert last.is_stable
        assert abs(last.readings.fundamental.cents) < 1.0
        assert abs(last.readings.octave.cents) < 1.0
        assert abs(last.readings.compound_fifth.cents) < 1.0
        assert not updates[28].is_stable
        assert updates[29].is_stable

    def test_detuned_note_never_locks(self):
        session = MeasurementSession(PartialTargets.for_fundamental(220.0))
        detuned = 220.0 * 2 ** (8 / 1200)
        for frame in harmonic_frames(detuned, 35, hop=HOP):
            update = session.process(frame, SAMPLE_RATE, hop_size=HOP)
        assert not update.is_stable
        assert update.readings.fundamental.cents == pytest.approx(8.0, abs=1.0)

    def test_silence(self):
        session = MeasurementSession(PartialTargets.for_fundamental(220.0))
        update = session.process(np.zeros(4096), SAMPLE_RATE, hop_size=HOP)
        assert not update.readings.fundamental.detected
        assert update.stability_frames == 0
        assert session.previous_phase["fundamental"] is None

    def test_hop_from_timestamps(self):
        frames = harmonic_frames(220.0, 2, hop=HOP)
        explicit = MeasurementSession(PartialTargets.for_fundamental(220.0))
        timed = MeasurementSession(PartialTargets.for_fundamental(220.0))
        for i, frame in enumerate(frames):
            a = explicit.process(frame, SAMPLE_RATE, hop_size=HOP if i else 0)
            b = timed.process(frame, SAMPLE_RATE, timestamp=i * HOP / SAMPLE_RATE)
        assert b.raw.fundamental.frequency == pytest.approx(a.raw.fundamental.frequency)

    def test_emits_throttled_events(self):
        events = StabilityEvents()
        reading_times = []
        locked_times = []
        events.on_reading(lambda update, ts: reading_times.append(ts))
        events.on_locked(lambda update, ts: locked_times.append(ts))

        session = MeasurementSession(
            PartialTargets.for_fundamental(220.0),
            emitter=ThrottledEmitter(events, interval_s=0.05),
        )
        frames = harmonic_frames(220.0, 35, hop=HOP)
        for i, frame in enumerate(frames):
            session.process(frame, SAMPLE_RATE, hop_size=HOP, timestamp=i * HOP / SAMPLE_RATE)

        assert len(locked_times) == 1
        assert 0 < len(reading_times) < len(frames)

    def test_reset_and_retarget(self):
        session = MeasurementSession(PartialTargets.for_fundamental(220.0))
        for frame in harmonic_frames(220.0, 5, hop=HOP):
            session.process(frame, SAMPLE_RATE, hop_size=HOP)
        assert session.tracker.stability_frames == 5

        fresh = session.retarget(293.66)
        assert fresh.targets.octave == pytest.approx(587.32)
        assert fresh.tracker.stability_frames == 0
        assert fresh.previous_phase["fundamental"] is None

        session.reset()
        assert session.tracker.stability_frames == 0
        assert session.frame_count == 0

    def test_retarget_detaches_old_session(self):
        events = StabilityEvents()
        received = []
        events.on_reading(lambda update, ts: received.append(update))

        session = MeasurementSession(
            PartialTargets.for_fundamental(220.0), emitter=ThrottledEmitter(events)
        )
        frames = harmonic_frames(220.0, 2, hop=HOP)
        session.process(frames[0], SAMPLE_RATE, hop_size=HOP, timestamp=0.0)
        assert len(received) == 1

        fresh = session.retarget(293.66)
        assert fresh.emitter is not None
        assert fresh.emitter.events is events
        assert session.emitter is None

        session.process(frames[1], SAMPLE_RATE, hop_size=HOP, timestamp=1.0)
        assert len(received) == 1

        # No throttle history carries over to the new target
        fresh.process(harmonic_frames(293.66, 1)[0], SAMPLE_RATE, hop_size=HOP, timestamp=0.01)
        assert len(received) == 2
