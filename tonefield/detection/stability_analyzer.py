"""Multi-partial smoothing and stability tracking for a measurement session.

Each partial is smoothed with an exponential moving average and survives a
short run of dropped frames before it is cleared. A shared counter climbs by
one on every frame where all partials are within tolerance and falls by two
otherwise, so a single glitch costs two frames of progress instead of all of
it. The measurement is stable while the counter is at or above the threshold.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import numpy as np

from ..core.events import ThrottledEmitter
from ..logger import get_logger
from ..note_types import PartialReading, PartialReadings, PreviousPhase, StabilityState
from ..note_utils import calc_cents, window_hi, window_lo
from ..audio.precision_detector import (
    FFT_SIZE,
    NOISE_FLOOR_DB,
    NOISE_FLOOR_RMS,
    detect_pitch_in_window,
    detect_pitch_in_window_phase_diff,
)

logger = get_logger(__name__)

EMA_ALPHA = 0.7
NULL_GRACE_FRAMES = 3
STABLE_FRAME_THRESHOLD = 30  # ~0.5 s at 60 fps

FUNDAMENTAL_TOLERANCE_CENTS = 2.0
OCTAVE_TOLERANCE_CENTS = 2.0
COMPOUND_FIFTH_TOLERANCE_CENTS = 5.0

FUNDAMENTAL_WINDOW_CENTS = 20.0
OCTAVE_WINDOW_CENTS = 15.0
COMPOUND_FIFTH_WINDOW_CENTS = 15.0

PARTIAL_NAMES = ("fundamental", "octave", "compound_fifth")


@dataclass
class PartialTolerances:
    """Maximum |cents| per partial for a frame to count as stable."""

    fundamental: float = FUNDAMENTAL_TOLERANCE_CENTS
    octave: float = OCTAVE_TOLERANCE_CENTS
    compound_fifth: float = COMPOUND_FIFTH_TOLERANCE_CENTS


@dataclass
class PartialTargets:
    """Target frequencies of one measured note."""

    fundamental: float
    octave: float
    compound_fifth: float

    @classmethod
    def for_fundamental(
        cls,
        fundamental: float,
        octave: Optional[float] = None,
        compound_fifth: Optional[float] = None,
    ) -> "PartialTargets":
        """Targets at ideal 2x and 3x ratios unless given explicitly."""
        if fundamental is None or fundamental <= 0:
            raise ValueError(f"Target fundamental must be positive, got {fundamental}")
        return cls(
            fundamental=fundamental,
            octave=octave if octave is not None else fundamental * 2.0,
            compound_fifth=(
                compound_fifth if compound_fifth is not None else fundamental * 3.0
            ),
        )

    def get(self, name: str) -> float:
        return getattr(self, name)


@dataclass
class StabilityUpdate:
    """Smoothed readings and counter state after one frame."""

    readings: PartialReadings
    stability_frames: int
    is_stable: bool
    crossed: bool = False  # is_stable changed on this frame
    raw: PartialReadings = field(default_factory=PartialReadings)


def all_partials_stable(
    fundamental_cents: Optional[float],
    octave_cents: Optional[float],
    compound_fifth_cents: Optional[float],
    tolerances: Optional[PartialTolerances] = None,
) -> bool:
    """True if the fundamental and every present upper partial are in tolerance.

    The fundamental is required; a missing octave or compound fifth is not
    penalised.
    """
    tolerances = tolerances or PartialTolerances()
    if fundamental_cents is None or abs(fundamental_cents) > tolerances.fundamental:
        return False
    if octave_cents is not None and abs(octave_cents) > tolerances.octave:
        return False
    if (
        compound_fifth_cents is not None
        and abs(compound_fifth_cents) > tolerances.compound_fifth
    ):
        return False
    return True


class PartialTracker:
    """EMA smoothing with a null-grace window for a single partial."""

    def __init__(self, alpha: float = EMA_ALPHA, null_grace_frames: int = NULL_GRACE_FRAMES):
        if not 0.0 <= alpha < 1.0:
            raise ValueError(f"EMA alpha must be in [0, 1), got {alpha}")
        if null_grace_frames < 1:
            raise ValueError(f"Null grace must be at least 1 frame, got {null_grace_frames}")
        self.alpha = alpha
        self.null_grace_frames = null_grace_frames
        self.state = StabilityState()

    def _smooth(self, previous: Optional[float], raw: float) -> float:
        if previous is None:
            return raw
        return self.alpha * previous + (1.0 - self.alpha) * raw

    def update(self, reading: PartialReading) -> PartialReading:
        """Fold one raw reading in and return the smoothed reading."""
        state = self.state
        if reading.frequency is not None:
            state.null_frames = 0
            state.smoothed_frequency = self._smooth(
                state.smoothed_frequency, reading.frequency
            )
            if reading.cents is not None:
                state.smoothed_cents = self._smooth(state.smoothed_cents, reading.cents)
        else:
            state.null_frames += 1
            if state.null_frames >= self.null_grace_frames:
                state.smoothed_frequency = None
                state.smoothed_cents = None
        return self.reading

    @property
    def reading(self) -> PartialReading:
        if self.state.smoothed_frequency is None:
            return PartialReading()
        return PartialReading(
            frequency=self.state.smoothed_frequency, cents=self.state.smoothed_cents
        )

    def reset(self) -> None:
        self.state = StabilityState()


class StabilityTracker:
    """Tracks the fundamental, octave and compound fifth of one target note."""

    def __init__(
        self,
        ema_alpha: float = EMA_ALPHA,
        null_grace_frames: int = NULL_GRACE_FRAMES,
        stable_frame_threshold: int = STABLE_FRAME_THRESHOLD,
        tolerances: Optional[PartialTolerances] = None,
    ):
        if stable_frame_threshold < 1:
            raise ValueError(
                f"Stable frame threshold must be at least 1, got {stable_frame_threshold}"
            )
        self.stable_frame_threshold = stable_frame_threshold
        self.tolerances = tolerances or PartialTolerances()
        self.partials: Dict[str, PartialTracker] = {
            name: PartialTracker(ema_alpha, null_grace_frames) for name in PARTIAL_NAMES
        }
        self._stability_frames = 0
        self._is_stable = False

    @property
    def stability_frames(self) -> int:
        return self._stability_frames

    @property
    def is_stable(self) -> bool:
        return self._is_stable

    @property
    def states(self) -> Dict[str, StabilityState]:
        return {name: tracker.state for name, tracker in self.partials.items()}

    def update(self, raw: PartialReadings) -> StabilityUpdate:
        """Advance the tracker by one frame.

        Args:
            raw: Unsmoothed readings for this frame; cents relative to targets

        Returns:
            StabilityUpdate with smoothed readings and the counter state
        """
        smoothed = PartialReadings(
            fundamental=self.partials["fundamental"].update(raw.fundamental),
            octave=self.partials["octave"].update(raw.octave),
            compound_fifth=self.partials["compound_fifth"].update(raw.compound_fifth),
        )

        stable_frame = all_partials_stable(
            smoothed.fundamental.cents,
            smoothed.octave.cents,
            smoothed.compound_fifth.cents,
            self.tolerances,
        )
        if stable_frame:
            self._stability_frames += 1
        else:
            self._stability_frames = max(0, self._stability_frames - 2)

        was_stable = self._is_stable
        self._is_stable = self._stability_frames >= self.stable_frame_threshold
        crossed = was_stable != self._is_stable
        if crossed:
            logger.info(
                f"Measurement {'locked' if self._is_stable else 'unlocked'} "
                f"at {self._stability_frames} frames"
            )

        for tracker in self.partials.values():
            tracker.state.stability_frames = self._stability_frames
            tracker.state.is_stable = self._is_stable

        return StabilityUpdate(
            readings=smoothed,
            stability_frames=self._stability_frames,
            is_stable=self._is_stable,
            crossed=crossed,
            raw=raw,
        )

    def reset(self) -> None:
        """Discard all smoothing memory, null counters and stability progress."""
        for tracker in self.partials.values():
            tracker.reset()
        self._stability_frames = 0
        self._is_stable = False


@dataclass
class PartialWindows:
    """Half-widths in cents of the narrow-band search around each target."""

    fundamental: float = FUNDAMENTAL_WINDOW_CENTS
    octave: float = OCTAVE_WINDOW_CENTS
    compound_fifth: float = COMPOUND_FIFTH_WINDOW_CENTS

    def get(self, name: str) -> float:
        return getattr(self, name)


class MeasurementSession:
    """Precision measurement of one target note.

    Owns the stability tracker, the phase history of each partial and the
    throttled emitter. A session is bound to its targets; use ``retarget``
    to start measuring a different note.
    """

    def __init__(
        self,
        targets: PartialTargets,
        tracker: Optional[StabilityTracker] = None,
        windows: Optional[PartialWindows] = None,
        fft_size: int = FFT_SIZE,
        noise_floor_rms: float = NOISE_FLOOR_RMS,
        noise_floor_db: float = NOISE_FLOOR_DB,
        use_phase: bool = True,
        emitter: Optional[ThrottledEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.targets = targets
        self.tracker = tracker or StabilityTracker()
        self.windows = windows or PartialWindows()
        self.fft_size = fft_size
        self.noise_floor_rms = noise_floor_rms
        self.noise_floor_db = noise_floor_db
        self.use_phase = use_phase
        self.emitter = emitter
        self._clock = clock

        self.previous_phase: Dict[str, Optional[PreviousPhase]] = {
            name: None for name in PARTIAL_NAMES
        }
        self._last_timestamp: Optional[float] = None
        self.frame_count = 0

        logger.debug(
            f"Started measurement session for {targets.fundamental:.2f} Hz "
            f"(oct {targets.octave:.2f}, c5 {targets.compound_fifth:.2f})"
        )

    def _hop_from_timestamp(self, timestamp: Optional[float], sample_rate: float) -> int:
        if timestamp is None or self._last_timestamp is None:
            return 0
        return max(0, int(round((timestamp - self._last_timestamp) * sample_rate)))

    def _detect(
        self, name: str, samples: np.ndarray, sample_rate: float, hop_size: int
    ) -> PartialReading:
        target = self.targets.get(name)
        lo_hz = window_lo(target, self.windows.get(name))
        hi_hz = window_hi(target, self.windows.get(name))

        if self.use_phase:
            detection = detect_pitch_in_window_phase_diff(
                samples,
                sample_rate,
                lo_hz,
                hi_hz,
                self.previous_phase[name],
                hop_size,
                self.fft_size,
                self.noise_floor_rms,
                self.noise_floor_db,
            )
            frequency = detection.frequency
            # Phase history never spans a frame without a detection
            self.previous_phase[name] = detection.phase if frequency is not None else None
        else:
            frequency = detect_pitch_in_window(
                samples,
                sample_rate,
                lo_hz,
                hi_hz,
                self.fft_size,
                self.noise_floor_rms,
                self.noise_floor_db,
            )

        if frequency is None:
            return PartialReading()
        return PartialReading(frequency=frequency, cents=calc_cents(frequency, target))

    def measure(
        self, samples: np.ndarray, sample_rate: float, hop_size: int = 0
    ) -> PartialReadings:
        """Raw narrow-band readings of all three partials for one frame."""
        return PartialReadings(
            fundamental=self._detect("fundamental", samples, sample_rate, hop_size),
            octave=self._detect("octave", samples, sample_rate, hop_size),
            compound_fifth=self._detect("compound_fifth", samples, sample_rate, hop_size),
        )

    def process(
        self,
        samples: np.ndarray,
        sample_rate: float,
        hop_size: Optional[int] = None,
        timestamp: Optional[float] = None,
    ) -> StabilityUpdate:
        """Measure one frame and advance the stability tracker.

        Args:
            samples: Time-domain samples in [-1, 1]
            sample_rate: Sample rate in Hz
            hop_size: Samples since the previous frame; derived from the
                timestamps when omitted
            timestamp: Capture time of the frame in seconds

        Returns:
            StabilityUpdate for this frame
        """
        if hop_size is None:
            hop_size = self._hop_from_timestamp(timestamp, sample_rate)
        if timestamp is not None:
            self._last_timestamp = timestamp

        raw = self.measure(samples, sample_rate, hop_size)
        update = self.tracker.update(raw)
        self.frame_count += 1

        if self.emitter is not None:
            now = timestamp if timestamp is not None else self._clock()
            self.emitter.publish(update, now)
        return update

    def reset(self) -> None:
        """Drop smoothing, counters and phase history but keep the targets."""
        self.tracker.reset()
        self.previous_phase = {name: None for name in PARTIAL_NAMES}
        self._last_timestamp = None
        self.frame_count = 0
        if self.emitter is not None:
            self.emitter.reset()

    def retarget(
        self,
        fundamental: float,
        octave: Optional[float] = None,
        compound_fifth: Optional[float] = None,
    ) -> "MeasurementSession":
        """A fresh session for a new target note with the same configuration.

        The new session publishes through its own emitter over the same
        events; this session is detached and publishes nothing afterwards.
        """
        tracker = StabilityTracker(
            ema_alpha=self.tracker.partials["fundamental"].alpha,
            null_grace_frames=self.tracker.partials["fundamental"].null_grace_frames,
            stable_frame_threshold=self.tracker.stable_frame_threshold,
            tolerances=self.tracker.tolerances,
        )
        # The discarded session stops publishing to the shared listeners
        emitter = self.emitter.spawn() if self.emitter is not None else None
        self.emitter = None
        return MeasurementSession(
            PartialTargets.for_fundamental(fundamental, octave, compound_fifth),
            tracker=tracker,
            windows=self.windows,
            fft_size=self.fft_size,
            noise_floor_rms=self.noise_floor_rms,
            noise_floor_db=self.noise_floor_db,
            use_phase=self.use_phase,
            emitter=emitter,
            clock=self._clock,
        )
