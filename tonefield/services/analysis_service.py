"""Per-frame analysis pipelines built on the core detectors.

- QuickTuningPipeline: RMS gate, YIN, octave-error correction, then the
  octave and compound fifth measured in the spectrum.
- NoteIdentificationPipeline: template matching fed into the pitch-class
  stabilizer to name a note with no prior target.
- StrobePipeline: narrow-band precision measurement of a known target with
  stability tracking.
"""

from typing import Iterable, Iterator, Optional

import numpy as np

from ..audio.harmonic_analyzer import HarmonicAnalyzer, find_harmonic_frequency
from ..audio.pitch_detector import YinPitchEstimator
from ..audio.spectral_matcher import SpectralMatcher
from ..audio.spectrum import compute_rms, compute_spectrum_db
from ..core.interfaces import IFramePipeline, IPitchEstimator
from ..detection.pitch_class_stabilizer import PitchClassStabilizer
from ..detection.stability_analyzer import MeasurementSession, StabilityUpdate
from ..logger import get_logger
from ..note_types import (
    AudioFrame,
    FrameAnalysis,
    PartialReading,
    PartialReadings,
)
from ..note_utils import calc_cents, frequency_to_note

logger = get_logger(__name__)


def frame_spectrum(frame: AudioFrame) -> np.ndarray:
    """The frame's spectrum, computed from its samples when not supplied."""
    if frame.spectrum_db is not None:
        return frame.spectrum_db
    return compute_spectrum_db(frame.samples, frame.fft_size)


class QuickTuningPipeline(IFramePipeline):
    """Blind tuning: find the fundamental, then measure its partials."""

    def __init__(
        self,
        estimator: Optional[IPitchEstimator] = None,
        analyzer: Optional[HarmonicAnalyzer] = None,
        rms_onset: float = 0.005,
        rms_sustain: float = 0.003,
    ):
        """Initialize the pipeline.

        Args:
            estimator: Time-domain estimator, a default YinPitchEstimator if None
            analyzer: Harmonic analyzer, a default HarmonicAnalyzer if None
            rms_onset: RMS needed to start analysing a note
            rms_sustain: RMS below which a sounding note is considered ended
        """
        if rms_sustain > rms_onset:
            raise ValueError(
                f"Sustain threshold {rms_sustain} must not exceed onset {rms_onset}"
            )
        self.estimator = estimator or YinPitchEstimator()
        self.analyzer = analyzer or HarmonicAnalyzer()
        self.rms_onset = rms_onset
        self.rms_sustain = rms_sustain
        self._sounding = False

    @property
    def sounding(self) -> bool:
        return self._sounding

    def _gate(self, rms: float) -> bool:
        floor = self.rms_sustain if self._sounding else self.rms_onset
        sounding = rms >= floor
        if sounding != self._sounding:
            logger.debug(f"{'Onset' if sounding else 'Release'} at rms={rms:.4f}")
        self._sounding = sounding
        return sounding

    def process(self, frame: AudioFrame) -> FrameAnalysis:
        frame.validate()
        rms = compute_rms(frame.samples)
        if not self._gate(rms):
            return FrameAnalysis(rms=rms)

        pitch = self.estimator.estimate(frame.samples, frame.sample_rate, min_rms=0.0)
        if pitch.frequency is None:
            return FrameAnalysis(pitch=pitch, rms=rms)

        spectrum = frame_spectrum(frame)
        fft_size = 2 * len(spectrum)
        fundamental = self.analyzer.validate(
            pitch.frequency, spectrum, frame.sample_rate, fft_size
        )
        if fundamental is None:
            # Rejected frames leave the caller's display and counters untouched
            return FrameAnalysis(pitch=pitch, rms=rms)

        readings = self.analyzer.measure_partials(
            spectrum, fundamental, frame.sample_rate, fft_size
        )
        return FrameAnalysis(
            readings=readings,
            note=frequency_to_note(fundamental),
            pitch=pitch,
            rms=rms,
        )

    def reset(self) -> None:
        self._sounding = False


class NoteIdentificationPipeline(IFramePipeline):
    """Names the note being played once its pitch class holds steady."""

    def __init__(
        self,
        matcher: Optional[SpectralMatcher] = None,
        stabilizer: Optional[PitchClassStabilizer] = None,
        rms_floor: float = 0.003,
    ):
        self.matcher = matcher or SpectralMatcher()
        self.stabilizer = stabilizer or PitchClassStabilizer()
        self.rms_floor = rms_floor

    def process(self, frame: AudioFrame) -> FrameAnalysis:
        frame.validate()
        rms = compute_rms(frame.samples)
        if rms < self.rms_floor:
            # Silence never contributes to a run
            self.stabilizer.reset()
            return FrameAnalysis(rms=rms)

        spectrum = frame_spectrum(frame)
        fft_size = 2 * len(spectrum)
        match = self.matcher.match(spectrum, frame.sample_rate, fft_size)
        if match is None:
            self.stabilizer.update(None)
            return FrameAnalysis(rms=rms)

        note = frequency_to_note(match.nominal_frequency)
        measured = find_harmonic_frequency(
            spectrum,
            match.nominal_frequency,
            frame.sample_rate,
            fft_size,
            self.matcher.config.search_cents,
            self.matcher.config.noise_floor_db,
        )
        fundamental = PartialReading()
        if measured is not None:
            fundamental = PartialReading(
                frequency=measured, cents=calc_cents(measured, match.nominal_frequency)
            )

        accepted = self.stabilizer.update(note, measured)
        return FrameAnalysis(
            readings=PartialReadings(fundamental=fundamental),
            note=note,
            rms=rms,
            is_stable=accepted is not None,
            stability_frames=self.stabilizer.frames,
            match=match,
            identified_note=accepted.full_name if accepted is not None else None,
        )

    def reset(self) -> None:
        self.stabilizer.reset()


class StrobePipeline(IFramePipeline):
    """Precision measurement of a known target through a MeasurementSession."""

    def __init__(self, session: MeasurementSession, hop_size: Optional[int] = None):
        """Initialize the pipeline.

        Args:
            session: Session bound to the target note
            hop_size: Samples between consecutive frames, when known
        """
        self.session = session
        self.hop_size = hop_size
        self.last_update: Optional[StabilityUpdate] = None

    def process(
        self,
        frame: AudioFrame,
        timestamp: Optional[float] = None,
    ) -> FrameAnalysis:
        frame.validate()
        update = self.session.process(
            frame.samples, frame.sample_rate, self.hop_size, timestamp
        )
        self.last_update = update

        fundamental = update.readings.fundamental.frequency
        return FrameAnalysis(
            readings=update.readings,
            note=frequency_to_note(fundamental) if fundamental is not None else None,
            rms=compute_rms(frame.samples),
            is_stable=update.is_stable,
            stability_frames=update.stability_frames,
        )

    def retarget(
        self,
        fundamental: float,
        octave: Optional[float] = None,
        compound_fifth: Optional[float] = None,
    ) -> None:
        """Switch to a new target note, discarding all session state."""
        self.session = self.session.retarget(fundamental, octave, compound_fifth)
        self.last_update = None

    def reset(self) -> None:
        self.session.reset()
        self.last_update = None


def run_pipeline(
    pipeline: IFramePipeline, frames: Iterable[AudioFrame]
) -> Iterator[FrameAnalysis]:
    """Run every frame through the pipeline in order."""
    for frame in frames:
        yield pipeline.process(frame)
