"""Type definitions for the tonefield project."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


@dataclass
class AudioFrame:
    """One frame handed over by the capture layer."""

    samples: np.ndarray  # Time-domain samples in [-1, 1], length N (power of two)
    sample_rate: float  # Hz
    # Log-magnitude per bin, M/2 bins for an M-point FFT with M >= N
    spectrum_db: Optional[np.ndarray] = None

    @property
    def fft_size(self) -> int:
        return len(self.samples)

    def validate(self) -> "AudioFrame":
        """Reject malformed frames.

        The spectrum may come from a longer buffer than the samples, e.g. a
        32768-point FFT for harmonic search next to a 4096-sample YIN frame.

        Raises:
            ValueError: If the buffer length is not a power of two, the sample
                rate is not positive, or the spectrum has fewer than N/2 bins
                or a bin count that is not a power of two
        """
        n = len(self.samples)
        if not is_power_of_two(n):
            raise ValueError(f"Frame length must be a power of two, got {n}")
        if not self.sample_rate or self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.spectrum_db is not None:
            bins = len(self.spectrum_db)
            if bins < n // 2 or not is_power_of_two(bins):
                raise ValueError(
                    f"Spectrum must have a power-of-two bin count of at least "
                    f"{n // 2} for a {n}-sample frame, got {bins}"
                )
        return self


@dataclass
class PitchEstimate:
    """Fundamental estimate produced by the YIN estimator."""

    frequency: Optional[float]  # Hz, None when no periodic signal was found
    confidence: float = 0.0  # 0-1


@dataclass
class PartialReading:
    """A single measured partial and its deviation from its target."""

    frequency: Optional[float] = None  # Hz
    cents: Optional[float] = None  # Signed, positive = sharp

    def __post_init__(self):
        if self.frequency is None and self.cents is not None:
            raise ValueError("A partial without a frequency cannot carry cents")
        if self.frequency is not None and self.frequency <= 0:
            raise ValueError(f"Partial frequency must be positive, got {self.frequency}")

    @property
    def detected(self) -> bool:
        return self.frequency is not None


@dataclass
class PartialReadings:
    """Fundamental, octave (2x) and compound fifth (3x) of one tonefield."""

    fundamental: PartialReading = field(default_factory=PartialReading)
    octave: PartialReading = field(default_factory=PartialReading)
    compound_fifth: PartialReading = field(default_factory=PartialReading)


@dataclass
class NoteInfo:
    """Nearest equal-tempered note for a frequency (A4 = 440 Hz, MIDI 69)."""

    pitch_class: str  # e.g. 'C#'
    octave: int  # e.g. 4
    full_name: str  # e.g. 'C#4'
    midi_note: int
    cents: float  # Deviation from the nearest semitone, -50..+50


@dataclass
class NoteDeviation:
    """Deviation of a measured frequency from its nearest ET note."""

    note_name: str
    reference_frequency: float
    cents: float
    midi_note: int


@dataclass
class StabilityState:
    """Per-partial smoothing and stability bookkeeping."""

    smoothed_frequency: Optional[float] = None
    smoothed_cents: Optional[float] = None
    null_frames: int = 0
    stability_frames: int = 0
    is_stable: bool = False


@dataclass
class TemplateMatch:
    """Best matching note for a whole spectrum."""

    midi_note: int
    nominal_frequency: float
    score: float  # 0-1


@dataclass
class PreviousPhase:
    """Phase spectrum kept from the prior frame for frequency reassignment."""

    phase: np.ndarray  # Radians per bin, length fft_size / 2
    fft_size: int


class CentsStatus(Enum):
    """Display classification of a cents deviation."""

    PENDING = "pending"
    IN_TUNE = "in_tune"
    SLIGHTLY_OUT = "slightly_out"
    OUT_OF_TUNE = "out_of_tune"


@dataclass
class FrameAnalysis:
    """Result of running one frame through a service pipeline."""

    readings: PartialReadings = field(default_factory=PartialReadings)
    note: Optional[NoteInfo] = None
    pitch: Optional[PitchEstimate] = None
    rms: float = 0.0
    is_stable: bool = False
    stability_frames: int = 0
    match: Optional[TemplateMatch] = None
    identified_note: Optional[str] = None  # Set once the identify flow accepts a note

    @property
    def frequency(self) -> Optional[float]:
        return self.readings.fundamental.frequency
