from dataclasses import dataclass
from typing import Optional

from ..logger import get_logger
from ..note_types import NoteInfo

logger = get_logger(__name__)

# Consecutive frames with the same pitch class required to accept a note (~0.33 s at 60 fps)
IDENTIFY_STABLE_FRAMES_REQUIRED = 20


def is_stable_detection(
    frames: int, required: int = IDENTIFY_STABLE_FRAMES_REQUIRED
) -> bool:
    return frames >= required


@dataclass
class StabilizedNote:
    """A note accepted after enough consecutive frames agreed on its pitch class."""

    pitch_class: str
    full_name: str  # Name seen on the first frame of the run
    frequency: Optional[float]
    frames: int


class PitchClassStabilizer:
    """
    Accepts a note once the same pitch class has been seen on consecutive frames.

    Octave disagreement inside a run is tolerated (D3 and D4 both count as D).
    The reported name comes from the first frame of the run, where the
    fundamental is loudest and a harmonic alias is least likely.
    """

    def __init__(self, required_frames: int = IDENTIFY_STABLE_FRAMES_REQUIRED):
        if required_frames < 1:
            raise ValueError(f"required_frames must be at least 1, got {required_frames}")
        self.required_frames = required_frames
        self._pitch_class: Optional[str] = None
        self._onset_full_name: Optional[str] = None
        self._frames = 0

    @property
    def frames(self) -> int:
        return self._frames

    @property
    def pitch_class(self) -> Optional[str]:
        return self._pitch_class

    def update(
        self, note: Optional[NoteInfo], frequency: Optional[float] = None
    ) -> Optional[StabilizedNote]:
        """Feed one frame's note; None for a silent or undetected frame.

        Returns:
            StabilizedNote once the run is long enough, otherwise None
        """
        if note is None:
            self.reset()
            return None

        if note.pitch_class == self._pitch_class:
            self._frames += 1
        else:
            self._pitch_class = note.pitch_class
            self._onset_full_name = note.full_name
            self._frames = 1

        if not is_stable_detection(self._frames, self.required_frames):
            return None

        if self._frames == self.required_frames:
            logger.info(f"Identified {self._onset_full_name} after {self._frames} frames")
        return StabilizedNote(
            pitch_class=self._pitch_class,
            full_name=self._onset_full_name,
            frequency=frequency,
            frames=self._frames,
        )

    def reset(self) -> None:
        self._pitch_class = None
        self._onset_full_name = None
        self._frames = 0
