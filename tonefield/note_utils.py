"""Utility functions for working with musical notes, frequencies and cents."""

import re
from typing import Optional

import numpy as np

from .logger import get_logger
from .note_types import CentsStatus, NoteDeviation, NoteInfo

# Get logger for this module
logger = get_logger(__name__)

# Standard reference: A4 = 440Hz, MIDI note 69
A4_FREQ = 440.0
A4_MIDI = 69

NOTE_NAMES_SHARPS = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
NOTE_NAMES_FLATS = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]

PITCH_CLASSES = {
    "C": 0,
    "C#": 1,
    "Db": 1,
    "D": 2,
    "D#": 3,
    "Eb": 3,
    "E": 4,
    "Fb": 4,
    "E#": 5,
    "F": 5,
    "F#": 6,
    "Gb": 6,
    "G": 7,
    "G#": 8,
    "Ab": 8,
    "A": 9,
    "A#": 10,
    "Bb": 10,
    "B": 11,
    "Cb": 11,
    "B#": 0,
}

_NOTE_RE = re.compile(r"^([A-Ga-g][#b]?)(-?\d+)$")


def frequency_to_midi(freq: float) -> float:
    """Fractional MIDI number of a frequency."""
    if freq <= 0:
        raise ValueError(f"Frequency must be positive, got {freq}")
    return 12 * np.log2(freq / A4_FREQ) + A4_MIDI


def midi_to_frequency(midi_note: float) -> float:
    """Equal-tempered frequency of a (possibly fractional) MIDI number."""
    return A4_FREQ * 2.0 ** ((midi_note - A4_MIDI) / 12.0)


def frequency_to_note(freq: float) -> NoteInfo:
    """Convert a frequency in Hz to its closest equal-tempered note.

    Args:
        freq: Frequency in Hz

    Returns:
        NoteInfo with pitch class, octave, full name, MIDI number and the cents
        deviation from that semitone (-50 to +50)

    Raises:
        ValueError: If freq is not a positive number
    """
    midi_float = float(frequency_to_midi(freq))
    midi_note = int(round(midi_float))
    cents = (midi_float - midi_note) * 100

    # SPN octave calculation (C4 is middle C)
    pitch_class = NOTE_NAMES_SHARPS[midi_note % 12]
    octave = (midi_note // 12) - 1

    return NoteInfo(
        pitch_class=pitch_class,
        octave=octave,
        full_name=f"{pitch_class}{octave}",
        midi_note=midi_note,
        cents=cents,
    )


def get_note_name(freq: float, use_flats: bool = False) -> str:
    """Convert frequency to note name using Scientific Pitch Notation (SPN).

    Args:
        freq: Frequency in Hz
        use_flats: If True, use flat notes (e.g., 'Bb') instead of sharps (e.g., 'A#')

    Returns:
        Note name with octave in SPN (e.g., 'A4', 'C#4', 'Bb3'), or '---' when
        the frequency is not positive
    """
    if freq is None or freq <= 0:
        return "---"

    info = frequency_to_note(freq)
    if use_flats:
        return f"{NOTE_NAMES_FLATS[info.midi_note % 12]}{info.octave}"
    return info.full_name


def cents_deviation(detected_freq: float, reference_freq: float) -> float:
    """Signed cents between two frequencies. Positive = sharp, negative = flat.

    Raises:
        ValueError: If either frequency is not positive
    """
    if detected_freq <= 0 or reference_freq <= 0:
        raise ValueError(
            f"Frequencies must be positive, got {detected_freq} and {reference_freq}"
        )
    return float(1200 * np.log2(detected_freq / reference_freq))


def calc_cents(
    detected_freq: Optional[float], reference_freq: Optional[float]
) -> Optional[float]:
    """Like cents_deviation, but None whenever either side is missing or invalid."""
    if detected_freq is None or reference_freq is None:
        return None
    if detected_freq <= 0 or reference_freq <= 0:
        return None
    return cents_deviation(detected_freq, reference_freq)


def cents_to_ratio(cents: float) -> float:
    return 2.0 ** (cents / 1200.0)


def window_lo(target_freq: float, width_cents: float) -> float:
    """Lower bound of a symmetric search window around target_freq."""
    return target_freq / cents_to_ratio(width_cents)


def window_hi(target_freq: float, width_cents: float) -> float:
    """Upper bound of a symmetric search window around target_freq."""
    return target_freq * cents_to_ratio(width_cents)


def format_cents(cents: float) -> str:
    """Format a cents value with sign and one decimal place, e.g. '+1.2¢'."""
    sign = "+" if cents >= 0 else ""
    return f"{sign}{cents:.1f}¢"


def cents_status(cents: Optional[float], tolerance: float) -> CentsStatus:
    """Classify a deviation against a partial's tolerance."""
    if cents is None:
        return CentsStatus.PENDING
    deviation = abs(cents)
    if deviation <= tolerance:
        return CentsStatus.IN_TUNE
    if deviation <= tolerance * 2.5:
        return CentsStatus.SLIGHTLY_OUT
    return CentsStatus.OUT_OF_TUNE


def parse_note_name(note_name: str) -> tuple:
    """Split 'F#3' into ('F#', 3).

    Raises:
        ValueError: If the name is not a note letter, optional accidental and octave
    """
    match = _NOTE_RE.match(note_name.strip())
    if not match:
        raise ValueError(f"Not a note name with octave: {note_name!r}")
    name = match.group(1)
    return name[0].upper() + name[1:], int(match.group(2))


def note_to_pitch_class(note_name: str) -> Optional[int]:
    """Convert 'C#', 'Db' or 'A' to a pitch class (0-11), None if unrecognised."""
    return PITCH_CLASSES.get(note_name)


def note_name_to_midi(note_name: str) -> int:
    name, octave = parse_note_name(note_name)
    pitch_class = note_to_pitch_class(name)
    if pitch_class is None:
        raise ValueError(f"Unknown note name: {note_name!r}")
    # B#/Cb wrap into the neighbouring octave
    octave_shift = {"B#": 1, "Cb": -1}.get(name, 0)
    return (octave + 1 + octave_shift) * 12 + pitch_class


def note_name_to_frequency(note_name: str) -> float:
    """Equal-tempered frequency of a note name such as 'D3'."""
    return midi_to_frequency(note_name_to_midi(note_name))


def octave_note_name(note_name: str) -> str:
    """Note name one octave up: 'D3' -> 'D4', 'F#3' -> 'F#4', 'A9' -> 'A10'."""
    return re.sub(r"(\d+)$", lambda m: str(int(m.group(1)) + 1), note_name)


class TuningCalculator:
    """Deviation calculations relative to equal temperament."""

    def calculate(self, detected_freq: float) -> NoteDeviation:
        """Deviation of a measured frequency from its nearest ET note."""
        info = frequency_to_note(detected_freq)
        reference = midi_to_frequency(info.midi_note)
        return NoteDeviation(
            note_name=info.full_name,
            reference_frequency=reference,
            cents=cents_deviation(detected_freq, reference),
            midi_note=info.midi_note,
        )
