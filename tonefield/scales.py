"""Handpan scale database and scale identification from detected notes.

Scales are generated from interval patterns per family and laid out the way
a 9-note handpan is usually built (ding plus eight tone fields). Pitch
classes: C=0, C#/Db=1, ... B=11.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from .logger import get_logger
from .note_utils import NOTE_NAMES_SHARPS, note_to_pitch_class

logger = get_logger(__name__)

LETTERS = "CDEFGAB"
NATURAL_PITCH_CLASSES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

ALL_ROOTS = ("C", "C#", "D", "Eb", "E", "F", "F#", "G", "Ab", "A", "Bb", "B")


@dataclass(frozen=True)
class HandpanScale:
    """One scale with its typical 9-note layout."""

    theoretical_name: str  # e.g. 'D Natural Minor (Aeolian)'
    handpan_name: str  # e.g. 'Kurd'
    root: str
    notes: Tuple[str, ...]  # Ding first, then the tone fields
    pitch_classes: Tuple[int, ...]

    @property
    def pitch_class_set(self) -> FrozenSet[int]:
        return frozenset(self.pitch_classes)


@dataclass
class ScaleMatch:
    """A scale consistent with a set of detected pitch classes."""

    scale: HandpanScale
    matched_count: int  # Detected pitch classes present in the scale
    scale_size: int  # Unique pitch classes in the scale
    is_fully_contained: bool
    is_exact_match: bool  # Detected set equals the scale's set


def spell_degree(root: str, letter_step: int, interval: int) -> str:
    """Name a scale degree on the letter ``letter_step`` steps above the root.

    Falls back to the sharp name when a single accidental cannot reach it.
    """
    root_pc = note_to_pitch_class(root)
    if root_pc is None:
        raise ValueError(f"Unknown root: {root!r}")
    target = (root_pc + interval) % 12
    letter = LETTERS[(LETTERS.index(root[0]) + letter_step) % 7]
    offset = (target - NATURAL_PITCH_CLASSES[letter] + 6) % 12 - 6
    if offset == 0:
        return letter
    if offset == 1:
        return f"{letter}#"
    if offset == -1:
        return f"{letter}b"
    return NOTE_NAMES_SHARPS[target]


def seven_note_layout(degrees: Sequence[str]) -> List[str]:
    """[root, 5, 6, 7, root, 2, 3, 4, 5] for a heptatonic scale."""
    r, n2, n3, n4, n5, n6, n7 = degrees
    return [r, n5, n6, n7, r, n2, n3, n4, n5]


def pentatonic_layout(degrees: Sequence[str]) -> List[str]:
    """[root, 4th, 5th, root, 2nd, 3rd, 4th, 5th, root] over the five degrees."""
    r, n2, n3, n4, n5 = degrees
    return [r, n4, n5, r, n2, n3, n4, n5, r]


@dataclass(frozen=True)
class ScaleFamily:
    """Interval pattern shared by a family of scales."""

    theoretical_suffix: str
    handpan_prefix: str
    intervals: Tuple[int, ...]
    letter_steps: Tuple[int, ...]
    roots: Tuple[str, ...]
    handpan_names: Tuple[Tuple[str, str], ...] = ()

    def build(self, root: str) -> HandpanScale:
        degrees = [
            spell_degree(root, step, interval)
            for step, interval in zip(self.letter_steps, self.intervals)
        ]
        if len(degrees) == 7:
            notes = seven_note_layout(degrees)
        else:
            notes = pentatonic_layout(degrees)
        handpan_name = dict(self.handpan_names).get(root, f"{self.handpan_prefix} {root}")
        return HandpanScale(
            theoretical_name=f"{root} {self.theoretical_suffix}",
            handpan_name=handpan_name,
            root=root,
            notes=tuple(notes),
            pitch_classes=tuple(note_to_pitch_class(n) for n in notes),
        )

    def scales(self) -> List[HandpanScale]:
        return [self.build(root) for root in self.roots]


HEPTATONIC_STEPS = (0, 1, 2, 3, 4, 5, 6)

SCALE_FAMILIES = (
    ScaleFamily(
        "Natural Minor (Aeolian)",
        "Kurd",
        (0, 2, 3, 5, 7, 8, 10),
        HEPTATONIC_STEPS,
        ALL_ROOTS,
        (("D", "Kurd"),),
    ),
    ScaleFamily(
        "Dorian",
        "Dorian",
        (0, 2, 3, 5, 7, 9, 10),
        HEPTATONIC_STEPS,
        ALL_ROOTS,
        (("D", "Dorian"),),
    ),
    ScaleFamily(
        "Phrygian",
        "Phrygian",
        (0, 1, 3, 5, 7, 8, 10),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "F", "G", "A", "Bb", "B"),
        (("D", "Pygmy"), ("E", "Integral")),
    ),
    ScaleFamily(
        "Harmonic Minor",
        "Harmonic Minor",
        (0, 2, 3, 5, 7, 8, 11),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "F", "G", "A", "B", "C#"),
        (("C", "Equinox / Celtic Minor C"), ("D", "Celtic Minor")),
    ),
    ScaleFamily(
        "Phrygian Dominant",
        "Hijaz",
        (0, 1, 4, 5, 7, 8, 10),
        HEPTATONIC_STEPS,
        ("D", "E", "F", "G", "A", "B", "C", "F#"),
        (("A", "Hijaz"),),
    ),
    ScaleFamily(
        "Major",
        "Major",
        (0, 2, 4, 5, 7, 9, 11),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "F", "G", "Ab", "A", "Bb", "B"),
        (("C", "Celtic Major"),),
    ),
    ScaleFamily(
        "Mixolydian",
        "Mixolydian",
        (0, 2, 4, 5, 7, 9, 10),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "F", "G", "A", "Bb"),
        (("C", "Celtic Mixolydian C"),),
    ),
    ScaleFamily(
        "Lydian",
        "Lydian",
        (0, 2, 4, 6, 7, 9, 11),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "F", "G", "A", "Bb"),
        (("F", "Sabye"),),
    ),
    ScaleFamily(
        "Double Harmonic Major",
        "Mystic",
        (0, 1, 4, 5, 7, 8, 11),
        HEPTATONIC_STEPS,
        ("D", "E", "G", "A"),
        (("A", "Oxalis"),),
    ),
    ScaleFamily(
        "Melodic Minor",
        "Melodic Minor",
        (0, 2, 3, 5, 7, 9, 11),
        HEPTATONIC_STEPS,
        ("C", "D", "E", "G", "A"),
    ),
    ScaleFamily(
        "Minor Pentatonic",
        "Pentatonic Minor",
        (0, 3, 5, 7, 10),
        (0, 2, 3, 4, 6),
        ("C", "D", "E", "G", "A"),
    ),
    ScaleFamily(
        "Major Pentatonic",
        "Pentatonic Major",
        (0, 2, 4, 7, 9),
        (0, 1, 2, 4, 5),
        ("C", "D", "E", "G", "A"),
    ),
    ScaleFamily(
        "Mixolydian b6 (Hindu)",
        "Annaziska",
        (0, 2, 4, 5, 7, 8, 10),
        HEPTATONIC_STEPS,
        ("Eb",),
        (("Eb", "Annaziska"),),
    ),
    ScaleFamily(
        "Harmonic Phrygian (Freygish)",
        "Freygish",
        (0, 1, 3, 5, 7, 8, 11),
        HEPTATONIC_STEPS,
        ("A", "D"),
        (("A", "Freygish / Hijaz A"),),
    ),
)


def build_scale_database() -> List[HandpanScale]:
    scales: List[HandpanScale] = []
    for family in SCALE_FAMILIES:
        scales.extend(family.scales())
    return scales


HANDPAN_SCALES: List[HandpanScale] = build_scale_database()

_SCALES_BY_NAME: Dict[str, HandpanScale] = {s.handpan_name: s for s in HANDPAN_SCALES}


def find_scale(handpan_name: str) -> Optional[HandpanScale]:
    """Look a scale up by its handpan name, e.g. 'Kurd' or 'Hijaz'."""
    return _SCALES_BY_NAME.get(handpan_name)


def identify_scales(
    pitch_classes: Iterable[int],
    scales: Optional[Sequence[HandpanScale]] = None,
) -> List[ScaleMatch]:
    """Scales that contain every detected pitch class.

    Duplicates and octave repeats collapse to one pitch class. Exact matches
    come first, then scales with more matched pitch classes.

    Args:
        pitch_classes: Detected pitch classes (0-11)
        scales: Scale database to search, HANDPAN_SCALES by default

    Returns:
        List of ScaleMatch, empty when nothing was detected
    """
    detected = {int(pc) % 12 for pc in pitch_classes}
    if not detected:
        return []

    results: List[ScaleMatch] = []
    for scale in scales if scales is not None else HANDPAN_SCALES:
        scale_set = scale.pitch_class_set
        matched = len(detected & scale_set)
        fully_contained = matched == len(detected)
        if not fully_contained:
            continue
        results.append(
            ScaleMatch(
                scale=scale,
                matched_count=matched,
                scale_size=len(scale_set),
                is_fully_contained=True,
                is_exact_match=len(detected) == len(scale_set),
            )
        )

    results.sort(key=lambda m: (not m.is_exact_match, -m.matched_count))
    logger.debug(f"{len(results)} scales contain pitch classes {sorted(detected)}")
    return results


def identify_scales_from_notes(note_names: Iterable[str]) -> List[ScaleMatch]:
    """identify_scales for note names such as 'D', 'F#' or 'Bb'.

    Raises:
        ValueError: If a name is not a recognised pitch class
    """
    pitch_classes = []
    for name in note_names:
        pc = note_to_pitch_class(name)
        if pc is None:
            raise ValueError(f"Unknown note name: {name!r}")
        pitch_classes.append(pc)
    return identify_scales(pitch_classes)
