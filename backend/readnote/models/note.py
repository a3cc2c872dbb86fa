"""
Pitch spelling and note labels.

A Note is always derived from a MIDI number plus an accidental preference,
so its spelling can never go stale.
"""

from enum import Enum
from typing import Dict
from pydantic import BaseModel, Field


class AccidentalPref(str, Enum):
    SHARPS = "sharps"
    FLATS = "flats"


class NoteNaming(str, Enum):
    ENGLISH = "english"
    SOLFEGE = "solfege"
    GERMAN = "german"


class PitchSpelling(BaseModel):
    letter: str      # C..B
    accidental: str  # "", "#" or "b"

    model_config = {"frozen": True}


def _spelling(letter: str, accidental: str = "") -> PitchSpelling:
    return PitchSpelling(letter=letter, accidental=accidental)


SHARP_NAMES: Dict[int, PitchSpelling] = {
    0: _spelling("C"),
    1: _spelling("C", "#"),
    2: _spelling("D"),
    3: _spelling("D", "#"),
    4: _spelling("E"),
    5: _spelling("F"),
    6: _spelling("F", "#"),
    7: _spelling("G"),
    8: _spelling("G", "#"),
    9: _spelling("A"),
    10: _spelling("A", "#"),
    11: _spelling("B"),
}

FLAT_NAMES: Dict[int, PitchSpelling] = {
    0: _spelling("C"),
    1: _spelling("D", "b"),
    2: _spelling("D"),
    3: _spelling("E", "b"),
    4: _spelling("E"),
    5: _spelling("F"),
    6: _spelling("G", "b"),
    7: _spelling("G"),
    8: _spelling("A", "b"),
    9: _spelling("A"),
    10: _spelling("B", "b"),
    11: _spelling("B"),
}

NATURAL_PITCH_CLASSES = frozenset({0, 2, 4, 5, 7, 9, 11})

SOLFEGE_NAMES = {"C": "Do", "D": "Re", "E": "Mi", "F": "Fa", "G": "Sol", "A": "La", "B": "Ti"}


def midi_to_pitch_class(midi: int) -> int:
    return midi % 12


def midi_to_octave(midi: int) -> int:
    # C4 = 60
    return (midi // 12) - 1


def midi_to_frequency(midi: int) -> float:
    return 440.0 * (2.0 ** ((midi - 69) / 12.0))


def is_black_key(midi: int) -> bool:
    return midi_to_pitch_class(midi) not in NATURAL_PITCH_CLASSES


def spell_midi(midi: int, pref: AccidentalPref = AccidentalPref.SHARPS) -> PitchSpelling:
    """Spell a MIDI number as letter + accidental for the given preference."""
    table = FLAT_NAMES if AccidentalPref(pref) == AccidentalPref.FLATS else SHARP_NAMES
    return table[midi_to_pitch_class(midi)]


class Note(BaseModel):
    midi: int = Field(ge=0, le=127)
    spelling: PitchSpelling

    model_config = {"frozen": True}

    @classmethod
    def from_midi(cls, midi: int, pref: AccidentalPref = AccidentalPref.SHARPS) -> "Note":
        return cls(midi=midi, spelling=spell_midi(midi, pref))

    @property
    def octave(self) -> int:
        return midi_to_octave(self.midi)

    @property
    def label(self) -> str:
        return note_label(self)


def note_label(note: Note) -> str:
    """Label like "C#4" or "Eb5"."""
    return f"{note.spelling.letter}{note.spelling.accidental}{midi_to_octave(note.midi)}"


def _base_name(spelling: PitchSpelling, naming: NoteNaming) -> str:
    if naming == NoteNaming.SOLFEGE:
        return SOLFEGE_NAMES[spelling.letter]
    if naming == NoteNaming.GERMAN and spelling.letter == "B":
        # German B natural is H, B flat is B
        return "H" if spelling.accidental == "" else "B"
    return spelling.letter


def note_label_with_naming(note: Note, naming: NoteNaming = NoteNaming.ENGLISH) -> str:
    naming = NoteNaming(naming)
    base = _base_name(note.spelling, naming)
    return f"{base}{note.spelling.accidental}{midi_to_octave(note.midi)}"
