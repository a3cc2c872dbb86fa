"""
Practice settings: range presets, key signatures and the user's choices.
"""

import json
import logging
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from readnote.models.note import AccidentalPref, NoteNaming

logger = logging.getLogger(__name__)


class Clef(str, Enum):
    TREBLE = "treble"
    BASS = "bass"


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class RangePreset(BaseModel):
    id: str
    label: str
    clef: Clef
    min_midi: int
    max_midi: int


class KeySignature(BaseModel):
    id: str
    label: str
    pref: AccidentalPref


# MIDI numbers: C4 = 60, E2 = 40
RANGES: List[RangePreset] = [
    RangePreset(id="beginner_5", label="Beginner: C4-G4 (5 notes)", clef=Clef.TREBLE, min_midi=60, max_midi=67),
    RangePreset(id="beginner_7", label="Beginner+: C4-B4 (7 notes)", clef=Clef.TREBLE, min_midi=60, max_midi=71),
    RangePreset(id="treble_easy", label="Treble: C4-B4 (easy)", clef=Clef.TREBLE, min_midi=60, max_midi=71),
    RangePreset(id="treble_mid", label="Treble: C4-C6", clef=Clef.TREBLE, min_midi=60, max_midi=84),
    RangePreset(id="bass_low", label="Bass: E2-C4", clef=Clef.BASS, min_midi=40, max_midi=60),
    RangePreset(id="bass_mid", label="Bass: C2-C4", clef=Clef.BASS, min_midi=36, max_midi=60),
]

KEY_SIGS: List[KeySignature] = [
    KeySignature(id="C", label="C major (no sharps/flats)", pref=AccidentalPref.SHARPS),
    KeySignature(id="G", label="G major (1#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="D", label="D major (2#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="A", label="A major (3#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="E", label="E major (4#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="B", label="B major (5#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="F#", label="F# major (6#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="C#", label="C# major (7#)", pref=AccidentalPref.SHARPS),
    KeySignature(id="F", label="F major (1b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Bb", label="Bb major (2b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Eb", label="Eb major (3b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Ab", label="Ab major (4b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Db", label="Db major (5b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Gb", label="Gb major (6b)", pref=AccidentalPref.FLATS),
    KeySignature(id="Cb", label="Cb major (7b)", pref=AccidentalPref.FLATS),
]


def find_range(range_id: str) -> RangePreset:
    return next((r for r in RANGES if r.id == range_id), RANGES[0])


def find_key_sig(key_sig_id: str) -> KeySignature:
    return next((k for k in KEY_SIGS if k.id == key_sig_id), KEY_SIGS[0])


class PracticeSettings(BaseModel):
    range_id: str = RANGES[0].id
    clef: Optional[Clef] = None  # None -> follow the range preset
    key_sig_id: str = KEY_SIGS[0].id
    difficulty: Difficulty = Difficulty.BEGINNER
    show_hints: bool = False
    naming: NoteNaming = NoteNaming.ENGLISH

    # Explicit range override; used instead of the preset when both are set
    min_midi: Optional[int] = Field(default=None, ge=0, le=127)
    max_midi: Optional[int] = Field(default=None, ge=0, le=127)

    model_config = {"extra": "ignore"}

    @model_validator(mode="after")
    def _default_clef(self) -> "PracticeSettings":
        if self.clef is None:
            self.clef = find_range(self.range_id).clef
        return self

    @property
    def range(self) -> RangePreset:
        return find_range(self.range_id)

    @property
    def key_sig(self) -> KeySignature:
        return find_key_sig(self.key_sig_id)

    @property
    def accidental_pref(self) -> AccidentalPref:
        return self.key_sig.pref

    @property
    def include_accidentals(self) -> bool:
        return self.difficulty != Difficulty.BEGINNER

    @property
    def midi_bounds(self) -> tuple:
        if self.min_midi is not None and self.max_midi is not None:
            return self.min_midi, self.max_midi
        preset = self.range
        return preset.min_midi, preset.max_midi


def settings_to_json(settings: PracticeSettings) -> str:
    return settings.model_dump_json(exclude_none=True)


def settings_from_json(raw: Optional[str]) -> PracticeSettings:
    """Parse stored settings; anything unreadable degrades to defaults."""
    if not raw:
        return PracticeSettings()
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        return PracticeSettings.model_validate(data)
    except (ValueError, ValidationError) as e:
        logger.warning(f"Discarding stored settings: {e}")
        return PracticeSettings()
