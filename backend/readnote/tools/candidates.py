from typing import List

from readnote.models.note import NATURAL_PITCH_CLASSES, midi_to_pitch_class


def build_candidate_set(min_midi: int, max_midi: int, include_accidentals: bool) -> List[int]:
    """
    MIDI numbers eligible as practice targets, ascending.

    Natural pitch classes are always included; black keys only when
    include_accidentals is set. An inverted range yields an empty list,
    which callers must treat as "no valid note".
    """
    return [
        m for m in range(min_midi, max_midi + 1)
        if include_accidentals or midi_to_pitch_class(m) in NATURAL_PITCH_CLASSES
    ]
