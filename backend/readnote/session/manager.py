"""
Practice session manager for note-reading drills.

This module owns the learner's stats table and the current target note.
Every answer source (on-screen key, MIDI note-on, detected pitch) ends up in
PracticeSession.submit_answer, which updates the stats, persists them and
picks the next target.
"""

import logging
import random
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel

from readnote.db.store import KeyValueStore, MemoryStore, load_settings, load_stats, save_settings, save_stats
from readnote.models.note import Note, note_label_with_naming
from readnote.models.settings import PracticeSettings
from readnote.models.stats import StatsTable, record_outcome, weight_for_midi
from readnote.tools.audio_session import DEFAULT_SAMPLE_RATE, BufferedAudioSession
from readnote.tools.candidates import build_candidate_set
from readnote.tools.midi_input import note_on_number
from readnote.tools.pitch_detection import PitchDetector
from readnote.tools.scheduler import pick_next

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """The current settings leave no note to practise."""


class Feedback(BaseModel):
    type: str  # "neutral", "good", "bad"
    text: str


class AnswerOutcome(BaseModel):
    answered_midi: int
    target_midi: int
    correct: bool
    score: int
    streak: int
    feedback: Feedback
    next_target: Optional[Note] = None


OutcomeListener = Callable[[AnswerOutcome], None]


class PracticeSession:
    """Manages state for a single practice session."""

    def __init__(
        self,
        session_id: str,
        store: Optional[KeyValueStore] = None,
        settings: Optional[PracticeSettings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session_id = session_id
        self.store = store if store is not None else MemoryStore()
        self.rng = rng or random.Random()

        self.settings = settings if settings is not None else load_settings(self.store)
        self.stats: StatsTable = load_stats(self.store)
        self.candidates: List[int] = self._build_candidates()

        self.current_target: Optional[Note] = None
        self.score = 0
        self.streak = 0
        self.feedback = Feedback(type="neutral", text="Click a key (or play MIDI) to answer.")
        self._listeners: List[OutcomeListener] = []
        self._network_pitch: Optional[PitchDetector] = None

        if self.candidates:
            self.current_target = self._pick(avoid=None)
        else:
            logger.warning(f"[{session_id}] No notes in range {self.settings.midi_bounds}")

    # ------------------------------------------------------------------
    # Answer sources
    # ------------------------------------------------------------------

    def submit_answer(self, midi: int) -> AnswerOutcome:
        """
        Score `midi` against the current target and move to the next one.

        Raises:
            ConfigurationError: no target can be presented with current settings
            ValueError: `midi` is not a MIDI note number
        """
        if self.current_target is None:
            raise ConfigurationError("No valid note to practise with the current range")
        if not 0 <= midi <= 127:
            raise ValueError(f"MIDI note out of range: {midi}")

        target = self.current_target
        correct = midi == target.midi

        self.stats = record_outcome(self.stats, target.midi, correct)
        save_stats(self.store, self.stats)

        if correct:
            self.score += 1
            self.streak += 1
            self.feedback = Feedback(type="good", text=f"Correct: {self._label(target)}")
        else:
            self.streak = 0
            answered = Note.from_midi(midi, self.settings.accidental_pref)
            self.feedback = Feedback(
                type="bad",
                text=f"Nope - it was {self._label(target)} (you played {self._label(answered)})",
            )

        self.current_target = self._pick(avoid=target.midi)

        outcome = AnswerOutcome(
            answered_midi=midi,
            target_midi=target.midi,
            correct=correct,
            score=self.score,
            streak=self.streak,
            feedback=self.feedback,
            next_target=self.current_target,
        )
        logger.debug(f"[{self.session_id}] answer {midi} vs {target.midi}: {'correct' if correct else 'wrong'}")
        self._emit(outcome)
        return outcome

    def submit_external(self, midi: int) -> Optional[AnswerOutcome]:
        """
        Entry point for MIDI devices and pitch detection.

        Notes outside the candidate set are ignored rather than scored.
        """
        if midi not in self.candidates:
            logger.debug(f"[{self.session_id}] ignoring out-of-range note {midi}")
            return None
        return self.submit_answer(midi)

    def submit_midi_message(self, status: int, note: int, velocity: int) -> Optional[AnswerOutcome]:
        midi = note_on_number(status, note, velocity)
        if midi is None:
            return None
        return self.submit_external(midi)

    def submit_detected_frequency(self, frequency: Optional[float]) -> Optional[AnswerOutcome]:
        """
        Score one detection result from network audio.

        Goes through the session's network detector, so a held note is
        scored once and silence (None) re-arms it.
        """
        detector = self._network_detector()
        return self._capture_outcome(lambda: detector.handle_frequency(frequency))

    def submit_audio(self, samples: np.ndarray, sample_rate: int = DEFAULT_SAMPLE_RATE) -> Tuple[Optional[float], Optional[AnswerOutcome]]:
        """
        Feed client audio and run one detection on the newest window.

        Only the most recent analysis window is kept, however long the chunk.

        Returns:
            (detected frequency or None, outcome if the detection was scored)
        """
        detector = self._network_detector(sample_rate)
        detector.audio_session.feed(samples)
        buffer = detector.audio_session.read()
        if buffer is None:
            # Window not full yet
            return None, None
        outcome = self._capture_outcome(lambda: detector.process_buffer(buffer))
        return detector.last_frequency, outcome

    def on_detected_pitch(self, midi: int, frequency: float) -> None:
        """PitchDetector callback."""
        self.submit_external(midi)

    def _network_detector(self, sample_rate: Optional[int] = None) -> PitchDetector:
        detector = self._network_pitch
        if detector is None or (sample_rate and detector.audio_session.sample_rate != sample_rate):
            audio = BufferedAudioSession(sample_rate=sample_rate or DEFAULT_SAMPLE_RATE)
            audio.open()
            detector = PitchDetector(audio, on_pitch=self.on_detected_pitch)
            self._network_pitch = detector
        return detector

    def _capture_outcome(self, report: Callable[[], Optional[int]]) -> Optional[AnswerOutcome]:
        outcomes: List[AnswerOutcome] = []
        listener = outcomes.append
        self.add_listener(listener)
        try:
            report()
        finally:
            self.remove_listener(listener)
        return outcomes[-1] if outcomes else None

    # ------------------------------------------------------------------
    # Card and settings control
    # ------------------------------------------------------------------

    def next_card(self) -> Note:
        """Skip to another note without scoring."""
        avoid = self.current_target.midi if self.current_target else None
        self.current_target = self._pick(avoid=avoid)
        self.feedback = Feedback(type="neutral", text="What note is this?")
        return self.current_target

    def update_settings(self, **changes) -> Note:
        """Apply setting changes, persist them and present a fresh card."""
        if "range_id" in changes and "clef" not in changes:
            # Clef follows the range preset unless set explicitly
            changes["clef"] = None
        self.settings = PracticeSettings.model_validate({**self.settings.model_dump(), **changes})
        save_settings(self.store, self.settings)

        self.candidates = self._build_candidates()
        if not self.candidates:
            self.current_target = None
            raise ConfigurationError(f"No notes in range {self.settings.midi_bounds}")
        return self.next_card()

    def reset_stats(self) -> Note:
        self.stats = {}
        save_stats(self.store, self.stats)
        self.score = 0
        self.streak = 0
        note = self.next_card()
        self.feedback = Feedback(type="neutral", text="Stats cleared. What note is this?")
        logger.info(f"[{self.session_id}] stats reset")
        return note

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: OutcomeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, outcome: AnswerOutcome) -> None:
        for listener in list(self._listeners):
            listener(outcome)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_candidates(self) -> List[int]:
        min_midi, max_midi = self.settings.midi_bounds
        return build_candidate_set(min_midi, max_midi, self.settings.include_accidentals)

    def _pick(self, avoid: Optional[int]) -> Note:
        if not self.candidates:
            raise ConfigurationError(f"No notes in range {self.settings.midi_bounds}")
        midi = pick_next(self.candidates, self.stats, avoid=avoid, rng=self.rng)
        return Note.from_midi(midi, self.settings.accidental_pref)

    def _label(self, note: Note) -> str:
        return note_label_with_naming(note, self.settings.naming)

    def target_label(self) -> Optional[str]:
        return self._label(self.current_target) if self.current_target else None

    def get_session_summary(self) -> Dict:
        """Get summary of current session state."""
        return {
            "session_id": self.session_id,
            "settings": self.settings.model_dump(mode="json"),
            "candidates": self.candidates,
            "current_target": self.current_target.model_dump() if self.current_target else None,
            "target_label": self.target_label(),
            "score": self.score,
            "streak": self.streak,
            "feedback": self.feedback.model_dump(),
            "weights": {m: round(weight_for_midi(self.stats, m), 3) for m in self.candidates},
            "stats": {m: s.model_dump(by_alias=True) for m, s in sorted(self.stats.items())},
        }


# Global session store (in production, use Redis or database)
active_sessions: Dict[str, PracticeSession] = {}


def get_session(session_id: str) -> Optional[PracticeSession]:
    """Get existing practice session by ID."""
    return active_sessions.get(session_id)


def create_session(
    session_id: str,
    store: Optional[KeyValueStore] = None,
    rng: Optional[random.Random] = None,
) -> PracticeSession:
    """Create a new practice session."""
    session = PracticeSession(session_id, store=store, rng=rng)
    active_sessions[session_id] = session
    logger.info(f"Session {session_id} created")
    return session


def end_session(session_id: str) -> None:
    """End and remove a practice session."""
    if session_id in active_sessions:
        del active_sessions[session_id]
        logger.info(f"Session {session_id} ended")
