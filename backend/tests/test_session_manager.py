import random

import numpy as np
import pytest
from pydantic import ValidationError
from readnote.db.store import SETTINGS_STORAGE_KEY, STATS_STORAGE_KEY, MemoryStore, load_settings, load_stats
from readnote.models.note import midi_to_frequency
from readnote.models.settings import PracticeSettings
from readnote.models.stats import PitchStat, stats_to_json
from readnote.session.manager import (
    ConfigurationError,
    PracticeSession,
    active_sessions,
    create_session,
    end_session,
    get_session,
)
from readnote.tools.pitch_detection import frequency_to_midi


def sine(freq: float, n: int = 2048, sample_rate: int = 44100) -> np.ndarray:
    t = np.arange(n) / sample_rate
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def make_session(**settings):
    store = MemoryStore()
    session = PracticeSession(
        "test",
        store=store,
        settings=PracticeSettings(**settings),
        rng=random.Random(7),
    )
    return session, store


def test_session_starts_with_target_in_candidates():
    session, _ = make_session()

    assert session.candidates == [60, 62, 64, 65, 67]
    assert session.current_target is not None
    assert session.current_target.midi in session.candidates


def test_correct_answer_updates_stats_and_score():
    session, store = make_session()
    target = session.current_target.midi

    outcome = session.submit_answer(target)

    assert outcome.correct is True
    assert outcome.target_midi == target
    assert outcome.score == 1 and outcome.streak == 1
    assert outcome.feedback.type == "good"
    assert session.stats[target].correct == 1
    assert load_stats(store) == session.stats  # write-through


def test_wrong_answer_scores_against_target():
    session, _ = make_session()
    session.submit_answer(session.current_target.midi)
    session.streak = 3
    target = session.current_target.midi
    wrong = next(m for m in session.candidates if m != target)
    outcome = session.submit_answer(wrong)

    assert outcome.correct is False
    assert outcome.streak == 0
    assert outcome.feedback.type == "bad"
    assert session.stats[target].wrong == 1
    assert wrong not in session.stats or session.stats[wrong].wrong == 0


def test_next_target_differs_from_answered():
    session, _ = make_session()
    for _ in range(50):
        previous = session.current_target.midi
        outcome = session.submit_answer(previous)
        assert outcome.next_target.midi != previous
        assert session.current_target == outcome.next_target


def test_outcome_listeners_are_notified():
    session, _ = make_session()
    seen = []
    session.add_listener(seen.append)

    outcome = session.submit_answer(session.current_target.midi)
    session.remove_listener(seen.append)
    session.submit_answer(session.current_target.midi)

    assert seen == [outcome]


def test_external_notes_outside_candidates_are_ignored():
    session, _ = make_session()
    target = session.current_target

    assert session.submit_external(61) is None  # black key, beginner range
    assert session.submit_external(90) is None
    assert session.current_target == target
    assert session.stats == {}


def test_midi_note_on_routes_to_answer():
    session, _ = make_session()
    target = session.current_target.midi

    outcome = session.submit_midi_message(0x91, target, 100)

    assert outcome is not None and outcome.correct


def test_midi_note_off_is_ignored():
    session, _ = make_session()
    target = session.current_target.midi

    assert session.submit_midi_message(0x80, target, 64) is None
    assert session.submit_midi_message(0x90, target, 0) is None
    assert session.stats == {}


def test_detected_frequency_routes_to_answer():
    session, _ = make_session()
    session.current_target = session.current_target.from_midi(69)
    session.candidates = [60, 62, 64, 65, 67, 69]

    outcome = session.submit_detected_frequency(441.0)

    assert outcome is not None and outcome.correct
    assert session.submit_detected_frequency(None) is None
    assert session.submit_detected_frequency(0.0) is None


def test_held_detected_note_is_scored_once():
    session, _ = make_session()
    target = session.current_target.midi
    frequency = midi_to_frequency(target)

    first = session.submit_detected_frequency(frequency)
    held = [session.submit_detected_frequency(frequency) for _ in range(3)]

    assert first is not None and first.correct
    assert held == [None, None, None]
    assert session.stats[target].seen == 1
    assert sum(s.seen for s in session.stats.values()) == 1

    # Silence re-arms the note
    session.submit_detected_frequency(None)
    assert session.submit_detected_frequency(frequency) is not None


def test_submit_audio_waits_for_full_window():
    session, _ = make_session()

    frequency, outcome = session.submit_audio(sine(392.0, n=512))

    assert frequency is None and outcome is None
    assert session.stats == {}


def test_submit_audio_keeps_only_newest_window():
    session, _ = make_session()
    session.current_target = session.current_target.from_midi(67)
    # A long chunk that ends in G4; only the tail is analysed
    chunk = np.concatenate([sine(261.63, n=200_000), sine(392.0)])

    frequency, outcome = session.submit_audio(chunk)

    assert frequency_to_midi(frequency) == 67
    assert outcome is not None and outcome.correct


def test_submit_audio_held_note_does_not_fail_next_cards():
    session, _ = make_session()
    session.current_target = session.current_target.from_midi(67)
    chunk = sine(392.0)

    outcomes = [session.submit_audio(chunk)[1] for _ in range(3)]

    assert outcomes[0] is not None and outcomes[0].correct
    assert outcomes[1:] == [None, None]
    assert {m: (s.seen, s.wrong) for m, s in session.stats.items()} == {67: (1, 0)}


def test_submit_audio_sample_rate_change_restarts_window():
    session, _ = make_session()
    session.submit_audio(sine(392.0, n=1024))

    frequency, outcome = session.submit_audio(sine(392.0, n=1024, sample_rate=48000), sample_rate=48000)

    assert frequency is None and outcome is None


def test_answer_outside_midi_range_is_rejected_before_scoring():
    session, store = make_session()
    target = session.current_target

    for midi in [-1, 128, 500]:
        with pytest.raises(ValueError):
            session.submit_answer(midi)

    assert session.stats == {}
    assert store.get(STATS_STORAGE_KEY) is None
    assert session.current_target == target


def test_range_override_beyond_midi_is_rejected():
    session, _ = make_session()
    before = session.candidates

    with pytest.raises(ValidationError):
        session.update_settings(min_midi=120, max_midi=140, difficulty="advanced")

    assert session.candidates == before
    assert max(session.candidates) <= 127


def test_pitch_detector_callback_uses_current_target():
    session, _ = make_session()
    first = session.current_target.midi

    session.on_detected_pitch(first, 0.0)
    # A late detection of the same pitch is scored against the new target
    session.on_detected_pitch(first, 0.0)

    assert session.stats[first].correct == 1
    assert sum(s.wrong for s in session.stats.values()) == 1


def test_next_card_does_not_touch_stats():
    session, _ = make_session()
    previous = session.current_target.midi

    note = session.next_card()

    assert note.midi != previous
    assert session.stats == {}


def test_reset_stats():
    session, store = make_session()
    session.submit_answer(session.current_target.midi)

    session.reset_stats()

    assert session.stats == {}
    assert load_stats(store) == {}
    assert session.score == 0 and session.streak == 0
    assert "cleared" in session.feedback.text


def test_update_settings_rebuilds_candidates_and_persists():
    session, store = make_session()

    note = session.update_settings(range_id="bass_low", difficulty="advanced", key_sig_id="Eb")

    assert session.candidates == list(range(40, 61))
    assert note.midi in session.candidates
    assert session.settings.clef.value == "bass"
    assert load_settings(store).range_id == "bass_low"
    if note.spelling.accidental:
        assert note.spelling.accidental == "b"


def test_inverted_range_is_a_configuration_error():
    session, _ = make_session()

    with pytest.raises(ConfigurationError):
        session.update_settings(min_midi=70, max_midi=60)

    assert session.current_target is None
    with pytest.raises(ConfigurationError):
        session.submit_answer(60)
    with pytest.raises(ConfigurationError):
        session.next_card()


def test_session_with_empty_range_has_no_target():
    session, _ = make_session(min_midi=70, max_midi=60)
    assert session.candidates == []
    assert session.current_target is None


def test_session_loads_persisted_state():
    store = MemoryStore({STATS_STORAGE_KEY: stats_to_json({60: PitchStat(seen=4, correct=1, wrong=3, ema_accuracy=0.2)})})
    store.set(SETTINGS_STORAGE_KEY, PracticeSettings(difficulty="intermediate").model_dump_json())

    session = PracticeSession("restore", store=store, rng=random.Random(1))

    assert session.stats[60].wrong == 3
    assert session.settings.include_accidentals is True
    assert 61 in session.candidates


def test_german_naming_in_feedback():
    session, _ = make_session(range_id="beginner_7", naming="german")
    session.current_target = session.current_target.from_midi(71)

    outcome = session.submit_answer(71)

    assert outcome.feedback.text == "Correct: H4"


def test_summary():
    session, _ = make_session()
    session.submit_answer(session.current_target.midi)

    summary = session.get_session_summary()

    assert summary["score"] == 1
    assert summary["candidates"] == [60, 62, 64, 65, 67]
    assert set(summary["weights"]) == set(session.candidates)
    assert summary["target_label"] == session.target_label()


def test_session_registry():
    session = create_session("abc", store=MemoryStore())
    try:
        assert get_session("abc") is session
        assert "abc" in active_sessions
    finally:
        end_session("abc")
    assert get_session("abc") is None
    end_session("abc")
