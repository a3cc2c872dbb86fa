import random

import pytest
from readnote.models.stats import PitchStat, record_outcome, weight_for_midi
from readnote.tools.candidates import build_candidate_set
from readnote.tools.scheduler import pick_next, weighted_pick


class FixedRandom:
    """Random source that always draws the same value."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def test_build_naturals_only():
    assert build_candidate_set(60, 67, False) == [60, 62, 64, 65, 67]


def test_build_with_accidentals():
    assert build_candidate_set(60, 67, True) == list(range(60, 68))


def test_build_single_note_range():
    assert build_candidate_set(61, 61, True) == [61]
    assert build_candidate_set(61, 61, False) == []


def test_build_inverted_range_is_empty():
    assert build_candidate_set(67, 60, True) == []


def test_build_bass_range():
    naturals = build_candidate_set(40, 60, False)
    assert naturals[0] == 40 and naturals[-1] == 60
    assert len(naturals) == 13


def test_weighted_pick_walks_in_order():
    items = [60, 62, 64]
    weights = [1.0, 2.0, 1.0]

    assert weighted_pick(items, weights, FixedRandom(0.0)) == 60
    assert weighted_pick(items, weights, FixedRandom(0.25)) == 60  # r == 1.0 hits zero on first
    assert weighted_pick(items, weights, FixedRandom(0.5)) == 62
    assert weighted_pick(items, weights, FixedRandom(0.99)) == 64


def test_weighted_pick_zero_total_is_uniform():
    items = [60, 62, 64, 65]
    assert weighted_pick(items, [0, 0, 0, 0], FixedRandom(0.6)) == 64


def test_weighted_pick_float_drift_returns_last():
    # A draw of exactly 1.0 never occurs from random(), but must still resolve
    assert weighted_pick([60, 62], [0.1, 0.2], FixedRandom(1.0 + 1e-9)) == 62


def test_weighted_pick_empty():
    with pytest.raises(ValueError):
        weighted_pick([], [])


def test_pick_next_deterministic():
    candidates = [60, 62, 64]
    assert pick_next(candidates, {}, rng=FixedRandom(0.5)) == 62


def test_pick_next_avoids_previous():
    candidates = [60, 62, 64]
    # Without exclusion 0.5 lands on 62; with 62 removed it lands on 60
    assert pick_next(candidates, {}, avoid=62, rng=FixedRandom(0.5)) == 60
    assert pick_next(candidates, {}, avoid=62, rng=FixedRandom(0.99)) == 64


def test_pick_next_never_repeats_with_alternatives():
    rng = random.Random(1234)
    candidates = build_candidate_set(60, 72, True)
    stats = {}
    previous = None
    for _ in range(500):
        midi = pick_next(candidates, stats, avoid=previous, rng=rng)
        assert midi != previous
        assert midi in candidates
        stats = record_outcome(stats, midi, rng.random() < 0.5)
        previous = midi


def test_pick_next_single_candidate_may_repeat():
    assert pick_next([60], {}, avoid=60, rng=FixedRandom(0.3)) == 60


def test_pick_next_avoid_not_in_candidates():
    assert pick_next([60, 62], {}, avoid=71, rng=FixedRandom(0.1)) == 60


def test_pick_next_favours_weak_notes():
    stats = {
        60: PitchStat(seen=30, correct=30, wrong=0, ema_accuracy=1.0),
        62: PitchStat(seen=30, correct=10, wrong=20, ema_accuracy=0.1),
    }
    assert weight_for_midi(stats, 60) == 1.0
    assert weight_for_midi(stats, 62) == 8.0

    rng = random.Random(42)
    picks = [pick_next([60, 62], stats, rng=rng) for _ in range(2000)]
    share = picks.count(62) / len(picks)
    assert 0.82 < share < 0.95  # expected 8/9


def test_pick_next_empty():
    with pytest.raises(ValueError):
        pick_next([], {})
