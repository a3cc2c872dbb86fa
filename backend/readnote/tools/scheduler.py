"""
Weighted-random choice of the next practice target.
"""

import random
from typing import List, Optional, Sequence

from readnote.models.stats import StatsTable, weight_for_midi


def weighted_pick(items: Sequence[int], weights: Sequence[float], rng: Optional[random.Random] = None) -> int:
    """
    Roulette-wheel selection walking `items` in order.

    Falls back to a uniform choice when the weights sum to zero, and to the
    last item if float drift keeps the remainder above zero.
    """
    if not items:
        raise ValueError("Cannot pick from an empty candidate list")

    rng = rng or random
    total = sum(weights)
    if total <= 0:
        return items[int(rng.random() * len(items))]

    r = rng.random() * total
    for item, w in zip(items, weights):
        r -= w
        if r <= 0:
            return item
    return items[-1]


def pick_next(
    candidates: List[int],
    stats: StatsTable,
    avoid: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> int:
    """
    Pick the next target from `candidates`, favouring weak and unseen notes.

    `avoid` (usually the note just answered) is excluded whenever there is
    more than one candidate. Weights of the remaining notes are not rescaled.
    """
    if not candidates:
        raise ValueError("Cannot pick from an empty candidate list")

    weighted = [(m, weight_for_midi(stats, m)) for m in candidates]

    if avoid is not None and len(candidates) > 1:
        filtered = [(m, w) for m, w in weighted if m != avoid]
        if filtered:
            weighted = filtered

    items = [m for m, _ in weighted]
    weights = [w for _, w in weighted]
    return weighted_pick(items, weights, rng)
