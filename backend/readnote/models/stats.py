"""
Per-pitch practice statistics and the spaced-repetition weight.

The stats table maps MIDI note number -> PitchStat. Missing entries read as
the default record (never seen, 50% accuracy). Tables are never mutated in
place: record_outcome returns a new table with one entry replaced.
"""

import json
import logging
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# EMA smoothing factor: weight of the newest answer
EMA_ALPHA = 0.25

WRONG_PENALTY = 0.6
DIFFICULTY_SCALE = 2.5
NOVELTY_BOOST = 1.8
MIN_WEIGHT = 1.0
MAX_WEIGHT = 8.0


class PitchStat(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    seen: int = Field(default=0, ge=0)
    correct: int = Field(default=0, ge=0)
    wrong: int = Field(default=0, ge=0)
    ema_accuracy: float = Field(default=0.5, alias="emaAcc")

    @field_validator("ema_accuracy")
    @classmethod
    def _clamp_accuracy(cls, value: float) -> float:
        return max(0.0, min(1.0, float(value)))


DEFAULT_STAT = PitchStat()

StatsTable = Dict[int, PitchStat]


def get_stat(stats: StatsTable, midi: int) -> PitchStat:
    return stats.get(midi, DEFAULT_STAT)


def record_outcome(stats: StatsTable, midi: int, was_correct: bool) -> StatsTable:
    """Return a new table with the outcome for `midi` folded in."""
    current = get_stat(stats, midi)
    hit = 1 if was_correct else 0

    updated = PitchStat(
        seen=current.seen + 1,
        correct=current.correct + hit,
        wrong=current.wrong + (1 - hit),
        ema_accuracy=(1 - EMA_ALPHA) * current.ema_accuracy + EMA_ALPHA * hit,
    )

    new_stats = dict(stats)
    new_stats[midi] = updated
    return new_stats


def weight_for_midi(stats: StatsTable, midi: int) -> float:
    """
    Selection weight for a pitch, in [1, 8].

    Notes answered wrongly, with low recent accuracy, or never seen are
    drawn more often.
    """
    s = get_stat(stats, midi)
    penalty = 1 + s.wrong * WRONG_PENALTY
    difficulty = 1 + (1 - s.ema_accuracy) * DIFFICULTY_SCALE
    novelty = NOVELTY_BOOST if s.seen == 0 else 1.0
    raw = penalty * difficulty * novelty
    return max(MIN_WEIGHT, min(MAX_WEIGHT, raw))


def stats_to_json(stats: StatsTable) -> str:
    """Serialize as {"60": {"seen": .., "correct": .., "wrong": .., "emaAcc": ..}, ...}."""
    payload = {
        str(midi): stat.model_dump(by_alias=True)
        for midi, stat in sorted(stats.items())
    }
    return json.dumps(payload)


def stats_from_json(raw: Optional[str]) -> StatsTable:
    """
    Parse a serialized stats table.

    Missing or corrupt data yields an empty table. Individual malformed
    entries are dropped and the rest kept.
    """
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Discarding corrupt stats data: {e}")
        return {}

    if not isinstance(parsed, dict):
        logger.warning("Discarding stats data: expected a JSON object")
        return {}

    stats: StatsTable = {}
    for key, value in parsed.items():
        try:
            midi = int(key)
            if not 0 <= midi <= 127 or not isinstance(value, dict):
                raise ValueError(f"bad entry for key {key!r}")
            stats[midi] = PitchStat.model_validate(value)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Dropping stats entry {key!r}: {e}")

    return stats
