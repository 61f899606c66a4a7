"""
Skip compensation.

A skip costs a fixed penalty per topic level. At each level the penalty is
partly offset in proportion to how many of the level's recent interactions
were correct answers, so one skip after a streak of engagement does not
undo that streak. The offset never exceeds compensation_cap of the penalty
and does not depend on the level's current score.

Everything here is a pure function of the recent history.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from triviafeed.core.models import InteractionType, TopicKey

from .tuning import WeightTuning


@dataclass(frozen=True)
class SkipAdjustment:
    """Skip outcome at one level."""

    key: TopicKey
    penalty: float
    compensation: float

    @property
    def delta(self) -> float:
        return -(self.penalty - self.compensation)


def recent_correct_count(
    history: Mapping[TopicKey, Sequence[InteractionType]],
    key: TopicKey,
) -> int:
    return sum(1 for outcome in history.get(key, ()) if outcome is InteractionType.CORRECT)


def compensation_for(penalty: float, recent_correct: int, tuning: WeightTuning) -> float:
    fraction = min(tuning.compensation_cap, tuning.compensation_per_correct * recent_correct)
    return penalty * fraction


def skip_adjustments(
    history: Mapping[TopicKey, Sequence[InteractionType]],
    keys: Sequence[TopicKey],
    tuning: WeightTuning,
) -> list[SkipAdjustment]:
    """
    Compute the compensated skip delta for each level.

    Args:
        history: Recent interaction outcomes by level, oldest first
        keys: Levels touched by the skipped question
        tuning: Penalties and compensation constants

    Returns:
        One SkipAdjustment per key, in the order given
    """
    adjustments = []
    for key in keys:
        penalty = tuning.skip_penalty(key)
        compensation = compensation_for(penalty, recent_correct_count(history, key), tuning)
        adjustments.append(SkipAdjustment(key=key, penalty=penalty, compensation=compensation))
    return adjustments
