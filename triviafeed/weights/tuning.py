"""
Tuning parameters for the interest weight model.

Defaults reproduce the production app's tuning. Every magnitude is a named
field so product can override it through Settings without code changes.
Per-level tuples are ordered (topic, subtopic, branch).
"""

from __future__ import annotations

import math

from pydantic import BaseModel, model_validator

from triviafeed.core.models import TopicKey

LEVEL_INDEX = {"topic": 0, "subtopic": 1, "branch": 2}


class WeightTuning(BaseModel):
    """Magnitudes used by the weight model and skip compensation."""

    neutral_score: float = 0.5
    min_score: float = 0.1
    max_score: float = 1.0

    correct_deltas: tuple[float, float, float] = (0.05, 0.08, 0.10)
    incorrect_deltas: tuple[float, float, float] = (0.01, 0.015, 0.02)
    skip_penalties: tuple[float, float, float] = (0.05, 0.07, 0.10)

    # Fraction of a skip penalty offset per recent correct answer, and its cap
    compensation_per_correct: float = 0.1
    compensation_cap: float = 0.8
    history_window: int = 10

    decay_per_day: float = 0.05
    decay_grace_days: float = 1.0

    @model_validator(mode="after")
    def _check_ranges(self) -> WeightTuning:
        values = [
            self.neutral_score,
            self.min_score,
            self.max_score,
            *self.correct_deltas,
            *self.incorrect_deltas,
            *self.skip_penalties,
            self.compensation_per_correct,
            self.compensation_cap,
            self.decay_per_day,
            self.decay_grace_days,
        ]
        if not all(math.isfinite(v) for v in values):
            raise ValueError("weight tuning values must be finite")
        if not self.min_score <= self.neutral_score <= self.max_score:
            raise ValueError("expected min_score <= neutral_score <= max_score")
        for correct, incorrect in zip(self.correct_deltas, self.incorrect_deltas):
            if not correct >= incorrect >= 0:
                raise ValueError("answer deltas must satisfy correct >= incorrect >= 0")
        if any(p < 0 for p in self.skip_penalties):
            raise ValueError("skip penalties are magnitudes and must be >= 0")
        if not 0 <= self.compensation_cap <= 1:
            raise ValueError("compensation_cap must be within [0, 1]")
        if self.compensation_per_correct < 0 or self.history_window < 1:
            raise ValueError("compensation_per_correct >= 0 and history_window >= 1 required")
        return self

    def clamp(self, score: float) -> float:
        return max(self.min_score, min(self.max_score, score))

    def answer_delta(self, key: TopicKey, is_correct: bool) -> float:
        deltas = self.correct_deltas if is_correct else self.incorrect_deltas
        return deltas[LEVEL_INDEX[key.level]]

    def skip_penalty(self, key: TopicKey) -> float:
        return self.skip_penalties[LEVEL_INDEX[key.level]]
