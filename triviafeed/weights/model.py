"""
Interest Weight Model.

Tracks each user's interest per topic level (topic, subtopic, branch) and
turns answers and skips into WeightChangeEvents.

Mutation happens in two steps so callers can persist before publishing:
- plan_answer / plan_skip: compute events from the current snapshot, no side effects
- apply_events: validate the whole batch, then apply it atomically

Applying an event whose id was already applied is a no-op, which makes
replays from the sync layer safe. Scores are clamped to the tuning range
while the event keeps the intended, unclamped delta.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from loguru import logger

from triviafeed.core.errors import InvalidWeightUpdate
from triviafeed.core.models import (
    InteractionType,
    Question,
    TopicKey,
    TopicWeight,
    WeightChangeEvent,
    as_utc,
    utcnow,
)

from .compensation import skip_adjustments
from .tuning import WeightTuning


@dataclass
class _UserWeights:
    weights: dict[TopicKey, TopicWeight] = field(default_factory=dict)
    history: dict[TopicKey, tuple[InteractionType, ...]] = field(default_factory=dict)
    applied_ids: set[str] = field(default_factory=set)


class WeightModel:
    """
    In-memory weight model for any number of users.

    Callers serialize mutations per user; the internal lock only makes each
    batch atomic with respect to concurrent readers.
    """

    def __init__(self, tuning: WeightTuning | None = None, decay_enabled: bool = True):
        self.tuning = tuning or WeightTuning()
        self.decay_enabled = decay_enabled
        self._users: dict[str, _UserWeights] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Planning (pure with respect to model state)
    # =========================================================================

    def plan_answer(
        self,
        user_id: str,
        question: Question,
        is_correct: bool,
        *,
        now: datetime | None = None,
        device_id: str | None = None,
    ) -> list[WeightChangeEvent]:
        """Events for an answer: one positive delta per level."""
        keys = self._validated_keys(user_id, question)
        created_at = now or utcnow()
        interaction = InteractionType.CORRECT if is_correct else InteractionType.INCORRECT
        events = [
            WeightChangeEvent(
                user_id=user_id,
                topic=key.topic,
                subtopic=key.subtopic,
                branch=key.branch,
                delta=self.tuning.answer_delta(key, is_correct),
                question_id=question.id,
                interaction_type=interaction,
                device_id=device_id,
                created_at=created_at,
            )
            for key in keys
        ]
        self._check_events(events)
        return events

    def plan_skip(
        self,
        user_id: str,
        question: Question,
        *,
        now: datetime | None = None,
        device_id: str | None = None,
    ) -> list[WeightChangeEvent]:
        """Events for a skip: compensated negative delta per level."""
        keys = self._validated_keys(user_id, question)
        created_at = now or utcnow()
        with self._lock:
            user = self._users.get(user_id) or _UserWeights()
            history = dict(user.history)

        adjustments = skip_adjustments(history, keys, self.tuning)
        by_level = {adj.key.level: adj.compensation for adj in adjustments}
        applied = any(adj.compensation > 0 for adj in adjustments)

        events = [
            WeightChangeEvent(
                user_id=user_id,
                topic=adj.key.topic,
                subtopic=adj.key.subtopic,
                branch=adj.key.branch,
                delta=adj.delta,
                skip_compensation_applied=applied,
                skip_compensation_topic=by_level.get("topic", 0.0),
                skip_compensation_subtopic=by_level.get("subtopic", 0.0),
                skip_compensation_branch=by_level.get("branch", 0.0),
                question_id=question.id,
                interaction_type=InteractionType.SKIPPED,
                device_id=device_id,
                created_at=created_at,
            )
            for adj in adjustments
        ]
        self._check_events(events)
        if applied:
            logger.debug(
                "Skip compensation for {} on {}: {}",
                user_id,
                question.id,
                {level: round(value, 4) for level, value in by_level.items()},
            )
        return events

    # =========================================================================
    # Mutation
    # =========================================================================

    def apply_answer(
        self, user_id: str, question: Question, is_correct: bool, **kwargs
    ) -> list[WeightChangeEvent]:
        events = self.plan_answer(user_id, question, is_correct, **kwargs)
        self.apply_events(events)
        return events

    def apply_skip(self, user_id: str, question: Question, **kwargs) -> list[WeightChangeEvent]:
        events = self.plan_skip(user_id, question, **kwargs)
        self.apply_events(events)
        return events

    def apply_event(self, event: WeightChangeEvent) -> bool:
        """Apply one event; False if its id was already applied."""
        return self.apply_events([event]) == 1

    def apply_events(self, events: Sequence[WeightChangeEvent]) -> int:
        """
        Apply a batch atomically.

        Raises:
            InvalidWeightUpdate: If any event is malformed (nothing is applied)

        Returns:
            Number of events newly applied (already-applied ids are skipped)
        """
        self._check_events(events)
        applied = 0
        with self._lock:
            for event in events:
                user = self._users.setdefault(event.user_id, _UserWeights())
                if event.id in user.applied_ids:
                    continue
                self._apply_one(user, event)
                applied += 1
        return applied

    def load(self, user_id: str, events: Iterable[WeightChangeEvent]) -> int:
        """Rebuild a user's weights by replaying stored events in creation order."""
        ordered = sorted(
            (e for e in events if e.user_id == user_id),
            key=lambda e: (as_utc(e.created_at), e.id),
        )
        rebuilt = _UserWeights()
        skipped = 0
        for event in ordered:
            if not event.is_well_formed:
                skipped += 1
                continue
            if event.id not in rebuilt.applied_ids:
                self._apply_one(rebuilt, event)
        with self._lock:
            self._users[user_id] = rebuilt
        if skipped:
            logger.warning("Skipped {} malformed stored events for {}", skipped, user_id)
        logger.debug("Loaded {} events for {}", len(rebuilt.applied_ids), user_id)
        return len(rebuilt.applied_ids)

    # =========================================================================
    # Reads
    # =========================================================================

    def is_loaded(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._users

    def has_applied(self, user_id: str, event_id: str) -> bool:
        with self._lock:
            user = self._users.get(user_id)
            return user is not None and event_id in user.applied_ids

    def topic_weights(self, user_id: str) -> dict[TopicKey, TopicWeight]:
        """Stored weight records (no decay), copied."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return {}
            return {key: replace(tw) for key, tw in user.weights.items()}

    def recent_history(self, user_id: str) -> dict[TopicKey, tuple[InteractionType, ...]]:
        with self._lock:
            user = self._users.get(user_id)
            return dict(user.history) if user else {}

    def current_weights(
        self, user_id: str, *, now: datetime | None = None
    ) -> dict[TopicKey, float]:
        """
        Read-only score snapshot used for ranking.

        Idle levels decay at read time when decay is enabled; stored scores
        are never changed by decay.
        """
        weights = self.topic_weights(user_id)
        if not self.decay_enabled:
            return {key: tw.score for key, tw in weights.items()}
        now = as_utc(now) or utcnow()
        return {key: self._decayed(tw, now) for key, tw in weights.items()}

    def score(self, user_id: str, key: TopicKey, *, now: datetime | None = None) -> float:
        return self.current_weights(user_id, now=now).get(key, self.tuning.neutral_score)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validated_keys(self, user_id: str, question: Question) -> list[TopicKey]:
        if not user_id:
            raise InvalidWeightUpdate("user_id is required")
        if question is None or not question.topic or not question.topic.strip():
            raise InvalidWeightUpdate("Question has no known topic")
        return question.topic_keys()

    @staticmethod
    def _check_events(events: Sequence[WeightChangeEvent]) -> None:
        for event in events:
            if not event.is_well_formed:
                raise InvalidWeightUpdate(
                    f"Malformed weight event {event.id}: topic={event.topic!r} delta={event.delta!r}"
                )

    def _apply_one(self, user: _UserWeights, event: WeightChangeEvent) -> None:
        key = event.key
        current = user.weights.get(key)
        created_at = as_utc(event.created_at)
        if current is None:
            current = TopicWeight(key=key, score=self.tuning.neutral_score)
        last = as_utc(current.last_updated)
        user.weights[key] = TopicWeight(
            key=key,
            score=self.tuning.clamp(current.score + event.delta),
            sample_count=current.sample_count + 1,
            last_updated=max(last, created_at) if last else created_at,
        )
        if event.interaction_type is not None:
            window = self.tuning.history_window
            user.history[key] = (user.history.get(key, ()) + (event.interaction_type,))[-window:]
        user.applied_ids.add(event.id)

    def _decayed(self, weight: TopicWeight, now: datetime) -> float:
        last = as_utc(weight.last_updated)
        if last is None or weight.score <= self.tuning.min_score:
            return weight.score
        idle_days = (now - last).total_seconds() / 86400
        if idle_days <= self.tuning.decay_grace_days:
            return weight.score
        decayed = weight.score - self.tuning.decay_per_day * (idle_days - self.tuning.decay_grace_days)
        return max(self.tuning.min_score, decayed)
