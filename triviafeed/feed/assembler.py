"""
Feed Assembler.

Single entry point for extending a user's feed. All four triggers
(checkpoint, skipped, answered, pool_imported) run the same algorithm:

1. Read the resolved set fresh from the state store
2. Read the in-flight ids from the user's FeedState
3. Query the pool excluding both
4. Rank by interest weight, then related-topic bonus, then ingestion order
5. Append the top N through FeedState, which re-checks membership

A pool with too few unseen questions yields a smaller batch carrying a
PoolExhausted signal. Resolved questions are never returned.
"""

from __future__ import annotations

import heapq
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from datetime import datetime
from typing import Protocol

from loguru import logger

from triviafeed.core.errors import PoolExhausted
from triviafeed.core.models import FeedBatch, FeedReason, FeedStats, Question, TopicKey
from triviafeed.pool.index import QuestionPoolIndex
from triviafeed.pool.topics import RelatedTopicsLookup

from .state import FeedState

WeightSnapshot = Callable[[str], Mapping[TopicKey, float]]


class FeedStore(Protocol):
    """Per-user question state the assembler reads and writes."""

    def resolved_ids(self, user_id: str) -> set[str]: ...

    def last_answered_topic(self, user_id: str) -> str | None: ...

    def mark_shown(
        self, user_id: str, question_ids: Sequence[str], shown_at: datetime | None = None
    ) -> None: ...

    def log_feed_changes(
        self, user_id: str, question_ids: Sequence[str], change_type: str, reason: str
    ) -> None: ...


class FeedAssembler:
    """Builds ranked, never-resurfacing feed batches for any number of users."""

    def __init__(
        self,
        pool: QuestionPoolIndex,
        store: FeedStore,
        weights: WeightSnapshot,
        related_topics: RelatedTopicsLookup | None = None,
        *,
        neutral_score: float = 0.5,
        related_bonus: float = 0.05,
        active_topic: str | None = None,
        log_changes: bool = True,
    ):
        self.pool = pool
        self.store = store
        self.weights = weights
        self.related_topics = related_topics
        self.neutral_score = neutral_score
        self.related_bonus = related_bonus
        self.active_topic = active_topic
        self.log_changes = log_changes
        self._states: dict[str, FeedState] = {}
        self._states_lock = threading.Lock()

    # =========================================================================
    # Feed State
    # =========================================================================

    def state_for(self, user_id: str) -> FeedState:
        """The user's FeedState, seeded with resolved ids from the store."""
        with self._states_lock:
            state = self._states.get(user_id)
            if state is None:
                state = FeedState(user_id, resolved=self.store.resolved_ids(user_id))
                self._states[user_id] = state
            return state

    def feed_items(self, user_id: str) -> tuple[str, ...]:
        return self.state_for(user_id).items()

    def resolve(self, user_id: str, question_id: str, reason: FeedReason) -> bool:
        """Drop a resolved question from the feed and tombstone it."""
        removed = self.state_for(user_id).resolve(question_id)
        if removed and self.log_changes:
            self.store.log_feed_changes(user_id, [question_id], "removed", reason.value)
        return removed

    # =========================================================================
    # Need More
    # =========================================================================

    def need_more(self, user_id: str, reason: FeedReason | str, count: int) -> FeedBatch:
        """
        Extend the user's feed by up to count questions.

        Args:
            user_id: Feed owner
            reason: Trigger asking for more questions
            count: Number of questions wanted

        Returns:
            FeedBatch with the appended ids, best first
        """
        reason = FeedReason(reason)
        state = self.state_for(user_id)

        resolved = self.store.resolved_ids(user_id)
        state.absorb_resolved(resolved)
        existing = state.existing_ids()
        exclude = resolved | existing | state.resolved_ids()

        topic = self.active_topic
        total = self.pool.count(topic)
        excluded = self.pool.count_excluded(exclude, topic)
        candidates = self.pool.candidates(topic=topic, exclude_ids=exclude) if count > 0 else []

        ranked = self._rank(user_id, candidates, count)
        appended = state.append_new((q.id for q in ranked), limit=max(count, 0))

        if appended:
            self.store.mark_shown(user_id, appended)
            if self.log_changes:
                self.store.log_feed_changes(user_id, appended, "added", reason.value)

        stats = FeedStats(
            total=total,
            considered=len(candidates),
            excluded=excluded,
            returned=len(appended),
        )
        logger.info(
            "Feed need_more user={} reason={}: total={}, considered={}, excluded={}, returned={}",
            user_id,
            reason.value,
            stats.total,
            stats.considered,
            stats.excluded,
            stats.returned,
        )

        exhausted = None
        if len(appended) < count:
            exhausted = PoolExhausted(user_id=user_id, requested=count, returned=len(appended))
            logger.warning(
                "Pool exhausted for {}: requested={}, returned={}", user_id, count, len(appended)
            )

        return FeedBatch(
            user_id=user_id,
            reason=reason,
            question_ids=tuple(appended),
            stats=stats,
            exhausted=exhausted,
        )

    # =========================================================================
    # Ranking
    # =========================================================================

    def _rank(self, user_id: str, candidates: list[Question], count: int) -> Iterator[Question]:
        """
        Candidates best first, over the whole unseen pool.

        The top count come from a heap selection. The rest are sorted only if
        FeedState rejects one of the top ids and asks for more.
        """
        if not candidates:
            return iter(())
        try:
            weights = self.weights(user_id)
        except Exception as e:
            logger.warning("Weights unavailable for {}, using neutral order: {}", user_id, e)
            return iter(candidates)

        related = self._related_set(user_id)

        def sort_key(question: Question) -> tuple[float, float, int]:
            return (
                -self.relevance(question, weights),
                -(self.related_bonus if question.topic.casefold() in related else 0.0),
                self.pool.position(question.id),
            )

        def ordered() -> Iterator[Question]:
            head = heapq.nsmallest(count, candidates, key=sort_key)
            yield from head
            taken = {question.id for question in head}
            rest = [question for question in candidates if question.id not in taken]
            yield from sorted(rest, key=sort_key)

        return ordered()

    def relevance(self, question: Question, weights: Mapping[TopicKey, float]) -> float:
        """Mean weight of the question's topic levels; unknown levels count as neutral."""
        keys = question.topic_keys()
        return sum(weights.get(key, self.neutral_score) for key in keys) / len(keys)

    def _related_set(self, user_id: str) -> set[str]:
        if self.related_topics is None:
            return set()
        last_topic = self.store.last_answered_topic(user_id)
        if not last_topic:
            return set()
        return {topic.casefold() for topic in self.related_topics(last_topic)}
