"""
Feed Engine.

Facade the app calls into. Wires the pool index, weight model, feed
assembler, local store and sync reconciler together and enforces the
ordering that keeps them consistent:

    answer/skip -> local store (state + outbox, one transaction)
                -> weight model publish -> feed tombstone -> refill

Mutations for one user are serialized by a per-user lock; different users
proceed in parallel. Errors from the weight, feed and storage paths come
back as a RecordResult instead of being raised.

Usage:
    engine = build_engine()
    batch = engine.need_more("user-1", FeedReason.CHECKPOINT)
    result = engine.record_answer("user-1", batch.question_ids[0], answer_index=2)
    engine.sync()
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from triviafeed.core.errors import InvalidWeightUpdate, TriviaFeedError
from triviafeed.core.feature_flags import FeatureFlags, get_flags
from triviafeed.core.models import (
    FeedBatch,
    FeedReason,
    Question,
    QuestionStatus,
    TopicKey,
    TopicWeight,
    WeightChangeEvent,
)
from triviafeed.db.local_store import LocalStore
from triviafeed.feed.assembler import FeedAssembler
from triviafeed.pool.index import IngestReport, QuestionPoolIndex
from triviafeed.pool.topics import RelatedTopicsLookup, TopicRelations
from triviafeed.sync.background import BackgroundSync, SyncStatus
from triviafeed.sync.reconciler import SyncReconciler, SyncResult
from triviafeed.sync.remote_client import RemoteStoreClient
from triviafeed.weights.model import WeightModel
from triviafeed.weights.tuning import WeightTuning


@dataclass
class RecordResult:
    """Result of recording an answer or a skip."""

    success: bool
    events: list[WeightChangeEvent] = field(default_factory=list)
    batch: FeedBatch | None = None
    error: str | None = None
    error_type: str | None = None


@dataclass
class ImportResult:
    """Result of a bulk question import."""

    report: IngestReport
    saved: int = 0
    batches: dict[str, FeedBatch] = field(default_factory=dict)


class UserLockRegistry:
    """One lock per user, created on demand."""

    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str):
        with self.get(user_id):
            yield


class FeedEngine:
    """Question selection and weight synchronization for one device."""

    def __init__(
        self,
        store: LocalStore,
        tuning: WeightTuning | None = None,
        remote: RemoteStoreClient | None = None,
        *,
        related_topics: RelatedTopicsLookup | None = None,
        reachability: Callable[[], bool] | None = None,
        device_id: str | None = None,
        feed_batch_size: int = 5,
        refill_count: int = 1,
        related_bonus: float = 0.05,
        active_topic: str | None = None,
        sync_batch_size: int = 200,
        sync_pull_page_size: int = 1000,
        sync_pull_overlap_seconds: float = 300.0,
        flags: FeatureFlags | None = None,
    ):
        self.store = store
        self.flags = flags or get_flags()
        self.device_id = device_id
        self.feed_batch_size = feed_batch_size
        self.refill_count = refill_count
        self.locks = UserLockRegistry()

        self.pool = QuestionPoolIndex()
        stored = store.load_questions()
        if stored:
            self.pool.ingest_many(stored)

        self.model = WeightModel(tuning, decay_enabled=self.flags.WEIGHT_DECAY)

        if related_topics is None and self.flags.RELATED_TOPICS:
            related_topics = TopicRelations()
        self.assembler = FeedAssembler(
            self.pool,
            store,
            weights=self.current_weights,
            related_topics=related_topics if self.flags.RELATED_TOPICS else None,
            neutral_score=self.model.tuning.neutral_score,
            related_bonus=related_bonus,
            active_topic=active_topic,
            log_changes=self.flags.FEED_CHANGE_LOG,
        )

        self.remote = remote
        self.reconciler: SyncReconciler | None = None
        if remote is not None:
            self.reconciler = SyncReconciler(
                store,
                remote,
                apply_remote=self._apply_remote,
                reachability=reachability,
                batch_size=sync_batch_size,
                pull_enabled=self.flags.REMOTE_PULL,
                pull_page_size=sync_pull_page_size,
                pull_overlap_seconds=sync_pull_overlap_seconds,
            )
        self.background: BackgroundSync | None = None

    # =========================================================================
    # Feed
    # =========================================================================

    def need_more(
        self,
        user_id: str,
        reason: FeedReason | str = FeedReason.CHECKPOINT,
        count: int | None = None,
    ) -> FeedBatch:
        """Extend the user's feed (all four triggers come through here)."""
        self._ensure_loaded(user_id)
        return self.assembler.need_more(user_id, reason, self.feed_batch_size if count is None else count)

    def feed_items(self, user_id: str) -> tuple[str, ...]:
        return self.assembler.feed_items(user_id)

    def import_questions(
        self, questions: Iterable[Question], user_ids: Sequence[str] = ()
    ) -> ImportResult:
        """
        Bulk-load questions into the pool and refill the given users' feeds.

        Duplicates are reported in the IngestReport and never raised.
        """
        questions = list(questions)
        report = self.pool.ingest_many(questions)
        accepted = set(report.accepted)
        saved = self.store.save_questions(q for q in questions if q.id in accepted)
        result = ImportResult(report=report, saved=saved)
        for user_id in user_ids:
            result.batches[user_id] = self.need_more(user_id, FeedReason.POOL_IMPORTED)
        return result

    # =========================================================================
    # Answers and Skips
    # =========================================================================

    def record_answer(
        self,
        user_id: str,
        question_id: str,
        answer_index: int | None = None,
        is_correct: bool | None = None,
        *,
        now: datetime | None = None,
        refill: bool = True,
    ) -> RecordResult:
        """
        Record an answer: persist, update weights, drop from feed, refill.

        Correctness comes from is_correct when given, else from comparing
        answer_index with the question's correct answer.
        """
        try:
            question = self._question(question_id)
            if is_correct is None:
                if answer_index is None or question.correct_index is None:
                    raise InvalidWeightUpdate(
                        f"Can not tell whether the answer to {question_id} is correct"
                    )
                is_correct = answer_index == question.correct_index

            with self.locks.hold(user_id):
                self._ensure_loaded(user_id)
                events = self.model.plan_answer(
                    user_id, question, is_correct, now=now, device_id=self.device_id
                )
                self._commit(user_id, question, QuestionStatus.ANSWERED, events, answer_index, now)
                self.assembler.resolve(user_id, question_id, FeedReason.ANSWERED)
        except TriviaFeedError as e:
            logger.warning("Answer not recorded for {} on {}: {}", user_id, question_id, e)
            return RecordResult(success=False, error=str(e), error_type=type(e).__name__)
        except SQLAlchemyError as e:
            logger.error("Answer not stored for {} on {}: {}", user_id, question_id, e)
            return RecordResult(success=False, error=str(e), error_type=type(e).__name__)

        logger.debug(
            "Answer recorded: user={}, question={}, correct={}", user_id, question_id, is_correct
        )
        batch = self.need_more(user_id, FeedReason.ANSWERED, self.refill_count) if refill else None
        return RecordResult(success=True, events=events, batch=batch)

    def record_skip(
        self,
        user_id: str,
        question_id: str,
        *,
        now: datetime | None = None,
        refill: bool = True,
    ) -> RecordResult:
        """Record a skip: compensated penalty, drop from feed, replace it."""
        try:
            question = self._question(question_id)
            with self.locks.hold(user_id):
                self._ensure_loaded(user_id)
                events = self.model.plan_skip(user_id, question, now=now, device_id=self.device_id)
                self._commit(user_id, question, QuestionStatus.SKIPPED, events, None, now)
                self.assembler.resolve(user_id, question_id, FeedReason.SKIPPED)
        except TriviaFeedError as e:
            logger.warning("Skip not recorded for {} on {}: {}", user_id, question_id, e)
            return RecordResult(success=False, error=str(e), error_type=type(e).__name__)
        except SQLAlchemyError as e:
            logger.error("Skip not stored for {} on {}: {}", user_id, question_id, e)
            return RecordResult(success=False, error=str(e), error_type=type(e).__name__)

        logger.debug("Skip recorded: user={}, question={}", user_id, question_id)
        batch = self.need_more(user_id, FeedReason.SKIPPED, self.refill_count) if refill else None
        return RecordResult(success=True, events=events, batch=batch)

    def _commit(
        self,
        user_id: str,
        question: Question,
        status: QuestionStatus,
        events: list[WeightChangeEvent],
        answer_index: int | None,
        now: datetime | None,
    ) -> None:
        # Persist first: a failed write must leave the model untouched
        self.store.record_interaction(
            user_id, question.id, status, events, answer_index=answer_index, resolved_at=now
        )
        self.model.apply_events(events)
        weights = self.model.topic_weights(user_id)
        try:
            self.store.save_topic_weights(user_id, [weights[e.key] for e in events if e.key in weights])
        except SQLAlchemyError as e:
            # The stored events are authoritative; the next load rebuilds the scores
            logger.warning("Weight snapshot not saved for {}: {}", user_id, e)

    # =========================================================================
    # Weights
    # =========================================================================

    def current_weights(self, user_id: str, *, now: datetime | None = None) -> dict[TopicKey, float]:
        """Read-only score snapshot used for ranking."""
        self._ensure_loaded(user_id)
        return self.model.current_weights(user_id, now=now)

    def topic_weights(self, user_id: str) -> dict[TopicKey, TopicWeight]:
        """Full weight records (score, sample count, last update)."""
        self._ensure_loaded(user_id)
        return self.model.topic_weights(user_id)

    def _ensure_loaded(self, user_id: str) -> None:
        if self.model.is_loaded(user_id):
            return
        with self.locks.hold(user_id):
            if not self.model.is_loaded(user_id):
                self.model.load(user_id, self.store.events_for_user(user_id))

    def _apply_remote(self, user_id: str, events: Sequence[WeightChangeEvent]) -> int:
        with self.locks.hold(user_id):
            if not self.model.is_loaded(user_id):
                # Pulled events are stored already; a fresh load replays them
                self.model.load(user_id, self.store.events_for_user(user_id))
                return sum(1 for e in events if self.model.has_applied(user_id, e.id))
            applied = self.model.apply_events(events)
            if applied:
                weights = self.model.topic_weights(user_id)
                self.store.save_topic_weights(user_id, list(weights.values()))
            return applied

    # =========================================================================
    # Sync
    # =========================================================================

    def sync(
        self,
        cancel: threading.Event | None = None,
        user_ids: Iterable[str] | None = None,
    ) -> SyncResult:
        """
        Upload the outbox and pull other devices' events.

        Args:
            cancel: Set to stop between events
            user_ids: Users to pull for on top of those known locally, e.g. a
                user signing in on a fresh device before their first answer
        """
        if self.reconciler is None:
            return SyncResult(success=False, offline=True, errors=["no remote store configured"])
        return self.reconciler.sync(cancel=cancel, user_ids=user_ids)

    def pull_remote(self, user_id: str, since: datetime | None = None) -> int:
        """Pull one user's remote deltas; returns events newly applied."""
        if self.reconciler is None:
            return 0
        return self.reconciler.fetch_remote_deltas(user_id, since=since)

    def start_background_sync(
        self,
        interval_seconds: float = 300,
        on_sync_complete: Callable[[SyncStatus], None] | None = None,
    ) -> bool:
        """
        Sync every interval_seconds in a daemon thread until close().

        Returns:
            True if the thread is running, False without a remote or interval
        """
        if self.reconciler is None:
            return False
        if self.background is None:
            self.background = BackgroundSync(
                self.reconciler,
                interval_seconds=interval_seconds,
                on_sync_complete=on_sync_complete,
            )
        return self.background.start()

    def close(self) -> None:
        if self.background is not None:
            self.background.stop()
        if self.remote is not None:
            self.remote.close()

    def _question(self, question_id: str) -> Question:
        question = self.pool.get(question_id)
        if question is None:
            raise InvalidWeightUpdate(f"Unknown question {question_id}")
        return question


def build_engine(settings: Any = None, with_remote: bool = True, **kwargs: Any) -> FeedEngine:
    """Create a FeedEngine from Settings (defaults to get_settings())."""
    if settings is None:
        from config import get_settings

        settings = get_settings()

    remote = None
    if with_remote and settings.remote_url:
        remote = RemoteStoreClient.from_settings(settings)

    engine = FeedEngine(
        LocalStore.from_url(settings.database_url),
        settings.weight_tuning(),
        remote,
        device_id=settings.device_id,
        feed_batch_size=settings.feed_batch_size,
        related_bonus=settings.feed_related_topic_bonus,
        active_topic=settings.active_topic,
        sync_batch_size=settings.sync_batch_size,
        sync_pull_page_size=settings.sync_pull_page_size,
        sync_pull_overlap_seconds=settings.sync_pull_overlap_seconds,
        **kwargs,
    )
    if engine.flags.BACKGROUND_SYNC:
        engine.start_background_sync(settings.sync_interval_seconds)
    return engine
