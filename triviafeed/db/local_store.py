"""
Local Store for the trivia feed engine.

On-device persistence through SQLAlchemy:
- Question pool (with ingestion order)
- Question state per user (the resolved set)
- Weight change events (the sync outbox) and the topic weight snapshot
- Pull cursors and the feed change log

The store works fully offline; nothing here touches the network.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import Engine, delete, func, select, update
from sqlalchemy.orm import Session

from triviafeed.core.errors import QuestionAlreadyResolved
from triviafeed.core.models import (
    InteractionType,
    Question,
    QuestionState,
    QuestionStatus,
    TopicKey,
    TopicWeight,
    WeightChangeEvent,
    as_utc,
    utcnow,
)
from triviafeed.db.database import create_local_engine, get_session_factory, init_db, session_scope
from triviafeed.db.models import (
    FeedChange,
    QuestionStateRow,
    SyncCursor,
    TopicWeightRow,
    TriviaQuestion,
    WeightChangeRow,
)
from triviafeed.db.models.weights import NO_LEVEL


def _naive(value: datetime | None) -> datetime | None:
    """SQLite stores naive datetimes; everything is normalized to UTC first."""
    value = as_utc(value)
    return value.replace(tzinfo=None) if value else None


# =============================================================================
# Row conversion
# =============================================================================


def question_from_row(row: TriviaQuestion) -> Question:
    return Question(
        id=row.id,
        text=row.text,
        topic=row.topic,
        tags=frozenset(row.tags or ()),
        subtopic=row.subtopic,
        branch=row.branch,
        difficulty=row.difficulty or "medium",
        answers=tuple(row.answers or ()),
        correct_index=row.correct_index,
        fingerprint=row.fingerprint,
    )


def event_to_row(event: WeightChangeEvent) -> WeightChangeRow:
    return WeightChangeRow(
        id=event.id,
        user_id=event.user_id,
        topic=event.topic,
        subtopic=event.subtopic,
        branch=event.branch,
        delta=event.delta,
        skip_compensation_applied=event.skip_compensation_applied,
        skip_compensation_topic=event.skip_compensation_topic,
        skip_compensation_subtopic=event.skip_compensation_subtopic,
        skip_compensation_branch=event.skip_compensation_branch,
        question_id=event.question_id,
        interaction_type=event.interaction_type.value if event.interaction_type else None,
        device_id=event.device_id,
        created_at=_naive(event.created_at),
        synced_at=_naive(event.synced_at),
    )


def event_from_row(row: WeightChangeRow) -> WeightChangeEvent:
    return WeightChangeEvent(
        id=row.id,
        user_id=row.user_id,
        topic=row.topic,
        subtopic=row.subtopic,
        branch=row.branch,
        delta=row.delta,
        skip_compensation_applied=bool(row.skip_compensation_applied),
        skip_compensation_topic=row.skip_compensation_topic or 0.0,
        skip_compensation_subtopic=row.skip_compensation_subtopic or 0.0,
        skip_compensation_branch=row.skip_compensation_branch or 0.0,
        question_id=row.question_id,
        interaction_type=InteractionType(row.interaction_type) if row.interaction_type else None,
        device_id=row.device_id,
        created_at=as_utc(row.created_at),
        synced_at=as_utc(row.synced_at),
    )


# =============================================================================
# Local Store
# =============================================================================


class LocalStore:
    """
    SQLAlchemy-backed state persistence for the feed engine.

    Every public method runs in its own transaction.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = get_session_factory(engine)
        init_db(engine)
        logger.debug("LocalStore initialized at {}", engine.url)

    @classmethod
    def from_url(cls, url: str) -> LocalStore:
        return cls(create_local_engine(url))

    @classmethod
    def in_memory(cls) -> LocalStore:
        return cls(create_local_engine("sqlite://"))

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        with session_scope(self._session_factory) as session:
            yield session

    # =========================================================================
    # Questions
    # =========================================================================

    def save_questions(self, questions: Iterable[Question]) -> int:
        """Persist questions not stored yet, preserving their order."""
        saved = 0
        with self.session() as session:
            position = session.scalar(select(func.max(TriviaQuestion.position)))
            position = -1 if position is None else position
            known_ids = set(session.scalars(select(TriviaQuestion.id)))
            known_fps = set(session.scalars(select(TriviaQuestion.fingerprint)))
            for question in questions:
                if question.id in known_ids or question.fingerprint in known_fps:
                    continue
                position += 1
                session.add(
                    TriviaQuestion(
                        id=question.id,
                        position=position,
                        text=question.text,
                        topic=question.topic,
                        subtopic=question.subtopic,
                        branch=question.branch,
                        tags=sorted(question.tags),
                        difficulty=question.difficulty,
                        answers=list(question.answers),
                        correct_index=question.correct_index,
                        fingerprint=question.fingerprint,
                        created_at=_naive(utcnow()),
                    )
                )
                known_ids.add(question.id)
                known_fps.add(question.fingerprint)
                saved += 1
        return saved

    def load_questions(self) -> list[Question]:
        """All stored questions in ingestion order."""
        with self.session() as session:
            rows = session.scalars(select(TriviaQuestion).order_by(TriviaQuestion.position))
            return [question_from_row(row) for row in rows]

    def question_count(self) -> int:
        with self.session() as session:
            return session.scalar(select(func.count()).select_from(TriviaQuestion)) or 0

    # =========================================================================
    # Question State
    # =========================================================================

    def mark_shown(
        self, user_id: str, question_ids: Sequence[str], shown_at: datetime | None = None
    ) -> None:
        """Create 'unanswered' states for questions shown for the first time."""
        if not question_ids:
            return
        shown_at = _naive(shown_at or utcnow())
        with self.session() as session:
            existing = set(
                session.scalars(
                    select(QuestionStateRow.question_id).where(
                        QuestionStateRow.user_id == user_id,
                        QuestionStateRow.question_id.in_(list(question_ids)),
                    )
                )
            )
            for question_id in question_ids:
                if question_id in existing:
                    continue
                session.add(
                    QuestionStateRow(
                        user_id=user_id,
                        question_id=question_id,
                        status=QuestionStatus.UNANSWERED.value,
                        shown_at=shown_at,
                    )
                )

    def get_state(self, user_id: str, question_id: str) -> QuestionState | None:
        with self.session() as session:
            row = session.get(QuestionStateRow, (user_id, question_id))
            if row is None:
                return None
            return QuestionState(
                user_id=row.user_id,
                question_id=row.question_id,
                status=QuestionStatus(row.status),
                answer_index=row.answer_index,
                shown_at=as_utc(row.shown_at),
                resolved_at=as_utc(row.resolved_at),
            )

    def resolved_ids(self, user_id: str) -> set[str]:
        """The user's resolved set: answered or skipped question ids."""
        with self.session() as session:
            return set(
                session.scalars(
                    select(QuestionStateRow.question_id).where(
                        QuestionStateRow.user_id == user_id,
                        QuestionStateRow.status.in_(
                            [QuestionStatus.ANSWERED.value, QuestionStatus.SKIPPED.value]
                        ),
                    )
                )
            )

    def last_answered_topic(self, user_id: str) -> str | None:
        with self.session() as session:
            return session.scalar(
                select(TriviaQuestion.topic)
                .join(QuestionStateRow, QuestionStateRow.question_id == TriviaQuestion.id)
                .where(
                    QuestionStateRow.user_id == user_id,
                    QuestionStateRow.status == QuestionStatus.ANSWERED.value,
                )
                .order_by(QuestionStateRow.resolved_at.desc())
                .limit(1)
            )

    def record_interaction(
        self,
        user_id: str,
        question_id: str,
        status: QuestionStatus,
        events: Sequence[WeightChangeEvent],
        answer_index: int | None = None,
        resolved_at: datetime | None = None,
    ) -> None:
        """
        Resolve a question and enqueue its weight events in one transaction.

        Raises:
            QuestionAlreadyResolved: If the question is already answered or skipped
        """
        resolved_at = _naive(resolved_at or utcnow())
        with self.session() as session:
            row = session.get(QuestionStateRow, (user_id, question_id))
            if row is not None and row.is_resolved:
                raise QuestionAlreadyResolved(user_id, question_id, row.status)
            if row is None:
                row = QuestionStateRow(user_id=user_id, question_id=question_id, shown_at=resolved_at)
                session.add(row)
            row.status = status.value
            row.answer_index = answer_index
            row.resolved_at = resolved_at
            for event in events:
                session.add(event_to_row(event))

    # =========================================================================
    # Weight Change Events (outbox)
    # =========================================================================

    def append_events(self, events: Iterable[WeightChangeEvent]) -> list[WeightChangeEvent]:
        """
        Store events whose id is not stored yet.

        Returns:
            The events actually inserted
        """
        events = list(events)
        if not events:
            return []
        inserted = []
        with self.session() as session:
            known = set(
                session.scalars(
                    select(WeightChangeRow.id).where(WeightChangeRow.id.in_([e.id for e in events]))
                )
            )
            for event in events:
                if event.id in known:
                    continue
                session.add(event_to_row(event))
                known.add(event.id)
                inserted.append(event)
        return inserted

    def events_for_user(self, user_id: str) -> list[WeightChangeEvent]:
        with self.session() as session:
            rows = session.scalars(
                select(WeightChangeRow)
                .where(WeightChangeRow.user_id == user_id)
                .order_by(WeightChangeRow.created_at, WeightChangeRow.id)
            )
            return [event_from_row(row) for row in rows]

    def pending_events(self, limit: int | None = None) -> list[WeightChangeEvent]:
        """Unsynced events, oldest first."""
        with self.session() as session:
            query = (
                select(WeightChangeRow)
                .where(WeightChangeRow.synced_at.is_(None))
                .order_by(WeightChangeRow.created_at, WeightChangeRow.id)
            )
            if limit is not None:
                query = query.limit(limit)
            return [event_from_row(row) for row in session.scalars(query)]

    def pending_count(self) -> int:
        with self.session() as session:
            return (
                session.scalar(
                    select(func.count())
                    .select_from(WeightChangeRow)
                    .where(WeightChangeRow.synced_at.is_(None))
                )
                or 0
            )

    def mark_synced(self, event_ids: Sequence[str], synced_at: datetime | None = None) -> int:
        """Stamp synced_at on still-unsynced events; returns rows stamped."""
        if not event_ids:
            return 0
        with self.session() as session:
            result = session.execute(
                update(WeightChangeRow)
                .where(
                    WeightChangeRow.id.in_(list(event_ids)),
                    WeightChangeRow.synced_at.is_(None),
                )
                .values(synced_at=_naive(synced_at or utcnow()))
            )
            return result.rowcount or 0

    def known_user_ids(self) -> list[str]:
        with self.session() as session:
            return sorted(
                set(session.scalars(select(WeightChangeRow.user_id).distinct()))
                | set(session.scalars(select(QuestionStateRow.user_id).distinct()))
            )

    # =========================================================================
    # Topic Weight Snapshot
    # =========================================================================

    def save_topic_weights(self, user_id: str, weights: Iterable[TopicWeight]) -> None:
        with self.session() as session:
            for weight in weights:
                pk = (
                    user_id,
                    weight.key.topic,
                    weight.key.subtopic or NO_LEVEL,
                    weight.key.branch or NO_LEVEL,
                )
                row = session.get(TopicWeightRow, pk)
                if row is None:
                    row = TopicWeightRow(
                        user_id=pk[0], topic=pk[1], subtopic=pk[2], branch=pk[3]
                    )
                    session.add(row)
                row.score = weight.score
                row.sample_count = weight.sample_count
                row.last_updated = _naive(weight.last_updated)

    def load_topic_weights(self, user_id: str) -> dict[TopicKey, TopicWeight]:
        with self.session() as session:
            rows = session.scalars(select(TopicWeightRow).where(TopicWeightRow.user_id == user_id))
            result = {}
            for row in rows:
                key = TopicKey(row.topic, row.subtopic or None, row.branch or None)
                result[key] = TopicWeight(
                    key=key,
                    score=row.score,
                    sample_count=row.sample_count,
                    last_updated=as_utc(row.last_updated),
                )
            return result

    # =========================================================================
    # Pull Cursor
    # =========================================================================

    def get_cursor(self, user_id: str) -> datetime | None:
        with self.session() as session:
            row = session.get(SyncCursor, user_id)
            return as_utc(row.last_pulled_at) if row else None

    def set_cursor(self, user_id: str, last_pulled_at: datetime) -> None:
        with self.session() as session:
            row = session.get(SyncCursor, user_id)
            if row is None:
                row = SyncCursor(user_id=user_id)
                session.add(row)
            row.last_pulled_at = _naive(last_pulled_at)
            row.updated_at = _naive(utcnow())

    # =========================================================================
    # Feed Change Log
    # =========================================================================

    def log_feed_changes(
        self, user_id: str, question_ids: Sequence[str], change_type: str, reason: str
    ) -> None:
        now = _naive(utcnow())
        with self.session() as session:
            for question_id in question_ids:
                session.add(
                    FeedChange(
                        user_id=user_id,
                        question_id=question_id,
                        change_type=change_type,
                        reason=reason,
                        created_at=now,
                    )
                )

    def feed_changes(self, user_id: str) -> list[tuple[str, str, str | None]]:
        """(question_id, change_type, reason) in the order they happened."""
        with self.session() as session:
            rows = session.execute(
                select(FeedChange.question_id, FeedChange.change_type, FeedChange.reason)
                .where(FeedChange.user_id == user_id)
                .order_by(FeedChange.id)
            )
            return [tuple(row) for row in rows]

    def prune_feed_changes(self, retention_days: int = 7, now: datetime | None = None) -> int:
        """Delete feed change records older than the retention period."""
        cutoff = _naive((now or utcnow()) - timedelta(days=retention_days))
        with self.session() as session:
            result = session.execute(delete(FeedChange).where(FeedChange.created_at < cutoff))
            deleted = result.rowcount or 0
        logger.info("Pruned {} feed changes older than {} days", deleted, retention_days)
        return deleted

    # =========================================================================
    # Status
    # =========================================================================

    def snapshot_counts(self) -> Mapping[str, int]:
        """Row counts per table, for status displays."""
        with self.session() as session:
            return {
                "questions": session.scalar(select(func.count()).select_from(TriviaQuestion)) or 0,
                "question_states": session.scalar(
                    select(func.count()).select_from(QuestionStateRow)
                )
                or 0,
                "weight_changes": session.scalar(
                    select(func.count()).select_from(WeightChangeRow)
                )
                or 0,
                "pending_events": session.scalar(
                    select(func.count())
                    .select_from(WeightChangeRow)
                    .where(WeightChangeRow.synced_at.is_(None))
                )
                or 0,
            }
