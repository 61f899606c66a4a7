"""
Feed Models.

SQLAlchemy models for the question side of the local store:
- Trivia questions in ingestion order
- Per-user question state (unanswered, answered, skipped)
- Feed change log (items added to or removed from a feed)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TriviaQuestion(Base):
    """
    A question of the pool.

    position records ingestion order and is the final ranking tie-break,
    so it must survive restarts.
    """

    __tablename__ = "trivia_questions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    topic: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    subtopic: Mapped[str | None] = mapped_column(Text)
    branch: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    difficulty: Mapped[str] = mapped_column(Text, default="medium")
    answers: Mapped[list] = mapped_column(JSON, default=list)
    correct_index: Mapped[int | None] = mapped_column(Integer)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    def __repr__(self) -> str:
        return f"<TriviaQuestion id={self.id} topic={self.topic}>"


class QuestionStateRow(Base):
    """
    State of one question for one user.

    Created as 'unanswered' when first shown. 'answered' and 'skipped' are
    terminal.
    """

    __tablename__ = "question_states"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    question_id: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="unanswered")
    answer_index: Mapped[int | None] = mapped_column(Integer)
    shown_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)

    __table_args__ = (Index("idx_question_states_status", "user_id", "status"),)

    def __repr__(self) -> str:
        return f"<QuestionStateRow user={self.user_id} question={self.question_id} status={self.status}>"

    @property
    def is_resolved(self) -> bool:
        return self.status in ("answered", "skipped")


class FeedChange(Base):
    """Feed item added or removed, kept for a limited retention period."""

    __tablename__ = "user_feed_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    question_id: Mapped[str] = mapped_column(Text, nullable=False)
    change_type: Mapped[str] = mapped_column(Text, nullable=False)  # added, removed
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_feed_changes_user_created", "user_id", "created_at"),)
