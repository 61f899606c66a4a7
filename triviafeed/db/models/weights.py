"""
Weight Models.

SQLAlchemy models for the weight side of the local store:
- Topic weight snapshot per user and topic level
- Weight change events (append-only outbox, keyed by event id)
- Pull cursor per user
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

# Stored in place of a missing subtopic/branch so the composite key stays unique
NO_LEVEL = ""


class TopicWeightRow(Base):
    """Last published score of one topic level for one user."""

    __tablename__ = "topic_weights"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    topic: Mapped[str] = mapped_column(Text, primary_key=True)
    subtopic: Mapped[str] = mapped_column(Text, primary_key=True, default=NO_LEVEL)
    branch: Mapped[str] = mapped_column(Text, primary_key=True, default=NO_LEVEL)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime)

    def __repr__(self) -> str:
        return f"<TopicWeightRow user={self.user_id} topic={self.topic} score={self.score:.3f}>"


class WeightChangeRow(Base):
    """
    One weight change event.

    Rows are never updated except for synced_at. The skip compensation,
    question, interaction and device columns arrived after the first table
    shape and are nullable or defaulted.
    """

    __tablename__ = "user_weight_changes"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    subtopic: Mapped[str | None] = mapped_column(Text)
    branch: Mapped[str | None] = mapped_column(Text)
    delta: Mapped[float] = mapped_column(Float, nullable=False)
    skip_compensation_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_compensation_topic: Mapped[float] = mapped_column(Float, default=0.0)
    skip_compensation_subtopic: Mapped[float] = mapped_column(Float, default=0.0)
    skip_compensation_branch: Mapped[float] = mapped_column(Float, default=0.0)
    question_id: Mapped[str | None] = mapped_column(Text)
    interaction_type: Mapped[str | None] = mapped_column(Text)
    device_id: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_weight_changes_unsynced", "synced_at"),
        Index("idx_weight_changes_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WeightChangeRow id={self.id} user={self.user_id} delta={self.delta:+.3f}>"


class SyncCursor(Base):
    """Newest remote event time already pulled for a user."""

    __tablename__ = "sync_cursors"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_pulled_at: Mapped[datetime | None] = mapped_column(DateTime)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime)
