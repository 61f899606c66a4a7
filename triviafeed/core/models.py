"""
Domain records shared by the weight model, feed assembler and sync layer.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import InvalidQuestion, PoolExhausted
from .fingerprint import fingerprint as build_fingerprint


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class QuestionStatus(str, Enum):
    """Per-user lifecycle of a question."""

    UNANSWERED = "unanswered"
    ANSWERED = "answered"
    SKIPPED = "skipped"

    @property
    def is_resolved(self) -> bool:
        return self is not QuestionStatus.UNANSWERED


class InteractionType(str, Enum):
    """What the user did with a question."""

    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


class FeedReason(str, Enum):
    """Triggers that ask the feed assembler for more questions."""

    CHECKPOINT = "checkpoint"
    SKIPPED = "skipped"
    ANSWERED = "answered"
    POOL_IMPORTED = "pool_imported"


@dataclass(frozen=True)
class TopicKey:
    """One level of the topic hierarchy: topic, topic/subtopic or topic/subtopic/branch."""

    topic: str
    subtopic: str | None = None
    branch: str | None = None

    @property
    def level(self) -> str:
        if self.branch is not None:
            return "branch"
        if self.subtopic is not None:
            return "subtopic"
        return "topic"

    @property
    def label(self) -> str:
        return " / ".join(part for part in (self.topic, self.subtopic, self.branch) if part)

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class Question:
    """Immutable trivia question as held by the pool index."""

    id: str
    text: str
    topic: str
    tags: frozenset[str] = frozenset()
    subtopic: str | None = None
    branch: str | None = None
    difficulty: str = "medium"
    answers: tuple[str, ...] = ()
    correct_index: int | None = None
    fingerprint: str = ""

    @classmethod
    def create(
        cls,
        id: str,
        text: str,
        topic: str,
        tags: list[str] | tuple[str, ...] | frozenset[str] | None = None,
        subtopic: str | None = None,
        branch: str | None = None,
        difficulty: str = "medium",
        answers: list[str] | tuple[str, ...] | None = None,
        correct_index: int | None = None,
    ) -> Question:
        """Build a question and derive its fingerprint."""
        if not id:
            raise InvalidQuestion("Question id is required")
        if not topic or not topic.strip():
            raise InvalidQuestion(f"Question {id} has no topic")
        tag_set = frozenset(tags or ())
        return cls(
            id=id,
            text=text,
            topic=topic.strip(),
            tags=tag_set,
            subtopic=(subtopic or "").strip() or None,
            branch=(branch or "").strip() or None,
            difficulty=difficulty,
            answers=tuple(answers or ()),
            correct_index=correct_index,
            fingerprint=build_fingerprint(text, tag_set),
        )

    def topic_keys(self) -> list[TopicKey]:
        """Hierarchy levels this question belongs to, broadest first."""
        keys = [TopicKey(self.topic)]
        if self.subtopic:
            keys.append(TopicKey(self.topic, self.subtopic))
            if self.branch:
                keys.append(TopicKey(self.topic, self.subtopic, self.branch))
        return keys


@dataclass(frozen=True)
class QuestionState:
    """State of one question for one user."""

    user_id: str
    question_id: str
    status: QuestionStatus = QuestionStatus.UNANSWERED
    answer_index: int | None = None
    shown_at: datetime | None = None
    resolved_at: datetime | None = None


@dataclass
class TopicWeight:
    """Interest score of one user at one topic level."""

    key: TopicKey
    score: float
    sample_count: int = 0
    last_updated: datetime | None = None


@dataclass(frozen=True)
class WeightChangeEvent:
    """
    Immutable record of one weight delta.

    The id is the idempotency key for both local replay and remote upload.
    delta is the intended, unclamped change.
    """

    user_id: str
    topic: str
    delta: float
    subtopic: str | None = None
    branch: str | None = None
    skip_compensation_applied: bool = False
    skip_compensation_topic: float = 0.0
    skip_compensation_subtopic: float = 0.0
    skip_compensation_branch: float = 0.0
    question_id: str | None = None
    interaction_type: InteractionType | None = None
    device_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    synced_at: datetime | None = None

    @property
    def key(self) -> TopicKey:
        return TopicKey(self.topic, self.subtopic, self.branch)

    @property
    def is_synced(self) -> bool:
        return self.synced_at is not None

    @property
    def is_well_formed(self) -> bool:
        return bool(self.user_id) and bool(self.topic and self.topic.strip()) and math.isfinite(
            self.delta
        )

    def mark_synced(self, at: datetime | None = None) -> WeightChangeEvent:
        return replace(self, synced_at=at or utcnow())

    def to_dict(self) -> dict[str, Any]:
        """Full column set, as persisted remotely."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "topic": self.topic,
            "subtopic": self.subtopic,
            "branch": self.branch,
            "delta": self.delta,
            "skip_compensation_applied": self.skip_compensation_applied,
            "skip_compensation_topic": self.skip_compensation_topic,
            "skip_compensation_subtopic": self.skip_compensation_subtopic,
            "skip_compensation_branch": self.skip_compensation_branch,
            "question_id": self.question_id,
            "interaction_type": self.interaction_type.value if self.interaction_type else None,
            "device_id": self.device_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class FeedStats:
    """Counts logged by every feed assembler call."""

    total: int
    considered: int
    excluded: int
    returned: int


@dataclass(frozen=True)
class FeedBatch:
    """Ordered question ids produced for one need-more request."""

    user_id: str
    reason: FeedReason
    question_ids: tuple[str, ...]
    stats: FeedStats
    exhausted: PoolExhausted | None = None

    @property
    def pool_exhausted(self) -> bool:
        return self.exhausted is not None

    def __len__(self) -> int:
        return len(self.question_ids)

    def __iter__(self):
        return iter(self.question_ids)
