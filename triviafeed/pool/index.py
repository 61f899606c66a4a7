"""
Question Pool Index.

In-memory index of available questions, by topic and subtopic, in ingestion
order. Duplicate questions (same fingerprint, or same id) are rejected at
ingestion. The index holds no per-user state: callers pass the user's
resolved and in-flight ids as exclude_ids on every query.
"""

from __future__ import annotations

import threading
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from loguru import logger

from triviafeed.core.errors import DuplicateQuestion
from triviafeed.core.models import Question


@dataclass
class IngestReport:
    """Outcome of a bulk ingestion."""

    accepted: list[str] = field(default_factory=list)
    duplicates: list[DuplicateQuestion] = field(default_factory=list)

    @property
    def accepted_count(self) -> int:
        return len(self.accepted)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


class QuestionPoolIndex:
    """Questions available to the feed, indexed for exclusion-filtered queries."""

    def __init__(self):
        self._questions: dict[str, Question] = {}
        self._order: dict[str, int] = {}
        self._by_fingerprint: dict[str, str] = {}
        self._by_topic: dict[str, list[str]] = {}
        self._by_subtopic: dict[tuple[str, str], list[str]] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._questions)

    def __contains__(self, question_id: object) -> bool:
        with self._lock:
            return question_id in self._questions

    def get(self, question_id: str) -> Question | None:
        with self._lock:
            return self._questions.get(question_id)

    def position(self, question_id: str) -> int:
        """Ingestion order of a question (used as the final ranking tie-break)."""
        with self._lock:
            return self._order[question_id]

    def topics(self) -> list[str]:
        with self._lock:
            return list(self._by_topic)

    # =========================================================================
    # Ingestion
    # =========================================================================

    def ingest(self, question: Question) -> None:
        """
        Add a question to the pool.

        Raises:
            DuplicateQuestion: If the fingerprint or the id is already indexed
        """
        with self._lock:
            existing = self._by_fingerprint.get(question.fingerprint)
            if existing is None and question.id in self._questions:
                existing = question.id
            if existing is not None:
                raise DuplicateQuestion(question.id, existing, question.fingerprint)

            self._order[question.id] = len(self._order)
            self._questions[question.id] = question
            self._by_fingerprint[question.fingerprint] = question.id
            self._by_topic.setdefault(self._fold(question.topic), []).append(question.id)
            if question.subtopic:
                key = (self._fold(question.topic), self._fold(question.subtopic))
                self._by_subtopic.setdefault(key, []).append(question.id)

    def ingest_many(self, questions: Iterable[Question]) -> IngestReport:
        """Ingest a batch; duplicates are logged and reported, never raised."""
        report = IngestReport()
        for question in questions:
            try:
                self.ingest(question)
            except DuplicateQuestion as exc:
                logger.info("Duplicate question skipped: {}", exc)
                report.duplicates.append(exc)
            else:
                report.accepted.append(question.id)
        logger.info(
            "Pool ingest: accepted={}, duplicates={}, pool_size={}",
            report.accepted_count,
            report.duplicate_count,
            len(self),
        )
        return report

    # =========================================================================
    # Queries
    # =========================================================================

    def candidates(
        self,
        topic: str | None = None,
        subtopic: str | None = None,
        exclude_ids: Collection[str] = frozenset(),
        limit: int | None = None,
    ) -> list[Question]:
        """
        Questions matching the topic filter and not excluded, in ingestion order.

        Args:
            topic: Restrict to this topic (None for the whole pool)
            subtopic: Restrict to this subtopic (only with topic)
            exclude_ids: Ids that must not be returned
            limit: Maximum number of questions (None for no limit)
        """
        if limit is not None and limit <= 0:
            return []
        result = []
        with self._lock:
            for question_id in self._matching_ids(topic, subtopic):
                if question_id in exclude_ids:
                    continue
                result.append(self._questions[question_id])
                if limit is not None and len(result) >= limit:
                    break
        return result

    def count(self, topic: str | None = None, subtopic: str | None = None) -> int:
        with self._lock:
            return len(self._matching_ids(topic, subtopic))

    def count_excluded(
        self,
        exclude_ids: Collection[str],
        topic: str | None = None,
        subtopic: str | None = None,
    ) -> int:
        """How many questions matching the filter are in exclude_ids."""
        with self._lock:
            return sum(1 for qid in self._matching_ids(topic, subtopic) if qid in exclude_ids)

    def _matching_ids(self, topic: str | None, subtopic: str | None) -> list[str]:
        if topic is None:
            return list(self._questions)
        if subtopic is None:
            return list(self._by_topic.get(self._fold(topic), ()))
        return list(self._by_subtopic.get((self._fold(topic), self._fold(subtopic)), ()))

    @staticmethod
    def _fold(name: str) -> str:
        return name.strip().casefold()
