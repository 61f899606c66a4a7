"""
Error taxonomy for the trivia feed engine.

Hard errors are exceptions. PoolExhausted is a soft signal attached to a
FeedBatch and is never raised.
"""

from __future__ import annotations

from dataclasses import dataclass


class TriviaFeedError(Exception):
    """Base class for all engine errors."""


class InvalidQuestion(TriviaFeedError):
    """Question content can not be fingerprinted or indexed."""


class DuplicateQuestion(TriviaFeedError):
    """Question collides with one already in the pool."""

    def __init__(self, question_id: str, existing_id: str, fingerprint: str):
        self.question_id = question_id
        self.existing_id = existing_id
        self.fingerprint = fingerprint
        super().__init__(
            f"Question {question_id} duplicates {existing_id} (fingerprint {fingerprint!r})"
        )


class InvalidWeightUpdate(TriviaFeedError):
    """A weight mutation was rejected; nothing was applied."""


class QuestionAlreadyResolved(InvalidWeightUpdate):
    """Answer or skip recorded for a question that is already answered or skipped."""

    def __init__(self, user_id: str, question_id: str, status: str):
        self.user_id = user_id
        self.question_id = question_id
        self.status = status
        super().__init__(f"Question {question_id} already {status} for user {user_id}")


class SyncTransportError(TriviaFeedError):
    """Remote store unreachable or refused the request."""

    def __init__(self, message: str, retryable: bool = True, status_code: int | None = None):
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class SchemaMismatch(TriviaFeedError):
    """Remote table lacks a column the client sent."""

    def __init__(self, message: str, column: str | None = None):
        self.column = column
        super().__init__(message)


@dataclass(frozen=True)
class PoolExhausted:
    """Soft signal: the pool had fewer unseen questions than requested."""

    user_id: str
    requested: int
    returned: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.returned
