"""
Core Module - Shared domain records and interfaces.

Components:
- fingerprint: Canonical dedup keys for questions
- models: Question, QuestionState, TopicWeight, WeightChangeEvent, FeedBatch
- errors: Error taxonomy (hard errors plus the PoolExhausted soft signal)
- feature_flags: Environment-overridable switches
"""

from triviafeed.core.errors import (
    DuplicateQuestion,
    InvalidQuestion,
    InvalidWeightUpdate,
    PoolExhausted,
    QuestionAlreadyResolved,
    SchemaMismatch,
    SyncTransportError,
    TriviaFeedError,
)
from triviafeed.core.fingerprint import fingerprint, fingerprint_digest
from triviafeed.core.models import (
    FeedBatch,
    FeedReason,
    FeedStats,
    InteractionType,
    Question,
    QuestionState,
    QuestionStatus,
    TopicKey,
    TopicWeight,
    WeightChangeEvent,
)

__all__ = [
    # Errors
    "TriviaFeedError",
    "InvalidQuestion",
    "DuplicateQuestion",
    "InvalidWeightUpdate",
    "QuestionAlreadyResolved",
    "SyncTransportError",
    "SchemaMismatch",
    "PoolExhausted",
    # Fingerprints
    "fingerprint",
    "fingerprint_digest",
    # Records
    "FeedBatch",
    "FeedReason",
    "FeedStats",
    "InteractionType",
    "Question",
    "QuestionState",
    "QuestionStatus",
    "TopicKey",
    "TopicWeight",
    "WeightChangeEvent",
]
