# SQLAlchemy models
from .base import Base
from .feed import FeedChange, QuestionStateRow, TriviaQuestion
from .weights import SyncCursor, TopicWeightRow, WeightChangeRow

__all__ = [
    "Base",
    "FeedChange",
    "QuestionStateRow",
    "SyncCursor",
    "TopicWeightRow",
    "TriviaQuestion",
    "WeightChangeRow",
]
