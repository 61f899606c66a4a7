"""
Pool: questions available to the feed.

- index: QuestionPoolIndex with fingerprint dedup and exclusion-filtered queries
- topics: related-topic lookup used as a ranking input
- loader: JSON question bank reader
"""

from triviafeed.pool.index import IngestReport, QuestionPoolIndex
from triviafeed.pool.loader import load_questions_file, question_from_dict
from triviafeed.pool.topics import RelatedTopicsLookup, TopicRelations

__all__ = [
    "IngestReport",
    "QuestionPoolIndex",
    "RelatedTopicsLookup",
    "TopicRelations",
    "load_questions_file",
    "question_from_dict",
]
