"""
Related topic lookup.

Maps a topic to topics a user who enjoys it is likely to enjoy as well.
The feed assembler uses it only as a small ranking bonus.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence

RelatedTopicsLookup = Callable[[str], Sequence[str]]

TOPIC_RELATIONS: dict[str, list[str]] = {
    # Science
    "Science": ["Physics", "Biology", "Chemistry", "Astronomy", "Technology"],
    "Physics": ["Science", "Astronomy", "Mathematics"],
    "Biology": ["Science", "Medicine", "Nature"],
    "Chemistry": ["Science", "Medicine", "Physics"],
    "Astronomy": ["Science", "Physics", "Space"],
    "Technology": ["Science", "Computers", "Engineering"],
    # History
    "History": ["Ancient History", "Modern History", "Politics", "Geography"],
    "Ancient History": ["History", "Archaeology", "Mythology"],
    "Modern History": ["History", "Politics", "Geography"],
    # Geography
    "Geography": ["History", "Nature", "Countries"],
    "Countries": ["Geography", "Culture", "Politics"],
    # Arts and entertainment
    "Arts": ["Literature", "Music", "Visual Arts", "Movies"],
    "Literature": ["Arts", "History", "Language"],
    "Music": ["Arts", "Entertainment", "Culture"],
    "Movies": ["Arts", "Entertainment", "Pop Culture"],
    # Sports and games
    "Sports": ["Olympics", "Team Sports", "Athletics"],
    "Games": ["Video Games", "Board Games", "Puzzles"],
    # Food
    "Food": ["Cooking", "Cuisine", "Nutrition"],
    "Cuisine": ["Food", "Culture", "Geography"],
    # General knowledge
    "General Knowledge": ["Trivia", "Facts", "Science", "History"],
    "Trivia": ["General Knowledge", "Entertainment", "Pop Culture"],
}

DEFAULT_RELATED_TOPICS = ["General Knowledge", "Trivia", "Science", "History"]


class TopicRelations:
    """Case-insensitive related-topic table, usable as a RelatedTopicsLookup."""

    def __init__(
        self,
        relations: Mapping[str, Sequence[str]] | None = None,
        default: Sequence[str] | None = None,
    ):
        source = TOPIC_RELATIONS if relations is None else relations
        self._relations = {topic.casefold(): list(related) for topic, related in source.items()}
        self._default = list(DEFAULT_RELATED_TOPICS if default is None else default)

    def __call__(self, topic: str) -> list[str]:
        return self.related(topic)

    def related(self, topic: str) -> list[str]:
        """Related topics, the default list when the topic is unknown."""
        if not topic:
            return []
        related = self._relations.get(topic.strip().casefold())
        if related is None:
            related = self._default
        return [t for t in related if t.casefold() != topic.strip().casefold()]
