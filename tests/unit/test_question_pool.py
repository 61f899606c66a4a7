"""
Unit tests for the question pool: index, related topics and file loader.
"""

import json

import pytest

from triviafeed.core.errors import DuplicateQuestion, InvalidQuestion
from triviafeed.core.models import Question
from triviafeed.pool.index import QuestionPoolIndex
from triviafeed.pool.loader import load_questions_file, question_from_dict
from triviafeed.pool.topics import DEFAULT_RELATED_TOPICS, TopicRelations


@pytest.fixture
def pool(sample_questions):
    index = QuestionPoolIndex()
    index.ingest_many(sample_questions)
    return index


class TestIngest:
    """Tests for duplicate detection at ingestion."""

    def test_fingerprint_collision_raises(self, make_question):
        index = QuestionPoolIndex()
        index.ingest(make_question("a", text="What is the speed of light?", tags=["Physics", "Science"]))

        with pytest.raises(DuplicateQuestion) as exc_info:
            index.ingest(make_question("b", text="what is the SPEED of light", tags=["science", "physics"]))

        assert exc_info.value.existing_id == "a"
        assert exc_info.value.question_id == "b"
        assert "b" not in index
        assert len(index) == 1

    def test_id_collision_raises(self, make_question):
        index = QuestionPoolIndex()
        index.ingest(make_question("a", text="First text"))
        with pytest.raises(DuplicateQuestion):
            index.ingest(make_question("a", text="Second text"))

    def test_ingest_many_reports_duplicates(self, make_question):
        index = QuestionPoolIndex()
        questions = [
            make_question("a", text="Who painted the Mona Lisa?"),
            make_question("b", text="Who painted the Mona Lisa"),
            make_question("c", text="Who sculpted David?"),
        ]

        report = index.ingest_many(questions)

        assert report.accepted == ["a", "c"]
        assert report.duplicate_count == 1
        assert report.duplicates[0].existing_id == "a"

    def test_ingestion_order_is_kept(self, pool, sample_questions):
        assert [pool.position(q.id) for q in sample_questions] == list(range(len(sample_questions)))


class TestCandidates:
    """Tests for exclusion-filtered queries."""

    def test_whole_pool_in_insertion_order(self, pool, sample_questions):
        assert [q.id for q in pool.candidates()] == [q.id for q in sample_questions]

    def test_excluded_ids_never_returned(self, pool):
        result = pool.candidates(exclude_ids={"sci-1", "art-1"})
        ids = [q.id for q in result]
        assert "sci-1" not in ids
        assert "art-1" not in ids
        assert len(ids) == len(pool) - 2

    def test_limit(self, pool):
        assert [q.id for q in pool.candidates(limit=2)] == ["sci-1", "his-1"]
        assert pool.candidates(limit=0) == []

    def test_limit_applies_after_exclusion(self, pool):
        assert [q.id for q in pool.candidates(exclude_ids={"sci-1"}, limit=2)] == ["his-1", "art-1"]

    def test_topic_filter_is_case_insensitive(self, pool):
        assert [q.id for q in pool.candidates(topic="science")] == ["sci-1", "sci-2", "sci-3"]

    def test_subtopic_filter(self, pool):
        assert [q.id for q in pool.candidates(topic="Science", subtopic="Chemistry")] == ["sci-2"]

    def test_unknown_topic_is_empty(self, pool):
        assert pool.candidates(topic="Cooking") == []

    def test_counts(self, pool):
        assert pool.count() == 8
        assert pool.count("History") == 2
        assert pool.count_excluded({"his-1", "art-1"}, topic="History") == 1


class TestTopicRelations:
    """Tests for the related-topic lookup."""

    def test_known_topic(self):
        related = TopicRelations()("Science")
        assert related == ["Physics", "Biology", "Chemistry", "Astronomy", "Technology"]

    def test_lookup_is_case_insensitive(self):
        assert TopicRelations().related("  sCiEnCe ") == TopicRelations().related("Science")

    def test_unknown_topic_gets_defaults(self):
        assert TopicRelations().related("Knitting") == DEFAULT_RELATED_TOPICS

    def test_topic_never_related_to_itself(self):
        assert "Science" not in TopicRelations().related("Science")
        assert "History" not in TopicRelations(relations={}).related("History")

    def test_empty_topic(self):
        assert TopicRelations().related("") == []

    def test_custom_table(self):
        relations = TopicRelations(relations={"Cats": ["Dogs"]}, default=[])
        assert relations("cats") == ["Dogs"]
        assert relations("Fish") == []


class TestLoader:
    """Tests for JSON question banks."""

    def test_app_export_record(self):
        question = question_from_dict(
            {
                "id": "q-1",
                "question": "What is the chemical symbol for gold?",
                "topic": "Science",
                "subtopic": "Chemistry",
                "tags": "chemistry, elements",
                "answers": [
                    {"text": "Ag", "isCorrect": False},
                    {"text": "Au", "isCorrect": True},
                ],
            }
        )

        assert isinstance(question, Question)
        assert question.answers == ("Ag", "Au")
        assert question.correct_index == 1
        assert question.tags == frozenset({"chemistry", "elements"})
        assert question.fingerprint.startswith("what is the chemical symbol for gold|")

    def test_aliases(self):
        question = question_from_dict(
            {"id": "q-2", "text": "Name the largest planet", "category": "Astronomy", "correct_index": 2}
        )
        assert question.topic == "Astronomy"
        assert question.correct_index == 2

    def test_missing_topic_is_invalid(self):
        with pytest.raises(InvalidQuestion):
            question_from_dict({"id": "q-3", "question": "No topic here"})

    def test_load_file_collects_errors(self, tmp_path):
        path = tmp_path / "bank.json"
        path.write_text(
            json.dumps(
                {
                    "questions": [
                        {"id": "q-1", "question": "Who wrote Hamlet?", "topic": "Literature"},
                        {"id": "q-2", "topic": "Literature"},
                    ]
                }
            ),
            encoding="utf-8",
        )

        questions, errors = load_questions_file(path)

        assert [q.id for q in questions] == ["q-1"]
        assert len(errors) == 1
        assert errors[0].startswith("record 1")
