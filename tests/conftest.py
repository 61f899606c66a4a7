"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from triviafeed.core.feature_flags import FeatureFlags
from triviafeed.core.models import Question
from triviafeed.db.local_store import LocalStore
from triviafeed.weights.tuning import WeightTuning


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory store, mocked remote)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def tuning():
    """Default weight tuning."""
    return WeightTuning()


@pytest.fixture
def flags(monkeypatch):
    """Feature flags with defaults, isolated from the environment."""
    for name in FeatureFlags.__dataclass_fields__:
        monkeypatch.delenv(f"TRIVIAFEED_{name}", raising=False)
    return FeatureFlags()


@pytest.fixture
def store():
    """Fresh in-memory local store."""
    return LocalStore.in_memory()


@pytest.fixture
def make_question():
    """Factory for questions with unique text per id."""

    def _make(
        question_id: str,
        topic: str = "Science",
        subtopic: str | None = None,
        branch: str | None = None,
        text: str | None = None,
        tags: list[str] | None = None,
        correct_index: int | None = 0,
    ) -> Question:
        return Question.create(
            id=question_id,
            text=text or f"Question {question_id} about {topic}?",
            topic=topic,
            tags=tags or [topic.lower()],
            subtopic=subtopic,
            branch=branch,
            answers=["A", "B", "C", "D"],
            correct_index=correct_index,
        )

    return _make


@pytest.fixture
def sample_questions(make_question):
    """A small mixed pool, in ingestion order."""
    return [
        make_question("sci-1", "Science", "Physics", "Mechanics"),
        make_question("his-1", "History", "Modern History"),
        make_question("art-1", "Arts"),
        make_question("sci-2", "Science", "Chemistry"),
        make_question("phy-1", "Physics"),
        make_question("his-2", "History"),
        make_question("spo-1", "Sports"),
        make_question("sci-3", "Science"),
    ]
