"""
Question file loader.

Reads question banks exported as JSON: either a list of questions or an
object with a "questions" list. Field names follow the app's export
format, with a few aliases:

    {
        "id": "q-123",
        "question": "What is the chemical symbol for gold?",
        "topic": "Science", "subtopic": "Chemistry", "branch": "Elements",
        "tags": ["chemistry", "elements"],
        "difficulty": "easy",
        "answers": [{"text": "Au", "isCorrect": true}, {"text": "Ag", "isCorrect": false}]
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger

from triviafeed.core.errors import InvalidQuestion
from triviafeed.core.models import Question


def question_from_dict(data: dict[str, Any]) -> Question:
    """
    Build a Question from an exported record.

    Raises:
        InvalidQuestion: Missing id, text or topic
    """
    text = data.get("question") or data.get("text")
    topic = data.get("topic") or data.get("category")
    tags = data.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]

    answers: list[str] = []
    correct_index = data.get("correct_index", data.get("correctIndex"))
    for i, answer in enumerate(data.get("answers") or []):
        if isinstance(answer, dict):
            answers.append(str(answer.get("text", "")))
            if answer.get("isCorrect") or answer.get("is_correct"):
                correct_index = i
        else:
            answers.append(str(answer))

    return Question.create(
        id=str(data.get("id") or ""),
        text=text,
        topic=topic or "",
        tags=tags,
        subtopic=data.get("subtopic"),
        branch=data.get("branch"),
        difficulty=data.get("difficulty") or "medium",
        answers=answers,
        correct_index=correct_index,
    )


def load_questions_file(path: Path) -> tuple[list[Question], list[str]]:
    """
    Read a JSON question bank.

    Returns:
        (questions, errors) where errors describe records that were skipped
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    records = raw.get("questions", []) if isinstance(raw, dict) else raw

    questions: list[Question] = []
    errors: list[str] = []
    for i, record in enumerate(records):
        try:
            questions.append(question_from_dict(record))
        except (InvalidQuestion, AttributeError, TypeError) as e:
            errors.append(f"record {i}: {e}")
    if errors:
        logger.warning("Skipped {} invalid records in {}", len(errors), path)
    logger.info("Loaded {} questions from {}", len(questions), path)
    return questions, errors
