"""
Question fingerprints for duplicate detection.

A fingerprint is the canonical form of a question's text and tags:
the text is lower-cased, stripped of punctuation and whitespace-collapsed,
the tags are trimmed, lower-cased and sorted. Two questions are duplicates
iff their canonical forms are equal.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

from .errors import InvalidQuestion

SEGMENT_SEPARATOR = "|"
TAG_SEPARATOR = "|"

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Lower-case, strip punctuation, collapse whitespace and trim."""
    if text is None:
        raise InvalidQuestion("Question text is missing")
    normalized = _PUNCTUATION.sub("", text.lower())
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    if not normalized:
        raise InvalidQuestion("Question text is empty after normalization")
    return normalized


def normalize_tags(tags: Iterable[str] | None) -> str:
    """Sort tags case-insensitively and join them; no tags gives ''."""
    cleaned = sorted(tag.strip().lower() for tag in (tags or ()) if tag and tag.strip())
    return TAG_SEPARATOR.join(cleaned)


def fingerprint(text: str | None, tags: Iterable[str] | None) -> str:
    """
    Build the canonical dedup key for a question.

    Args:
        text: Question text (required)
        tags: Question tags, any order and case

    Returns:
        Canonical string "<normalized text>|<sorted tags>"

    Raises:
        InvalidQuestion: If the text is missing or empty
    """
    return f"{normalize_text(text)}{SEGMENT_SEPARATOR}{normalize_tags(tags)}"


def fingerprint_digest(text: str | None, tags: Iterable[str] | None) -> str:
    """SHA-256 of the canonical fingerprint, for compact storage."""
    return hashlib.sha256(fingerprint(text, tags).encode("utf-8")).hexdigest()
