"""
Feed State.

The one owned record of what a user's feed currently holds. Every trigger
appends through FeedState, and the append re-checks membership and the
resolved tombstones under the lock, so a question resolved between a
trigger's candidate query and its append is never reintroduced.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable


class FeedState:
    """In-flight feed items of one user, in display order."""

    def __init__(self, user_id: str, resolved: Iterable[str] = ()):
        self.user_id = user_id
        self._items: list[str] = []
        self._members: set[str] = set()
        self._resolved: set[str] = set(resolved)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, question_id: object) -> bool:
        with self._lock:
            return question_id in self._members

    def items(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._items)

    def existing_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._members)

    def resolved_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._resolved)

    def is_resolved(self, question_id: str) -> bool:
        with self._lock:
            return question_id in self._resolved

    def append_new(self, question_ids: Iterable[str], limit: int | None = None) -> list[str]:
        """
        Append ids that are neither in the feed nor resolved.

        Args:
            question_ids: Ranked candidate ids
            limit: Stop after this many appends (None for no limit)

        Returns:
            The ids actually appended, in order
        """
        appended: list[str] = []
        with self._lock:
            for question_id in question_ids:
                if limit is not None and len(appended) >= limit:
                    break
                if question_id in self._members or question_id in self._resolved:
                    continue
                self._items.append(question_id)
                self._members.add(question_id)
                appended.append(question_id)
        return appended

    def resolve(self, question_id: str) -> bool:
        """
        Tombstone a question and drop it from the feed.

        Returns:
            True if the question was in the feed
        """
        with self._lock:
            self._resolved.add(question_id)
            if question_id not in self._members:
                return False
            self._members.discard(question_id)
            self._items.remove(question_id)
            return True

    def absorb_resolved(self, question_ids: Iterable[str]) -> None:
        """Merge resolved ids read from the store (e.g. after a restart)."""
        with self._lock:
            for question_id in question_ids:
                self._resolved.add(question_id)
                if question_id in self._members:
                    self._members.discard(question_id)
                    self._items.remove(question_id)
