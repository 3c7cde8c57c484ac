"""
Store protocols and the in-memory implementation.

Every store call is a suspension point for the lecture session; writes are
fire-and-forget from the learner's point of view, so callers log
PersistenceError instead of surfacing it.
"""

from __future__ import annotations

import copy
from datetime import date
from typing import Literal, Protocol

from learnloop.models import (
    Attempt,
    LectureProgress,
    RemediationRecord,
    SpacedRepetitionRecord,
    merge_progress,
)
from learnloop.stats import LearnerStats

ConflictPolicy = Literal["merge", "last_write_wins"]


class ProgressStore(Protocol):
    async def get_progress(self, learner_id: str, lecture_id: str) -> LectureProgress | None: ...

    async def upsert_progress(self, progress: LectureProgress) -> LectureProgress: ...


class ReviewStore(Protocol):
    async def get_review(self, learner_id: str, item_id: str) -> SpacedRepetitionRecord | None: ...

    async def upsert_review(self, record: SpacedRepetitionRecord) -> None: ...

    async def due_reviews(
        self, learner_id: str, today: date, limit: int | None = None
    ) -> list[SpacedRepetitionRecord]: ...


class AttemptStore(Protocol):
    async def add_attempt(self, attempt: Attempt) -> None: ...

    async def list_attempts(self, learner_id: str, item_id: str | None = None) -> list[Attempt]: ...


class RemediationStore(Protocol):
    async def add_remediation(self, record: RemediationRecord) -> None: ...

    async def update_remediation(self, record: RemediationRecord) -> None: ...

    async def list_remediations(self, learner_id: str, lecture_id: str | None = None) -> list[RemediationRecord]: ...


class StatsStore(Protocol):
    async def get_stats(self, learner_id: str) -> LearnerStats | None: ...

    async def save_stats(self, stats: LearnerStats) -> None: ...


class PracticeStore(AttemptStore, StatsStore, Protocol):
    """Everything a practice session writes."""


class LectureStore(ProgressStore, AttemptStore, RemediationStore, Protocol):
    """Everything a lecture session writes."""


def reconcile_progress(
    existing: LectureProgress | None,
    incoming: LectureProgress,
    policy: ConflictPolicy,
) -> LectureProgress:
    """Apply the configured conflict policy to a progress write."""
    if existing is None or policy == "last_write_wins":
        return incoming
    return merge_progress(existing, incoming)


class InMemoryStore:
    """
    Dict-backed implementation of every store protocol.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self, conflict_policy: ConflictPolicy = "merge"):
        self.conflict_policy = conflict_policy
        self._progress: dict[tuple[str, str], LectureProgress] = {}
        self._reviews: dict[tuple[str, str], SpacedRepetitionRecord] = {}
        self._attempts: list[Attempt] = []
        self._remediations: dict[str, RemediationRecord] = {}
        self._stats: dict[str, LearnerStats] = {}

    # =========================================================================
    # Lecture Progress
    # =========================================================================

    async def get_progress(self, learner_id: str, lecture_id: str) -> LectureProgress | None:
        progress = self._progress.get((learner_id, lecture_id))
        return copy.deepcopy(progress) if progress else None

    async def upsert_progress(self, progress: LectureProgress) -> LectureProgress:
        key = (progress.learner_id, progress.lecture_id)
        stored = reconcile_progress(self._progress.get(key), copy.deepcopy(progress), self.conflict_policy)
        self._progress[key] = stored
        return copy.deepcopy(stored)

    # =========================================================================
    # Spaced Repetition
    # =========================================================================

    async def get_review(self, learner_id: str, item_id: str) -> SpacedRepetitionRecord | None:
        record = self._reviews.get((learner_id, item_id))
        return copy.deepcopy(record) if record else None

    async def upsert_review(self, record: SpacedRepetitionRecord) -> None:
        self._reviews[(record.learner_id, record.item_id)] = copy.deepcopy(record)

    async def due_reviews(
        self, learner_id: str, today: date, limit: int | None = None
    ) -> list[SpacedRepetitionRecord]:
        due = [
            copy.deepcopy(r)
            for (learner, _), r in self._reviews.items()
            if learner == learner_id and r.is_due(today)
        ]
        due.sort(key=lambda r: (r.next_review_date or date.min, r.item_id))
        return due[:limit] if limit is not None else due

    # =========================================================================
    # Attempts
    # =========================================================================

    async def add_attempt(self, attempt: Attempt) -> None:
        self._attempts.append(copy.deepcopy(attempt))

    async def list_attempts(self, learner_id: str, item_id: str | None = None) -> list[Attempt]:
        return [
            copy.deepcopy(a)
            for a in self._attempts
            if a.learner_id == learner_id and (item_id is None or a.item_id == item_id)
        ]

    # =========================================================================
    # Remediation
    # =========================================================================

    async def add_remediation(self, record: RemediationRecord) -> None:
        self._remediations[record.id] = copy.deepcopy(record)

    async def update_remediation(self, record: RemediationRecord) -> None:
        self._remediations[record.id] = copy.deepcopy(record)

    async def list_remediations(self, learner_id: str, lecture_id: str | None = None) -> list[RemediationRecord]:
        records = [
            copy.deepcopy(r)
            for r in self._remediations.values()
            if r.learner_id == learner_id and (lecture_id is None or r.lecture_id == lecture_id)
        ]
        records.sort(key=lambda r: r.created_at)
        return records

    # =========================================================================
    # Stats
    # =========================================================================

    async def get_stats(self, learner_id: str) -> LearnerStats | None:
        stats = self._stats.get(learner_id)
        return copy.deepcopy(stats) if stats else None

    async def save_stats(self, stats: LearnerStats) -> None:
        self._stats[stats.learner_id] = copy.deepcopy(stats)
