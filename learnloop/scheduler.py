"""
SM-2 Spaced Repetition Scheduler.

Binary-outcome variant of SM-2 used for practice items and pause-point
questions:

    correct:    interval' = 6 if interval == 1 else round(interval * ease)
                ease'     = max(1.3, ease + 0.1)
    incorrect:  interval' = 1
                ease'     = max(1.3, ease - 0.2)

    next_review_date = today + interval' days, repetition_number += 1

A missing record counts as interval=1, ease=2.5, repetition_number=0, so the
first computation yields repetition_number=1. The update is not idempotent:
callers invoke it exactly once per graded attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from loguru import logger

from learnloop.config import Settings
from learnloop.db.stores import ReviewStore
from learnloop.models import SpacedRepetitionRecord
from learnloop.utils import round_half_up

# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for the SM-2 recurrence."""

    initial_ease: float = 2.5
    minimum_ease: float = 1.3
    first_interval: int = 1  # Days after a miss
    second_interval: int = 6  # Days after the first success
    ease_bonus: float = 0.1
    ease_penalty: float = 0.2

    @classmethod
    def from_settings(cls, settings: Settings) -> SM2Config:
        return cls(
            initial_ease=settings.initial_ease_factor,
            minimum_ease=settings.minimum_ease_factor,
        )


class SpacedRepetitionScheduler:
    """
    Maintains one review record per (learner, item).

    next_state() is pure; record_review() loads, computes and upserts.
    """

    def __init__(self, store: ReviewStore | None = None, config: SM2Config | None = None):
        """
        Initialize the scheduler.

        Args:
            store: Review store (only needed for record_review/due_items)
            config: Custom configuration (uses defaults if None)
        """
        self.store = store
        self.config = config or SM2Config()

    def default_record(self, learner_id: str, item_id: str) -> SpacedRepetitionRecord:
        return SpacedRepetitionRecord(
            learner_id=learner_id,
            item_id=item_id,
            interval_days=self.config.first_interval,
            ease_factor=self.config.initial_ease,
            repetition_number=0,
        )

    def next_state(
        self,
        record: SpacedRepetitionRecord,
        correct: bool,
        today: date | None = None,
    ) -> SpacedRepetitionRecord:
        """
        Compute the record after one review.

        Args:
            record: Current record (use default_record() for a new item)
            correct: Whether the attempt was correct
            today: Review date (defaults to date.today())

        Returns:
            A new SpacedRepetitionRecord; the input is not modified
        """
        today = today or date.today()
        interval = max(1, record.interval_days)
        ease = record.ease_factor

        if correct:
            if interval == self.config.first_interval:
                new_interval = self.config.second_interval
            else:
                new_interval = max(1, round_half_up(interval * ease))
            new_ease = ease + self.config.ease_bonus
        else:
            new_interval = self.config.first_interval
            new_ease = ease - self.config.ease_penalty

        # two decimals, like the stored column; keeps 2.5 + 0.1 == 2.6
        new_ease = max(self.config.minimum_ease, round(new_ease, 2))

        return SpacedRepetitionRecord(
            learner_id=record.learner_id,
            item_id=record.item_id,
            interval_days=new_interval,
            ease_factor=new_ease,
            repetition_number=record.repetition_number + 1,
            next_review_date=today + timedelta(days=new_interval),
            last_reviewed_date=today,
        )

    def _require_store(self) -> ReviewStore:
        if self.store is None:
            raise RuntimeError("SpacedRepetitionScheduler has no review store")
        return self.store

    async def record_review(
        self,
        learner_id: str,
        item_id: str,
        correct: bool,
        today: date | None = None,
    ) -> SpacedRepetitionRecord:
        """Apply one graded attempt to the stored record and persist it."""
        store = self._require_store()
        current = await store.get_review(learner_id, item_id) or self.default_record(learner_id, item_id)
        updated = self.next_state(current, correct, today)
        await store.upsert_review(updated)

        logger.debug(
            f"Review {learner_id}/{item_id}: correct={correct} "
            f"interval {current.interval_days}->{updated.interval_days}d "
            f"ease {current.ease_factor:.2f}->{updated.ease_factor:.2f}"
        )
        return updated

    async def due_items(
        self,
        learner_id: str,
        today: date | None = None,
        limit: int | None = None,
    ) -> list[SpacedRepetitionRecord]:
        """Records with next_review_date <= today, most overdue first."""
        return await self._require_store().due_reviews(learner_id, today or date.today(), limit)
