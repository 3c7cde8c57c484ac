"""
Practice sessions and next-item selection.

Selection walks a fixed chain of item sources, most specific first:

    personalized items -> spaced-repetition reviews due today -> general pool

If every source comes back empty, an optional regeneration hook may create
new items, at most `max_regenerations` times, after which the selector gives
up and returns None.
"""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from loguru import logger

from learnloop.config import Settings, get_settings
from learnloop.db.stores import PracticeStore
from learnloop.errors import PersistenceError, ServiceError, ValidationError
from learnloop.grading import AnswerGrader
from learnloop.models import Attempt, ConfidenceLevel, PracticeItem, SpacedRepetitionRecord
from learnloop.scheduler import SpacedRepetitionScheduler
from learnloop.scoring import ConfidenceScoringEngine, ScoreResult
from learnloop.stats import LearnerStats

# =============================================================================
# Item Bank
# =============================================================================


class ItemBank(Protocol):
    async def get_items(self, item_ids: Sequence[str]) -> list[PracticeItem]: ...

    async def personalized_items(self, learner_id: str, limit: int) -> list[PracticeItem]: ...

    async def pool_items(self, limit: int) -> list[PracticeItem]: ...


class InMemoryItemBank:
    """Practice items held in memory, optionally tied to a learner."""

    def __init__(self, items: Iterable[PracticeItem] = ()):
        self._items: dict[str, PracticeItem] = {}
        self._personalized: dict[str, list[str]] = {}
        for item in items:
            self.add(item)

    def add(self, item: PracticeItem, learner_id: str | None = None) -> None:
        """Add an item to the general pool, or to a learner's personalized set."""
        self._items[item.id] = item
        if learner_id is not None:
            self._personalized.setdefault(learner_id, []).append(item.id)

    def __len__(self) -> int:
        return len(self._items)

    def _personal_ids(self) -> set[str]:
        return {item_id for ids in self._personalized.values() for item_id in ids}

    async def get_items(self, item_ids: Sequence[str]) -> list[PracticeItem]:
        return [self._items[i] for i in item_ids if i in self._items]

    async def personalized_items(self, learner_id: str, limit: int) -> list[PracticeItem]:
        # newest first
        ids = list(reversed(self._personalized.get(learner_id, [])))[:limit]
        return [self._items[i] for i in ids]

    async def pool_items(self, limit: int) -> list[PracticeItem]:
        personal = self._personal_ids()
        return [item for item in self._items.values() if item.id not in personal][:limit]


# =============================================================================
# Sources
# =============================================================================


class ItemSource(Protocol):
    name: str
    randomize: bool

    async def candidates(self, learner_id: str, today: date) -> list[PracticeItem]: ...


class PersonalizedSource:
    name = "personalized"
    randomize = True

    def __init__(self, bank: ItemBank, limit: int = 10):
        self.bank = bank
        self.limit = limit

    async def candidates(self, learner_id: str, today: date) -> list[PracticeItem]:
        return await self.bank.personalized_items(learner_id, self.limit)


class DueReviewSource:
    """Items whose review date has arrived, most overdue first."""

    name = "due_review"
    randomize = False

    def __init__(self, bank: ItemBank, scheduler: SpacedRepetitionScheduler, limit: int = 5):
        self.bank = bank
        self.scheduler = scheduler
        self.limit = limit

    async def candidates(self, learner_id: str, today: date) -> list[PracticeItem]:
        due = await self.scheduler.due_items(learner_id, today, self.limit)
        items = {item.id: item for item in await self.bank.get_items([r.item_id for r in due])}
        return [items[r.item_id] for r in due if r.item_id in items]


class PoolSource:
    name = "pool"
    randomize = True

    def __init__(self, bank: ItemBank, limit: int = 20):
        self.bank = bank
        self.limit = limit

    async def candidates(self, learner_id: str, today: date) -> list[PracticeItem]:
        return await self.bank.pool_items(self.limit)


# =============================================================================
# Selector
# =============================================================================

RegenerateHook = Callable[[str], Awaitable[int]]


class NextItemSelector:
    """Bounded fallback chain over item sources."""

    def __init__(
        self,
        sources: Sequence[ItemSource],
        regenerate: RegenerateHook | None = None,
        max_depth: int = 3,
        max_regenerations: int = 1,
        rng: random.Random | None = None,
    ):
        """
        Initialize the selector.

        Args:
            sources: Sources in priority order
            regenerate: Called with the learner id when every source is empty;
                returns how many items it created
            max_depth: Maximum number of sources consulted per pass
            max_regenerations: Maximum regeneration attempts per selection
            rng: Random generator for sources that pick at random
        """
        self.sources = list(sources)[: max(1, max_depth)]
        self.regenerate = regenerate
        self.max_regenerations = max(0, max_regenerations)
        self.rng = rng or random.Random()

    async def next_item(
        self,
        learner_id: str,
        exclude: Iterable[str] = (),
        today: date | None = None,
    ) -> PracticeItem | None:
        """
        Pick the next item for a learner.

        Args:
            learner_id: Learner to select for
            exclude: Item ids not to return (e.g. the current item)
            today: Date used for due reviews

        Returns:
            An item, or None when nothing is available after regeneration
        """
        skip = set(exclude)
        today = today or date.today()

        for regeneration in range(self.max_regenerations + 1):
            item = await self._walk(learner_id, skip, today)
            if item is not None:
                return item
            if self.regenerate is None or regeneration == self.max_regenerations:
                break
            logger.info(
                f"No practice items for {learner_id}; regenerating "
                f"({regeneration + 1}/{self.max_regenerations})"
            )
            try:
                created = await self.regenerate(learner_id)
            except ServiceError as e:
                logger.warning(f"Item regeneration failed: {e}")
                break
            if not created:
                break

        logger.warning(f"No practice items available for {learner_id}")
        return None

    async def _walk(self, learner_id: str, skip: set[str], today: date) -> PracticeItem | None:
        for source in self.sources:
            try:
                candidates = [c for c in await source.candidates(learner_id, today) if c.id not in skip]
            except PersistenceError as e:
                logger.warning(f"Item source '{source.name}' failed: {e}")
                continue
            if candidates:
                item = self.rng.choice(candidates) if source.randomize else candidates[0]
                logger.debug(f"Selected {item.id} from {source.name}")
                return item
        return None


def default_selector(
    bank: ItemBank,
    scheduler: SpacedRepetitionScheduler,
    regenerate: RegenerateHook | None = None,
    settings: Settings | None = None,
) -> NextItemSelector:
    settings = settings or get_settings()
    return NextItemSelector(
        [PersonalizedSource(bank), DueReviewSource(bank, scheduler), PoolSource(bank)],
        regenerate=regenerate,
        max_depth=settings.max_selection_depth,
        max_regenerations=settings.max_regenerations,
    )


# =============================================================================
# Session
# =============================================================================


@dataclass(frozen=True)
class PracticeResult:
    item_id: str
    score: ScoreResult
    feedback: str = ""
    needs_review: bool = False
    correct_answer: str = ""
    explanation: str | None = None
    review: SpacedRepetitionRecord | None = None
    stats: LearnerStats | None = None

    @property
    def correct(self) -> bool:
        return self.score.correct

    @property
    def points(self) -> int:
        return self.score.points


class PracticeSession:
    """Answers standalone practice items with confidence wagers."""

    def __init__(
        self,
        learner_id: str,
        store: PracticeStore,
        scheduler: SpacedRepetitionScheduler,
        *,
        grader: AnswerGrader | None = None,
        scoring: ConfidenceScoringEngine | None = None,
        selector: NextItemSelector | None = None,
    ):
        self.learner_id = learner_id
        self.store = store
        self.scheduler = scheduler
        self.grader = grader or AnswerGrader()
        self.scoring = scoring or ConfidenceScoringEngine()
        self.selector = selector

    async def next_item(self, exclude: Iterable[str] = (), today: date | None = None) -> PracticeItem | None:
        if self.selector is None:
            raise RuntimeError("PracticeSession has no selector")
        return await self.selector.next_item(self.learner_id, exclude, today)

    async def submit(
        self,
        item: PracticeItem,
        answer: str,
        confidence: ConfidenceLevel | str | None,
        elapsed_seconds: float = 0.0,
        today: date | None = None,
    ) -> PracticeResult:
        """
        Grade, score and record one practice answer.

        Raises:
            ValidationError: Missing confidence, empty answer or invalid input
        """
        level = ConfidenceLevel.parse(confidence)
        if not answer or not answer.strip():
            raise ValidationError("Please provide an answer")
        self.grader.validate(item.question, answer)

        outcome = await self.grader.grade(item.question, answer)
        score = self.scoring.evaluate(level, outcome.score_input, item.base_reward)
        today = today or date.today()

        try:
            await self.store.add_attempt(
                Attempt(
                    learner_id=self.learner_id,
                    item_id=item.id,
                    confidence=level,
                    answer=answer,
                    correct=score.correct,
                    grade=score.grade,
                    points=score.points,
                    elapsed_seconds=elapsed_seconds,
                    needs_review=outcome.needs_review,
                )
            )
        except PersistenceError as e:
            logger.warning(f"Practice attempt for {item.id} not saved: {e}")

        review: SpacedRepetitionRecord | None = None
        try:
            review = await self.scheduler.record_review(self.learner_id, item.id, score.correct, today)
        except PersistenceError as e:
            logger.warning(f"Review schedule for {item.id} not saved: {e}")

        stats = await self._update_stats(score, today)

        logger.info(
            f"Practice {item.id}: correct={score.correct} points={score.points:+d} coins={score.coins:+d}"
        )
        return PracticeResult(
            item_id=item.id,
            score=score,
            feedback=outcome.feedback,
            needs_review=outcome.needs_review,
            correct_answer=item.question.correct_option,
            explanation=item.question.explanation,
            review=review,
            stats=stats,
        )

    async def _update_stats(self, score: ScoreResult, today: date) -> LearnerStats | None:
        try:
            stats = await self.store.get_stats(self.learner_id) or LearnerStats(learner_id=self.learner_id)
            stats.apply(score, today)
            await self.store.save_stats(stats)
        except PersistenceError as e:
            logger.warning(f"Stats for {self.learner_id} not saved: {e}")
            return None
        return stats
