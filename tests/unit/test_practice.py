"""
Unit tests for next-item selection, practice sessions and learner stats.
"""

import random
from datetime import date, timedelta

import pytest

from learnloop.db import InMemoryStore
from learnloop.errors import PersistenceError, ServiceUnavailable, ValidationError
from learnloop.models import ConfidenceLevel, PracticeItem
from learnloop.practice import (
    DueReviewSource,
    InMemoryItemBank,
    NextItemSelector,
    PersonalizedSource,
    PoolSource,
    PracticeSession,
    default_selector,
)
from learnloop.scheduler import SpacedRepetitionScheduler
from learnloop.scoring import ConfidenceScoringEngine
from learnloop.stats import LearnerStats

TODAY = date(2025, 3, 1)


def make_item(item_id, mcq_payload):
    return PracticeItem(id=item_id, question=mcq_payload)


@pytest.fixture
def scheduler(store):
    return SpacedRepetitionScheduler(store)


@pytest.fixture
def bank(mcq_payload):
    bank = InMemoryItemBank(make_item(f"pool-{i}", mcq_payload) for i in range(3))
    return bank


class BrokenSource:
    name = "broken"
    randomize = False

    async def candidates(self, learner_id, today):
        raise PersistenceError("connection reset")


class TestItemBank:
    @pytest.mark.asyncio
    async def test_personalized_newest_first(self, bank, mcq_payload):
        bank.add(make_item("mine-old", mcq_payload), learner_id="u1")
        bank.add(make_item("mine-new", mcq_payload), learner_id="u1")

        items = await bank.personalized_items("u1", limit=10)

        assert [i.id for i in items] == ["mine-new", "mine-old"]
        assert await bank.personalized_items("u2", limit=10) == []

    @pytest.mark.asyncio
    async def test_pool_excludes_personalized(self, bank, mcq_payload):
        bank.add(make_item("mine", mcq_payload), learner_id="u1")

        pool = await bank.pool_items(limit=20)

        assert "mine" not in {i.id for i in pool}
        assert len(bank) == 4


class TestNextItemSelector:
    """Personalized -> due reviews -> pool, bounded regeneration."""

    @pytest.mark.asyncio
    async def test_personalized_first(self, bank, scheduler, mcq_payload):
        bank.add(make_item("mine", mcq_payload), learner_id="u1")
        selector = default_selector(bank, scheduler)

        item = await selector.next_item("u1", today=TODAY)

        assert item.id == "mine"

    @pytest.mark.asyncio
    async def test_due_reviews_before_pool(self, bank, scheduler):
        await scheduler.record_review("u1", "pool-2", False, TODAY - timedelta(days=3))
        selector = default_selector(bank, scheduler)

        item = await selector.next_item("u1", today=TODAY)

        assert item.id == "pool-2"

    @pytest.mark.asyncio
    async def test_falls_back_to_pool(self, bank, scheduler):
        selector = default_selector(bank, scheduler)

        item = await selector.next_item("u1", exclude=["pool-0"], today=TODAY)

        assert item.id in {"pool-1", "pool-2"}

    @pytest.mark.asyncio
    async def test_broken_source_is_skipped(self, bank):
        selector = NextItemSelector([BrokenSource(), PoolSource(bank)], rng=random.Random(7))

        item = await selector.next_item("u1", today=TODAY)

        assert item is not None

    @pytest.mark.asyncio
    async def test_max_depth_limits_sources(self, bank):
        selector = NextItemSelector([PersonalizedSource(bank), PoolSource(bank)], max_depth=1)

        assert await selector.next_item("u1", today=TODAY) is None

    @pytest.mark.asyncio
    async def test_regeneration_is_bounded(self, mcq_payload):
        empty = InMemoryItemBank()
        calls = []

        async def regenerate(learner_id):
            calls.append(learner_id)
            return 0

        selector = NextItemSelector([PoolSource(empty)], regenerate=regenerate, max_regenerations=3)

        assert await selector.next_item("u1", today=TODAY) is None
        assert calls == ["u1"]

    @pytest.mark.asyncio
    async def test_regeneration_creates_items(self, mcq_payload):
        bank = InMemoryItemBank()
        calls = []

        async def regenerate(learner_id):
            calls.append(learner_id)
            bank.add(make_item("fresh", mcq_payload), learner_id=learner_id)
            return 1

        selector = NextItemSelector([PersonalizedSource(bank)], regenerate=regenerate, max_regenerations=1)

        item = await selector.next_item("u1", today=TODAY)

        assert item.id == "fresh"
        assert calls == ["u1"]

    @pytest.mark.asyncio
    async def test_regeneration_that_keeps_producing_nothing_useful(self, mcq_payload):
        bank = InMemoryItemBank()
        calls = []

        async def regenerate(learner_id):
            calls.append(learner_id)
            bank.add(make_item(f"excluded-{len(calls)}", mcq_payload))
            return 1

        selector = NextItemSelector([PoolSource(bank)], regenerate=regenerate, max_regenerations=2)

        item = await selector.next_item("u1", exclude=["excluded-1", "excluded-2"], today=TODAY)

        assert item is None
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_regeneration_failure(self):
        async def regenerate(learner_id):
            raise ServiceUnavailable("generator down")

        selector = NextItemSelector([PoolSource(InMemoryItemBank())], regenerate=regenerate)

        assert await selector.next_item("u1", today=TODAY) is None

    @pytest.mark.asyncio
    async def test_due_source_order(self, bank, scheduler):
        await scheduler.record_review("u1", "pool-1", False, TODAY - timedelta(days=1))
        await scheduler.record_review("u1", "pool-0", False, TODAY - timedelta(days=4))
        await scheduler.record_review("u1", "gone", False, TODAY - timedelta(days=9))

        items = await DueReviewSource(bank, scheduler).candidates("u1", TODAY)

        assert [i.id for i in items] == ["pool-0", "pool-1"]


class TestPracticeSession:
    @pytest.fixture
    def session(self, store, scheduler, bank):
        return PracticeSession("u1", store, scheduler, selector=default_selector(bank, scheduler))

    @pytest.mark.asyncio
    async def test_submit_correct(self, session, store, sample_item):
        result = await session.submit(sample_item, "C", "pretty_sure", elapsed_seconds=12.5, today=TODAY)

        assert result.correct is True
        assert result.points == 200
        assert result.review.interval_days == 6
        assert result.review.next_review_date == TODAY + timedelta(days=6)
        assert result.stats.experience_points == 200
        assert result.stats.coins == 100
        [attempt] = await store.list_attempts("u1")
        assert attempt.elapsed_seconds == 12.5
        assert attempt.confidence is ConfidenceLevel.PRETTY_SURE

    @pytest.mark.asyncio
    async def test_submit_requires_confidence(self, session, store, sample_item):
        with pytest.raises(ValidationError):
            await session.submit(sample_item, "C", None)

        assert await store.list_attempts("u1") == []

    @pytest.mark.asyncio
    async def test_stats_accumulate(self, session, store, sample_item):
        await session.submit(sample_item, "C", "absolutely_sure", today=TODAY)
        await session.submit(sample_item, "A", "absolutely_sure", today=TODAY)

        stats = await store.get_stats("u1")

        assert stats.experience_points == 150
        assert stats.total_gambles == 2
        assert stats.current_streak == 0
        assert stats.longest_streak == 1
        assert stats.biggest_loss == 150
        assert stats.calibration()[ConfidenceLevel.ABSOLUTELY_SURE] == 0.5

    @pytest.mark.asyncio
    async def test_next_item(self, session):
        item = await session.next_item(today=TODAY)

        assert item.id.startswith("pool-")

    @pytest.mark.asyncio
    async def test_next_item_without_selector(self, store, scheduler):
        with pytest.raises(RuntimeError):
            await PracticeSession("u1", store, scheduler).next_item()


class TestLearnerStats:
    def test_level_from_experience(self):
        stats = LearnerStats("u1", experience_points=250)

        assert stats.level == 3

    def test_overconfidence(self):
        engine = ConfidenceScoringEngine()
        stats = LearnerStats("u1")
        for correct in [True, False, False, False, True]:
            stats.apply(engine.evaluate("absolutely_sure", correct, 100), TODAY)

        assert stats.overconfident_levels() == [ConfidenceLevel.ABSOLUTELY_SURE]
        assert stats.last_activity_date == TODAY

    def test_accuracy_round_trip(self):
        stats = LearnerStats("u1")
        stats.apply(ConfidenceScoringEngine().evaluate("maybe", True, 100), TODAY)

        restored = LearnerStats.accuracy_from_dict(stats.accuracy_to_dict())

        assert restored[ConfidenceLevel.MAYBE].correct == 1
        assert restored[ConfidenceLevel.NOT_SURE].total == 0


class TestInMemoryStoreStats:
    @pytest.mark.asyncio
    async def test_missing_stats(self):
        assert await InMemoryStore().get_stats("nobody") is None
