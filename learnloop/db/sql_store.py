"""
SQLAlchemy-backed store.

Implements every store protocol on an async session factory. Upserts are a
select-then-write inside one transaction so they behave the same on
PostgreSQL and SQLite. Any SQLAlchemyError surfaces as PersistenceError.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learnloop.errors import PersistenceError
from learnloop.models import (
    Attempt,
    ConfidenceLevel,
    LectureProgress,
    MultipleChoice,
    PausePointResponse,
    RemediationRecord,
    SpacedRepetitionRecord,
)
from learnloop.stats import LearnerStats

from .database import session_scope
from .stores import ConflictPolicy, reconcile_progress
from .tables import AttemptRow, LearnerStatsRow, LectureProgressRow, RemediationRow, SpacedRepetitionRow


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# Row <-> Model Mapping
# =============================================================================


def _progress_from_row(row: LectureProgressRow) -> LectureProgress:
    return LectureProgress(
        learner_id=row.learner_id,
        lecture_id=row.lecture_id,
        video_position=row.video_position or 0.0,
        completed_pause_points=set(row.completed_pause_points or []),
        responses={k: PausePointResponse.from_dict(v) for k, v in (row.responses or {}).items()},
        total_points_earned=row.total_points_earned or 0,
        started_at=_aware(row.started_at) or datetime.now(timezone.utc),
        completed_at=_aware(row.completed_at),
    )


def _apply_progress(row: LectureProgressRow, progress: LectureProgress) -> None:
    row.video_position = progress.video_position
    row.completed_pause_points = sorted(progress.completed_pause_points)
    row.responses = {k: v.to_dict() for k, v in progress.responses.items()}
    row.total_points_earned = progress.total_points_earned
    row.started_at = progress.started_at
    row.completed_at = progress.completed_at


def _review_from_row(row: SpacedRepetitionRow) -> SpacedRepetitionRecord:
    return SpacedRepetitionRecord(
        learner_id=row.learner_id,
        item_id=row.item_id,
        interval_days=row.interval_days,
        ease_factor=float(row.ease_factor),
        repetition_number=row.repetition_number,
        next_review_date=row.next_review_date,
        last_reviewed_date=row.last_reviewed_date,
    )


def _attempt_from_row(row: AttemptRow) -> Attempt:
    return Attempt(
        learner_id=row.learner_id,
        item_id=row.item_id,
        lecture_id=row.lecture_id,
        confidence=ConfidenceLevel.parse(row.confidence),
        answer=row.answer,
        correct=row.correct,
        grade=row.grade,
        points=row.points,
        elapsed_seconds=row.elapsed_seconds,
        needs_review=row.needs_review,
        created_at=_aware(row.created_at),
    )


def _remediation_from_row(row: RemediationRow) -> RemediationRecord:
    return RemediationRecord(
        id=row.id,
        learner_id=row.learner_id,
        lecture_id=row.lecture_id,
        pause_point_id=row.pause_point_id,
        misconception=row.misconception_detected,
        missing_concept=row.missing_concept or "",
        root_cause=row.root_cause or "",
        concept_name=row.concept_name,
        start_timestamp=row.remediation_timestamp,
        end_timestamp=row.remediation_end_timestamp
        if row.remediation_end_timestamp is not None
        else row.remediation_timestamp,
        explanation=row.ai_explanation,
        follow_up_question=MultipleChoice.model_validate(row.follow_up_question) if row.follow_up_question else None,
        follow_up_answered=row.follow_up_answered,
        follow_up_correct=row.follow_up_correct,
        resolved=row.resolved,
        created_at=_aware(row.created_at),
        resolved_at=_aware(row.resolved_at),
    )


def _apply_remediation(row: RemediationRow, record: RemediationRecord) -> None:
    row.learner_id = record.learner_id
    row.lecture_id = record.lecture_id
    row.pause_point_id = record.pause_point_id
    row.misconception_detected = record.misconception
    row.missing_concept = record.missing_concept
    row.root_cause = record.root_cause
    row.concept_name = record.concept_name
    row.remediation_timestamp = record.start_timestamp
    row.remediation_end_timestamp = record.end_timestamp
    row.ai_explanation = record.explanation
    row.follow_up_question = record.follow_up_question.model_dump() if record.follow_up_question else None
    row.follow_up_answered = record.follow_up_answered
    row.follow_up_correct = record.follow_up_correct
    row.resolved = record.resolved
    row.created_at = record.created_at
    row.resolved_at = record.resolved_at


def _stats_from_row(row: LearnerStatsRow) -> LearnerStats:
    return LearnerStats(
        learner_id=row.learner_id,
        experience_points=row.experience_points,
        coins=row.coins,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        total_gambles=row.total_gambles,
        successful_gambles=row.successful_gambles,
        biggest_win=row.biggest_win,
        biggest_loss=row.biggest_loss,
        last_activity_date=row.last_activity_date,
        confidence_accuracy=LearnerStats.accuracy_from_dict(row.confidence_accuracy),
    )


# =============================================================================
# Store
# =============================================================================


class SqlStore:
    """Async SQLAlchemy implementation of every store protocol."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        conflict_policy: ConflictPolicy = "merge",
    ):
        self._factory = session_factory
        self.conflict_policy = conflict_policy

    @asynccontextmanager
    async def _scope(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with session_scope(self._factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}") from e

    # =========================================================================
    # Lecture Progress
    # =========================================================================

    async def get_progress(self, learner_id: str, lecture_id: str) -> LectureProgress | None:
        async with self._scope("get_progress") as session:
            row = await session.scalar(
                select(LectureProgressRow).where(
                    LectureProgressRow.learner_id == learner_id,
                    LectureProgressRow.lecture_id == lecture_id,
                )
            )
            return _progress_from_row(row) if row else None

    async def upsert_progress(self, progress: LectureProgress) -> LectureProgress:
        async with self._scope("upsert_progress") as session:
            row = await session.scalar(
                select(LectureProgressRow).where(
                    LectureProgressRow.learner_id == progress.learner_id,
                    LectureProgressRow.lecture_id == progress.lecture_id,
                )
            )
            existing = _progress_from_row(row) if row else None
            stored = reconcile_progress(existing, progress, self.conflict_policy)
            if row is None:
                row = LectureProgressRow(learner_id=progress.learner_id, lecture_id=progress.lecture_id)
                session.add(row)
            _apply_progress(row, stored)
            return stored

    # =========================================================================
    # Spaced Repetition
    # =========================================================================

    async def get_review(self, learner_id: str, item_id: str) -> SpacedRepetitionRecord | None:
        async with self._scope("get_review") as session:
            row = await session.scalar(
                select(SpacedRepetitionRow).where(
                    SpacedRepetitionRow.learner_id == learner_id,
                    SpacedRepetitionRow.item_id == item_id,
                )
            )
            return _review_from_row(row) if row else None

    async def upsert_review(self, record: SpacedRepetitionRecord) -> None:
        async with self._scope("upsert_review") as session:
            row = await session.scalar(
                select(SpacedRepetitionRow).where(
                    SpacedRepetitionRow.learner_id == record.learner_id,
                    SpacedRepetitionRow.item_id == record.item_id,
                )
            )
            if row is None:
                row = SpacedRepetitionRow(learner_id=record.learner_id, item_id=record.item_id)
                session.add(row)
            row.interval_days = record.interval_days
            row.ease_factor = record.ease_factor
            row.repetition_number = record.repetition_number
            row.next_review_date = record.next_review_date
            row.last_reviewed_date = record.last_reviewed_date

    async def due_reviews(
        self, learner_id: str, today: date, limit: int | None = None
    ) -> list[SpacedRepetitionRecord]:
        async with self._scope("due_reviews") as session:
            query = (
                select(SpacedRepetitionRow)
                .where(
                    SpacedRepetitionRow.learner_id == learner_id,
                    SpacedRepetitionRow.next_review_date <= today,
                )
                .order_by(SpacedRepetitionRow.next_review_date, SpacedRepetitionRow.item_id)
            )
            if limit is not None:
                query = query.limit(limit)
            rows = (await session.scalars(query)).all()
            return [_review_from_row(row) for row in rows]

    # =========================================================================
    # Attempts
    # =========================================================================

    async def add_attempt(self, attempt: Attempt) -> None:
        async with self._scope("add_attempt") as session:
            session.add(
                AttemptRow(
                    learner_id=attempt.learner_id,
                    item_id=attempt.item_id,
                    lecture_id=attempt.lecture_id,
                    confidence=attempt.confidence.value,
                    answer=attempt.answer,
                    correct=attempt.correct,
                    grade=attempt.grade,
                    points=attempt.points,
                    elapsed_seconds=attempt.elapsed_seconds,
                    needs_review=attempt.needs_review,
                    created_at=attempt.created_at,
                )
            )

    async def list_attempts(self, learner_id: str, item_id: str | None = None) -> list[Attempt]:
        async with self._scope("list_attempts") as session:
            query = select(AttemptRow).where(AttemptRow.learner_id == learner_id)
            if item_id is not None:
                query = query.where(AttemptRow.item_id == item_id)
            rows = (await session.scalars(query.order_by(AttemptRow.id))).all()
            return [_attempt_from_row(row) for row in rows]

    # =========================================================================
    # Remediation
    # =========================================================================

    async def add_remediation(self, record: RemediationRecord) -> None:
        async with self._scope("add_remediation") as session:
            row = RemediationRow(id=record.id)
            _apply_remediation(row, record)
            session.add(row)

    async def update_remediation(self, record: RemediationRecord) -> None:
        async with self._scope("update_remediation") as session:
            row = await session.get(RemediationRow, record.id)
            if row is None:
                row = RemediationRow(id=record.id)
                session.add(row)
            _apply_remediation(row, record)

    async def list_remediations(self, learner_id: str, lecture_id: str | None = None) -> list[RemediationRecord]:
        async with self._scope("list_remediations") as session:
            query = select(RemediationRow).where(RemediationRow.learner_id == learner_id)
            if lecture_id is not None:
                query = query.where(RemediationRow.lecture_id == lecture_id)
            rows = (await session.scalars(query.order_by(RemediationRow.created_at))).all()
            return [_remediation_from_row(row) for row in rows]

    # =========================================================================
    # Stats
    # =========================================================================

    async def get_stats(self, learner_id: str) -> LearnerStats | None:
        async with self._scope("get_stats") as session:
            row = await session.get(LearnerStatsRow, learner_id)
            return _stats_from_row(row) if row else None

    async def save_stats(self, stats: LearnerStats) -> None:
        async with self._scope("save_stats") as session:
            row = await session.get(LearnerStatsRow, stats.learner_id)
            if row is None:
                row = LearnerStatsRow(learner_id=stats.learner_id)
                session.add(row)
            row.experience_points = stats.experience_points
            row.coins = stats.coins
            row.current_streak = stats.current_streak
            row.longest_streak = stats.longest_streak
            row.total_gambles = stats.total_gambles
            row.successful_gambles = stats.successful_gambles
            row.biggest_win = stats.biggest_win
            row.biggest_loss = stats.biggest_loss
            row.last_activity_date = stats.last_activity_date
            row.confidence_accuracy = stats.accuracy_to_dict()
