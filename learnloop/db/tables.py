"""
Learnloop Tables.

SQLAlchemy models backing the stores:
- Lecture progress per (learner, lecture)
- SM-2 review state per (learner, item)
- Practice attempts
- Remediation history
- Learner wagering stats
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class LectureProgressRow(Base):
    """
    Learner progress through a recorded lecture.

    video_position is the furthest point watched; completed_pause_points and
    responses are keyed by pause point id.
    """

    __tablename__ = "lecture_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    lecture_id: Mapped[str] = mapped_column(Text, nullable=False)

    video_position: Mapped[float] = mapped_column(Float, default=0.0)
    completed_pause_points: Mapped[list[str]] = mapped_column(JSON, default=list)
    responses: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    total_points_earned: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("learner_id", "lecture_id", name="uq_progress_learner_lecture"),
    )

    def __repr__(self) -> str:
        return f"<LectureProgressRow learner={self.learner_id} lecture={self.lecture_id} pos={self.video_position}>"


class SpacedRepetitionRow(Base):
    """SM-2 review schedule for one learner and item."""

    __tablename__ = "spaced_repetition"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)

    interval_days: Mapped[int] = mapped_column(Integer, default=1)
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)
    repetition_number: Mapped[int] = mapped_column(Integer, default=0)
    next_review_date: Mapped[date | None] = mapped_column(Date)
    last_reviewed_date: Mapped[date | None] = mapped_column(Date)

    __table_args__ = (
        UniqueConstraint("learner_id", "item_id", name="uq_review_learner_item"),
        Index("idx_review_due", "learner_id", "next_review_date"),
    )

    def __repr__(self) -> str:
        return f"<SpacedRepetitionRow learner={self.learner_id} item={self.item_id} next={self.next_review_date}>"


class AttemptRow(Base):
    """A single graded answer."""

    __tablename__ = "practice_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(Text, nullable=False)
    lecture_id: Mapped[str | None] = mapped_column(Text)

    confidence: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    grade: Mapped[int | None] = mapped_column(Integer)
    points: Mapped[int] = mapped_column(Integer, default=0)
    elapsed_seconds: Mapped[float] = mapped_column(Float, default=0.0)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())


class RemediationRow(Base):
    """Detected misconception, generated explanation and follow-up outcome."""

    __tablename__ = "remediation_history"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    lecture_id: Mapped[str] = mapped_column(Text, nullable=False)
    pause_point_id: Mapped[str] = mapped_column(Text, nullable=False)

    misconception_detected: Mapped[str] = mapped_column(Text, nullable=False)
    missing_concept: Mapped[str | None] = mapped_column(Text)
    root_cause: Mapped[str | None] = mapped_column(Text)
    concept_name: Mapped[str | None] = mapped_column(Text)
    remediation_timestamp: Mapped[float] = mapped_column(Float, nullable=False)
    remediation_end_timestamp: Mapped[float | None] = mapped_column(Float)
    ai_explanation: Mapped[str] = mapped_column(Text, nullable=False)

    follow_up_question: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    follow_up_answered: Mapped[bool] = mapped_column(Boolean, default=False)
    follow_up_correct: Mapped[bool | None] = mapped_column(Boolean)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_remediation_learner_lecture", "learner_id", "lecture_id"),
    )


class LearnerStatsRow(Base):
    """Wagering stats per learner."""

    __tablename__ = "learner_stats"

    learner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    experience_points: Mapped[int] = mapped_column(Integer, default=0)
    coins: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    total_gambles: Mapped[int] = mapped_column(Integer, default=0)
    successful_gambles: Mapped[int] = mapped_column(Integer, default=0)
    biggest_win: Mapped[int] = mapped_column(Integer, default=0)
    biggest_loss: Mapped[int] = mapped_column(Integer, default=0)
    last_activity_date: Mapped[date | None] = mapped_column(Date)
    confidence_accuracy: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
