"""
Remediation Orchestrator.

On an incorrect pause-point answer:
1. detect the misconception (external, bounded by a timeout)
2. generate an explanation and follow-up question (external, bounded)
3. persist a RemediationRecord before anything reaches the learner

Any failure aborts the whole path. The caller receives None and continues as
though the learner had declined remediation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from loguru import logger

from learnloop.db.stores import RemediationStore
from learnloop.errors import PersistenceError, RemediationServiceError, ServiceError
from learnloop.models import Lecture, PausePoint, RemediationRecord

from .collaborators import (
    MisconceptionDetector,
    MisconceptionReport,
    MisconceptionRequest,
    RemediationGenerator,
    RemediationRequest,
)

T = TypeVar("T")


def remediation_range(
    report: MisconceptionReport,
    lecture: Lecture,
    pause_point: PausePoint,
    resume_position: float,
) -> tuple[float, float]:
    """
    Resolve the segment to replay, clamped to [0, resume_position].

    Missing timestamps come from the concept map entry named in the report;
    a missing or inverted end falls back to the pause point's timestamp.
    """
    segment = next(
        (c for c in lecture.concept_map if report.concept_name and c.concept_name == report.concept_name),
        None,
    )
    start = report.recommended_timestamp
    if start is None:
        start = segment.start_timestamp if segment else 0.0
    end = report.end_timestamp
    if end is None and segment is not None:
        end = segment.end_timestamp

    start = min(max(0.0, start), resume_position)
    if end is None or end <= start:
        end = pause_point.timestamp
    end = min(max(start, end), resume_position)
    return start, end


class RemediationOrchestrator:
    """Runs the detect, explain, persist sequence for one incorrect answer."""

    def __init__(
        self,
        detector: MisconceptionDetector,
        generator: RemediationGenerator,
        store: RemediationStore,
        step_timeout: float = 20.0,
    ):
        self.detector = detector
        self.generator = generator
        self.store = store
        self.step_timeout = step_timeout

    async def _step(self, name: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            raise RemediationServiceError(f"{name} timed out after {self.step_timeout}s") from e
        except (ServiceError, PersistenceError) as e:
            raise RemediationServiceError(f"{name} failed: {e}") from e

    async def remediate(
        self,
        learner_id: str,
        lecture: Lecture,
        pause_point: PausePoint,
        student_answer: str,
        resume_position: float | None = None,
        transcript_context: str | None = None,
    ) -> RemediationRecord | None:
        """
        Produce and persist remediation for an incorrect answer.

        Args:
            learner_id: Learner who answered
            lecture: Lecture being watched (supplies the concept map)
            pause_point: Pause point that was answered incorrectly
            student_answer: The learner's answer
            resume_position: Where playback will resume; the replay range never
                extends past it (defaults to the pause point timestamp)
            transcript_context: Optional transcript excerpt for the detector

        Returns:
            The persisted record, or None if any step failed
        """
        resume = pause_point.timestamp if resume_position is None else resume_position
        try:
            return await self._run(learner_id, lecture, pause_point, student_answer, resume, transcript_context)
        except RemediationServiceError as e:
            logger.warning(f"Remediation aborted for {learner_id} at {pause_point.id}: {e}")
            return None
        except Exception:  # Intentionally broad - remediation is never fatal to the lecture
            logger.exception(f"Remediation crashed for {learner_id} at {pause_point.id}")
            return None

    async def _run(
        self,
        learner_id: str,
        lecture: Lecture,
        pause_point: PausePoint,
        student_answer: str,
        resume_position: float,
        transcript_context: str | None,
    ) -> RemediationRecord:
        question = pause_point.question
        correct_answer = question.correct_option

        report = await self._step(
            "misconception detection",
            self.detector.detect(
                MisconceptionRequest(
                    lecture_id=lecture.id,
                    pause_point_id=pause_point.id,
                    question_text=question.question,
                    correct_answer=correct_answer,
                    student_answer=student_answer,
                    question_type=question.type,
                    concept_map=tuple(lecture.concept_map),
                    transcript_context=transcript_context,
                )
            ),
        )

        content = await self._step(
            "remediation generation",
            self.generator.generate(
                RemediationRequest(
                    misconception=report.misconception,
                    missing_concept=report.missing_concept,
                    root_cause=report.root_cause,
                    original_question=question.question,
                    correct_answer=correct_answer,
                    student_answer=student_answer,
                )
            ),
        )

        start, end = remediation_range(report, lecture, pause_point, resume_position)
        record = RemediationRecord(
            learner_id=learner_id,
            lecture_id=lecture.id,
            pause_point_id=pause_point.id,
            misconception=report.misconception,
            missing_concept=report.missing_concept,
            root_cause=report.root_cause,
            concept_name=report.concept_name,
            start_timestamp=start,
            end_timestamp=end,
            explanation=content.explanation,
            follow_up_question=content.follow_up_question,
        )

        await self._step("remediation persistence", self.store.add_remediation(record))
        logger.info(
            f"Remediation ready for {learner_id} at {pause_point.id}: replay {start:.1f}s-{end:.1f}s, "
            f"follow-up={'yes' if record.follow_up_question else 'no'}"
        )
        return record
