"""
Pause-Point State Machine.

Sequences one learner's pass through a recorded lecture:

    PLAYING -> PAUSED_FOR_QUESTION -> GRADING -> RESULT_SHOWN
        correct / no remediation:  continue -> PLAYING | LECTURE_COMPLETE
        incorrect + remediation:   RESULT_SHOWN -> REMEDIATION_OFFERED
            accept  -> REMEDIATION_PLAYING -> FOLLOWUP_QUESTION -> FOLLOWUP_RESULT -> PLAYING
                       (no follow-up: REMEDIATION_PLAYING -> PLAYING)
            decline -> PLAYING

The machine never writes the video position itself; every move goes through
the PlaybackGateController. Time updates arriving in any state other than
PLAYING or REMEDIATION_PLAYING are ignored, which is what keeps a pause point
from re-triggering while a question is active or being graded.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from learnloop.config import Settings, get_settings
from learnloop.db.stores import LectureStore
from learnloop.errors import InvalidTransition, PersistenceError, ValidationError
from learnloop.grading import AnswerGrader
from learnloop.models import (
    Attempt,
    ConfidenceLevel,
    Lecture,
    LectureProgress,
    PausePoint,
    PausePointResponse,
    RemediationRecord,
    utcnow,
)
from learnloop.playback import PlaybackGateController, ProgressHeartbeat
from learnloop.remediation import RemediationOrchestrator
from learnloop.scheduler import SpacedRepetitionScheduler
from learnloop.scoring import ConfidenceScoringEngine


class LectureState(str, Enum):
    PLAYING = "playing"
    PAUSED_FOR_QUESTION = "paused_for_question"
    GRADING = "grading"
    RESULT_SHOWN = "result_shown"
    REMEDIATION_OFFERED = "remediation_offered"
    REMEDIATION_PLAYING = "remediation_playing"
    FOLLOWUP_QUESTION = "followup_question"
    FOLLOWUP_RESULT = "followup_result"
    LECTURE_COMPLETE = "lecture_complete"


StateListener = Callable[[LectureState, LectureState], None]


@dataclass(frozen=True)
class PausePointResult:
    """What the learner sees after a pause-point answer is graded."""

    pause_point_id: str
    correct: bool
    points: int
    total_points: int
    confidence: ConfidenceLevel
    grade: int | None = None
    feedback: str = ""
    needs_review: bool = False
    correct_answer: str = ""
    explanation: str | None = None


@dataclass(frozen=True)
class FollowUpResult:
    correct: bool
    bonus_points: int
    total_points: int
    correct_answer: str
    explanation: str | None = None


class PausePointStateMachine:
    """Drives one learner through one lecture's pause points."""

    def __init__(
        self,
        lecture: Lecture,
        learner_id: str,
        store: LectureStore,
        *,
        grader: AnswerGrader | None = None,
        scoring: ConfidenceScoringEngine | None = None,
        scheduler: SpacedRepetitionScheduler | None = None,
        orchestrator: RemediationOrchestrator | None = None,
        progress: LectureProgress | None = None,
        pause_window: float = 0.5,
        followup_bonus: int = 50,
        heartbeat_interval: float | None = None,
    ):
        """
        Initialize the machine.

        Args:
            lecture: Lecture with its authored pause points
            learner_id: Learner watching
            store: Progress, attempt and remediation persistence
            grader: Answer grader (multiple choice only if None)
            scoring: Scoring engine (defaults if None)
            scheduler: Spaced-repetition scheduler, called once per graded answer
            orchestrator: Remediation orchestrator (no remediation if None)
            progress: Saved progress to resume from
            pause_window: Overshoot past a pause point that pauses in place; larger
                overshoots snap back to the pause point's timestamp
            followup_bonus: Fixed bonus for a correct follow-up answer
            heartbeat_interval: Periodic save interval; None disables the heartbeat
        """
        self.lecture = lecture
        self.learner_id = learner_id
        self.store = store
        self.grader = grader or AnswerGrader()
        self.scoring = scoring or ConfidenceScoringEngine()
        self.scheduler = scheduler
        self.orchestrator = orchestrator
        self.progress = progress or LectureProgress(learner_id=learner_id, lecture_id=lecture.id)
        self.pause_window = pause_window
        self.followup_bonus = followup_bonus

        self.gate = PlaybackGateController(lecture.duration, start_position=self.progress.video_position)
        self.gate.add_time_listener(self.on_time_update)

        self.state = LectureState.PLAYING
        self.active_pause_point: PausePoint | None = None
        self.resume_position: float | None = None
        self.last_result: PausePointResult | None = None
        self.remediation: RemediationRecord | None = None
        self.followup_result: FollowUpResult | None = None

        self._question_started: float | None = None
        self._remediation_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._state_listeners: list[StateListener] = []
        self._heartbeat = (
            ProgressHeartbeat(save=self.save_progress, interval_seconds=heartbeat_interval)
            if heartbeat_interval
            else None
        )

    @classmethod
    async def load(
        cls,
        lecture: Lecture,
        learner_id: str,
        store: LectureStore,
        **kwargs: Any,
    ) -> PausePointStateMachine:
        """Build a machine resumed from the learner's saved progress."""
        try:
            progress = await store.get_progress(learner_id, lecture.id)
        except PersistenceError as e:
            logger.warning(f"Could not load progress for {learner_id}/{lecture.id}, starting fresh: {e}")
            progress = None
        return cls(lecture, learner_id, store, progress=progress, **kwargs)

    # =========================================================================
    # State
    # =========================================================================

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, new: LectureState) -> None:
        old, self.state = self.state, new
        if old is not new:
            logger.debug(f"[{self.learner_id}/{self.lecture.id}] {old.value} -> {new.value}")
            for listener in list(self._state_listeners):
                listener(old, new)

    def _require(self, *states: LectureState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"Cannot do that in state {self.state.value} (expected {allowed})")

    @property
    def all_answered(self) -> bool:
        return all(self.progress.is_answered(p.id) for p in self.lecture.pause_points)

    @property
    def remediation_pending(self) -> bool:
        return self._remediation_task is not None and not self._remediation_task.done()

    def next_pause_point(self) -> PausePoint | None:
        """Earliest unanswered pause point."""
        for point in self.lecture.pause_points:
            if not self.progress.is_answered(point.id):
                return point
        return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Begin (or resume) playback."""
        if self.progress.completed_at is not None or (self.lecture.pause_points and self.all_answered):
            self._complete()
            await self.wait_idle()
            return
        self._set_state(LectureState.PLAYING)
        self.gate.play()
        if self._heartbeat is not None:
            self._heartbeat.start()
        # resuming inside a trigger window
        self.on_time_update(self.gate.current_time, self.gate.current_time, False)

    async def close(self) -> None:
        """Stop background work and save a final time."""
        if self.remediation_pending:
            self._remediation_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._remediation_task
        if self._heartbeat is not None and self._heartbeat.status.is_running:
            await self._heartbeat.stop(final_flush=False)
        await self.wait_idle()
        await self._save_quietly()

    async def wait_idle(self) -> None:
        """Wait for fire-and-forget saves to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Time Updates (gate listener)
    # =========================================================================

    def _triggered_pause_point(self, current: float) -> PausePoint | None:
        """Earliest unanswered pause point at or behind `current`."""
        point = self.next_pause_point()
        if point is not None and point.timestamp <= current:
            return point
        return None

    def on_time_update(self, previous: float, current: float, continuous: bool) -> None:
        if self.state is LectureState.REMEDIATION_PLAYING:
            if self.remediation is not None and current >= self.remediation.end_timestamp:
                self._finish_remediation_segment()
            return

        if self.state is not LectureState.PLAYING or self.active_pause_point is not None:
            return

        point = self._triggered_pause_point(current)
        if point is not None:
            self._pause_for(point)
        elif self.gate.at_end and self.all_answered:
            self._complete()

    def _pause_for(self, point: PausePoint) -> None:
        self.gate.pause()
        self.active_pause_point = point
        if self.gate.current_time >= point.timestamp + self.pause_window:
            # overshot by a coarse tick or a resumed position; later points wait their turn
            self.gate.privileged_seek(point.timestamp)
        self.resume_position = self.gate.current_time
        self.last_result = None
        self.remediation = None
        self.followup_result = None
        self._question_started = time.monotonic()
        logger.info(f"Pause point {point.id} triggered at {self.gate.current_time:.1f}s")
        self._set_state(LectureState.PAUSED_FOR_QUESTION)

    # =========================================================================
    # Answering
    # =========================================================================

    async def submit_answer(self, answer: str, confidence: ConfidenceLevel | str | None) -> PausePointResult:
        """
        Grade the active pause point's answer.

        Raises:
            InvalidTransition: If no question is waiting for an answer
                (including while a previous submission is grading)
            ValidationError: If the confidence level or answer is missing or invalid
        """
        self._require(LectureState.PAUSED_FOR_QUESTION)
        point = self.active_pause_point
        level = ConfidenceLevel.parse(confidence)
        if not answer or not answer.strip():
            raise ValidationError("Please provide an answer")
        self.grader.validate(point.question, answer)

        self._set_state(LectureState.GRADING)
        try:
            outcome = await self.grader.grade(point.question, answer)
            score = self.scoring.evaluate(level, outcome.score_input, point.base_reward)
        except Exception:  # Intentionally broad - reopen the question before re-raising
            self._set_state(LectureState.PAUSED_FOR_QUESTION)
            raise

        self.progress.record_response(
            point.id,
            PausePointResponse(
                answer=answer,
                correct=score.correct,
                grade=score.grade,
                confidence=level,
                points=score.points,
                needs_review=outcome.needs_review,
            ),
        )
        self.progress.advance_position(self.gate.max_allowed_time)

        result = PausePointResult(
            pause_point_id=point.id,
            correct=score.correct,
            points=score.points,
            total_points=self.progress.total_points_earned,
            confidence=level,
            grade=score.grade,
            feedback=outcome.feedback,
            needs_review=outcome.needs_review,
            correct_answer=point.question.correct_option,
            explanation=point.question.explanation,
        )
        self.last_result = result
        self._set_state(LectureState.RESULT_SHOWN)
        logger.info(
            f"Pause point {point.id}: correct={score.correct} points={score.points:+d} "
            f"total={self.progress.total_points_earned}"
        )

        if not score.correct and self.orchestrator is not None:
            self._remediation_task = asyncio.create_task(self._run_remediation(point, answer))

        elapsed = time.monotonic() - self._question_started if self._question_started else 0.0
        await self._persist_answer(
            point, answer, level, score.correct, score.points, score.grade, elapsed, outcome.needs_review
        )
        return result

    async def _persist_answer(
        self,
        point: PausePoint,
        answer: str,
        level: ConfidenceLevel,
        correct: bool,
        points: int,
        grade: int | None,
        elapsed: float,
        needs_review: bool,
    ) -> None:
        try:
            await self.store.add_attempt(
                Attempt(
                    learner_id=self.learner_id,
                    item_id=point.id,
                    lecture_id=self.lecture.id,
                    confidence=level,
                    answer=answer,
                    correct=correct,
                    grade=grade,
                    points=points,
                    elapsed_seconds=elapsed,
                    needs_review=needs_review,
                )
            )
        except PersistenceError as e:
            logger.warning(f"Attempt for {point.id} not saved: {e}")

        if self.scheduler is not None:
            try:
                await self.scheduler.record_review(self.learner_id, point.id, correct)
            except PersistenceError as e:
                logger.warning(f"Review schedule for {point.id} not saved: {e}")

        await self._save_quietly()

    # =========================================================================
    # Continue / Complete
    # =========================================================================

    async def continue_lecture(self) -> None:
        """
        Leave the result (or follow-up result) screen.

        If remediation is still loading it is cancelled and treated as declined.
        """
        self._require(LectureState.RESULT_SHOWN, LectureState.REMEDIATION_OFFERED, LectureState.FOLLOWUP_RESULT)
        if self.remediation_pending:
            logger.info("Continuing before remediation was ready; cancelling it")
            self._remediation_task.cancel()
        self._resume()
        await self.wait_idle()

    def _resume(self) -> None:
        resume = self.resume_position
        self.active_pause_point = None
        self._question_started = None
        self._remediation_task = None

        if self.all_answered:
            self._complete()
        else:
            self._set_state(LectureState.PLAYING)
            self.gate.play()
        if resume is not None and self.gate.current_time != resume:
            self.gate.privileged_seek(resume)
        self.resume_position = None

    def _complete(self) -> None:
        if self.state is LectureState.LECTURE_COMPLETE:
            return
        self.gate.pause()
        if self.progress.completed_at is None:
            self.progress.completed_at = utcnow()
        self._set_state(LectureState.LECTURE_COMPLETE)
        logger.info(
            f"Lecture {self.lecture.id} complete for {self.learner_id}: "
            f"{self.progress.total_points_earned} points"
        )
        if self._heartbeat is not None and self._heartbeat.status.is_running:
            self._spawn(self._heartbeat.stop(final_flush=False))
        self._spawn(self._save_quietly())

    # =========================================================================
    # Remediation
    # =========================================================================

    async def _run_remediation(self, point: PausePoint, answer: str) -> RemediationRecord | None:
        record = await self.orchestrator.remediate(
            self.learner_id,
            self.lecture,
            point,
            answer,
            resume_position=self.resume_position,
        )
        if record is None:
            logger.info(f"No remediation for {point.id}; continuing normally")
            return None
        if self.state is not LectureState.RESULT_SHOWN or self.active_pause_point is not point:
            return record
        self.remediation = record
        self._set_state(LectureState.REMEDIATION_OFFERED)
        return record

    async def wait_for_remediation(self) -> RemediationRecord | None:
        """Wait until remediation is offered or abandoned."""
        task = self._remediation_task
        if task is None:
            return self.remediation
        if not task.done():
            await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    def accept_remediation(self) -> None:
        """Jump back to the remediation segment and play it."""
        self._require(LectureState.REMEDIATION_OFFERED)
        record = self.remediation
        logger.info(
            f"Remediation accepted for {record.pause_point_id}: "
            f"{record.start_timestamp:.1f}s-{record.end_timestamp:.1f}s"
        )
        self._set_state(LectureState.REMEDIATION_PLAYING)
        self.gate.privileged_seek(record.start_timestamp)
        if self.state is LectureState.REMEDIATION_PLAYING:
            self.gate.play()

    async def decline_remediation(self) -> None:
        """Skip remediation; the record stays unresolved."""
        self._require(LectureState.REMEDIATION_OFFERED)
        logger.info(f"Remediation declined for {self.remediation.pause_point_id}")
        self._resume()
        await self.wait_idle()

    def _finish_remediation_segment(self) -> None:
        self.gate.pause()
        record = self.remediation
        if record.follow_up_question is not None:
            self._set_state(LectureState.FOLLOWUP_QUESTION)
            return
        record.resolve()
        self._spawn(self._update_remediation(record))
        self._resume()

    async def answer_followup(self, answer: str) -> FollowUpResult:
        """Grade the follow-up by exact match; no wager, fixed bonus."""
        self._require(LectureState.FOLLOWUP_QUESTION)
        if not answer or not answer.strip():
            raise ValidationError("Please provide an answer")

        record = self.remediation
        question = record.follow_up_question
        correct = question.is_correct(answer)
        bonus = self.followup_bonus if correct else 0
        if bonus:
            self.progress.add_points(bonus)
        record.resolve(follow_up_correct=correct)

        result = FollowUpResult(
            correct=correct,
            bonus_points=bonus,
            total_points=self.progress.total_points_earned,
            correct_answer=question.correct_option,
            explanation=question.explanation,
        )
        self.followup_result = result
        self._set_state(LectureState.FOLLOWUP_RESULT)
        logger.info(f"Follow-up for {record.pause_point_id}: correct={correct} bonus={bonus}")

        await self._update_remediation(record)
        await self._save_quietly()
        return result

    async def _update_remediation(self, record: RemediationRecord) -> None:
        try:
            await self.store.update_remediation(record)
        except PersistenceError as e:
            logger.warning(f"Remediation {record.id} update not saved: {e}")

    # =========================================================================
    # Persistence
    # =========================================================================

    async def save_progress(self) -> LectureProgress:
        """
        Upsert progress now.

        Raises:
            PersistenceError: If the store write fails
        """
        self.progress.advance_position(self.gate.max_allowed_time)
        return await self.store.upsert_progress(self.progress)

    async def _save_quietly(self) -> None:
        try:
            await self.save_progress()
        except PersistenceError as e:
            logger.warning(f"Progress not saved for {self.learner_id}/{self.lecture.id}; heartbeat will retry: {e}")


def build_state_machine_kwargs(settings: Settings | None = None) -> dict[str, Any]:
    """Timing and scoring options for PausePointStateMachine from settings."""
    settings = settings or get_settings()
    return {
        "scoring": ConfidenceScoringEngine(settings.pass_grade, settings.partial_grade),
        "pause_window": settings.pause_window_seconds,
        "followup_bonus": settings.followup_bonus_points,
        "heartbeat_interval": settings.heartbeat_interval_seconds,
    }
