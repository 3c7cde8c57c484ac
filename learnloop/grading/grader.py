"""
Answer grading dispatch.

Multiple choice is graded locally by exact match. Short answers and coding
answers go to their collaborators under a deadline; any collaborator failure
degrades to the non-penalizing default (correct, no grade, flagged for
manual review).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from learnloop.errors import ServiceError
from learnloop.models import CodingProblem, MultipleChoice, Question, ShortAnswer

from .coding import CodingGrader
from .short_answer import ShortAnswerGrader
from .validation import validate_submission


@dataclass(frozen=True)
class GradingOutcome:
    """What the scoring engine needs from a graded answer."""

    correct: bool
    grade: int | None = None
    feedback: str = ""
    needs_review: bool = False

    @property
    def score_input(self) -> bool | int:
        """Exact outcomes score on correctness, graded outcomes on the grade."""
        return self.correct if self.grade is None else self.grade

    @classmethod
    def fallback(cls, reason: str) -> GradingOutcome:
        return cls(correct=True, grade=None, feedback=reason, needs_review=True)


class AnswerGrader:
    """Grades an answer against its question variant."""

    def __init__(
        self,
        short_answer: ShortAnswerGrader | None = None,
        coding: CodingGrader | None = None,
        timeout_seconds: float = 30.0,
        pass_grade: int = 70,
    ):
        self.short_answer = short_answer
        self.coding = coding
        self.timeout_seconds = timeout_seconds
        self.pass_grade = pass_grade

    def validate(self, question: Question, answer: str) -> None:
        """Raise ValidationError before any network call."""
        validate_submission(question, answer)

    async def grade(self, question: Question, answer: str) -> GradingOutcome:
        """
        Grade a validated answer.

        Never raises for collaborator failures; see GradingOutcome.fallback.
        """
        if isinstance(question, MultipleChoice):
            return GradingOutcome(correct=question.is_correct(answer))

        if isinstance(question, ShortAnswer):
            if self.short_answer is None:
                return self._fallback("no short-answer grader configured")
            call = self.short_answer.grade(question.question, question.expected_answer, answer)
        elif isinstance(question, CodingProblem):
            if self.coding is None:
                return self._fallback("no coding grader configured")
            call = self.coding.grade(question, answer)
        else:
            raise TypeError(f"Unsupported question type: {type(question).__name__}")

        try:
            result = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return self._fallback(f"grading timed out after {self.timeout_seconds}s")
        except ServiceError as e:
            return self._fallback(f"{type(e).__name__}: {e}")

        return GradingOutcome(
            correct=result.grade >= self.pass_grade,
            grade=result.grade,
            feedback=result.feedback,
        )

    @staticmethod
    def _fallback(reason: str) -> GradingOutcome:
        logger.warning(f"Grading fallback (non-penalizing, flagged for review): {reason}")
        return GradingOutcome.fallback(reason)
