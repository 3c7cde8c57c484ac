"""
Confidence Scoring Engine.

Converts a pre-committed confidence level, an outcome and a base reward into
a signed point delta.

Exact-match outcomes (multiple choice):
    correct                      +round(base * multiplier)
    incorrect, not_sure          -round(base * 0.25)
    incorrect, maybe              0
    incorrect, pretty/absolutely -round(base * multiplier * 0.5)

Graded outcomes (0-100, correct when grade >= 70):
    grade >= 70                  +round(base * multiplier * grade / 100)
    40 <= grade < 70             +round(base * 0.5 * grade / 100)   no wager
    grade < 40                   -round(base * multiplier * 0.3)

The engine is pure: callers persist the Attempt and update totals.
"""
from __future__ import annotations

from dataclasses import dataclass

from learnloop.errors import InvalidGrade, ValidationError
from learnloop.models import ConfidenceLevel
from learnloop.utils import round_half_up


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of a single wager."""

    points: int
    coins: int
    correct: bool
    confidence: ConfidenceLevel
    multiplier: float
    grade: int | None = None

    @property
    def is_penalty(self) -> bool:
        return self.points < 0


class ConfidenceScoringEngine:
    """Pure scoring of confidence wagers."""

    def __init__(self, pass_grade: int = 70, partial_grade: int = 40):
        """
        Initialize the engine.

        Args:
            pass_grade: Minimum grade treated as correct
            partial_grade: Minimum grade that earns unwagered partial credit
        """
        if not 0 <= partial_grade <= pass_grade <= 100:
            raise ValueError("expected 0 <= partial_grade <= pass_grade <= 100")
        self.pass_grade = pass_grade
        self.partial_grade = partial_grade

    def score(
        self,
        confidence: ConfidenceLevel | str | None,
        outcome: bool | int | float,
        base_reward: int,
    ) -> int:
        """
        Signed point delta for a wager.

        Args:
            confidence: Pre-committed confidence level
            outcome: True/False for exact-match questions, or a 0-100 grade
            base_reward: Base points for the item

        Returns:
            Points to add to the learner's total (may be negative)
        """
        return self.evaluate(confidence, outcome, base_reward).points

    def evaluate(
        self,
        confidence: ConfidenceLevel | str | None,
        outcome: bool | int | float,
        base_reward: int,
    ) -> ScoreResult:
        """Like score(), but also reports correctness, coins and multiplier."""
        level = ConfidenceLevel.parse(confidence)
        if base_reward < 0:
            raise ValidationError(f"base reward must be non-negative, got {base_reward}")

        # bool is an int subclass; check it first
        if isinstance(outcome, bool):
            return self._score_exact(level, outcome, base_reward)
        return self._score_graded(level, outcome, base_reward)

    def _score_exact(self, level: ConfidenceLevel, correct: bool, base_reward: int) -> ScoreResult:
        multiplier = level.multiplier

        if correct:
            wager = base_reward * multiplier
            return self._result(round_half_up(wager), wager, True, level)

        if level is ConfidenceLevel.NOT_SURE:
            wager = base_reward * 0.25
        elif level is ConfidenceLevel.MAYBE:
            wager = 0.0
        else:
            wager = base_reward * multiplier * 0.5
        return self._result(-round_half_up(wager), -wager, False, level)

    def _score_graded(self, level: ConfidenceLevel, grade: int | float, base_reward: int) -> ScoreResult:
        if not isinstance(grade, (int, float)) or not 0 <= grade <= 100:
            raise InvalidGrade(f"grade must be within 0-100, got {grade!r}")

        multiplier = level.multiplier
        if grade >= self.pass_grade:
            wager = base_reward * multiplier * grade / 100
            points, signed = round_half_up(wager), wager
        elif grade >= self.partial_grade:
            wager = base_reward * 0.5 * grade / 100
            points, signed = round_half_up(wager), wager
        else:
            wager = base_reward * multiplier * 0.3
            points, signed = -round_half_up(wager), -wager

        return self._result(points, signed, grade >= self.pass_grade, level, grade=round_half_up(grade))

    @staticmethod
    def _result(
        points: int,
        signed_wager: float,
        correct: bool,
        level: ConfidenceLevel,
        grade: int | None = None,
    ) -> ScoreResult:
        # coins are half the wager, rounded on their own
        half = abs(signed_wager) / 2
        coins = round_half_up(half) if signed_wager >= 0 else -round_half_up(half)
        return ScoreResult(
            points=points,
            coins=coins,
            correct=correct,
            confidence=level,
            multiplier=level.multiplier,
            grade=grade,
        )
