"""
Learner wagering statistics.

Tracks experience, coins, streaks and how often each confidence level turns
out to be right, so a learner can see whether "absolutely sure" actually
means anything for them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from learnloop.models import ConfidenceLevel
from learnloop.scoring import ScoreResult

XP_PER_LEVEL = 100


@dataclass
class ConfidenceTally:
    correct: int = 0
    total: int = 0

    @property
    def accuracy(self) -> float | None:
        if self.total == 0:
            return None
        return self.correct / self.total


def _empty_tallies() -> dict[ConfidenceLevel, ConfidenceTally]:
    return {level: ConfidenceTally() for level in ConfidenceLevel}


@dataclass
class LearnerStats:
    """Aggregate wagering stats for one learner."""

    learner_id: str
    experience_points: int = 0
    coins: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    total_gambles: int = 0
    successful_gambles: int = 0
    biggest_win: int = 0
    biggest_loss: int = 0
    last_activity_date: date | None = None
    confidence_accuracy: dict[ConfidenceLevel, ConfidenceTally] = field(default_factory=_empty_tallies)

    @property
    def level(self) -> int:
        return self.experience_points // XP_PER_LEVEL + 1

    def apply(self, result: ScoreResult, today: date | None = None) -> None:
        """Fold one scored attempt into the totals."""
        self.experience_points = max(0, self.experience_points + result.points)
        self.coins = max(0, self.coins + result.coins)

        if result.correct:
            self.current_streak += 1
            self.longest_streak = max(self.longest_streak, self.current_streak)
            self.successful_gambles += 1
            self.biggest_win = max(self.biggest_win, result.points)
        else:
            self.current_streak = 0
            self.biggest_loss = max(self.biggest_loss, abs(min(result.points, 0)))
        self.total_gambles += 1

        tally = self.confidence_accuracy.setdefault(result.confidence, ConfidenceTally())
        tally.total += 1
        if result.correct:
            tally.correct += 1

        self.last_activity_date = today or date.today()

    def calibration(self) -> dict[ConfidenceLevel, float | None]:
        """Observed accuracy per confidence level (None where unused)."""
        return {level: tally.accuracy for level, tally in self.confidence_accuracy.items()}

    def overconfident_levels(self, threshold: float = 0.6, min_samples: int = 5) -> list[ConfidenceLevel]:
        """High-stakes levels whose hit rate falls below `threshold`."""
        flagged = []
        for level in (ConfidenceLevel.PRETTY_SURE, ConfidenceLevel.ABSOLUTELY_SURE):
            tally = self.confidence_accuracy.get(level)
            if tally and tally.total >= min_samples and tally.accuracy < threshold:
                flagged.append(level)
        return flagged

    def accuracy_to_dict(self) -> dict[str, dict[str, int]]:
        return {
            level.value: {"correct": tally.correct, "total": tally.total}
            for level, tally in self.confidence_accuracy.items()
        }

    @staticmethod
    def accuracy_from_dict(data: dict[str, dict[str, int]] | None) -> dict[ConfidenceLevel, ConfidenceTally]:
        tallies = _empty_tallies()
        for key, value in (data or {}).items():
            level = ConfidenceLevel.parse(key)
            tallies[level] = ConfidenceTally(correct=int(value.get("correct", 0)), total=int(value.get("total", 0)))
        return tallies
