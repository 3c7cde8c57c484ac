"""
learnloop: adaptive assessment engine.

Components:
- scoring: Confidence-wagered points and coins
- scheduler: SM-2 spaced repetition
- grading: Multiple-choice, short-answer and coding grading with fallbacks
- remediation: Misconception detection and targeted review segments
- playback / lecture: Skip-blocking gate and the pause-point state machine
- practice: Next-item selection and practice sessions
- feed: Deduplicated live question feed
- db: In-memory and SQLAlchemy stores
"""

__version__ = "1.0.0"

from learnloop.errors import LearnLoopError, PersistenceError, ServiceError, ValidationError
from learnloop.models import ConfidenceLevel, Lecture, PausePoint, PracticeItem
from learnloop.scoring import ConfidenceScoringEngine, ScoreResult

__all__ = [
    "__version__",
    "ConfidenceLevel",
    "ConfidenceScoringEngine",
    "Lecture",
    "LearnLoopError",
    "PausePoint",
    "PersistenceError",
    "PracticeItem",
    "ScoreResult",
    "ServiceError",
    "ValidationError",
]
