"""
Answer grading.

Components:
- AnswerGrader: dispatch on the question variant with a non-penalizing fallback
- AIShortAnswerGrader: 0-100 short-answer grades via the AI gateway
- AICodingGrader: component-based coding grades via the AI gateway
- validate_submission: length and control-character checks
"""

from .coding import AICodingGrader, CodingGrader, CodingGradeResult
from .grader import AnswerGrader, GradingOutcome
from .short_answer import AIShortAnswerGrader, GradeResult, ShortAnswerGrader
from .validation import validate_submission

__all__ = [
    "AnswerGrader",
    "GradingOutcome",
    "ShortAnswerGrader",
    "AIShortAnswerGrader",
    "GradeResult",
    "CodingGrader",
    "AICodingGrader",
    "CodingGradeResult",
    "validate_submission",
]
