"""Input checks that run before any grading call leaves the process."""
from __future__ import annotations

import re

from learnloop.errors import ValidationError
from learnloop.models import CodingProblem, Question, ShortAnswer

MAX_ANSWER_LENGTH = 5000
MAX_EXPECTED_ANSWER_LENGTH = 5000
MAX_QUESTION_LENGTH = 1000
MAX_CODE_LENGTH = 10000

# C0 controls except \t \n \r, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def check_text(value: str, field_name: str, max_length: int, required: bool = True) -> str:
    """
    Validate one text field.

    Raises:
        ValidationError: If the field is empty (when required), too long or
            contains control characters
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    if required and not value.strip():
        raise ValidationError(f"{field_name} must not be empty")
    if len(value) > max_length:
        raise ValidationError(f"{field_name} exceeds maximum length of {max_length:,} characters")
    if _CONTROL_CHARS.search(value):
        raise ValidationError(f"{field_name} contains control characters")
    return value


def validate_submission(question: Question, answer: str) -> None:
    """
    Validate a learner's answer before grading.

    Short answers also check the question and expected answer, since all three
    are forwarded to the grading collaborator.
    """
    if isinstance(question, CodingProblem):
        check_text(answer, "studentCode", MAX_CODE_LENGTH)
        return

    check_text(answer, "studentAnswer", MAX_ANSWER_LENGTH)
    if isinstance(question, ShortAnswer):
        check_text(question.question, "question", MAX_QUESTION_LENGTH)
        check_text(question.expected_answer, "expectedAnswer", MAX_EXPECTED_ANSWER_LENGTH)
