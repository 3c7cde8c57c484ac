"""
Domain Models.

Question payloads are pydantic models, resolved once at ingestion into a
discriminated variant (multiple choice, short answer, coding). Learner state
(attempts, review records, lecture progress, remediation records) lives in
plain dataclasses that the stores copy in and out.
"""
from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from learnloop.errors import ValidationError


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Confidence Wagering
# =============================================================================


class ConfidenceLevel(str, Enum):
    """Pre-committed confidence that scales both reward and penalty."""

    NOT_SURE = "not_sure"
    MAYBE = "maybe"
    PRETTY_SURE = "pretty_sure"
    ABSOLUTELY_SURE = "absolutely_sure"

    @property
    def multiplier(self) -> float:
        return CONFIDENCE_MULTIPLIERS[self]

    @classmethod
    def parse(cls, value: ConfidenceLevel | str | None) -> ConfidenceLevel:
        """
        Resolve a submitted confidence value.

        Accepts enum members, their string values and the legacy
        low/medium/high/very_high names used by the practice selector.

        Raises:
            ValidationError: If nothing was selected or the value is unknown
        """
        if isinstance(value, cls):
            return value
        if value is None or not str(value).strip():
            raise ValidationError("Please select your confidence level")

        key = str(value).strip().lower()
        key = _CONFIDENCE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(f"Unknown confidence level: {value!r}") from None


CONFIDENCE_MULTIPLIERS: dict[ConfidenceLevel, float] = {
    ConfidenceLevel.NOT_SURE: 0.5,
    ConfidenceLevel.MAYBE: 1.0,
    ConfidenceLevel.PRETTY_SURE: 2.0,
    ConfidenceLevel.ABSOLUTELY_SURE: 3.0,
}

_CONFIDENCE_ALIASES = {
    "low": "not_sure",
    "medium": "maybe",
    "high": "pretty_sure",
    "very_high": "absolutely_sure",
}


# =============================================================================
# Question Variants
# =============================================================================

_OPTION_LETTER = re.compile(r"^\s*([A-Za-z])(?:[.):]|\s|$)")


def _option_letter(text: str) -> str | None:
    match = _OPTION_LETTER.match(text)
    return match.group(1).upper() if match else None


class _QuestionBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, str_strip_whitespace=True)

    question: str = Field(
        min_length=1,
        validation_alias=AliasChoices("question", "questionText", "question_text", "problemStatement"),
    )
    explanation: str | None = None


class MultipleChoice(_QuestionBase):
    """Question graded by exact match against the correct option."""

    type: Literal["multiple_choice"] = "multiple_choice"
    options: list[str] = Field(min_length=2)
    correct_answer: str = Field(
        min_length=1,
        validation_alias=AliasChoices("correct_answer", "correctAnswer"),
    )

    def is_correct(self, answer: str) -> bool:
        """
        Exact-match grading.

        When the key is a bare option letter ("B"), the learner's answer
        matches on its letter prefix ("B. Paris"). Otherwise the stripped
        texts must be identical.
        """
        given = answer.strip()
        expected = self.correct_answer.strip()
        if len(expected) == 1 and expected.isalpha():
            return _option_letter(given) == expected.upper()
        return given == expected

    @property
    def correct_option(self) -> str:
        """The full option text for the correct answer, for display."""
        expected = self.correct_answer.strip()
        if len(expected) == 1 and expected.isalpha():
            for option in self.options:
                if _option_letter(option) == expected.upper():
                    return option
        return expected


class ShortAnswer(_QuestionBase):
    """Free-text question graded 0-100 by the short-answer collaborator."""

    type: Literal["short_answer"] = "short_answer"
    expected_answer: str = Field(
        min_length=1,
        validation_alias=AliasChoices("expected_answer", "expectedAnswer", "correct_answer", "correctAnswer"),
    )

    @property
    def correct_option(self) -> str:
        return self.expected_answer


class CodingProblem(_QuestionBase):
    """Programming exercise graded by the coding collaborator."""

    type: Literal["coding"] = "coding"
    reference_solution: str | None = Field(
        default=None,
        validation_alias=AliasChoices("reference_solution", "expectedSolution", "expected_answer", "expectedAnswer"),
    )
    language: str | None = None
    function_signature: str | None = Field(
        default=None,
        validation_alias=AliasChoices("function_signature", "functionSignature"),
    )

    @property
    def correct_option(self) -> str:
        return self.reference_solution or ""


Question = Annotated[Union[MultipleChoice, ShortAnswer, CodingProblem], Field(discriminator="type")]

_QUESTION_ADAPTER: TypeAdapter[Question] = TypeAdapter(Question)

_TYPE_ALIASES = {
    "mcq": "multiple_choice",
    "multiple-choice": "multiple_choice",
    "short": "short_answer",
    "short-answer": "short_answer",
    "code": "coding",
    "coding_challenge": "coding",
}


def _normalize_question_payload(content: Mapping[str, Any], question_type: str | None = None) -> dict[str, Any]:
    data = dict(content)
    raw_type = data.get("type") or question_type
    if not raw_type:
        if data.get("options"):
            raw_type = "multiple_choice"
        elif any(k in data for k in ("expectedSolution", "reference_solution", "functionSignature", "language")):
            raw_type = "coding"
        else:
            raw_type = "short_answer"
    raw_type = str(raw_type).strip().lower()
    data["type"] = _TYPE_ALIASES.get(raw_type, raw_type)
    return data


def parse_question(content: Mapping[str, Any], question_type: str | None = None) -> Question:
    """
    Resolve an authored question payload into its variant.

    Args:
        content: Question payload (snake_case or camelCase keys)
        question_type: Type stored beside the payload, if any

    Raises:
        ValidationError: If the payload does not describe a valid question
    """
    try:
        return _QUESTION_ADAPTER.validate_python(_normalize_question_payload(content, question_type))
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed question payload: {e}") from e


def _coerce_question_field(data: Any, content_key: str) -> Any:
    """Shared before-validator body: lift `content_key` + `question_type` into `question`."""
    if not isinstance(data, Mapping):
        return data
    data = dict(data)
    question_type = data.pop("question_type", None)
    content = data.pop(content_key, None)
    if "question" not in data and content is not None:
        data["question"] = content
    question = data.get("question")
    if isinstance(question, Mapping):
        data["question"] = _normalize_question_payload(question, question_type)
    return data


class PracticeItem(BaseModel):
    """A standalone practice question with its base reward."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    topic_tags: list[str] = Field(default_factory=list)
    difficulty: str = "medium"
    question: Question
    base_reward: int = Field(default=100, ge=0, validation_alias=AliasChoices("base_reward", "points_reward"))

    @model_validator(mode="before")
    @classmethod
    def _resolve_question(cls, data: Any) -> Any:
        return _coerce_question_field(data, "question_content")


class PausePoint(BaseModel):
    """An authored video timestamp that halts playback for a comprehension check."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    timestamp: float = Field(ge=0, validation_alias=AliasChoices("timestamp", "pause_timestamp"))
    cognitive_load_score: float = Field(default=0.0, ge=0, le=10)
    reason: str | None = None
    question: Question
    order_index: int = 0
    base_reward: int = Field(default=100, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _resolve_question(cls, data: Any) -> Any:
        return _coerce_question_field(data, "question_content")


class ConceptSegment(BaseModel):
    """A span of the lecture that covers one concept."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    concept_name: str
    start_timestamp: float = Field(ge=0)
    end_timestamp: float = Field(ge=0)
    description: str | None = None


class Lecture(BaseModel):
    """A recorded lecture with its pause points in ascending timestamp order."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    title: str = ""
    video_url: str | None = None
    duration: float = Field(default=0.0, ge=0)
    pause_points: list[PausePoint] = Field(default_factory=list)
    concept_map: list[ConceptSegment] = Field(default_factory=list)

    @field_validator("pause_points")
    @classmethod
    def _sort_pause_points(cls, points: list[PausePoint]) -> list[PausePoint]:
        ids = [p.id for p in points]
        if len(ids) != len(set(ids)):
            raise ValueError("pause point ids must be unique")
        return sorted(points, key=lambda p: (p.timestamp, p.order_index))

    def get_pause_point(self, pause_point_id: str) -> PausePoint | None:
        for point in self.pause_points:
            if point.id == pause_point_id:
                return point
        return None


# =============================================================================
# Learner State
# =============================================================================


@dataclass
class Attempt:
    """A single graded answer and its signed point delta."""

    learner_id: str
    item_id: str
    confidence: ConfidenceLevel
    answer: str
    correct: bool
    points: int
    grade: int | None = None
    elapsed_seconds: float = 0.0
    needs_review: bool = False
    lecture_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class SpacedRepetitionRecord:
    """SM-2 review state for one (learner, item) pair."""

    learner_id: str
    item_id: str
    interval_days: int = 1
    ease_factor: float = 2.5
    repetition_number: int = 0
    next_review_date: date | None = None
    last_reviewed_date: date | None = None

    def is_due(self, today: date | None = None) -> bool:
        if self.next_review_date is None:
            return True
        return self.next_review_date <= (today or date.today())


@dataclass
class PausePointResponse:
    """What the learner submitted at a pause point and what it earned."""

    answer: str
    correct: bool
    confidence: ConfidenceLevel
    points: int
    grade: int | None = None
    needs_review: bool = False
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "correct": self.correct,
            "grade": self.grade,
            "confidence": self.confidence.value,
            "points": self.points,
            "needs_review": self.needs_review,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PausePointResponse:
        return cls(
            answer=data.get("answer", ""),
            correct=bool(data.get("correct", False)),
            grade=data.get("grade"),
            confidence=ConfidenceLevel.parse(data.get("confidence") or ConfidenceLevel.MAYBE),
            points=int(data.get("points", 0)),
            needs_review=bool(data.get("needs_review", False)),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else utcnow(),
        )


@dataclass
class LectureProgress:
    """Per-learner progress through one lecture."""

    learner_id: str
    lecture_id: str
    video_position: float = 0.0
    completed_pause_points: set[str] = field(default_factory=set)
    responses: dict[str, PausePointResponse] = field(default_factory=dict)
    total_points_earned: int = 0
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None

    def is_answered(self, pause_point_id: str) -> bool:
        return pause_point_id in self.completed_pause_points

    def add_points(self, points: int) -> int:
        """Apply a signed delta; the reported total never drops below zero."""
        self.total_points_earned = max(0, self.total_points_earned + points)
        return self.total_points_earned

    def record_response(self, pause_point_id: str, response: PausePointResponse) -> None:
        self.responses[pause_point_id] = response
        self.completed_pause_points.add(pause_point_id)
        self.add_points(response.points)

    def advance_position(self, position: float) -> None:
        self.video_position = max(self.video_position, position)


def merge_progress(existing: LectureProgress, incoming: LectureProgress) -> LectureProgress:
    """
    Reconcile two writes for the same (learner, lecture).

    Monotonic fields only move forward: the furthest position wins, answered
    pause points and responses are unioned, and the earliest completion time
    is kept. The point total is taken from the incoming write.
    """
    responses = dict(existing.responses)
    responses.update(incoming.responses)

    completed_at = existing.completed_at or incoming.completed_at
    if existing.completed_at and incoming.completed_at:
        completed_at = min(existing.completed_at, incoming.completed_at)

    return replace(
        incoming,
        video_position=max(existing.video_position, incoming.video_position),
        completed_pause_points=existing.completed_pause_points | incoming.completed_pause_points,
        responses=responses,
        started_at=min(existing.started_at, incoming.started_at),
        completed_at=completed_at,
    )


@dataclass
class RemediationRecord:
    """One detect-explain-retest cycle triggered by an incorrect answer."""

    learner_id: str
    lecture_id: str
    pause_point_id: str
    misconception: str
    missing_concept: str
    start_timestamp: float
    end_timestamp: float
    explanation: str
    root_cause: str = ""
    concept_name: str | None = None
    follow_up_question: MultipleChoice | None = None
    follow_up_answered: bool = False
    follow_up_correct: bool | None = None
    resolved: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None

    def resolve(self, follow_up_correct: bool | None = None) -> None:
        """Close the loop; a wrong follow-up answer leaves it unresolved."""
        if follow_up_correct is not None:
            self.follow_up_answered = True
            self.follow_up_correct = follow_up_correct
            self.resolved = follow_up_correct
        else:
            self.resolved = True
        if self.resolved:
            self.resolved_at = utcnow()
