"""
Misconception-detection and remediation-generation collaborators.

Both are external AI calls. The protocols describe what the orchestrator
needs; the AI implementations talk to the gateway and validate the replies
with pydantic.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from learnloop.errors import InvalidResponse, ValidationError
from learnloop.integrations.ai_gateway import AIGatewayClient
from learnloop.models import ConceptSegment, MultipleChoice, parse_question
from learnloop.prompts import (
    REMEDIATION_SYSTEM_PROMPT,
    misconception_system_prompt,
    misconception_user_prompt,
    remediation_user_prompt,
)

# =============================================================================
# Requests & Replies
# =============================================================================


@dataclass(frozen=True)
class MisconceptionRequest:
    lecture_id: str
    pause_point_id: str
    question_text: str
    correct_answer: str
    student_answer: str
    question_type: str
    concept_map: Sequence[ConceptSegment] = field(default_factory=tuple)
    transcript_context: str | None = None


class MisconceptionReport(BaseModel):
    """What the learner got wrong and where in the lecture to review it."""

    model_config = ConfigDict(populate_by_name=True)

    misconception: str = Field(min_length=1)
    missing_concept: str = Field(default="", validation_alias=AliasChoices("missing_concept", "missingConcept"))
    root_cause: str = Field(default="", validation_alias=AliasChoices("root_cause", "rootCause"))
    recommended_timestamp: float | None = Field(
        default=None,
        validation_alias=AliasChoices("recommended_timestamp", "recommendedTimestamp"),
    )
    end_timestamp: float | None = Field(default=None, validation_alias=AliasChoices("end_timestamp", "endTimestamp"))
    concept_name: str | None = Field(default=None, validation_alias=AliasChoices("concept_name", "conceptName"))

    @field_validator("missing_concept", "root_cause", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


@dataclass(frozen=True)
class RemediationRequest:
    misconception: str
    missing_concept: str
    root_cause: str
    original_question: str
    correct_answer: str
    student_answer: str


class RemediationContent(BaseModel):
    """Generated explanation and optional follow-up retest."""

    model_config = ConfigDict(populate_by_name=True)

    explanation: str = Field(min_length=1)
    follow_up_question: MultipleChoice | None = Field(
        default=None,
        validation_alias=AliasChoices("follow_up_question", "followUpQuestion"),
    )

    @field_validator("follow_up_question", mode="before")
    @classmethod
    def _parse_follow_up(cls, value: Any) -> Any:
        if value is None or isinstance(value, MultipleChoice):
            return value
        if not isinstance(value, Mapping):
            logger.warning(f"Dropping follow-up question of type {type(value).__name__}")
            return None
        try:
            question = parse_question(value, "multiple_choice")
        except ValidationError as e:
            logger.warning(f"Dropping malformed follow-up question: {e}")
            return None
        # follow-ups are graded by exact match only
        return question if isinstance(question, MultipleChoice) else None


# =============================================================================
# Protocols
# =============================================================================


class MisconceptionDetector(Protocol):
    async def detect(self, request: MisconceptionRequest) -> MisconceptionReport: ...


class RemediationGenerator(Protocol):
    async def generate(self, request: RemediationRequest) -> RemediationContent: ...


# =============================================================================
# AI Implementations
# =============================================================================


class AIMisconceptionDetector:
    def __init__(self, gateway: AIGatewayClient, model: str):
        self.gateway = gateway
        self.model = model

    async def detect(self, request: MisconceptionRequest) -> MisconceptionReport:
        data = await self.gateway.chat_json(
            model=self.model,
            system_prompt=misconception_system_prompt(request.concept_map),
            user_prompt=misconception_user_prompt(
                request.question_text,
                request.correct_answer,
                request.student_answer,
                request.question_type,
                request.transcript_context,
            ),
            temperature=0.3,
            max_tokens=500,
        )
        try:
            report = MisconceptionReport.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidResponse(f"Malformed misconception report: {e}") from e
        logger.info(f"Misconception detected for {request.pause_point_id}: {report.misconception}")
        return report


class AIRemediationGenerator:
    def __init__(self, gateway: AIGatewayClient, model: str):
        self.gateway = gateway
        self.model = model

    async def generate(self, request: RemediationRequest) -> RemediationContent:
        data = await self.gateway.chat_json(
            model=self.model,
            system_prompt=REMEDIATION_SYSTEM_PROMPT,
            user_prompt=remediation_user_prompt(
                request.original_question,
                request.correct_answer,
                request.student_answer,
                request.misconception,
                request.missing_concept,
                request.root_cause,
            ),
            temperature=0.5,
            max_tokens=800,
        )
        try:
            content = RemediationContent.model_validate(data)
        except PydanticValidationError as e:
            raise InvalidResponse(f"Malformed remediation content: {e}") from e
        logger.info("Remediation generated successfully")
        return content
