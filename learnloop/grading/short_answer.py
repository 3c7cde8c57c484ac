"""
Short-answer grading collaborator.

Contract: (question, expected_answer, student_answer) -> {grade 0-100, feedback}.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from learnloop.errors import InvalidResponse
from learnloop.integrations.ai_gateway import AIGatewayClient
from learnloop.prompts import SHORT_ANSWER_SYSTEM_PROMPT, short_answer_user_prompt
from learnloop.utils import round_half_up


class GradeResult(BaseModel):
    """A 0-100 grade with feedback."""

    grade: int = Field(ge=0, le=100)
    feedback: str = ""

    @field_validator("grade", mode="before")
    @classmethod
    def _numeric_grade(cls, value: object) -> int:
        # bool is an int subclass but never a grade
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"grade must be a number, got {value!r}")
        if not 0 <= value <= 100:
            raise ValueError(f"grade must be within 0-100, got {value}")
        return round_half_up(value)


class ShortAnswerGrader(Protocol):
    async def grade(self, question: str, expected_answer: str, student_answer: str) -> GradeResult: ...


class AIShortAnswerGrader:
    """Short-answer grading through the AI gateway."""

    def __init__(self, gateway: AIGatewayClient, model: str, temperature: float = 0.3):
        self.gateway = gateway
        self.model = model
        self.temperature = temperature

    async def grade(self, question: str, expected_answer: str, student_answer: str) -> GradeResult:
        """
        Grade a free-text answer.

        Raises:
            RateLimited, PaymentRequired, ServiceUnavailable: From the gateway
            InvalidResponse: If the reply lacks a numeric 0-100 grade
        """
        data = await self.gateway.chat_json(
            model=self.model,
            system_prompt=SHORT_ANSWER_SYSTEM_PROMPT,
            user_prompt=short_answer_user_prompt(question, expected_answer, student_answer),
            temperature=self.temperature,
            json_mode=True,
        )
        try:
            result = GradeResult.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Invalid grade value from AI: {data.get('grade')!r}")
            raise InvalidResponse(f"Invalid grade value from AI: {e}") from e

        logger.info(f"Auto-graded short answer: {result.grade}")
        return result
