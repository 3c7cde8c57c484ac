"""
Coding-answer grading collaborator.

Four weighted components sum to the total grade:

    algorithmic_understanding   0-50
    logic_correctness           0-30
    code_quality                0-10
    edge_case_awareness         0-10

When the grader reports understands_concept, the total is floored at 90.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger
from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from learnloop.errors import InvalidResponse
from learnloop.integrations.ai_gateway import AIGatewayClient
from learnloop.models import CodingProblem
from learnloop.prompts import CODING_SYSTEM_PROMPT, CODING_TOOL, coding_user_prompt
from learnloop.utils import round_half_up

CONCEPT_FLOOR = 90


class CodingGradeResult(BaseModel):
    """Component scores and the derived total."""

    algorithmic_understanding: float = Field(ge=0, le=50)
    logic_correctness: float = Field(ge=0, le=30)
    code_quality: float = Field(ge=0, le=10)
    edge_case_awareness: float = Field(ge=0, le=10)
    understands_concept: bool = False
    feedback: str = ""
    total_grade: int = Field(default=0, ge=0, le=100)

    @model_validator(mode="after")
    def _derive_total(self) -> CodingGradeResult:
        total = round_half_up(
            self.algorithmic_understanding
            + self.logic_correctness
            + self.code_quality
            + self.edge_case_awareness
        )
        if self.understands_concept and total < CONCEPT_FLOOR:
            logger.info(f"Boosting coding grade from {total} to {CONCEPT_FLOOR} (student understands concept)")
            total = CONCEPT_FLOOR
        # validate_assignment is off, so this does not re-run the validator
        self.total_grade = min(100, total)
        return self

    @property
    def grade(self) -> int:
        return self.total_grade

    def components(self) -> dict[str, float]:
        return {
            "algorithmic_understanding": self.algorithmic_understanding,
            "logic_correctness": self.logic_correctness,
            "code_quality": self.code_quality,
            "edge_case_awareness": self.edge_case_awareness,
        }


class CodingGrader(Protocol):
    async def grade(self, problem: CodingProblem, student_code: str) -> CodingGradeResult: ...


class AICodingGrader:
    """Coding grading through the AI gateway's forced tool call."""

    def __init__(self, gateway: AIGatewayClient, model: str, temperature: float = 0.3):
        self.gateway = gateway
        self.model = model
        self.temperature = temperature

    async def grade(self, problem: CodingProblem, student_code: str) -> CodingGradeResult:
        arguments = await self.gateway.chat_tool(
            model=self.model,
            system_prompt=CODING_SYSTEM_PROMPT,
            user_prompt=coding_user_prompt(
                problem.question,
                student_code,
                function_signature=problem.function_signature,
                language=problem.language,
                reference_solution=problem.reference_solution,
            ),
            tool=CODING_TOOL,
            temperature=self.temperature,
        )
        # the model's own total is ignored; it is recomputed from the components
        arguments.pop("total_grade", None)
        try:
            result = CodingGradeResult.model_validate(arguments)
        except PydanticValidationError as e:
            raise InvalidResponse(f"Invalid grading response: {e}") from e

        logger.info(
            f"Auto-graded coding: total={result.total_grade} components={result.components()} "
            f"understands_concept={result.understands_concept}"
        )
        return result
