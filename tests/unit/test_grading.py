"""
Unit tests for answer validation and grading.
"""

import asyncio

import pytest

from learnloop.errors import InvalidResponse, RateLimited, ValidationError
from learnloop.grading import (
    AICodingGrader,
    AIShortAnswerGrader,
    AnswerGrader,
    CodingGradeResult,
    GradeResult,
    GradingOutcome,
    validate_submission,
)
from learnloop.models import CodingProblem, ShortAnswer, parse_question


class FakeGateway:
    """Returns a canned reply and records the call."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def chat_json(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return dict(self.reply)

    async def chat_tool(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return dict(self.reply)


class StubShortAnswerGrader:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay

    async def grade(self, question, expected_answer, student_answer):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def short_question():
    return ShortAnswer(question="What does TCP guarantee?", expected_answer="Reliable, ordered delivery")


@pytest.fixture
def coding_question():
    return CodingProblem(question="Sum a list", reference_solution="def total(xs): return sum(xs)", language="python")


class TestValidation:
    """Checks that run before any grading call."""

    def test_answer_too_long(self, short_question):
        with pytest.raises(ValidationError, match="studentAnswer"):
            validate_submission(short_question, "x" * 5001)

    def test_control_characters_rejected(self, short_question):
        with pytest.raises(ValidationError, match="control characters"):
            validate_submission(short_question, "reliable\x00delivery")

    def test_whitespace_controls_allowed(self, short_question):
        validate_submission(short_question, "line one\n\tline two\r\n")

    def test_short_answer_question_length(self):
        question = ShortAnswer(question="q" * 1001, expected_answer="a")

        with pytest.raises(ValidationError, match="question"):
            validate_submission(question, "answer")

    def test_code_limit_is_larger(self, coding_question):
        validate_submission(coding_question, "x" * 9000)
        with pytest.raises(ValidationError, match="studentCode"):
            validate_submission(coding_question, "x" * 10001)

    def test_empty_answer(self, mcq_payload):
        with pytest.raises(ValidationError):
            validate_submission(parse_question(mcq_payload), "   ")


class TestGradeResult:
    def test_rounds_half_up(self):
        assert GradeResult.model_validate({"grade": 84.5, "feedback": "ok"}).grade == 85

    @pytest.mark.parametrize("grade", [True, "85", None, 101, -3])
    def test_rejects_bad_grades(self, grade):
        with pytest.raises(Exception):
            GradeResult.model_validate({"grade": grade})


class TestCodingGradeResult:
    def test_total_from_components(self):
        result = CodingGradeResult(
            algorithmic_understanding=40, logic_correctness=20, code_quality=8, edge_case_awareness=5
        )

        assert result.grade == 73

    def test_concept_floor(self):
        result = CodingGradeResult(
            algorithmic_understanding=35,
            logic_correctness=15,
            code_quality=5,
            edge_case_awareness=0,
            understands_concept=True,
        )

        assert result.total_grade == 90

    def test_component_bounds(self):
        with pytest.raises(Exception):
            CodingGradeResult(
                algorithmic_understanding=60, logic_correctness=0, code_quality=0, edge_case_awareness=0
            )


class TestAIGraders:
    @pytest.mark.asyncio
    async def test_short_answer_grader(self, short_question):
        gateway = FakeGateway({"grade": 92, "feedback": "Covers ordering and reliability."})
        grader = AIShortAnswerGrader(gateway, "test-model")

        result = await grader.grade(short_question.question, short_question.expected_answer, "ordered and reliable")

        assert result.grade == 92
        assert gateway.calls[0]["json_mode"] is True
        assert "ordered and reliable" in gateway.calls[0]["user_prompt"]

    @pytest.mark.asyncio
    async def test_short_answer_invalid_grade(self, short_question):
        grader = AIShortAnswerGrader(FakeGateway({"grade": "excellent"}), "test-model")

        with pytest.raises(InvalidResponse):
            await grader.grade(short_question.question, short_question.expected_answer, "answer")

    @pytest.mark.asyncio
    async def test_coding_grader_recomputes_total(self, coding_question):
        gateway = FakeGateway(
            {
                "algorithmic_understanding": 45,
                "logic_correctness": 25,
                "code_quality": 10,
                "edge_case_awareness": 5,
                "understands_concept": True,
                "feedback": "Good use of sum().",
                "total_grade": 12,
            }
        )
        grader = AICodingGrader(gateway, "test-model")

        result = await grader.grade(coding_question, "def total(xs): return sum(xs)")

        assert result.total_grade == 90
        assert gateway.calls[0]["tool"]["function"]["name"] == "grade_coding"


class TestAnswerGrader:
    """Dispatch and non-penalizing fallbacks."""

    @pytest.mark.asyncio
    async def test_multiple_choice_exact_match(self, mcq_payload):
        grader = AnswerGrader()
        question = parse_question(mcq_payload)

        assert (await grader.grade(question, "C")).correct is True
        assert (await grader.grade(question, "A")).correct is False

    @pytest.mark.asyncio
    async def test_short_answer_pass_grade(self, short_question):
        grader = AnswerGrader(short_answer=StubShortAnswerGrader(GradeResult(grade=65, feedback="Partly")))

        outcome = await grader.grade(short_question, "reliable")

        assert outcome.correct is False
        assert outcome.grade == 65
        assert outcome.score_input == 65

    @pytest.mark.asyncio
    async def test_service_error_falls_back(self, short_question):
        grader = AnswerGrader(short_answer=StubShortAnswerGrader(error=RateLimited("Rate limit exceeded")))

        outcome = await grader.grade(short_question, "reliable")

        assert outcome.correct is True
        assert outcome.grade is None
        assert outcome.needs_review is True
        assert outcome.score_input is True

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, short_question):
        grader = AnswerGrader(
            short_answer=StubShortAnswerGrader(GradeResult(grade=100), delay=1.0),
            timeout_seconds=0.01,
        )

        outcome = await grader.grade(short_question, "reliable")

        assert outcome == GradingOutcome.fallback(outcome.feedback)
        assert "timed out" in outcome.feedback

    @pytest.mark.asyncio
    async def test_missing_grader_falls_back(self, coding_question):
        outcome = await AnswerGrader().grade(coding_question, "def total(xs): return 0")

        assert outcome.needs_review is True
