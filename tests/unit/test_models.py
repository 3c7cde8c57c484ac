"""
Unit tests for question variants, lectures and progress reconciliation.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from learnloop.db import InMemoryStore, reconcile_progress
from learnloop.errors import ValidationError
from learnloop.models import (
    CodingProblem,
    ConfidenceLevel,
    Lecture,
    LectureProgress,
    MultipleChoice,
    PausePoint,
    PausePointResponse,
    RemediationRecord,
    ShortAnswer,
    merge_progress,
    parse_question,
)


class TestParseQuestion:
    """Authored payloads resolve to exactly one variant."""

    def test_multiple_choice(self, mcq_payload):
        question = parse_question(mcq_payload)

        assert isinstance(question, MultipleChoice)
        assert question.correct_option == "C. Network Layer"

    def test_camel_case_short_answer(self):
        question = parse_question(
            {"questionText": "What does TCP stand for?", "expectedAnswer": "Transmission Control Protocol"},
            "short_answer",
        )

        assert isinstance(question, ShortAnswer)
        assert question.expected_answer == "Transmission Control Protocol"

    def test_coding_inferred_from_fields(self):
        question = parse_question(
            {"problemStatement": "Reverse a list", "expectedSolution": "def rev(xs): return xs[::-1]", "language": "python"}
        )

        assert isinstance(question, CodingProblem)
        assert question.correct_option.startswith("def rev")

    def test_type_alias(self, mcq_payload):
        payload = dict(mcq_payload, type="mcq")

        assert isinstance(parse_question(payload), MultipleChoice)

    def test_malformed_payload(self):
        with pytest.raises(ValidationError):
            parse_question({"type": "multiple_choice", "question": "Pick one", "options": ["A"]})


class TestMultipleChoiceGrading:
    def test_letter_key_matches_option_text(self, mcq_payload):
        question = parse_question(mcq_payload)

        assert question.is_correct("C")
        assert question.is_correct("C. Network Layer")
        assert question.is_correct(" c ")
        assert not question.is_correct("B. Data Link Layer")

    def test_text_key_is_exact(self):
        question = MultipleChoice(question="Capital of France?", options=["Paris", "Lyon"], correct_answer="Paris")

        assert question.is_correct("Paris")
        assert question.is_correct("  Paris ")
        assert not question.is_correct("paris")


class TestLecture:
    def test_pause_points_sorted(self, sample_lecture):
        assert [p.id for p in sample_lecture.pause_points] == ["pp-1", "pp-2", "pp-3"]

    def test_question_content_alias(self, mcq_payload):
        point = PausePoint(id="pp", pause_timestamp=12.5, question_content=mcq_payload, question_type="mcq")

        assert point.timestamp == 12.5
        assert isinstance(point.question, MultipleChoice)

    def test_duplicate_pause_point_ids(self, sample_lecture_data):
        sample_lecture_data["pause_points"][1]["id"] = "pp-3"

        with pytest.raises(PydanticValidationError):
            Lecture.model_validate(sample_lecture_data)

    def test_get_pause_point(self, sample_lecture):
        assert sample_lecture.get_pause_point("pp-2").timestamp == 60.0
        assert sample_lecture.get_pause_point("missing") is None


def _response(points, correct=True):
    return PausePointResponse(answer="C", correct=correct, confidence=ConfidenceLevel.MAYBE, points=points)


class TestLectureProgress:
    def test_total_points_floor(self):
        progress = LectureProgress("u1", "lec")
        progress.record_response("pp-1", _response(-150, correct=False))

        assert progress.total_points_earned == 0
        assert progress.is_answered("pp-1")

    def test_position_is_monotonic(self):
        progress = LectureProgress("u1", "lec", video_position=40.0)
        progress.advance_position(10.0)

        assert progress.video_position == 40.0

    def test_response_round_trip(self):
        response = _response(100)

        restored = PausePointResponse.from_dict(response.to_dict())

        assert restored == response


class TestProgressMerge:
    """Conflict policy for concurrent progress writes."""

    def test_merge_keeps_monotonic_fields(self):
        now = datetime.now(timezone.utc)
        existing = LectureProgress("u1", "lec", video_position=80.0, completed_pause_points={"pp-1", "pp-2"})
        existing.completed_at = now
        incoming = LectureProgress("u1", "lec", video_position=35.0, completed_pause_points={"pp-1"})
        incoming.total_points_earned = 100
        incoming.completed_at = now + timedelta(minutes=5)

        merged = merge_progress(existing, incoming)

        assert merged.video_position == 80.0
        assert merged.completed_pause_points == {"pp-1", "pp-2"}
        assert merged.completed_at == now
        assert merged.total_points_earned == 100

    def test_last_write_wins(self):
        existing = LectureProgress("u1", "lec", video_position=80.0)
        incoming = LectureProgress("u1", "lec", video_position=35.0)

        assert reconcile_progress(existing, incoming, "last_write_wins").video_position == 35.0

    @pytest.mark.asyncio
    async def test_store_applies_policy(self):
        store = InMemoryStore()
        await store.upsert_progress(LectureProgress("u1", "lec", video_position=80.0))
        saved = await store.upsert_progress(LectureProgress("u1", "lec", video_position=20.0))

        assert saved.video_position == 80.0

    @pytest.mark.asyncio
    async def test_store_returns_copies(self):
        store = InMemoryStore()
        progress = LectureProgress("u1", "lec")
        await store.upsert_progress(progress)
        progress.completed_pause_points.add("pp-1")

        stored = await store.get_progress("u1", "lec")

        assert stored.completed_pause_points == set()


class TestRemediationRecord:
    def _record(self):
        return RemediationRecord(
            learner_id="u1",
            lecture_id="lec",
            pause_point_id="pp-1",
            misconception="Confuses switching with routing",
            missing_concept="Layer 3 addressing",
            start_timestamp=40.0,
            end_timestamp=55.0,
            explanation="Routers read IP addresses.",
        )

    def test_resolve_without_follow_up(self):
        record = self._record()
        record.resolve()

        assert record.resolved is True
        assert record.follow_up_answered is False
        assert record.resolved_at is not None

    def test_wrong_follow_up_stays_unresolved(self):
        record = self._record()
        record.resolve(follow_up_correct=False)

        assert record.follow_up_answered is True
        assert record.resolved is False
        assert record.resolved_at is None
