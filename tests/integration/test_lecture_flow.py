"""
End-to-end lecture sessions through the state machine, gate and stores.
"""

import pytest
import pytest_asyncio

from learnloop.db import SqlStore, create_engine, create_session_factory, init_db
from learnloop.lecture import LectureState, PausePointStateMachine
from learnloop.remediation import MisconceptionReport, RemediationContent, RemediationOrchestrator
from learnloop.scheduler import SpacedRepetitionScheduler


class ScriptedDetector:
    async def detect(self, request):
        return MisconceptionReport(
            misconception="Believes switches forward between networks",
            missing_concept="Routing",
            root_cause="Layer 2 and layer 3 blurred together",
            concept_name="Routing",
        )


class ScriptedGenerator:
    async def generate(self, request):
        return RemediationContent(
            explanation="Routers connect networks; switches connect hosts within one.",
            follow_up_question={
                "question": "Which device connects two networks?",
                "options": ["A. Switch", "B. Router"],
                "correct_answer": "B",
            },
        )


@pytest_asyncio.fixture
async def sql_store(db_url):
    engine = create_engine(db_url)
    await init_db(engine)
    yield SqlStore(create_session_factory(engine))
    await engine.dispose()


async def run_to_next_question(machine, step=0.25):
    while machine.state is LectureState.PLAYING and machine.gate.is_playing:
        machine.gate.tick(step)


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", ["memory", "sql"])
async def test_all_correct_at_maybe(sample_lecture, store, sql_store, backend):
    """Three pause points answered correctly at 'maybe' earn 300 and complete the lecture."""
    target = store if backend == "memory" else sql_store
    machine = await PausePointStateMachine.load(
        sample_lecture, "learner-1", target, scheduler=SpacedRepetitionScheduler(target)
    )
    await machine.start()

    for _ in sample_lecture.pause_points:
        await run_to_next_question(machine)
        assert machine.state is LectureState.PAUSED_FOR_QUESTION
        await machine.submit_answer("C. Network Layer", "maybe")
        await machine.continue_lecture()
    await machine.close()

    saved = await target.get_progress("learner-1", sample_lecture.id)
    assert machine.state is LectureState.LECTURE_COMPLETE
    assert saved.total_points_earned == 300
    assert saved.completed_at is not None
    assert len(saved.completed_pause_points) == 3
    assert len(await target.list_attempts("learner-1")) == 3


@pytest.mark.asyncio
async def test_incorrect_answer_then_skip_remediation(sample_lecture, sql_store):
    """Skipping an offered remediation resumes playback and leaves the record unresolved."""
    orchestrator = RemediationOrchestrator(ScriptedDetector(), ScriptedGenerator(), sql_store)
    machine = await PausePointStateMachine.load(
        sample_lecture,
        "learner-1",
        sql_store,
        scheduler=SpacedRepetitionScheduler(sql_store),
        orchestrator=orchestrator,
    )
    transitions = []
    machine.add_state_listener(lambda old, new: transitions.append((old, new)))
    await machine.start()

    await run_to_next_question(machine)
    await machine.submit_answer("C", "maybe")
    await machine.continue_lecture()
    await run_to_next_question(machine)
    result = await machine.submit_answer("B. Data Link Layer", "pretty_sure")
    record = await machine.wait_for_remediation()

    assert result.correct is False
    assert result.points == -100
    assert result.total_points == 0
    assert (LectureState.RESULT_SHOWN, LectureState.REMEDIATION_OFFERED) in transitions
    # range comes from the concept map entry named in the report
    assert (record.start_timestamp, record.end_timestamp) == (40.0, 55.0)

    await machine.decline_remediation()
    await machine.close()

    assert machine.state is LectureState.PLAYING
    [stored] = await sql_store.list_remediations("learner-1", sample_lecture.id)
    assert stored.resolved is False
    assert stored.follow_up_answered is False


@pytest.mark.asyncio
async def test_resume_from_saved_progress(sample_lecture, sql_store):
    """A second session picks up after the answered pause points."""
    first = await PausePointStateMachine.load(sample_lecture, "learner-1", sql_store)
    await first.start()
    await run_to_next_question(first)
    await first.submit_answer("C", "maybe")
    await first.continue_lecture()
    await run_to_next_question(first)
    await first.close()

    second = await PausePointStateMachine.load(sample_lecture, "learner-1", sql_store)
    await second.start()

    assert second.progress.is_answered("pp-1")
    assert second.state is LectureState.PAUSED_FOR_QUESTION
    assert second.active_pause_point.id == "pp-2"
    assert second.gate.seek(100.0).blocked is True
    await second.close()
