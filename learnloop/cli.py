"""
Typer CLI for the learnloop engine.

Commands:
    learnloop score CONFIDENCE OUTCOME   - Evaluate one confidence wager
    learnloop due LEARNER                - List spaced-repetition reviews due
    learnloop play LECTURE.json          - Watch a lecture in the terminal (simulated clock)
    learnloop init-db                    - Create database tables

Usage:
    learnloop --help
    learnloop score absolutely_sure correct --base 100
    learnloop score maybe 85
    learnloop play lecture.json --learner alice --offline
"""

from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path

import typer
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from learnloop.config import Settings, get_settings
from learnloop.db import InMemoryStore, SqlStore, create_engine, create_session_factory, init_db
from learnloop.errors import InvalidTransition, LearnLoopError, PersistenceError, ValidationError
from learnloop.grading import AICodingGrader, AIShortAnswerGrader, AnswerGrader
from learnloop.integrations import AIGatewayClient
from learnloop.lecture import LectureState, PausePointStateMachine, build_state_machine_kwargs
from learnloop.log import configure_logging
from learnloop.models import ConfidenceLevel, Lecture, MultipleChoice, Question
from learnloop.remediation import AIMisconceptionDetector, AIRemediationGenerator, RemediationOrchestrator
from learnloop.scheduler import SM2Config, SpacedRepetitionScheduler
from learnloop.scoring import ConfidenceScoringEngine

app = typer.Typer(
    name="learnloop",
    help="learnloop: confidence-wagered practice, spaced repetition and interactive lectures",
    no_args_is_help=True,
)

console = Console()


# =============================================================================
# Helpers
# =============================================================================


def _parse_outcome(outcome: str) -> bool | float:
    value = outcome.strip().lower()
    if value in ("correct", "true", "yes", "y"):
        return True
    if value in ("incorrect", "wrong", "false", "no", "n"):
        return False
    try:
        return float(value)
    except ValueError:
        raise typer.BadParameter("expected 'correct', 'incorrect' or a 0-100 grade") from None


def _parse_date(value: str | None) -> date:
    if not value:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from None


async def _sql_store(url: str, settings: Settings) -> tuple[SqlStore, object]:
    engine = create_engine(url, settings)
    await init_db(engine)
    return SqlStore(create_session_factory(engine), settings.progress_conflict_policy), engine


def _show_question(question: Question, title: str) -> None:
    body = question.question
    if isinstance(question, MultipleChoice):
        body += "\n\n" + "\n".join(question.options)
    console.print(Panel(body, title=title, border_style="cyan"))


def _confidence_help() -> str:
    return ", ".join(f"{level.value} (x{level.multiplier:g})" for level in ConfidenceLevel)


# =============================================================================
# score
# =============================================================================


@app.command()
def score(
    confidence: str = typer.Argument(..., help="not_sure, maybe, pretty_sure or absolutely_sure"),
    outcome: str = typer.Argument(..., help="'correct', 'incorrect' or a 0-100 grade"),
    base: int = typer.Option(100, "--base", "-b", help="Base reward for the item"),
) -> None:
    """Evaluate a single confidence wager."""
    settings = get_settings()
    engine = ConfidenceScoringEngine(settings.pass_grade, settings.partial_grade)
    try:
        result = engine.evaluate(confidence, _parse_outcome(outcome), base)
    except ValidationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Wager Result")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Confidence", f"{result.confidence.value} (x{result.multiplier:g})")
    table.add_row("Correct", "yes" if result.correct else "no")
    if result.grade is not None:
        table.add_row("Grade", str(result.grade))
    table.add_row("Points", f"{result.points:+d}")
    table.add_row("Coins", f"{result.coins:+d}")
    console.print(table)


# =============================================================================
# due
# =============================================================================


@app.command()
def due(
    learner: str = typer.Argument(..., help="Learner id"),
    db: str | None = typer.Option(None, "--db", help="Database URL (default: from config)"),
    today: str | None = typer.Option(None, "--today", help="Date to check (YYYY-MM-DD)"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum reviews to list"),
) -> None:
    """List spaced-repetition reviews due for a learner."""
    settings = get_settings()
    day = _parse_date(today)

    async def _run():
        store, engine = await _sql_store(db or settings.database_url, settings)
        try:
            return await SpacedRepetitionScheduler(store).due_items(learner, day, limit)
        finally:
            await engine.dispose()

    try:
        records = asyncio.run(_run())
    except (PersistenceError, OSError) as e:
        logger.error(f"Could not read reviews: {e}")
        raise typer.Exit(code=1)

    if not records:
        console.print(f"[green]✓[/green] Nothing due for {learner} on {day.isoformat()}")
        return

    table = Table(title=f"Reviews due for {learner} ({day.isoformat()})")
    table.add_column("Item", style="cyan")
    table.add_column("Due", style="yellow")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    table.add_column("Reviews", justify="right")
    for record in records:
        table.add_row(
            record.item_id,
            record.next_review_date.isoformat() if record.next_review_date else "-",
            f"{record.interval_days}d",
            f"{record.ease_factor:.2f}",
            str(record.repetition_number),
        )
    console.print(table)


# =============================================================================
# init-db
# =============================================================================


@app.command("init-db")
def init_db_command(
    db: str | None = typer.Option(None, "--db", help="Database URL (default: from config)"),
) -> None:
    """Create all tables. Safe to run multiple times."""
    settings = get_settings()
    logger.info("Initializing database tables...")

    async def _run() -> None:
        engine = create_engine(db or settings.database_url, settings)
        try:
            await init_db(engine)
        finally:
            await engine.dispose()

    try:
        asyncio.run(_run())
    except (PersistenceError, OSError) as e:
        logger.error(f"Database initialization failed: {e}")
        raise typer.Exit(code=1)
    console.print("[green]✓[/green] Database initialized!")


# =============================================================================
# play
# =============================================================================


def _build_collaborators(
    settings: Settings,
    store: InMemoryStore | SqlStore,
    offline: bool,
) -> tuple[AIGatewayClient | None, AnswerGrader, RemediationOrchestrator | None]:
    gateway = None
    if not offline and settings.has_ai_configured():
        gateway = AIGatewayClient.from_settings(settings)
    elif not offline:
        logger.info("AI gateway not configured; short answers fall back to manual review, no remediation")

    grader = AnswerGrader(
        short_answer=AIShortAnswerGrader(gateway, settings.grading_model) if gateway else None,
        coding=AICodingGrader(gateway, settings.coding_model) if gateway else None,
        timeout_seconds=settings.grading_timeout_seconds,
        pass_grade=settings.pass_grade,
    )
    orchestrator = None
    if gateway is not None:
        orchestrator = RemediationOrchestrator(
            AIMisconceptionDetector(gateway, settings.remediation_model),
            AIRemediationGenerator(gateway, settings.remediation_model),
            store,
            step_timeout=settings.remediation_timeout_seconds,
        )
    return gateway, grader, orchestrator


async def _drive(machine: PausePointStateMachine, step: float) -> None:
    """Run the machine until the lecture completes or nothing is left to play."""
    while machine.state is not LectureState.LECTURE_COMPLETE:
        state = machine.state

        if state in (LectureState.PLAYING, LectureState.REMEDIATION_PLAYING):
            if state is LectureState.PLAYING:
                if machine.gate.at_end:
                    console.print("[yellow]Playback ended before every pause point was reached.[/yellow]")
                    return
                if not machine.lecture.duration and machine.next_pause_point() is None:
                    # no known duration to play out
                    return
            machine.gate.tick(step)

        elif state is LectureState.PAUSED_FOR_QUESTION:
            point = machine.active_pause_point
            _show_question(point.question, f"Pause point at {point.timestamp:.0f}s ({point.base_reward} pts)")
            answer = typer.prompt("Your answer")
            confidence = typer.prompt(f"Confidence [{_confidence_help()}]", default="maybe")
            try:
                result = await machine.submit_answer(answer, confidence)
            except ValidationError as e:
                console.print(f"[red]✗[/red] {e}")
                continue
            mark = "[green]✓ Correct[/green]" if result.correct else "[red]✗ Incorrect[/red]"
            console.print(f"{mark}  {result.points:+d} points (total {result.total_points})")
            if result.needs_review:
                console.print("[yellow]Grading unavailable; flagged for instructor review.[/yellow]")
            if result.feedback:
                console.print(result.feedback)
            if not result.correct:
                console.print(f"Correct answer: {result.correct_answer}")

        elif state is LectureState.RESULT_SHOWN:
            if machine.remediation_pending:
                with console.status("Looking for a review segment..."):
                    await machine.wait_for_remediation()
                continue
            await machine.continue_lecture()

        elif state is LectureState.REMEDIATION_OFFERED:
            record = machine.remediation
            console.print(Panel(record.explanation, title=f"Misconception: {record.misconception}", border_style="magenta"))
            if typer.confirm(
                f"Rewatch {record.start_timestamp:.0f}s-{record.end_timestamp:.0f}s?", default=True
            ):
                machine.accept_remediation()
            else:
                await machine.decline_remediation()

        elif state is LectureState.FOLLOWUP_QUESTION:
            _show_question(machine.remediation.follow_up_question, "Follow-up (no wager)")
            try:
                followup = await machine.answer_followup(typer.prompt("Your answer"))
            except ValidationError as e:
                console.print(f"[red]✗[/red] {e}")
                continue
            if followup.correct:
                console.print(f"[green]✓ Correct[/green]  +{followup.bonus_points} bonus")
            else:
                console.print(f"[red]✗ Incorrect[/red]  Correct answer: {followup.correct_answer}")

        elif state is LectureState.FOLLOWUP_RESULT:
            await machine.continue_lecture()

        else:  # GRADING is only observable from inside submit_answer
            raise InvalidTransition(f"Unexpected state {state.value}")


@app.command()
def play(
    lecture_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Lecture JSON file"),
    learner: str = typer.Option("learner", "--learner", help="Learner id"),
    db: str | None = typer.Option(None, "--db", help="Database URL (default: in-memory, nothing saved)"),
    step: float = typer.Option(1.0, "--step", help="Simulated seconds per tick"),
    offline: bool = typer.Option(False, "--offline", help="Never call the AI gateway"),
) -> None:
    """Watch a lecture in the terminal with pause-point questions."""
    settings = get_settings()
    try:
        lecture = Lecture.model_validate_json(lecture_file.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        console.print(f"[red]✗[/red] Invalid lecture file: {e}")
        raise typer.Exit(code=1)

    async def _run() -> PausePointStateMachine:
        engine = None
        if db:
            store, engine = await _sql_store(db, settings)
        else:
            store = InMemoryStore(settings.progress_conflict_policy)
        gateway, grader, orchestrator = _build_collaborators(settings, store, offline)

        kwargs = build_state_machine_kwargs(settings)
        kwargs["heartbeat_interval"] = None  # simulated clock
        machine = await PausePointStateMachine.load(
            lecture,
            learner,
            store,
            grader=grader,
            scheduler=SpacedRepetitionScheduler(store, SM2Config.from_settings(settings)),
            orchestrator=orchestrator,
            **kwargs,
        )
        machine.gate.add_notice_listener(lambda notice: console.print(f"[yellow]{notice}[/yellow]"))
        try:
            await machine.start()
            await _drive(machine, step)
        finally:
            await machine.close()
            if gateway is not None:
                await gateway.close()
            if engine is not None:
                await engine.dispose()
        return machine

    console.print(Panel(lecture.title or lecture.id, title="Lecture", border_style="blue"))
    try:
        machine = asyncio.run(_run())
    except LearnLoopError as e:
        logger.error(f"Lecture session failed: {e}")
        raise typer.Exit(code=1)

    progress = machine.progress
    answered = len(progress.completed_pause_points)
    console.print(
        f"\nAnswered {answered}/{len(lecture.pause_points)} pause points, "
        f"[bold]{progress.total_points_earned}[/bold] points"
    )
    if machine.state is LectureState.LECTURE_COMPLETE:
        console.print("[green]✓[/green] Lecture complete!")


def main() -> None:
    """Console script entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
