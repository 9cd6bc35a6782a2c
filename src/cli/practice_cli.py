"""
Practice CLI - operator commands for the adaptive practice engine.

Usage:
    practice init-db                                   # Create tables
    practice load-catalog questions.json               # Import catalog entries
    practice create-assignment A1 T1 T2 T3             # Build an assignment from topics
    practice progress LEARNER A1                       # Show a learner's scores
    practice answer LEARNER A1 Q42 --correct           # Record an answer
    practice sync-scores A1 lms_scores.json            # Re-queue mismatched LMS grades
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from config import get_settings
from src.db.database import init_db
from src.practice.catalog import SqlQuestionCatalog
from src.practice.exceptions import PracticeError
from src.practice.models import ProgressReport, QuestionInfo, QuestionType
from src.practice.service import create_practice_service
from src.practice.store import SqlAssignmentRepository

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="practice",
    help="Adaptive practice engine - scores, next questions and grade sync",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()


def _score_color(score: int) -> str:
    if score >= 90:
        return "green"
    if score >= 70:
        return "cyan"
    if score >= 40:
        return "yellow"
    return "red"


def _print_progress(report: ProgressReport) -> None:
    console.print(
        f"[bold]{report.learner_id}[/] on [bold]{report.assignment_id}[/]: "
        f"total [{_score_color(report.total_score)}]{report.total_score}%[/] "
        f"(best {report.max_score}%)"
    )
    table = Table(title="Topic scores")
    table.add_column("Topic", style="cyan")
    table.add_column("Score", justify="right")
    for topic in report.topics:
        table.add_row(topic.topic_id, f"[{_score_color(topic.score)}]{topic.score}[/]")
    console.print(table)
    if report.current_question_id:
        console.print(f"Next question: [bold]{report.current_question_id}[/]")


# =============================================================================
# Commands
# =============================================================================


@app.command("init-db")
def init_db_command() -> None:
    """Create the practice tables."""
    init_db()
    console.print("[green]✓ Database ready[/]")


@app.command("load-catalog")
def load_catalog(
    path: Annotated[Path, typer.Argument(help="JSON list of questions", exists=True)],
) -> None:
    """Import question catalog entries (id, topic, type)."""
    settings = get_settings()
    raw = json.loads(path.read_text(encoding="utf-8"))
    try:
        questions = [
            QuestionInfo(
                question_id=str(item["question_id"]),
                topic_id=str(item["topic_id"]),
                question_type=QuestionType(item["question_type"]),
                assignment_type=item.get("assignment_type", settings.exercise_assignment_type),
            )
            for item in raw
        ]
    except (KeyError, ValueError) as e:
        console.print(f"[red]Invalid catalog file: {e}[/]")
        raise typer.Exit(1) from e

    written = SqlQuestionCatalog().add_many(questions)
    console.print(f"[green]✓ Loaded {written} questions[/]")


@app.command("create-assignment")
def create_assignment(
    assignment_id: Annotated[str, typer.Argument(help="Assignment id")],
    topic_ids: Annotated[list[str], typer.Argument(help="Candidate topics in curriculum order")],
    title: Annotated[str | None, typer.Option("--title", "-t", help="Display title")] = None,
    platform: Annotated[
        str | None, typer.Option("--platform", "-p", help="Hosting LMS platform id")
    ] = None,
) -> None:
    """Create an assignment from topics that have enough questions."""
    service, _ = create_practice_service()
    assignment = service.create_assignment(assignment_id, topic_ids, title=title, platform_id=platform)
    skipped = [t for t in topic_ids if t not in assignment.topic_ids]
    console.print(f"[green]✓ {assignment_id}: {len(assignment.topic_ids)} topics[/]")
    if skipped:
        console.print(f"[yellow]Skipped (too few questions): {', '.join(skipped)}[/]")


@app.command()
def progress(
    learner_id: Annotated[str, typer.Argument(help="Learner id")],
    assignment_id: Annotated[str, typer.Argument(help="Assignment id")],
) -> None:
    """Show a learner's total and per-topic scores."""
    service, _ = create_practice_service()
    try:
        assignment = SqlAssignmentRepository().get(assignment_id)
        report = service.progress(learner_id, assignment)
    except PracticeError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e
    _print_progress(report)


@app.command()
def answer(
    learner_id: Annotated[str, typer.Argument(help="Learner id")],
    assignment_id: Annotated[str, typer.Argument(help="Assignment id")],
    question_id: Annotated[str, typer.Argument(help="Answered question id")],
    correct: Annotated[
        bool, typer.Option("--correct/--incorrect", help="Whether the answer was right")
    ] = True,
) -> None:
    """Record an answer and show the next question."""
    service, reporter = create_practice_service()
    if reporter is not None:
        reporter.start()
    try:
        assignment = SqlAssignmentRepository().get(assignment_id)
        result = service.submit_answer(learner_id, assignment, question_id, 1 if correct else 0)
    except PracticeError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e
    finally:
        if reporter is not None:
            reporter.flush()
            reporter.stop()

    if not result.attributed:
        console.print("[yellow]Answer not counted: its topic is no longer on the assignment[/]")
    _print_progress(result.record.to_progress())
    if result.report_queued:
        console.print("[dim]Grade report sent to LMS[/]")


@app.command("sync-scores")
def sync_scores(
    assignment_id: Annotated[str, typer.Argument(help="Assignment id")],
    lms_scores_path: Annotated[
        Path, typer.Argument(help="JSON object of learner id -> LMS score", exists=True)
    ],
) -> None:
    """Re-send scores the LMS gradebook does not match."""
    service, reporter = create_practice_service()
    lms_scores = json.loads(lms_scores_path.read_text(encoding="utf-8"))
    if reporter is not None:
        reporter.start()
    try:
        assignment = SqlAssignmentRepository().get(assignment_id)
        queued = service.synchronize_scores(assignment, lms_scores)
    except PracticeError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1) from e
    finally:
        if reporter is not None:
            reporter.flush()
            reporter.stop()

    console.print(f"[green]✓ {len(queued)} scores re-sent[/]")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    app()


if __name__ == "__main__":
    run()
