"""
Typer CLI for the reinforcement session engine.

Commands:
    reinforce db init                    - Initialize database tables
    reinforce sweep                      - Expire overdue sessions (run from cron)
    reinforce assign --course ID         - Create automatic sessions for High grades
    reinforce grades --course ID --student ID
                                         - Show a student's difficulty grades
    reinforce session show ID            - Show a session and its exam window
    reinforce session take ID --student ID
                                         - Take a session in the terminal
    reinforce class status ID            - Show the resolved status of a class

Usage:
    reinforce --help
    reinforce sweep --batch-size 100
    reinforce session take 6f1c... --student 0b7e...
"""

from __future__ import annotations

import sys
from datetime import timedelta
from uuid import UUID

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.prompt import IntPrompt
from rich.table import Table

from config import get_settings
from reinforce import __version__
from reinforce.core.clock import SystemClock
from reinforce.core.errors import ReinforceError
from reinforce.core.principal import Principal, Role
from reinforce.db.database import init_db, session_scope
from reinforce.db.repositories import QuestionRepository
from reinforce.learning.grade_tracker import DifficultyGradeTracker
from reinforce.consultation.class_service import ConsultationClassService
from reinforce.schemas import SubmitAnswersRequest
from reinforce.study.exam_clock import ExamCountdown
from reinforce.study.expiry_sweep import assign_automatic_sessions, run_expiry_sweep
from reinforce.study.session_lifecycle import SessionLifecycle, SessionOutcome

app = typer.Typer(
    help="Reinforcement session engine: adaptive timed quizzes per student difficulty",
    no_args_is_help=True,
)

console = Console()
clock = SystemClock()


def configure_logging(level: str | None = None) -> None:
    """Route loguru to stderr (and the configured log file)."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention=5)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
) -> None:
    """
    Reinforcement sessions for students with a difficulty.

    Database and policy settings come from the environment (.env supported).
    """
    configure_logging("DEBUG" if verbose else None)


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]✗[/red] Invalid {label} id: {value}")
        raise typer.Exit(code=2)


def _fail(error: ReinforceError) -> None:
    rprint(f"[red]✗[/red] {error.message} [dim]({error.error_code})[/dim]")
    raise typer.Exit(code=1)


def _format_remaining(remaining: timedelta | None) -> str:
    if remaining is None:
        return "-"
    seconds = int(remaining.total_seconds())
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


# ========================================
# Database Commands
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """
    Initialize database tables from SQLAlchemy models.

    Safe to run multiple times (idempotent).
    """
    logger.info("Initializing database tables...")
    init_db()
    rprint("[green]✓[/green] Database initialized!")


# ========================================
# Scheduled Jobs
# ========================================


@app.command("sweep")
def sweep(
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", help="Maximum sessions to examine"),
) -> None:
    """Expire every overdue pending session."""
    with session_scope() as db:
        report = run_expiry_sweep(db, clock.now(), batch_size=batch_size)

    table = Table(title="Expiry Sweep")
    table.add_column("Outcome", style="cyan")
    table.add_column("Sessions", justify="right")
    table.add_row("Overdue", str(report.examined))
    table.add_row("Completed", str(report.completed))
    table.add_row("Incomplete", str(report.incomplete))
    table.add_row("Not held", str(report.not_held))
    table.add_row("Already final", str(report.already_final))
    table.add_row("Failed", str(len(report.failed)))
    console.print(table)
    if report.failed:
        raise typer.Exit(code=1)


@app.command("assign")
def assign(
    course: str = typer.Option(..., "--course", "-c", help="Course id"),
) -> None:
    """Create automatic sessions for every student at grade High."""
    course_id = _parse_uuid(course, "course")
    with session_scope() as db:
        created = assign_automatic_sessions(db, course_id, clock.now())
        rows = [(str(s.student_id), s.session_number, len(s.questions)) for s in created]

    if not rows:
        rprint("[yellow]⚠[/yellow] No automatic sessions were due")
        return
    table = Table(title=f"Automatic Sessions ({len(rows)})")
    table.add_column("Student", style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Questions", justify="right")
    for student_id, number, count in rows:
        table.add_row(student_id, str(number), str(count))
    console.print(table)


@app.command("grades")
def grades(
    course: str = typer.Option(..., "--course", "-c", help="Course id"),
    student: str = typer.Option(..., "--student", "-s", help="Student id"),
) -> None:
    """Show a student's grade per difficulty."""
    course_id = _parse_uuid(course, "course")
    student_id = _parse_uuid(student, "student")
    with session_scope() as db:
        rows = [
            (str(r.difficulty_id), r.grade.value)
            for r in DifficultyGradeTracker(db).list_grades(course_id, student_id)
        ]

    table = Table(title="Difficulty Grades")
    table.add_column("Difficulty", style="cyan")
    table.add_column("Grade")
    for difficulty_id, grade in rows:
        table.add_row(difficulty_id, grade)
    console.print(table)


# ========================================
# Session Commands
# ========================================

session_app = typer.Typer(help="Reinforcement sessions")
app.add_typer(session_app, name="session")


@session_app.command("show")
def session_show(session_id: str = typer.Argument(..., help="Session id")) -> None:
    """Show a session (expiring it first if it is overdue)."""
    sid = _parse_uuid(session_id, "session")
    try:
        with session_scope() as db:
            view = SessionLifecycle(db).get(Principal.system(), sid, clock.now())
    except ReinforceError as e:
        _fail(e)

    table = Table(title=f"Session #{view.session_number}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("State", view.state.value)
    table.add_row("Grade", view.session_grade.value)
    table.add_row("Origin", "automatic" if view.is_automatic else "teacher")
    table.add_row("Questions", str(len(view.question_ids)))
    table.add_row("Deadline", view.deadline_at.isoformat())
    table.add_row("Time limit", f"{view.time_limit_minutes} min")
    table.add_row("Started", view.started_at.isoformat() if view.started_at else "-")
    table.add_row("Remaining", _format_remaining(view.remaining))
    if view.result:
        table.add_row("Accuracy", f"{view.result.accuracy_pct:.1f}%")
        table.add_row("Grade change", f"{view.result.grade_before.value} -> {view.result.grade_after.value}")
    if view.cancel_reason:
        table.add_row("Cancel reason", view.cancel_reason)
    console.print(table)


def _print_outcome(outcome: SessionOutcome) -> None:
    if outcome.result is None:
        rprint(f"[yellow]Session finished as {outcome.state.value}[/yellow]")
        return
    result = outcome.result
    console.print(
        Panel(
            f"Correct: [green]{result.correct_count}[/green] / {result.total}\n"
            f"Accuracy: [bold]{result.accuracy_pct:.1f}%[/bold]\n"
            f"Grade: {result.grade_before.value} -> [bold]{result.grade_after.value}[/bold]",
            title=f"[bold]Session {outcome.state.value}[/bold]",
            border_style="green" if result.grade_after != result.grade_before else "cyan",
        )
    )


@session_app.command("take")
def session_take(
    session_id: str = typer.Argument(..., help="Session id"),
    student: str = typer.Option(..., "--student", "-s", help="Student id"),
) -> None:
    """
    Take a session in the terminal.

    The countdown is recomputed from the server's start time before every
    question; when it reaches zero the saved answers are submitted.
    """
    sid = _parse_uuid(session_id, "session")
    principal = Principal(user_id=_parse_uuid(student, "student"), role=Role.STUDENT)

    try:
        with session_scope() as db:
            lifecycle = SessionLifecycle(db)
            lifecycle.start(principal, sid, clock.now())
            view = lifecycle.get(principal, sid, clock.now())
            by_id = {q.id: q for q in QuestionRepository(db).get_many(view.question_ids)}
            questions = [
                (qid, by_id[qid].enunciation, [(o.id, o.text) for o in by_id[qid].options])
                for qid in view.question_ids
            ]
    except ReinforceError as e:
        _fail(e)

    if view.state.is_terminal:
        rprint(f"[yellow]Session is already {view.state.value}[/yellow]")
        return

    answers: dict[UUID, UUID] = {}
    outcomes: list[SessionOutcome] = []

    def submit_now() -> None:
        with session_scope() as db:
            outcomes.append(
                SessionLifecycle(db).submit(
                    principal, sid, SubmitAnswersRequest.from_pairs(list(answers.items())), clock.now()
                )
            )

    countdown = ExamCountdown.from_snapshot(view.to_dict(), on_zero=submit_now)

    for number, (question_id, enunciation, options) in enumerate(questions, 1):
        remaining = countdown.tick(clock.now())
        if countdown.fired:
            break
        console.print(
            Panel(
                enunciation,
                title=f"[bold cyan]Question {number}/{len(questions)}[/bold cyan]",
                subtitle=f"{_format_remaining(remaining)} left",
                border_style="cyan",
            )
        )
        for i, (_, text) in enumerate(options, 1):
            console.print(f"  [cyan]{i}[/cyan]. {text}")
        choice = IntPrompt.ask("Your answer", choices=[str(i) for i in range(1, len(options) + 1)])

        countdown.tick(clock.now())
        if countdown.fired:
            rprint("[yellow]Time is up; the answer was not recorded[/yellow]")
            break

        option_id = options[choice - 1][0]
        answers[question_id] = option_id
        try:
            with session_scope() as db:
                SessionLifecycle(db).save_answers(
                    principal, sid, SubmitAnswersRequest.from_pairs([(question_id, option_id)]), clock.now()
                )
        except ReinforceError as e:
            logger.warning(f"Draft not saved: {e.message}")

    if not outcomes:
        try:
            submit_now()
        except ReinforceError as e:
            _fail(e)
    _print_outcome(outcomes[-1])


# ========================================
# Consultation Class Commands
# ========================================

class_app = typer.Typer(help="Consultation classes")
app.add_typer(class_app, name="class")


@class_app.command("status")
def class_status(class_id: str = typer.Argument(..., help="Class id")) -> None:
    """Show the status of a consultation class as of now."""
    cid = _parse_uuid(class_id, "class")
    try:
        with session_scope() as db:
            status = ConsultationClassService(db).status(cid, clock.now())
    except ReinforceError as e:
        _fail(e)
    rprint(f"[bold]{status.value}[/bold]")


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]reinforce-engine[/bold] v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
