"""
Typer CLI for the mastery engine.

Commands:
    mastery-engine info                  - Show configuration
    mastery-engine transitions [STATE]   - Show the session transition table
    mastery-engine schedule              - Compute the next review for a review attempt
    mastery-engine diagnose              - Run a simulated diagnostic placement
    mastery-engine reviews STUDENT       - Show due reviews and the 7-day forecast
    mastery-engine db init [--seed]      - Create tables (optionally seed the K-G1 catalogue)

Usage:
    mastery-engine transitions PRACTICE
    mastery-engine schedule --interval 16 --easiness 2.5 --count 4
    mastery-engine diagnose --grade G1 --known 9
"""

from __future__ import annotations

import sys

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from mastery_engine.core.models import KnowledgeNode, utcnow

app = typer.Typer(
    help="Adaptive mastery and scheduling engine",
    no_args_is_help=True,
)

console = Console()


def default_catalogue() -> list[KnowledgeNode]:
    """The K-G1 diagnostic sequence as a linear prerequisite chain."""
    from mastery_engine.diagnostic.engine import DEFAULT_ORDERED_NODES

    nodes = []
    previous = None
    for ordered in DEFAULT_ORDERED_NODES:
        nodes.append(
            KnowledgeNode(
                code=ordered.node_code,
                title=ordered.node_code,
                grade_level=ordered.grade_level,
                difficulty=ordered.difficulty,
                prerequisites=(previous,) if previous else (),
            )
        )
        previous = ordered.node_code
    return nodes


# ========================================
# INFO
# ========================================


@app.command("info")
def show_info() -> None:
    """Show configuration."""
    settings = get_settings()

    table = Table(title="Mastery Engine Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Database URL", settings.database_url)
    table.add_row("Log Level", settings.log_level)
    table.add_row(
        "BKT (guess/slip/learn/prior)",
        f"{settings.bkt_p_guess}/{settings.bkt_p_slip}/{settings.bkt_p_learn}/{settings.bkt_prior}",
    )
    table.add_row("Diagnostic budget", str(settings.diagnostic_max_questions))
    table.add_row("Diagnostic TTL (s)", str(settings.diagnostic_ttl_seconds))
    table.add_row("Gate window", str(settings.gate_window))
    table.add_row("Struggle streak", str(settings.struggle_streak))
    table.add_row("Review max nodes", str(settings.review_max_nodes))

    console.print(table)


# ========================================
# STATE MACHINE
# ========================================


@app.command("transitions")
def show_transitions(
    state: str | None = typer.Argument(None, help="Only show transitions out of this state"),
) -> None:
    """Show the session state transition table."""
    from mastery_engine.session.state_machine import SessionState, allowed_transitions, recommended_action

    if state is not None:
        try:
            states = [SessionState(state.upper())]
        except ValueError:
            rprint(f"[red]✗[/red] Unknown state: {state}")
            raise typer.Exit(code=1)
    else:
        states = list(SessionState)

    table = Table(title="Session Transitions")
    table.add_column("From", style="cyan")
    table.add_column("Allowed targets", style="green")
    table.add_column("Action", style="dim")
    for s in states:
        table.add_row(s.value, ", ".join(t.value for t in allowed_transitions(s)), recommended_action(s))

    console.print(table)


# ========================================
# SCHEDULER
# ========================================


@app.command("schedule")
def show_schedule(
    interval: int = typer.Option(0, "--interval", "-i", help="Previous interval in days"),
    easiness: float = typer.Option(2.5, "--easiness", "-e", help="Current easiness factor"),
    count: int = typer.Option(0, "--count", "-c", help="Reviews completed so far"),
    correct: bool = typer.Option(True, "--correct/--incorrect", help="Outcome of this review"),
) -> None:
    """Compute the next review for one review attempt."""
    from mastery_engine.scheduling.scheduler import next_review

    try:
        result = next_review(interval, easiness, count, correct)
    except ValueError as e:
        rprint(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    table = Table(title="Next Review")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Interval (days)", str(result.interval))
    table.add_row("Easiness", f"{result.easiness:.2f}")
    table.add_row("Review count", str(result.review_count))
    table.add_row("Due", result.due_at.strftime("%Y-%m-%d %H:%M UTC"))
    console.print(table)


# ========================================
# DIAGNOSTIC
# ========================================


@app.command("diagnose")
def run_diagnostic(
    grade: str = typer.Option("K", "--grade", "-g", help="Registered grade level (K, G1, ...)"),
    known: int = typer.Option(
        5, "--known", "-k", help="Simulated student knows the first N concepts of the sequence"
    ),
    student: str = typer.Option("demo-student", "--student", "-s"),
) -> None:
    """Run a simulated standard-mode diagnostic against an in-memory store."""
    from mastery_engine.diagnostic.engine import DEFAULT_ORDERED_NODES
    from mastery_engine.diagnostic.service import DiagnosticService
    from mastery_engine.events.bus import EventBus
    from mastery_engine.persistence.memory import InMemoryRepository
    from mastery_engine.persistence.repository import seed_nodes

    repository = InMemoryRepository()
    seed_nodes(repository, default_catalogue())
    service = DiagnosticService(repository, event_bus=EventBus())

    known_codes = {n.node_code for n in DEFAULT_ORDERED_NODES[: max(known, 0)]}
    state = service.start(student, grade.upper())

    table = Table(title=f"Diagnostic ({grade.upper()}, knows {len(known_codes)} concepts)")
    table.add_column("#", style="dim")
    table.add_column("Concept", style="cyan")
    table.add_column("Answer")

    answer = None
    node_code = state.current_node_code
    while node_code is not None:
        is_correct = node_code in known_codes
        answer = service.submit_answer(state.session_id, node_code, is_correct)
        table.add_row(
            str(answer.state.questions_answered),
            node_code,
            "[green]correct[/green]" if is_correct else "[red]incorrect[/red]",
        )
        node_code = answer.next_node_code

    console.print(table)
    if answer is None or answer.placement is None:
        rprint("[yellow]⚠[/yellow] Diagnostic ended without a placement")
        raise typer.Exit(code=1)

    placement = answer.placement
    rprint(f"\n[bold]Frontier:[/bold] {placement.frontier_node_code}")
    rprint(f"[bold]Start at:[/bold] {placement.recommended_start_node}")
    rprint(f"[bold]Confidence:[/bold] {placement.confidence:.0%}")
    rprint(f"[bold]Gaps:[/bold] {', '.join(placement.gap_nodes) or 'none'}")
    rprint(f"\n{placement.summary}")


# ========================================
# REVIEWS
# ========================================


@app.command("reviews")
def show_reviews(
    student: str = typer.Argument(..., help="Student id"),
    days: int = typer.Option(7, "--days", "-d", help="Forecast window"),
) -> None:
    """Show due reviews and the upcoming forecast for a student."""
    from mastery_engine.persistence.sql import SqlRepository
    from mastery_engine.scheduling.scheduler import due_review_summary, upcoming_reviews

    repository = SqlRepository()
    scores = repository.list_masteries(student)
    now = utcnow()
    summary = due_review_summary(scores, now)

    color = {"none": "green", "due": "yellow", "overdue": "red"}[summary.urgency]
    rprint(
        f"[{color}]{summary.due_count} due, {summary.overdue_count} overdue[/{color}]"
        f" for {student}"
    )

    table = Table(title=f"Reviews, next {days} days")
    table.add_column("Day", style="cyan")
    table.add_column("Nodes", style="green")
    table.add_column("Overdue", style="red")
    for entry in upcoming_reviews(scores, days, now):
        table.add_row(entry.day.isoformat(), ", ".join(entry.node_codes), ", ".join(entry.overdue_codes))
    console.print(table)


# ========================================
# DATABASE COMMANDS
# ========================================

db_app = typer.Typer(help="Database management")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init(
    seed: bool = typer.Option(False, "--seed", help="Seed the K-G1 diagnostic catalogue"),
) -> None:
    """
    Create all tables if they don't exist.

    Safe to run multiple times (idempotent).
    """
    from mastery_engine.persistence.repository import seed_nodes
    from mastery_engine.persistence.sql import SqlRepository

    logger.info("Initializing database tables...")
    repository = SqlRepository()
    repository.init_db()
    rprint("[green]✓[/green] Database initialized!")

    if seed:
        count = seed_nodes(repository, default_catalogue())
        rprint(f"[green]✓[/green] Seeded {count} knowledge nodes")


# ========================================
# Entry Point
# ========================================


def configure_logging() -> None:
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB")


def main() -> None:
    """CLI entry point."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
