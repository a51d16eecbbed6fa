"""
Helix CLI - inspect and drive learner state from the terminal.

Usage:
    helix init u1                 # Create or load a learner's state
    helix status u1               # Helix position, metrics and sync info
    helix due u1                  # Content units due for review
    helix review u1 UNIT correct  # Record a review outcome
    helix sync u1                 # Reconcile with the backend now
    helix history u1              # Audited writes (sql backend)

Collaborators are built from HELIX_* settings (see helix_sync.config).
"""

from __future__ import annotations

import sys
from typing import Annotated

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from helix_sync.config import Settings, get_settings
from helix_sync.core.content import StaticContentConfig
from helix_sync.core.errors import InvalidStateError, SyncFailure
from helix_sync.core.events import ReviewRecorded
from helix_sync.core.helix import cursor_of, grouping_id, unit_at_cursor
from helix_sync.core.scheduler import Outcome, ReviewScheduler, SchedulerConfig
from helix_sync.core.state import utcnow
from helix_sync.session.manager import SessionManager
from helix_sync.store import LocalStateCache, build_record_store
from helix_sync.sync.engine import SyncEngine

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="helix",
    help="Learner state sync and scheduling",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def build_session_manager(settings: Settings) -> SessionManager:
    """Wire a SessionManager from settings (no background worker for one-shot commands)."""
    store = build_record_store(settings)
    engine = SyncEngine(
        store,
        max_attempts=settings.sync_max_attempts,
        backoff_seconds=settings.sync_backoff_seconds,
    )
    return SessionManager(
        engine,
        content=StaticContentConfig(units_per_tube=settings.units_per_tube),
        cache=LocalStateCache(settings.cache_dir),
        scheduler=ReviewScheduler(SchedulerConfig(base_interval_days=settings.base_interval_days)),
        grouping_size=settings.grouping_size,
        background=False,
    )


def _open_session(user_id: str) -> SessionManager:
    manager = build_session_manager(get_settings())
    manager.initialize(user_id)
    return manager


# =============================================================================
# Commands
# =============================================================================


@app.command("init")
def init_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
) -> None:
    """Load the learner's state, creating the default seed for a new learner."""
    manager = _open_session(user_id)
    try:
        state = manager.get_state()
        status = manager.sync_status
    finally:
        manager.close()

    synced = "[green]synced[/green]" if not status.has_unpushed_changes else "[yellow]offline[/yellow]"
    console.print(
        Panel(
            f"Learner [bold]{state.user_id}[/bold] at version {state.version} ({synced})\n"
            f"Current tube: {state.triple_helix_state.current_tube}",
            title="Initialized",
            border_style="cyan",
        )
    )


@app.command("status")
def status_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
) -> None:
    """Show helix position, progress metrics and sync status."""
    settings = get_settings()
    manager = _open_session(user_id)
    try:
        state = manager.get_state()
        status = manager.sync_status
    finally:
        manager.close()

    helix = state.triple_helix_state
    tubes = Table(title="Tubes", box=box.ROUNDED)
    tubes.add_column("Tube", justify="right")
    tubes.add_column("Active", justify="center")
    tubes.add_column("Next unit")
    tubes.add_column("Grouping")
    tubes.add_column("Queued", justify="right")
    for tube, queue in sorted(state.stitch_positions.items()):
        tubes.add_row(
            str(tube),
            "●" if tube == helix.current_tube else "",
            unit_at_cursor(state, tube) or "[dim]exhausted[/dim]",
            grouping_id(tube, cursor_of(state, tube), settings.grouping_size),
            str(len(queue)),
        )
    console.print(tubes)

    metrics = state.progress_metrics
    summary = Table(box=box.SIMPLE, show_header=False)
    summary.add_column("Metric", style="dim")
    summary.add_column("Value", justify="right")
    summary.add_row("Version", str(state.version))
    summary.add_row("Stitches completed", str(metrics.total_stitches_completed))
    summary.add_row("Time spent", f"{metrics.total_time_spent / 60:.1f} min")
    summary.add_row("Accuracy", f"{metrics.average_accuracy:.0%}")
    summary.add_row("Streak (longest)", f"{metrics.current_streak} ({metrics.longest_streak})")
    summary.add_row("Rotations", str(helix.rotation_count))
    summary.add_row(
        "Last sync",
        state.last_sync_time.isoformat(timespec="seconds") if state.last_sync_time else "never",
    )
    summary.add_row("Unpushed changes", "yes" if status.has_unpushed_changes else "no")
    console.print(summary)


@app.command("due")
def due_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max units to show")] = 20,
) -> None:
    """List content units due for review, earliest first."""
    manager = _open_session(user_id)
    try:
        state = manager.get_state()
        due = manager.due_items()
    finally:
        manager.close()

    if not due:
        console.print("[green]Nothing due.[/green]")
        return

    sr = state.spaced_repetition_state
    table = Table(title=f"Due for {user_id}", box=box.ROUNDED)
    table.add_column("Unit")
    table.add_column("Mastery", justify="right")
    table.add_column("Due since")
    for unit_id in due[:limit]:
        table.add_row(
            unit_id,
            str(sr.mastery_levels.get(unit_id, 0)),
            sr.next_review[unit_id].isoformat(timespec="minutes"),
        )
    console.print(table)


@app.command("review")
def review_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    unit_id: Annotated[str, typer.Argument(help="Content unit id")],
    outcome: Annotated[Outcome, typer.Argument(help="correct, incorrect or skipped")],
) -> None:
    """Record a review outcome and push it to the backend."""
    manager = _open_session(user_id)
    try:
        try:
            state = manager.apply_learning_event(
                ReviewRecorded(timestamp=utcnow(), content_unit_id=unit_id, outcome=outcome)
            )
        except InvalidStateError as exc:
            console.print(f"[red]Rejected:[/red] {exc.reason}")
            raise typer.Exit(code=1)

        try:
            manager.force_sync()
        except SyncFailure as exc:
            console.print(f"[yellow]Saved offline; sync failed:[/yellow] {exc.reason}")
    finally:
        manager.close()

    sr = state.spaced_repetition_state
    console.print(
        f"{unit_id}: mastery {sr.mastery_levels.get(unit_id, 0)}, "
        f"next review {sr.next_review[unit_id].isoformat(timespec='minutes')}"
        if unit_id in sr.next_review
        else f"{unit_id}: skipped"
    )


@app.command("sync")
def sync_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
) -> None:
    """Reconcile local state with the backend record now."""
    manager = _open_session(user_id)
    try:
        outcome = manager.force_sync()
    except SyncFailure as exc:
        console.print(f"[red]Sync failed:[/red] {exc.reason}")
        raise typer.Exit(code=1)
    finally:
        manager.close()

    console.print(
        f"[green]Sync {outcome.action.value}[/green] - {user_id} at v{outcome.state.version}"
        + (f" after {outcome.conflicts} conflict" if outcome.conflicts else "")
    )


@app.command("history")
def history_command(
    user_id: Annotated[str, typer.Argument(help="Learner id")],
    limit: Annotated[int, typer.Option("--limit", "-n", help="Max rows")] = 20,
) -> None:
    """Show audited writes for a learner (sql backend only)."""
    settings = get_settings()
    if settings.store_backend != "sql":
        console.print("[yellow]History is only recorded by the sql backend.[/yellow]")
        raise typer.Exit(code=1)

    store = build_record_store(settings)
    try:
        entries = store.history(user_id, limit=limit)
    finally:
        store.close()

    table = Table(title=f"History for {user_id}", box=box.ROUNDED)
    table.add_column("Change")
    table.add_column("Versions", justify="right")
    table.add_column("Source")
    table.add_column("At")
    for entry in entries:
        table.add_row(
            entry.change_type,
            f"{entry.version_from or '-'} → {entry.version_to}",
            entry.sync_source,
            entry.created_at.isoformat(timespec="seconds") if entry.created_at else "",
        )
    console.print(table)


# =============================================================================
# Entry Point
# =============================================================================


@app.callback()
def main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Verbose output")
    ] = False,
) -> None:
    """
    Learner state sync and scheduling.

    \b
    Backends (HELIX_STORE_BACKEND):
      sql    - SQLAlchemy database (default, local SQLite)
      http   - backend REST API
      memory - in-process only
    """
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def run() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
