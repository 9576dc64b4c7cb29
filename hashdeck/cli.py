"""
hashdeck: command-line drill for plain-text flashcard decks.

A Rich terminal interface over the Drill handle. Scheduling state lives in
a local SQLite file; decks are read from a collection directory.

Commands:
- hashdeck drill     - Start a drill session
- hashdeck check     - Parse decks and report errors
- hashdeck stats     - Show collection statistics
- hashdeck orphans   - List or delete states whose cards are gone
- hashdeck export    - Write the collection snapshot as JSON
- hashdeck import    - Replace the collection snapshot from JSON
"""
from __future__ import annotations

import json
import sys
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .card_parser import parse_decks
from .config import Settings, get_settings
from .deck_source import DirectoryDeckSource
from .drill import KEYBINDINGS, AnswerControls, Drill
from .errors import FormatError, InvalidGrade, InvalidState, NothingToUndo
from .scheduler import Grade, Stage
from .session_engine import SessionSummary
from .state_store import StateStore

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="hashdeck",
    help="hashdeck: spaced repetition for plain-text decks",
    no_args_is_help=True,
)
orphans_app = typer.Typer(help="Inspect or delete states of cards no longer in any deck")
app.add_typer(orphans_app, name="orphans")

console = Console()


# =============================================================================
# Styling
# =============================================================================

STYLES = {
    "info": "bold cyan",
    "warning": "bold yellow",
    "error": "bold red",
    "dim": "dim",
    "grade": {
        Grade.FORGOT: "red",
        Grade.HARD: "yellow",
        Grade.GOOD: "green",
        Grade.EASY: "bright_blue",
    },
}


class StatsFormat(str, Enum):
    TABLE = "table"
    JSON = "json"


def key_help(controls: AnswerControls = AnswerControls.FULL) -> str:
    offered = {grade.value for grade in controls.grades}
    grades = "  ".join(f"{key} {action}" for key, action in KEYBINDINGS.items() if action in offered)
    return f"[dim]space reveal | {grades} | u undo | q quit[/dim]"


def style_grade(grade: Grade) -> str:
    color = STYLES["grade"][grade]
    return f"[{color}]{grade.value}[/{color}]"


# =============================================================================
# Wiring
# =============================================================================


def _open_collection(
    directory: Path | None,
    db: Path | None,
    settings: Settings,
    today: date,
) -> tuple[Drill, StateStore]:
    """Load decks, then overlay the saved snapshot."""
    source = DirectoryDeckSource(directory or settings.collection_dir, settings.deck_pattern)
    drill = Drill(settings.scheduler_config(), settings.cloze_placeholder)
    drill.load(source.load(), today)

    state = StateStore(db or settings.state_db)
    snapshot = state.load_snapshot()
    if snapshot:
        try:
            drill.import_state(snapshot)
        except FormatError as e:
            state.close()
            console.print(f"[red]Saved state is unreadable:[/red] {e}")
            raise typer.Exit(1) from e
    return drill, state


def _report_parse_errors(drill: Drill) -> None:
    if drill.parse_errors:
        console.print(
            f"[yellow]{len(drill.parse_errors)} malformed card blocks skipped "
            f"(run 'hashdeck check' for details)[/yellow]"
        )


def dispatch_key(key: str, controls: AnswerControls = AnswerControls.FULL) -> str | None:
    """
    Map a typed key to a drill action.

    Grades not offered by `controls` count as unknown keys.

    Returns:
        "reveal", "undo", "quit", a grade token, or None for unknown keys
    """
    if key == "" or key.isspace():
        return "reveal"
    key = key.strip().lower()
    if key in ("q", "quit"):
        return "quit"
    if key in KEYBINDINGS:
        action = KEYBINDINGS[key]
    else:
        try:
            action = Grade.parse(key).value
        except InvalidGrade:
            return None
    if action in ("reveal", "undo"):
        return action
    return action if Grade(action) in controls.grades else None


# =============================================================================
# Display Helpers
# =============================================================================


def display_card(drill: Drill) -> None:
    """Show the current card, with its answer once revealed."""
    progress = drill.progress()
    header = f"Card {progress.reviewed + 1}/{progress.total}  |  {drill.current_deck()}"

    content = drill.current_front()
    if drill.is_revealed():
        content += f"\n\n[dim]{'-' * 20}[/dim]\n\n{drill.current_back()}"

    console.print(
        Panel(
            content,
            title=header,
            title_align="left",
            border_style="green" if drill.is_revealed() else "cyan",
            padding=(1, 2),
        )
    )


def _display_session_summary(summary: SessionSummary) -> None:
    grades = "  ".join(
        f"{style_grade(grade)} {summary.grades.get(grade, 0)}" for grade in Grade
    )
    console.print("\n")
    console.print(
        Panel(
            f"[bold]Session Complete![/bold]\n\n"
            f"Cards reviewed: {summary.reviewed}\n"
            f"Remaining: {summary.remaining}\n"
            f"Grades: {grades}\n"
            f"Duration: {summary.elapsed_seconds / 60:.1f} minutes "
            f"({summary.seconds_per_card:.1f}s per card)",
            title="Summary",
            border_style="green",
        )
    )


# =============================================================================
# Commands
# =============================================================================


@app.command()
def drill(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
    card_limit: Optional[int] = typer.Option(
        None, "--card-limit", "-c", min=0, help="Maximum cards in this session"
    ),
    new_card_limit: Optional[int] = typer.Option(
        None, "--new-card-limit", "-n", min=0, help="Maximum new cards in this session"
    ),
    from_deck: Optional[str] = typer.Option(None, "--from-deck", help="Only drill this deck"),
    shuffle: Optional[bool] = typer.Option(
        None, "--shuffle/--no-shuffle", help="Shuffle the review queue"
    ),
    bury_siblings: Optional[bool] = typer.Option(
        None, "--bury-siblings/--no-bury-siblings", help="One cloze deletion per card per session"
    ),
    answer_controls: Optional[AnswerControls] = typer.Option(
        None, "--answer-controls", case_sensitive=False, help="full (four grades) or binary (forgot/good)"
    ),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
) -> None:
    """
    Start an interactive drill session.

    Shows each due card, reveals the answer on space, and records the
    grade you give it. Progress is saved after every grade.
    """
    settings = get_settings()
    today = date.today()
    collection, state = _open_collection(directory, db, settings, today)

    if collection.collection_size() == 0:
        state.close()
        console.print("\n[red]No cards found![/red]")
        console.print(f"Looking in: {(directory or settings.collection_dir).absolute()}")
        raise typer.Exit(1)
    _report_parse_errors(collection)

    started_at = datetime.now()
    queued = collection.start_session(
        today,
        shuffle=settings.shuffle if shuffle is None else shuffle,
        card_limit=card_limit if card_limit is not None else settings.card_limit,
        new_card_limit=new_card_limit if new_card_limit is not None else settings.new_card_limit,
        deck_filter=from_deck,
        bury_siblings=settings.bury_siblings if bury_siblings is None else bury_siblings,
        started_at=started_at,
    )

    if queued == 0:
        state.close()
        console.print("\n[green]Nothing due for review![/green]")
        console.print("All caught up. Check back tomorrow.")
        raise typer.Exit(0)

    controls = answer_controls or settings.answer_controls
    prompt = key_help(controls)
    console.print(f"\n[bold]Session: {queued} cards[/bold]")
    session_id = state.start_session(started_at)

    try:
        while collection.is_active():
            display_card(collection)
            action = dispatch_key(Prompt.ask(prompt, default="", show_default=False), controls)

            if action is None:
                console.print("[yellow]Unknown key[/yellow]")
            elif action == "quit":
                break
            elif action == "reveal":
                collection.reveal()
            elif action == "undo":
                history = collection.session.history
                try:
                    collection.undo()
                except NothingToUndo:
                    console.print("[yellow]Nothing to undo[/yellow]")
                    continue
                state.delete_last_review(history[-1].card_id)
                state.save_snapshot(collection.export_state())
            else:
                now = datetime.now()
                try:
                    collection.grade(action, now)
                except InvalidState:
                    console.print("[yellow]Reveal the card first (space)[/yellow]")
                    continue
                entry = collection.session.history[-1]
                result = collection.store.get(entry.card_id)
                state.log_review(entry.card_id, entry.grade.value, now, result.interval, result.due)
                state.save_snapshot(collection.export_state())

    except (KeyboardInterrupt, EOFError):
        console.print("\n\n[yellow]Session interrupted.[/yellow]")

    summary = collection.summary(datetime.now())
    state.save_snapshot(collection.export_state())
    state.end_session(session_id, summary.reviewed, summary.recall_rate)
    state.close()

    _display_session_summary(summary)


@app.command()
def check(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
) -> None:
    """Parse every deck and report malformed card blocks."""
    settings = get_settings()
    source = DirectoryDeckSource(directory or settings.collection_dir, settings.deck_pattern)
    result = parse_decks(source.load(), settings.cloze_placeholder)

    if result.errors:
        table = Table(title=f"{len(result.errors)} parse errors")
        table.add_column("Location", style="dim")
        table.add_column("Problem")
        for error in result.errors:
            table.add_row(f"{error.source}:{error.line + 1}", error.message)
        console.print(table)
        raise typer.Exit(1)

    console.print(
        f"[green]OK:[/green] {len(result.cards)} cards in {len(result.deck_names)} decks"
    )


def collection_stats(collection: Drill, state: StateStore, today: date) -> dict:
    """Collection and review-history figures shared by both stats formats."""
    db_stats = state.get_stats()
    stage_counts = collection.store.stage_counts()
    return {
        "decks": len(collection.deck_names()),
        "cards": collection.collection_size(),
        "due_today": len(collection.store.due_ids(today)),
        "stages": {stage.value: stage_counts[stage] for stage in Stage},
        "orphans": len(collection.orphan_ids()),
        "parse_errors": len(collection.parse_errors),
        "total_reviews": db_stats["total_reviews"],
        "retention_rate_percent": db_stats["retention_rate_percent"],
        "sessions_completed": db_stats["sessions_completed"],
        "recent_sessions": [
            {
                "started_at": s.started_at.isoformat(),
                "cards_reviewed": s.cards_reviewed,
                "recall_rate": s.recall_rate,
            }
            for s in state.get_session_history(limit=5)
        ],
    }


@app.command()
def stats(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
    output_format: StatsFormat = typer.Option(
        StatsFormat.TABLE, "--format", "-f", case_sensitive=False, help="table or json"
    ),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
) -> None:
    """Show collection statistics and review history."""
    settings = get_settings()
    today = date.today()
    collection, state = _open_collection(directory, db, settings, today)
    figures = collection_stats(collection, state, today)
    state.close()

    if output_format is StatsFormat.JSON:
        typer.echo(json.dumps(figures, indent=2))
        return

    console.print("\n[bold cyan]Collection Statistics[/bold cyan]")
    console.print("=" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Decks", str(figures["decks"]))
    table.add_row("Cards", str(figures["cards"]))
    table.add_row("Due today", str(figures["due_today"]))
    for stage, count in figures["stages"].items():
        table.add_row(f"  {stage}", str(count))
    table.add_row("Orphaned states", str(figures["orphans"]))
    table.add_row("Parse errors", str(figures["parse_errors"]))
    table.add_row("Total reviews", str(figures["total_reviews"]))
    table.add_row("Retention rate", f"{figures['retention_rate_percent']:.1f}%")
    table.add_row("Sessions completed", str(figures["sessions_completed"]))
    console.print(table)

    if figures["recent_sessions"]:
        console.print("\n[bold]Recent Sessions[/bold]")
        session_table = Table()
        session_table.add_column("Date")
        session_table.add_column("Cards")
        session_table.add_column("Recall")
        for s in figures["recent_sessions"]:
            session_table.add_row(
                datetime.fromisoformat(s["started_at"]).strftime("%Y-%m-%d %H:%M"),
                str(s["cards_reviewed"]),
                f"{s['recall_rate'] * 100:.0f}%",
            )
        console.print(session_table)


@orphans_app.command("list")
def orphans_list(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
) -> None:
    """List ids of states whose card is in no deck."""
    collection, state = _open_collection(directory, db, get_settings(), date.today())
    state.close()

    orphans = collection.orphan_ids()
    if not orphans:
        console.print("[green]No orphaned states.[/green]")
        return
    for card_id in orphans:
        console.print(card_id)
    console.print(f"\n[dim]{len(orphans)} orphaned states[/dim]")


@orphans_app.command("delete")
def orphans_delete(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
    confirm: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete states whose card is in no deck. This cannot be undone."""
    collection, state = _open_collection(directory, db, get_settings(), date.today())

    count = len(collection.orphan_ids())
    if count == 0:
        state.close()
        console.print("[green]No orphaned states.[/green]")
        return
    if not confirm and not Confirm.ask(f"Delete {count} orphaned states?", default=False):
        state.close()
        raise typer.Exit(0)

    deleted = collection.delete_orphans()
    state.save_snapshot(collection.export_state())
    state.close()
    console.print(f"[green]Deleted {deleted} orphaned states[/green]")


@app.command()
def export(
    directory: Optional[Path] = typer.Argument(None, help="Collection directory"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
) -> None:
    """Export every memory state as a JSON snapshot."""
    collection, state = _open_collection(directory, db, get_settings(), date.today())
    state.close()

    snapshot = collection.export_state()
    if output is None:
        typer.echo(snapshot)
        return
    output.write_text(snapshot + "\n", encoding="utf-8")
    console.print(f"[green]Exported {len(collection.store)} states to {output}[/green]")


@app.command("import")
def import_(
    snapshot_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot JSON"),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Collection directory"),
    db: Optional[Path] = typer.Option(None, "--db", help="State database file"),
) -> None:
    """Replace every memory state with a JSON snapshot."""
    collection, state = _open_collection(directory, db, get_settings(), date.today())
    try:
        count = collection.import_state(snapshot_file.read_text(encoding="utf-8"))
    except FormatError as e:
        state.close()
        console.print(f"[red]Import failed:[/red] {e}")
        raise typer.Exit(1) from e

    state.save_snapshot(collection.export_state())
    state.close()
    console.print(f"[green]Imported {count} states[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    # Configure logging
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level,
        format="<level>{message}</level>",
    )

    app()


if __name__ == "__main__":
    main()
