"""
Typer CLI for the trivia feed engine.

Commands:
    triviafeed import FILE          - Load a JSON question bank into the pool
    triviafeed feed USER            - Ask for more feed items (checkpoint)
    triviafeed answer USER Q IDX    - Record an answer
    triviafeed skip USER Q          - Record a skip
    triviafeed weights USER         - Show the user's topic weights
    triviafeed sync                 - Upload queued events and pull remote ones
    triviafeed sync --watch         - Keep syncing every sync_interval_seconds
    triviafeed pull USER            - Pull one user's remote events
    triviafeed status               - Show local store counts
    triviafeed prune-feed-log       - Delete old feed change records

Usage:
    triviafeed --help
    triviafeed import data/questions.json --user alice
    triviafeed feed alice --count 10
    triviafeed answer alice q-123 2
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import typer
from loguru import logger
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config import get_settings
from triviafeed import __version__
from triviafeed.core.models import FeedBatch, FeedReason

app = typer.Typer(
    help="trivia feed engine: adaptive question selection and weight sync",
    no_args_is_help=True,
)
console = Console()


# ========================================
# Context Builder
# ========================================


class CLIContext:
    """Lazily builds the engine so --help never touches the database."""

    def __init__(self, with_remote: bool = False):
        self.settings = get_settings()
        self.with_remote = with_remote
        self._engine = None

    @property
    def engine(self):
        if self._engine is None:
            from triviafeed.engine import build_engine

            self._engine = build_engine(self.settings, with_remote=self.with_remote)
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close()


def _print_batch(ctx: CLIContext, batch: FeedBatch) -> None:
    table = Table(title=f"Feed for {batch.user_id} ({batch.reason.value})", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Question ID", style="cyan")
    table.add_column("Topic", style="green")
    table.add_column("Question")

    for i, question_id in enumerate(batch.question_ids, start=1):
        question = ctx.engine.pool.get(question_id)
        topic = question.topic if question else "?"
        if question and question.subtopic:
            topic = f"{topic} / {question.subtopic}"
        table.add_row(str(i), question_id, topic, question.text if question else "")

    console.print(table)
    stats = batch.stats
    rprint(
        f"  [dim]total={stats.total} considered={stats.considered} "
        f"excluded={stats.excluded} returned={stats.returned}[/dim]"
    )
    if batch.pool_exhausted:
        rprint(
            f"[yellow]⚠[/yellow] Pool exhausted: {batch.exhausted.shortfall} fewer questions than requested"
        )


# ========================================
# FEED COMMANDS
# ========================================


@app.command("import")
def import_questions(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON question bank"),
    users: list[str] = typer.Option([], "--user", "-u", help="Refill these users' feeds"),
) -> None:
    """Load questions into the pool; duplicates are reported, not fatal."""
    from triviafeed.pool.loader import load_questions_file

    ctx = CLIContext()
    try:
        questions, errors = load_questions_file(path)
        result = ctx.engine.import_questions(questions, user_ids=users)

        table = Table(title="Import Summary", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Count", justify="right")
        table.add_row("Records read", str(len(questions) + len(errors)))
        table.add_row("Accepted", str(result.report.accepted_count))
        table.add_row("Saved", str(result.saved))
        table.add_row("Duplicates", str(result.report.duplicate_count))
        table.add_row("Invalid", str(len(errors)))
        table.add_row("Pool size", str(len(ctx.engine.pool)))
        console.print(table)

        for batch in result.batches.values():
            _print_batch(ctx, batch)
    finally:
        ctx.close()


@app.command("feed")
def feed(
    user: str = typer.Argument(..., help="User ID"),
    count: int = typer.Option(None, "--count", "-n", help="Questions to add (default: feed_batch_size)"),
) -> None:
    """Ask the feed assembler for more questions."""
    ctx = CLIContext()
    try:
        _print_batch(ctx, ctx.engine.need_more(user, FeedReason.CHECKPOINT, count))
    finally:
        ctx.close()


@app.command("answer")
def answer(
    user: str = typer.Argument(..., help="User ID"),
    question_id: str = typer.Argument(..., help="Question ID"),
    answer_index: int = typer.Argument(..., help="Index of the chosen answer"),
) -> None:
    """Record an answer and show the replacement item."""
    ctx = CLIContext()
    try:
        result = ctx.engine.record_answer(user, question_id, answer_index=answer_index)
        if not result.success:
            rprint(f"[red]✗[/red] {result.error}")
            raise typer.Exit(1)
        correct = result.events[0].interaction_type.value if result.events else "?"
        rprint(f"[green]✓[/green] Recorded {correct} answer ({len(result.events)} weight events)")
        if result.batch is not None:
            _print_batch(ctx, result.batch)
    finally:
        ctx.close()


@app.command("skip")
def skip(
    user: str = typer.Argument(..., help="User ID"),
    question_id: str = typer.Argument(..., help="Question ID"),
) -> None:
    """Record a skip and show the replacement item."""
    ctx = CLIContext()
    try:
        result = ctx.engine.record_skip(user, question_id)
        if not result.success:
            rprint(f"[red]✗[/red] {result.error}")
            raise typer.Exit(1)
        compensated = any(e.skip_compensation_applied for e in result.events)
        rprint(
            f"[green]✓[/green] Recorded skip"
            + (" [dim](compensated by recent correct answers)[/dim]" if compensated else "")
        )
        if result.batch is not None:
            _print_batch(ctx, result.batch)
    finally:
        ctx.close()


@app.command("weights")
def weights(user: str = typer.Argument(..., help="User ID")) -> None:
    """Show the user's interest weights per topic level."""
    ctx = CLIContext()
    try:
        records = ctx.engine.topic_weights(user)
        current = ctx.engine.current_weights(user)
        if not records:
            rprint(f"[yellow]No weights recorded for {user}[/yellow]")
            return

        table = Table(title=f"Topic Weights for {user}", show_header=True)
        table.add_column("Topic level", style="cyan")
        table.add_column("Score", justify="right", style="green")
        table.add_column("Current", justify="right")
        table.add_column("Samples", justify="right", style="dim")
        table.add_column("Last updated", style="dim")
        for key in sorted(records, key=lambda k: k.label.casefold()):
            record = records[key]
            table.add_row(
                key.label,
                f"{record.score:.3f}",
                f"{current.get(key, record.score):.3f}",
                str(record.sample_count),
                record.last_updated.strftime("%Y-%m-%d %H:%M") if record.last_updated else "-",
            )
        console.print(table)
    finally:
        ctx.close()


# ========================================
# SYNC COMMANDS
# ========================================


def _print_sync_result(result) -> None:
    table = Table(title="Sync Results", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Uploaded", str(result.uploaded))
    table.add_row("Still queued", str(result.pending))
    table.add_row("Pulled", str(result.pulled))
    table.add_row("Applied", str(result.applied))
    if result.degraded_columns:
        table.add_row("Omitted columns", ", ".join(result.degraded_columns))
    console.print(table)

    if result.offline:
        rprint("[yellow]⚠[/yellow] Remote store unreachable; events stay queued")
    elif result.errors:
        rprint(f"[yellow]⚠[/yellow] {len(result.errors)} errors occurred during sync")
        for error in result.errors[:5]:
            rprint(f"  [dim]{error}[/dim]")
    else:
        rprint("[bold green]✓ Sync complete![/bold green]")


@app.command("sync")
def sync(
    users: list[str] = typer.Option([], "--user", "-u", help="Also pull for these users"),
    watch: bool = typer.Option(False, "--watch", "-w", help="Keep syncing in the background"),
    interval: float = typer.Option(
        None, "--interval", "-i", help="Seconds between syncs with --watch (default from settings)"
    ),
) -> None:
    """Upload queued weight events and pull other devices' events."""
    ctx = CLIContext(with_remote=True)
    try:
        _print_sync_result(ctx.engine.sync(user_ids=users or None))
        if not watch:
            return

        seconds = interval if interval is not None else ctx.settings.sync_interval_seconds
        engine = ctx.engine

        def report(sync_status) -> None:
            rprint(f"[dim]{engine.background.get_status_line()}[/dim]")

        if not engine.start_background_sync(seconds, on_sync_complete=report):
            rprint("[yellow]⚠[/yellow] Background sync disabled (no remote store or interval <= 0)")
            return
        rprint(f"[dim]Syncing every {seconds}s, Ctrl+C to stop[/dim]")
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            rprint("\n[dim]Stopping background sync...[/dim]")
    finally:
        ctx.close()


@app.command("pull")
def pull(user: str = typer.Argument(..., help="User ID")) -> None:
    """Pull one user's events created on other devices."""
    from triviafeed.core.errors import SyncTransportError

    ctx = CLIContext(with_remote=True)
    try:
        applied = ctx.engine.pull_remote(user)
        rprint(f"[green]✓[/green] Applied {applied} remote weight events for {user}")
    except SyncTransportError as e:
        rprint(f"[red]✗[/red] Pull failed: {e}")
        raise typer.Exit(1)
    finally:
        ctx.close()


@app.command("status")
def status() -> None:
    """Show local store counts and the sync outbox."""
    ctx = CLIContext()
    try:
        counts = ctx.engine.store.snapshot_counts()

        table = Table(title="Local Store", show_header=True)
        table.add_column("Table", style="cyan")
        table.add_column("Rows", justify="right")
        table.add_row("Questions", str(counts["questions"]))
        table.add_row("Question states", str(counts["question_states"]))
        table.add_row("Weight events", str(counts["weight_changes"]))
        table.add_row("Queued for upload", str(counts["pending_events"]))
        table.add_row("Pool size", str(len(ctx.engine.pool)))
        console.print(table)
        rprint(f"  [dim]device={ctx.settings.device_id} remote={ctx.settings.remote_url or '-'}[/dim]")
    finally:
        ctx.close()


@app.command("prune-feed-log")
def prune_feed_log(
    days: int = typer.Option(None, "--days", "-d", help="Retention in days (default from settings)"),
) -> None:
    """Delete feed change records older than the retention period."""
    ctx = CLIContext()
    try:
        retention = days if days is not None else ctx.settings.feed_change_retention_days
        deleted = ctx.engine.store.prune_feed_changes(retention)
        rprint(f"[green]✓[/green] Deleted {deleted} feed change records older than {retention} days")
    finally:
        ctx.close()


@app.command("version")
def show_version() -> None:
    """Show version information."""
    rprint(f"[bold]triviafeed[/bold] v{__version__}")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    settings = get_settings()
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)

    app()


if __name__ == "__main__":
    main()
