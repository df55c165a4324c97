"""CLI for personahub."""

import contextlib
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .constants import CONFIG_FILE, PERSONAHUB_DIR
from .context import ProjectContext
from .engine import SnapshotEngine
from .errors import NotInitializedError, PersonaHubError
from .utils import format_iso_date, humanize_size, truncate


app = typer.Typer(help="""\
Local snapshot history for your text files. Save point-in-time copies,
compare them, and restore any earlier version.""")

console = Console()


@app.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


@contextlib.contextmanager
def _cli_errors(quiet: bool = False) -> Iterator[None]:
    """Turn engine errors into a red message and exit code 1."""
    try:
        yield
    except PersonaHubError as e:
        if not quiet:
            console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(1)


def require_engine(quiet: bool = False) -> SnapshotEngine:
    """Find the initialized working directory and return its engine.

    Raises:
        typer.Exit: If not inside an initialized directory
    """
    try:
        ctx = ProjectContext.discover()
    except NotInitializedError as e:
        if not quiet:
            console.print(f"[red]✗[/red] {escape(str(e))}")
            console.print()
            console.print("To start tracking this directory, run:")
            console.print("  [cyan]personahub init[/cyan]")
        raise typer.Exit(1)
    return SnapshotEngine(ctx.root)


def _default_message(auto: bool) -> str:
    stamp = datetime.now().strftime("%Y-%m-%d %H:%M")
    return f"Auto-snapshot {stamp}" if auto else f"Snapshot {stamp}"


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Re-initialize, moving the existing store aside"),
):
    """Initialize snapshot tracking in the current directory.

    Examples:
        personahub init          # Start tracking
        personahub init --force  # Start over, keeping the old store as a backup
    """
    root = Path.cwd()
    ctx = ProjectContext(root)

    if ctx.storage_dir.exists():
        if not force:
            console.print("[red]✗[/red] PersonaHub already initialized in this directory")
            console.print("Use [cyan]--force[/cyan] to re-initialize")
            raise typer.Exit(1)
        backup_dir = ctx.storage_dir.with_name(f"{PERSONAHUB_DIR}.backup.{int(time.time())}")
        ctx.storage_dir.rename(backup_dir)
        console.print(f"[yellow]⚠[/yellow] Backed up existing store to {backup_dir.name}")

    with _cli_errors(), SnapshotEngine(root) as engine:
        result = engine.init()

    console.print("[green]✓[/green] PersonaHub initialized")
    console.print(f"  Found [cyan]{result.file_count}[/cyan] files matching patterns")
    console.print(f"  Config: [dim]{PERSONAHUB_DIR}/{CONFIG_FILE}[/dim]")
    console.print()
    console.print("Run [cyan]personahub save[/cyan] to create your first snapshot")


@app.command()
def save(
    message: Optional[str] = typer.Argument(None, help="Snapshot message"),
    auto: bool = typer.Option(False, "--auto", "-a", help="Mark as automatic (for cron/schedulers)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output"),
    skip_unchanged: bool = typer.Option(False, "--skip-unchanged", help="Do nothing if no changes since the latest snapshot"),
):
    """Create a new snapshot of the tracked files.

    Examples:
        personahub save "Before rewrite"
        personahub save --auto --quiet --skip-unchanged   # From cron
    """
    engine = require_engine(quiet)
    message = message or _default_message(auto)

    with _cli_errors(quiet), engine:
        if skip_unchanged and not engine.has_changes():
            if not quiet:
                console.print("[yellow]No changes detected, skipping snapshot[/yellow]")
            return

        result = engine.create_snapshot(message, is_auto=auto)

    if quiet:
        return
    if result.reused:
        console.print(
            f"[yellow]No changes[/yellow] - state matches snapshot #{result.id} - {escape(result.message or '')}"
        )
    else:
        console.print(f"[green]✓[/green] Snapshot created: #{result.id} - {escape(message)}")
    console.print(f"  [dim]{result.summary()}[/dim]")


@app.command("list")
def list_snapshots(
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Maximum number of snapshots to show"),
):
    """Show the snapshot timeline, newest first."""
    engine = require_engine()

    with _cli_errors(), engine:
        snapshots = engine.list_snapshots(limit)

    if not snapshots:
        console.print("[yellow]No snapshots yet.[/yellow]")
        console.print("Run [cyan]personahub save[/cyan] to create one.")
        return

    table = Table(title=f"PersonaHub Timeline ({len(snapshots)} snapshots)")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Date", style="dim")
    table.add_column("Message")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Type", style="dim")

    for snap in snapshots:
        kind = "backup" if snap.is_restore_backup else ("auto" if snap.is_auto else "")
        table.add_row(
            f"#{snap.id}",
            format_iso_date(snap.created_at),
            escape(truncate(snap.message or "(no message)", 40)),
            str(snap.file_count),
            humanize_size(snap.total_size_bytes),
            kind,
        )

    console.print(table)
    console.print(
        "[dim]Use [cyan]personahub diff <id>[/cyan] to compare | "
        "[cyan]personahub restore <id>[/cyan] to restore[/dim]"
    )


app.command("ls", hidden=True)(list_snapshots)


@app.command()
def diff(
    snapshot_id: int = typer.Argument(..., min=1, help="Snapshot to compare from"),
    compare_to: Optional[int] = typer.Argument(None, min=1, help="Snapshot to compare to (default: working directory)"),
    stat: bool = typer.Option(False, "--stat", "-s", help="Show summary only"),
):
    """Compare a snapshot with the working directory or another snapshot.

    Examples:
        personahub diff 3       # Snapshot #3 vs. current files
        personahub diff 3 5     # Snapshot #3 vs. snapshot #5
        personahub diff 3 --stat
    """
    engine = require_engine()

    with _cli_errors(), engine:
        result = engine.diff(snapshot_id, compare_to)

    target = f"#{compare_to}" if compare_to is not None else "current"
    console.print(f"[bold]Comparing snapshot #{snapshot_id} with {target}[/bold]\n")

    if result.is_empty:
        console.print("[green]No differences[/green]")
        return

    console.print(
        f"Files changed: [green]{len(result.added)} added[/green], "
        f"[red]{len(result.removed)} removed[/red], "
        f"[yellow]{len(result.modified)} modified[/yellow]\n"
    )
    for path in result.added:
        console.print(f"[green]+ {escape(path)} (new)[/green]")
    for path in result.removed:
        console.print(f"[red]- {escape(path)} (deleted)[/red]")
    for mod in result.modified:
        console.print(f"[yellow]~ {escape(mod.path)} ({mod.changed_line_count} lines changed)[/yellow]")

    if stat:
        return
    for mod in result.modified:
        console.print()
        console.print(f"[dim]─── {escape(mod.path)} {'─' * max(0, 40 - len(mod.path))}[/dim]")
        console.print(mod.diff_text, markup=False, highlight=False, end="")


@app.command()
def restore(
    snapshot_id: int = typer.Argument(..., min=1, help="Snapshot to restore"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Restore tracked files to a snapshot.

    A backup snapshot of the current state is always created first. Files
    added since the snapshot are left in place.
    """
    engine = require_engine()

    with _cli_errors(), engine:
        preview = engine.get_restore_preview(snapshot_id)

        console.print(f"[bold]Restore to snapshot #{snapshot_id}?[/bold]\n")
        console.print("This will:")
        if preview.overwrite:
            console.print(f"[yellow]  • Overwrite {len(preview.overwrite)} files[/yellow]")
        if preview.remove:
            console.print(f"[red]  • Leave {len(preview.remove)} files orphaned (not in snapshot, not deleted)[/red]")
        if preview.restore:
            console.print(f"[green]  • Restore {len(preview.restore)} files (deleted since snapshot)[/green]")
        console.print("[dim]  • Create a backup snapshot first[/dim]\n")

        if not force and not typer.confirm("Proceed?", default=False):
            console.print("Restore cancelled")
            return

        result = engine.restore(snapshot_id)

    console.print(f"[green]✓[/green] Restored to snapshot #{snapshot_id}")
    console.print(f"  [dim]Backup created: #{result.backup_id}[/dim]")


@app.command()
def cleanup(
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be deleted without deleting"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output"),
):
    """Remove old snapshots according to the retention policy."""
    engine = require_engine(quiet)

    with _cli_errors(quiet), engine:
        policy = engine.config.retention
        result = engine.cleanup(dry_run=dry_run)

    if quiet:
        return

    if dry_run:
        console.print("[bold]Retention Policy:[/bold]")
        console.print(f"  Auto snapshots: {policy.auto_snapshot_days} days")
        console.print(f"  Manual snapshots: {policy.manual_snapshot_days} days")
        console.print(f"  Minimum kept: {policy.min_snapshots}\n")
        if result.deleted:
            ids = ", ".join(f"#{i}" for i in result.deleted)
            console.print(f"Would delete {len(result.deleted)} snapshots: {ids}")
        console.print("[yellow]Dry run - no changes made[/yellow]")
        return

    if not result.deleted:
        console.print("[green]✓[/green] No snapshots to clean up")
    else:
        console.print(f"[green]✓[/green] Cleaned up {len(result.deleted)} old snapshots")
    console.print(f"  [dim]{result.kept} snapshots kept[/dim]")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
