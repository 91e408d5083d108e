"""
hubsync push / pull / status - Whole-state snapshot commands.
"""

from pathlib import Path

import typer
from rich.table import Table

from hubsync.cli.common import EnvOption, ProjectDirOption, VerboseOption, console, run_engine


def push(
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Upload the full local state, replacing the remote snapshot.
    """
    created_at = run_engine(project_dir, env, verbose, lambda engine: engine.push())
    console.print(f"[green]Snapshot pushed[/green] ({created_at.isoformat()})")


def pull(
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    if_auto_sync: bool = typer.Option(
        False,
        "--if-auto-sync",
        help="Pull without asking, but only when automatic sync is on (for startup scripts)",
    ),
) -> None:
    """
    Replace every local table with the remote snapshot.
    """
    if if_auto_sync:
        created_at = run_engine(project_dir, env, verbose, lambda engine: engine.pull_if_auto_sync())
        if created_at is None:
            console.print("Automatic sync is off; nothing pulled.")
            return
    else:
        if not yes:
            typer.confirm("This replaces all local data with the cloud snapshot. Continue?", abort=True)
        created_at = run_engine(project_dir, env, verbose, lambda engine: engine.pull())
    console.print(f"[green]Snapshot pulled[/green] (created {created_at.isoformat()})")


def status(
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Describe the remote snapshot and storage usage.
    """
    remote = run_engine(project_dir, env, verbose, lambda engine: engine.status())

    console.print(f"\n[bold blue]Provider:[/bold blue] {remote.provider.value}")
    if remote.quota is not None:
        console.print(
            f"[bold blue]Storage:[/bold blue] {remote.quota.used:,} / {remote.quota.total:,} bytes "
            f"({remote.quota.percent:.1f}%)"
        )

    if remote.snapshot is None:
        console.print("[yellow]No snapshot has been pushed yet.[/yellow]")
        return

    table = Table(title=f"Snapshot v{remote.snapshot.version} ({remote.snapshot.created_at.isoformat()})")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name, rows in remote.snapshot.row_counts.items():
        table.add_row(name, str(rows))
    console.print(table)
