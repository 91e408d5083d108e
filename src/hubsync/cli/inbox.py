"""
hubsync inbox - Poll, inspect and clean the shared submission inbox.
"""

import json
from pathlib import Path

import typer
from rich.table import Table

from hubsync.cli.common import EnvOption, ProjectDirOption, VerboseOption, console, fail, run_engine
from hubsync.exceptions import ParseError
from hubsync.sync.types import InboxEntryStatus

app = typer.Typer(name="inbox", help="Work with the shared submission inbox")

_STATUS_STYLE = {
    InboxEntryStatus.PENDING: "yellow",
    InboxEntryStatus.UNMERGED: "magenta",
    InboxEntryStatus.MERGED: "green",
}


@app.command("poll")
def poll(
    merge: bool = typer.Option(False, "--merge", help="Merge consumed submissions into the local store"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Consume new submissions from the inbox.
    """
    outcome = run_engine(project_dir, env, verbose, lambda engine: engine.poll_inbox(merge=merge))

    if not outcome.records:
        console.print("No new submissions.")
        return

    table = Table(title=f"Consumed ({len(outcome.records)})")
    table.add_column("File", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Submitted", style="dim")
    table.add_column("Moved to", style="dim")
    for record in outcome.records:
        table.add_row(
            record.file_name,
            record.payload.kind,
            record.submitted_at.isoformat() if record.submitted_at else "",
            record.processed_path,
        )
    console.print(table)

    if merge:
        inserted = sum(m.inserted for m in outcome.merges)
        updated = sum(m.updated for m in outcome.merges)
        console.print(f"[green]Merged:[/green] {inserted} inserted, {updated} updated")


@app.command("merge")
def merge_item(
    item_id: str = typer.Argument(..., help="Processed entry to merge (as shown by 'inbox list')"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Merge one processed entry that was consumed but not merged.
    """
    result = run_engine(project_dir, env, verbose, lambda engine: engine.merge_item(item_id))
    if result.already_merged:
        console.print("[yellow]Already merged.[/yellow]")
    else:
        console.print(f"[green]Merged:[/green] {result.inserted} inserted, {result.updated} updated")


@app.command("list")
def list_entries(
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Show pending and processed inbox entries.
    """
    entries = run_engine(project_dir, env, verbose, lambda engine: engine.list_inbox())
    if not entries:
        console.print("Inbox is empty.")
        return

    table = Table(title=f"Inbox ({len(entries)})")
    table.add_column("Status")
    table.add_column("Name", style="cyan")
    table.add_column("Submitted", style="dim")
    table.add_column("Id", style="dim")
    for entry in entries:
        style = _STATUS_STYLE[entry.status]
        table.add_row(
            f"[{style}]{entry.status.value}[/{style}]",
            entry.name,
            entry.submitted_at.isoformat() if entry.submitted_at else "",
            entry.item_id,
        )
    console.print(table)


@app.command("submit")
def submit(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON submission to deposit"),
    sender: str = typer.Option("staff", "--sender", "-s", help="Sender name used in the file name"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Deposit a submission into the inbox.
    """
    try:
        payload = json.loads(file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise fail(ParseError(f"Could not read {file}: {e}", source=str(file))) from e
    if not isinstance(payload, dict):
        raise fail(ParseError(f"{file} must contain a JSON object", source=str(file)))

    path = run_engine(project_dir, env, verbose, lambda engine: engine.submit(payload, sender))
    console.print(f"[green]Submitted[/green] {path}")


@app.command("upload")
def upload(
    sender: str = typer.Option(..., "--sender", "-s", help="Name of this staff installation"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Send every local table to the admin as one staff update.
    """
    path = run_engine(project_dir, env, verbose, lambda engine: engine.upload_staff_changes(sender))
    console.print(f"[green]Uploaded[/green] local changes as {path}")


@app.command("purge")
def purge(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Delete processed entries that are already merged locally.
    """
    if not yes:
        typer.confirm("Delete merged submissions from the cloud inbox? Local data is not affected.", abort=True)
    deleted = run_engine(project_dir, env, verbose, lambda engine: engine.purge_inbox())
    console.print(f"Deleted {deleted} merged submissions.")
