"""
hubsync pair - Share cloud access between installations.
"""

from pathlib import Path

import typer

from hubsync.cli.common import EnvOption, ProjectDirOption, VerboseOption, console, fail, with_credentials
from hubsync.config.pairing import export_pairing_code, import_pairing_code
from hubsync.exceptions import HubSyncError

app = typer.Typer(name="pair", help="Share cloud access with another installation")


@app.command("export")
def export(
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Print a pairing code for this installation's cloud account.

    The code grants full access to the account; share it privately.
    """
    _, credentials = with_credentials(project_dir, env, verbose)
    try:
        code = export_pairing_code(credentials.load())
    except HubSyncError as e:
        raise fail(e) from e
    typer.echo(code)


@app.command("import")
def import_(
    code: str = typer.Argument(..., help="Pairing code from a connected installation"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Connect this installation using a pairing code.
    """
    _, credentials = with_credentials(project_dir, env, verbose)
    try:
        updated = import_pairing_code(code, credentials.load())
        credentials.save(updated)
    except HubSyncError as e:
        raise fail(e) from e
    console.print(f"[green]Connected to {updated.provider.value}.[/green]")
