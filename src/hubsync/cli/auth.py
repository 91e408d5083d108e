"""
hubsync auth - Connect the delegated object store account (PKCE).
"""

from pathlib import Path

import typer

from hubsync.auth.pkce import begin_authorization
from hubsync.cli.common import (
    EnvOption,
    ProjectDirOption,
    VerboseOption,
    console,
    fail,
    run_engine,
    with_credentials,
)
from hubsync.exceptions import HubSyncError

app = typer.Typer(name="auth", help="Connect the cloud account")


@app.command("begin")
def begin(
    app_key: str | None = typer.Option(None, "--app-key", help="App key (defaults to the stored one)"),
    redirect_uri: str | None = typer.Option(None, "--redirect-uri", help="Registered redirect URI"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Print the authorization URL to open in a browser.
    """
    config, credentials = with_credentials(project_dir, env, verbose)
    try:
        sync_config = credentials.load()
        url = begin_authorization(
            config.state_dir,
            app_key or sync_config.app_key or "",
            redirect_uri or sync_config.redirect_uri,
        )
    except HubSyncError as e:
        raise fail(e) from e

    console.print("Open this URL, approve access, then run [bold]hubsync auth complete CODE[/bold]:")
    console.print(url, soft_wrap=True)


@app.command("complete")
def complete(
    code: str = typer.Argument(..., help="Authorization code shown after approval"),
    env: str | None = EnvOption,
    verbose: bool = VerboseOption,
    project_dir: Path = ProjectDirOption,
) -> None:
    """
    Exchange the authorization code for a token pair and save it.
    """
    run_engine(project_dir, env, verbose, lambda engine: engine.complete_authorization(code))
    console.print("[green]Cloud account connected.[/green]")
