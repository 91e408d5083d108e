"""
Main CLI entry point.
"""

import typer

from hubsync import __version__
from hubsync.cli import auth, inbox, pair, snapshot


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"hubsync version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="hubsync",
    help="hubsync - Snapshot sync and shared inbox for offline-first installations",
    add_completion=True,
)

# Register subcommands
app.add_typer(auth.app, name="auth")
app.add_typer(pair.app, name="pair")
app.add_typer(inbox.app, name="inbox")
app.command("push")(snapshot.push)
app.command("pull")(snapshot.pull)
app.command("status")(snapshot.status)


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    hubsync - Snapshot sync and shared inbox for offline-first installations.

    Run 'hubsync <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
