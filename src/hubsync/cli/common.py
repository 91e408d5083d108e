"""
Shared plumbing for CLI commands: project loading, engine construction and
error reporting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console

from hubsync.config.loader import Config, load_config
from hubsync.config.sync_config import CredentialStore
from hubsync.exceptions import HubSyncError, user_message
from hubsync.store.local import LocalStore
from hubsync.sync.engine import SyncEngine
from hubsync.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("hubsync.cli")

console = Console()

T = TypeVar("T")

ProjectDirOption = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory")
EnvOption = typer.Option(None, "--env", help="Environment (dev, staging, prod)")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def load_project(project_dir: Path, env: str | None, verbose: bool = False) -> Config:
    config = load_config(project_dir, env=env)
    log_settings = dict(config.data)
    if verbose:
        log_settings["logging"] = {**(config.get("logging") or {}), "level": "DEBUG"}
    setup_logging_from_config(log_settings, project_dir)
    return config


def fail(exc: BaseException) -> typer.Exit:
    """Print the remediation message for ``exc`` and return the exit to raise."""
    console.print(f"[red]{user_message(exc)}[/red]")
    return typer.Exit(1)


def with_credentials(project_dir: Path, env: str | None, verbose: bool = False) -> tuple[Config, CredentialStore]:
    try:
        config = load_project(project_dir, env, verbose)
        return config, CredentialStore(config.state_dir)
    except HubSyncError as e:
        raise fail(e) from e


def run_engine(
    project_dir: Path,
    env: str | None,
    verbose: bool,
    action: Callable[[SyncEngine], Awaitable[T]],
) -> T:
    """Build the engine for a project, run ``action`` on it and report failures."""
    try:
        config = load_project(project_dir, env, verbose)
        store = LocalStore(config.store_path)
        try:
            engine = SyncEngine.from_config(config, CredentialStore(config.state_dir), store=store)
            return asyncio.run(action(engine))
        finally:
            store.close()
    except HubSyncError as e:
        logger.debug(f"Command failed: {e!r}")
        raise fail(e) from e
