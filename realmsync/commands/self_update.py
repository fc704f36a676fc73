"""Launcher self-update command."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import click
import httpx
import structlog
from rich.console import Console

from realmsync.core.config import AppConfig
from realmsync.core.errors import RealmSyncError
from realmsync.core.self_update import SelfUpdateOrchestrator, SelfUpdateState

logger = structlog.get_logger()


def _running_executable() -> Path | None:
    """The frozen launcher binary, None when running from source."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()
    return None


@click.command("self-update")
@click.option("--check-only", is_flag=True, help="Report availability without installing")
@click.option(
    "--executable",
    type=click.Path(path_type=Path),
    help="Launcher executable to replace (default: the running program)",
)
@click.pass_context
def self_update(ctx: click.Context, check_only: bool, executable: Path | None) -> None:
    """Update the launcher itself."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]

    executable = executable or _running_executable()
    if executable is None:
        if not check_only:
            console.print("[red]--executable is required when not running as a packaged launcher[/red]")
            sys.exit(2)
        executable = Path(sys.argv[0]).resolve()

    orchestrator = SelfUpdateOrchestrator(config, executable)
    try:
        with orchestrator:
            state = orchestrator.run(os.getpid(), check_only=check_only)
    except (RealmSyncError, httpx.HTTPError) as e:
        logger.error("self_update_failed", state=orchestrator.state.value, error=str(e))
        console.print(f"[red]Self-update aborted: {e}[/red]")
        sys.exit(1)

    if state == SelfUpdateState.UPDATE_AVAILABLE:
        console.print("[yellow]A launcher update is available.[/yellow]")
    else:
        console.print(f"[green]Launcher {config.client_version} is up to date.[/green]")
