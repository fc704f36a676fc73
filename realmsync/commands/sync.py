"""Content sync commands."""

from __future__ import annotations

import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import click
import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from realmsync.core.config import AppConfig
from realmsync.core.errors import (
    FilesystemError,
    ManifestFetchError,
    OperationCancelledError,
    RealmSyncError,
)
from realmsync.core.sync import ContentSync
from realmsync.core.types import EntryResult, LauncherState, Outcome, UpdatePlan
from realmsync.core.utils import format_size

logger = structlog.get_logger()

_OUTCOME_STYLES = {
    Outcome.OK: "green",
    Outcome.UPDATED: "cyan",
    Outcome.EXTRACTED: "cyan",
    Outcome.SKIPPED: "dim",
    Outcome.HASH_MISMATCH: "red",
    Outcome.FAILED: "red",
}


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


@contextmanager
def _cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """Turn Ctrl+C into the sync cancellation signal."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _plan_to_dict(state: LauncherState | None, plan: UpdatePlan) -> dict[str, Any]:
    return {
        "state": state.value if state else None,
        "pending_count": plan.pending_count,
        "pending": [
            {"path": e.path, "size": e.size, "sha256": e.content_hash}
            for e in plan.pending_entries
        ],
    }


def _show_plan(plan: UpdatePlan, total: int, console: Console) -> None:
    table = Table(title=f"Update Plan ({plan.pending_count}/{total} files)")
    table.add_column("Path", style="cyan")
    table.add_column("Size", style="magenta", justify="right")
    table.add_column("SHA-256", style="dim")

    for entry in plan.pending_entries:
        table.add_row(entry.path, format_size(entry.size), entry.content_hash[:16])

    console.print(table)


@click.command()
@click.option(
    "--install-mode",
    is_flag=True,
    help="Consider install-time archive packages",
)
@click.pass_context
def status(ctx: click.Context, install_mode: bool) -> None:
    """Show what a sync would do."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        with ContentSync(config) as content_sync:
            manifest = content_sync.fetch_manifest()
            plan = content_sync.plan(manifest, install_mode)
            state, _ = content_sync.launcher_state(manifest)
    except ManifestFetchError as e:
        logger.error("status_failed", error=str(e))
        console.print(f"[red]Error fetching manifest: {e}[/red]")
        sys.exit(1)
    except RealmSyncError as e:
        logger.error("status_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        print(json.dumps(_plan_to_dict(state, plan), indent=2))
        return

    console.print(f"[blue]Manifest version:[/blue] {manifest.version or 'unknown'}")
    console.print(f"[blue]Launcher state:[/blue] {state.value.upper()}")
    if plan.needs_any:
        _show_plan(plan, len(manifest.entries), console)
        console.print(f"[yellow]Update available ({plan.pending_count}/{len(manifest.entries)} files)[/yellow]")
    else:
        console.print("[green]Up to date.[/green]")


@click.command()
@click.option(
    "--install-mode",
    is_flag=True,
    help="Download and extract install-time archive packages",
)
@click.pass_context
def sync(ctx: click.Context, install_mode: bool) -> None:
    """Synchronize the install directory with the content manifest."""
    config, console, verbose, debug = _get_context_objects(ctx)
    cancel_event = threading.Event()
    results: list[EntryResult] = []

    try:
        with ContentSync(config, cancel_event=cancel_event) as content_sync, \
                _cancel_on_interrupt(cancel_event):
            console.print("[blue]Fetching manifest...[/blue]")
            manifest = content_sync.fetch_manifest()

            with Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
                disable=config.output_format != "rich",
            ) as progress:
                task = progress.add_task("Syncing files...", total=len(manifest.entries))

                for result in content_sync.run(manifest, install_mode):
                    results.append(result)
                    progress.advance(task)
                    if config.output_format != "json" and (verbose or result.outcome != Outcome.OK):
                        style = _OUTCOME_STYLES[result.outcome]
                        progress.console.print(f"[{style}]{result.describe()}[/{style}]")

            try:
                content_sync.ensure_realmlist()
            except FilesystemError as e:
                logger.warning("realmlist_failed", error=str(e))
                console.print(f"[yellow]Warning: {e}[/yellow]")

            remaining = content_sync.plan(manifest, install_mode)

    except ManifestFetchError as e:
        logger.error("sync_failed", error=str(e))
        console.print(f"[red]Error fetching manifest: {e}[/red]")
        sys.exit(1)
    except OperationCancelledError:
        console.print("[yellow]Sync cancelled; partial downloads will resume next run.[/yellow]")
        sys.exit(130)
    except RealmSyncError as e:
        logger.error("sync_failed", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    errors = [r for r in results if r.outcome.is_error]

    if config.output_format == "json":
        print(json.dumps({
            "results": [
                {"path": r.entry.path, "outcome": r.outcome.value, "detail": r.detail}
                for r in results
            ],
            "pending_count": remaining.pending_count,
        }, indent=2))
    elif remaining.needs_any:
        console.print(f"[yellow]Update pending ({remaining.pending_count} files).[/yellow]")
    else:
        console.print("[green]Update complete.[/green]")

    if errors:
        sys.exit(1)
