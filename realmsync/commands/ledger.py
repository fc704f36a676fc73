"""Applied-archive ledger commands."""

from __future__ import annotations

import json

import click
from rich.console import Console
from rich.table import Table

from realmsync.core.config import AppConfig
from realmsync.core.ledger import ContentLedger


@click.group("ledger")
def ledger_group() -> None:
    """Inspect the record of installed archive packages."""
    pass


@ledger_group.command("list")
@click.pass_context
def list_entries(ctx: click.Context) -> None:
    """List applied archive hashes."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]

    ledger = ContentLedger(config.metadata_dir)
    entries = ledger.entries()

    if config.output_format == "json":
        print(json.dumps(
            [{"sha256": e.content_hash, "applied_at": e.applied_at.isoformat()} for e in entries],
            indent=2,
        ))
        return

    if not entries:
        console.print("[yellow]No archive packages applied.[/yellow]")
        return

    table = Table(title=f"Applied Packages ({len(entries)})")
    table.add_column("SHA-256", style="cyan")
    table.add_column("Applied", style="magenta")
    for entry in entries:
        table.add_row(entry.content_hash, entry.applied_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)

    if ledger.migrated_count:
        console.print(f"[dim]Migrated {ledger.migrated_count} legacy stamps.[/dim]")
