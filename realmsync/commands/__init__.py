"""CLI command implementations for realmsync.

This module contains all command-line interface implementations:
- status: Show the update plan and launcher state
- sync: Synchronize the install directory with the content manifest
- self-update: Update the launcher itself
- ledger: Inspect applied archive packages
- handoff: Detached helper used by self-update (hidden)
"""

from realmsync.commands.handoff import handoff
from realmsync.commands.ledger import ledger_group
from realmsync.commands.self_update import self_update
from realmsync.commands.sync import status, sync

__all__ = ["handoff", "ledger_group", "self_update", "status", "sync"]
