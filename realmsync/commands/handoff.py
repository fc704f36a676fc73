"""Entry point of the detached self-update helper process."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import structlog

from realmsync.core.config import HandoffConfig
from realmsync.core.handoff import mirror_and_relaunch, swap_and_relaunch

logger = structlog.get_logger()


def _timing_options(func):
    func = click.option("--retry-delay", type=float, default=1.0, show_default=True)(func)
    func = click.option("--attempts", type=int, default=10, show_default=True)(func)
    func = click.option("--exit-timeout", type=float, default=10.0, show_default=True)(func)
    func = click.option("--startup-delay", type=float, default=1.0, show_default=True)(func)
    return func


def _handoff_config(startup_delay: float, exit_timeout: float, attempts: int, retry_delay: float) -> HandoffConfig:
    return HandoffConfig(
        startup_delay=startup_delay,
        parent_exit_timeout=exit_timeout,
        max_attempts=attempts,
        retry_delay=retry_delay,
    )


@click.group(hidden=True)
def handoff() -> None:
    """Finish a launcher self-update after the launcher exits."""
    pass


@handoff.command()
@click.option("--pid", type=int, required=True, help="Process id of the exiting launcher")
@click.option("--source", type=click.Path(path_type=Path), required=True, help="New executable")
@click.option("--target", type=click.Path(path_type=Path), required=True, help="Executable to replace")
@_timing_options
def swap(
    pid: int,
    source: Path,
    target: Path,
    startup_delay: float,
    exit_timeout: float,
    attempts: int,
    retry_delay: float,
) -> None:
    """Replace the launcher executable and restart it."""
    config = _handoff_config(startup_delay, exit_timeout, attempts, retry_delay)
    if not swap_and_relaunch(pid, source, target, config):
        logger.error("handoff_swap_failed", target=str(target))
        sys.exit(1)


@handoff.command()
@click.option("--pid", type=int, required=True, help="Process id of the exiting launcher")
@click.option("--source", type=click.Path(path_type=Path), required=True, help="Extracted package")
@click.option("--target", type=click.Path(path_type=Path), required=True, help="Launcher directory")
@click.option("--relaunch", type=click.Path(path_type=Path), required=True, help="Executable to restart")
@click.option("--exclude", multiple=True, help="File name never overwritten")
@_timing_options
def mirror(
    pid: int,
    source: Path,
    target: Path,
    relaunch: Path,
    exclude: tuple[str, ...],
    startup_delay: float,
    exit_timeout: float,
    attempts: int,
    retry_delay: float,
) -> None:
    """Mirror an extracted launcher package and restart it."""
    config = _handoff_config(startup_delay, exit_timeout, attempts, retry_delay)
    if not mirror_and_relaunch(pid, source, target, relaunch, exclude, config):
        logger.error("handoff_mirror_incomplete", target=str(target))
        sys.exit(1)
