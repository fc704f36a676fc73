"""Detached helper that finishes a launcher self-update.

The running launcher cannot overwrite its own executable, so it starts this
helper in a separate process and exits. The helper waits for the parent to
go away, replaces the executable (or mirrors an extracted package over the
install directory) with bounded retries while the OS still holds a lock,
then relaunches the launcher. If the lock never clears the old files stay
in place.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from realmsync.core.config import HandoffConfig

logger = structlog.get_logger()

Sleep = Callable[[float], None]


def launch_detached(command: list[str], cwd: Path | None = None) -> subprocess.Popen[bytes]:
    """Start a process that outlives its parent."""
    kwargs: dict[str, object] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
        "close_fds": True,
        "cwd": str(cwd) if cwd else None,
    }
    if sys.platform == "win32":
        kwargs["creationflags"] = (
            getattr(subprocess, "DETACHED_PROCESS", 0)
            | getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        )
    else:
        kwargs["start_new_session"] = True

    logger.debug("detached_launch", command=command)
    return subprocess.Popen(command, **kwargs)  # type: ignore[call-overload]


def pid_alive(pid: int) -> bool:
    """Check whether a process id is still running."""
    if pid <= 0:
        return False
    if sys.platform == "win32":
        import ctypes

        synchronize = 0x00100000
        wait_timeout = 0x00000102
        kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        handle = kernel32.OpenProcess(synchronize, False, pid)
        if not handle:
            return False
        try:
            return kernel32.WaitForSingleObject(handle, 0) == wait_timeout
        finally:
            kernel32.CloseHandle(handle)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def wait_for_parent(
    pid: int,
    timeout: float,
    poll_interval: float = 0.2,
    sleep: Sleep = time.sleep,
    alive: Callable[[int], bool] = pid_alive,
) -> bool:
    """Wait until pid exits.

    Returns:
        True if the process exited within timeout
    """
    waited = 0.0
    while alive(pid):
        if waited >= timeout:
            logger.warning("handoff_parent_still_running", pid=pid, timeout=timeout)
            return False
        sleep(poll_interval)
        waited += poll_interval
    return True


def replace_with_retry(
    source: Path,
    target: Path,
    attempts: int,
    delay: float,
    sleep: Sleep = time.sleep,
) -> bool:
    """Move source over target, retrying while target is locked.

    The new file is first copied next to target so the final step is a
    single same-directory rename. The executable bit of the old file is
    carried over.

    Returns:
        True on success; False leaves target untouched
    """
    staged = target.with_name(target.name + ".new")
    try:
        shutil.copyfile(source, staged)
        if target.exists():
            os.chmod(staged, target.stat().st_mode)
    except OSError as e:
        logger.error("handoff_stage_failed", source=str(source), target=str(target), error=str(e))
        staged.unlink(missing_ok=True)
        return False

    for attempt in range(1, attempts + 1):
        try:
            os.replace(staged, target)
        except OSError as e:
            logger.debug("handoff_replace_retry", target=str(target), attempt=attempt, error=str(e))
            if attempt < attempts:
                sleep(delay)
            continue
        source.unlink(missing_ok=True)
        logger.info("handoff_replaced", target=str(target), attempts=attempt)
        return True

    staged.unlink(missing_ok=True)
    logger.error("handoff_replace_gave_up", target=str(target), attempts=attempts)
    return False


def _copy_with_retry(
    source: Path,
    target: Path,
    attempts: int,
    delay: float,
    sleep: Sleep,
) -> bool:
    for attempt in range(1, attempts + 1):
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            return True
        except PermissionError:
            # Locked files can usually be renamed even when they cannot be overwritten
            backup = target.with_name(target.name + ".bak")
            try:
                backup.unlink(missing_ok=True)
                os.replace(target, backup)
                shutil.copy2(source, target)
                return True
            except OSError as e:
                logger.debug("handoff_copy_retry", target=str(target), attempt=attempt, error=str(e))
        except OSError as e:
            logger.debug("handoff_copy_retry", target=str(target), attempt=attempt, error=str(e))
        if attempt < attempts:
            sleep(delay)
    return False


def mirror_tree(
    source: Path,
    target: Path,
    exclude: Iterable[str] = (),
    attempts: int = 3,
    delay: float = 1.0,
    sleep: Sleep = time.sleep,
) -> tuple[int, int]:
    """Copy every file of source over target, recursively.

    Files whose name matches an entry of exclude (case-insensitive) are
    never copied, wherever they sit in the tree.

    Returns:
        Tuple of (copied, failed) file counts
    """
    excluded = {name.lower() for name in exclude}
    copied = 0
    failed = 0

    for root, _dirs, files in os.walk(source):
        for name in sorted(files):
            if name.lower() in excluded:
                continue
            src = Path(root) / name
            dest = target / src.relative_to(source)
            if _copy_with_retry(src, dest, attempts, delay, sleep):
                copied += 1
            else:
                failed += 1
                logger.error("handoff_copy_failed", path=str(dest))

    logger.info("handoff_mirrored", source=str(source), target=str(target), copied=copied, failed=failed)
    return copied, failed


def relaunch(executable: Path) -> None:
    """Start the launcher again, detached from the helper."""
    try:
        launch_detached([str(executable)], cwd=executable.parent)
    except OSError as e:
        logger.error("handoff_relaunch_failed", executable=str(executable), error=str(e))


def swap_and_relaunch(
    pid: int,
    source: Path,
    target: Path,
    config: HandoffConfig | None = None,
    sleep: Sleep = time.sleep,
) -> bool:
    """Replace the launcher executable once its process is gone, then restart it."""
    config = config or HandoffConfig()
    sleep(config.startup_delay)
    wait_for_parent(pid, config.parent_exit_timeout, sleep=sleep)

    ok = replace_with_retry(source, target, config.max_attempts, config.retry_delay, sleep)
    relaunch(target)
    return ok


def mirror_and_relaunch(
    pid: int,
    source: Path,
    target: Path,
    executable: Path,
    exclude: Iterable[str] = (),
    config: HandoffConfig | None = None,
    sleep: Sleep = time.sleep,
) -> bool:
    """Mirror an extracted launcher package over the install dir, then restart."""
    config = config or HandoffConfig()
    sleep(config.startup_delay)
    wait_for_parent(pid, config.parent_exit_timeout, sleep=sleep)

    _, failed = mirror_tree(source, target, exclude, config.max_attempts, config.retry_delay, sleep)
    shutil.rmtree(source, ignore_errors=True)
    relaunch(executable)
    return failed == 0
