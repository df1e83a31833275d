#!/usr/bin/env python3
"""Process utilities for terminating process trees."""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import time
import warnings

import psutil

logger = logging.getLogger(__name__)

# Grace period, in seconds, granted to a process tree before it is force killed.
KILL_TIMEOUT = 60.0


def get_process_tree_info(pid: int) -> str:
    """Get information about a process and its children."""
    try:
        process = psutil.Process(pid)
        info = [f"Process {pid} ({process.name()})"]
        info.append(f"Status: {process.status()}")
        info.append(f"Command: {' '.join(process.cmdline())}")

        children = process.children(recursive=True)
        if children:
            info.append("Child processes:")
            for child in children:
                with contextlib.suppress(psutil.Error):
                    info.append(f"  Child {child.pid} ({child.name()}) status={child.status()}")

        return "\n".join(info)
    except Exception:  # noqa: BLE001
        return f"Could not get process info for PID {pid}"


def _terminate_all(procs: list[psutil.Process]) -> None:
    for proc in procs:
        with contextlib.suppress(psutil.NoSuchProcess):
            proc.terminate()


def _kill_all(procs: list[psutil.Process]) -> None:
    for proc in procs:
        with contextlib.suppress(psutil.NoSuchProcess):
            proc.kill()


def _remaining(deadline: float) -> float:
    return max(deadline - time.monotonic(), 0.0)


def _kill_descendants(pid: int, deadline: float) -> None:
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        logger.debug("Process %s already exited", pid)
        return

    children = parent.children(recursive=True)
    children.reverse()

    # First try graceful termination
    _terminate_all(children)
    _, alive = psutil.wait_procs(children, timeout=_remaining(deadline))

    # Force kill any that are still alive
    if alive:
        logger.warning("Force killing %d child process(es) of %s", len(alive), pid)
    _kill_all(alive)

    # Finally terminate the parent
    with contextlib.suppress(psutil.NoSuchProcess, psutil.TimeoutExpired):
        parent.terminate()
        parent.wait(_remaining(deadline))
        return

    with contextlib.suppress(psutil.NoSuchProcess):
        logger.warning("Force killing process %s", pid)
        parent.kill()  # Force kill if still alive


def _group_members(pgid: int) -> list[psutil.Process]:
    """Running (non-zombie) processes whose process group is ``pgid``."""
    members = []
    for proc in psutil.process_iter():
        try:
            if os.getpgid(proc.pid) == pgid and proc.status() != psutil.STATUS_ZOMBIE:
                members.append(proc)
        except (ProcessLookupError, PermissionError, psutil.Error):
            continue
    return members


def signal_process_group(pgid: int, signum: signal.Signals) -> bool:
    """Send one signal to a process group.

    Returns:
        False if the group no longer exists.
    """
    try:
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return False
    return True


def kill_process_group(pgid: int, timeout: float = KILL_TIMEOUT) -> None:
    """Terminate every process of a process group, force killing after ``timeout``.

    Catches descendants that were reparented after their own parent exited,
    which a walk of the process tree can no longer reach.
    """
    if not signal_process_group(pgid, signal.SIGTERM):
        return

    deadline = time.monotonic() + timeout
    while _group_members(pgid):
        if time.monotonic() >= deadline:
            logger.warning("Force killing process group %s", pgid)
            signal_process_group(pgid, signal.SIGKILL)
            return
        time.sleep(0.05)


def kill_process_tree(pid: int, timeout: float = KILL_TIMEOUT, process_group: int | None = None) -> None:
    """Kill a process and all of its descendants.

    Descendants are enumerated while the root is still alive, then terminated
    deepest first. When ``process_group`` is given (POSIX), the whole group is
    terminated afterwards as well. Anything still running once ``timeout``
    seconds have passed is killed. A process that is already gone counts as
    terminated.
    """
    deadline = time.monotonic() + timeout
    try:
        _kill_descendants(pid, deadline)
        if process_group is not None:
            kill_process_group(process_group, _remaining(deadline))
    except (OSError, psutil.Error) as e:
        logger.warning("Error killing process tree of %s: %s", pid, e)
        warnings.warn(f"Error killing process tree: {e}", UserWarning, stacklevel=2)
