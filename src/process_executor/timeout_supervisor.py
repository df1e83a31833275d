"""Timeout supervisor module.

This module contains the TimeoutSupervisor class, which waits for a process
in bounded slices and kills its tree once the deadline has passed.
"""

from __future__ import annotations

import logging
from typing import Protocol

from process_executor.process_utils import KILL_TIMEOUT

logger = logging.getLogger(__name__)

# Number of slices a deadline is divided into.
POLL_DIVISIONS = 20


class SupervisedProcess(Protocol):
    """What the supervisor needs from a process handle."""

    def wait_for_exit(self, timeout: float | None) -> bool: ...

    def kill_tree(self, grace: float) -> None: ...

    def get_command_str(self) -> str: ...


def poll_slice_ms(timeout_ms: int) -> int:
    """Length of one poll slice in milliseconds, never less than 1."""
    return max(timeout_ms // POLL_DIVISIONS, 1)


class TimeoutSupervisor:
    """Polls a process until it exits or its deadline passes."""

    def __init__(self, kill_grace: float = KILL_TIMEOUT) -> None:
        self.kill_grace = kill_grace

    def wait_for_exit(self, handle: SupervisedProcess, timeout_ms: int) -> bool:
        """
        Wait for ``handle`` to exit.

        Args:
            handle: The process to supervise.
            timeout_ms: Deadline in milliseconds. 0 waits indefinitely.

        Returns:
            True if the process exited on its own, False if the deadline was
            hit and the process tree has been killed.
        """
        if timeout_ms == 0:
            return handle.wait_for_exit(None)

        slice_ms = poll_slice_ms(timeout_ms)
        logger.debug("Polling %s every %d ms for up to %d ms", handle.get_command_str(), slice_ms, timeout_ms)

        total_wait = 0
        while total_wait < timeout_ms:
            if handle.wait_for_exit(slice_ms / 1000):
                return True
            total_wait += slice_ms

        logger.warning("Process timeout after %d ms, killing: %s", timeout_ms, handle.get_command_str())
        handle.kill_tree(self.kill_grace)
        return False
