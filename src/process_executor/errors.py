"""Errors raised by ProcessExecutor."""

from __future__ import annotations

from pathlib import Path


class ProcessExecutorError(Exception):
    """Base class for process execution failures."""


class LaunchError(ProcessExecutorError):
    """Raised when the OS refuses to create the process."""

    def __init__(self, application: str, working_directory: str | Path, reason: str) -> None:
        self.application = application
        self.working_directory = str(working_directory)
        self.reason = reason
        super().__init__(f"Could not start {application!r} in {self.working_directory}: {reason}")


class ProcessTimeoutError(ProcessExecutorError, TimeoutError):
    """Raised when a process outlives its deadline.

    The process tree has already been killed when this is raised.
    """

    def __init__(self, timeout_ms: int, command: str) -> None:
        self.timeout_ms = timeout_ms
        self.command = command
        super().__init__(f"The process was terminated due to long runtime ({timeout_ms} ms): {command}")
