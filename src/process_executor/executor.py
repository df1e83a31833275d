"""Run one external command to completion with an optional deadline.

## Basic Usage

```python
executor = ProcessExecutor()
result = executor.start("/repo", "dotnet", "test --no-build", {"ACTIVE_MUTATION": "12"}, timeout_ms=30_000)
print(result.exit_code)
print(result.output)  # stdout and stderr, one line per "\\n"
```

A ProcessTimeoutError is raised when the deadline passes; by then the
process and all of its descendants have been killed. A LaunchError is raised
when the process cannot be created at all. Non-zero exit codes are returned
as ordinary data.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

from process_executor.errors import LaunchError, ProcessTimeoutError
from process_executor.process_handle import DRAIN_TIMEOUT, ProcessHandle
from process_executor.timeout_supervisor import TimeoutSupervisor

logger = logging.getLogger(__name__)

EnvironmentVariables = Union[Mapping[str, str], Iterable[tuple[str, str]]]


@dataclass(frozen=True)
class ProcessRequest:
    """Everything needed to launch one process."""

    working_directory: Path | str
    application: str
    arguments: str = ""
    environment_variables: EnvironmentVariables | None = None
    timeout_ms: int = 0  # 0 means no deadline


@dataclass(frozen=True)
class ProcessResult:
    """Outcome of a process that exited on its own."""

    exit_code: int
    output: str


class ProcessExecutorProtocol(Protocol):
    """Interface of ProcessExecutor, for substituting a fake in tests."""

    def start(
        self,
        path: Path | str,
        application: str,
        arguments: str = "",
        environment_variables: EnvironmentVariables | None = None,
        timeout_ms: int = 0,
    ) -> ProcessResult: ...


def build_command_line(application: str, arguments: str) -> str | list[str]:
    """Combine the executable and its argument string for subprocess.Popen.

    Windows hands the command line to CreateProcess verbatim. Elsewhere the
    argument string is split with POSIX rules; no shell is involved.
    """
    if os.name == "nt":
        return f"{subprocess.list2cmdline([application])} {arguments}".rstrip()
    return [application, *shlex.split(arguments)]


def build_environment(environment_variables: EnvironmentVariables | None) -> dict[str, str]:
    """Environment for the child: ours plus the injected variables.

    The parent's os.environ is copied, never modified. On duplicate names the
    last value wins.
    """
    env = os.environ.copy()
    # Force unbuffered output for Python subprocesses so lines arrive as written
    env["PYTHONUNBUFFERED"] = "1"
    if environment_variables is None:
        return env
    items = environment_variables.items() if isinstance(environment_variables, Mapping) else environment_variables
    for name, value in items:
        env[name] = value
    return env


class ProcessExecutor:
    """Starts processes and returns their exit code and combined output."""

    def __init__(self, supervisor: TimeoutSupervisor | None = None, drain_timeout: float = DRAIN_TIMEOUT) -> None:
        self.supervisor = supervisor if supervisor is not None else TimeoutSupervisor()
        self.drain_timeout = drain_timeout

    def start(
        self,
        path: Path | str,
        application: str,
        arguments: str = "",
        environment_variables: EnvironmentVariables | None = None,
        timeout_ms: int = 0,
    ) -> ProcessResult:
        """
        Start a process and return its result once it has exited.

        Args:
            path: Working directory of the process. Must exist.
            application: Executable name or path, e.g. "dotnet".
            arguments: Argument string, e.g. "test --no-build".
            environment_variables: Variables set for the child only.
            timeout_ms: Deadline in milliseconds. 0 waits indefinitely.

        Returns:
            ProcessResult with the exit code and combined stdout/stderr.

        Raises:
            ValueError: If timeout_ms is negative.
            LaunchError: If the process could not be started.
            ProcessTimeoutError: If the deadline passed. The process tree
                has been killed.
        """
        if timeout_ms < 0:
            error_message = f"timeout_ms must be >= 0, got {timeout_ms}"
            raise ValueError(error_message)
        if not Path(path).is_dir():
            raise LaunchError(application, path, "working directory does not exist")

        command = build_command_line(application, arguments)
        env = build_environment(environment_variables)
        logger.debug("Starting %s in %s (timeout %d ms)", command, path, timeout_ms)

        with ProcessHandle(
            command,
            cwd=path,
            env=env,
            drain_timeout=self.drain_timeout,
            kill_grace=self.supervisor.kill_grace,
        ) as handle:
            if not self.supervisor.wait_for_exit(handle, timeout_ms):
                raise ProcessTimeoutError(timeout_ms, handle.get_command_str())

            handle.drain()
            exit_code = handle.exit_code
            assert exit_code is not None  # Process has completed, so returncode exists
            return ProcessResult(exit_code=exit_code, output=handle.output)

    def run(self, request: ProcessRequest) -> ProcessResult:
        """Start the process described by ``request``."""
        return self.start(
            request.working_directory,
            request.application,
            request.arguments,
            request.environment_variables,
            request.timeout_ms,
        )
