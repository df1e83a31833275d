"""Process handle module.

This module contains the ProcessHandle class, which owns one spawned process
together with the readers capturing its output, and guarantees that both are
released exactly once.
"""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from process_executor.errors import LaunchError
from process_executor.output_aggregator import OutputAggregator, StreamReader
from process_executor.process_utils import KILL_TIMEOUT, get_process_tree_info, kill_process_tree

logger = logging.getLogger(__name__)

# Seconds to wait for the readers to reach EOF once the process has exited.
DRAIN_TIMEOUT = 5.0


class ProcessHandle:
    """
    Owns one running subprocess and the capture of its stdout and stderr.

    The process is launched in the constructor; if the OS refuses, a
    LaunchError is raised and nothing is left to release. Use the handle as a
    context manager so that close() runs on every exit path:

        with ProcessHandle(["make", "test"], cwd="/src", env=env) as handle:
            if handle.wait_for_exit(1.0):
                handle.drain()
                print(handle.exit_code, handle.output)
    """

    def __init__(
        self,
        command: str | list[str],
        cwd: str | Path,
        env: Mapping[str, str],
        drain_timeout: float = DRAIN_TIMEOUT,
        kill_grace: float = KILL_TIMEOUT,
    ) -> None:
        self.command = command
        self.cwd = str(cwd)
        self.drain_timeout = drain_timeout
        self.kill_grace = kill_grace
        self._closed = False
        self._drain_deadline: float | None = None
        self.proc: subprocess.Popen[Any] = self._create_process(env)
        self._aggregator = OutputAggregator()
        self._readers: list[StreamReader] = []
        try:
            self._start_readers()
        except BaseException:
            # No context manager owns the handle yet, release it here.
            self.close()
            raise

    def _create_process(self, env: Mapping[str, str]) -> subprocess.Popen[Any]:
        """Create the subprocess with both output pipes redirected."""
        try:
            return subprocess.Popen(  # noqa: S603
                self.command,
                shell=False,
                cwd=self.cwd,
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # Replace invalid chars instead of failing
                bufsize=1,
                # Own process group, so descendants that outlive their parent can still be killed
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            application = self.command[0] if isinstance(self.command, list) else self.command
            raise LaunchError(application, self.cwd, e.strerror or str(e)) from e

    def _start_readers(self) -> None:
        assert self.proc.stdout is not None
        assert self.proc.stderr is not None
        for name, stream in (("stdout", self.proc.stdout), ("stderr", self.proc.stderr)):
            self._readers.append(StreamReader(name, stream, self._aggregator))
        for reader in self._readers:
            reader.start(self.proc.pid)

    def __enter__(self) -> ProcessHandle:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: Any | None) -> bool:
        self.close()
        # Do not suppress exceptions
        return False

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def exit_code(self) -> int | None:
        """Exit status of the process, or None while it is still running."""
        return self.proc.poll()

    @property
    def output(self) -> str:
        """Combined stdout and stderr captured so far."""
        return self._aggregator.text

    @property
    def closed(self) -> bool:
        return self._closed

    def get_command_str(self) -> str:
        if isinstance(self.command, list):
            return subprocess.list2cmdline(self.command)
        return self.command

    def wait_for_exit(self, timeout: float | None) -> bool:
        """Wait up to ``timeout`` seconds (None waits forever) for the process.

        Returns:
            True if the process has exited, False if it is still running.
        """
        try:
            self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def kill_tree(self, grace: float | None = None) -> None:
        """Terminate the process and every descendant, including its process group."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Process tree before kill:\n%s", get_process_tree_info(self.pid))
        kill_process_tree(
            self.pid,
            timeout=self.kill_grace if grace is None else grace,
            process_group=self.process_group,
        )

    @property
    def process_group(self) -> int | None:
        """Process group led by the child on POSIX, None on Windows."""
        if os.name == "nt":
            return None
        return self.pid

    def _drain_remaining(self) -> float:
        """Time left in the drain window, which opens on first use."""
        if self._drain_deadline is None:
            self._drain_deadline = time.monotonic() + self.drain_timeout
        return max(self._drain_deadline - time.monotonic(), 0.0)

    def drain(self) -> bool:
        """Wait for both readers to reach EOF within the drain window.

        The window is shared with close(), so draining never takes longer
        than ``drain_timeout`` in total.

        Returns:
            True if all output was delivered, False if a reader is still
            blocked (typically a descendant kept the pipe open).
        """
        drained = self._aggregator.wait_finished(self._drain_remaining())
        if not drained:
            logger.warning(
                "Output of %s not drained within %.1f seconds, continuing without it",
                self.get_command_str(),
                self.drain_timeout,
            )
        return drained

    def close(self) -> None:
        """Release the process and its readers. Safe to call multiple times.

        A process that is still running at this point (an exception escaped
        the wait) is killed together with its descendants first.
        """
        if self._closed:
            return
        self._closed = True

        if self.proc.poll() is None:
            logger.warning("Closing handle of running process %s, killing it", self.get_command_str())
            self.kill_tree()
            if self.proc.poll() is None:
                with contextlib.suppress(ProcessLookupError, PermissionError, OSError):
                    self.proc.kill()

        for reader in self._readers:
            reader.join(self._drain_remaining())
        self._aggregator.detach()
        logger.debug(
            "Captured %d stdout and %d stderr lines from %s",
            self._aggregator.line_count("stdout"),
            self._aggregator.line_count("stderr"),
            self.pid,
        )

        for reader in self._readers:
            reader.close_stream()
        owned = {id(reader.stream) for reader in self._readers}
        for pipe in (self.proc.stdout, self.proc.stderr):
            if pipe is not None and id(pipe) not in owned and not pipe.closed:
                pipe.close()
        # Reap the process so no zombie is left behind.
        self.proc.wait()
