"""Run external commands with captured output, deadlines and process tree cleanup."""

from __future__ import annotations

__version__ = "1.0.0"

from process_executor.errors import LaunchError, ProcessExecutorError, ProcessTimeoutError
from process_executor.executor import ProcessExecutor, ProcessExecutorProtocol, ProcessRequest, ProcessResult
from process_executor.process_utils import get_process_tree_info, kill_process_tree

__all__ = [
    "LaunchError",
    "ProcessExecutor",
    "ProcessExecutorError",
    "ProcessExecutorProtocol",
    "ProcessRequest",
    "ProcessResult",
    "ProcessTimeoutError",
    "get_process_tree_info",
    "kill_process_tree",
]
