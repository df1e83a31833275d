"""Command line interface: run one command and print its combined output."""

from __future__ import annotations

import argparse
import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path

from process_executor.errors import LaunchError, ProcessTimeoutError
from process_executor.executor import ProcessExecutor

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILED = 127


def _parse_env(values: list[str]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name:
            error_message = f"Expected KEY=VALUE, got {item!r}"
            raise argparse.ArgumentTypeError(error_message)
        pairs.append((name, value))
    return pairs


def _join_arguments(arguments: list[str]) -> str:
    if os.name == "nt":
        return subprocess.list2cmdline(arguments)
    return shlex.join(arguments)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="process-executor",
        description="Run a command with an optional deadline and print its combined output.",
    )
    parser.add_argument("--cwd", type=Path, default=Path.cwd(), help="Working directory (default: current)")
    parser.add_argument("--timeout-ms", type=int, default=0, help="Deadline in milliseconds, 0 for none")
    parser.add_argument("--env", action="append", default=[], metavar="KEY=VALUE", help="Variable for the child")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("application", help="Executable to run")
    parser.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments for the executable")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        env = _parse_env(args.env)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    executor = ProcessExecutor()
    try:
        result = executor.start(
            args.cwd,
            args.application,
            _join_arguments(args.arguments),
            env,
            timeout_ms=args.timeout_ms,
        )
    except LaunchError as e:
        print(e, file=sys.stderr)
        return EXIT_LAUNCH_FAILED
    except ProcessTimeoutError as e:
        print(e, file=sys.stderr)
        return EXIT_TIMEOUT

    sys.stdout.write(result.output)
    sys.stdout.flush()
    if result.exit_code < 0:
        # Killed by a signal, report it the way shells do
        return 128 - result.exit_code
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
