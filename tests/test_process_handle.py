"""Tests for ProcessHandle lifetime management."""

import os
import sys
import tempfile
import time
import unittest
from unittest import mock

import psutil

from process_executor.errors import LaunchError
from process_executor.executor import build_environment
from process_executor.output_aggregator import StreamReader
from process_executor.process_handle import ProcessHandle

SLEEPER = [sys.executable, "-c", "import time; time.sleep(30)"]


class TestProcessHandle(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.cwd = self._tmp.name
        self.env = build_environment(None)

    def tearDown(self):
        self._tmp.cleanup()

    def test_exit_code_only_after_exit(self):
        with ProcessHandle(SLEEPER, cwd=self.cwd, env=self.env) as handle:
            self.assertFalse(handle.wait_for_exit(0.05))
            self.assertIsNone(handle.exit_code)
            handle.kill_tree(grace=5)
            self.assertTrue(handle.wait_for_exit(10))
            self.assertIsNotNone(handle.exit_code)

    def test_output_after_drain(self):
        command = [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr)"]
        with ProcessHandle(command, cwd=self.cwd, env=self.env) as handle:
            self.assertTrue(handle.wait_for_exit(None))
            self.assertTrue(handle.drain())
            self.assertEqual(sorted(handle.output.splitlines()), ["err", "out"])
            self.assertEqual(handle.exit_code, 0)

    def test_close_is_idempotent(self):
        handle = ProcessHandle([sys.executable, "-c", "pass"], cwd=self.cwd, env=self.env)
        handle.close()
        handle.close()

        self.assertTrue(handle.closed)
        self.assertEqual(handle.exit_code, 0)

    def test_exception_mid_wait_kills_process(self):
        with self.assertRaises(RuntimeError):
            with ProcessHandle(SLEEPER, cwd=self.cwd, env=self.env) as handle:
                pid = handle.pid
                raise RuntimeError("interrupted")

        self.assertTrue(handle.closed)
        self.assertIsNotNone(handle.exit_code)
        self.assertFalse(psutil.pid_exists(pid))

    def test_reader_start_failure_releases_process(self):
        pids = []
        original_start = StreamReader.start

        def failing_start(reader, pid):
            pids.append(pid)
            if reader.name == "stderr":
                raise RuntimeError("can't start new thread")
            original_start(reader, pid)

        with mock.patch.object(StreamReader, "start", autospec=True, side_effect=failing_start):
            with self.assertRaises(RuntimeError):
                ProcessHandle(SLEEPER, cwd=self.cwd, env=self.env, kill_grace=5)

        self.assertEqual(len(pids), 2)
        self.assertFalse(psutil.pid_exists(pids[0]))

    @unittest.skipIf(os.name == "nt", "SIGTERM cannot be ignored on Windows")
    def test_close_uses_configured_kill_grace(self):
        command = [
            sys.executable,
            "-c",
            "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); print('ready', flush=True); time.sleep(60)",
        ]
        start = None
        with self.assertRaises(RuntimeError):
            with ProcessHandle(command, cwd=self.cwd, env=self.env, kill_grace=0.5) as handle:
                deadline = time.monotonic() + 10
                while "ready" not in handle.output and time.monotonic() < deadline:
                    time.sleep(0.05)
                start = time.monotonic()
                raise RuntimeError("interrupted")

        assert start is not None
        self.assertLess(time.monotonic() - start, 10)
        self.assertIsNotNone(handle.exit_code)

    def test_launch_error(self):
        with self.assertRaises(LaunchError):
            ProcessHandle(["this_command_does_not_exist_12345"], cwd=self.cwd, env=self.env)

    def test_command_str(self):
        handle = ProcessHandle([sys.executable, "-c", "print('with spaces')"], cwd=self.cwd, env=self.env)
        with handle:
            self.assertIn("print('with spaces')", handle.get_command_str())


if __name__ == "__main__":
    unittest.main()
