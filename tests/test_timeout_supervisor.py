"""Unit tests for the TimeoutSupervisor poll loop."""

import unittest

from process_executor.timeout_supervisor import TimeoutSupervisor, poll_slice_ms


class FakeHandle:
    """Handle whose process exits after a fixed number of waits (or never)."""

    def __init__(self, exit_after: int | None = None) -> None:
        self.exit_after = exit_after
        self.waits: list[float | None] = []
        self.killed_with: float | None = None

    def wait_for_exit(self, timeout: float | None) -> bool:
        self.waits.append(timeout)
        return self.exit_after is not None and len(self.waits) >= self.exit_after

    def kill_tree(self, grace: float) -> None:
        self.killed_with = grace

    def get_command_str(self) -> str:
        return "fake command"


class TestPollSlice(unittest.TestCase):
    def test_slice_is_a_twentieth(self):
        self.assertEqual(poll_slice_ms(1000), 50)
        self.assertEqual(poll_slice_ms(60000), 3000)
        self.assertEqual(poll_slice_ms(41), 2)

    def test_slice_is_at_least_one(self):
        self.assertEqual(poll_slice_ms(19), 1)
        self.assertEqual(poll_slice_ms(1), 1)


class TestWaitForExit(unittest.TestCase):
    def test_no_deadline_is_one_indefinite_wait(self):
        handle = FakeHandle(exit_after=1)
        self.assertTrue(TimeoutSupervisor().wait_for_exit(handle, 0))

        self.assertEqual(handle.waits, [None])
        self.assertIsNone(handle.killed_with)

    def test_deadline_hit_kills_tree(self):
        handle = FakeHandle()
        exited = TimeoutSupervisor(kill_grace=7.0).wait_for_exit(handle, 1000)

        self.assertFalse(exited)
        self.assertEqual(handle.waits, [0.05] * 20)
        self.assertEqual(handle.killed_with, 7.0)

    def test_short_deadline_uses_minimum_slice(self):
        handle = FakeHandle()
        exited = TimeoutSupervisor().wait_for_exit(handle, 10)

        self.assertFalse(exited)
        self.assertEqual(handle.waits, [0.001] * 10)

    def test_uneven_deadline_stops_once_reached(self):
        handle = FakeHandle()
        TimeoutSupervisor().wait_for_exit(handle, 45)

        # 45 // 20 == 2 ms slices, deadline reached after 23 of them
        self.assertEqual(len(handle.waits), 23)

    def test_early_exit_stops_polling(self):
        handle = FakeHandle(exit_after=3)
        exited = TimeoutSupervisor().wait_for_exit(handle, 1000)

        self.assertTrue(exited)
        self.assertEqual(len(handle.waits), 3)
        self.assertIsNone(handle.killed_with)

    def test_exit_on_last_slice_is_not_a_timeout(self):
        handle = FakeHandle(exit_after=20)
        exited = TimeoutSupervisor().wait_for_exit(handle, 1000)

        self.assertTrue(exited)
        self.assertIsNone(handle.killed_with)


if __name__ == "__main__":
    unittest.main()
