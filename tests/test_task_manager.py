"""Tests for the TaskManager lifecycle helper."""

from __future__ import annotations

import asyncio
import unittest

from ollama_companion.task_manager import ACTIVE_TURN, TaskManager


async def _sleeper(cancelled: list[str], label: str) -> None:
    try:
        await asyncio.sleep(9999)
    except asyncio.CancelledError:
        cancelled.append(label)
        raise


class TaskManagerTests(unittest.IsolatedAsyncioTestCase):
    """Validate named task lifecycle management."""

    async def test_add_named_and_cancel_by_name(self) -> None:
        tm = TaskManager()
        cancelled: list[str] = []

        task = asyncio.create_task(_sleeper(cancelled, "turn"))
        tm.add(task, name=ACTIVE_TURN)
        await asyncio.sleep(0)  # Let the task start.
        self.assertIs(tm.get(ACTIVE_TURN), task)
        self.assertTrue(tm.is_running(ACTIVE_TURN))

        self.assertTrue(await tm.cancel(ACTIVE_TURN))
        self.assertTrue(task.done())
        self.assertEqual(cancelled, ["turn"])
        self.assertIsNone(tm.get(ACTIVE_TURN))

    async def test_cancel_nonexistent_name_is_noop(self) -> None:
        tm = TaskManager()
        self.assertFalse(await tm.cancel("does_not_exist"))

    async def test_finished_tasks_self_clean(self) -> None:
        tm = TaskManager()

        async def _quick() -> str:
            return "done"

        task = asyncio.create_task(_quick())
        tm.add(task, name="quick")
        await task
        await asyncio.sleep(0)  # Done callbacks run on the next loop iteration.
        self.assertIsNone(tm.get("quick"))
        self.assertFalse(tm.is_running("quick"))

    async def test_failed_task_is_logged(self) -> None:
        tm = TaskManager()

        async def _boom() -> None:
            raise RuntimeError("kaput")

        task = asyncio.create_task(_boom())
        with self.assertLogs("ollama_companion.task_manager", level="WARNING") as logs:
            tm.add(task, name="boom")
            with self.assertRaises(RuntimeError):
                await task
            await asyncio.sleep(0)
        self.assertTrue(any("task.exception" in line for line in logs.output))

    async def test_cancel_all_handles_every_task(self) -> None:
        tm = TaskManager()
        cancelled: list[str] = []

        tm.add(asyncio.create_task(_sleeper(cancelled, "a")), name="a")
        tm.add(asyncio.create_task(_sleeper(cancelled, "b")), name="b")
        await asyncio.sleep(0)  # Let the tasks start.
        await tm.cancel_all()
        self.assertEqual(sorted(cancelled), ["a", "b"])


if __name__ == "__main__":
    unittest.main()
