"""Named asyncio task registry used to run and cancel chat turns."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

ACTIVE_TURN = "active_turn"


class TaskManager:
    """Track background tasks by name so they can be cancelled cooperatively."""

    def __init__(self) -> None:
        self._named: dict[str, asyncio.Task[Any]] = {}

    def add(self, task: asyncio.Task[Any], name: str) -> None:
        """Register ``task`` under ``name``; the entry clears itself when it finishes.

        A previous task with the same name is replaced, not cancelled.
        """
        self._named[name] = task
        task.add_done_callback(lambda done: self._forget(name, done))

    def _forget(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._named.get(name) is task:
            del self._named[name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "task.exception",
                extra={
                    "event": "task.exception",
                    "task": name,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    def get(self, name: str) -> asyncio.Task[Any] | None:
        return self._named.get(name)

    def is_running(self, name: str) -> bool:
        task = self._named.get(name)
        return task is not None and not task.done()

    async def cancel(self, name: str) -> bool:
        """Cancel a named task and wait for it to unwind.

        Returns True when a running task was cancelled.
        """
        task = self._named.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def cancel_all(self) -> None:
        """Cancel every tracked task and await them all."""
        tasks = [task for task in self._named.values() if not task.done()]
        self._named.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
