"""Tests for lock-protected turn state transitions."""

from __future__ import annotations

import asyncio
import unittest

from ollama_companion.state import StateManager, StreamState


class StateManagerTests(unittest.IsolatedAsyncioTestCase):
    """Validate the per-turn state machine."""

    async def test_begin_turn_only_when_not_active(self) -> None:
        manager = StateManager()
        self.assertTrue(await manager.begin_turn())
        self.assertIs(manager.state, StreamState.SENDING)
        self.assertFalse(await manager.begin_turn())

        await manager.transition_to(StreamState.STREAMING)
        self.assertFalse(await manager.begin_turn())

        for terminal in (StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED):
            await manager.transition_to(terminal)
            self.assertFalse(terminal.is_active)
            self.assertTrue(await manager.begin_turn())

    async def test_transition_if_enforces_expected_state(self) -> None:
        manager = StateManager()
        changed = await manager.transition_if(StreamState.STREAMING, StreamState.FAILED)
        self.assertFalse(changed)
        self.assertEqual(manager.state, StreamState.IDLE)

        changed = await manager.transition_if(StreamState.IDLE, StreamState.SENDING)
        self.assertTrue(changed)
        self.assertEqual(manager.state, StreamState.SENDING)

    async def test_lock_prevents_double_turn_entry(self) -> None:
        manager = StateManager()

        async def try_begin() -> bool:
            await asyncio.sleep(0)
            return await manager.begin_turn()

        results = await asyncio.gather(*(try_begin() for _ in range(10)))
        self.assertEqual(sum(1 for result in results if result), 1)


if __name__ == "__main__":
    unittest.main()
