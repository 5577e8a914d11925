"""Per-turn state machine with lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum


class StreamState(str, Enum):
    """Lifecycle of a single chat turn."""

    IDLE = "IDLE"
    SENDING = "SENDING"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_active(self) -> bool:
        return self in (StreamState.SENDING, StreamState.STREAMING)


class StateManager:
    """Manage turn state transitions with async lock semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = StreamState.IDLE

    @property
    def state(self) -> StreamState:
        """Latest state; reads are lock-free because updates are atomic replacements."""
        return self._state

    async def transition_to(self, new_state: StreamState) -> StreamState:
        async with self._lock:
            self._state = new_state
            return self._state

    async def begin_turn(self) -> bool:
        """Move to SENDING unless a turn is already active."""
        async with self._lock:
            if self._state.is_active:
                return False
            self._state = StreamState.SENDING
            return True

    async def transition_if(
        self,
        expected_state: StreamState,
        new_state: StreamState,
    ) -> bool:
        """Transition only when the current state matches ``expected_state``."""
        async with self._lock:
            if self._state != expected_state:
                return False
            self._state = new_state
            return True
