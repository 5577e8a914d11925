"""Event bus publishing engine state to presentation-layer observers.

Usage:
    bus = EventBus()

    def on_delta(event):
        print(event.data["answer"])

    bus.subscribe(STREAM_DELTA, on_delta)
    await bus.publish(STREAM_DELTA, {"answer": "Hel", "reasoning": None})
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

CONVERSATION_UPDATED = "conversation.updated"
STREAM_DELTA = "stream.delta"
STREAM_STATE = "stream.state"
CONNECTION_CHANGED = "connection.changed"
MODELS_UPDATED = "models.updated"
ERROR_CHANGED = "error.changed"


@dataclass(frozen=True)
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """Publish/subscribe hub owned by the composition root.

    Handlers may be plain callables or coroutine functions. A failing
    handler is logged and never interrupts the publisher.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[Event], Any]]] = {}

    def subscribe(self, event_name: str, handler: Callable[[Event], Any]) -> None:
        self._subscribers.setdefault(event_name, []).append(handler)
        LOGGER.debug("Subscribed to event: %s", event_name)

    def unsubscribe(self, event_name: str, handler: Callable[[Event], Any]) -> None:
        handlers = self._subscribers.get(event_name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        """Deliver an event to every subscriber in subscription order."""
        handlers = list(self._subscribers.get(event_name, ()))
        if not handlers:
            return

        event = Event(name=event_name, data=data, source=source)
        for handler in handlers:
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as exc:  # noqa: BLE001 - observers must not break the engine.
                LOGGER.error(
                    "events.handler.failed",
                    extra={
                        "event": "events.handler.failed",
                        "event_name": event_name,
                        "error": str(exc),
                    },
                )

    def clear(self, event_name: str | None = None) -> None:
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()
