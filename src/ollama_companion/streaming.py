"""Streaming chat turns: NDJSON decoding, live reasoning split and metrics."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
import json
import logging
import time
from typing import Any

from .conversation import DEFAULT_CONTEXT_CHAR_LIMIT, Conversation
from .events import (
    CONVERSATION_UPDATED,
    ERROR_CHANGED,
    STREAM_DELTA,
    STREAM_STATE,
    EventBus,
)
from .exceptions import (
    InvalidConfigurationError,
    OllamaCompanionError,
    OllamaServerError,
    StreamCorruptionError,
)
from .models import Attachment, Message, Role, StreamMetrics
from .reasoning import ReasoningSplit, extract_reasoning
from .state import StateManager, StreamState
from .transport import OllamaTransport, map_exception

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamOutcome:
    """How a turn ended, with the final assistant message when one survives."""

    state: StreamState
    message: Message | None = None
    error: OllamaCompanionError | None = None
    metrics: StreamMetrics | None = None


def decode_stream_line(line: str) -> dict[str, Any] | None:
    """Parse one NDJSON line. Blank lines yield None.

    Raises:
        StreamCorruptionError: The line is not a JSON object.
    """
    stripped = line.strip()
    if not stripped:
        return None
    try:
        decoded = json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise StreamCorruptionError(f"Undecodable stream line: {exc}") from exc
    if not isinstance(decoded, dict):
        raise StreamCorruptionError(
            f"Stream line is {type(decoded).__name__}, expected an object."
        )
    return decoded


def _chunk_content(chunk: dict[str, Any]) -> str:
    message = chunk.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


class StreamingResponseEngine:
    """Runs one streaming chat turn at a time against a conversation.

    The assistant placeholder is replaced (same id) after every decoded
    line, so observers always see the cumulative answer and reasoning.
    """

    def __init__(
        self,
        transport: OllamaTransport,
        conversation: Conversation,
        *,
        bus: EventBus | None = None,
        state_manager: StateManager | None = None,
        extractor: Callable[[str], ReasoningSplit] = extract_reasoning,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.conversation = conversation
        self.bus = bus or EventBus()
        self.state = state_manager or StateManager()
        self.extractor = extractor
        self.clock = clock
        self.live_answer = ""
        self.live_reasoning: str | None = None
        self.last_error: str | None = None

    @property
    def is_streaming(self) -> bool:
        return self.state.state.is_active

    def clear_error(self) -> None:
        self.last_error = None

    async def set_state(self, state: StreamState) -> None:
        await self.state.transition_to(state)
        await self.bus.publish(STREAM_STATE, {"state": state.value}, source="streaming")

    async def fail(
        self, error: OllamaCompanionError, placeholder: Message | None
    ) -> StreamOutcome:
        """End the turn as FAILED, dropping the orphaned placeholder if any."""
        if placeholder is not None:
            self.conversation.remove(placeholder.id)
            await self.bus.publish(CONVERSATION_UPDATED, {}, source="streaming")
        self.live_answer = ""
        self.live_reasoning = None
        self.last_error = str(error)
        LOGGER.warning(
            "stream.failed",
            extra={
                "event": "stream.failed",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        await self.set_state(StreamState.FAILED)
        await self.bus.publish(ERROR_CHANGED, {"error": self.last_error}, source="streaming")
        return StreamOutcome(state=StreamState.FAILED, error=error)

    async def send(
        self,
        text: str,
        *,
        model: str | None,
        options: dict[str, Any] | None = None,
        system_prompt: str = "",
        context_char_limit: int = DEFAULT_CONTEXT_CHAR_LIMIT,
        attachments: tuple[Attachment, ...] = (),
    ) -> StreamOutcome:
        """Append a user message and stream the assistant reply into the conversation.

        Transport and server failures are reported through the returned
        outcome (and ``last_error``), never raised. Cancelling the calling
        task stops the stream, keeps the text received so far and re-raises
        ``asyncio.CancelledError``.
        """
        if not await self.state.begin_turn():
            raise OllamaCompanionError("A response is already in progress.")
        await self.bus.publish(
            STREAM_STATE, {"state": StreamState.SENDING.value}, source="streaming"
        )
        self.last_error = None

        if not model:
            return await self.fail(
                InvalidConfigurationError("No model selected."), placeholder=None
            )

        user_message = Message(role=Role.USER, content=text, attachments=attachments)
        placeholder = self.conversation.begin_turn(user_message)
        await self.bus.publish(CONVERSATION_UPDATED, {}, source="streaming")

        payload: dict[str, Any] = {
            "model": model,
            "messages": self.conversation.build_request_messages(
                system_prompt=system_prompt, context_char_limit=context_char_limit
            ),
            "stream": True,
        }
        if options:
            payload["options"] = options

        LOGGER.info(
            "stream.started",
            extra={
                "event": "stream.started",
                "model": model,
                "messages": len(payload["messages"]),
            },
        )

        current = placeholder
        raw_text = ""
        split = ReasoningSplit(None, "")
        done_chunk: dict[str, Any] | None = None
        started_at = self.clock()
        first_token_at: float | None = None

        try:
            async with aclosing(self.transport.stream_chat(payload)) as lines:
                async for line in lines:
                    try:
                        chunk = decode_stream_line(line)
                    except StreamCorruptionError as exc:
                        LOGGER.warning(
                            "stream.line.malformed",
                            extra={"event": "stream.line.malformed", "error": str(exc)},
                        )
                        continue
                    if chunk is None:
                        continue

                    error_text = chunk.get("error")
                    if error_text:
                        raise OllamaServerError(str(error_text))

                    if await self.state.transition_if(
                        StreamState.SENDING, StreamState.STREAMING
                    ):
                        await self.bus.publish(
                            STREAM_STATE,
                            {"state": StreamState.STREAMING.value},
                            source="streaming",
                        )

                    content = _chunk_content(chunk)
                    if content:
                        if first_token_at is None:
                            first_token_at = self.clock()
                        raw_text += content

                    split = self.extractor(raw_text)
                    current = current.with_content(split.answer, split.reasoning)
                    self.conversation.replace(current)
                    self.live_answer = split.answer
                    self.live_reasoning = split.reasoning
                    await self.bus.publish(
                        STREAM_DELTA,
                        {
                            "message_id": str(current.id),
                            "answer": split.answer,
                            "reasoning": split.reasoning,
                        },
                        source="streaming",
                    )
                    await self.bus.publish(CONVERSATION_UPDATED, {}, source="streaming")

                    if chunk.get("done"):
                        done_chunk = chunk
                        break
        except asyncio.CancelledError:
            self.live_answer = ""
            self.live_reasoning = None
            LOGGER.info(
                "stream.cancelled",
                extra={"event": "stream.cancelled", "chars": len(raw_text)},
            )
            await self.set_state(StreamState.CANCELLED)
            raise
        except Exception as exc:  # noqa: BLE001 - every failure ends the turn as FAILED.
            return await self.fail(map_exception(exc, self.transport.host), placeholder)

        if done_chunk is None:
            LOGGER.warning(
                "stream.ended.without.done",
                extra={"event": "stream.ended.without.done", "chars": len(raw_text)},
            )
            done_chunk = {}

        metrics = StreamMetrics.from_server_counters(
            eval_count=done_chunk.get("eval_count"),
            eval_duration_ns=done_chunk.get("eval_duration"),
            started_at=started_at,
            first_token_at=first_token_at,
            finished_at=self.clock(),
        )
        current = current.with_content(split.answer, split.reasoning, metrics)
        self.conversation.replace(current)
        self.live_answer = ""
        self.live_reasoning = None
        LOGGER.info(
            "stream.completed",
            extra={
                "event": "stream.completed",
                "tokens": metrics.token_count,
                "tokens_per_second": round(metrics.tokens_per_second, 2),
            },
        )
        await self.bus.publish(CONVERSATION_UPDATED, {}, source="streaming")
        await self.set_state(StreamState.COMPLETED)
        return StreamOutcome(state=StreamState.COMPLETED, message=current, metrics=metrics)
