"""Ordered conversation log and request-context assembly."""

from __future__ import annotations

import uuid

from .models import Message, Role

DEFAULT_CONTEXT_CHAR_LIMIT = 8000
TRUNCATION_MARKER = "\n\n[Document truncated due to length...]"
DOCUMENT_CONTEXT_PREAMBLE = (
    "You have access to the following document content. "
    "Use it to answer questions:\n\n"
)


def fold_document_context(text: str, limit: int = DEFAULT_CONTEXT_CHAR_LIMIT) -> str:
    """Cap ``text`` at ``limit`` characters, appending a marker when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class Conversation:
    """Append-only message log whose entries are replaced, never mutated.

    Every mutation swaps in a new tuple, so readers on other tasks always see
    a consistent snapshot without locking.
    """

    def __init__(self, messages: tuple[Message, ...] | list[Message] = ()) -> None:
        self._messages: tuple[Message, ...] = tuple(messages)
        self._document_context: str | None = None

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    @property
    def visible_messages(self) -> tuple[Message, ...]:
        """Messages the presentation layer renders (system entries hidden)."""
        return tuple(m for m in self._messages if m.role is not Role.SYSTEM)

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: uuid.UUID) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def append(self, message: Message) -> Message:
        self._messages = self._messages + (message,)
        return message

    def begin_turn(self, user_message: Message) -> Message:
        """Append ``user_message`` and an empty assistant placeholder as a pair.

        Returns the placeholder so callers can fill it in place.
        """
        placeholder = Message(role=Role.ASSISTANT, content="")
        self._messages = self._messages + (user_message, placeholder)
        return placeholder

    def replace(self, message: Message) -> bool:
        """Swap in ``message`` for the entry sharing its id."""
        for index, existing in enumerate(self._messages):
            if existing.id == message.id:
                self._messages = (
                    self._messages[:index] + (message,) + self._messages[index + 1 :]
                )
                return True
        return False

    def remove(self, message_id: uuid.UUID) -> bool:
        remaining = tuple(m for m in self._messages if m.id != message_id)
        removed = len(remaining) != len(self._messages)
        self._messages = remaining
        return removed

    def clear(self) -> None:
        """Drop every message and the retained document context."""
        self._messages = ()
        self._document_context = None

    @property
    def document_context(self) -> str | None:
        return self._document_context

    def set_document_context(self, text: str | None) -> None:
        """Keep the latest non-empty extraction; empty results leave it untouched."""
        if text and text.strip():
            self._document_context = text

    def build_request_messages(
        self,
        system_prompt: str = "",
        context_char_limit: int = DEFAULT_CONTEXT_CHAR_LIMIT,
    ) -> list[dict[str, str]]:
        """Build the ``messages`` array for a chat request.

        Order: configured system prompt, document context, then every stored
        message with content (system entries included, empty placeholders
        skipped).
        """
        payload: list[dict[str, str]] = []
        if system_prompt.strip():
            payload.append({"role": Role.SYSTEM.value, "content": system_prompt.strip()})
        if self._document_context:
            folded = fold_document_context(self._document_context, context_char_limit)
            payload.append(
                {
                    "role": Role.SYSTEM.value,
                    "content": DOCUMENT_CONTEXT_PREAMBLE + folded,
                }
            )
        payload.extend(m.to_payload() for m in self._messages if m.content.strip())
        return payload
