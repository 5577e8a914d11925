"""Immutable value types shared by the streaming engine and attachment pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
import mimetypes
from pathlib import Path
from typing import Any
import uuid

# Raster formats routed to the vision model.
IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tiff", ".tif", ".heic"}
)
PDF_EXTENSIONS: frozenset[str] = frozenset({".pdf"})

NANOSECONDS_PER_SECOND = 1_000_000_000


class Role(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AttachmentType(str, Enum):
    """Processing strategy tag for an attachment."""

    IMAGE = "image"
    PDF = "pdf"
    TEXT = "text"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_file_name(file_name: str, mime_type: str | None = None) -> AttachmentType:
    """Map a file name (and optional MIME type) to an attachment type.

    Unrecognized extensions fall back to ``TEXT``.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix in PDF_EXTENSIONS:
        return AttachmentType.PDF
    if suffix in IMAGE_EXTENSIONS:
        return AttachmentType.IMAGE
    mime = (mime_type or "").lower()
    if mime == "application/pdf":
        return AttachmentType.PDF
    if mime.startswith("image/"):
        return AttachmentType.IMAGE
    return AttachmentType.TEXT


@dataclass(frozen=True)
class Attachment:
    """A user-supplied file, frozen once attached."""

    type: AttachmentType
    file_name: str
    data: bytes = field(repr=False)
    mime_type: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @classmethod
    def from_bytes(
        cls,
        file_name: str,
        data: bytes,
        mime_type: str | None = None,
    ) -> Attachment:
        """Build an attachment, classifying it from its name and MIME type."""
        guessed = mime_type or mimetypes.guess_type(file_name)[0]
        kind = classify_file_name(file_name, guessed)
        if guessed is None:
            guessed = "text/plain" if kind is AttachmentType.TEXT else "application/octet-stream"
        return cls(type=kind, file_name=file_name, data=data, mime_type=guessed)


@dataclass(frozen=True)
class StreamMetrics:
    """Latency and throughput figures for one assistant reply."""

    token_count: int = 0
    tokens_per_second: float = 0.0
    time_to_first_token: float = 0.0
    total_duration: float = 0.0

    @classmethod
    def from_server_counters(
        cls,
        *,
        eval_count: Any,
        eval_duration_ns: Any,
        started_at: float,
        first_token_at: float | None,
        finished_at: float,
    ) -> StreamMetrics:
        """Derive metrics from server counters and local monotonic timestamps.

        Missing, non-numeric or non-positive durations yield zero tokens/sec.
        """
        token_count = eval_count if isinstance(eval_count, int) and eval_count > 0 else 0
        duration_ns = (
            eval_duration_ns
            if isinstance(eval_duration_ns, (int, float)) and not isinstance(eval_duration_ns, bool)
            else 0
        )
        eval_seconds = duration_ns / NANOSECONDS_PER_SECOND if duration_ns > 0 else 0.0
        tokens_per_second = token_count / eval_seconds if eval_seconds > 0 else 0.0
        ttft = first_token_at - started_at if first_token_at is not None else 0.0
        return cls(
            token_count=token_count,
            tokens_per_second=tokens_per_second,
            time_to_first_token=max(0.0, ttft),
            total_duration=max(0.0, finished_at - started_at),
        )

    @classmethod
    def estimated(cls, text: str, *, started_at: float, finished_at: float) -> StreamMetrics:
        """Estimate metrics from a word count when the server reports no counters."""
        duration = max(0.0, finished_at - started_at)
        words = len(text.split())
        return cls(
            token_count=words,
            tokens_per_second=words / duration if duration > 0 else 0.0,
            time_to_first_token=duration,
            total_duration=duration,
        )


@dataclass(frozen=True)
class Message:
    """One conversation entry. Updates produce a new value with the same id."""

    role: Role
    content: str = ""
    reasoning: str | None = None
    attachments: tuple[Attachment, ...] = ()
    metrics: StreamMetrics | None = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def has_reasoning(self) -> bool:
        return bool(self.reasoning)

    def with_content(
        self,
        content: str,
        reasoning: str | None = None,
        metrics: StreamMetrics | None = None,
    ) -> Message:
        """Return a copy carrying new content while keeping identity and timestamp."""
        return replace(self, content=content, reasoning=reasoning, metrics=metrics)

    def to_payload(self) -> dict[str, str]:
        """Serialize to the ``{role, content}`` shape the chat endpoint expects."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ModelDescriptor:
    """A locally available model as reported by the model-list endpoint."""

    name: str
    size: int | None = None
    modified_at: str | None = None

    @property
    def display_name(self) -> str:
        return self.name.split(":", 1)[0]

    @property
    def variant(self) -> str | None:
        """Tag after the first ``:`` (size or quantization), if any."""
        if ":" not in self.name:
            return None
        return self.name.split(":", 1)[1] or None

    @property
    def display_size(self) -> str:
        if not self.size:
            return ""
        gigabytes = self.size / (1024**3)
        if gigabytes >= 1:
            return f"{gigabytes:.1f} GB"
        return f"{self.size / (1024**2):.0f} MB"
