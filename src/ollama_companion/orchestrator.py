"""Routes a turn with attachments through extraction, vision and document chat."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging
import time
from typing import Any

from .attachments import (
    PdfTextExtractor,
    decode_text_attachment,
    encode_images,
    partition_attachments,
)
from .exceptions import ExtractionError
from .models import Attachment, StreamMetrics
from .reasoning import ReasoningSplit, extract_reasoning
from .transport import OllamaTransport, map_exception, read_field

LOGGER = logging.getLogger(__name__)

DEFAULT_VISION_MODEL = "llava:7b"
DEFAULT_DOCUMENT_MODEL = "gemma3:4b"
DEFAULT_DOCUMENT_QUESTION = "Please summarize the key points from this document."
DOCUMENT_SYSTEM_PROMPT = (
    "You are a helpful assistant analyzing documents. "
    "Answer questions using only the provided document content."
)
DOCUMENT_CONTENT_HEADER = "Here is the content from the uploaded document(s):\n\n"
IMAGE_ANALYSIS_HEADING = "**Image Analysis**\n\n"
PROCESSING_NOTES_HEADING = "**Processing Notes:**\n"


def default_image_prompt(image_count: int) -> str:
    subject = "this image" if image_count == 1 else f"these {image_count} images"
    return f"Please analyze {subject} and describe what you see in detail."


def format_processing_notes(notes: Sequence[str]) -> str:
    if not notes:
        return ""
    return PROCESSING_NOTES_HEADING + "".join(f"- {note}\n" for note in notes)


def _document_section(file_name: str, text: str) -> str:
    return f"**Document: {file_name}**\n\n{text}\n\n---\n\n"


@dataclass(frozen=True)
class MultiModalResult:
    content: str
    metrics: StreamMetrics
    extracted_text: str | None = None
    reasoning: str | None = None


class MultiModalOrchestrator:
    """Merges document extraction and model replies into one assistant answer.

    Document text (PDF pages and text files) always comes first. When images
    are present they go to the vision model in a single call and its reply
    follows the document text. Without images the document text is handed to
    the document model together with the user's question.
    """

    def __init__(
        self,
        transport: OllamaTransport,
        *,
        pdf_extractor: PdfTextExtractor | None = None,
        vision_model: str = DEFAULT_VISION_MODEL,
        document_model: str = DEFAULT_DOCUMENT_MODEL,
        extractor: Callable[[str], ReasoningSplit] = extract_reasoning,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.pdf_extractor = pdf_extractor or PdfTextExtractor()
        self.vision_model = vision_model
        self.document_model = document_model
        self.extractor = extractor
        self.clock = clock

    async def extract_documents(
        self, attachments: Sequence[Attachment]
    ) -> tuple[str, list[str]]:
        """Return the combined document text and the processing notes."""
        groups = partition_attachments(attachments)
        sections: list[str] = []
        notes: list[str] = []

        for attachment in groups.pdfs:
            try:
                extraction = await asyncio.to_thread(
                    self.pdf_extractor.extract, attachment.data
                )
            except ExtractionError as exc:
                LOGGER.warning(
                    "orchestrator.pdf.failed",
                    extra={
                        "event": "orchestrator.pdf.failed",
                        "file_name": attachment.file_name,
                        "error": str(exc),
                    },
                )
                notes.append(f"Failed to process {attachment.file_name}: {exc}")
                continue
            notes.extend(f"{attachment.file_name}: {note}" for note in extraction.notes)
            if extraction.text.strip():
                sections.append(_document_section(attachment.file_name, extraction.text))
            else:
                notes.append(f"Could not extract text from {attachment.file_name}")

        for attachment in groups.texts:
            text = decode_text_attachment(attachment)
            if text.strip():
                sections.append(_document_section(attachment.file_name, text))
            else:
                notes.append(f"Could not extract text from {attachment.file_name}")

        return "".join(sections), notes

    async def respond(
        self,
        prompt: str,
        attachments: Sequence[Attachment],
        temperature: float | None = None,
        *,
        options: dict[str, Any] | None = None,
        return_extracted_text: bool = True,
    ) -> MultiModalResult:
        """Produce one assistant reply for ``prompt`` and its attachments.

        Raises:
            ValueError: ``attachments`` is empty.
            OllamaCompanionError: The model call failed (mapped transport error).
        """
        if not attachments:
            raise ValueError("respond() needs at least one attachment.")

        started_at = self.clock()
        request_options = dict(options or {})
        if temperature is not None:
            request_options["temperature"] = temperature

        document_text, notes = await self.extract_documents(attachments)
        images = partition_attachments(attachments).images
        extracted = document_text if return_extracted_text and document_text else None

        LOGGER.info(
            "orchestrator.respond",
            extra={
                "event": "orchestrator.respond",
                "attachments": len(attachments),
                "images": len(images),
                "document_chars": len(document_text),
                "notes": len(notes),
            },
        )

        if images:
            return await self._respond_with_vision(
                prompt, images, document_text, notes, request_options, started_at, extracted
            )
        if not document_text:
            return MultiModalResult(
                content=format_processing_notes(notes).strip(),
                metrics=StreamMetrics(),
                extracted_text=None,
            )
        return await self._respond_with_document(
            prompt, document_text, notes, request_options, started_at, extracted
        )

    async def _respond_with_vision(
        self,
        prompt: str,
        images: Sequence[Attachment],
        document_text: str,
        notes: list[str],
        options: dict[str, Any],
        started_at: float,
        extracted: str | None,
    ) -> MultiModalResult:
        vision_prompt = prompt.strip() or default_image_prompt(len(images))
        try:
            response = await self.transport.generate(
                self.vision_model, vision_prompt, encode_images(images), options
            )
        except Exception as exc:
            raise map_exception(exc, self.transport.host) from exc

        split = self.extractor(read_field(response, "response") or "")
        content = document_text
        if document_text:
            content += IMAGE_ANALYSIS_HEADING
        content += split.answer
        if notes:
            content += "\n\n" + format_processing_notes(notes)

        metrics = StreamMetrics.estimated(
            content, started_at=started_at, finished_at=self.clock()
        )
        return MultiModalResult(
            content=content,
            metrics=metrics,
            extracted_text=extracted,
            reasoning=split.reasoning,
        )

    async def _respond_with_document(
        self,
        prompt: str,
        document_text: str,
        notes: list[str],
        options: dict[str, Any],
        started_at: float,
        extracted: str | None,
    ) -> MultiModalResult:
        messages = [
            {
                "role": "system",
                "content": f"{DOCUMENT_SYSTEM_PROMPT}\n\n{DOCUMENT_CONTENT_HEADER}{document_text}",
            },
            {"role": "user", "content": prompt.strip() or DEFAULT_DOCUMENT_QUESTION},
        ]
        try:
            response = await self.transport.chat(self.document_model, messages, options)
        except Exception as exc:
            raise map_exception(exc, self.transport.host) from exc
        finished_at = self.clock()

        reply = read_field(read_field(response, "message"), "content") or ""
        split = self.extractor(reply)
        content = split.answer
        if notes:
            content += "\n\n" + format_processing_notes(notes)

        metrics = StreamMetrics.from_server_counters(
            eval_count=read_field(response, "eval_count"),
            eval_duration_ns=read_field(response, "eval_duration"),
            started_at=started_at,
            first_token_at=finished_at,
            finished_at=finished_at,
        )
        return MultiModalResult(
            content=content,
            metrics=metrics,
            extracted_text=extracted,
            reasoning=split.reasoning,
        )
