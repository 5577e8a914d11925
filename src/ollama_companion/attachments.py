"""Attachment loading, classification and per-type processing.

PDF text comes from the text layer via ``pypdf``; pages without a text layer
are rasterised with ``pdf2image`` and read with ``pytesseract``. Images are
base64-encoded for the vision model and plain-text files are decoded as-is.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
import io
import logging
from pathlib import Path
from typing import NamedTuple, Protocol
import uuid

from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image
from pypdf import PdfReader
from pypdf.errors import DependencyError, PyPdfError
import pytesseract

from .exceptions import ExtractionError
from .models import Attachment, AttachmentType, classify_file_name

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_PDF_PAGES = 5
DEFAULT_OCR_DPI = 144  # 2x the 72 dpi PDF user space.


def load_attachment(
    path: str | Path,
    *,
    max_image_bytes: int = 10 * 1024 * 1024,
    max_file_bytes: int = 20 * 1024 * 1024,
) -> Attachment:
    """Validate ``path`` and read it into an :class:`Attachment`.

    Raises:
        ExtractionError: The path is missing, not a file, too large or unreadable.
    """
    resolved = Path(path).expanduser()
    try:
        resolved = resolved.resolve()
    except OSError as exc:
        raise ExtractionError(f"Error resolving {path}: {exc}") from exc

    if not resolved.exists():
        raise ExtractionError(f"File not found: {path}")
    if not resolved.is_file():
        raise ExtractionError(f"Not a file: {path}")

    kind = classify_file_name(resolved.name)
    max_bytes = max_image_bytes if kind is AttachmentType.IMAGE else max_file_bytes
    try:
        size = resolved.stat().st_size
        if size > max_bytes:
            max_mb = max_bytes / (1024 * 1024)
            raise ExtractionError(
                f"{kind.value.capitalize()} too large: {resolved.name} (max {max_mb:.1f}MB)"
            )
        data = resolved.read_bytes()
    except OSError as exc:
        raise ExtractionError(f"Error reading {resolved.name}: {exc}") from exc

    attachment = Attachment.from_bytes(resolved.name, data)
    LOGGER.info(
        "attachment.loaded",
        extra={
            "event": "attachment.loaded",
            "file_name": attachment.file_name,
            "type": attachment.type.value,
            "bytes": len(data),
        },
    )
    return attachment


class PendingAttachments:
    """Attachments chosen for the next message; removable until it is sent."""

    def __init__(self) -> None:
        self._items: list[Attachment] = []

    def add(self, attachment: Attachment) -> None:
        self._items.append(attachment)

    def remove(self, attachment_id: uuid.UUID) -> bool:
        for index, item in enumerate(self._items):
            if item.id == attachment_id:
                del self._items[index]
                return True
        return False

    def clear(self) -> None:
        self._items.clear()

    def take(self) -> tuple[Attachment, ...]:
        """Return the pending attachments and empty the list."""
        items = tuple(self._items)
        self._items.clear()
        return items

    @property
    def items(self) -> tuple[Attachment, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Attachment]:
        return iter(tuple(self._items))


class AttachmentGroups(NamedTuple):
    pdfs: tuple[Attachment, ...]
    images: tuple[Attachment, ...]
    texts: tuple[Attachment, ...]


def partition_attachments(attachments: Iterable[Attachment]) -> AttachmentGroups:
    """Split attachments by type, keeping the input order inside each group."""
    pdfs: list[Attachment] = []
    images: list[Attachment] = []
    texts: list[Attachment] = []
    for attachment in attachments:
        if attachment.type is AttachmentType.PDF:
            pdfs.append(attachment)
        elif attachment.type is AttachmentType.IMAGE:
            images.append(attachment)
        else:
            texts.append(attachment)
    return AttachmentGroups(tuple(pdfs), tuple(images), tuple(texts))


def encode_images(attachments: Iterable[Attachment]) -> list[str]:
    """Base64-encode image payloads for the vision endpoint."""
    return [base64.b64encode(item.data).decode("ascii") for item in attachments]


def decode_text_attachment(attachment: Attachment) -> str:
    """Decode a text attachment, replacing undecodable bytes."""
    return attachment.data.decode("utf-8-sig", errors="replace")


class PageRecognizer(Protocol):
    def recognize(self, pdf_bytes: bytes, page_number: int) -> str | None: ...


class TesseractPageOcr:
    """Render one PDF page with poppler and read it with Tesseract."""

    def __init__(self, dpi: int = DEFAULT_OCR_DPI, language: str = "eng") -> None:
        self.dpi = dpi
        self.language = language

    def recognize(self, pdf_bytes: bytes, page_number: int) -> str | None:
        """Return the recognised text of 1-based ``page_number``, or None if blank.

        Raises:
            ExtractionError: Rendering or recognition failed (for example
                when poppler or the tesseract binary is not installed).
        """
        try:
            images: list[Image.Image] = convert_from_bytes(
                pdf_bytes, dpi=self.dpi, first_page=page_number, last_page=page_number
            )
            parts: list[str] = []
            for image in images:
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")
                parts.append(pytesseract.image_to_string(image, lang=self.language) or "")
        except (
            PDFInfoNotInstalledError,
            PDFPageCountError,
            PDFPopplerTimeoutError,
            PDFSyntaxError,
            pytesseract.TesseractNotFoundError,
            pytesseract.TesseractError,
            OSError,
        ) as exc:
            raise ExtractionError(f"OCR failed on page {page_number}: {exc}") from exc

        text = "\n".join(part.strip() for part in parts if part.strip())
        return text or None


@dataclass(frozen=True)
class PdfExtraction:
    """Labeled page text plus bookkeeping for one PDF."""

    text: str
    pages_processed: int
    total_pages: int
    notes: tuple[str, ...] = ()

    @property
    def truncated(self) -> bool:
        return self.total_pages > self.pages_processed


class PdfTextExtractor:
    """Extract text from the first ``max_pages`` pages of a PDF.

    Each page uses its text layer when it has one and falls back to OCR
    otherwise. Pages are labeled ``--- Page N ---`` or ``--- Page N (OCR) ---``.
    """

    def __init__(
        self,
        max_pages: int = DEFAULT_MAX_PDF_PAGES,
        ocr: PageRecognizer | None = None,
        *,
        ocr_enabled: bool = True,
    ) -> None:
        self.max_pages = max_pages
        self.ocr = ocr if ocr is not None else TesseractPageOcr()
        self.ocr_enabled = ocr_enabled

    def extract(self, data: bytes) -> PdfExtraction:
        """Extract labeled text from ``data``.

        Raises:
            ExtractionError: The bytes are not a readable PDF, or it is
                encrypted with a cipher that cannot be opened.
        """
        try:
            reader = PdfReader(io.BytesIO(data))
            if reader.is_encrypted:
                reader.decrypt("")
            total_pages = len(reader.pages)
        except DependencyError as exc:
            raise ExtractionError(f"Cannot decrypt PDF: {exc}") from exc
        except (PyPdfError, ValueError, OSError, NotImplementedError) as exc:
            raise ExtractionError(f"Unreadable PDF: {exc}") from exc

        pages_to_process = min(total_pages, self.max_pages)
        sections: list[str] = []
        notes: list[str] = []
        for index in range(pages_to_process):
            page_number = index + 1
            try:
                page_text = reader.pages[index].extract_text() or ""
            except (DependencyError, PyPdfError, ValueError, KeyError, TypeError) as exc:
                LOGGER.warning(
                    "pdf.page.failed",
                    extra={"event": "pdf.page.failed", "page": page_number, "error": str(exc)},
                )
                page_text = ""

            if page_text.strip():
                sections.append(f"--- Page {page_number} ---\n\n{page_text}\n\n")
                continue

            if not self.ocr_enabled:
                continue
            try:
                ocr_text = self.ocr.recognize(data, page_number)
            except ExtractionError as exc:
                notes.append(str(exc))
                continue
            if ocr_text and ocr_text.strip():
                sections.append(f"--- Page {page_number} (OCR) ---\n\n{ocr_text}\n\n")

        text = "".join(sections)
        if text and total_pages > pages_to_process:
            text += (
                f"\n\n[Note: Only first {pages_to_process} pages of {total_pages} "
                "total pages were processed for performance]\n"
            )

        LOGGER.info(
            "pdf.extracted",
            extra={
                "event": "pdf.extracted",
                "pages_processed": pages_to_process,
                "total_pages": total_pages,
                "chars": len(text),
            },
        )
        return PdfExtraction(
            text=text,
            pages_processed=pages_to_process,
            total_pages=total_pages,
            notes=tuple(notes),
        )
