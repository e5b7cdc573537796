"""Binary-to-text extraction stage.

:class:`DocumentExtractor` picks a source processor for a document, runs
it off the event loop, and assembles the per-page texts into one string
plus a page boundary map:

    page_boundaries[i] == len("\\n\\n".join(pages[: i + 1])) + 2   (i < last)
    page_boundaries[-1] == len(text)

i.e. the ``"\\n\\n"`` separator is counted in the page it follows.  The
extractor has no side effects; the orchestrator persists the result.
"""

from __future__ import annotations

import asyncio
import io
import zipfile
from pathlib import PurePosixPath

import structlog

from docpipe.models.pipeline import ExtractionResult
from docpipe.services.ingestion.source_processors import (
    DocxProcessor,
    PDFProcessor,
    TextProcessor,
    XlsxProcessor,
)
from docpipe.utils.errors import TextTooShortError, UnreadableDocumentError

logger = structlog.get_logger(logger_name=__name__)

PAGE_SEPARATOR = "\n\n"

_EXTENSION_FORMATS: dict[str, str] = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".xlsx": "xlsx",
    ".txt": "text",
    ".md": "text",
    ".markdown": "text",
    ".csv": "text",
}

_PDF_MAGIC = b"%PDF"
_ZIP_MAGIC = b"PK\x03\x04"


def detect_format(data: bytes, filename: str) -> str | None:
    """Return the source format name, or ``None`` when it is unsupported.

    The filename extension wins; unknown extensions fall back to magic
    bytes.  A ZIP container is told apart as DOCX or XLSX by its member
    paths (``word/`` vs ``xl/``).
    """
    suffix = PurePosixPath(filename.lower()).suffix
    if suffix in _EXTENSION_FORMATS:
        return _EXTENSION_FORMATS[suffix]

    if data.startswith(_PDF_MAGIC):
        return "pdf"
    if data.startswith(_ZIP_MAGIC):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                names = archive.namelist()
        except zipfile.BadZipFile:
            return None
        if any(name.startswith("word/") for name in names):
            return "docx"
        if any(name.startswith("xl/") for name in names):
            return "xlsx"
    return None


def assemble_pages(pages: list[str]) -> tuple[str, list[int]]:
    """Join *pages* with the page separator and compute end offsets."""
    boundaries: list[int] = []
    offset = 0
    for index, page in enumerate(pages):
        offset += len(page)
        if index < len(pages) - 1:
            offset += len(PAGE_SEPARATOR)
        boundaries.append(offset)
    return PAGE_SEPARATOR.join(pages), boundaries


class DocumentExtractor:
    """Turns raw document bytes into an :class:`ExtractionResult`.

    Parameters
    ----------
    min_text_chars:
        Extraction producing fewer non-whitespace-trimmed characters than
        this is treated as unreadable (usually a scanned document with no
        text layer).
    """

    def __init__(self, min_text_chars: int = 20) -> None:
        self._min_text_chars = min_text_chars
        self._processors = {
            p.format_name: p
            for p in (PDFProcessor(), DocxProcessor(), XlsxProcessor(), TextProcessor())
        }

    @property
    def supported_formats(self) -> list[str]:
        return sorted(self._processors)

    async def extract(self, data: bytes, filename: str) -> ExtractionResult:
        """Extract text and page boundaries from *data*.

        Raises
        ------
        UnreadableDocumentError
            If the format is unsupported or the processor cannot parse it.
        TextTooShortError
            If the stripped text is shorter than ``min_text_chars``.
        """
        source_format = detect_format(data, filename)
        if source_format is None:
            raise UnreadableDocumentError(
                message=f"Unsupported document format: {filename}",
            )

        processor = self._processors[source_format]
        pages = await asyncio.to_thread(processor.extract_pages, data)
        text, boundaries = assemble_pages(pages)

        if len(text.strip()) < self._min_text_chars:
            logger.warning(
                "extraction_text_too_short",
                filename=filename,
                chars=len(text.strip()),
                minimum=self._min_text_chars,
            )
            raise TextTooShortError(
                message=(
                    f"Extracted text too short or unreadable "
                    f"({len(text.strip())} < {self._min_text_chars} chars)"
                ),
                provider_name=source_format,
            )

        logger.info(
            "document_extracted",
            filename=filename,
            source_format=source_format,
            pages=len(boundaries),
            chars=len(text),
        )
        return ExtractionResult(
            text=text,
            page_boundaries=boundaries,
            source_format=source_format,
        )
