"""Source processor for PDF documents.

Reads PDF bytes with PyMuPDF (fitz) and returns the text of every page in
order.  Pages without a text layer come back as empty strings rather than
being skipped, so page numbers stay aligned with the physical document.
"""

from __future__ import annotations

import fitz  # PyMuPDF
import structlog

from docpipe.utils.errors import UnreadableDocumentError

logger = structlog.get_logger(logger_name=__name__)


class PDFProcessor:
    """Extracts per-page text from a PDF held in memory."""

    format_name = "pdf"

    def extract_pages(self, data: bytes) -> list[str]:
        """Return the text of each page of the PDF.

        Raises
        ------
        UnreadableDocumentError
            If PyMuPDF cannot open the stream, or the PDF is encrypted.
        """
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            logger.error("pdf_open_failed", size=len(data), error=str(exc))
            raise UnreadableDocumentError(
                message=f"PDF could not be opened: {exc}",
                provider_name="pymupdf",
            ) from exc

        try:
            if doc.needs_pass:
                raise UnreadableDocumentError(
                    message="PDF is password protected",
                    provider_name="pymupdf",
                )
            pages = [page.get_text("text").strip() for page in doc]
        except UnreadableDocumentError:
            raise
        except Exception as exc:
            raise UnreadableDocumentError(
                message=f"PDF text extraction failed: {exc}",
                provider_name="pymupdf",
            ) from exc
        finally:
            doc.close()

        if not any(pages):
            logger.warning("pdf_no_text_extracted", pages=len(pages))
        return pages
